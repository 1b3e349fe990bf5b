#!/usr/bin/env python3
# GRBL Streamer (GRBL G-code streaming controller)
# Copyright (C) 2026 Bob Kolbasowski
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.
#
# Optional (not required by the license): If you make improvements, please consider
# contributing them back upstream (e.g., via a pull request) so others can benefit.
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Connection management for the GRBL controller."""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Any, TYPE_CHECKING

from .types import ControllerSnapshot, GrblControllerState
from .utils.constants import CMD_VIEW_BUILD_INFO, CMD_VIEW_SETTINGS, READ_POLL_TIMEOUT, THREAD_JOIN_TIMEOUT
from .utils.exceptions import (
    TransportConnectionError,
    TransportException,
)

logger = logging.getLogger(__name__)


class GrblConnectionMixin(GrblControllerState):
    """Connection lifecycle support for the GRBL controller."""
    if TYPE_CHECKING:
        def _status_loop(self, stop_evt: threading.Event) -> None: ...
        def handle_line(self, line: str) -> Any: ...

    def connect(self, transport=None, *, start_workers: bool = True) -> None:
        """Open the transport and start the reader and status threads.

        Args:
            transport: Transport to use (defaults to the one given at construction)
            start_workers: Start the reader/status threads; with False the
                caller feeds received lines through ``handle_line()``

        Raises:
            TransportConnectionError: If the transport cannot be opened
        """
        if transport is not None:
            if self.is_connected():
                self.disconnect()
            self.transport = transport
        if self.transport is None:
            raise TransportConnectionError("No transport configured")

        # Disconnect if already connected
        if self.is_connected() and (self._rx_thread or self._status_thread):
            self.disconnect()

        # Reset state
        self._stop_evt = threading.Event()
        with self._stream_lock:
            self.queue.clear()
            self.model.reset()
            self._awaiting_startup = False
            self._stream_active = False
            self._last_ack_ts = time.time()
            self._last_rx_ts = time.time()
            self._watchdog_ignore_until = 0.0
            self._watchdog_ignore_reason = None
            self._status_query_failures = 0

        if not self.transport.is_open:
            try:
                self.transport.open()
            except TransportException:
                raise
            except Exception as e:
                raise TransportConnectionError(f"Unexpected error connecting to {self.transport.name}: {e}")

        if start_workers:
            # Start worker threads
            stop_evt = self._stop_evt
            self._rx_thread = threading.Thread(
                target=self._rx_loop,
                args=(stop_evt,),
                daemon=True,
                name="GRBL-RX"
            )
            self._status_thread = threading.Thread(
                target=self._status_loop,
                args=(stop_evt,),
                daemon=True,
                name="GRBL-Status"
            )
            self._rx_thread.start()
            self._status_thread.start()

        self._emit("conn", True, self.transport.name)
        logger.info(f"Connected to {self.transport.name}")

        if self.config.query_on_connect:
            self.send_system_command(CMD_VIEW_BUILD_INFO)
            self.send_system_command(CMD_VIEW_SETTINGS)

    def disconnect(self) -> None:
        """Disconnect from GRBL controller.

        Stops all worker threads and closes the transport.
        Thread-safe and idempotent.
        """
        # Signal threads to stop
        self._stop_evt.set()

        with self._stream_lock:
            was_streaming = self._stream_active
            self._clear_queues("disconnect")
            self._stream_active = False
            self._awaiting_startup = False
            self.model.reset()
        self._emit_buffer_fill()

        # Notify
        self._emit("ready", False)
        if was_streaming:
            self._emit("stream_state", "stopped", "disconnect")

        self._close_transport()

        # Wait for threads to finish
        current = threading.current_thread()
        for thread in (self._rx_thread, self._status_thread):
            if thread and thread.is_alive() and thread is not current:
                thread.join(timeout=THREAD_JOIN_TIMEOUT)
                if thread.is_alive():
                    logger.warning(f"Thread {thread.name} did not terminate")

        self._rx_thread = None
        self._status_thread = None

        self._emit("conn", False, None)

    def is_connected(self) -> bool:
        """Check if connected to GRBL.

        Returns:
            True if the transport is open
        """
        return self.transport is not None and self.transport.is_open

    def subscribe(self, maxsize: int = 0) -> queue.Queue:
        """Return a new queue receiving every controller event."""
        return self.events.subscribe(maxsize)

    def snapshot(self) -> ControllerSnapshot:
        """Immutable view of the current controller state."""
        with self._stream_lock:
            return self.model.snapshot(
                pending_count=self.queue.pending_count,
                in_flight_count=self.queue.in_flight_count,
                buffer_used=self.queue.in_flight_total,
                buffer_capacity=self.queue.capacity,
                last_acked_line=self._last_acked_line,
            )

    # ========================================================================
    # INTERNAL HELPERS
    # ========================================================================

    def _emit(self, *event: Any) -> None:
        self.events.publish(tuple(event))

    def _emit_state(self) -> None:
        self._emit("state", self.snapshot())

    def _clear_queues(self, reason: str | None = None) -> None:
        with self._stream_lock:
            pending, in_flight = self.queue.clear()
        if pending or in_flight:
            logger.info(f"Cleared {pending} pending and {in_flight} in-flight commands ({reason})")

    def _close_transport(self) -> None:
        if self.transport is None:
            return
        try:
            self.transport.close()
            logger.info(f"{self.transport.name} closed")
        except (TransportException, OSError) as e:
            logger.error(f"Error closing {self.transport.name}: {e}")

    def _signal_disconnect(self, reason: str | None = None) -> None:
        """Fatal session error: reset all state and close the transport."""
        reason = reason or "transport failure"
        self._stop_evt.set()
        with self._stream_lock:
            was_streaming = self._stream_active
            interrupted_at = self._last_acked_line
            self._clear_queues(reason)
            self._stream_active = False
            self._awaiting_startup = False
            self.model.set_unknown()
        self._close_transport()
        logger.error(f"Session ended: {reason}")
        if was_streaming:
            self._emit("stream_interrupted", interrupted_at, reason)
        self._emit("fatal", reason)
        self._emit("ready", False)
        self._emit("stream_state", "error", reason)
        self._emit("conn", False, None)
        self._emit_buffer_fill()
        self._emit_state()

    def _rx_loop(self, stop_evt: threading.Event) -> None:
        """Receive thread - reads from GRBL and processes responses.

        Args:
            stop_evt: Event to signal thread shutdown
        """
        logger.debug("RX thread started")

        try:
            while not stop_evt.is_set():
                if not self.is_connected():
                    time.sleep(0.05)
                    continue

                try:
                    line = self.transport.read_line(READ_POLL_TIMEOUT)
                except TransportException as e:
                    if stop_evt.is_set():
                        break
                    logger.error(f"Read error: {e}")
                    self._signal_disconnect(f"Read error: {e}")
                    break

                if line:
                    self.handle_line(line)

        except Exception as e:
            logger.error(f"RX thread error: {e}", exc_info=True)
            self._signal_disconnect(f"RX thread error: {e}")
            stop_evt.set()

        finally:
            logger.debug("RX thread stopped")
