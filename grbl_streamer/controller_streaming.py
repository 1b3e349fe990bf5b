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

"""Queue streaming with character-counting flow control."""

from __future__ import annotations

import logging
import time
from typing import Iterable, Sequence

from .command_queue import is_recovery_command
from .program import ProgramLine, number_program_lines
from .types import Command, CommandKind, ErrorEvent, GrblControllerState
from .utils.constants import BUFFER_EMIT_INTERVAL, CMD_VIEW_SETTINGS, RT_HOLD
from .utils.exceptions import (
    GrblNotConnectedException,
    TransportException,
    TransportWriteError,
)
from .utils.logging_config import SERIAL_LOGGER_NAME

logger = logging.getLogger(__name__)
serial_logger = logging.getLogger(SERIAL_LOGGER_NAME)


class GrblStreamingMixin(GrblControllerState):
    # ========================================================================
    # PROGRAMS
    # ========================================================================

    def load_program(self, lines: Iterable[str | tuple[int, str] | ProgramLine]) -> list[ProgramLine]:
        """Remember a program for resume without queueing it.

        Args:
            lines: Plain strings (numbered from 1) or (line_number, text) pairs

        Returns:
            The cleaned, numbered program
        """
        program = number_program_lines(lines)
        with self._stream_lock:
            self._program = program
            self._last_acked_line = None
        self._emit("stream_state", "loaded", len(program))
        logger.info(f"Loaded {len(program)} lines of G-code")
        return program

    def enqueue_program(self, lines: Iterable[str | tuple[int, str] | ProgramLine]) -> int:
        """Queue a whole program for streaming.

        Returns:
            Number of program commands queued

        Raises:
            GrblNotConnectedException: If not connected
        """
        if not self.is_connected():
            raise GrblNotConnectedException("Cannot stream - not connected")
        program = self.load_program(lines)
        with self._stream_lock:
            for line in program:
                self.enqueue(line.text, CommandKind.PROGRAM, source_line=line.number, push=False)
            self._stream_active = bool(program)
            if program:
                self._emit("stream_state", "running", None)
            self.try_push()
        logger.info(f"Queued {len(program)} program lines")
        return len(program)

    def program(self) -> Sequence[ProgramLine]:
        with self._stream_lock:
            return tuple(self._program)

    @property
    def last_acked_line(self) -> int | None:
        return self._last_acked_line

    # ========================================================================
    # QUEUE
    # ========================================================================

    def enqueue(
        self,
        text: str,
        kind: CommandKind = CommandKind.SYSTEM,
        *,
        source_line: int | None = None,
        front: bool = False,
        push: bool = True,
    ) -> Command:
        """Build a command and append it to the pending FIFO.

        Never blocks; the command goes out as soon as buffer space, the alarm
        latch and any pending startup banner allow.

        Raises:
            GrblBufferOverflowException: See CommandQueue.enqueue
            InvalidParameterError: If the text is not a single non-empty line
        """
        with self._stream_lock:
            command = self.queue.make_command(text, kind, source_line)
            self.queue.enqueue(command, front=front)
            if push:
                self.try_push()
        return command

    def try_push(self) -> int:
        """Send pending commands while they fit in GRBL's RX buffer.

        Runs under the stream lock and writes while holding it, so in-flight
        order always equals wire order.

        Returns:
            Number of commands written
        """
        sent = 0
        with self._stream_lock:
            while self.is_connected():
                command = self.queue.peek_pending()
                if command is None or self._awaiting_startup:
                    break
                if self.model.stream_blocked and not (
                    self.model.alarm_active and is_recovery_command(command.raw_text)
                ):
                    break
                if not self.queue.fits(command):
                    break
                entry = self.queue.pop_for_send()
                try:
                    self._write_line(command)
                except (TransportException, OSError) as e:
                    self.queue.unsend(entry)
                    logger.error(f"Write failed: {e}")
                    self._signal_disconnect(f"Write failed: {e}")
                    break
                sent += 1
                if is_recovery_command(command.raw_text):
                    self.model.note_recovery_issued()
            if sent:
                self._emit_buffer_fill()
        return sent

    def purge(self) -> int:
        """Drop every pending command (e.g. commands held during an alarm).

        In-flight commands stay: GRBL still owes acknowledgements for them.

        Returns:
            Number of commands dropped
        """
        with self._stream_lock:
            dropped = self.queue.clear_pending()
            if self._stream_active and not self.queue.has_program_work():
                self._stream_active = False
                self._emit("stream_state", "stopped", "purged")
        if dropped:
            logger.info(f"Purged {dropped} pending commands")
        self._emit_buffer_fill()
        return dropped

    def queue_busy(self) -> bool:
        """Return True while commands are pending or unacknowledged."""
        with self._stream_lock:
            return not self.queue.is_empty()

    def wait_for_completion(self, timeout_s: float = 0.0) -> bool:
        """Block until both FIFOs drain (0 waits forever).

        Returns:
            False on timeout or if the session ended first
        """
        start = time.time()
        while True:
            if not self.is_connected():
                return False
            if not self.queue_busy():
                return True
            if timeout_s and (time.time() - start) > timeout_s:
                return False
            time.sleep(0.01)

    # ========================================================================
    # ACKNOWLEDGEMENTS
    # ========================================================================

    def _on_acknowledgement(self, code: int | None = None, description: str | None = None) -> None:
        """Handle ``ok`` (code None) or ``error:N`` for the in-flight head."""
        with self._stream_lock:
            entry = self.queue.acknowledge()
            self._last_ack_ts = time.time()
            if entry is None:
                logger.warning("Acknowledgement with nothing in flight; ignoring")
                return
            command = entry.command
            if command.is_program:
                self._last_acked_line = command.source_line
            if code is None:
                self._emit("ack", command)
                if command.raw_text.upper() == CMD_VIEW_SETTINGS:
                    logger.debug(f"Settings dump complete ({len(self.model.settings)} settings)")
                    self._emit("settings_done", dict(self.model.settings))
            else:
                error = ErrorEvent(code=code, description=description or "", command=command)
                logger.warning(
                    f"GRBL error:{code} ({error.description}) for '{command.raw_text}'"
                    + (f" at line {command.source_line}" if command.source_line else "")
                )
                self._emit("error", error)
                if self.config.pause_on_error and command.is_program:
                    self._pause_on_error()
            if command.is_program and self._program:
                self._emit("progress", command.source_line, self._program[-1].number)
            self.try_push()
            self._check_stream_done()
        self._emit_buffer_fill()

    def _pause_on_error(self) -> None:
        try:
            self.send_realtime(RT_HOLD)
        except TransportWriteError as exc:
            logger.error(f"Pause failed: {exc}")
            return
        self._emit("stream_state", "paused", "error")
        logger.info("Stream paused (error)")

    def _check_stream_done(self) -> None:
        if self._stream_active and not self.queue.has_program_work():
            self._stream_active = False
            self._emit("stream_state", "done", None)
            logger.info("Streaming complete")

    # ========================================================================
    # WIRE
    # ========================================================================

    def _encode_line_payload(self, line: str) -> bytes:
        return (line.strip() + "\n").encode("ascii", errors="replace")

    def _write_line(self, command: Command) -> None:
        """Write one command line to the transport.

        Raises:
            TransportException: If the write fails
        """
        payload = self._encode_line_payload(command.raw_text)
        with self._write_lock:
            self.transport.write(payload)
        serial_logger.debug(f"TX {command.raw_text}")
        self._emit("log_tx", command.raw_text)

    def _emit_buffer_fill(self) -> None:
        """Emit buffer fill status."""
        with self._stream_lock:
            window = max(1, int(self.queue.capacity))
            used = max(0, int(self.queue.in_flight_total))

        if used > window:
            used = window

        pct = int(round((used / window) * 100))
        payload = (pct, used, window)

        # Rate limit updates
        now = time.time()
        if (payload == self._last_buffer_emit and
            (now - self._last_buffer_emit_ts) < BUFFER_EMIT_INTERVAL):
            return

        self._last_buffer_emit = payload
        self._last_buffer_emit_ts = now
        self._emit("buffer_fill", pct, used, window)
