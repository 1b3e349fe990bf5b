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

"""GRBL streaming controller.

This module composes the connection, streaming, command and status mixins
into ``GrblController``: queue management with character-counting flow
control, response and status parsing, realtime byte injection and
resume-from-line recovery over one transport.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Mapping

from .command_queue import CommandQueue
from .controller_commands import GrblCommandMixin
from .controller_connection import GrblConnectionMixin
from .controller_status import GrblStatusMixin
from .controller_streaming import GrblStreamingMixin
from .event_bus import EventBus
from .machine_state import ControllerStateModel
from .resume import ResumeCoordinator
from .response_parser import ResponseParser
from .transport.base import Transport
from .utils.config import ControllerConfig

logger = logging.getLogger(__name__)


class GrblController(
    GrblConnectionMixin,
    GrblStreamingMixin,
    GrblCommandMixin,
    GrblStatusMixin,
):
    """Streams G-code to a GRBL 1.1 device and tracks its state.

    Collaborators are injected; anything not given is built from ``config``.
    Can be used as a context manager for automatic cleanup.

    Example:
        transport = open_transport("/dev/ttyUSB0", 115200)
        with GrblController(transport) as grbl:
            grbl.connect()
            grbl.enqueue_program(load_program_file("part.nc"))
            grbl.wait_for_completion()
    """

    def __init__(
        self,
        transport: Transport | None = None,
        config: ControllerConfig | Mapping | None = None,
        event_q: queue.Queue | None = None,
        *,
        parser: ResponseParser | None = None,
        command_queue: CommandQueue | None = None,
        model: ControllerStateModel | None = None,
        events: EventBus | None = None,
    ):
        """Initialize the controller.

        Args:
            transport: Byte transport to the device (may also be given to connect())
            config: ControllerConfig or a mapping of config keys
            event_q: Optional queue that receives every event
        """
        if config is None:
            config = ControllerConfig()
        elif not isinstance(config, ControllerConfig):
            config = ControllerConfig.from_mapping(config, use_env=False)
        self.config = config
        self.transport = transport

        self.parser = parser or ResponseParser()
        self.queue = command_queue or CommandQueue(config.capacity, config.buffer_accounting)
        self.model = model or ControllerStateModel()
        self.events = events or EventBus()
        if event_q is not None:
            self.event_q = event_q
            self.events.add_subscriber(event_q)
        else:
            self.event_q = None

        # Worker threads
        self._rx_thread: threading.Thread | None = None
        self._status_thread: threading.Thread | None = None
        self._stop_evt = threading.Event()

        # Thread synchronization
        self._stream_lock = threading.RLock()
        self._write_lock = threading.Lock()
        self._status_interval_lock = threading.Lock()

        # Streaming state
        self._program = []
        self._last_acked_line: int | None = None
        self._stream_active = False
        self._awaiting_startup = False
        self._last_ack_ts = time.time()
        self._last_rx_ts = time.time()
        self._last_buffer_emit: tuple[int, int, int] | None = None
        self._last_buffer_emit_ts = 0.0

        # Watchdog
        self._watchdog_ignore_until = 0.0
        self._watchdog_ignore_reason: str | None = None

        # Status polling
        self._status_poll_interval = config.status_poll_interval
        self._status_query_failures = 0
        self._status_query_failure_limit = config.status_query_failure_limit

        self.resumer = ResumeCoordinator(
            self.model,
            enqueue=self.enqueue,
            clear_pending=self.queue.clear_pending,
            program=self.program,
        )

    # ========================================================================
    # CONTEXT MANAGER SUPPORT
    # ========================================================================

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - ensures cleanup."""
        try:
            self.disconnect()
        except Exception as e:
            logger.error(f"Error during cleanup: {e}")
        return False  # Don't suppress exceptions
