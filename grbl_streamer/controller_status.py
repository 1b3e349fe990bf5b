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

"""Inbound line handling, status polling and the acknowledgement watchdog."""

from __future__ import annotations

import logging
import threading
import time

from .response_parser import ParsedResponse, ResponseKind, parse_modal_state
from .types import AlarmEvent, GrblControllerState, StatusReport, WATCHDOG_EXEMPT_STATES
from .utils.constants import (
    GRBL_SETTING_DESC,
    RT_STATUS,
    STATUS_POLL_INTERVAL_MIN,
    STATUS_QUERY_BACKOFF_BASE,
    STATUS_QUERY_BACKOFF_MAX,
    STATUS_QUERY_FAILURE_LIMIT_MAX,
    STATUS_QUERY_FAILURE_LIMIT_MIN,
)
from .utils.grbl_errors import annotate_grbl_message
from .utils.logging_config import SERIAL_LOGGER_NAME
from .utils.validation import validate_interval

logger = logging.getLogger(__name__)
serial_logger = logging.getLogger(SERIAL_LOGGER_NAME)


class GrblStatusMixin(GrblControllerState):
    def set_status_poll_interval(self, interval: float) -> None:
        """Set status polling interval.

        Args:
            interval: Polling interval in seconds

        Raises:
            InvalidParameterError: If interval is invalid
        """
        interval = validate_interval(interval, min_val=STATUS_POLL_INTERVAL_MIN)

        with self._status_interval_lock:
            self._status_poll_interval = interval

        logger.debug(f"Status poll interval set to {interval}s")

    def set_status_query_failure_limit(self, limit: int) -> None:
        """Set the number of consecutive status failures before disconnect."""
        limit = max(STATUS_QUERY_FAILURE_LIMIT_MIN, min(STATUS_QUERY_FAILURE_LIMIT_MAX, int(limit)))
        self._status_query_failure_limit = limit
        logger.debug(f"Status query failure limit set to {limit}")

    def suspend_watchdog(self, seconds: float, reason: str | None = None) -> None:
        """Suspend watchdog checks for a duration."""
        seconds = float(seconds)
        if seconds <= 0:
            return
        until = time.time() + seconds
        if until <= self._watchdog_ignore_until:
            return
        self._watchdog_ignore_until = until
        self._watchdog_ignore_reason = reason

    def clear_watchdog_ignore(self, reason: str | None = None) -> None:
        """Clear an active watchdog suspension."""
        if reason is None or self._watchdog_ignore_reason == reason:
            self._watchdog_ignore_until = 0.0
            self._watchdog_ignore_reason = None

    # ========================================================================
    # INBOUND LINES
    # ========================================================================

    def handle_line(self, line: str) -> ParsedResponse | None:
        """Process one line received from GRBL.

        Called by the reader thread; tests and custom transports may call it
        directly.

        Returns:
            The parsed response, or None for blank lines
        """
        line = (line or "").strip()
        if not line:
            return None
        self._last_rx_ts = time.time()
        parsed = self.parser.parse(line)
        kind = parsed.kind

        if kind is ResponseKind.STATUS:
            serial_logger.debug(f"RX {line}")
        else:
            serial_logger.info(f"RX {annotate_grbl_message(line)}")
            self._emit("log_rx", line)

        if kind is ResponseKind.OK:
            self._on_acknowledgement()
        elif kind is ResponseKind.ERROR:
            self._on_acknowledgement(parsed.code, parsed.description)
        elif kind is ResponseKind.ALARM:
            self._handle_alarm(parsed.code, parsed.description or line)
        elif kind is ResponseKind.STATUS:
            self._handle_status(parsed.status)
        elif kind is ResponseKind.SETTING and parsed.setting_id is None:
            with self._stream_lock:
                self.model.apply_startup_block(parsed.setting_key, parsed.value)
            self._emit("startup_block", parsed.setting_key, parsed.value)
        elif kind is ResponseKind.SETTING:
            with self._stream_lock:
                self.model.apply_setting(parsed.setting_id, parsed.value)
            desc = GRBL_SETTING_DESC.get(parsed.setting_id)
            if desc:
                logger.debug(f"${parsed.setting_id}={parsed.value} ({desc})")
            self._emit("setting", parsed.setting_id, parsed.value)
        elif kind is ResponseKind.STARTUP:
            self._handle_startup(parsed)
        elif kind is ResponseKind.FEEDBACK:
            self._handle_feedback(parsed)
        else:
            logger.debug(f"Unknown line from GRBL: {line}")
            self._emit("unknown", line)
        return parsed

    def _handle_alarm(self, code: int | None, description: str) -> None:
        """Latch the alarm; pushing halts and the in-flight FIFO is kept."""
        event = AlarmEvent(code=code, description=description)
        with self._stream_lock:
            self.model.apply_alarm(code)
            was_streaming = self._stream_active
        if code is not None:
            logger.error(f"GRBL ALARM:{code} ({description})")
        else:
            logger.error(f"GRBL ALARM ({description})")
        self._emit("alarm", event)
        if was_streaming:
            self._emit("stream_state", "alarm", description)
        self._emit_state()

    def _handle_status(self, report: StatusReport | None) -> None:
        if report is None:
            return
        with self._stream_lock:
            previous = (self.model.state, self.model.alarm_active, self.model.overrides.generation)
            was_ready = self.model.ready
            report = self.model.apply_status(report)
            current = (self.model.state, self.model.alarm_active, self.model.overrides.generation)
            alarm_cleared = previous[1] and not self.model.alarm_active
            # The latch may have lifted or the door closed.
            self.try_push()
        if not was_ready:
            self._emit("ready", True)
        if alarm_cleared and self._stream_active:
            self._emit("stream_state", "running", None)
        self._emit("status", report)
        if current != previous:
            self._emit_state()

    def _handle_startup(self, parsed: ParsedResponse) -> None:
        """Startup banner: GRBL reset, so anything in flight is gone."""
        with self._stream_lock:
            expected = self._awaiting_startup
            program_lost = self.queue.program_in_flight()
            stale = self.queue.clear_in_flight()
            interrupted_at = None
            if not expected and program_lost:
                dropped = self.queue.clear_pending()
                interrupted_at = self._last_acked_line
                self._stream_active = False
                logger.warning(
                    f"Unexpected GRBL reset during streaming; dropped {stale} in-flight and "
                    f"{dropped} pending commands (last acknowledged line {interrupted_at})"
                )
            elif stale:
                logger.info(f"Startup banner cleared {stale} stale in-flight commands")
            self._awaiting_startup = False
            self._last_ack_ts = time.time()
            self.model.apply_startup(parsed.version)
        logger.info(f"GRBL ready ({parsed.raw})")
        if not expected and program_lost:
            self._emit("stream_interrupted", interrupted_at, "unexpected device reset")
            self._emit("stream_state", "stopped", "unexpected device reset")
        self._emit("startup", parsed.version or parsed.raw)
        self._emit("ready", True)
        self._emit_state()
        self.try_push()
        self._emit_buffer_fill()

    def _handle_feedback(self, parsed: ParsedResponse) -> None:
        if parsed.requires_reset:
            self._handle_alarm(None, parsed.value or parsed.raw)
        elif parsed.tag == "GC":
            with self._stream_lock:
                self.model.apply_modal(parse_modal_state(parsed.value or ""))
        self._emit("feedback", parsed.tag or "", parsed.value or "")

    # ========================================================================
    # WATCHDOG
    # ========================================================================

    def check_ack_timeout(self, now: float | None = None) -> bool:
        """Trip the session if the link went silent with a command in flight.

        The wait is measured from the latest of the head's send time, the last
        acknowledgement and the last line of any kind received from GRBL.
        Status replies count, since GRBL holds back the ``ok`` for
        synchronizing lines (M5, G4) until the motion before them ends.
        Skipped in Hold, Door and Alarm and while the watchdog is suspended
        (homing).

        Returns:
            True if the watchdog tripped
        """
        timeout = float(self.config.ack_timeout)
        if timeout <= 0:
            return False
        now = time.time() if now is None else now
        with self._stream_lock:
            head = self.queue.head()
            if head is None:
                return False
            if self.model.alarm_active or self.model.state in WATCHDOG_EXEMPT_STATES:
                return False
            if now < self._watchdog_ignore_until:
                return False
            waited = now - max(head.sent_at, self._last_ack_ts, self._last_rx_ts)
            if waited <= timeout:
                return False
            reason = f"No response from GRBL for {waited:.1f}s (waiting on '{head.command.raw_text}')"
        logger.error(f"Ack watchdog: {reason}")
        self._signal_disconnect(reason)
        return True

    # ========================================================================
    # STATUS THREAD
    # ========================================================================

    def _status_loop(self, stop_evt: threading.Event) -> None:
        """Status polling thread - periodically requests status.

        Args:
            stop_evt: Event to signal thread shutdown
        """
        logger.debug("Status thread started")

        try:
            while not stop_evt.is_set():
                if self.is_connected():
                    try:
                        self.send_realtime(RT_STATUS)
                        self._status_query_failures = 0
                    except Exception as e:
                        self._status_query_failures += 1
                        logger.error(
                            f"Status query failed ({self._status_query_failures}/"
                            f"{self._status_query_failure_limit}): {e}"
                        )
                        if self._status_query_failures >= self._status_query_failure_limit:
                            self._signal_disconnect(f"Status query error: {e}")
                            stop_evt.set()
                            break
                        backoff = min(
                            STATUS_QUERY_BACKOFF_MAX,
                            STATUS_QUERY_BACKOFF_BASE * self._status_query_failures,
                        )
                        if stop_evt.wait(backoff):
                            break
                        continue

                    if self.check_ack_timeout():
                        stop_evt.set()
                        break

                # Get current interval
                with self._status_interval_lock:
                    interval = self._status_poll_interval

                # Wait for interval or stop signal
                if stop_evt.wait(interval):
                    break

        except Exception as e:
            logger.error(f"Status thread error: {e}", exc_info=True)
            self._signal_disconnect(f"Status thread error: {e}")
            stop_evt.set()

        finally:
            logger.debug("Status thread stopped")
