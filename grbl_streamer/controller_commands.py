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

"""Realtime bytes, overrides, system commands and jogging."""

from __future__ import annotations

import logging
from typing import Mapping, Sequence

from .command_queue import is_recovery_command
from .types import Command, CommandKind, GrblControllerState, ResumeResult
from .utils.constants import (
    CMD_GO_TO_WORK_ZERO,
    CMD_HOME,
    CMD_UNLOCK,
    CMD_VIEW_BUILD_INFO,
    CMD_VIEW_PARAMETERS,
    CMD_VIEW_PARSER_STATE,
    CMD_VIEW_SETTINGS,
    CMD_ZERO_WORK_POSITION,
    OVERRIDE_BYTES,
    RT_FLOOD_TOGGLE,
    RT_HOLD,
    RT_JOG_CANCEL,
    RT_MIST_TOGGLE,
    RT_RESET,
    RT_RESUME,
    RT_SAFETY_DOOR,
    RT_SPINDLE_STOP,
)
from .utils.exceptions import (
    GrblAlarmException,
    GrblNotConnectedException,
    InvalidParameterError,
    TransportException,
    TransportWriteError,
)
from .utils.logging_config import SERIAL_LOGGER_NAME
from .utils.validation import (
    validate_coordinate,
    validate_feed_rate,
    validate_override,
    validate_unit_mode,
)

logger = logging.getLogger(__name__)
serial_logger = logging.getLogger(SERIAL_LOGGER_NAME)

_JOG_AXES = ("X", "Y", "Z")


class GrblCommandMixin(GrblControllerState):
    # ========================================================================
    # REALTIME CHANNEL
    # ========================================================================

    def send_realtime(self, command: bytes) -> None:
        """Send real-time command (no newline).

        Real-time commands are processed immediately by GRBL without
        waiting for buffer space or acknowledgment. Only the write lock is
        taken, so this never waits on the queue.

        Args:
            command: Real-time command byte(s)

        Raises:
            GrblNotConnectedException: If not connected
            TransportWriteError: If write fails
        """
        if not self.is_connected():
            raise GrblNotConnectedException("Cannot send real-time command - not connected")

        try:
            with self._write_lock:
                self.transport.write(command)
        except TransportWriteError:
            raise
        except (TransportException, OSError) as e:
            raise TransportWriteError(f"Realtime write failed: {e}")
        if command != b"?":
            serial_logger.debug(f"TX RT 0x{command.hex()}")

    def pause(self) -> None:
        """Send feed hold command (!) to pause motion."""
        self.send_realtime(RT_HOLD)
        if self._stream_active:
            self._emit("stream_state", "paused", None)
        logger.info("Feed hold")

    def resume_realtime(self) -> None:
        """Send cycle start command (~) to resume motion."""
        self.send_realtime(RT_RESUME)
        if self._stream_active:
            self._emit("stream_state", "running", None)
        logger.info("Cycle start")

    def soft_reset(self) -> None:
        """Send soft reset (Ctrl-X).

        Immediately halts all motion and resets GRBL. Both FIFOs are cleared
        and nothing is pushed until the startup banner arrives.
        """
        with self._stream_lock:
            self.send_realtime(RT_RESET)
            was_streaming = self._stream_active
            self._clear_queues("soft reset")
            self._stream_active = False
            self._awaiting_startup = True
            self.model.set_unknown()
            self.model.reset_overrides()
        logger.info("Soft reset sent")
        self._emit("ready", False)
        if was_streaming:
            self._emit("stream_state", "stopped", "soft reset")
        self._emit_buffer_fill()
        self._emit_state()

    def jog_cancel(self) -> None:
        """Cancel the active jog and drop queued jog commands."""
        self.send_realtime(RT_JOG_CANCEL)
        with self._stream_lock:
            dropped = self.queue.drop_pending(CommandKind.JOG)
        if dropped:
            logger.debug(f"Dropped {dropped} queued jog commands")
        self._emit_buffer_fill()

    def safety_door(self) -> None:
        self.send_realtime(RT_SAFETY_DOOR)

    def toggle_spindle_stop(self) -> None:
        self.send_realtime(RT_SPINDLE_STOP)

    def toggle_flood(self) -> None:
        self.send_realtime(RT_FLOOD_TOGGLE)

    def toggle_mist(self) -> None:
        self.send_realtime(RT_MIST_TOGGLE)

    def set_override(self, kind: str, delta: str | int) -> tuple[int, int, int]:
        """Send a feed/rapid/spindle override byte.

        The new percentage is predicted locally (clamped to 10-200) and
        corrected by the next ``Ov:`` status field.

        Args:
            kind: "feed", "rapid" or "spindle"
            delta: "reset", "+10", "-10", "+1", "-1"; for rapid "100", "50", "25"

        Returns:
            Predicted (feed, rapid, spindle) percentages

        Raises:
            InvalidParameterError: For an unsupported kind/delta
        """
        kind, token = validate_override(kind, str(delta))
        data, mode, amount = OVERRIDE_BYTES[(kind, token)]
        self.send_realtime(data)
        with self._stream_lock:
            predicted = self.model.predict_override(kind, mode, amount)
        logger.debug(f"Override {kind} {token} -> {predicted.feed}/{predicted.rapid}/{predicted.spindle}")
        self._emit_state()
        return predicted.feed, predicted.rapid, predicted.spindle

    # ========================================================================
    # QUEUED COMMANDS
    # ========================================================================

    def send_system_command(self, command: str) -> Command:
        """Queue a system/console command.

        ``$X`` and ``$H`` jump the queue so they reach GRBL during an alarm.
        ``$H`` suspends the acknowledgement watchdog for the homing timeout.

        Raises:
            GrblNotConnectedException: If not connected
            GrblBufferOverflowException: See CommandQueue.enqueue
        """
        if not self.is_connected():
            raise GrblNotConnectedException("Cannot send command - not connected")
        text = (command or "").strip()
        kind = CommandKind.JOG if text.upper().startswith("$J=") else CommandKind.SYSTEM
        recovery = is_recovery_command(text)
        if text.upper().startswith(CMD_HOME):
            timeout = float(self.config.homing_timeout)
            if timeout > 0:
                self.suspend_watchdog(timeout, reason="homing")
                logger.debug(f"Watchdog homing grace {timeout:g}s")
        return self.enqueue(text, kind, front=recovery)

    def unlock(self) -> Command:
        """Send unlock command ($X) to clear alarm state."""
        return self.send_system_command(CMD_UNLOCK)

    def home(self) -> Command:
        """Send home command ($H) to run homing cycle."""
        return self.send_system_command(CMD_HOME)

    def request_settings(self) -> Command:
        """Request the settings table ($$)."""
        return self.send_system_command(CMD_VIEW_SETTINGS)

    def request_parser_state(self) -> Command:
        """Request the modal state ($G)."""
        return self.send_system_command(CMD_VIEW_PARSER_STATE)

    def request_parameters(self) -> Command:
        """Request coordinate offsets and probe result ($#)."""
        return self.send_system_command(CMD_VIEW_PARAMETERS)

    def request_build_info(self) -> Command:
        return self.send_system_command(CMD_VIEW_BUILD_INFO)

    def zero_work_position(self) -> Command:
        """Make the current position the origin of the active work system (G10 L20)."""
        return self.send_system_command(CMD_ZERO_WORK_POSITION)

    def go_to_work_zero(self) -> Command:
        """Rapid to X0 Y0 of the active work system; Z is left alone."""
        return self.send_system_command(CMD_GO_TO_WORK_ZERO)

    def jog(
        self,
        deltas: Mapping[str, float] | Sequence[float],
        feed_rate: float,
        unit_mode: str = "mm",
    ) -> Command:
        """Execute incremental jog move.

        Args:
            deltas: {"X": dx, ...} or (dx, dy, dz) incremental distances
            feed_rate: Feed rate in mm/min or inches/min
            unit_mode: "mm" or "inch"

        Raises:
            GrblNotConnectedException: If not connected
            GrblAlarmException: If an alarm is active
            InvalidParameterError: If parameters are invalid
        """
        if not self.is_connected():
            raise GrblNotConnectedException("Cannot jog - not connected")
        if self.model.alarm_active:
            raise GrblAlarmException("Cannot jog - alarm active", self.model.alarm_code)

        feed_rate = validate_feed_rate(feed_rate)
        unit_mode = validate_unit_mode(unit_mode)
        if isinstance(deltas, Mapping):
            items = [(str(axis).upper(), value) for axis, value in deltas.items()]
        else:
            items = list(zip(_JOG_AXES, deltas))
        words = []
        for axis, value in items:
            if axis not in ("X", "Y", "Z", "A", "B", "C"):
                raise InvalidParameterError("axis", axis, "unknown axis")
            words.append(f"{axis}{validate_coordinate(value, axis):.4f}")
        if not words:
            raise InvalidParameterError("deltas", deltas, "no axis to jog")

        gunit = "G21" if unit_mode == "mm" else "G20"
        cmd = f"$J={gunit} G91 {' '.join(words)} F{feed_rate:.1f}"
        return self.send_system_command(cmd)

    # ========================================================================
    # RESUME
    # ========================================================================

    def resume_from(
        self,
        target_line: int,
        sync_position: bool = False,
        *,
        restore_modal: bool = True,
    ) -> ResumeResult:
        """Re-stream the last program from ``target_line``.

        Raises:
            GrblNotConnectedException: If not connected
            ResumePreconditionError: Unless the machine is Idle or Hold
        """
        if not self.is_connected():
            raise GrblNotConnectedException("Cannot resume - not connected")
        with self._stream_lock:
            result = self.resumer.resume(
                target_line,
                sync_position,
                restore_modal=restore_modal,
            )
            if result.status == "resumed":
                self._stream_active = True
                self._emit("stream_state", "running", None)
            self._emit("resume", result)
            self.try_push()
        self._emit_buffer_fill()
        return result
