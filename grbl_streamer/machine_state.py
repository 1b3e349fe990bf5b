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

"""Controller state model.

``ControllerStateModel`` holds everything the host knows about the device:
machine state, positions, the cached work offset, overrides, the settings
table and the modal state. It is mutated only by parsed device input and the
local soft-reset/disconnect transitions; callers serialize access.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from .types import (
    ControllerSnapshot,
    MachineState,
    OverrideValues,
    Position,
    STREAM_BLOCKING_STATES,
    StatusReport,
)
from .utils.constants import (
    OVERRIDE_DEFAULT,
    OVERRIDE_FEED,
    OVERRIDE_MAX,
    OVERRIDE_MIN,
    OVERRIDE_RAPID,
    OVERRIDE_SPINDLE,
)

logger = logging.getLogger(__name__)


def _subtract(a: Position, b: Position) -> Position:
    return tuple(x - y for x, y in zip(a, b))


def _add(a: Position, b: Position) -> Position:
    return tuple(x + y for x, y in zip(a, b))


def _clamp_override(value: int) -> int:
    return max(OVERRIDE_MIN, min(OVERRIDE_MAX, int(value)))


class ControllerStateModel:
    """Aggregated device state with alarm latching and override prediction."""

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        """Forget everything (disconnect)."""
        self.state = MachineState.UNKNOWN
        self.sub_state: int | None = None
        self.machine_position: Position | None = None
        self.work_position: Position | None = None
        self.work_offset: Position | None = None
        self.feed_rate: float | None = None
        self.spindle_speed: float | None = None
        self.buffer_report: tuple[int, int] | None = None
        self.line_number: int | None = None
        self.pins: str | None = None
        self.last_status: StatusReport | None = None
        self.overrides = OverrideValues()
        self.settings: dict[int, str] = {}
        self.startup_blocks: dict[str, str] = {}
        self.modal_state: dict[str, str] = {}
        self.version: str | None = None
        self.ready = False
        self.alarm_active = False
        self.alarm_code: int | None = None
        self.recovery_issued = False

    # ========================================================================
    # DEVICE INPUT
    # ========================================================================

    def apply_status(self, report: StatusReport) -> StatusReport:
        """Fold a status report into the model.

        Fills in the missing one of MPos/WPos from the cached work offset and
        corrects predicted overrides from the reported ``Ov:`` field.

        Returns:
            The report with derived positions filled in
        """
        if report.work_offset is not None:
            self.work_offset = report.work_offset

        mpos = report.machine_position
        wpos = report.work_position
        if self.work_offset is not None:
            if mpos is not None and wpos is None:
                wpos = _subtract(mpos, self.work_offset)
            elif wpos is not None and mpos is None:
                mpos = _add(wpos, self.work_offset)
        report = replace(
            report,
            machine_position=mpos,
            work_position=wpos,
            work_offset=report.work_offset or self.work_offset,
        )

        self._apply_reported_state(report.machine_state, report.sub_state)

        if mpos is not None:
            self.machine_position = mpos
        if wpos is not None:
            self.work_position = wpos
        if report.feed_rate is not None:
            self.feed_rate = report.feed_rate
        if report.spindle_speed is not None:
            self.spindle_speed = report.spindle_speed
        if report.buffer is not None:
            self.buffer_report = report.buffer
        if report.line_number is not None:
            self.line_number = report.line_number
        self.pins = report.pins
        if report.overrides is not None:
            self.apply_reported_overrides(report.overrides)
        self.last_status = report
        self.ready = True
        return report

    def _apply_reported_state(self, state: MachineState, sub_state: int | None) -> None:
        if state is MachineState.ALARM:
            self.alarm_active = True
            self.state = MachineState.ALARM
            self.sub_state = sub_state
            return
        if self.alarm_active:
            if not self.recovery_issued:
                # Stale report from before the alarm; stay latched.
                return
            logger.info(f"Alarm cleared (state {state.value})")
            self.alarm_active = False
            self.alarm_code = None
            self.recovery_issued = False
        self.state = state
        self.sub_state = sub_state

    def apply_alarm(self, code: int | None) -> None:
        self.alarm_active = True
        self.alarm_code = code
        self.recovery_issued = False
        self.state = MachineState.ALARM
        self.sub_state = None

    def note_recovery_issued(self) -> None:
        """An unlock, homing cycle or soft reset went out to the device."""
        if self.alarm_active:
            self.recovery_issued = True

    def apply_startup(self, version: str | None) -> None:
        self.version = version
        self.ready = True
        if self.alarm_active:
            self.recovery_issued = True
        self.state = MachineState.UNKNOWN
        self.sub_state = None

    def apply_setting(self, setting_id: int, value: str) -> None:
        self.settings[int(setting_id)] = value

    def apply_startup_block(self, key: str, value: str) -> None:
        """Record a ``$N0=`` style startup block (empty when unset)."""
        self.startup_blocks[key.upper()] = value

    def apply_modal(self, modal_state: dict[str, str]) -> None:
        self.modal_state.update(modal_state)

    def set_unknown(self) -> None:
        """Soft reset: the device state is unknown until it reports again."""
        self.state = MachineState.UNKNOWN
        self.sub_state = None
        self.ready = False
        self.note_recovery_issued()

    @property
    def stream_blocked(self) -> bool:
        return self.alarm_active or self.state in STREAM_BLOCKING_STATES

    # ========================================================================
    # OVERRIDES
    # ========================================================================

    def predict_override(self, kind: str, mode: str, amount: int) -> OverrideValues:
        """Apply the expected effect of an override byte before GRBL reports it."""
        current = self.overrides
        values = {
            OVERRIDE_FEED: current.feed,
            OVERRIDE_RAPID: current.rapid,
            OVERRIDE_SPINDLE: current.spindle,
        }
        if mode == "set":
            values[kind] = int(amount)
        else:
            values[kind] = _clamp_override(values[kind] + int(amount))
        self.overrides = OverrideValues(
            feed=values[OVERRIDE_FEED],
            rapid=values[OVERRIDE_RAPID],
            spindle=values[OVERRIDE_SPINDLE],
            predicted=True,
            generation=current.generation,
        )
        return self.overrides

    def apply_reported_overrides(self, reported: tuple[int, int, int]) -> bool:
        """Overwrite local values with the device's; returns True on correction."""
        feed, rapid, spindle = reported
        current = self.overrides
        differs = (current.feed, current.rapid, current.spindle) != (feed, rapid, spindle)
        if not differs and not current.predicted:
            return False
        if differs:
            logger.debug(
                f"Override correction: {current.feed}/{current.rapid}/{current.spindle}"
                f" -> {feed}/{rapid}/{spindle}"
            )
        self.overrides = OverrideValues(
            feed=feed,
            rapid=rapid,
            spindle=spindle,
            predicted=False,
            generation=current.generation + 1,
        )
        return True

    def reset_overrides(self) -> None:
        self.overrides = OverrideValues(
            feed=OVERRIDE_DEFAULT,
            rapid=OVERRIDE_DEFAULT,
            spindle=OVERRIDE_DEFAULT,
            generation=self.overrides.generation,
        )

    # ========================================================================
    # SNAPSHOT
    # ========================================================================

    def snapshot(
        self,
        *,
        pending_count: int = 0,
        in_flight_count: int = 0,
        buffer_used: int = 0,
        buffer_capacity: int = 0,
        last_acked_line: int | None = None,
    ) -> ControllerSnapshot:
        return ControllerSnapshot(
            state=self.state,
            sub_state=self.sub_state,
            machine_position=self.machine_position,
            work_position=self.work_position,
            work_offset=self.work_offset,
            feed_rate=self.feed_rate,
            spindle_speed=self.spindle_speed,
            overrides=self.overrides,
            buffer_report=self.buffer_report,
            pending_count=pending_count,
            in_flight_count=in_flight_count,
            buffer_used=buffer_used,
            buffer_capacity=buffer_capacity,
            alarm_code=self.alarm_code,
            ready=self.ready,
            last_acked_line=last_acked_line,
            modal_state=dict(self.modal_state),
        )
