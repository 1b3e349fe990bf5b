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

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, TypeAlias

Position: TypeAlias = tuple[float, ...]


# ============================================================================
# DEVICE STATE
# ============================================================================

class MachineState(str, enum.Enum):
    """Machine state as reported by GRBL status reports."""

    IDLE = "Idle"
    RUN = "Run"
    HOLD = "Hold"
    JOG = "Jog"
    ALARM = "Alarm"
    DOOR = "Door"
    CHECK = "Check"
    HOME = "Home"
    SLEEP = "Sleep"
    UNKNOWN = "Unknown"

    @classmethod
    def from_report(cls, text: str) -> tuple["MachineState", int | None]:
        """Map a reported state token (``Hold:0``, ``Door:1``) to its base state."""
        token = (text or "").strip()
        base, _, sub = token.partition(":")
        sub_state: int | None = None
        if sub.strip().isdigit():
            sub_state = int(sub.strip())
        lowered = base.strip().lower()
        for member in cls:
            if member.value.lower() == lowered:
                return member, sub_state
        return cls.UNKNOWN, sub_state


STREAM_BLOCKING_STATES = (MachineState.ALARM, MachineState.DOOR)
WATCHDOG_EXEMPT_STATES = (MachineState.HOLD, MachineState.DOOR, MachineState.ALARM)
RESUMABLE_STATES = (MachineState.IDLE, MachineState.HOLD)


# ============================================================================
# COMMANDS
# ============================================================================

class CommandKind(str, enum.Enum):
    PROGRAM = "program"
    SYSTEM = "system"
    JOG = "jog"


@dataclass(frozen=True, slots=True)
class Command:
    """A line-oriented command owned by the pending or in-flight FIFO."""

    id: int
    raw_text: str
    kind: CommandKind
    footprint: int
    source_line: int | None = None

    @property
    def is_program(self) -> bool:
        return self.kind is CommandKind.PROGRAM


@dataclass(frozen=True, slots=True)
class InFlightEntry:
    command: Command
    sent_at: float


# ============================================================================
# REPORTS & SNAPSHOTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class StatusReport:
    """One parsed ``<...>`` status report; replaces the previous one."""

    machine_state: MachineState
    sub_state: int | None = None
    machine_position: Position | None = None
    work_position: Position | None = None
    work_offset: Position | None = None
    feed_rate: float | None = None
    spindle_speed: float | None = None
    overrides: tuple[int, int, int] | None = None
    buffer: tuple[int, int] | None = None
    line_number: int | None = None
    pins: str | None = None
    raw: str = ""


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    code: int
    description: str
    command: Command | None = None


@dataclass(frozen=True, slots=True)
class AlarmEvent:
    code: int | None
    description: str


@dataclass(frozen=True, slots=True)
class OverrideValues:
    feed: int = 100
    rapid: int = 100
    spindle: int = 100
    predicted: bool = False
    generation: int = 0


@dataclass(frozen=True, slots=True)
class ControllerSnapshot:
    """Immutable published view of the controller."""

    state: MachineState = MachineState.UNKNOWN
    sub_state: int | None = None
    machine_position: Position | None = None
    work_position: Position | None = None
    work_offset: Position | None = None
    feed_rate: float | None = None
    spindle_speed: float | None = None
    overrides: OverrideValues = field(default_factory=OverrideValues)
    buffer_report: tuple[int, int] | None = None
    pending_count: int = 0
    in_flight_count: int = 0
    buffer_used: int = 0
    buffer_capacity: int = 0
    alarm_code: int | None = None
    ready: bool = False
    last_acked_line: int | None = None
    modal_state: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ResumeRequest:
    target_line: int
    sync_position: bool = False
    restore_modal: bool = True


@dataclass(frozen=True, slots=True)
class ResumeResult:
    status: Literal["resumed", "nothing_to_resume"]
    target_line: int
    queued: int = 0
    preamble: tuple[str, ...] = ()


# ============================================================================
# CONTROLLER STATE DECLARATIONS
# ============================================================================

class GrblControllerState:
    """Attribute and hook declarations shared by the controller mixins."""

    event_q: Any
    events: Any
    config: Any
    transport: Any
    queue: Any
    model: Any
    parser: Any
    resumer: Any

    _stream_lock: threading.RLock
    _write_lock: threading.Lock
    _stop_evt: threading.Event
    _rx_thread: threading.Thread | None
    _status_thread: threading.Thread | None

    _program: list[Any]
    _last_acked_line: int | None
    _stream_active: bool
    _awaiting_startup: bool
    _last_ack_ts: float
    _last_rx_ts: float
    _last_buffer_emit: tuple[int, int, int] | None
    _last_buffer_emit_ts: float

    _watchdog_ignore_until: float
    _watchdog_ignore_reason: str | None

    _status_interval_lock: threading.Lock
    _status_poll_interval: float
    _status_query_failures: int
    _status_query_failure_limit: int

    def is_connected(self) -> bool:
        raise NotImplementedError

    def send_realtime(self, command: bytes) -> None:
        raise NotImplementedError

    def send_system_command(self, command: str) -> Command:
        raise NotImplementedError

    def enqueue(
        self,
        text: str,
        kind: CommandKind = CommandKind.SYSTEM,
        *,
        source_line: int | None = None,
        front: bool = False,
        push: bool = True,
    ) -> Command:
        raise NotImplementedError

    def try_push(self) -> int:
        raise NotImplementedError

    def snapshot(self) -> ControllerSnapshot:
        raise NotImplementedError

    def suspend_watchdog(self, seconds: float, reason: str | None = None) -> None:
        raise NotImplementedError

    def _on_acknowledgement(self, code: int | None = None, description: str | None = None) -> None:
        raise NotImplementedError

    def _emit(self, *event: Any) -> None:
        raise NotImplementedError

    def _emit_buffer_fill(self) -> None:
        raise NotImplementedError

    def _emit_state(self) -> None:
        raise NotImplementedError

    def _clear_queues(self, reason: str | None = None) -> None:
        raise NotImplementedError

    def _signal_disconnect(self, reason: str | None = None) -> None:
        raise NotImplementedError

    def _write_line(self, command: Command) -> None:
        raise NotImplementedError


ControllerEvent = (
    tuple[Literal["conn"], bool, str | None]
    | tuple[Literal["ready"], bool]
    | tuple[Literal["log"], str]
    | tuple[Literal["log_tx"], str]
    | tuple[Literal["log_rx"], str]
    | tuple[Literal["ack"], Command]
    | tuple[Literal["error"], ErrorEvent]
    | tuple[Literal["alarm"], AlarmEvent]
    | tuple[Literal["status"], StatusReport]
    | tuple[Literal["state"], ControllerSnapshot]
    | tuple[Literal["setting"], int, str]
    | tuple[Literal["feedback"], str, str]
    | tuple[Literal["startup"], str]
    | tuple[Literal["unknown"], str]
    | tuple[Literal["buffer_fill"], int, int, int]
    | tuple[Literal["stream_state"], str, Any | None]
    | tuple[Literal["progress"], int, int]
    | tuple[Literal["resume"], ResumeResult]
    | tuple[Literal["stream_interrupted"], int | None, str | None]
    | tuple[Literal["fatal"], str]
)
