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

"""Pending and in-flight command FIFOs with buffer accounting.

GRBL acknowledges lines strictly in order, so the host keeps two FIFOs:
commands waiting to be sent and commands sent but not yet acknowledged.
The in-flight total is the host's model of GRBL's serial RX buffer.

The queue itself is not locked; the controller serializes every call with
its stream lock.
"""

from __future__ import annotations

import itertools
import logging
import time
from collections import deque
from typing import Iterable

from .types import Command, CommandKind, InFlightEntry
from .utils.constants import (
    ACCOUNTING_BYTES,
    ACCOUNTING_LINES,
    ALARM_RECOVERY_PREFIXES,
    BUFFER_CAPACITY_BYTES,
    MAX_LINE_LENGTH,
)
from .utils.exceptions import GrblBufferOverflowException, InvalidParameterError
from .utils.validation import validate_accounting_mode, validate_capacity

logger = logging.getLogger(__name__)


def is_recovery_command(text: str) -> bool:
    """True for commands GRBL accepts while alarm-locked ($X, $H)."""
    upper = text.strip().upper()
    return any(upper.startswith(prefix) for prefix in ALARM_RECOVERY_PREFIXES)


class CommandQueue:
    """Two FIFOs plus the in-flight footprint total.

    Args:
        capacity: Buffer capacity in accounting units
        accounting: "bytes" (line length plus newline) or "lines" (1 per command)
    """

    def __init__(self, capacity: int = BUFFER_CAPACITY_BYTES, accounting: str = ACCOUNTING_BYTES):
        self.capacity = validate_capacity(capacity)
        self.accounting = validate_accounting_mode(accounting)
        self._pending: deque[Command] = deque()
        self._in_flight: deque[InFlightEntry] = deque()
        self._in_flight_total = 0
        self._ids = itertools.count(1)

    # ========================================================================
    # COMMAND CONSTRUCTION
    # ========================================================================

    def footprint_for(self, text: str) -> int:
        if self.accounting == ACCOUNTING_LINES:
            return 1
        return len((text + "\n").encode("ascii", errors="replace"))

    def make_command(
        self,
        text: str,
        kind: CommandKind = CommandKind.SYSTEM,
        source_line: int | None = None,
    ) -> Command:
        """Build a command from one line of text.

        Raises:
            InvalidParameterError: If the text is empty or spans several lines
        """
        line = (text or "").strip()
        if not line:
            raise InvalidParameterError("command", text, "must be non-empty")
        if "\n" in line or "\r" in line:
            raise InvalidParameterError("command", text, "must be a single line")
        if len(line) + 1 > MAX_LINE_LENGTH:
            logger.warning(f"Line exceeds GRBL's {MAX_LINE_LENGTH}-character limit: '{line}'")
        return Command(
            id=next(self._ids),
            raw_text=line,
            kind=kind,
            footprint=self.footprint_for(line),
            source_line=source_line,
        )

    # ========================================================================
    # PENDING FIFO
    # ========================================================================

    def enqueue(self, command: Command, *, front: bool = False) -> None:
        """Append a command to the pending FIFO; never blocks.

        ``front=True`` is reserved for alarm-recovery commands.

        Raises:
            GrblBufferOverflowException: For an oversized system command while
                another oversized command is still in flight
        """
        if (
            command.kind is not CommandKind.PROGRAM
            and command.footprint > self.capacity
            and self.oversized_in_flight()
        ):
            raise GrblBufferOverflowException(
                f"Command '{command.raw_text}' ({command.footprint}) exceeds buffer "
                f"capacity {self.capacity} while another oversized command is in flight"
            )
        if front:
            self._pending.appendleft(command)
        else:
            self._pending.append(command)

    def extend(self, commands: Iterable[Command]) -> int:
        count = 0
        for command in commands:
            self.enqueue(command)
            count += 1
        return count

    def peek_pending(self) -> Command | None:
        return self._pending[0] if self._pending else None

    def fits(self, command: Command) -> bool:
        """True if the command may be sent now without overrunning GRBL."""
        if self._in_flight_total + command.footprint <= self.capacity:
            return True
        # An oversized command goes out alone.
        return not self._in_flight and command.footprint > self.capacity

    def pop_for_send(self, now: float | None = None) -> InFlightEntry:
        """Move the pending head into the in-flight FIFO.

        Raises:
            IndexError: If nothing is pending
        """
        command = self._pending.popleft()
        entry = InFlightEntry(command=command, sent_at=time.time() if now is None else now)
        self._in_flight.append(entry)
        self._in_flight_total += command.footprint
        return entry

    def unsend(self, entry: InFlightEntry) -> None:
        """Return the most recently sent entry to the pending head (failed write)."""
        if self._in_flight and self._in_flight[-1] is entry:
            self._in_flight.pop()
            self._in_flight_total = max(0, self._in_flight_total - entry.command.footprint)
            self._pending.appendleft(entry.command)

    def clear_pending(self) -> int:
        count = len(self._pending)
        self._pending.clear()
        return count

    def drop_pending(self, kind: CommandKind) -> int:
        """Remove pending commands of one kind (e.g. queued jogs)."""
        kept = deque(cmd for cmd in self._pending if cmd.kind is not kind)
        dropped = len(self._pending) - len(kept)
        self._pending = kept
        return dropped

    def pending_commands(self) -> tuple[Command, ...]:
        return tuple(self._pending)

    # ========================================================================
    # IN-FLIGHT FIFO
    # ========================================================================

    def acknowledge(self) -> InFlightEntry | None:
        """Pop the in-flight head and free its footprint.

        Returns:
            The acknowledged entry, or None if nothing was in flight
        """
        if not self._in_flight:
            return None
        entry = self._in_flight.popleft()
        self._in_flight_total = max(0, self._in_flight_total - entry.command.footprint)
        return entry

    def head(self) -> InFlightEntry | None:
        return self._in_flight[0] if self._in_flight else None

    def in_flight_entries(self) -> tuple[InFlightEntry, ...]:
        return tuple(self._in_flight)

    def oversized_in_flight(self) -> bool:
        return any(entry.command.footprint > self.capacity for entry in self._in_flight)

    def clear_in_flight(self) -> int:
        count = len(self._in_flight)
        self._in_flight.clear()
        self._in_flight_total = 0
        return count

    def clear(self) -> tuple[int, int]:
        """Clear both FIFOs.

        Returns:
            (pending dropped, in-flight dropped)
        """
        return self.clear_pending(), self.clear_in_flight()

    # ========================================================================
    # ACCOUNTING
    # ========================================================================

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    @property
    def in_flight_total(self) -> int:
        return self._in_flight_total

    def has_program_work(self) -> bool:
        """True while any program command is pending or unacknowledged."""
        return any(cmd.is_program for cmd in self._pending) or any(
            entry.command.is_program for entry in self._in_flight
        )

    def program_in_flight(self) -> bool:
        return any(entry.command.is_program for entry in self._in_flight)

    def is_empty(self) -> bool:
        return not self._pending and not self._in_flight
