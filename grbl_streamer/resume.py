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

"""Resume-from-line support.

The coordinator re-enqueues a program from a chosen source line through the
normal command queue, optionally preceded by a ``G92`` position sync and a
modal preamble rebuilt from the skipped part of the program.
"""

from __future__ import annotations

import logging
from typing import Callable, Sequence

from .program import ProgramLine, clean_gcode_line
from .types import (
    Command,
    CommandKind,
    RESUMABLE_STATES,
    ResumeRequest,
    ResumeResult,
)
from .utils.constants import RESUME_WORD_PAT
from .utils.exceptions import ResumePreconditionError
from .utils.validation import validate_line_number

logger = logging.getLogger(__name__)

_AXES = ("X", "Y", "Z", "A", "B", "C")


def build_resume_preamble(lines: Sequence[str], stop_index: int) -> tuple[list[str], bool]:
    """Rebuild the modal state in effect before ``lines[stop_index]``.

    Covers units, distance mode, plane, arc mode, feed mode, work coordinate
    system, feed rate, spindle and coolant.

    Returns:
        (preamble lines, True if a G92 offset appeared in the skipped part)
    """
    units = None
    distance = None
    plane = None
    feed_mode = None
    arc_mode = None
    coord = None
    spindle = None
    coolant = None
    feed = None
    spindle_speed = None
    has_g92 = False

    def is_code(code: float, target: float) -> bool:
        return abs(code - target) < 1e-3

    for raw in lines[: max(0, stop_index)]:
        s = clean_gcode_line(raw)
        if not s:
            continue
        s = s.upper()
        for w, val in RESUME_WORD_PAT.findall(s):
            if w == "G":
                code = float(val)
                if any(is_code(code, g92) for g92 in (92, 92.1, 92.2, 92.3)):
                    has_g92 = True
                    continue
                gstr = f"G{val}"
                if is_code(code, 20) or is_code(code, 21):
                    units = gstr
                elif is_code(code, 90.1) or is_code(code, 91.1):
                    arc_mode = gstr
                elif is_code(code, 90) or is_code(code, 91):
                    distance = gstr
                elif is_code(code, 17) or is_code(code, 18) or is_code(code, 19):
                    plane = gstr
                elif is_code(code, 93) or is_code(code, 94):
                    feed_mode = gstr
                elif any(is_code(code, wcs) for wcs in (54, 55, 56, 57, 58, 59, 59.1, 59.2, 59.3)):
                    coord = gstr
            elif w == "M":
                code = int(float(val))
                if code in (3, 4, 5):
                    spindle = code
                elif code in (7, 8, 9):
                    coolant = code
            elif w == "F":
                feed = float(val)
            elif w == "S":
                spindle_speed = float(val)

    preamble = []
    for item in (units, distance, plane, arc_mode, feed_mode, coord):
        if item:
            preamble.append(item)
    if feed is not None:
        preamble.append(f"F{feed:g}")
    if spindle is not None:
        if spindle in (3, 4):
            if spindle_speed is not None:
                preamble.append(f"M{spindle} S{spindle_speed:g}")
            else:
                preamble.append(f"M{spindle}")
        else:
            preamble.append("M5")
    if coolant is not None:
        preamble.append(f"M{coolant}")
    return preamble, has_g92


def format_position_sync(position: Sequence[float]) -> str:
    """``G92`` line that declares the current position as ``position``."""
    words = [f"{axis}{value:.3f}" for axis, value in zip(_AXES, position)]
    return "G92 " + " ".join(words)


class ResumeCoordinator:
    """Re-enqueue a program from a source line.

    Args:
        model: The controller state model (state and work position)
        enqueue: Callable that builds and queues a command
            (``enqueue(text, kind, source_line=...)``)
        clear_pending: Callable that drops pending commands before re-queueing
        program: Callable returning the program to resume from
    """

    def __init__(
        self,
        model,
        enqueue: Callable[..., Command],
        clear_pending: Callable[[], int],
        program: Callable[[], Sequence[ProgramLine]],
    ):
        self.model = model
        self._enqueue = enqueue
        self._clear_pending = clear_pending
        self._program = program

    def resume(
        self,
        target_line: int,
        sync_position: bool = False,
        *,
        restore_modal: bool = True,
    ) -> ResumeResult:
        """Queue the program again from ``target_line``.

        Args:
            target_line: 1-based source line to resume from
            sync_position: Send ``G92`` with the reported work position first
            restore_modal: Send the rebuilt modal preamble first

        Returns:
            ResumeResult with status "resumed" or "nothing_to_resume"

        Raises:
            ResumePreconditionError: If the machine is not Idle or Hold, or a
                position sync is requested before any position was reported
            InvalidParameterError: If target_line is not a positive integer
        """
        request = ResumeRequest(
            target_line=validate_line_number(target_line),
            sync_position=bool(sync_position),
            restore_modal=bool(restore_modal),
        )
        return self.execute(request)

    def execute(self, request: ResumeRequest) -> ResumeResult:
        """Carry out a validated resume request; see resume()."""
        target_line = request.target_line
        sync_position = request.sync_position
        state = self.model.state
        if self.model.alarm_active or state not in RESUMABLE_STATES:
            raise ResumePreconditionError(
                f"Cannot resume in state {state.value}; machine must be Idle or Hold",
                machine_state=state.value,
            )

        program = list(self._program())
        remaining = [line for line in program if line.number >= target_line]
        if not remaining:
            logger.info(f"Nothing to resume at line {target_line} ({len(program)} program lines)")
            return ResumeResult(status="nothing_to_resume", target_line=target_line)

        position = self.model.work_position
        if sync_position and position is None:
            raise ResumePreconditionError(
                "Cannot sync position: no position reported yet",
                machine_state=state.value,
            )

        preamble: list[str] = []
        if request.restore_modal:
            skipped = [line.text for line in program if line.number < target_line]
            preamble, has_g92 = build_resume_preamble(skipped, len(skipped))
            if has_g92:
                logger.warning("Skipped lines contain G92 offsets; they are not replayed on resume")

        dropped = self._clear_pending()
        if dropped:
            logger.info(f"Dropped {dropped} pending commands before resume")

        queued = 0
        if sync_position:
            sync = format_position_sync(position)
            logger.warning(f"Resume overwrites the work position with {sync}")
            self._enqueue(sync, CommandKind.SYSTEM)
            queued += 1
        for text in preamble:
            self._enqueue(text, CommandKind.SYSTEM)
            queued += 1
        for line in remaining:
            self._enqueue(line.text, CommandKind.PROGRAM, source_line=line.number)
            queued += 1

        logger.info(f"Resuming at line {target_line}: {len(remaining)} program lines queued")
        return ResumeResult(
            status="resumed",
            target_line=target_line,
            queued=queued,
            preamble=tuple(preamble),
        )
