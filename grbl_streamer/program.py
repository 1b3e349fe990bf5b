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

"""Program source helpers: comment stripping and line numbering."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from .utils.constants import PAREN_COMMENT_PAT

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProgramLine:
    """One streamable program line and its 1-based source line number."""

    number: int
    text: str


def clean_gcode_line(line: str) -> str:
    """Strip comments and whitespace; keep simple + safe."""
    line = line.replace("\ufeff", "")
    line = PAREN_COMMENT_PAT.sub("", line)
    if ";" in line:
        line = line.split(";", 1)[0]
    line = line.strip()
    if line.startswith("%"):
        return ""
    if not line:
        return ""
    return line


def number_program_lines(lines: Iterable[str | tuple[int, str] | ProgramLine]) -> list[ProgramLine]:
    """Number and clean program lines.

    Plain strings are numbered by position starting at 1, so blank and
    comment-only lines still consume a number and line numbers match the
    source file. ``(number, text)`` pairs keep their numbers. Lines that are
    empty after cleaning are dropped.
    """
    program: list[ProgramLine] = []
    for position, item in enumerate(lines, start=1):
        if isinstance(item, ProgramLine):
            number, raw = item.number, item.text
        elif isinstance(item, tuple):
            number, raw = int(item[0]), str(item[1])
        else:
            number, raw = position, str(item)
        text = clean_gcode_line(raw)
        if text:
            program.append(ProgramLine(number, text))
    return program


def load_program_file(path: str | Path, encoding: str = "utf-8") -> list[ProgramLine]:
    """Read a G-code file into numbered program lines."""
    path = Path(path)
    with path.open("r", encoding=encoding, errors="replace") as f:
        program = number_program_lines(line.rstrip("\r\n") for line in f)
    logger.info(f"Loaded {len(program)} lines of G-code from {path.name}")
    return program
