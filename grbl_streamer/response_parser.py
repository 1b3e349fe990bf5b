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

"""GRBL response classification and status report parsing.

Every line received from the device is turned into a ``ParsedResponse``.
The parser is stateless: it never touches queues or the state model, the
controller applies the side effects.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass

from .types import MachineState, Position, StatusReport
from .utils.grbl_errors import describe_alarm, describe_error

logger = logging.getLogger(__name__)

_ERROR_PAT = re.compile(r"^error:\s*(\d+)\s*$", re.IGNORECASE)
_ALARM_PAT = re.compile(r"^ALARM:\s*(\d+)\s*$", re.IGNORECASE)
_SETTING_PAT = re.compile(r"^\$([A-Za-z]*)(\d+)\s*=\s*(.*)$")
_STARTUP_PAT = re.compile(r"^Grbl\S*(?:\s+(\S+))?", re.IGNORECASE)
_LEGACY_ERROR_PAT = re.compile(r"^error:\s*(.+)$", re.IGNORECASE)

RESET_TO_CONTINUE = "reset to continue"


class ResponseKind(str, enum.Enum):
    OK = "ok"
    ERROR = "error"
    ALARM = "alarm"
    STATUS = "status"
    SETTING = "setting"
    STARTUP = "startup"
    FEEDBACK = "feedback"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class ParsedResponse:
    """A classified device line.

    Only the fields relevant to ``kind`` are populated: ``code`` and
    ``description`` for errors and alarms, ``status`` for status reports,
    ``setting_key``/``value`` for ``$...=`` lines (``setting_id`` too when the
    key is a plain number; ``$N0=`` startup blocks leave it None),
    ``version`` for the startup banner (None for a bare ``Grbl``) and
    ``tag``/``value`` for bracketed feedback.
    """

    kind: ResponseKind
    raw: str
    code: int | None = None
    description: str | None = None
    status: StatusReport | None = None
    setting_id: int | None = None
    setting_key: str | None = None
    value: str | None = None
    version: str | None = None
    tag: str | None = None

    @property
    def requires_reset(self) -> bool:
        """True for ``[MSG:Reset to continue]``, which GRBL sends instead of an alarm code."""
        return (
            self.kind is ResponseKind.FEEDBACK
            and self.tag == "MSG"
            and RESET_TO_CONTINUE in (self.value or "").lower()
        )


def _parse_xyz(text: str | None) -> Position | None:
    if not text:
        return None
    try:
        values = tuple(float(part) for part in text.split(",") if part.strip())
    except ValueError:
        logger.debug(f"Bad coordinate field: {text}")
        return None
    return values or None


def _parse_int_pair(text: str) -> tuple[int, int] | None:
    try:
        first, second = text.split(",", 1)
        return int(first), int(second)
    except ValueError:
        logger.debug(f"Bad integer pair: {text}")
        return None


def _parse_overrides(text: str) -> tuple[int, int, int] | None:
    try:
        feed, rapid, spindle = (int(part) for part in text.split(",")[:3])
    except ValueError:
        logger.debug(f"Bad override field: {text}")
        return None
    return feed, rapid, spindle


def _split_legacy_fields(body: str) -> tuple[str, dict[str, str]]:
    """Group a 0.9-style ``State,MPos:x,y,z,WPos:x,y,z,Buf:0,RX:0`` body."""
    tokens = body.split(",")
    state = tokens[0] if tokens else ""
    fields: dict[str, list[str]] = {}
    current: str | None = None
    for token in tokens[1:]:
        if ":" in token:
            current, _, value = token.partition(":")
            fields[current] = [value]
        elif current is not None:
            fields[current].append(token)
    return state, {key: ",".join(values) for key, values in fields.items()}


def _split_fields(body: str) -> tuple[str, dict[str, str]]:
    parts = body.split("|")
    fields: dict[str, str] = {}
    for part in parts[1:]:
        key, sep, value = part.partition(":")
        if sep:
            fields[key] = value
    return parts[0], fields


def parse_status_report(raw: str) -> StatusReport | None:
    """Parse a ``<...>`` status report.

    Accepts the GRBL 1.1 ``|``-separated layout and the legacy 0.9
    comma-separated layout. Unparseable numeric fields are left as ``None``.

    Args:
        raw: Status line including the angle brackets

    Returns:
        A StatusReport, or None if the line is not a status report
    """
    line = raw.strip()
    if not (line.startswith("<") and line.endswith(">")):
        return None
    body = line[1:-1]
    if "|" in body or "," not in body:
        state_text, fields = _split_fields(body)
    else:
        state_text, fields = _split_legacy_fields(body)

    state, sub_state = MachineState.from_report(state_text)

    feed = spindle = None
    if "FS" in fields:
        fs = fields["FS"].split(",")
        try:
            feed = float(fs[0])
            if len(fs) > 1:
                spindle = float(fs[1])
        except ValueError:
            logger.debug(f"Bad FS field: {fields['FS']}")
    elif "F" in fields:
        try:
            feed = float(fields["F"])
        except ValueError:
            logger.debug(f"Bad F field: {fields['F']}")

    buffer = None
    if "Bf" in fields:
        buffer = _parse_int_pair(fields["Bf"])
    elif "Buf" in fields and "RX" in fields:
        try:
            buffer = (int(fields["Buf"]), int(fields["RX"]))
        except ValueError:
            logger.debug(f"Bad legacy buffer fields: {fields['Buf']},{fields['RX']}")

    line_number = None
    if "Ln" in fields:
        try:
            line_number = int(fields["Ln"])
        except ValueError:
            logger.debug(f"Bad Ln field: {fields['Ln']}")

    return StatusReport(
        machine_state=state,
        sub_state=sub_state,
        machine_position=_parse_xyz(fields.get("MPos")),
        work_position=_parse_xyz(fields.get("WPos")),
        work_offset=_parse_xyz(fields.get("WCO")),
        feed_rate=feed,
        spindle_speed=spindle,
        overrides=_parse_overrides(fields["Ov"]) if "Ov" in fields else None,
        buffer=buffer,
        line_number=line_number,
        pins=fields.get("Pn"),
        raw=line,
    )


def _parse_feedback(line: str) -> ParsedResponse:
    inner = line[1:-1]
    tag, sep, value = inner.partition(":")
    if not sep:
        return ParsedResponse(ResponseKind.FEEDBACK, line, tag="", value=inner)
    return ParsedResponse(ResponseKind.FEEDBACK, line, tag=tag.strip(), value=value.strip())


def parse_response(line: str) -> ParsedResponse:
    """Classify one line received from GRBL.

    Priority: ok, error, alarm, status, setting, startup banner, bracketed
    feedback, then unknown.

    Args:
        line: A received line without its terminator

    Returns:
        ParsedResponse describing the line
    """
    text = (line or "").strip()
    lowered = text.lower()

    if lowered == "ok":
        return ParsedResponse(ResponseKind.OK, text)

    match = _ERROR_PAT.match(text)
    if match:
        code = int(match.group(1))
        return ParsedResponse(ResponseKind.ERROR, text, code=code, description=describe_error(code))
    if lowered.startswith("error:"):
        # 0.9 firmware reports errors as text, not codes.
        legacy = _LEGACY_ERROR_PAT.match(text)
        detail = legacy.group(1).strip() if legacy else text
        return ParsedResponse(ResponseKind.ERROR, text, code=0, description=detail)

    match = _ALARM_PAT.match(text)
    if match:
        code = int(match.group(1))
        return ParsedResponse(ResponseKind.ALARM, text, code=code, description=describe_alarm(code))

    if text.startswith("<") and text.endswith(">"):
        status = parse_status_report(text)
        if status is not None:
            return ParsedResponse(ResponseKind.STATUS, text, status=status)

    match = _SETTING_PAT.match(text)
    if match:
        prefix, number, value = match.groups()
        if prefix:
            # Startup block: the value is a G-code line, keep it whole.
            return ParsedResponse(
                ResponseKind.SETTING,
                text,
                setting_key=f"{prefix.upper()}{number}",
                value=value.strip(),
            )
        return ParsedResponse(
            ResponseKind.SETTING,
            text,
            setting_id=int(number),
            setting_key=number,
            value=value.split("(", 1)[0].strip(),
        )

    match = _STARTUP_PAT.match(text)
    if match:
        return ParsedResponse(ResponseKind.STARTUP, text, version=match.group(1))

    if text.startswith("[") and text.endswith("]"):
        return _parse_feedback(text)

    return ParsedResponse(ResponseKind.UNKNOWN, text)


class ResponseParser:
    """Injectable wrapper around ``parse_response``."""

    def parse(self, line: str) -> ParsedResponse:
        return parse_response(line)


def parse_modal_state(value: str) -> dict[str, str]:
    """Parse the body of a ``[GC:...]`` report into modal groups."""
    modal_state: dict[str, str] = {}
    for token in value.split():
        if token in ("G20", "G21"):
            modal_state["units"] = token
        elif token in ("G90", "G91"):
            modal_state["distance"] = token
        elif token in ("G17", "G18", "G19"):
            modal_state["plane"] = token
        elif token in ("G93", "G94"):
            modal_state["feed_mode"] = token
        elif token in ("G90.1", "G91.1"):
            modal_state["arc"] = token
        elif token in ("G54", "G55", "G56", "G57", "G58", "G59", "G59.1", "G59.2", "G59.3"):
            modal_state["wcs"] = token
        elif token in ("G0", "G1", "G2", "G3", "G38.2", "G38.3", "G38.4", "G38.5", "G80"):
            modal_state["motion"] = token
        elif token in ("M3", "M4", "M5"):
            modal_state["spindle"] = token
        elif token in ("M7", "M8", "M9"):
            modal_state["coolant"] = token
        elif token.startswith("T") and token[1:].isdigit():
            modal_state["tool"] = str(int(token[1:]))
        elif token.startswith("F"):
            modal_state["feed"] = token[1:]
        elif token.startswith("S"):
            modal_state["spindle_speed"] = token[1:]
    return modal_state
