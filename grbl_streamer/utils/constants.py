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

"""Constants and configuration values for GRBL Streamer.

This module centralizes all magic numbers, default values, and protocol
constants used throughout the controller.
"""

import re
from typing import Dict, Tuple

# ============================================================================
# SERIAL COMMUNICATION CONSTANTS
# ============================================================================

BAUD_DEFAULT = 115200
"""Default baud rate for GRBL serial communication."""

VALID_BAUD_RATES = (9600, 19200, 38400, 57600, 115200, 230400)
"""Baud rates accepted by the serial transport."""

STATUS_POLL_DEFAULT = 0.2
"""Default interval (seconds) between status queries."""

STATUS_POLL_INTERVAL_MIN = 0.01
"""Minimum allowed status poll interval (seconds)."""

STATUS_QUERY_FAILURE_LIMIT_DEFAULT = 3
"""Default status query failure limit before the session is dropped."""

STATUS_QUERY_FAILURE_LIMIT_MIN = 1
"""Minimum allowed status query failure limit."""

STATUS_QUERY_FAILURE_LIMIT_MAX = 10
"""Maximum allowed status query failure limit."""

STATUS_QUERY_BACKOFF_BASE = 0.2
"""Backoff step (seconds) after a failed status query."""

STATUS_QUERY_BACKOFF_MAX = 2.0
"""Maximum backoff (seconds) after failed status queries."""

TELNET_PORT_DEFAULT = 23
"""Default TCP port for Telnet-bridged controllers."""

# ============================================================================
# GRBL BUFFER MANAGEMENT
# ============================================================================

RX_BUFFER_SIZE = 128
"""GRBL RX buffer size in bytes."""

BUFFER_CAPACITY_BYTES = RX_BUFFER_SIZE - 1
"""Bytes the host may keep in flight (one byte kept free, as grbl's stream.py does)."""

BUFFER_CAPACITY_LINES = 15
"""In-flight command limit when accounting by line count."""

ACCOUNTING_BYTES = "bytes"
ACCOUNTING_LINES = "lines"
BUFFER_ACCOUNTING_MODES = (ACCOUNTING_BYTES, ACCOUNTING_LINES)

MAX_LINE_LENGTH = 80
"""Maximum G-code line length for GRBL 1.1h (including newline)."""

# ============================================================================
# GRBL REAL-TIME COMMAND BYTES
# ============================================================================

RT_RESET = b"\x18"
"""Ctrl-X soft reset."""

RT_STATUS = b"?"
"""Status report query."""

RT_HOLD = b"!"
"""Feed hold (pause)."""

RT_RESUME = b"~"
"""Cycle start / resume."""

RT_SAFETY_DOOR = b"\x84"
"""Safety door."""

RT_JOG_CANCEL = b"\x85"
"""Cancel jog command."""

# Feed override commands
RT_FO_RESET = b"\x90"
RT_FO_PLUS_10 = b"\x91"
RT_FO_MINUS_10 = b"\x92"
RT_FO_PLUS_1 = b"\x93"
RT_FO_MINUS_1 = b"\x94"

# Rapid override commands
RT_RO_RESET = b"\x95"
RT_RO_50 = b"\x96"
RT_RO_25 = b"\x97"

# Spindle override commands
RT_SO_RESET = b"\x99"
RT_SO_PLUS_10 = b"\x9A"
RT_SO_MINUS_10 = b"\x9B"
RT_SO_PLUS_1 = b"\x9C"
RT_SO_MINUS_1 = b"\x9D"

# Accessory toggles
RT_SPINDLE_STOP = b"\x9E"
RT_FLOOD_TOGGLE = b"\xA0"
RT_MIST_TOGGLE = b"\xA1"

OVERRIDE_FEED = "feed"
OVERRIDE_RAPID = "rapid"
OVERRIDE_SPINDLE = "spindle"

OVERRIDE_MIN = 10
OVERRIDE_MAX = 200
OVERRIDE_DEFAULT = 100

# (kind, delta) -> (realtime byte, "set" | "add", amount)
OVERRIDE_BYTES: Dict[Tuple[str, str], Tuple[bytes, str, int]] = {
    (OVERRIDE_FEED, "reset"): (RT_FO_RESET, "set", 100),
    (OVERRIDE_FEED, "+10"): (RT_FO_PLUS_10, "add", 10),
    (OVERRIDE_FEED, "-10"): (RT_FO_MINUS_10, "add", -10),
    (OVERRIDE_FEED, "+1"): (RT_FO_PLUS_1, "add", 1),
    (OVERRIDE_FEED, "-1"): (RT_FO_MINUS_1, "add", -1),
    (OVERRIDE_RAPID, "reset"): (RT_RO_RESET, "set", 100),
    (OVERRIDE_RAPID, "100"): (RT_RO_RESET, "set", 100),
    (OVERRIDE_RAPID, "50"): (RT_RO_50, "set", 50),
    (OVERRIDE_RAPID, "25"): (RT_RO_25, "set", 25),
    (OVERRIDE_SPINDLE, "reset"): (RT_SO_RESET, "set", 100),
    (OVERRIDE_SPINDLE, "+10"): (RT_SO_PLUS_10, "add", 10),
    (OVERRIDE_SPINDLE, "-10"): (RT_SO_MINUS_10, "add", -10),
    (OVERRIDE_SPINDLE, "+1"): (RT_SO_PLUS_1, "add", 1),
    (OVERRIDE_SPINDLE, "-1"): (RT_SO_MINUS_1, "add", -1),
}

# ============================================================================
# SYSTEM COMMANDS
# ============================================================================

CMD_UNLOCK = "$X"
CMD_HOME = "$H"
CMD_VIEW_SETTINGS = "$$"
CMD_VIEW_PARAMETERS = "$#"
CMD_VIEW_PARSER_STATE = "$G"
CMD_VIEW_BUILD_INFO = "$I"
CMD_ZERO_WORK_POSITION = "G10 L20 P0 X0 Y0 Z0"
CMD_GO_TO_WORK_ZERO = "G90 G0 X0 Y0"

ALARM_RECOVERY_PREFIXES = (CMD_UNLOCK, CMD_HOME)
"""Commands GRBL accepts while alarm-locked."""

# ============================================================================
# G-CODE PARSING CONSTANTS
# ============================================================================

PAREN_COMMENT_PAT = re.compile(r"\(.*?\)")
"""Pattern to match parenthesis comments."""

RESUME_WORD_PAT = re.compile(r"([A-Z])([-+]?(?:\d+(?:\.\d*)?|\.\d+))")
"""Pattern to parse G-code words for resume."""

# ============================================================================
# STREAMING CONSTANTS
# ============================================================================

BUFFER_EMIT_INTERVAL = 0.1
"""Minimum interval between identical buffer fill updates (seconds)."""

ACK_TIMEOUT_DEFAULT = 10.0
"""Seconds the in-flight head may wait for ok/error before the session is dropped."""

WATCHDOG_HOMING_TIMEOUT = 180.0
"""Seconds to suspend the ack watchdog after issuing a homing cycle."""

# ============================================================================
# TIMING CONSTANTS
# ============================================================================

THREAD_JOIN_TIMEOUT = 0.5
"""Timeout when joining worker threads (seconds)."""

SERIAL_CONNECT_DELAY = 0.25
"""Delay after opening serial port (seconds)."""

SERIAL_TIMEOUT = 0.1
"""Serial read timeout (seconds)."""

SERIAL_WRITE_TIMEOUT = 0.5
"""Serial write timeout (seconds)."""

SOCKET_TIMEOUT = 5.0
"""Network connect timeout (seconds)."""

READ_POLL_TIMEOUT = 0.1
"""Timeout for a single transport line read (seconds)."""

RX_LINE_MAX = 4096
"""Bytes buffered without a newline before the partial line is discarded."""

# ============================================================================
# GRBL SETTINGS DESCRIPTIONS
# ============================================================================

GRBL_SETTING_DESC: Dict[int, str] = {
    0: "Step pulse, microseconds",
    1: "Step idle delay, milliseconds",
    2: "Step port invert mask",
    3: "Direction port invert mask",
    4: "Step enable invert",
    5: "Limit pins invert",
    6: "Probe pin invert",
    10: "Status report mask",
    11: "Junction deviation, mm",
    12: "Arc tolerance, mm",
    13: "Report inches",
    20: "Soft limits enable",
    21: "Hard limits enable",
    22: "Homing cycle enable",
    23: "Homing direction invert mask",
    24: "Homing locate feed rate, mm/min",
    25: "Homing search seek rate, mm/min",
    26: "Homing switch debounce, ms",
    27: "Homing switch pull-off, mm",
    30: "Max spindle speed, RPM",
    31: "Min spindle speed, RPM",
    32: "Laser mode enable",
    100: "X steps/mm",
    101: "Y steps/mm",
    102: "Z steps/mm",
    110: "X max rate, mm/min",
    111: "Y max rate, mm/min",
    112: "Z max rate, mm/min",
    120: "X accel, mm/sec^2",
    121: "Y accel, mm/sec^2",
    122: "Z accel, mm/sec^2",
    130: "X max travel, mm",
    131: "Y max travel, mm",
    132: "Z max travel, mm",
}
