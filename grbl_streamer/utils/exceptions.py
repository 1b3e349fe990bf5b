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

"""Custom exceptions for GRBL Streamer.

This module defines specific exception types for different error conditions,
so callers can tell transport faults, protocol rejections and precondition
violations apart.
"""

from typing import Any, Optional


class GrblStreamerException(Exception):
    """Base exception for all GRBL Streamer errors."""
    pass


# ============================================================================
# TRANSPORT EXCEPTIONS
# ============================================================================

class TransportException(GrblStreamerException):
    """Base exception for transport (serial/network) errors."""
    pass


class TransportConnectionError(TransportException):
    """Failed to open the transport."""
    pass


class TransportDisconnectError(TransportException):
    """Unexpected disconnection from the device."""
    pass


class TransportWriteError(TransportException):
    """Failed to write data to the transport."""
    pass


class TransportReadError(TransportException):
    """Failed to read data from the transport."""
    pass


# ============================================================================
# GRBL EXCEPTIONS
# ============================================================================

class GrblException(GrblStreamerException):
    """Base exception for GRBL-related errors."""
    pass


class GrblNotConnectedException(GrblException):
    """Attempted operation while not connected to GRBL."""
    pass


class GrblAlarmException(GrblException):
    """GRBL is in alarm state."""

    def __init__(self, message: str, alarm_code: Optional[int] = None):
        super().__init__(message)
        self.alarm_code = alarm_code


class GrblBufferOverflowException(GrblException):
    """Attempted to overfill GRBL's RX buffer."""
    pass


class ResumePreconditionError(GrblException):
    """Resume requested while the machine cannot accept it."""

    def __init__(self, message: str, machine_state: Optional[str] = None):
        super().__init__(message)
        self.machine_state = machine_state


# ============================================================================
# CONFIG EXCEPTIONS
# ============================================================================

class ConfigException(GrblStreamerException):
    """Base exception for configuration errors."""
    pass


class ConfigValidationError(ConfigException):
    """Configuration validation failed."""
    pass


# ============================================================================
# VALIDATION EXCEPTIONS
# ============================================================================

class ValidationException(GrblStreamerException):
    """Base exception for validation errors."""
    pass


class InvalidParameterError(ValidationException):
    """Invalid parameter value."""

    def __init__(self, parameter_name: str, value: Any, reason: Optional[str] = None):
        self.parameter_name = parameter_name
        self.value = value
        self.reason = reason

        message = f"Invalid value for '{parameter_name}': {value}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class InvalidRangeError(ValidationException):
    """Value out of valid range."""

    def __init__(self, value, min_val, max_val):
        self.value = value
        self.min_val = min_val
        self.max_val = max_val

        message = f"Value {value} out of range [{min_val}, {max_val}]"
        super().__init__(message)
