"""Validation utilities for GRBL Streamer.

This module provides validation functions for caller-supplied values,
so bad input is rejected at the call site instead of reaching the wire.
"""

from typing import Optional

from .constants import (
    BUFFER_ACCOUNTING_MODES,
    OVERRIDE_BYTES,
    VALID_BAUD_RATES,
)
from .exceptions import InvalidParameterError, InvalidRangeError


def validate_feed_rate(feed: float) -> float:
    """Validate feed rate value.

    Args:
        feed: Feed rate in mm/min or inches/min

    Returns:
        The validated feed rate

    Raises:
        InvalidParameterError: If feed rate is invalid
    """
    try:
        feed = float(feed)
    except (TypeError, ValueError):
        raise InvalidParameterError("feed_rate", feed, "must be numeric")

    if feed <= 0:
        raise InvalidParameterError("feed_rate", feed, "must be positive")

    return feed


def validate_unit_mode(unit_mode: str) -> str:
    """Validate unit mode.

    Args:
        unit_mode: Unit mode string ("mm" or "inch")

    Returns:
        The validated unit mode

    Raises:
        InvalidParameterError: If unit mode is invalid
    """
    if unit_mode not in ("mm", "inch"):
        raise InvalidParameterError("unit_mode", unit_mode, "must be 'mm' or 'inch'")

    return unit_mode


def validate_port_name(port: str) -> str:
    """Validate serial port name or network endpoint.

    Args:
        port: Serial port name (e.g., "COM3" or "/dev/ttyUSB0") or URL

    Returns:
        The validated port name

    Raises:
        InvalidParameterError: If port name is invalid
    """
    if not port or not isinstance(port, str):
        raise InvalidParameterError("port", port, "must be non-empty string")

    port = port.strip()
    if not port:
        raise InvalidParameterError("port", port, "must be non-empty")

    return port


def validate_baud_rate(baud: int) -> int:
    """Validate baud rate.

    Args:
        baud: Baud rate value

    Returns:
        The validated baud rate

    Raises:
        InvalidParameterError: If baud rate is invalid
    """
    try:
        baud = int(baud)
    except (TypeError, ValueError):
        raise InvalidParameterError("baud_rate", baud, "must be integer")

    if baud not in VALID_BAUD_RATES:
        raise InvalidParameterError(
            "baud_rate",
            baud,
            f"must be one of {list(VALID_BAUD_RATES)}"
        )

    return baud


def validate_interval(interval: float, min_val: float = 0.0) -> float:
    """Validate time interval.

    Args:
        interval: Time interval in seconds
        min_val: Minimum allowed value (default 0.0)

    Returns:
        The validated interval

    Raises:
        InvalidParameterError: If interval is invalid
    """
    try:
        interval = float(interval)
    except (TypeError, ValueError):
        raise InvalidParameterError("interval", interval, "must be numeric")

    if interval < min_val:
        raise InvalidParameterError(
            "interval",
            interval,
            f"must be >= {min_val}"
        )

    return interval


def validate_line_number(
    line_number: int,
    max_line: Optional[int] = None
) -> int:
    """Validate a 1-based program line number.

    Args:
        line_number: Program line number
        max_line: Highest valid line number (optional)

    Returns:
        The validated line number

    Raises:
        InvalidParameterError: If the line number is invalid
        InvalidRangeError: If the line number is above max_line
    """
    if isinstance(line_number, bool):
        raise InvalidParameterError("line_number", line_number, "must be integer")
    try:
        line_number = int(line_number)
    except (TypeError, ValueError):
        raise InvalidParameterError("line_number", line_number, "must be integer")

    if line_number < 1:
        raise InvalidParameterError("line_number", line_number, "must be >= 1")

    if max_line is not None and line_number > max_line:
        raise InvalidRangeError(line_number, 1, max_line)

    return line_number


def validate_capacity(capacity: int) -> int:
    """Validate device buffer capacity (bytes or lines)."""
    try:
        capacity = int(capacity)
    except (TypeError, ValueError):
        raise InvalidParameterError("buffer_capacity", capacity, "must be integer")
    if capacity < 1:
        raise InvalidParameterError("buffer_capacity", capacity, "must be positive")
    return capacity


def validate_accounting_mode(mode: str) -> str:
    """Validate buffer accounting mode ("bytes" or "lines")."""
    if mode not in BUFFER_ACCOUNTING_MODES:
        raise InvalidParameterError(
            "buffer_accounting",
            mode,
            f"must be one of {list(BUFFER_ACCOUNTING_MODES)}",
        )
    return mode


def validate_override(kind: str, delta: str) -> tuple[str, str]:
    """Validate an override request.

    Args:
        kind: "feed", "rapid" or "spindle"
        delta: Delta token such as "+10", "-1", "reset" or a rapid level

    Returns:
        Normalized (kind, delta)

    Raises:
        InvalidParameterError: If the combination has no realtime byte
    """
    kind = str(kind).strip().lower()
    delta = str(delta).strip().lower()
    if delta.isdigit() and kind != "rapid":
        delta = f"+{delta}"
    if (kind, delta) not in OVERRIDE_BYTES:
        raise InvalidParameterError("override", f"{kind} {delta}", "unsupported override")
    return kind, delta


def validate_coordinate(value: float, axis: str) -> float:
    """Validate coordinate value.

    Args:
        value: Coordinate value
        axis: Axis name (for error messages)

    Returns:
        The validated coordinate

    Raises:
        InvalidParameterError: If coordinate is invalid
    """
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise InvalidParameterError(
            f"{axis}_coordinate",
            value,
            "must be numeric"
        )
    if value != value or value in (float("inf"), float("-inf")):
        raise InvalidParameterError(f"{axis}_coordinate", value, "must be finite")

    return value
