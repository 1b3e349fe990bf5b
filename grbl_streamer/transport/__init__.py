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

"""Byte transports to GRBL devices."""

from __future__ import annotations

from urllib.parse import urlparse

from ..utils.constants import BAUD_DEFAULT, SERIAL_CONNECT_DELAY, TELNET_PORT_DEFAULT
from ..utils.exceptions import InvalidParameterError
from ..utils.validation import validate_port_name
from .base import Transport
from .serial_transport import SerialTransport, available_ports
from .telnet_transport import TelnetTransport
from .websocket_transport import WebSocketTransport


def open_transport(
    url_or_port: str,
    baud: int = BAUD_DEFAULT,
    connect_delay: float = SERIAL_CONNECT_DELAY,
) -> Transport:
    """Pick a transport for a serial port name or a ``ws://``/``telnet://`` URL.

    The transport is returned unopened; ``GrblController.connect()`` opens it.

    Raises:
        InvalidParameterError: For a malformed URL
    """
    target = validate_port_name(url_or_port)
    lowered = target.lower()
    if lowered.startswith(("ws://", "wss://")):
        return WebSocketTransport(target)
    if lowered.startswith(("telnet://", "tcp://")):
        parsed = urlparse(target)
        if not parsed.hostname:
            raise InvalidParameterError("url", target, "missing host")
        return TelnetTransport(parsed.hostname, parsed.port or TELNET_PORT_DEFAULT)
    return SerialTransport(target, baud, connect_delay=connect_delay)


__all__ = [
    "Transport",
    "SerialTransport",
    "TelnetTransport",
    "WebSocketTransport",
    "available_ports",
    "open_transport",
]
