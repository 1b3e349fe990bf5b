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

"""Raw TCP ("telnet") transport for network-bridged controllers."""

from __future__ import annotations

import logging
import socket

from ..utils.constants import SOCKET_TIMEOUT, TELNET_PORT_DEFAULT
from ..utils.exceptions import (
    TransportConnectionError,
    TransportDisconnectError,
    TransportReadError,
    TransportWriteError,
)
from .base import Transport

logger = logging.getLogger(__name__)

BUFFER_SIZE = 1024

IAC = 0xFF
_IAC_OPTION_CMDS = (0xFB, 0xFC, 0xFD, 0xFE)  # WILL, WONT, DO, DONT


def strip_telnet_negotiation(data: bytes) -> bytes:
    """Drop telnet IAC option negotiation; ``IAC IAC`` becomes a literal 0xFF."""
    if IAC not in data:
        return data
    out = bytearray()
    i = 0
    while i < len(data):
        byte = data[i]
        if byte != IAC:
            out.append(byte)
            i += 1
            continue
        nxt = data[i + 1] if i + 1 < len(data) else None
        if nxt == IAC:
            out.append(IAC)
            i += 2
        elif nxt in _IAC_OPTION_CMDS:
            i += 3
        else:
            i += 2
    return bytes(out)


class TelnetTransport(Transport):
    """TCP socket connection, e.g. to an ESP3D telnet bridge."""

    def __init__(self, host: str, port: int = TELNET_PORT_DEFAULT, timeout: float = SOCKET_TIMEOUT):
        super().__init__(f"telnet://{host}:{port}")
        self.host = host
        self.port = int(port)
        self.timeout = timeout
        self.sock: socket.socket | None = None

    @property
    def is_open(self) -> bool:
        return self.sock is not None

    def open(self) -> None:
        try:
            self.sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
        except OSError as e:
            self.sock = None
            raise TransportConnectionError(f"Failed to connect to {self.name}: {e}")
        self.sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        self._reset_rx()
        logger.info(f"Opened {self.name}")

    def close(self) -> None:
        sock, self.sock = self.sock, None
        if sock is None:
            return
        try:
            sock.close()
        except OSError as e:
            logger.error(f"Error closing socket: {e}")

    def write(self, data: bytes) -> None:
        sock = self.sock
        if sock is None:
            raise TransportWriteError("Socket not open")
        try:
            sock.sendall(data)
        except OSError as e:
            raise TransportWriteError(f"Socket write error: {e}")

    def _read_chunk(self, timeout: float) -> bytes:
        sock = self.sock
        if sock is None:
            raise TransportReadError("Socket not open")
        try:
            sock.settimeout(timeout)
            data = sock.recv(BUFFER_SIZE)
        except socket.timeout:
            return b""
        except OSError as e:
            raise TransportReadError(f"Socket read error: {e}")
        if not data:
            raise TransportDisconnectError(f"{self.name} closed by peer")
        return strip_telnet_negotiation(data)
