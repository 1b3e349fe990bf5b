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

"""WebSocket transport for ESP8266/ESP32 GRBL bridges."""

from __future__ import annotations

import logging

from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI
from websockets.sync.client import ClientConnection, connect

from ..utils.constants import SOCKET_TIMEOUT
from ..utils.exceptions import (
    TransportConnectionError,
    TransportDisconnectError,
    TransportReadError,
    TransportWriteError,
)
from .base import Transport

logger = logging.getLogger(__name__)


class WebSocketTransport(Transport):
    """WebSocket connection (``ws://host:port/``).

    Outgoing data is sent as binary frames so realtime bytes above 0x7F
    survive; incoming text or binary frames are both accepted.
    """

    def __init__(self, url: str, timeout: float = SOCKET_TIMEOUT):
        super().__init__(url)
        self.url = url
        self.timeout = timeout
        self.ws: ClientConnection | None = None

    @property
    def is_open(self) -> bool:
        return self.ws is not None

    def open(self) -> None:
        try:
            self.ws = connect(self.url, open_timeout=self.timeout, close_timeout=self.timeout)
        except (OSError, InvalidHandshake, InvalidURI, TimeoutError) as e:
            self.ws = None
            raise TransportConnectionError(f"Failed to connect to {self.url}: {e}")
        self._reset_rx()
        logger.info(f"Opened {self.url}")

    def close(self) -> None:
        ws, self.ws = self.ws, None
        if ws is None:
            return
        try:
            ws.close()
        except OSError as e:
            logger.error(f"Error closing websocket: {e}")

    def write(self, data: bytes) -> None:
        ws = self.ws
        if ws is None:
            raise TransportWriteError("WebSocket not open")
        try:
            ws.send(bytes(data))
        except (ConnectionClosed, OSError) as e:
            raise TransportWriteError(f"WebSocket write error: {e}")

    def _read_chunk(self, timeout: float) -> bytes:
        ws = self.ws
        if ws is None:
            raise TransportReadError("WebSocket not open")
        try:
            message = ws.recv(timeout=timeout)
        except TimeoutError:
            return b""
        except ConnectionClosed as e:
            raise TransportDisconnectError(f"{self.url} closed: {e}")
        except OSError as e:
            raise TransportReadError(f"WebSocket read error: {e}")
        if isinstance(message, str):
            return message.encode("utf-8")
        return bytes(message)
