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

"""Abstract byte transport with line framing."""

from __future__ import annotations

import abc
import logging

from ..utils.constants import READ_POLL_TIMEOUT, RX_LINE_MAX

logger = logging.getLogger(__name__)


class Transport(abc.ABC):
    """A bidirectional byte stream to a GRBL device.

    Subclasses implement ``open``, ``close``, ``write``, ``is_open`` and
    ``_read_chunk``; this base class frames received bytes into lines.
    """

    def __init__(self, name: str):
        self.name = name
        self._rx_buf = b""

    @abc.abstractmethod
    def open(self) -> None:
        """Open the connection.

        Raises:
            TransportConnectionError: If the device cannot be reached
        """

    @abc.abstractmethod
    def close(self) -> None:
        """Close the connection; safe to call more than once."""

    @abc.abstractmethod
    def write(self, data: bytes) -> None:
        """Write all of ``data``.

        Raises:
            TransportWriteError: If the write fails
        """

    @property
    @abc.abstractmethod
    def is_open(self) -> bool:
        ...

    @abc.abstractmethod
    def _read_chunk(self, timeout: float) -> bytes:
        """Return whatever bytes arrive within ``timeout`` (may be empty).

        Raises:
            TransportReadError: If the connection failed
        """

    def read_line(self, timeout: float = READ_POLL_TIMEOUT) -> str | None:
        """Return the next complete line without its terminator, or None.

        Args:
            timeout: Seconds to wait for more bytes when no line is buffered
        """
        line = self._take_line()
        if line is not None:
            return line
        chunk = self._read_chunk(timeout)
        if chunk:
            self._rx_buf += chunk
        line = self._take_line()
        if line is None and len(self._rx_buf) > RX_LINE_MAX:
            logger.warning(
                f"{self.name}: discarding {len(self._rx_buf)} bytes received without a line terminator"
            )
            self._rx_buf = b""
        return line

    def _take_line(self) -> str | None:
        while b"\n" in self._rx_buf:
            line, self._rx_buf = self._rx_buf.split(b"\n", 1)
            line_str = line.decode("utf-8", errors="replace").strip()
            if line_str:
                return line_str
        return None

    def _reset_rx(self) -> None:
        self._rx_buf = b""

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"<{type(self).__name__} {self.name} ({state})>"
