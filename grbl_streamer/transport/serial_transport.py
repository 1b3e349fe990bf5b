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

"""Serial (USB) transport backed by pyserial."""

from __future__ import annotations

import logging
import time

import serial
from serial.tools import list_ports

from ..utils.constants import (
    BAUD_DEFAULT,
    SERIAL_CONNECT_DELAY,
    SERIAL_TIMEOUT,
    SERIAL_WRITE_TIMEOUT,
)
from ..utils.exceptions import (
    TransportConnectionError,
    TransportReadError,
    TransportWriteError,
)
from ..utils.validation import validate_baud_rate, validate_port_name
from .base import Transport

logger = logging.getLogger(__name__)


def available_ports() -> list[str]:
    """Get list of available serial ports.

    Returns:
        List of port device names
    """
    return [p.device for p in list_ports.comports()]


class SerialTransport(Transport):
    """8-N-1 serial connection to GRBL.

    Args:
        port: Serial port name (e.g., 'COM3' or '/dev/ttyUSB0')
        baud: Baud rate (default: 115200)
        connect_delay: Seconds to wait after opening (boards reset on DTR)
    """

    def __init__(
        self,
        port: str,
        baud: int = BAUD_DEFAULT,
        connect_delay: float = SERIAL_CONNECT_DELAY,
    ):
        super().__init__(validate_port_name(port))
        self.port = self.name
        self.baud = validate_baud_rate(baud)
        self.connect_delay = connect_delay
        self.ser: serial.Serial | None = None

    @property
    def is_open(self) -> bool:
        return self.ser is not None and self.ser.is_open

    def open(self) -> None:
        try:
            self.ser = serial.Serial(
                self.port,
                baudrate=self.baud,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=SERIAL_TIMEOUT,
                write_timeout=SERIAL_WRITE_TIMEOUT,
            )
        except (serial.SerialException, ValueError) as e:
            self.ser = None
            raise TransportConnectionError(f"Failed to connect to {self.port}: {e}")

        # Give GRBL time to reset (some boards reset on connection)
        if self.connect_delay > 0:
            time.sleep(self.connect_delay)

        # Clear buffers
        try:
            self.ser.reset_input_buffer()
            self.ser.reset_output_buffer()
        except serial.SerialException as e:
            logger.warning(f"Failed to reset buffers: {e}")
        self._reset_rx()
        logger.info(f"Opened {self.port} at {self.baud} baud")

    def close(self) -> None:
        ser, self.ser = self.ser, None
        if ser is None:
            return
        try:
            ser.close()
        except serial.SerialException as e:
            logger.error(f"Error closing serial port: {e}")

    def write(self, data: bytes) -> None:
        ser = self.ser
        if ser is None:
            raise TransportWriteError("Serial port not open")
        try:
            total = 0
            length = len(data)
            while total < length:
                written = ser.write(data[total:])
                if written is None:
                    written = 0
                if written <= 0:
                    raise serial.SerialTimeoutException("Write returned 0 bytes")
                total += written
        except serial.SerialTimeoutException as e:
            raise TransportWriteError(f"Write timeout: {e}")
        except serial.SerialException as e:
            raise TransportWriteError(f"Serial write error: {e}")

    def _read_chunk(self, timeout: float) -> bytes:
        ser = self.ser
        if ser is None:
            raise TransportReadError("Serial port not open")
        try:
            if ser.timeout != timeout:
                ser.timeout = timeout
            waiting = ser.in_waiting
            return ser.read(waiting or 1)
        except serial.SerialException as e:
            raise TransportReadError(f"Serial read error: {e}")
