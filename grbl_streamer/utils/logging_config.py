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

"""Structured logging setup for GRBL Streamer."""

from __future__ import annotations

import logging
import logging.handlers
import os
import tempfile
from pathlib import Path

APP_LOGGER_NAME = "grbl_streamer"
SERIAL_LOGGER_NAME = f"{APP_LOGGER_NAME}.serial"
LOG_DIR_ENV = "GRBL_STREAMER_LOG_DIR"


def _handler_exists(logger: logging.Logger, name: str) -> bool:
    for handler in logger.handlers:
        if handler.get_name() == name:
            return True
    return False


def get_log_dir() -> Path:
    """Resolve the directory for log files (creates it if needed)."""
    env_dir = os.getenv(LOG_DIR_ENV)
    if env_dir:
        log_dir = Path(env_dir)
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            return log_dir
        except OSError:
            pass
    fallback = Path(tempfile.gettempdir()) / "grbl_streamer_logs"
    try:
        fallback.mkdir(parents=True, exist_ok=True)
    except OSError:
        pass
    return fallback


def setup_logging(console_level: int = logging.INFO, log_to_files: bool = True) -> logging.Logger:
    """Initialize controller logging with rotating file handlers.

    Args:
        console_level: Level for the console handler
        log_to_files: Also attach rotating application, error and wire logs

    Returns:
        The ``grbl_streamer`` root logger
    """
    root = logging.getLogger(APP_LOGGER_NAME)
    root.setLevel(logging.DEBUG)
    root.propagate = False

    if not _handler_exists(root, "grbl_streamer_console"):
        console = logging.StreamHandler()
        console.setLevel(console_level)
        console.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S")
        )
        console.set_name("grbl_streamer_console")
        root.addHandler(console)

    if not log_to_files:
        return root

    log_dir = get_log_dir()

    if not _handler_exists(root, "grbl_streamer_app_file"):
        app_handler = logging.handlers.RotatingFileHandler(
            log_dir / "grbl_streamer.log",
            maxBytes=10_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        app_handler.setLevel(logging.DEBUG)
        app_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        app_handler.set_name("grbl_streamer_app_file")
        root.addHandler(app_handler)

    if not _handler_exists(root, "grbl_streamer_error_file"):
        error_handler = logging.handlers.RotatingFileHandler(
            log_dir / "errors.log",
            maxBytes=2_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        error_handler.setLevel(logging.WARNING)
        error_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s:%(lineno)d\n%(message)s\n")
        )
        error_handler.set_name("grbl_streamer_error_file")
        root.addHandler(error_handler)

    serial_logger = logging.getLogger(SERIAL_LOGGER_NAME)
    serial_logger.setLevel(logging.DEBUG)
    if not _handler_exists(serial_logger, "grbl_streamer_serial_file"):
        serial_handler = logging.handlers.RotatingFileHandler(
            log_dir / "serial.log",
            maxBytes=5_000_000,
            backupCount=3,
            encoding="utf-8",
        )
        serial_handler.setLevel(logging.DEBUG)
        serial_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s.%(msecs)03d [%(levelname)s] %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        serial_handler.set_name("grbl_streamer_serial_file")
        serial_logger.addHandler(serial_handler)

    return root
