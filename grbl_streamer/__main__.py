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

"""Command-line G-code streamer.

Usage:
    python -m grbl_streamer /dev/ttyUSB0 part.nc
    python -m grbl_streamer ws://192.168.0.50:81/ part.nc --from-line 120
"""

from __future__ import annotations

import argparse
import logging
import queue
import sys
import time

from .controller import GrblController
from .program import load_program_file
from .transport import open_transport
from .types import MachineState
from .utils.config import ControllerConfig
from .utils.constants import BAUD_DEFAULT, BUFFER_ACCOUNTING_MODES, STATUS_POLL_DEFAULT
from .utils.exceptions import GrblStreamerException
from .utils.logging_config import setup_logging

logger = logging.getLogger("grbl_streamer.cli")

READY_TIMEOUT = 10.0
DRAIN_TIMEOUT = 30.0

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_ALARM = 2
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="grbl_streamer",
        description="Stream a g-code file to grbl with character-counting flow control.",
    )
    parser.add_argument("port", help="serial port, ws://host:port/ or telnet://host:port")
    parser.add_argument("gcode_file", help="g-code file to stream")
    parser.add_argument("--baud", type=int, default=BAUD_DEFAULT, help="serial baud rate")
    parser.add_argument("--from-line", type=int, default=None, metavar="N",
                        help="resume the program from source line N")
    parser.add_argument("--sync-position", action="store_true", default=False,
                        help="with --from-line, send G92 with the reported work position first")
    parser.add_argument("--poll", type=float, default=STATUS_POLL_DEFAULT,
                        help="status poll interval in seconds")
    parser.add_argument("--capacity", type=int, default=None,
                        help="override the RX buffer capacity")
    parser.add_argument("--accounting", choices=BUFFER_ACCOUNTING_MODES, default="bytes",
                        help="count buffer usage in bytes or lines")
    parser.add_argument("-q", "--quiet", action="store_true", default=False,
                        help="suppress progress output")
    return parser


def _wait_ready(grbl: GrblController, timeout: float) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if not grbl.is_connected():
            return False
        snapshot = grbl.snapshot()
        if snapshot.ready and snapshot.state is not MachineState.UNKNOWN:
            return True
        time.sleep(0.05)
    return False


def _run_stream(grbl: GrblController, events: queue.Queue, quiet: bool) -> int:
    while True:
        try:
            event = events.get(timeout=0.5)
        except queue.Empty:
            if not grbl.is_connected():
                return EXIT_FAILED
            continue
        name = event[0]
        if name == "progress" and not quiet:
            print(f"\rline {event[1]}/{event[2]}", end="", flush=True)
        elif name == "stream_state" and event[1] == "done":
            if not quiet:
                print()
            return EXIT_OK
        elif name == "stream_state" and event[1] in ("stopped", "error"):
            logger.error(f"Stream {event[1]}: {event[2]}")
            return EXIT_FAILED
        elif name == "alarm":
            logger.error(f"Alarm: {event[1].description}")
            return EXIT_ALARM
        elif name == "fatal":
            return EXIT_FAILED


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(console_level=logging.WARNING if args.quiet else logging.INFO)

    try:
        config = ControllerConfig.from_mapping({
            "baud_rate": args.baud,
            "status_poll_interval": args.poll,
            "buffer_capacity": args.capacity,
            "buffer_accounting": args.accounting,
            "query_on_connect": False,
        })
        program = load_program_file(args.gcode_file)
        transport = open_transport(args.port, config.baud_rate, config.connect_delay)
    except (GrblStreamerException, OSError) as e:
        logger.error(str(e))
        return EXIT_FAILED

    with GrblController(transport, config) as grbl:
        events = grbl.subscribe()
        try:
            grbl.connect()
            if not _wait_ready(grbl, READY_TIMEOUT):
                logger.error("GRBL did not report in time")
                return EXIT_FAILED
            if args.from_line:
                grbl.load_program(program)
                result = grbl.resume_from(args.from_line, args.sync_position)
                if result.status == "nothing_to_resume":
                    logger.info(f"Nothing to resume at line {args.from_line}")
                    return EXIT_OK
            else:
                grbl.enqueue_program(program)
            code = _run_stream(grbl, events, args.quiet)
            if code == EXIT_OK:
                grbl.wait_for_completion(DRAIN_TIMEOUT)
            return code
        except KeyboardInterrupt:
            logger.warning("Interrupted; sending soft reset")
            try:
                grbl.soft_reset()
            except GrblStreamerException as e:
                logger.error(f"Soft reset failed: {e}")
            return EXIT_INTERRUPTED
        except GrblStreamerException as e:
            logger.error(str(e))
            return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
