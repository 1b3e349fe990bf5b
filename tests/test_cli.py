"""
Unit tests for the command-line streamer.
"""

import queue
import unittest
from unittest.mock import Mock, patch

from grbl_streamer.__main__ import (
    EXIT_ALARM,
    EXIT_FAILED,
    EXIT_OK,
    _run_stream,
    build_parser,
    main,
)
from grbl_streamer.types import AlarmEvent


class TestArguments(unittest.TestCase):

    def test_defaults(self):
        args = build_parser().parse_args(["/dev/ttyUSB0", "part.nc"])
        self.assertEqual(args.port, "/dev/ttyUSB0")
        self.assertEqual(args.gcode_file, "part.nc")
        self.assertEqual(args.baud, 115200)
        self.assertIsNone(args.from_line)
        self.assertEqual(args.accounting, "bytes")

    def test_resume_options(self):
        args = build_parser().parse_args(
            ["ws://10.0.0.2:81/", "part.nc", "--from-line", "120", "--sync-position",
             "--accounting", "lines", "-q"]
        )
        self.assertEqual(args.from_line, 120)
        self.assertTrue(args.sync_position)
        self.assertEqual(args.accounting, "lines")
        self.assertTrue(args.quiet)


class TestRunStream(unittest.TestCase):

    def setUp(self):
        self.grbl = Mock()
        self.grbl.is_connected.return_value = True
        self.events = queue.Queue()

    def test_done(self):
        self.events.put(("progress", 1, 2))
        self.events.put(("stream_state", "done", None))
        self.assertEqual(_run_stream(self.grbl, self.events, True), EXIT_OK)

    def test_alarm(self):
        self.events.put(("alarm", AlarmEvent(code=1, description="Hard limit")))
        self.assertEqual(_run_stream(self.grbl, self.events, True), EXIT_ALARM)

    def test_fatal(self):
        self.events.put(("fatal", "No acknowledgement"))
        self.assertEqual(_run_stream(self.grbl, self.events, True), EXIT_FAILED)

    def test_lost_connection(self):
        self.grbl.is_connected.return_value = False
        self.assertEqual(_run_stream(self.grbl, self.events, True), EXIT_FAILED)


class TestMain(unittest.TestCase):

    @patch("grbl_streamer.__main__.setup_logging")
    def test_missing_file(self, mock_setup_logging):
        self.assertEqual(main(["/dev/ttyUSB0", "/nonexistent/part.nc", "-q"]), EXIT_FAILED)
        mock_setup_logging.assert_called_once()


if __name__ == "__main__":
    unittest.main()
