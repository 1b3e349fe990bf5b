"""
Unit tests for resume-from-line and the modal preamble builder.
"""

import unittest

from grbl_streamer.resume import build_resume_preamble, format_position_sync
from grbl_streamer.utils.exceptions import InvalidParameterError, ResumePreconditionError

from tests.fakes import STATUS_IDLE, drain, make_controller


def queued_after_resume(grbl, transport, already_sent=0):
    """Everything the resume put on the wire or left pending, in order."""
    sent = transport.lines()[already_sent:]
    pending = [c.raw_text for c in grbl.queue.pending_commands()]
    return sent + pending


class TestResumeFromLine(unittest.TestCase):

    def setUp(self):
        self.grbl, self.transport, self.events = make_controller()
        self.program = [f"G1 X{i}" for i in range(1, 101)]
        self.grbl.load_program(self.program)
        self.grbl.handle_line(STATUS_IDLE)

    def test_resume_queues_exactly_the_tail(self):
        result = self.grbl.resume_from(50, restore_modal=False)
        self.assertEqual(result.status, "resumed")
        self.assertEqual(result.queued, 51)
        self.assertEqual(result.preamble, ())
        self.assertEqual(
            queued_after_resume(self.grbl, self.transport),
            [f"G1 X{i}" for i in range(50, 101)],
        )
        event_list = drain(self.events)
        self.assertIn(("stream_state", "running", None), event_list)
        self.assertIn(("resume", result), event_list)

    def test_source_line_numbers_survive(self):
        self.grbl.resume_from(98, restore_modal=False)
        for _ in range(3):
            self.grbl.handle_line("ok")
        self.assertEqual(self.grbl.last_acked_line, 100)
        self.assertIn(("stream_state", "done", None), drain(self.events))

    def test_nothing_to_resume(self):
        result = self.grbl.resume_from(101)
        self.assertEqual(result.status, "nothing_to_resume")
        self.assertEqual(self.transport.lines(), [])

    def test_resume_in_run_is_rejected(self):
        self.grbl.handle_line("<Run|MPos:0.000,0.000,0.000|FS:100,0>")
        with self.assertRaises(ResumePreconditionError) as ctx:
            self.grbl.resume_from(50)
        self.assertEqual(ctx.exception.machine_state, "Run")

    def test_resume_in_alarm_is_rejected(self):
        self.grbl.handle_line("ALARM:1")
        with self.assertRaises(ResumePreconditionError):
            self.grbl.resume_from(50)

    def test_resume_in_hold_is_allowed(self):
        self.grbl.handle_line("<Hold:0|MPos:0.000,0.000,0.000|FS:0,0>")
        self.assertEqual(self.grbl.resume_from(100, restore_modal=False).status, "resumed")

    def test_invalid_line_number(self):
        with self.assertRaises(InvalidParameterError):
            self.grbl.resume_from(0)

    def test_resume_drops_previous_pending(self):
        grbl, transport, events = make_controller(buffer_accounting="lines", buffer_capacity=1)
        grbl.load_program(["G1 X1", "G1 X2", "G1 X3"])
        grbl.handle_line(STATUS_IDLE)
        grbl.enqueue("G0 Z5")
        grbl.enqueue("G0 Z6")
        grbl.resume_from(2, restore_modal=False)
        self.assertEqual(
            [c.raw_text for c in grbl.queue.pending_commands()],
            ["G1 X2", "G1 X3"],
        )

    def test_sync_position(self):
        grbl, transport, events = make_controller()
        grbl.load_program(["G1 X1", "G1 X2"])
        grbl.handle_line("<Idle|WPos:1.000,2.500,-3.000|FS:0,0>")
        grbl.resume_from(2, sync_position=True, restore_modal=False)
        self.assertEqual(transport.lines(), ["G92 X1.000 Y2.500 Z-3.000", "G1 X2"])

    def test_sync_position_needs_a_report(self):
        grbl, transport, events = make_controller()
        grbl.load_program(["G1 X1", "G1 X2"])
        grbl.handle_line("<Idle|FS:0,0>")
        with self.assertRaises(ResumePreconditionError):
            grbl.resume_from(2, sync_position=True)
        self.assertEqual(transport.lines(), [])

    def test_modal_preamble_is_sent_first(self):
        grbl, transport, events = make_controller()
        grbl.load_program(["G21", "G90", "G1 F500", "M3 S1000", "G1 X1", "G1 X2", "G1 X3"])
        grbl.handle_line(STATUS_IDLE)
        result = grbl.resume_from(6)
        self.assertEqual(result.preamble, ("G21", "G90", "F500", "M3 S1000"))
        self.assertEqual(
            transport.lines(),
            ["G21", "G90", "F500", "M3 S1000", "G1 X2", "G1 X3"],
        )


class TestResumePreamble(unittest.TestCase):

    def test_modal_groups(self):
        lines = [
            "G20 G91 G18",
            "G91.1 G93",
            "G55",
            "G1 X1 F12.5",
            "M4 S800",
            "M8",
        ]
        preamble, has_g92 = build_resume_preamble(lines, len(lines))
        self.assertEqual(
            preamble,
            ["G20", "G91", "G18", "G91.1", "G93", "G55", "F12.5", "M4 S800", "M8"],
        )
        self.assertFalse(has_g92)

    def test_later_words_win_and_spindle_off(self):
        lines = ["G20", "G21", "M3 S1000", "M5", "M8", "M9"]
        preamble, _ = build_resume_preamble(lines, len(lines))
        self.assertEqual(preamble, ["G21", "M5", "M9"])

    def test_stop_index_limits_scan(self):
        lines = ["G21", "G1 X1", "G20"]
        preamble, _ = build_resume_preamble(lines, 2)
        self.assertEqual(preamble, ["G21"])

    def test_comments_ignored_and_g92_detected(self):
        lines = ["(G20 in a comment)", "G21 ; G91 here too", "G92 X0 Y0"]
        preamble, has_g92 = build_resume_preamble(lines, len(lines))
        self.assertEqual(preamble, ["G21"])
        self.assertTrue(has_g92)

    def test_format_position_sync(self):
        self.assertEqual(format_position_sync((0, 1.25, -2)), "G92 X0.000 Y1.250 Z-2.000")


if __name__ == "__main__":
    unittest.main()
