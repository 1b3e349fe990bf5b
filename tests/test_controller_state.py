"""
Unit tests for alarm latching, resets, the ack watchdog and overrides.
"""

import time
import unittest
from unittest import mock

from grbl_streamer.types import AlarmEvent, CommandKind, MachineState
from grbl_streamer.utils.exceptions import GrblAlarmException, GrblNotConnectedException

from tests.fakes import STARTUP_BANNER, STATUS_IDLE, drain, make_controller, names


class TestAlarmLatch(unittest.TestCase):
    """An alarm blocks pushing until recovery is confirmed by a status report."""

    def setUp(self):
        self.grbl, self.transport, self.events = make_controller()
        self.grbl.handle_line(STATUS_IDLE)

    def test_alarm_blocks_queue(self):
        self.grbl.handle_line("ALARM:1")
        alarms = [e for e in drain(self.events) if e[0] == "alarm"]
        self.assertEqual(len(alarms), 1)
        self.assertIsInstance(alarms[0][1], AlarmEvent)
        self.assertEqual(alarms[0][1].code, 1)

        self.grbl.enqueue("G0 X5")
        self.assertEqual(self.transport.lines(), [])
        snap = self.grbl.snapshot()
        self.assertIs(snap.state, MachineState.ALARM)
        self.assertEqual(snap.alarm_code, 1)
        self.assertEqual(snap.pending_count, 1)

    def test_stale_idle_does_not_clear_alarm(self):
        self.grbl.handle_line("ALARM:9")
        self.grbl.handle_line(STATUS_IDLE)
        self.assertIs(self.grbl.snapshot().state, MachineState.ALARM)
        self.assertTrue(self.grbl.model.alarm_active)

    def test_unlock_recovery(self):
        self.grbl.handle_line("ALARM:9")
        self.grbl.enqueue("G0 X5")

        self.grbl.unlock()
        self.assertEqual(self.transport.lines(), ["$X"])

        self.grbl.handle_line("<Alarm|MPos:0.000,0.000,0.000|FS:0,0>")
        self.grbl.handle_line("[MSG:Caution: Unlocked]")
        self.grbl.handle_line("ok")
        self.assertEqual(self.transport.lines(), ["$X"])

        self.grbl.handle_line(STATUS_IDLE)
        self.assertEqual(self.transport.lines(), ["$X", "G0 X5"])
        snap = self.grbl.snapshot()
        self.assertIs(snap.state, MachineState.IDLE)
        self.assertIsNone(snap.alarm_code)

    def test_jog_refused_during_alarm(self):
        self.grbl.handle_line("ALARM:2")
        with self.assertRaises(GrblAlarmException) as ctx:
            self.grbl.jog({"X": 1}, 500)
        self.assertEqual(ctx.exception.alarm_code, 2)
        self.assertEqual(self.grbl.snapshot().pending_count, 0)

    def test_home_jumps_the_queue(self):
        self.grbl.handle_line("ALARM:9")
        self.grbl.enqueue("G0 X5")
        self.grbl.home()
        self.assertEqual(self.transport.lines(), ["$H"])
        self.assertEqual([c.raw_text for c in self.grbl.queue.pending_commands()], ["G0 X5"])

    def test_reset_to_continue_message_latches(self):
        self.grbl.handle_line("[MSG:Reset to continue]")
        self.assertTrue(self.grbl.model.alarm_active)
        alarms = [e for e in drain(self.events) if e[0] == "alarm"]
        self.assertIsNone(alarms[0][1].code)

    def test_alarm_during_stream_then_soft_reset(self):
        self.grbl.enqueue_program(["G1 X1", "G1 X2"])
        self.grbl.handle_line("ALARM:1")
        stream_states = [e[1] for e in drain(self.events) if e[0] == "stream_state"]
        self.assertEqual(stream_states[-1], "alarm")

        self.grbl.soft_reset()
        self.grbl.handle_line(STARTUP_BANNER)
        self.grbl.handle_line(STATUS_IDLE)
        snap = self.grbl.snapshot()
        self.assertIs(snap.state, MachineState.IDLE)
        self.assertEqual(snap.in_flight_count, 0)
        self.assertFalse(self.grbl.model.alarm_active)

    def test_door_blocks_until_closed(self):
        self.grbl.handle_line("<Door:0|MPos:0.000,0.000,0.000|FS:0,0>")
        self.grbl.enqueue("G0 X1")
        self.assertEqual(self.transport.lines(), [])
        self.grbl.handle_line(STATUS_IDLE)
        self.assertEqual(self.transport.lines(), ["G0 X1"])


class TestResets(unittest.TestCase):

    def test_soft_reset_clears_queues_and_waits_for_banner(self):
        grbl, transport, events = make_controller(buffer_accounting="lines", buffer_capacity=2)
        for i in range(7):
            grbl.enqueue(f"G0 X{i}")
        snap = grbl.snapshot()
        self.assertEqual((snap.pending_count, snap.in_flight_count), (5, 2))

        grbl.soft_reset()
        self.assertEqual(transport.realtime(), [b"\x18"])
        snap = grbl.snapshot()
        self.assertEqual((snap.pending_count, snap.in_flight_count), (0, 0))
        self.assertIs(snap.state, MachineState.UNKNOWN)
        self.assertFalse(snap.ready)

        grbl.enqueue("G0 X9")
        self.assertEqual(len(transport.lines()), 2)

        drain(events)
        grbl.handle_line(STARTUP_BANNER)
        self.assertEqual(transport.lines()[-1], "G0 X9")
        event_list = drain(events)
        self.assertNotIn("stream_interrupted", names(event_list))
        self.assertIn(("startup", "1.1h"), event_list)
        self.assertIn(("ready", True), event_list)

    def test_grblhal_banner_ends_reset_wait(self):
        grbl, transport, events = make_controller()
        grbl.soft_reset()
        grbl.handle_line("GrblHAL 1.1f ['$' or '$HELP' for help]")
        grbl.handle_line(STATUS_IDLE)
        grbl.enqueue("G0 X1")
        self.assertEqual(transport.lines(), ["G0 X1"])
        self.assertIn(("startup", "1.1f"), drain(events))

    def test_unexpected_reset_interrupts_stream(self):
        grbl, transport, events = make_controller(buffer_capacity=20)
        grbl.enqueue_program(["G1 X1", "G1 X2", "G1 X3", "G1 X4", "G1 X5"])
        grbl.handle_line("ok")
        drain(events)

        grbl.handle_line(STARTUP_BANNER)
        event_list = drain(events)
        self.assertIn(("stream_interrupted", 1, "unexpected device reset"), event_list)
        self.assertIn(("stream_state", "stopped", "unexpected device reset"), event_list)
        self.assertTrue(grbl.queue.is_empty())

    def test_unexpected_reset_without_program(self):
        grbl, transport, events = make_controller()
        grbl.enqueue("G0 X1")
        grbl.handle_line(STARTUP_BANNER)
        self.assertNotIn("stream_interrupted", names(drain(events)))
        self.assertEqual(grbl.snapshot().in_flight_count, 0)

    def test_disconnect(self):
        grbl, transport, events = make_controller()
        grbl.enqueue("G0 X1")
        grbl.disconnect()
        self.assertFalse(grbl.is_connected())
        self.assertTrue(grbl.queue.is_empty())
        self.assertIn(("conn", False, None), drain(events))


class TestAckWatchdog(unittest.TestCase):

    def test_no_trip_before_timeout(self):
        grbl, transport, events = make_controller()
        grbl.enqueue("G0 X1")
        self.assertFalse(grbl.check_ack_timeout(now=time.time() + 5))
        self.assertTrue(transport.is_open)

    def test_trip_after_timeout(self):
        grbl, transport, events = make_controller()
        grbl.handle_line(STATUS_IDLE)
        grbl.enqueue("G0 X1")
        self.assertTrue(grbl.check_ack_timeout(now=time.time() + 11))
        event_list = drain(events)
        self.assertIn("fatal", names(event_list))
        self.assertFalse(transport.is_open)
        self.assertIs(grbl.snapshot().state, MachineState.UNKNOWN)

    def test_trip_during_stream_reports_last_line(self):
        grbl, transport, events = make_controller()
        grbl.enqueue_program(["G1 X1", "G1 X2"])
        grbl.handle_line("ok")
        self.assertTrue(grbl.check_ack_timeout(now=time.time() + 11))
        interrupted = [e for e in drain(events) if e[0] == "stream_interrupted"]
        self.assertEqual(interrupted[0][1], 1)

    def test_status_replies_keep_synchronizing_line_alive(self):
        # GRBL withholds the ok for M5 until the long cut before it finishes.
        grbl, transport, events = make_controller()
        grbl.handle_line(STATUS_IDLE)
        t0 = time.time()
        grbl.enqueue_program(["G1 X100 F100", "M5"])
        grbl.handle_line("ok")
        clock = mock.Mock()
        with mock.patch("grbl_streamer.controller_status.time", clock):
            for i in range(60):
                clock.time.return_value = t0 + i * 0.25
                grbl.handle_line(f"<Run|MPos:{i}.000,0.000,0.000|FS:100,0>")
        self.assertEqual(grbl.queue.head().command.raw_text, "M5")
        self.assertFalse(grbl.check_ack_timeout(now=t0 + 15))
        self.assertFalse(grbl.check_ack_timeout(now=t0 + 24))
        self.assertTrue(transport.is_open)
        self.assertNotIn("fatal", names(drain(events)))

        # A silent link still trips once nothing at all has arrived.
        self.assertTrue(grbl.check_ack_timeout(now=t0 + 14.75 + 11))
        self.assertFalse(transport.is_open)

    def test_nothing_in_flight(self):
        grbl, transport, events = make_controller()
        self.assertFalse(grbl.check_ack_timeout(now=time.time() + 100))

    def test_exempt_in_hold(self):
        grbl, transport, events = make_controller()
        grbl.enqueue("G0 X1")
        grbl.handle_line("<Hold:0|MPos:0.000,0.000,0.000|FS:0,0>")
        self.assertFalse(grbl.check_ack_timeout(now=time.time() + 100))

    def test_suspended_while_homing(self):
        grbl, transport, events = make_controller()
        grbl.home()
        self.assertFalse(grbl.check_ack_timeout(now=time.time() + 11))
        grbl.clear_watchdog_ignore("homing")
        self.assertTrue(grbl.check_ack_timeout(now=time.time() + 11))

    def test_disabled(self):
        grbl, transport, events = make_controller(ack_timeout=0)
        grbl.enqueue("G0 X1")
        self.assertFalse(grbl.check_ack_timeout(now=time.time() + 1000))


class TestOverrides(unittest.TestCase):

    def setUp(self):
        self.grbl, self.transport, self.events = make_controller()

    def test_prediction_then_correction(self):
        self.assertEqual(self.grbl.set_override("feed", "+10"), (110, 100, 100))
        self.assertEqual(self.transport.realtime(), [b"\x91"])
        overrides = self.grbl.snapshot().overrides
        self.assertTrue(overrides.predicted)
        self.assertEqual(overrides.generation, 0)

        self.grbl.handle_line("<Run|MPos:0.000,0.000,0.000|FS:500,0|Ov:120,100,100>")
        overrides = self.grbl.snapshot().overrides
        self.assertEqual((overrides.feed, overrides.rapid, overrides.spindle), (120, 100, 100))
        self.assertFalse(overrides.predicted)
        self.assertEqual(overrides.generation, 1)

        self.grbl.handle_line("<Run|MPos:0.000,0.000,0.000|FS:500,0|Ov:120,100,100>")
        self.assertEqual(self.grbl.snapshot().overrides.generation, 1)

        self.grbl.handle_line("<Run|MPos:0.000,0.000,0.000|FS:500,0|Ov:100,100,100>")
        self.assertEqual(self.grbl.snapshot().overrides.generation, 2)

    def test_prediction_is_clamped(self):
        for _ in range(20):
            predicted = self.grbl.set_override("feed", "+10")
        self.assertEqual(predicted[0], 200)
        for _ in range(30):
            predicted = self.grbl.set_override("spindle", "-10")
        self.assertEqual(predicted[2], 10)

    def test_rapid_levels(self):
        self.assertEqual(self.grbl.set_override("rapid", "25"), (100, 25, 100))
        self.assertEqual(self.grbl.set_override("rapid", "reset"), (100, 100, 100))
        self.assertEqual(self.transport.realtime(), [b"\x97", b"\x95"])

    def test_soft_reset_restores_defaults(self):
        self.grbl.set_override("feed", "+10")
        self.grbl.soft_reset()
        overrides = self.grbl.snapshot().overrides
        self.assertEqual((overrides.feed, overrides.rapid, overrides.spindle), (100, 100, 100))


class TestDeviceReports(unittest.TestCase):

    def setUp(self):
        self.grbl, self.transport, self.events = make_controller()

    def test_first_status_marks_ready(self):
        self.grbl.handle_line(STATUS_IDLE)
        event_list = drain(self.events)
        self.assertIn(("ready", True), event_list)
        self.assertIn("status", names(event_list))
        self.assertTrue(self.grbl.snapshot().ready)

    def test_work_position_from_offset(self):
        self.grbl.handle_line("<Idle|MPos:10.000,5.000,0.000|FS:0,0|WCO:1.000,1.000,0.000>")
        self.grbl.handle_line("<Idle|MPos:11.000,5.000,0.000|FS:0,0>")
        snap = self.grbl.snapshot()
        self.assertEqual(snap.work_position, (10.0, 4.0, 0.0))
        self.assertEqual(snap.work_offset, (1.0, 1.0, 0.0))

    def test_settings_and_modal_state(self):
        self.grbl.handle_line("$110=500.000")
        self.grbl.handle_line("[GC:G0 G54 G17 G21 G90 G94 M5 M9 T0 F0 S0]")
        self.assertEqual(self.grbl.model.settings[110], "500.000")
        self.assertEqual(self.grbl.snapshot().modal_state["units"], "G21")
        event_list = drain(self.events)
        self.assertIn(("setting", 110, "500.000"), event_list)
        self.assertIn(("feedback", "GC", "G0 G54 G17 G21 G90 G94 M5 M9 T0 F0 S0"), event_list)

    def test_startup_blocks(self):
        self.grbl.handle_line("$N0=G20 G54")
        self.grbl.handle_line("$N1=")
        self.assertEqual(self.grbl.model.startup_blocks, {"N0": "G20 G54", "N1": ""})
        self.assertEqual(self.grbl.model.settings, {})
        self.assertIn(("startup_block", "N0", "G20 G54"), drain(self.events))

    def test_settings_dump_done(self):
        self.grbl.request_settings()
        self.assertEqual(self.transport.lines(), ["$$"])
        self.grbl.handle_line("$0=10")
        self.grbl.handle_line("$110=500.000")
        self.assertNotIn("settings_done", names(drain(self.events)))
        self.grbl.handle_line("ok")
        self.assertIn(("settings_done", {0: "10", 110: "500.000"}), drain(self.events))

    def test_other_ok_does_not_end_settings_dump(self):
        self.grbl.request_parser_state()
        self.grbl.handle_line("ok")
        self.assertNotIn("settings_done", names(drain(self.events)))

    def test_unknown_line(self):
        self.grbl.handle_line("garbage")
        self.assertIn(("unknown", "garbage"), drain(self.events))


class TestWorkCoordinates(unittest.TestCase):

    def setUp(self):
        self.grbl, self.transport, self.events = make_controller()
        self.grbl.handle_line(STATUS_IDLE)

    def test_zero_work_position(self):
        command = self.grbl.zero_work_position()
        self.assertIs(command.kind, CommandKind.SYSTEM)
        self.assertEqual(self.transport.lines(), ["G10 L20 P0 X0 Y0 Z0"])

    def test_go_to_work_zero(self):
        self.grbl.go_to_work_zero()
        self.assertEqual(self.transport.lines(), ["G90 G0 X0 Y0"])

    def test_requires_connection(self):
        self.grbl.disconnect()
        with self.assertRaises(GrblNotConnectedException):
            self.grbl.zero_work_position()


if __name__ == "__main__":
    unittest.main()
