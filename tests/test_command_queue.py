"""
Unit tests for the pending/in-flight FIFOs and buffer accounting.
"""

import random
import unittest

from grbl_streamer.command_queue import CommandQueue, is_recovery_command
from grbl_streamer.types import CommandKind
from grbl_streamer.utils.exceptions import GrblBufferOverflowException, InvalidParameterError


class TestCommandConstruction(unittest.TestCase):

    def test_byte_footprint_counts_newline(self):
        q = CommandQueue(127, "bytes")
        cmd = q.make_command("G1 X10 F500")
        self.assertEqual(cmd.footprint, len("G1 X10 F500") + 1)

    def test_line_footprint_is_one(self):
        q = CommandQueue(15, "lines")
        self.assertEqual(q.make_command("G1 X10 F500").footprint, 1)

    def test_ids_are_unique_and_increasing(self):
        q = CommandQueue()
        first = q.make_command("G0 X1")
        second = q.make_command("G0 X1")
        self.assertLess(first.id, second.id)

    def test_rejects_empty_and_multiline(self):
        q = CommandQueue()
        with self.assertRaises(InvalidParameterError):
            q.make_command("   ")
        with self.assertRaises(InvalidParameterError):
            q.make_command("G0 X1\nG0 X2")

    def test_long_line_warns(self):
        q = CommandQueue()
        with self.assertLogs("grbl_streamer.command_queue", level="WARNING"):
            q.make_command("G1 X" + "1" * 90)

    def test_recovery_commands(self):
        self.assertTrue(is_recovery_command("$X"))
        self.assertTrue(is_recovery_command(" $h "))
        self.assertFalse(is_recovery_command("$$"))
        self.assertFalse(is_recovery_command("G0 X1"))


class TestFlowControl(unittest.TestCase):

    def test_fifo_ack_order(self):
        q = CommandQueue()
        commands = [q.make_command(f"G0 X{i}") for i in range(3)]
        q.extend(commands)
        for _ in commands:
            q.pop_for_send(now=0.0)
        acked = [q.acknowledge().command for _ in commands]
        self.assertEqual(acked, commands)
        self.assertIsNone(q.acknowledge())
        self.assertEqual(q.in_flight_total, 0)

    def test_fits_respects_capacity(self):
        q = CommandQueue(capacity=12)
        q.enqueue(q.make_command("G0 X1"))   # 6 bytes
        q.enqueue(q.make_command("G0 X22"))  # 7 bytes
        self.assertTrue(q.fits(q.peek_pending()))
        q.pop_for_send()
        self.assertFalse(q.fits(q.peek_pending()))
        q.acknowledge()
        self.assertTrue(q.fits(q.peek_pending()))

    def test_oversized_goes_alone(self):
        q = CommandQueue(capacity=10)
        small = q.make_command("G0 X1")
        big = q.make_command("G1 X100.000 Y100.000", CommandKind.PROGRAM)
        q.enqueue(small)
        q.enqueue(big)
        q.pop_for_send()
        self.assertFalse(q.fits(big))
        q.acknowledge()
        self.assertTrue(q.fits(big))
        q.pop_for_send()
        self.assertTrue(q.oversized_in_flight())

    def test_oversized_system_command_while_oversized_in_flight(self):
        q = CommandQueue(capacity=10)
        q.enqueue(q.make_command("G1 X100.000 Y100.000", CommandKind.PROGRAM))
        q.pop_for_send()
        with self.assertRaises(GrblBufferOverflowException):
            q.enqueue(q.make_command("$J=G91 X100.000 F1000"))
        # Program commands still queue; they wait for the buffer to drain.
        q.enqueue(q.make_command("G1 X200.000 Y200.000", CommandKind.PROGRAM))
        self.assertEqual(q.pending_count, 1)

    def test_unsend_restores_pending_head(self):
        q = CommandQueue()
        first = q.make_command("G0 X1")
        second = q.make_command("G0 X2")
        q.extend([first, second])
        entry = q.pop_for_send()
        q.unsend(entry)
        self.assertEqual(q.pending_commands(), (first, second))
        self.assertEqual(q.in_flight_total, 0)

    def test_front_insert_and_drop_by_kind(self):
        q = CommandQueue()
        q.enqueue(q.make_command("$J=G91 X1 F100", CommandKind.JOG))
        q.enqueue(q.make_command("G0 X1"))
        unlock = q.make_command("$X")
        q.enqueue(unlock, front=True)
        self.assertIs(q.peek_pending(), unlock)
        self.assertEqual(q.drop_pending(CommandKind.JOG), 1)
        self.assertEqual([c.raw_text for c in q.pending_commands()], ["$X", "G0 X1"])

    def test_clear(self):
        q = CommandQueue()
        q.extend(q.make_command(f"G0 X{i}") for i in range(5))
        q.pop_for_send()
        q.pop_for_send()
        self.assertEqual(q.clear(), (3, 2))
        self.assertTrue(q.is_empty())
        self.assertEqual(q.in_flight_total, 0)

    def test_program_work_tracking(self):
        q = CommandQueue()
        q.enqueue(q.make_command("G1 X1", CommandKind.PROGRAM, source_line=1))
        self.assertTrue(q.has_program_work())
        self.assertFalse(q.program_in_flight())
        q.pop_for_send()
        self.assertTrue(q.program_in_flight())
        q.acknowledge()
        self.assertFalse(q.has_program_work())

    def test_randomized_stream_never_exceeds_capacity(self):
        rng = random.Random(20240611)
        capacity = 64
        q = CommandQueue(capacity=capacity)
        texts = ["G1 X" + "9" * rng.randint(1, 36) for _ in range(300)]
        q.extend(q.make_command(text, CommandKind.PROGRAM) for text in texts)

        sent = []
        outstanding = []
        while not q.is_empty():
            while q.peek_pending() is not None and q.fits(q.peek_pending()):
                entry = q.pop_for_send()
                sent.append(entry.command.raw_text)
                outstanding.append(entry.command)
            self.assertLessEqual(q.in_flight_total, capacity)
            self.assertEqual(q.in_flight_total, sum(c.footprint for c in outstanding))
            # Acknowledge a random number of the outstanding lines.
            for _ in range(rng.randint(1, max(1, len(outstanding)))):
                acked = q.acknowledge()
                if acked is None:
                    break
                self.assertIs(acked.command, outstanding.pop(0))

        self.assertEqual(sent, texts)
        self.assertEqual(q.in_flight_total, 0)


if __name__ == "__main__":
    unittest.main()
