"""
Unit tests for transport line framing and transport selection.
"""

import unittest
from unittest.mock import Mock

import serial

from grbl_streamer.transport import (
    SerialTransport,
    TelnetTransport,
    WebSocketTransport,
    open_transport,
)
from grbl_streamer.transport.telnet_transport import strip_telnet_negotiation
from grbl_streamer.utils.constants import RX_LINE_MAX
from grbl_streamer.utils.exceptions import InvalidParameterError, TransportWriteError

from tests.fakes import FakeTransport


class TestLineFraming(unittest.TestCase):

    def test_lines_split_across_chunks(self):
        transport = FakeTransport()
        transport.incoming = b"ok\r\n\r\n<Idle|MPos:0.000,0.000,0.000|FS:0,0>\nerr"
        self.assertEqual(transport.read_line(), "ok")
        self.assertEqual(transport.read_line(), "<Idle|MPos:0.000,0.000,0.000|FS:0,0>")
        self.assertIsNone(transport.read_line())

        transport.incoming = b"or:9\n"
        self.assertEqual(transport.read_line(), "error:9")
        self.assertIsNone(transport.read_line())

    def test_invalid_utf8_is_replaced(self):
        transport = FakeTransport()
        transport.incoming = b"[MSG:\xff]\n"
        self.assertEqual(transport.read_line(), "[MSG:\ufffd]")

    def test_runaway_partial_line_discarded(self):
        transport = FakeTransport()
        transport.incoming = b"x" * (RX_LINE_MAX + 1)
        with self.assertLogs("grbl_streamer.transport.base", level="WARNING"):
            self.assertIsNone(transport.read_line())
        transport.incoming = b"ok\n"
        self.assertEqual(transport.read_line(), "ok")


class TestTelnetNegotiation(unittest.TestCase):

    def test_plain_data_untouched(self):
        self.assertEqual(strip_telnet_negotiation(b"ok\n"), b"ok\n")

    def test_option_negotiation_dropped(self):
        self.assertEqual(strip_telnet_negotiation(b"\xff\xfb\x01ok\n"), b"ok\n")
        self.assertEqual(strip_telnet_negotiation(b"ok\xff\xfd\x03\n"), b"ok\n")

    def test_escaped_iac(self):
        self.assertEqual(strip_telnet_negotiation(b"a\xff\xffb"), b"a\xffb")


class TestOpenTransport(unittest.TestCase):

    def test_websocket_url(self):
        transport = open_transport("ws://192.168.0.50:81/")
        self.assertIsInstance(transport, WebSocketTransport)
        self.assertFalse(transport.is_open)

    def test_telnet_url(self):
        transport = open_transport("telnet://10.0.0.5:2323")
        self.assertIsInstance(transport, TelnetTransport)
        self.assertEqual((transport.host, transport.port), ("10.0.0.5", 2323))

    def test_tcp_url_default_port(self):
        transport = open_transport("tcp://grbl.local")
        self.assertEqual(transport.port, 23)

    def test_serial_port(self):
        transport = open_transport("/dev/ttyUSB0", 115200, connect_delay=0)
        self.assertIsInstance(transport, SerialTransport)
        self.assertEqual(transport.baud, 115200)
        self.assertFalse(transport.is_open)

    def test_missing_host(self):
        with self.assertRaises(InvalidParameterError):
            open_transport("telnet://")

    def test_bad_baud(self):
        with self.assertRaises(InvalidParameterError):
            open_transport("/dev/ttyUSB0", 1234)


class TestSerialWrites(unittest.TestCase):

    def setUp(self):
        self.transport = SerialTransport("/dev/ttyUSB0", connect_delay=0)
        self.transport.ser = Mock()

    def test_partial_writes_are_completed(self):
        self.transport.ser.write.side_effect = [3, 3]
        self.transport.write(b"G0 X1\n")
        self.assertEqual(self.transport.ser.write.call_count, 2)
        self.transport.ser.write.assert_called_with(b"X1\n")

    def test_zero_byte_write_fails(self):
        self.transport.ser.write.return_value = 0
        with self.assertRaises(TransportWriteError):
            self.transport.write(b"?")

    def test_serial_exception_wrapped(self):
        self.transport.ser.write.side_effect = serial.SerialException("unplugged")
        with self.assertRaises(TransportWriteError):
            self.transport.write(b"?")

    def test_write_when_closed(self):
        self.transport.ser = None
        with self.assertRaises(TransportWriteError):
            self.transport.write(b"?")


if __name__ == "__main__":
    unittest.main()
