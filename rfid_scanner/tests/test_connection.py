"""
Tests for the serial connection lifecycle
"""

import threading
import time
import unittest

import serial

from rfid_scanner.connection import (
    SEND_FAILED_MESSAGE, ConnectionListener, ConnectionManager, ConnectionSettings, ConnectionState,
    backoff_delay_ms
)
from rfid_scanner.exceptions import InvalidStateTransition
from rfid_scanner.port_locator import RFID_READER
from rfid_scanner.tests.fakes import FTDI_PORT, MOUSE_PORT, FakePorts, ManualScheduler, wait_for

class RecordingListener(ConnectionListener):

    def __init__(self):
        self.events = []

    def on_connected(self, path):
        self.events.append(('connected', path))

    def on_disconnected(self):
        self.events.append(('disconnected',))

    def on_error(self, message):
        self.events.append(('error', message))

    def on_line(self, line):
        self.events.append(('line', line))

    def named(self, name):
        return [event for event in self.events if event[0] == name]

class ConnectionTestCase(unittest.TestCase):
    ports = (MOUSE_PORT, FTDI_PORT)

    def setUp(self):
        self.scheduler = ManualScheduler()
        self.fake = FakePorts(self.ports)
        self.listener = RecordingListener()
        self.manager = ConnectionManager(
            ConnectionSettings(profile=RFID_READER, baud_rate=115200),
            listener=self.listener,
            scheduler=self.scheduler,
            port_lister=self.fake.list,
            port_opener=self.fake.open,
        )

    def tearDown(self):
        self.manager.stop()

class TestConnect(ConnectionTestCase):

    def test_opens_matching_port(self):
        self.manager.start()

        self.assertEqual(len(self.fake.opened), 1)
        handle = self.fake.last
        self.assertEqual(handle.port, '/dev/ttyUSB0')
        self.assertEqual(handle.baudrate, 115200)
        self.assertEqual(self.manager.state, ConnectionState.MONITORING)
        self.assertTrue(self.manager.is_connected)
        self.assertEqual(self.manager.path, '/dev/ttyUSB0')
        self.assertEqual(self.listener.named('connected'), [('connected', '/dev/ttyUSB0')])
        # only the removal monitor is scheduled
        self.assertEqual(self.scheduler.pending_delays(), [2.0])

    def test_status_snapshot(self):
        self.manager.start()
        self.assertEqual(self.manager.status(), {
            'device': 'rfid_reader',
            'state': 'monitoring',
            'connected': True,
            'path': '/dev/ttyUSB0',
            'attempt_count': 0,
        })

    def test_start_is_idempotent(self):
        self.manager.start()
        self.manager.start()
        self.assertEqual(len(self.fake.opened), 1)
        self.assertEqual(len(self.listener.named('connected')), 1)

    def test_lines_are_forwarded(self):
        self.manager.start()
        self.fake.last.feed(b"1,ABC,0,-20\r\n1,ABC,")
        self.fake.last.feed(b"5,-21\r\n")
        self.assertTrue(wait_for(lambda: len(self.listener.named('line')) == 2))
        self.assertEqual(self.listener.named('line'), [('line', '1,ABC,0,-20'), ('line', '1,ABC,5,-21')])
        self.assertEqual(self.listener.events[0], ('connected', '/dev/ttyUSB0'))

    def test_listener_failure_is_contained(self):
        class Broken(ConnectionListener):
            def on_connected(self, path):
                raise RuntimeError("boom")

        self.manager.listener = Broken()
        with self.assertLogs('rfid_scanner.connection', level='ERROR'):
            self.manager.start()
        self.assertEqual(self.manager.state, ConnectionState.MONITORING)

    def in_other_thread(self, func):
        """Run func on another thread; True if it finished promptly"""
        done = threading.Event()

        def run():
            func()
            done.set()

        threading.Thread(target=run, daemon=True).start()
        return done.wait(1.0)

    def test_lock_is_free_while_enumerating_and_opening(self):
        """status() from a request thread does not wait on a slow lookup or open"""
        responsive = []

        def slow_list():
            responsive.append(self.in_other_thread(self.manager.status))
            return self.fake.list()

        def slow_open(path, baud_rate, timeout):
            responsive.append(self.in_other_thread(self.manager.status))
            return self.fake.open(path, baud_rate, timeout)

        self.manager._port_lister = slow_list
        self.manager._port_opener = slow_open
        self.manager.start()

        self.assertEqual(responsive, [True, True])
        self.assertEqual(self.manager.state, ConnectionState.MONITORING)

    def test_stop_during_open_wins(self):
        def open_then_stopped(path, baud_rate, timeout):
            handle = self.fake.open(path, baud_rate, timeout)
            self.assertTrue(self.in_other_thread(self.manager.stop))
            return handle

        self.manager._port_opener = open_then_stopped
        self.manager.start()

        self.assertEqual(self.manager.state, ConnectionState.IDLE)
        self.assertFalse(self.fake.last.is_open)
        self.assertEqual(self.listener.named('connected'), [])
        self.assertEqual(self.scheduler.pending(), [])

    def test_stop_during_lookup_wins(self):
        def list_then_stopped():
            self.assertTrue(self.in_other_thread(self.manager.stop))
            return []

        self.manager._port_lister = list_then_stopped
        self.manager.start()

        self.assertEqual(self.manager.state, ConnectionState.IDLE)
        self.assertEqual(self.listener.events, [])
        self.assertEqual(self.scheduler.pending(), [])

    def test_illegal_transition(self):
        with self.assertRaises(InvalidStateTransition):
            self.manager._transition(ConnectionState.MONITORING)
        self.assertEqual(self.manager.state, ConnectionState.IDLE)

class TestBackoff(ConnectionTestCase):
    ports = (MOUSE_PORT,)

    def test_delay_formula(self):
        self.assertEqual([backoff_delay_ms(n, 10000) for n in range(1, 13)],
                         [1000, 2000, 3000, 4000, 5000, 6000, 7000, 8000, 9000, 10000, 10000, 10000])
        self.assertEqual(backoff_delay_ms(3, 2500), 2500)

    def test_missing_device_backs_off(self):
        self.manager.start()
        self.assertEqual(self.manager.state, ConnectionState.BACKOFF)
        self.assertEqual(self.fake.opened, [])
        errors = self.listener.named('error')
        self.assertEqual(len(errors), 1)
        self.assertIn("No rfid_reader found", errors[0][1])
        self.assertEqual(self.scheduler.pending_delays(), [1.0])

    def test_linear_capped_sequence(self):
        self.manager.start()
        delays = []
        for _ in range(12):
            pending = self.scheduler.pending_delays()
            self.assertEqual(len(pending), 1)
            delays.append(pending[0])
            self.scheduler.advance(pending[0])
        self.assertEqual(delays, [1.0, 2.0, 3.0, 4.0, 5.0, 6.0, 7.0, 8.0, 9.0, 10.0, 10.0, 10.0])
        self.assertEqual(self.manager.attempt_count, 13)

    def test_success_resets_attempts(self):
        self.manager.start()
        self.scheduler.advance(1.0)
        self.assertEqual(self.scheduler.pending_delays(), [2.0])

        self.fake.ports.append(FTDI_PORT)
        self.scheduler.advance(2.0)
        self.assertEqual(self.manager.state, ConnectionState.MONITORING)
        self.assertEqual(self.manager.attempt_count, 0)

        # unplug: the next retry starts from the first step again
        self.fake.ports.remove(FTDI_PORT)
        self.scheduler.advance(2.0)
        self.assertEqual(self.manager.state, ConnectionState.BACKOFF)
        self.assertEqual(self.scheduler.pending_delays(), [1.0])

    def test_open_failure_backs_off(self):
        self.fake.ports.append(FTDI_PORT)
        self.fake.open_error = serial.SerialException("[Errno 13] Permission denied: '/dev/ttyUSB0'")
        self.manager.start()
        self.assertEqual(self.manager.state, ConnectionState.BACKOFF)
        errors = self.listener.named('error')
        self.assertEqual(len(errors), 1)
        self.assertIn("Cannot open /dev/ttyUSB0", errors[0][1])
        self.assertEqual(self.listener.named('disconnected'), [])

    def test_enumeration_failure_backs_off(self):
        def broken_lister():
            raise OSError("no sysfs")

        self.manager._port_lister = broken_lister
        self.manager.start()
        self.assertEqual(self.manager.state, ConnectionState.BACKOFF)
        self.assertIn("no sysfs", self.listener.named('error')[0][1])

    def test_start_during_backoff_retries_now(self):
        self.manager.start()
        self.fake.ports.append(FTDI_PORT)
        self.manager.start()
        self.assertEqual(self.manager.state, ConnectionState.MONITORING)
        self.assertEqual(self.scheduler.pending_delays(), [2.0])

        # the superseded retry never fires
        self.scheduler.advance(1.0)
        self.assertEqual(len(self.fake.opened), 1)

class TestLoss(ConnectionTestCase):

    def test_monitor_detects_removal(self):
        self.manager.start()
        handle = self.fake.last

        self.fake.ports = [MOUSE_PORT]
        self.scheduler.advance(2.0)

        self.assertFalse(handle.is_open)
        self.assertEqual(self.manager.state, ConnectionState.BACKOFF)
        self.assertIsNone(self.manager.path)
        self.assertEqual(self.scheduler.pending_delays(), [1.0])

        # the reader thread also notices the closed port; teardown still runs once
        time.sleep(0.1)
        self.assertEqual(len(self.listener.named('disconnected')), 1)

    def test_monitor_rearms_while_present(self):
        self.manager.start()
        calls = self.fake.list_calls
        self.scheduler.advance(2.0)
        self.scheduler.advance(2.0)
        self.assertEqual(self.fake.list_calls, calls + 2)
        self.assertEqual(self.manager.state, ConnectionState.MONITORING)
        self.assertEqual(self.scheduler.pending_delays(), [2.0])

    def test_port_error_tears_down(self):
        self.manager.start()
        handle = self.fake.last
        handle.fail(serial.SerialException("device reports readiness to read but returned no data"))

        self.assertTrue(wait_for(lambda: self.listener.named('disconnected')))
        self.assertEqual(self.manager.state, ConnectionState.BACKOFF)
        self.assertFalse(handle.is_open)
        self.assertIn("returned no data", self.listener.named('error')[0][1])
        self.assertEqual(self.scheduler.pending_delays(), [1.0])

    def test_reconnects_after_loss(self):
        self.manager.start()
        self.fake.ports = [MOUSE_PORT]
        self.scheduler.advance(2.0)

        self.fake.ports = [MOUSE_PORT, FTDI_PORT]
        self.scheduler.advance(1.0)
        self.assertEqual(self.manager.state, ConnectionState.MONITORING)
        self.assertEqual(len(self.fake.opened), 2)
        self.assertEqual([e[0] for e in self.listener.events if e[0] != 'line'],
                         ['connected', 'disconnected', 'connected'])

class TestSend(ConnectionTestCase):

    def test_send_appends_newline(self):
        self.manager.start()
        self.assertTrue(self.manager.send('x'))
        self.assertEqual(self.fake.last.written, [b'x\n'])

    def test_send_while_closed_starts_connection(self):
        self.assertFalse(self.manager.send('x'))
        self.assertEqual(self.listener.events[0], ('error', SEND_FAILED_MESSAGE))
        self.assertEqual(self.manager.state, ConnectionState.MONITORING)
        self.assertEqual(self.fake.last.written, [])

    def test_send_during_backoff_hastens_retry(self):
        self.fake.ports = [MOUSE_PORT]
        self.manager.start()
        self.fake.ports.append(FTDI_PORT)
        self.assertFalse(self.manager.send('x'))
        self.assertEqual(self.manager.state, ConnectionState.MONITORING)

    def test_write_error_tears_down(self):
        self.manager.start()
        handle = self.fake.last
        handle.write_error = serial.SerialTimeoutException("Write timeout")

        self.assertFalse(self.manager.send('x'))
        self.assertIn(('error', "Error sending data: Write timeout"), self.listener.events)
        self.assertEqual(len(self.listener.named('disconnected')), 1)
        self.assertEqual(self.manager.state, ConnectionState.BACKOFF)
        self.assertFalse(handle.is_open)

class TestStop(ConnectionTestCase):

    def test_stop_closes_quietly(self):
        self.manager.start()
        handle = self.fake.last
        events = len(self.listener.events)

        self.manager.stop()

        self.assertEqual(self.manager.state, ConnectionState.IDLE)
        self.assertFalse(handle.is_open)
        self.assertEqual(self.scheduler.pending(), [])
        self.assertEqual(len(self.listener.events), events)

    def test_stop_cancels_backoff(self):
        self.fake.ports = [MOUSE_PORT]
        self.manager.start()
        calls = self.fake.list_calls

        self.manager.stop()
        self.scheduler.advance(30.0)

        self.assertEqual(self.manager.state, ConnectionState.IDLE)
        self.assertEqual(self.fake.list_calls, calls)

    def test_restart_after_stop(self):
        self.manager.start()
        self.manager.stop()
        self.manager.start()
        self.assertEqual(self.manager.state, ConnectionState.MONITORING)
        self.assertEqual(len(self.fake.opened), 2)

if __name__ == "__main__":
    unittest.main()
