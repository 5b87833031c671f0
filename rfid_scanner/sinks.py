"""
Collaborator sinks: where the scanner's events leave the core.

A sink only forwards; it makes no decisions. ``ScanSink`` is the interface,
the rest are thin adapters (logging, CSV audit trail, Socket.IO broadcast).
"""

import csv
import logging
import os
import threading
from typing import Iterable, Optional

from .reading import Reading

logger = logging.getLogger(__name__)

CSV_HEADER = ['Port', 'TagID', 'TimestampUTC', 'RSSI']

class ScanSink:
    """Receives scanner events. Subclass and override what you need."""

    def status_changed(self, status: str, tag_id: Optional[str] = None) -> None:
        pass

    def scan_confirmed(self, result) -> None:
        pass

    def raw_reading_observed(self, reading: Reading) -> None:
        pass

    def reader_connected(self, path: str) -> None:
        pass

    def reader_disconnected(self) -> None:
        pass

    def reader_error(self, message: str) -> None:
        pass

class CompositeSink(ScanSink):
    """Fans each event out to several sinks; one failing sink does not starve the others"""

    def __init__(self, sinks: Iterable[ScanSink] = ()):
        self.sinks = list(sinks)

    def add(self, sink: ScanSink) -> None:
        self.sinks.append(sink)

    def _each(self, method: str, *args) -> None:
        for sink in self.sinks:
            try:
                getattr(sink, method)(*args)
            except Exception:
                logger.exception(f"Sink {type(sink).__name__}.{method} failed")

    def status_changed(self, status, tag_id=None):
        self._each('status_changed', status, tag_id)

    def scan_confirmed(self, result):
        self._each('scan_confirmed', result)

    def raw_reading_observed(self, reading):
        self._each('raw_reading_observed', reading)

    def reader_connected(self, path):
        self._each('reader_connected', path)

    def reader_disconnected(self):
        self._each('reader_disconnected')

    def reader_error(self, message):
        self._each('reader_error', message)

class LoggingSink(ScanSink):
    """Writes events to the application log; raw readings go to a separate trace logger"""

    def __init__(self, trace_logger: Optional[logging.Logger] = None):
        self.trace_logger = trace_logger or logging.getLogger('rfid_scanner.readings')

    def status_changed(self, status, tag_id=None):
        logger.info(f"Scan status: {status}" + (f" for tag {tag_id}" if tag_id else ""))

    def scan_confirmed(self, result):
        logger.info(f"Tag scanned: {result.tag_id} status={result.status.value} duration={result.duration_ms}ms")

    def raw_reading_observed(self, reading):
        self.trace_logger.debug(f"port={reading.antenna_port}, tagId={reading.tag_id}, "
                                f"timestamp={reading.iso_timestamp}, rssi={reading.rssi}")

    def reader_connected(self, path):
        logger.info(f"RFID Reader connected on {path}")

    def reader_disconnected(self):
        logger.warning("RFID Reader disconnected.")

    def reader_error(self, message):
        logger.error(f"RFID Reader error: {message}")

class CsvAuditSink(ScanSink):
    """Appends every valid reading to a CSV file (Port,TagID,TimestampUTC,RSSI)"""

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()
        self._ensure_header()

    def _ensure_header(self) -> None:
        if os.path.exists(self.path) and os.path.getsize(self.path) > 0:
            return
        with open(self.path, 'w', newline='', encoding='utf-8') as f:
            csv.writer(f).writerow(CSV_HEADER)
        logger.info(f"Created CSV log file: {self.path}")

    def raw_reading_observed(self, reading):
        row = [reading.antenna_port, reading.tag_id, reading.iso_timestamp, reading.rssi]
        with self._lock:
            with open(self.path, 'a', newline='', encoding='utf-8') as f:
                csv.writer(f).writerow(row)

class SocketIOSink(ScanSink):
    """Broadcasts events to every connected Socket.IO client"""

    def __init__(self, socketio):
        self.socketio = socketio

    def status_changed(self, status, tag_id=None):
        payload = {'status': status}
        if tag_id is not None:
            payload['tagId'] = tag_id
        self.socketio.emit('scan_status', payload)

    def scan_confirmed(self, result):
        self.socketio.emit('tag_scanned', result.to_payload())

    def raw_reading_observed(self, reading):
        self.socketio.emit('raw_rfid_data', {
            'port': reading.antenna_port,
            'tagId': reading.tag_id,
            'timestamp': reading.iso_timestamp,
            'rssi': reading.rssi,
        })

    def reader_connected(self, path):
        self.socketio.emit('connection_status', {'connected': True, 'path': path})

    def reader_disconnected(self):
        self.socketio.emit('connection_status', {'connected': False, 'path': None})
        self.socketio.emit('scan_error', {'error': 'Reader disconnected'})

    def reader_error(self, message):
        self.socketio.emit('scan_error', {'error': message})
