"""
RFID scanner service

Reads a serial-attached RFID reader, keeps the link alive across unplug and
replug, and turns the reader's stream of noisy readings into de-duplicated
"tag presented" events.

This package provides:
- Serial port discovery by USB id and descriptor strings
- A self-healing connection with removal monitoring and capped backoff
- Validation of the reader's line protocol
- Dwell-time / debounce tag confirmation
- Sinks for logging, CSV audit and live Socket.IO broadcast
"""

from .connection import ConnectionListener, ConnectionManager, ConnectionSettings, ConnectionState
from .port_locator import ARDUINO_LEONARDO, RFID_READER, DeviceProfile, PortDescriptor, locate
from .reading import Reading, Rejected, RejectReason, parse_line
from .service import ReaderService, ScanResult, ScanStatus
from .sinks import ScanSink
from .tag_tracker import Confirmation, TagTracker, TrackerSettings
from .exceptions import RFIDScannerError, ReaderConnectionError, PortNotFoundError, PortOpenError

__version__ = "1.0.0"

__all__ = [
    'ConnectionListener',
    'ConnectionManager',
    'ConnectionSettings',
    'ConnectionState',
    'DeviceProfile',
    'PortDescriptor',
    'RFID_READER',
    'ARDUINO_LEONARDO',
    'locate',
    'Reading',
    'Rejected',
    'RejectReason',
    'parse_line',
    'ReaderService',
    'ScanResult',
    'ScanStatus',
    'ScanSink',
    'Confirmation',
    'TagTracker',
    'TrackerSettings',
    'RFIDScannerError',
    'ReaderConnectionError',
    'PortNotFoundError',
    'PortOpenError',
]
