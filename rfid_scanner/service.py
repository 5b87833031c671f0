"""
Reader service: wires the connection, parser and tracker together and hands
the results to the collaborator sink.

One ReaderService is built at startup and passed to whatever needs it; there
is no module-level reader state.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .connection import ConnectionListener, ConnectionManager, ConnectionSettings
from .reading import Reading, ReadingParser, Rejected
from .sinks import CompositeSink, CsvAuditSink, LoggingSink, ScanSink
from .tag_tracker import STATUS_IDLE, Confirmation, TagTracker, TrackerSettings

logger = logging.getLogger(__name__)

NOT_FOUND_ERROR = 'Unrecognized RFID tag'

Lookup = Callable[[str], Optional[dict]]

class ScanStatus(enum.Enum):
    FOUND = 'found'
    NOT_FOUND = 'not_found'

@dataclass(frozen=True)
class ScanResult:
    """
    A confirmed presentation, resolved against the catalog

    Attributes:
        tag_id: Tag identifier
        status: FOUND if the lookup returned a record, NOT_FOUND otherwise
        first_valid_at: Earliest strong reading of the presentation
        last_at: Most recent reading of the presentation
        duration_ms: Dwell time between the two
        item: Record returned by the lookup, if any
    """
    tag_id: str
    status: ScanStatus
    first_valid_at: datetime
    last_at: datetime
    duration_ms: int
    item: Optional[dict] = None

    @property
    def error(self) -> Optional[str]:
        return None if self.status is ScanStatus.FOUND else NOT_FOUND_ERROR

    def to_payload(self) -> dict:
        """Shape used by the live broadcast channel"""
        data = self.item if self.item is not None else {
            'tagId': self.tag_id,
            'timestamp': int(self.last_at.timestamp() * 1000),
            'duration': self.duration_ms,
        }
        return {'status': self.status.value, 'data': data, 'error': self.error}

class ReaderService(ConnectionListener):
    """Connection events and lines in, sink events out"""

    def __init__(self, connection_settings: ConnectionSettings,
                 tracker_settings: Optional[TrackerSettings] = None,
                 sink: Optional[ScanSink] = None,
                 lookup: Optional[Lookup] = None,
                 scheduler=None,
                 **connection_kwargs):
        self.sink = sink or ScanSink()
        self.lookup = lookup
        self.parser = ReadingParser()
        self.tracker = TagTracker(
            tracker_settings,
            on_status=self._on_status,
            on_confirmed=self._on_confirmed,
            scheduler=scheduler,
        )
        self.connection = ConnectionManager(
            connection_settings,
            listener=self,
            scheduler=scheduler,
            **connection_kwargs
        )

    @classmethod
    def from_config(cls, config, sink: Optional[ScanSink] = None,
                    lookup: Optional[Lookup] = None) -> "ReaderService":
        """Build the service and its default sinks from a configuration class"""
        sinks = CompositeSink([LoggingSink()])
        if getattr(config, 'CSV_LOG_PATH', None):
            sinks.add(CsvAuditSink(config.CSV_LOG_PATH))
        if sink is not None:
            sinks.add(sink)
        return cls(
            ConnectionSettings.from_config(config),
            TrackerSettings.from_config(config),
            sink=sinks,
            lookup=lookup,
        )

    def start(self) -> None:
        logger.info("Starting RFID reader service")
        self.connection.start()

    def stop(self) -> None:
        logger.info("Stopping RFID reader service")
        self.connection.stop()
        self.tracker.clear()

    def send(self, payload: str) -> bool:
        return self.connection.send(payload)

    def status(self) -> dict:
        status = self.connection.status()
        status['rejected_lines'] = self.parser.rejected_count
        return status

    # ----------------------------------------------------- connection events

    def on_connected(self, path: str) -> None:
        self.sink.reader_connected(path)
        self.sink.status_changed(STATUS_IDLE, None)

    def on_disconnected(self) -> None:
        self.sink.reader_disconnected()

    def on_error(self, message: str) -> None:
        self.sink.reader_error(message)

    def on_line(self, line: str) -> None:
        result = self.parser.parse(line)
        if isinstance(result, Rejected):
            return
        self.handle_reading(result)

    # ------------------------------------------------------- reading pipeline

    def handle_reading(self, reading: Reading) -> None:
        self.sink.raw_reading_observed(reading)
        if not self.tracker.tracks_antenna(reading.antenna_port):
            return
        self.tracker.process(reading)

    def _on_status(self, status: str, tag_id: Optional[str]) -> None:
        self.sink.status_changed(status, tag_id)

    def _on_confirmed(self, confirmation: Confirmation) -> None:
        item = self._lookup(confirmation.tag_id)
        result = ScanResult(
            tag_id=confirmation.tag_id,
            status=ScanStatus.FOUND if item is not None else ScanStatus.NOT_FOUND,
            first_valid_at=confirmation.first_valid_at,
            last_at=confirmation.last_at,
            duration_ms=confirmation.duration_ms,
            item=item,
        )
        self.sink.scan_confirmed(result)

    def _lookup(self, tag_id: str) -> Optional[dict]:
        if self.lookup is None:
            return None
        try:
            return self.lookup(tag_id)
        except Exception:
            logger.exception(f"Lookup failed for tag {tag_id}")
            return None
