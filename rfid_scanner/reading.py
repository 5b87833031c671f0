"""
RFID reading data structures and the serial line parser
"""

import enum
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Union

logger = logging.getLogger(__name__)

FIELD_DELIMITER = ','
FIELD_COUNT = 4

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_INTEGER = re.compile(r'^[+-]?[0-9]+$')

@dataclass(frozen=True)
class Reading:
    """
    One validated line from the reader.

    Attributes:
        antenna_port: Antenna that reported the tag
        tag_id: Tag identifier (EPC as hex string)
        epoch_ms: Source timestamp in milliseconds since the Unix epoch
        timestamp: UTC instant derived from epoch_ms
        rssi: Received Signal Strength Indicator in dBm
    """
    antenna_port: str
    tag_id: str
    epoch_ms: int
    timestamp: datetime
    rssi: int

    def __str__(self) -> str:
        return f"Reading(Tag={self.tag_id}, RSSI={self.rssi}, Ant={self.antenna_port}, At={self.iso_timestamp})"

    @property
    def iso_timestamp(self) -> str:
        """UTC timestamp with millisecond precision, e.g. 2024-05-08T12:27:14.567Z"""
        return self.timestamp.isoformat(timespec='milliseconds').replace('+00:00', 'Z')

class RejectReason(enum.Enum):
    EMPTY = 'empty'
    FIELD_COUNT = 'field_count'
    EMPTY_TAG = 'empty_tag'
    BAD_TIMESTAMP = 'bad_timestamp'
    BAD_RSSI = 'bad_rssi'
    INVALID_INSTANT = 'invalid_instant'

@dataclass(frozen=True)
class Rejected:
    """A line that failed validation, with the reason it was dropped"""
    reason: RejectReason
    line: str

def epoch_ms_to_datetime(epoch_ms: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime; raises OverflowError when out of range"""
    return _EPOCH + timedelta(milliseconds=epoch_ms)

def _parse_int(text: str):
    text = text.strip()
    if not _INTEGER.match(text):
        return None
    return int(text)

def parse_line(raw_line: Union[str, bytes]) -> Union[Reading, Rejected]:
    """
    Decode one reader line of the form ``<antenna>,<tag>,<epoch_ms>,<rssi>``.

    Never raises for malformed input; returns a Rejected value instead.

    Args:
        raw_line: Line as delivered by the framer (delimiter already removed)

    Returns:
        Reading on success, Rejected otherwise
    """
    if isinstance(raw_line, bytes):
        raw_line = raw_line.decode('ascii', errors='replace')
    line = (raw_line or '').strip()
    if not line:
        return Rejected(RejectReason.EMPTY, raw_line or '')

    parts = line.split(FIELD_DELIMITER)
    if len(parts) != FIELD_COUNT:
        return Rejected(RejectReason.FIELD_COUNT, line)

    port, tag_id, timestamp_str, rssi_str = parts
    tag_id = tag_id.strip()
    if not tag_id:
        return Rejected(RejectReason.EMPTY_TAG, line)

    rssi = _parse_int(rssi_str)
    if rssi is None:
        return Rejected(RejectReason.BAD_RSSI, line)

    epoch_ms = _parse_int(timestamp_str)
    if epoch_ms is None:
        return Rejected(RejectReason.BAD_TIMESTAMP, line)

    try:
        timestamp = epoch_ms_to_datetime(epoch_ms)
    except OverflowError:
        return Rejected(RejectReason.INVALID_INSTANT, line)

    return Reading(
        antenna_port=port.strip(),
        tag_id=tag_id,
        epoch_ms=epoch_ms,
        timestamp=timestamp,
        rssi=rssi,
    )

class ReadingParser:
    """Parses lines and logs the ones it has to drop"""

    def __init__(self):
        self.rejected_count = 0

    def parse(self, raw_line: Union[str, bytes]) -> Union[Reading, Rejected]:
        result = parse_line(raw_line)
        if isinstance(result, Rejected):
            self.rejected_count += 1
            logger.warning(f"Dropped reader line ({result.reason.value}): {result.line!r}")
        return result
