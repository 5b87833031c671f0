"""
Dwell-time / debounce tracking that turns bursts of readings into confirmed
tag presentations.

A reader reports a tag many times per second with fluctuating RSSI while it is
held near the antenna. A single strong reading is not enough (fast pass-bys
would count); a tag is confirmed once its strong readings span at least
``required_dwell_ms``. Bursts for one tag coalesce into a single delayed
evaluation. Entries not read for ``stale_after_ms`` age out, so readings
from separate pass-bys never add up to one dwell.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, List, Optional

from .reading import Reading
from .scheduler import ThreadScheduler, TimerHandle

logger = logging.getLogger(__name__)

STATUS_IDLE = 'idle'
STATUS_SCANNING = 'scanning'

@dataclass
class TrackerSettings:
    weak_rssi: int = -50
    trigger_rssi: int = -30
    valid_rssi: int = -25
    required_dwell_ms: int = 1500
    debounce_ms: int = 100
    history_limit: int = 30
    # A gap longer than this between readings starts a new presentation
    stale_after_ms: int = 3000
    # Empty means every antenna is tracked
    tracked_antennas: tuple = ()

    @classmethod
    def from_config(cls, config) -> "TrackerSettings":
        return cls(
            weak_rssi=int(config.WEAK_RSSI),
            trigger_rssi=int(config.TRIGGER_RSSI),
            valid_rssi=int(config.VALID_RSSI),
            required_dwell_ms=int(config.REQUIRED_DWELL_MS),
            debounce_ms=int(config.DEBOUNCE_MS),
            history_limit=int(config.HISTORY_LIMIT),
            stale_after_ms=int(config.STALE_AFTER_MS),
            tracked_antennas=tuple(str(a) for a in (config.TRACKED_ANTENNAS or ())),
        )

@dataclass
class TagTrackingEntry:
    """Per-tag state; only TagTracker touches it, under its table lock"""
    readings: Deque[Reading]
    last_seen_at: Optional[datetime] = None
    debounce_in_flight: bool = False
    pending: Optional[TimerHandle] = field(default=None, repr=False)

@dataclass(frozen=True)
class Confirmation:
    """A presentation that held long enough to count as a scan"""
    tag_id: str
    first_valid_at: datetime
    last_at: datetime
    duration_ms: int

StatusCallback = Callable[[str, Optional[str]], None]
ConfirmCallback = Callable[[Confirmation], None]

class TagTracker:
    """
    Keeps a bounded reading history per tag and decides when a tag was
    deliberately presented.

    Callbacks are invoked outside the table lock, on whichever thread
    delivered the reading or fired the debounce timer.
    """

    def __init__(self, settings: Optional[TrackerSettings] = None,
                 on_status: Optional[StatusCallback] = None,
                 on_confirmed: Optional[ConfirmCallback] = None,
                 scheduler=None):
        self.settings = settings or TrackerSettings()
        self.on_status = on_status
        self.on_confirmed = on_confirmed
        self._scheduler = scheduler or ThreadScheduler(name="tag-debounce")
        self._lock = threading.Lock()
        self._entries: Dict[str, TagTrackingEntry] = {}

    def tracks_antenna(self, antenna_port: str) -> bool:
        antennas = self.settings.tracked_antennas
        return not antennas or antenna_port in antennas

    def process(self, reading: Reading) -> None:
        """Feed one valid reading"""
        s = self.settings
        tag_id = reading.tag_id

        if reading.rssi < s.weak_rssi:
            with self._lock:
                self._expire(reading.timestamp)
                entry = self._entries.get(tag_id)
                idle = entry is None or not entry.readings
            if idle:
                self._emit_status(STATUS_IDLE, None)
            return

        if reading.rssi > s.trigger_rssi:
            self._emit_status(STATUS_SCANNING, tag_id)

        with self._lock:
            self._expire(reading.timestamp)
            entry = self._entries.get(tag_id)
            if entry is None:
                entry = TagTrackingEntry(readings=deque(maxlen=s.history_limit))
                self._entries[tag_id] = entry
            entry.readings.append(reading)
            entry.last_seen_at = reading.timestamp

            if not entry.debounce_in_flight:
                entry.debounce_in_flight = True
                entry.pending = self._scheduler.call_later(s.debounce_ms / 1000.0, self._evaluate, tag_id, entry)

    def _expire(self, now: datetime) -> None:
        """Drop entries whose last reading is older than the staleness window; caller holds the lock"""
        window = timedelta(milliseconds=self.settings.stale_after_ms)
        stale = [tag_id for tag_id, entry in self._entries.items()
                 if entry.last_seen_at is not None and now - entry.last_seen_at > window]
        for tag_id in stale:
            entry = self._entries.pop(tag_id)
            if entry.pending is not None:
                entry.pending.cancel()
            logger.debug(f"Tag {tag_id} aged out without confirmation")

    def _evaluate(self, tag_id: str, scheduled_for: TagTrackingEntry) -> None:
        """Debounced check against whatever the entry holds now"""
        s = self.settings
        confirmation = None
        with self._lock:
            entry = self._entries.get(tag_id)
            # the entry this timer was armed for may have been cleared or aged out since
            if entry is None or entry is not scheduled_for:
                return
            entry.pending = None
            valid = sorted((r for r in entry.readings if r.rssi > s.valid_rssi), key=lambda r: r.epoch_ms)
            if len(valid) >= 2:
                first = valid[0]
                last = entry.readings[-1]
                duration_ms = last.epoch_ms - first.epoch_ms
                if duration_ms >= s.required_dwell_ms:
                    confirmation = Confirmation(
                        tag_id=tag_id,
                        first_valid_at=first.timestamp,
                        last_at=last.timestamp,
                        duration_ms=duration_ms,
                    )
                    del self._entries[tag_id]
            entry.debounce_in_flight = False

        if confirmation is not None:
            logger.info(f"Tag {tag_id} confirmed after {confirmation.duration_ms} ms")
            if self.on_confirmed:
                self.on_confirmed(confirmation)

    def _emit_status(self, status: str, tag_id: Optional[str]) -> None:
        if self.on_status:
            self.on_status(status, tag_id)

    def history(self, tag_id: str) -> List[Reading]:
        """Copy of the tracked readings for a tag, oldest first"""
        with self._lock:
            entry = self._entries.get(tag_id)
            return list(entry.readings) if entry else []

    def is_tracking(self, tag_id: str) -> bool:
        with self._lock:
            return tag_id in self._entries

    def clear(self) -> None:
        """Cancel pending evaluations and forget every tag"""
        with self._lock:
            for entry in self._entries.values():
                if entry.pending is not None:
                    entry.pending.cancel()
            self._entries.clear()
