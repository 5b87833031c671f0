"""
Connection lifecycle for one serial-attached device.

The manager finds the device among the attached ports, opens it, streams its
lines to a listener, watches the OS port list for silent removal, and after any
loss reconnects with a linear, capped backoff. No failure here is fatal; every
failure path ends in BACKOFF.
"""

import enum
import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

import serial

from .exceptions import InvalidStateTransition, PortNotFoundError, PortOpenError, ReaderConnectionError
from .line_framer import LineFramer
from .port_locator import DeviceProfile, PortDescriptor, get_profile, list_serial_ports, locate
from .scheduler import ThreadScheduler, TimerHandle

logger = logging.getLogger(__name__)

SEND_FAILED_MESSAGE = "Cannot send: port not open, reconnecting"

class ConnectionState(enum.Enum):
    IDLE = 'idle'
    LOCATING = 'locating'
    OPENING = 'opening'
    CONNECTED = 'connected'
    MONITORING = 'monitoring'
    TEARING_DOWN = 'tearing_down'
    BACKOFF = 'backoff'

# stop() may move any state back to IDLE
_TRANSITIONS = {
    ConnectionState.IDLE: {ConnectionState.LOCATING},
    ConnectionState.LOCATING: {ConnectionState.OPENING, ConnectionState.BACKOFF, ConnectionState.IDLE},
    ConnectionState.OPENING: {ConnectionState.CONNECTED, ConnectionState.BACKOFF, ConnectionState.IDLE},
    ConnectionState.CONNECTED: {ConnectionState.MONITORING, ConnectionState.TEARING_DOWN, ConnectionState.IDLE},
    ConnectionState.MONITORING: {ConnectionState.TEARING_DOWN, ConnectionState.IDLE},
    ConnectionState.TEARING_DOWN: {ConnectionState.BACKOFF, ConnectionState.IDLE},
    ConnectionState.BACKOFF: {ConnectionState.LOCATING, ConnectionState.IDLE},
}

OPEN_STATES = (ConnectionState.CONNECTED, ConnectionState.MONITORING)

def backoff_delay_ms(attempt: int, max_retry_ms: int) -> int:
    """Delay before retry number `attempt` (1-based): linear in seconds, capped"""
    return min(attempt * 1000, max_retry_ms)

@dataclass
class ConnectionSettings:
    profile: DeviceProfile
    baud_rate: int
    read_timeout: float = 0.2
    monitor_interval_ms: int = 2000
    max_retry_ms: int = 10000

    @classmethod
    def from_config(cls, config) -> "ConnectionSettings":
        profile = get_profile(config.SERIAL_DEVICE)
        return cls(
            profile=profile,
            baud_rate=int(config.SERIAL_BAUDRATE or profile.baud_rate),
            read_timeout=float(config.SERIAL_READ_TIMEOUT),
            monitor_interval_ms=int(config.MONITOR_INTERVAL_MS),
            max_retry_ms=int(config.MAX_RETRY_MS),
        )

class ConnectionListener:
    """Receives connection events. Subclass and override what you need."""

    def on_connected(self, path: str) -> None:
        pass

    def on_disconnected(self) -> None:
        pass

    def on_error(self, message: str) -> None:
        pass

    def on_line(self, line: str) -> None:
        pass

def open_serial_port(path: str, baud_rate: int, timeout: float):
    """Open a port with the reader's fixed framing (8N1)"""
    return serial.Serial(
        port=path,
        baudrate=baud_rate,
        timeout=timeout,
        bytesize=serial.EIGHTBITS,
        parity=serial.PARITY_NONE,
        stopbits=serial.STOPBITS_ONE
    )

class _Session:
    """One open port together with its removal monitor"""

    def __init__(self, handle, path: str):
        self.handle = handle
        self.path = path
        self.monitor: Optional[TimerHandle] = None
        # False once torn down; the reader thread stops dispatching lines
        self.attached = True

class ConnectionManager:
    """
    Owns the lifecycle of one physical connection:
    locate -> open -> attach framer -> monitor -> detect loss -> teardown -> backoff -> retry.
    """

    def __init__(self, settings: ConnectionSettings,
                 listener: Optional[ConnectionListener] = None,
                 scheduler=None,
                 port_lister: Callable[[], List[PortDescriptor]] = list_serial_ports,
                 port_opener: Callable = open_serial_port):
        self.settings = settings
        self.listener = listener or ConnectionListener()
        self._scheduler = scheduler or ThreadScheduler(name=f"{settings.profile.name}-timer")
        self._port_lister = port_lister
        self._port_opener = port_opener

        self._lock = threading.RLock()
        self._state = ConnectionState.IDLE
        self._session: Optional[_Session] = None
        self._backoff_timer: Optional[TimerHandle] = None
        self._backoff_generation = 0
        self.attempt_count = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state in OPEN_STATES

    @property
    def path(self) -> Optional[str]:
        session = self._session
        return session.path if session else None

    def status(self) -> dict:
        with self._lock:
            return {
                'device': self.settings.profile.name,
                'state': self._state.value,
                'connected': self._state in OPEN_STATES,
                'path': self._session.path if self._session else None,
                'attempt_count': self.attempt_count,
            }

    # ------------------------------------------------------------------ control

    def start(self) -> None:
        """Begin (or hasten) a connection attempt. Safe to call at any time."""
        with self._lock:
            if self._state in OPEN_STATES:
                logger.debug(f"Port {self.path} already open, skipping start")
                return
            if self._state in (ConnectionState.LOCATING, ConnectionState.OPENING, ConnectionState.TEARING_DOWN):
                return
            if self._state is ConnectionState.BACKOFF:
                self._cancel_backoff()
            self._transition(ConnectionState.LOCATING)
        self._attempt()

    def stop(self) -> None:
        """Close the port and cancel every pending timer. No reconnect follows."""
        with self._lock:
            logger.info(f"Stopping {self.settings.profile.name} connection")
            self._cancel_backoff()
            session = self._session
            if session is not None:
                self._release(session)
            if self._state is not ConnectionState.IDLE:
                self._transition(ConnectionState.IDLE)

    def send(self, payload: str) -> bool:
        """
        Write payload plus a trailing newline. Best effort: never raises.

        Returns:
            True if the payload was written, False otherwise
        """
        events = []
        with self._lock:
            session = self._session
            if session is not None and self._state in OPEN_STATES and session.handle.is_open:
                try:
                    session.handle.write(f"{payload}\n".encode('utf-8'))
                    logger.debug(f"Sent {payload!r} to {session.path}")
                    return True
                except Exception as e:
                    logger.error(f"Error sending data to {session.path}: {e}")
                    events.append((self.listener.on_error, f"Error sending data: {e}"))
                    events.extend(self._teardown(session))
            else:
                session = None

        if session is None:
            logger.error("Cannot send: port not open.")
            self._dispatch([(self.listener.on_error, SEND_FAILED_MESSAGE)])
            self.start()
        else:
            self._dispatch(events)
        return False

    # -------------------------------------------------------------- lifecycle

    def _transition(self, new_state: ConnectionState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise InvalidStateTransition(self._state, new_state)
        logger.debug(f"[{self.settings.profile.name}] {self._state.name} -> {new_state.name}")
        self._state = new_state

    def _locate(self) -> PortDescriptor:
        logger.debug(f"Searching for {self.settings.profile.name}...")
        try:
            ports = self._port_lister()
        except Exception as e:
            raise PortNotFoundError(f"Port enumeration failed: {e}") from e
        port = locate(ports, self.settings.profile)
        if port is None:
            raise PortNotFoundError(f"No {self.settings.profile.name} found")
        logger.info(f"Found potential {self.settings.profile.name} at {port.path} "
                    f"(vid={port.vendor_id}, pid={port.product_id}, manufacturer={port.manufacturer})")
        return port

    def _open(self, port: PortDescriptor):
        try:
            return self._port_opener(port.path, self.settings.baud_rate, self.settings.read_timeout)
        except Exception as e:
            raise PortOpenError(f"Cannot open {port.path}: {e}") from e

    def _attempt(self) -> None:
        """
        One locate/open cycle. Enumeration and open block, so they run
        without the lock; the state is re-checked before anything is
        committed, and a stop() that landed meanwhile wins.
        """
        with self._lock:
            if self._state is not ConnectionState.LOCATING:
                return

        port = handle = failure = None
        try:
            port = self._locate()
        except ReaderConnectionError as e:
            failure = e
        else:
            with self._lock:
                if self._state is not ConnectionState.LOCATING:
                    return
                self._transition(ConnectionState.OPENING)
            try:
                handle = self._open(port)
            except ReaderConnectionError as e:
                failure = e

        events = []
        session = None
        with self._lock:
            expected = ConnectionState.LOCATING if port is None else ConnectionState.OPENING
            if self._state is not expected:
                if handle is not None:
                    logger.info(f"Connection stopped while opening {port.path}, closing it")
                    self._discard(handle, port.path)
                return
            if failure is not None:
                logger.warning(f"Connection attempt failed: {failure}")
                events.append((self.listener.on_error, str(failure)))
                self._schedule_backoff()
            else:
                session = _Session(handle, port.path)
                self._session = session
                self.attempt_count = 0
                self._transition(ConnectionState.CONNECTED)
                logger.info(f"Port opened at {port.path} ({self.settings.baud_rate} baud)")
                self._start_monitor(session)
                events.append((self.listener.on_connected, port.path))

        self._dispatch(events)
        if session is not None:
            self._start_reader(session)

    @staticmethod
    def _discard(handle, path: str) -> None:
        try:
            handle.close()
        except Exception as e:
            logger.warning(f"Error closing {path}: {e}")

    def _start_monitor(self, session: _Session) -> None:
        self._transition(ConnectionState.MONITORING)
        self._arm_monitor(session)

    def _arm_monitor(self, session: _Session) -> None:
        interval = self.settings.monitor_interval_ms / 1000.0
        session.monitor = self._scheduler.call_later(interval, self._poll, session)

    def _poll(self, session: _Session) -> None:
        """Monitor tick: close the port if its path vanished from the OS list"""
        if not session.attached:
            return
        try:
            paths = {port.path for port in self._port_lister()}
        except Exception as e:
            logger.warning(f"Port enumeration failed while monitoring {session.path}: {e}")
            paths = None

        events = []
        with self._lock:
            if self._session is not session or not session.attached:
                return
            if paths is not None and session.path not in paths:
                logger.info(f"Device at {session.path} disconnected.")
                events.extend(self._close_port(session))
            else:
                self._arm_monitor(session)
        self._dispatch(events)

    def _close_port(self, session: _Session) -> list:
        """Explicit close; converges on the same teardown as a port error"""
        try:
            session.handle.close()
        except Exception as e:
            logger.warning(f"Error closing {session.path}: {e}")
        return self._on_port_closed(session)

    def _on_port_closed(self, session: _Session) -> list:
        logger.info(f"Port {session.path} closed.")
        return self._teardown(session)

    def _on_port_error(self, session: _Session, error: Exception) -> list:
        logger.error(f"Port error on {session.path}: {error}")
        return [(self.listener.on_error, str(error))] + self._teardown(session)

    def _teardown(self, session: _Session) -> list:
        """Shared by close, error and monitor paths; runs once per session"""
        if not session.attached:
            return []
        logger.debug(f"Cleaning up resources for {session.path}...")
        self._transition(ConnectionState.TEARING_DOWN)
        self._release(session)
        self._schedule_backoff()
        return [(self.listener.on_disconnected,)]

    def _release(self, session: _Session) -> None:
        session.attached = False
        if session.monitor is not None:
            session.monitor.cancel()
            session.monitor = None
        try:
            if session.handle.is_open:
                session.handle.close()
        except Exception as e:
            logger.warning(f"Error releasing {session.path}: {e}")
        if self._session is session:
            self._session = None

    def _schedule_backoff(self) -> None:
        self._transition(ConnectionState.BACKOFF)
        self.attempt_count += 1
        delay_ms = backoff_delay_ms(self.attempt_count, self.settings.max_retry_ms)
        logger.info(f"Reconnecting in {delay_ms / 1000:.1f} seconds (attempt {self.attempt_count})...")
        self._backoff_generation += 1
        self._backoff_timer = self._scheduler.call_later(delay_ms / 1000.0, self._retry, self._backoff_generation)

    def _cancel_backoff(self) -> None:
        if self._backoff_timer is not None:
            self._backoff_timer.cancel()
            self._backoff_timer = None
        self._backoff_generation += 1

    def _retry(self, generation: int) -> None:
        with self._lock:
            if self._state is not ConnectionState.BACKOFF or generation != self._backoff_generation:
                return
            self._backoff_timer = None
            self._transition(ConnectionState.LOCATING)
        self._attempt()

    # ------------------------------------------------------------ reader thread

    def _start_reader(self, session: _Session) -> None:
        with self._lock:
            if not session.attached:
                return
            thread = threading.Thread(target=self._pump, args=(session,),
                                      name=f"{self.settings.profile.name}-reader", daemon=True)
            thread.start()

    def _pump(self, session: _Session) -> None:
        """Reader thread: forward lines until the port closes or fails"""
        error = None
        try:
            for line in LineFramer(session.handle):
                if not session.attached:
                    break
                self._dispatch([(self.listener.on_line, line)])
        except Exception as e:
            error = e

        events = []
        with self._lock:
            if not session.attached:
                return
            if error is not None:
                events = self._on_port_error(session, error)
            else:
                events = self._on_port_closed(session)
        self._dispatch(events)

    @staticmethod
    def _dispatch(events) -> None:
        for callback, *args in events:
            try:
                callback(*args)
            except Exception:
                logger.exception(f"Listener {callback!r} failed")
