"""
Timer scheduling used by the connection lifecycle and the tag tracker.

Components never create ``threading.Timer`` objects directly; they ask a
scheduler, so tests can substitute a clock they control.
"""

import logging
import threading
from typing import Any, Callable

logger = logging.getLogger(__name__)

class TimerHandle:
    """Handle to one scheduled callback. cancel() may be called any number of times."""

    def __init__(self, timer: threading.Timer):
        self._timer = timer

    def cancel(self) -> None:
        self._timer.cancel()

class ThreadScheduler:
    """Runs each callback once on its own daemon timer thread"""

    def __init__(self, name: str = "rfid-timer"):
        self.name = name

    def call_later(self, delay: float, callback: Callable[..., Any], *args) -> TimerHandle:
        """
        Schedule callback(*args) after delay seconds

        Args:
            delay: Seconds to wait (negative values run immediately)
            callback: Function to invoke on the timer thread

        Returns:
            TimerHandle that can cancel the call
        """
        timer = threading.Timer(max(0.0, delay), self._run, args=(callback, args))
        timer.name = f"{self.name}-{getattr(callback, '__name__', 'callback')}"
        timer.daemon = True
        timer.start()
        return TimerHandle(timer)

    @staticmethod
    def _run(callback: Callable[..., Any], args: tuple) -> None:
        try:
            callback(*args)
        except Exception:
            logger.exception(f"Timer callback {callback!r} failed")
