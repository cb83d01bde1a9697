"""Cancellation signal shared by the fetch workers.

One flag per process, raised by SIGINT/SIGTERM or by `request_shutdown()`.
Workers check it before picking up the next feed and the service checks it
before starting another attempt. Feeds already being fetched run to
completion, so their connections are closed normally.
"""

import signal
import sys
import threading
from typing import Any, Callable, Dict, Optional

from feedservice.logging_config import get_logger

__all__ = [
    "ShutdownHandler",
    "get_shutdown_handler",
    "shutdown_requested",
    "register_cleanup",
]

logger = get_logger("shutdown")

SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownHandler:
    """Turns the first SIGINT/SIGTERM into a cancellation flag, the second into an exit.

    Usage:
        with get_shutdown_handler() as handler:
            handler.register_cleanup(cache.close)
            FeedService(feeds, cancelled=lambda: handler.shutdown_requested).run()
    """

    _instance: Optional["ShutdownHandler"] = None
    _lock = threading.Lock()

    def __init__(self) -> None:
        self._cancel = threading.Event()
        self._cleanups: list[Callable[[], None]] = []
        self._previous: Dict[int, Any] = {}
        self.signals_received = 0

    @classmethod
    def get_instance(cls) -> "ShutdownHandler":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @property
    def installed(self) -> bool:
        return bool(self._previous)

    def install(self) -> "ShutdownHandler":
        """Take over SIGINT/SIGTERM. Must be called from the main thread."""
        if not self.installed:
            for signum in SIGNALS:
                self._previous[signum] = signal.getsignal(signum)
                signal.signal(signum, self._handle_signal)
        return self

    def uninstall(self) -> None:
        """Give SIGINT/SIGTERM back to whoever had them before."""
        for signum, previous in self._previous.items():
            if previous is not None:
                signal.signal(signum, previous)
        self._previous.clear()

    def _handle_signal(self, signum: int, frame) -> None:
        self.signals_received += 1
        name = signal.Signals(signum).name

        if self.signals_received > 1:
            logger.error(f"Received {name} again, force quitting")
            self.cleanup()
            sys.exit(1)

        logger.warning(
            f"Received {name} - in-flight feeds will finish, queued feeds are skipped "
            "(send again to force quit)"
        )
        self._cancel.set()

    def request_shutdown(self) -> None:
        """Raise the cancellation flag without a signal."""
        self._cancel.set()

    @property
    def shutdown_requested(self) -> bool:
        return self._cancel.is_set()

    def register_cleanup(self, callback: Callable[[], None]) -> None:
        """Run `callback` on cleanup. Callbacks run newest first."""
        self._cleanups.append(callback)

    def cleanup(self) -> None:
        while self._cleanups:
            callback = self._cleanups.pop()
            try:
                callback()
            except Exception as e:
                logger.warning(f"Cleanup {getattr(callback, '__qualname__', callback)} failed: {e}")

    def reset(self) -> None:
        """Lower the flag and forget received signals, for the next run."""
        self._cancel.clear()
        self.signals_received = 0

    def __enter__(self) -> "ShutdownHandler":
        return self.install()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()
        self.uninstall()


def get_shutdown_handler() -> ShutdownHandler:
    """The process-wide handler."""
    return ShutdownHandler.get_instance()


def shutdown_requested() -> bool:
    """Whether the process-wide handler has been asked to stop."""
    return get_shutdown_handler().shutdown_requested


def register_cleanup(callback: Callable[[], None]) -> None:
    get_shutdown_handler().register_cleanup(callback)
