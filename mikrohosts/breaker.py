"""Subscription to operating-system signals with cancellation."""

from __future__ import annotations

import signal
import threading
from collections.abc import Callable
from types import FrameType
from typing import Any


class OSSignals:
    """Calls a function once when one of the watched signals arrives.

    When the ``done`` event is set, arriving signals are swallowed without
    calling the function.
    """

    def __init__(self, done: threading.Event | None = None) -> None:
        self._done = done if done is not None else threading.Event()
        self._previous: dict[int, Any] = {}

    def subscribe(self, on_signal: Callable[[signal.Signals], Any], *args: signal.Signals) -> None:
        """Watch the given signals (SIGINT and SIGTERM by default); call ``stop`` to release them."""
        signals = args or (signal.SIGINT, signal.SIGTERM)
        fired = threading.Event()

        def handler(signum: int, _frame: FrameType | None) -> None:
            if fired.is_set() or self._done.is_set():
                return
            fired.set()
            on_signal(signal.Signals(signum))

        for sig in signals:
            previous = signal.signal(sig, handler)
            self._previous.setdefault(int(sig), previous)

    def stop(self) -> None:
        """Stop listening and restore the previous signal handlers."""
        for signum, previous in self._previous.items():
            signal.signal(signum, previous if previous is not None else signal.SIG_DFL)
        self._previous.clear()

    def __enter__(self) -> OSSignals:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()