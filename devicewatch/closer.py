"""Ordered shutdown of registered resources under a deadline."""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

CloseFunc = Callable[[Optional[float]], None]


class ShutdownError(Exception):
    """Shutdown was cancelled or some closers failed."""


class Closer:
    """Collects shutdown callbacks and runs them in order."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._funcs: list[CloseFunc] = []

    def add(self, func: CloseFunc) -> None:
        """Register a callback; it receives the seconds left before the deadline."""
        with self._lock:
            self._funcs.append(func)

    def close(self, timeout: Optional[float] = None) -> None:
        """Run every callback; raise ShutdownError on timeout or on failures."""
        with self._lock:
            funcs = list(self._funcs)
            deadline = None if timeout is None else time.monotonic() + timeout
            messages: list[str] = []

            def run_all() -> None:
                for func in funcs:
                    remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                    try:
                        func(remaining)
                    except Exception as exc:
                        messages.append(f"[!] {exc}")

            worker = threading.Thread(target=run_all, name="closer", daemon=True)
            worker.start()
            worker.join(timeout)
            if worker.is_alive():
                raise ShutdownError("shutdown cancelled: context deadline exceeded")
            if messages:
                raise ShutdownError("shutdown finished with error(s): \n" + "\n".join(messages))