"""
Background execution for long running container work.

Key derivation is slow on purpose and compression/encryption are CPU and
I/O bound, so the interactive layer hands this work to a BackgroundRunner.
The runner owns a single worker thread: operations on the open document
run one at a time, which is the whole single-writer guarantee.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .exceptions import OperationCancelledError

logger = logging.getLogger(__name__)


def raise_if_cancelled(cancel_event: Optional[threading.Event]) -> None:
    """Raise OperationCancelledError if ``cancel_event`` has been set."""
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelledError("Operation cancelled.")


@dataclass
class TaskHandle:
    """A submitted operation plus the event used to cancel it."""

    future: Future
    cancel_event: threading.Event = field(default_factory=threading.Event)

    def cancel(self) -> None:
        # Not yet started tasks are dropped; running ones observe the event.
        self.cancel_event.set()
        self.future.cancel()

    def result(self, timeout: Optional[float] = None) -> Any:
        return self.future.result(timeout=timeout)

    def done(self) -> bool:
        return self.future.done()


class BackgroundRunner:
    def __init__(self, name: str = "argofile-worker"):
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)
        self._closed = False

    def submit(self, fn: Callable[..., Any], *args, **kwargs) -> TaskHandle:
        """
        Run ``fn`` on the worker thread.

        ``fn`` receives a ``cancel_event`` keyword argument which it must
        pass down to the engines so that ``TaskHandle.cancel()`` is observed.
        """
        if self._closed:
            raise RuntimeError("BackgroundRunner has been shut down")
        cancel_event = threading.Event()
        kwargs["cancel_event"] = cancel_event
        future = self._executor.submit(fn, *args, **kwargs)
        logger.debug("Submitted background task %s", getattr(fn, "__name__", fn))
        return TaskHandle(future=future, cancel_event=cancel_event)

    def shutdown(self, wait: bool = True) -> None:
        self._closed = True
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "BackgroundRunner":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
