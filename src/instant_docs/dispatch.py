"""Single coordinating execution context.

All shared state (in-flight layers, the list projection, row tokens) is
confined to one context. Other threads never touch that state directly:
they post callables to the dispatcher's inbox instead.
"""

from __future__ import annotations

import logging
import threading
from queue import Empty, Queue
from typing import Any, Callable

logger = logging.getLogger(__name__)

_STOP = object()


class SerialDispatcher:
    """
    Inbox of callables executed one at a time.

    Two ways to drive it:
    - process_pending() drains the inbox on the calling thread, which makes
      that thread the context (tests, or a host event loop tick)
    - start() runs a dedicated worker thread until stop()
    """

    def __init__(self, name: str = "instant-coordinator"):
        self.name = name
        self._inbox: Queue = Queue()
        self._thread: threading.Thread | None = None
        self._owner: int | None = None

    def post(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        """Queue fn(*args, **kwargs) for execution on the context. Thread-safe."""
        self._inbox.put((fn, args, kwargs))

    def is_current(self) -> bool:
        return self._owner == threading.get_ident()

    @property
    def pending(self) -> int:
        return self._inbox.qsize()

    def process_pending(self) -> int:
        """Run queued callables until the inbox is empty.

        Callables posted while draining are run too.

        Returns:
            Number of callables executed
        """
        if self._thread is not None:
            raise RuntimeError(f"Dispatcher '{self.name}' is driven by its worker thread")

        processed = 0
        previous_owner = self._owner
        self._owner = threading.get_ident()
        try:
            while True:
                try:
                    item = self._inbox.get_nowait()
                except Empty:
                    break
                if item is _STOP:
                    continue
                self._run(item)
                processed += 1
        finally:
            self._owner = previous_owner
        return processed

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Stop the worker thread after the callables already queued."""
        thread = self._thread
        if thread is None:
            return
        self._inbox.put(_STOP)
        thread.join(timeout)
        self._thread = None

    def _loop(self) -> None:
        self._owner = threading.get_ident()
        logger.debug(f"Dispatcher '{self.name}' started")
        try:
            while True:
                item = self._inbox.get()
                if item is _STOP:
                    break
                self._run(item)
        finally:
            self._owner = None
            logger.debug(f"Dispatcher '{self.name}' stopped")

    def _run(self, item: tuple) -> None:
        fn, args, kwargs = item
        try:
            fn(*args, **kwargs)
        except Exception:
            logger.exception(f"Dispatched call {getattr(fn, '__qualname__', fn)!r} failed")
