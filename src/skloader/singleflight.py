"""Single-flight guard — coalesce concurrent identical calls into one.

The first caller for a key runs the function; callers arriving while it is
in flight wait on the same future and get the same result or exception.
The key is forgotten as soon as the call finishes, so a later call runs
again (callers cache results themselves).
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from typing import Callable, Generic, Hashable, TypeVar

logger = logging.getLogger("skloader.singleflight")

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """A map from key to the in-flight future computing its value."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._calls: dict[Hashable, Future] = {}

    def do(self, key: Hashable, fn: Callable[[], T]) -> T:
        """Run ``fn`` once per concurrent burst of calls for ``key``.

        Args:
            key: Identity of the call.
            fn: Zero-argument function producing the value.

        Returns:
            The value produced by the leading call.

        Raises:
            Whatever ``fn`` raised in the leading call.
        """
        with self._lock:
            future = self._calls.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._calls[key] = future

        if not leader:
            logger.debug("Joining in-flight call for %r", key)
            return future.result()

        try:
            result = fn()
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._calls.pop(key, None)

    def in_flight(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._calls
