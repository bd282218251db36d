"""
Helper utilities for dronectl.

Thread-safe "latest value" cells shared between the MAVSDK thread, which
pushes telemetry, and the application loop, which reads it.
"""

import asyncio
import threading
import time
from typing import Callable, Generic, List, Optional, TypeVar

from .log import LogComponent, get_logger

logger = get_logger(LogComponent.TELEMETRY)

T = TypeVar("T")


async def wait_for_condition(
    condition: Callable[[], bool],
    timeout: Optional[float] = None,
    poll_interval: float = 0.05,
    timeout_message: str = "Operation timed out",
) -> bool:
    """
    Wait for a condition to become true.

    Args:
        condition: Callable that returns True when condition is met
        timeout: Maximum time to wait in seconds, None for no timeout
        poll_interval: Time between condition checks
        timeout_message: Message for TimeoutError if timeout occurs

    Raises:
        TimeoutError: If timeout is specified and exceeded
    """
    start_time = time.monotonic()
    while not condition():
        if timeout is not None and (time.monotonic() - start_time) > timeout:
            raise TimeoutError(timeout_message)
        await asyncio.sleep(poll_interval)
    return True


class ThreadSafeValue(Generic[T]):
    """
    A simple thread-safe wrapper for values that may be accessed from multiple threads.

    Uses a lock to ensure atomic read/write operations.
    """

    def __init__(self, initial_value: Optional[T] = None):
        self._value = initial_value
        self._lock = threading.Lock()

    def get(self) -> Optional[T]:
        """Get the current value."""
        with self._lock:
            return self._value

    def set(self, value: Optional[T]) -> None:
        """Set a new value."""
        with self._lock:
            self._value = value


class Subscription:
    """Handle returned by ``subscribe``; ``dispose()`` stops delivery."""

    def __init__(self, on_dispose: Callable[[], None]):
        self._on_dispose: Optional[Callable[[], None]] = on_dispose

    @property
    def disposed(self) -> bool:
        return self._on_dispose is None

    def dispose(self) -> None:
        on_dispose, self._on_dispose = self._on_dispose, None
        if on_dispose is not None:
            on_dispose()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.dispose()


class LatestValue(ThreadSafeValue[T]):
    """
    Single-slot cache with fan-out to subscribers.

    ``publish`` overwrites the slot and notifies; ``subscribe`` delivers the
    current value at once and every later one. There is no backlog: a late
    subscriber only ever sees the most recent value. Values should be
    immutable so readers never observe a partially updated sample.

    Callbacks run on the publishing thread, outside the value lock. Delivery
    is serialized and always hands out the value in the slot at that moment,
    so a slow publisher can never deliver an older value after a newer one.
    """

    def __init__(self, initial_value: Optional[T] = None, name: str = "value"):
        super().__init__(initial_value)
        self.name = name
        self._version = 0
        self._subscribers: List[Callable[[Optional[T]], None]] = []
        # Reentrant: a callback may publish to the same cell
        self._delivery_lock = threading.RLock()

    @property
    def version(self) -> int:
        """Number of values published so far."""
        with self._lock:
            return self._version

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def set(self, value: Optional[T]) -> None:
        self.publish(value)

    def publish(self, value: Optional[T]) -> None:
        """Overwrite the slot and notify subscribers."""
        with self._lock:
            self._value = value
            self._version += 1
            version = self._version
        with self._delivery_lock:
            with self._lock:
                subscribers = list(self._subscribers)
            for callback in subscribers:
                with self._lock:
                    # Superseded; the newer publisher notifies everyone
                    if self._version != version:
                        return
                    current = self._value
                self._notify(callback, current)

    def subscribe(self, callback: Callable[[Optional[T]], None]) -> Subscription:
        """Deliver the current value now and every published value later."""
        with self._delivery_lock:
            with self._lock:
                self._subscribers.append(callback)
                current = self._value
            self._notify(callback, current)
        return Subscription(lambda: self._unsubscribe(callback))

    def _unsubscribe(self, callback: Callable[[Optional[T]], None]) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def _notify(self, callback: Callable[[Optional[T]], None], value: Optional[T]) -> None:
        try:
            callback(value)
        except Exception:
            logger.exception(f"Subscriber of {self.name} raised")

    def clear_subscribers(self) -> None:
        with self._lock:
            self._subscribers.clear()

    def read_only(self) -> "ReadOnlyValue[T]":
        return ReadOnlyValue(self)


class ReadOnlyValue(Generic[T]):
    """Read/subscribe view of a LatestValue."""

    def __init__(self, source: LatestValue[T]):
        self._source = source

    @property
    def name(self) -> str:
        return self._source.name

    def get(self) -> Optional[T]:
        return self._source.get()

    def subscribe(self, callback: Callable[[Optional[T]], None]) -> Subscription:
        return self._source.subscribe(callback)


__all__ = [
    "wait_for_condition",
    "ThreadSafeValue",
    "Subscription",
    "LatestValue",
    "ReadOnlyValue",
]
