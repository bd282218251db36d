"""
Ordered release of layered resources.

Each owner registers its resources in acquisition order; ``close()`` releases
them in reverse. A failing step is logged and recorded and the remaining
steps still run. The collected failures are raised together at the end.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, List, Optional, Tuple, Union

from .exceptions import TeardownError
from .log import LogComponent, get_logger

logger = get_logger(LogComponent.SESSION)

Release = Callable[[], Union[None, Awaitable[Any]]]


class TeardownChain:
    """Declared teardown order for one owning component."""

    def __init__(self, owner: str):
        self.owner = owner
        self._steps: List[Tuple[str, Release]] = []
        self._closed = False
        self._closing: Optional[asyncio.Future] = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def steps(self) -> List[str]:
        """Step names in release order."""
        return [name for name, _ in reversed(self._steps)]

    def push(self, name: str, release: Release) -> None:
        """Register a resource right after acquiring it."""
        if self._closed:
            raise RuntimeError(f"{self.owner} is already torn down")
        self._steps.append((name, release))

    async def close(self) -> None:
        """
        Release every registered resource, newest first.

        Calling again after completion is a no-op; a concurrent second call
        waits for the first one.

        Raises:
            TeardownError: If any step failed. All steps were attempted.
        """
        if self._closed:
            return
        if self._closing is not None:
            await asyncio.shield(self._closing)
            return
        self._closing = asyncio.get_running_loop().create_future()

        failures: List[Tuple[str, BaseException]] = []
        try:
            while self._steps:
                name, release = self._steps.pop()
                logger.debug(f"{self.owner}: releasing {name}")
                try:
                    result = release()
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    logger.error(f"{self.owner}: releasing {name} failed: {e}")
                    failures.append((name, e))
        finally:
            self._closed = True
            self._closing.set_result(None)

        if failures:
            raise TeardownError(self.owner, failures)
        logger.debug(f"{self.owner}: torn down")


__all__ = ["TeardownChain"]
