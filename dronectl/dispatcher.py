"""
Command dispatcher for dronectl.

Operator intents are handed to a single consumer task which runs them
against the vehicle session one at a time. Each intent produces exactly one
``Outcome``; a failing command is reported and the loop keeps going.

Example:
    dispatcher = CommandDispatcher(session, reporter=print)
    task = asyncio.create_task(dispatcher.run())
    dispatcher.submit(parse_intent("takeoff 50"))
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, ClassVar, Optional, Union

from .exceptions import DronectlError, IntentError
from .helpers import LatestValue, ReadOnlyValue
from .log import LogComponent, get_logger
from .session import VehicleSession
from .types import GeoPoint

logger = get_logger(LogComponent.COMMAND)


@dataclass(frozen=True)
class TakeOff:
    altitude_m: float
    command: ClassVar[str] = "take_off"

    def __str__(self) -> str:
        return f"take_off {self.altitude_m:g}m"


@dataclass(frozen=True)
class Land:
    command: ClassVar[str] = "land"

    def __str__(self) -> str:
        return "land"


@dataclass(frozen=True)
class GoTo:
    lat: float
    lon: float
    alt: float
    command: ClassVar[str] = "go_to"

    def __str__(self) -> str:
        return f"go_to {self.lat:.7f} {self.lon:.7f} {self.alt:g}m"


@dataclass(frozen=True)
class ShowStatus:
    command: ClassVar[str] = "status"

    def __str__(self) -> str:
        return "status"


@dataclass(frozen=True)
class Exit:
    command: ClassVar[str] = "exit"

    def __str__(self) -> str:
        return "exit"


Intent = Union[TakeOff, Land, GoTo, ShowStatus, Exit]


@dataclass(frozen=True)
class Outcome:
    """Result of one dispatched intent."""

    intent: Intent
    ok: bool
    message: str
    error: Optional[BaseException] = None
    elapsed: float = 0.0


Reporter = Callable[[Outcome], None]


_VERBS = {
    "takeoff": "takeoff",
    "take-off": "takeoff",
    "take_off": "takeoff",
    "t": "takeoff",
    "land": "land",
    "l": "land",
    "goto": "goto",
    "go-to": "goto",
    "go_to": "goto",
    "g": "goto",
    "status": "status",
    "s": "status",
    "exit": "exit",
    "quit": "exit",
    "e": "exit",
    "q": "exit",
}


def _number(text: str, what: str, line: str) -> float:
    try:
        return float(text)
    except ValueError:
        raise IntentError(f"{what} must be a number, got '{text}'", text=line) from None


def parse_intent(text: str) -> Intent:
    """
    Turn an operator command line into an intent.

    Accepted forms: ``takeoff <alt>``, ``land``, ``goto <lat> <lon> <alt>``,
    ``status``, ``exit`` / ``quit`` (plus one-letter shortcuts).

    Raises:
        IntentError: On unknown verbs, wrong argument counts or bad numbers.

    Examples:
        >>> parse_intent("takeoff 50")
        TakeOff(altitude_m=50.0)
        >>> parse_intent("quit")
        Exit()
    """
    words = text.split()
    if not words:
        raise IntentError("Empty command", text=text)
    verb = _VERBS.get(words[0].lower())
    args = words[1:]
    if verb is None:
        raise IntentError(f"Unknown command '{words[0]}'", text=text)

    if verb == "takeoff":
        if len(args) != 1:
            raise IntentError("Usage: takeoff <altitude_m>", text=text)
        altitude = _number(args[0], "Altitude", text)
        if not altitude > 0:
            raise IntentError(f"Altitude must be positive, got {args[0]}", text=text)
        return TakeOff(altitude)

    if verb == "goto":
        if len(args) != 3:
            raise IntentError("Usage: goto <lat> <lon> <alt_m>", text=text)
        lat, lon, alt = (_number(a, n, text) for a, n in zip(args, ("Latitude", "Longitude", "Altitude")))
        try:
            GeoPoint(lat, lon, alt)
        except ValueError as e:
            raise IntentError(str(e), text=text) from None
        return GoTo(lat, lon, alt)

    if args:
        raise IntentError(f"'{words[0]}' takes no arguments", text=text)
    if verb == "land":
        return Land()
    if verb == "status":
        return ShowStatus()
    return Exit()


def describe_status(session: VehicleSession) -> str:
    """One-line summary of identity, position and link state."""
    name = session.identity.get() or "unknown vehicle"
    position = session.position.get()
    link = session.link.get()
    link_text = "unknown" if link is None else ("up" if link else "down")
    position_text = str(position) if position is not None else "no position yet"
    return f"{name} | {position_text} | link {link_text}"


class CommandDispatcher:
    """
    Single consumer of operator intents for one vehicle session.

    ``submit`` is called from the application loop (the view or the plain
    console); ``run`` is the consumer task. At most one intent is
    outstanding at any time, so nothing is ever queued behind a running
    command.
    """

    def __init__(self, session: VehicleSession, reporter: Optional[Reporter] = None):
        self._session = session
        self._reporter = reporter
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._pending: Optional[Intent] = None
        self._outcome: LatestValue[Outcome] = LatestValue(None, name="outcome")
        self._stopped = False

    @property
    def busy(self) -> bool:
        """True while an intent is queued or running."""
        return self._pending is not None

    @property
    def current(self) -> Optional[Intent]:
        return self._pending

    @property
    def outcome(self) -> ReadOnlyValue[Outcome]:
        """The most recent outcome, ``None`` before the first command."""
        return self._outcome.read_only()

    @property
    def stopped(self) -> bool:
        return self._stopped

    def submit(self, intent: Intent) -> bool:
        """
        Hand an intent to the consumer.

        Returns False, without queueing anything, while another intent is
        outstanding or after the dispatcher stopped.
        """
        if self._stopped:
            logger.warning(f"Dispatcher stopped, ignoring '{intent}'")
            return False
        if self._pending is not None:
            logger.warning(f"Busy with '{self._pending}', ignoring '{intent}'")
            return False
        self._pending = intent
        self._queue.put_nowait(intent)
        logger.debug(f"Submitted '{intent}'")
        return True

    async def dispatch(self, intent: Intent) -> Outcome:
        """
        Run one intent against the session and return its outcome.

        Command failures and invalid input become failed outcomes; task
        cancellation propagates.
        """
        start = time.monotonic()
        error: Optional[BaseException] = None
        try:
            message = await self._execute(intent)
            ok = True
        except asyncio.CancelledError:
            raise
        except (DronectlError, ValueError) as e:
            error = e
            ok = False
            message = str(e)
            logger.error(f"'{intent}' failed: {e}")
        outcome = Outcome(intent, ok, message, error, time.monotonic() - start)
        if ok:
            logger.info(f"'{intent}' done in {outcome.elapsed:.2f}s: {message}")
        return outcome

    async def _execute(self, intent: Intent) -> str:
        session = self._session
        if isinstance(intent, TakeOff):
            await session.take_off(intent.altitude_m)
            return f"Taking off to {intent.altitude_m:g}m"
        if isinstance(intent, Land):
            await session.land()
            return "Landing"
        if isinstance(intent, GoTo):
            await session.go_to(intent.lat, intent.lon, intent.alt)
            return f"Flying to {intent.lat:.7f}, {intent.lon:.7f} at {intent.alt:g}m"
        if isinstance(intent, ShowStatus):
            return describe_status(session)
        if isinstance(intent, Exit):
            return "Exiting"
        raise IntentError(f"Unsupported intent {intent!r}")

    def _report(self, outcome: Outcome) -> None:
        self._outcome.publish(outcome)
        if self._reporter is None:
            return
        try:
            self._reporter(outcome)
        except Exception:
            logger.exception("Outcome reporter failed")

    async def run(self) -> None:
        """
        Consume intents until ``Exit`` is dispatched or the task is cancelled.
        """
        logger.debug("Dispatcher running")
        try:
            while True:
                intent = await self._queue.get()
                try:
                    outcome = await self.dispatch(intent)
                finally:
                    self._pending = None
                    self._queue.task_done()
                self._report(outcome)
                if isinstance(intent, Exit):
                    break
        finally:
            self._stopped = True
            logger.debug("Dispatcher stopped")


__all__ = [
    "TakeOff",
    "Land",
    "GoTo",
    "ShowStatus",
    "Exit",
    "Intent",
    "Outcome",
    "Reporter",
    "parse_intent",
    "describe_status",
    "CommandDispatcher",
]
