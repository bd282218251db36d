"""
Operator consoles for dronectl.

``LiveView`` is the curses screen: an actions panel, a status panel fed by
the session's telemetry cells, and a message line. ``PlainConsole`` is the
line-mode fallback for terminals without curses.

Telemetry callbacks arrive on the MAVSDK thread. They only write into the
``ViewCache``; drawing happens on the redraw tick of the application loop.
"""

from __future__ import annotations

import asyncio
import curses
import logging
import sys
import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Any, Callable, Iterator, List, Optional, Protocol, TextIO, Tuple

from .constants import PROMPT_POLL_INTERVAL_S, REFRESH_INTERVAL_S
from .dispatcher import (
    CommandDispatcher,
    Exit,
    Intent,
    Land,
    Outcome,
    ShowStatus,
    parse_intent,
)
from .exceptions import IntentError
from .helpers import Subscription
from .log import CallbackHandler, LogComponent, get_logger, get_manager
from .session import VehicleSession
from .types import GlobalPosition

logger = get_logger(LogComponent.VIEW)

ESCAPE_KEY = 27
ENTER_KEYS = (10, 13, curses.KEY_ENTER)
BACKSPACE_KEYS = (8, 127, curses.KEY_BACKSPACE)

ACTIONS: List[Tuple[str, str]] = [
    ("t", "take off"),
    ("l", "land"),
    ("g", "go to"),
    ("s", "status"),
    ("e", "exit"),
]


def format_position(position: Optional[GlobalPosition]) -> str:
    if position is None:
        return "waiting for position..."
    return str(position)


def format_link(link: Optional[bool]) -> str:
    if link is None:
        return "unknown"
    return "up" if link else "DOWN"


@dataclass(frozen=True)
class ViewSnapshot:
    """Everything the status panel and message line show, as one value."""

    name: Optional[str] = None
    position: Optional[GlobalPosition] = None
    link: Optional[bool] = None
    message: str = ""
    message_ok: bool = True
    warning: str = ""


class ViewCache:
    """
    Latest ``ViewSnapshot``, swapped whole under a lock.

    Writers may be on any thread; the redraw tick reads one consistent
    snapshot per frame.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._snapshot = ViewSnapshot()

    @property
    def snapshot(self) -> ViewSnapshot:
        with self._lock:
            return self._snapshot

    def update(self, **changes: Any) -> None:
        with self._lock:
            self._snapshot = replace(self._snapshot, **changes)


class Terminal(Protocol):
    """The screen operations the live view needs."""

    def size(self) -> Tuple[int, int]: ...

    def clear(self) -> None: ...

    def write(self, y: int, x: int, text: str, style: str = "normal") -> None: ...

    def refresh(self) -> None: ...

    def get_key(self) -> Optional[int]: ...


class CursesTerminal:
    """
    ``Terminal`` over a curses window in no-delay mode.

    Styles: normal, title, ok, warn, error, dim.
    """

    COLOR_RED = 1
    COLOR_GREEN = 2
    COLOR_YELLOW = 3
    COLOR_CYAN = 4

    def __init__(self, stdscr: Any):
        self._stdscr = stdscr
        stdscr.nodelay(True)
        stdscr.keypad(True)
        self._styles = {
            "normal": curses.A_NORMAL,
            "title": curses.A_BOLD,
            "ok": curses.A_NORMAL,
            "warn": curses.A_BOLD,
            "error": curses.A_BOLD,
            "dim": curses.A_DIM,
        }
        if curses.has_colors():
            curses.use_default_colors()
            curses.init_pair(self.COLOR_RED, curses.COLOR_RED, -1)
            curses.init_pair(self.COLOR_GREEN, curses.COLOR_GREEN, -1)
            curses.init_pair(self.COLOR_YELLOW, curses.COLOR_YELLOW, -1)
            curses.init_pair(self.COLOR_CYAN, curses.COLOR_CYAN, -1)
            self._styles.update(
                title=curses.color_pair(self.COLOR_CYAN) | curses.A_BOLD,
                ok=curses.color_pair(self.COLOR_GREEN),
                warn=curses.color_pair(self.COLOR_YELLOW),
                error=curses.color_pair(self.COLOR_RED) | curses.A_BOLD,
            )

    def size(self) -> Tuple[int, int]:
        return self._stdscr.getmaxyx()

    def clear(self) -> None:
        self._stdscr.erase()

    def write(self, y: int, x: int, text: str, style: str = "normal") -> None:
        h, w = self._stdscr.getmaxyx()
        available = w - x - 1
        if y < 0 or y >= h or available <= 0:
            return
        try:
            self._stdscr.addstr(y, x, text[:available], self._styles.get(style, curses.A_NORMAL))
        except curses.error:
            # addstr fails on the last cell of the screen after writing it
            pass

    def refresh(self) -> None:
        self._stdscr.noutrefresh()
        curses.doupdate()

    def get_key(self) -> Optional[int]:
        ch = self._stdscr.getch()
        return None if ch == -1 else ch


@contextmanager
def curses_terminal() -> Iterator[CursesTerminal]:
    """Set up the screen like ``curses.wrapper`` and restore it on exit."""
    stdscr = curses.initscr()
    try:
        curses.noecho()
        curses.cbreak()
        try:
            curses.curs_set(0)
        except curses.error:
            logger.debug("Terminal cannot hide the cursor")
        if curses.has_colors():
            curses.start_color()
        yield CursesTerminal(stdscr)
    finally:
        stdscr.keypad(False)
        curses.nocbreak()
        curses.echo()
        curses.endwin()


class LiveView:
    """
    Curses front end for one vehicle session.

    Every ``refresh_interval`` the view draws the cached state and polls
    the keyboard once without blocking. ``t`` and ``g`` open a prompt;
    the prompt polls keys the same way, so telemetry delivery never
    stalls.
    """

    def __init__(
        self,
        session: VehicleSession,
        dispatcher: CommandDispatcher,
        terminal: Terminal,
        refresh_interval: float = REFRESH_INTERVAL_S,
    ):
        self._session = session
        self._dispatcher = dispatcher
        self._terminal = terminal
        self._refresh_interval = refresh_interval
        self.cache = ViewCache()
        self._exit_requested = False
        self._subscriptions: List[Subscription] = []

    @property
    def exit_requested(self) -> bool:
        return self._exit_requested

    def _on_outcome(self, outcome: Optional[Outcome]) -> None:
        if outcome is not None:
            self.cache.update(message=outcome.message, message_ok=outcome.ok)

    def _on_log_record(self, record: logging.LogRecord, text: str) -> None:
        self.cache.update(warning=record.getMessage())

    def _subscribe(self) -> None:
        session = self._session
        update = self.cache.update
        self._subscriptions = [
            session.identity.subscribe(lambda name: update(name=name)),
            session.position.subscribe(lambda position: update(position=position)),
            session.link.subscribe(lambda link: update(link=link)),
            self._dispatcher.outcome.subscribe(self._on_outcome),
        ]

    def _unsubscribe(self) -> None:
        for subscription in self._subscriptions:
            subscription.dispose()
        self._subscriptions = []

    async def run(self) -> None:
        """Draw and poll until the operator exits or the dispatcher stops."""
        handler = CallbackHandler(logging.WARNING)
        handler.add_callback(self._on_log_record)
        self._subscribe()
        try:
            with get_manager().redirect_console(handler):
                while not self._exit_requested and not self._dispatcher.stopped:
                    self.draw()
                    key = self._terminal.get_key()
                    if key is not None:
                        await self.handle_key(key)
                    await asyncio.sleep(self._refresh_interval)
        finally:
            self._unsubscribe()
            handler.remove_callback(self._on_log_record)

    def draw(self, prompt: Optional[str] = None) -> None:
        snapshot = self.cache.snapshot
        term = self._terminal
        height, _ = term.size()
        term.clear()

        term.write(0, 0, f"dronectl  {self._session.device_id}", "title")

        term.write(2, 0, "Actions", "title")
        for row, (key, label) in enumerate(ACTIONS, start=3):
            term.write(row, 2, f"[{key}] {label}")

        row = 4 + len(ACTIONS)
        term.write(row, 0, "Status", "title")
        term.write(row + 1, 2, f"Drone:    {snapshot.name or 'unknown'}")
        term.write(row + 2, 2, f"Position: {format_position(snapshot.position)}")
        link_style = "error" if snapshot.link is False else "normal"
        term.write(row + 3, 2, f"Link:     {format_link(snapshot.link)}", link_style)

        row += 5
        current = self._dispatcher.current
        if current is not None:
            term.write(row, 0, f"busy: {current}", "warn")
        if snapshot.message:
            term.write(row + 1, 0, snapshot.message, "ok" if snapshot.message_ok else "error")
        if snapshot.warning:
            term.write(row + 2, 0, snapshot.warning, "warn")

        if prompt is not None:
            term.write(height - 1, 0, prompt, "title")
        else:
            term.write(height - 1, 0, "Press a key to run an action", "dim")
        term.refresh()

    async def prompt(self, label: str) -> Optional[str]:
        """
        Read one line of input on the bottom row.

        Returns the entered text, or ``None`` when the operator pressed Esc.
        """
        text = ""
        while True:
            self.draw(prompt=f"{label}{text}")
            key = self._terminal.get_key()
            if key is None:
                await asyncio.sleep(PROMPT_POLL_INTERVAL_S)
                continue
            if key == ESCAPE_KEY:
                return None
            if key in ENTER_KEYS:
                return text
            if key in BACKSPACE_KEYS:
                text = text[:-1]
            elif 32 <= key < 127:
                text += chr(key)

    def _submit(self, intent: Intent) -> None:
        if not self._dispatcher.submit(intent):
            current = self._dispatcher.current
            self.cache.update(message=f"busy: {current}, '{intent}' ignored", message_ok=False)

    def _submit_text(self, text: str) -> None:
        try:
            intent = parse_intent(text)
        except IntentError as e:
            self.cache.update(message=str(e), message_ok=False)
            return
        self._submit(intent)

    async def handle_key(self, key: int) -> None:
        if key == ord("e"):
            self._exit_requested = True
            self._dispatcher.submit(Exit())
        elif key == ord("l"):
            self._submit(Land())
        elif key == ord("s"):
            self._submit(ShowStatus())
        elif key == ord("t"):
            text = await self.prompt("Take-off altitude (m): ")
            if text is not None:
                self._submit_text(f"takeoff {text}")
        elif key == ord("g"):
            text = await self.prompt("Go to (lat lon alt_m): ")
            if text is not None:
                self._submit_text(f"goto {text}")


HELP_TEXT = (
    "Commands: takeoff <alt_m> | land | goto <lat> <lon> <alt_m> | status | exit"
)


class PlainConsole:
    """
    Line-mode console: one textual command per line.

    Each command runs to its outcome before the next line is taken. Lines
    are read by a daemon thread so a pending read never holds up
    shutdown.
    """

    def __init__(
        self,
        session: VehicleSession,
        dispatcher: CommandDispatcher,
        stream: Optional[TextIO] = None,
        output: Callable[[str], None] = print,
    ):
        self._session = session
        self._dispatcher = dispatcher
        self._stream = stream if stream is not None else sys.stdin
        self._output = output
        self._done = asyncio.Event()

    def _on_outcome(self, outcome: Optional[Outcome]) -> None:
        if outcome is None:
            return
        prefix = "ok" if outcome.ok else "FAILED"
        self._output(f"[{prefix}] {outcome.message}")
        self._done.set()

    async def _run_intent(self, intent: Intent) -> None:
        self._done.clear()
        if not self._dispatcher.submit(intent):
            self._output(f"[busy] {self._dispatcher.current} still running")
            return
        await self._done.wait()

    def _read_lines(self, loop: asyncio.AbstractEventLoop, lines: asyncio.Queue) -> None:
        for line in iter(self._stream.readline, ""):
            loop.call_soon_threadsafe(lines.put_nowait, line)
        loop.call_soon_threadsafe(lines.put_nowait, None)

    async def run(self) -> None:
        """Read and submit commands until ``exit`` or end of input."""
        loop = asyncio.get_running_loop()
        lines: asyncio.Queue = asyncio.Queue()
        reader = threading.Thread(
            target=self._read_lines, args=(loop, lines), name="dronectl-stdin", daemon=True
        )
        reader.start()

        self._output(f"Connected to {self._session.device_id}. {HELP_TEXT}")
        with self._dispatcher.outcome.subscribe(self._on_outcome):
            while not self._dispatcher.stopped:
                line = await lines.get()
                if line is None:
                    logger.info("End of input")
                    await self._run_intent(Exit())
                    return
                if not line.strip():
                    continue
                try:
                    intent = parse_intent(line)
                except IntentError as e:
                    self._output(f"[error] {e}")
                    continue
                await self._run_intent(intent)
                if isinstance(intent, Exit):
                    return


__all__ = [
    "ViewSnapshot",
    "ViewCache",
    "Terminal",
    "CursesTerminal",
    "curses_terminal",
    "LiveView",
    "PlainConsole",
    "format_position",
    "format_link",
]
