"""
Message Feed - FIFO of script messages consumed by one mock session.

Messages are pulled out in the order they were loaded. Once the queue is
empty every pull returns CLOSE, which tells the session to hang up.

A feed shares its lifetime with the session task it is attached to:
closing the feed cancels the task, and the task finishing (however it
ends) closes the feed.
"""
from __future__ import annotations

import asyncio
from collections import deque
from enum import Enum
from pathlib import Path
from typing import Any, Deque, Iterable, List, Optional, Union

import structlog

from mockserver.engine import script_parser
from mockserver.engine.script_parser import ScriptError, ScriptMessage
from mockserver.exceptions import (
    BadMockError,
    FeedClosedError,
    FeedInUseError,
    ScriptNotFoundError,
    ScriptParseError,
)
from mockserver.models import Direction
from mockserver.scripts.store import NamedScript, ScriptStore, script_store

logger = structlog.get_logger()


class FeedSignal(Enum):
    """Terminal value returned by pull() on an exhausted feed"""
    CLOSE = "close"


CLOSE = FeedSignal.CLOSE

FeedSource = Union[str, bytes, Path, NamedScript, Iterable[Any]]


class MessageFeed:
    """
    Ordered playback queue for a mock session.

    All operations are synchronous and complete without yielding to the
    event loop, so they never interleave with one another.
    """

    def __init__(self, store: Optional[ScriptStore] = None):
        self._messages: Deque[ScriptMessage] = deque()
        self._store = store or script_store
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def attached(self) -> bool:
        """True while a live session task owns the feed."""
        return self._task is not None and not self._task.done()

    def __len__(self) -> int:
        return len(self._messages)

    def load(self, source: FeedSource) -> None:
        """
        Append messages from a source to the tail of the feed.

        Args:
            source: Script text (str or bytes), a script file Path, a
                NamedScript resolved through the script store, or an
                iterable of ScriptMessage / (direction, bytes) pairs

        Raises:
            ScriptParseError: Script text has malformed lines
            BadMockError: The source is not iterable, or an entry is not a
                (direction, bytes) pair
            ScriptNotFoundError: Named script or script file does not exist
            FeedClosedError: Feed has been torn down
        """
        if self._closed:
            raise FeedClosedError("Cannot load into a closed feed")

        entries = self._resolve(source)

        problems = [entry for entry in entries if isinstance(entry, ScriptError)]
        if problems:
            first = problems[0]
            raise ScriptParseError(first.kind.value, first.line, problems)

        validated = [self._validate(entry) for entry in entries]
        self._messages.extend(validated)
        logger.debug("feed_loaded", added=len(validated), queued=len(self._messages))

    def pull(self) -> Union[ScriptMessage, FeedSignal]:
        """Remove and return the head message, or CLOSE once exhausted."""
        if self._closed or not self._messages:
            return CLOSE
        return self._messages.popleft()

    def dump(self) -> List[ScriptMessage]:
        """Snapshot of the queued messages; the feed is left untouched."""
        return list(self._messages)

    def attach(self, task: asyncio.Task) -> None:
        """
        Tie the feed to the session task that consumes it.

        Raises:
            FeedInUseError: Another live task already owns the feed
            FeedClosedError: Feed has been torn down
        """
        if self._closed:
            raise FeedClosedError("Cannot attach a closed feed")
        if self._task is not None and not self._task.done() and self._task is not task:
            raise FeedInUseError("Feed is already attached to a running session")

        self._task = task
        task.add_done_callback(lambda _task: self.close())

    def close(self) -> None:
        """Tear the feed down and cancel the session using it."""
        if self._closed:
            return
        self._closed = True
        dropped = len(self._messages)
        self._messages.clear()

        task = self._task
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

        logger.debug("feed_closed", dropped=dropped)

    def _resolve(self, source: FeedSource) -> List[Any]:
        if isinstance(source, NamedScript):
            return self._store.load(source.name)
        if isinstance(source, Path):
            try:
                data = source.read_bytes()
            except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
                raise ScriptNotFoundError(str(source))
            return script_parser.parse(data)
        if isinstance(source, (str, bytes)):
            return script_parser.parse(source)
        try:
            return list(source)
        except TypeError:
            raise BadMockError(source)

    @staticmethod
    def _validate(entry: Any) -> ScriptMessage:
        if isinstance(entry, ScriptMessage):
            if isinstance(entry.direction, Direction) and isinstance(entry.payload, bytes):
                return entry
            raise BadMockError(entry)

        if isinstance(entry, tuple) and len(entry) == 2:
            direction, payload = entry
            if isinstance(payload, (bytes, bytearray)):
                try:
                    return ScriptMessage(Direction(direction), bytes(payload))
                except ValueError:
                    pass

        raise BadMockError(entry)


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
