"""
Mock Server - Starts and tracks scripted mock sessions.

Provides:
- Listener pool start-up and shutdown from settings
- start(): turn a script source into a running session and return its port
- A registry of sessions for inspection and cancellation

A caller hands over a script source and an address; the server loads a
feed, claims a listener on that address and returns the port straight
away. The listener is already accepting, so the client may connect before
the session task gets to its accept step.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional

import structlog

from mockserver.config import settings
from mockserver.engine.listener_pool import ListenerPool, canonical_address
from mockserver.engine.message_feed import FeedSource, MessageFeed
from mockserver.engine.mock_session import MockSession
from mockserver.exceptions import FeedClosedError, FeedInUseError, SessionNotFoundError
from mockserver.scripts.store import ScriptStore, script_store

logger = structlog.get_logger()


class MockServer:
    """
    Entry point for scripted TCP mocks.

    Example usage:
        server = MockServer()
        server.startup(["127.0.0.1"], range(5000, 5010))

        port = await server.start(NamedScript("trivial_pop3"), "127.0.0.1", timeout_ms=1000)
        # ... point the client under test at 127.0.0.1:port ...

        await server.shutdown()
    """

    def __init__(
        self,
        pool: Optional[ListenerPool] = None,
        store: Optional[ScriptStore] = None,
        max_finished_sessions: Optional[int] = None,
    ):
        self.pool = pool or ListenerPool()
        self.store = store or script_store
        self.max_finished_sessions = (
            max_finished_sessions
            if max_finished_sessions is not None
            else settings.max_finished_sessions
        )
        self.sessions: Dict[str, MockSession] = {}

    @property
    def running(self) -> bool:
        return self.pool.running

    def startup(
        self,
        addresses: Optional[Iterable[str]] = None,
        ports: Optional[Iterable[int]] = None,
    ) -> None:
        """
        Open the listener pool.

        Args:
            addresses: Addresses to listen on (defaults to settings.addresses)
            ports: Ports to listen on (defaults to settings.ports)

        Raises:
            ConfigurationError: A listener could not be opened
        """
        addresses = list(addresses) if addresses is not None else settings.address_list
        ports = list(ports) if ports is not None else settings.port_list
        self.pool.start(addresses, ports)
        logger.info("mock_server_started", addresses=addresses, listeners=self.pool.total)

    async def shutdown(self) -> None:
        """Cancel every session, then close the listener pool."""
        sessions = list(self.sessions.values())
        for session in sessions:
            await session.stop()
        self.sessions.clear()
        if self.pool.running:
            self.pool.stop()
        logger.info("mock_server_stopped", cancelled=len(sessions))

    def build_feed(self, source: FeedSource) -> MessageFeed:
        """
        Turn a script source into a loaded feed.

        A MessageFeed is used as-is, provided it is still open and not
        driving another session.
        """
        if isinstance(source, MessageFeed):
            if source.closed:
                raise FeedClosedError("Feed has been closed")
            if source.attached:
                raise FeedInUseError("Feed is already attached to a running session")
            return source

        feed = MessageFeed(self.store)
        feed.load(source)
        return feed

    async def start_session(
        self,
        source: FeedSource,
        address: str = "127.0.0.1",
        timeout_ms: Optional[int] = None,
    ) -> MockSession:
        """
        Start a mock session and return its handle.

        Load failures are raised before any listener is claimed. Blocks
        while every listener on the address is in use.

        Args:
            source: Script text, NamedScript, Path, message list or MessageFeed
            address: Address the client will connect to
            timeout_ms: Accept and per-receive timeout (defaults to
                settings.default_timeout_ms; None there waits forever)

        Raises:
            ScriptParseError, BadMockError, ScriptNotFoundError: Bad source
            WrongAddressError: No listener on the address
        """
        feed = self.build_feed(source)
        if timeout_ms is None:
            timeout_ms = settings.default_timeout_ms

        port, listen_socket = await self.pool.bind(address)
        session = MockSession(
            feed,
            self.pool,
            listen_socket,
            canonical_address(address),
            port,
            timeout_ms=timeout_ms,
        )
        self._prune_finished()
        self.sessions[session.id] = session
        session.start()
        return session

    async def start(
        self,
        source: FeedSource,
        address: str = "127.0.0.1",
        timeout_ms: Optional[int] = None,
    ) -> int:
        """Start a mock session and return the port the client should connect to."""
        session = await self.start_session(source, address, timeout_ms)
        return session.port

    def get_session(self, session_id: str) -> MockSession:
        session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session not found: {session_id}", {"session_id": session_id})
        return session

    def list_sessions(self) -> List[MockSession]:
        return list(self.sessions.values())

    async def stop_session(self, session_id: str) -> MockSession:
        """Cancel a session. Its feed goes with it and a held listener is freed."""
        session = self.get_session(session_id)
        await session.stop()
        logger.info("mock_session_stopped", session_id=session_id)
        return session

    def _prune_finished(self) -> None:
        """Keep only the most recent finished sessions; running ones are never dropped."""
        finished = [sid for sid, session in self.sessions.items() if session.done]
        excess = len(finished) - self.max_finished_sessions
        for sid in finished[:max(excess, 0)]:
            del self.sessions[sid]
        if excess > 0:
            logger.debug("finished_sessions_pruned", removed=excess)

    def forget_finished(self) -> int:
        """Drop finished sessions from the registry; returns how many were dropped."""
        finished = [sid for sid, session in self.sessions.items() if session.done]
        for sid in finished:
            del self.sessions[sid]
        return len(finished)


# Global mock server instance
mock_server = MockServer()
