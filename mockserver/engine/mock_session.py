"""
Mock Session - Plays a message feed back over one accepted TCP connection.

Lifecycle:
    LISTENING  waiting for a client on the bound listener
    CONNECTED  client accepted, listener returned to the pool
    SENDING    writing a server message
    RECEIVING  reading and comparing a client message
    CLOSED     finished; see outcome and error

Any deviation from the script ends the session at once: a receive that
times out or is cut short, received bytes that differ from the script, or
a failed send. Nothing is retried. The connection is closed and the
listener released on every exit path.
"""
from __future__ import annotations

import asyncio
import socket
import uuid
from datetime import datetime
from typing import Optional

import structlog
import structlog.contextvars

from mockserver.engine.listener_pool import ListenerPool
from mockserver.engine.message_feed import CLOSE, MessageFeed
from mockserver.exceptions import (
    FeedClosedError,
    MismatchError,
    MockServerError,
    PoolError,
    SessionError,
    SessionIOError,
    SessionTimeoutError,
)
from mockserver.models import Direction, SessionInfo, SessionOutcome, SessionState

logger = structlog.get_logger()

_OUTCOMES = {
    FeedClosedError: SessionOutcome.CANCELLED,
    SessionTimeoutError: SessionOutcome.TIMEOUT,
    MismatchError: SessionOutcome.MISMATCH,
    SessionIOError: SessionOutcome.IO_ERROR,
}


class MockSession:
    """
    One scripted conversation with one client.

    Example usage:
        port, sock = await pool.bind("127.0.0.1")
        session = MockSession(feed, pool, sock, "127.0.0.1", port, timeout_ms=1000)
        session.start()

        # ... client connects to port and talks ...

        outcome = await session.wait()  # raises MismatchError etc on failure
    """

    def __init__(
        self,
        feed: MessageFeed,
        pool: ListenerPool,
        listen_socket: socket.socket,
        address: str,
        port: int,
        timeout_ms: Optional[int] = None,
        session_id: Optional[str] = None,
    ):
        """
        Initialize a session around a listener already bound in the pool.

        Args:
            feed: Messages to play back
            pool: Pool the listener belongs to
            listen_socket: Bound listening socket
            address: Address the listener is on
            port: Port the listener is on
            timeout_ms: Accept and per-receive timeout (None waits forever)
            session_id: Identifier, generated when omitted
        """
        self.id = session_id or str(uuid.uuid4())
        self.feed = feed
        self.pool = pool
        self.listen_socket = listen_socket
        self.address = address
        self.port = port
        self.timeout_ms = timeout_ms
        self.timeout_sec = timeout_ms / 1000.0 if timeout_ms is not None else None

        self.state = SessionState.LISTENING
        self.outcome: Optional[SessionOutcome] = None
        self.error: Optional[MockServerError] = None
        self.peer: Optional[tuple] = None

        # Statistics
        self.created_at = datetime.utcnow()
        self.connected_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None
        self.bytes_sent = 0
        self.bytes_received = 0

        self._task: Optional[asyncio.Task] = None
        self._listener_held = True
        self._release_task: Optional[asyncio.Task] = None

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def start(self) -> asyncio.Task:
        """Spawn the playback task. The listener is already accepting connections."""
        if self._task is not None:
            raise SessionError("Session already started", {"session_id": self.id})

        self._task = asyncio.create_task(self._run(), name=f"mock-session-{self.id}")
        self._task.add_done_callback(self._on_task_done)
        logger.info(
            "mock_session_started",
            session_id=self.id,
            address=self.address,
            port=self.port,
            messages=len(self.feed),
        )
        return self._task

    async def wait(self) -> SessionOutcome:
        """
        Wait for the session to finish.

        Returns:
            The session outcome

        Raises:
            SessionTimeoutError, MismatchError, SessionIOError: The failure
                that ended the session
        """
        if self._task is None:
            raise SessionError("Session not started", {"session_id": self.id})

        try:
            await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise

        if self.error is not None:
            raise self.error
        return self.outcome

    async def stop(self) -> None:
        """Cancel the session; its feed is torn down with it."""
        if self._task is None:
            return
        if not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        if self._release_task is not None:
            await self._release_task

    def info(self) -> SessionInfo:
        return SessionInfo(
            id=self.id,
            address=self.address,
            port=self.port,
            state=self.state,
            outcome=self.outcome,
            error=self.error.message if self.error else None,
            timeout_ms=self.timeout_ms,
            remaining_messages=len(self.feed),
            created_at=self.created_at,
            connected_at=self.connected_at,
            finished_at=self.finished_at,
        )

    async def _run(self) -> None:
        writer: Optional[asyncio.StreamWriter] = None
        # Task-local: pool and feed events logged from here carry the session id
        structlog.contextvars.bind_contextvars(session_id=self.id, port=self.port)
        try:
            self.feed.attach(asyncio.current_task())

            conn = await self._accept()
            reader, writer = await asyncio.open_connection(sock=conn)
            await self._playback(reader, writer)
            self.outcome = SessionOutcome.NORMAL

        except asyncio.CancelledError:
            self.outcome = SessionOutcome.CANCELLED
            logger.info("mock_session_cancelled", session_id=self.id, state=self.state.value)
            raise

        except MockServerError as e:
            self.error = e
            self.outcome = _OUTCOMES.get(type(e), SessionOutcome.IO_ERROR)
            logger.error(
                "mock_session_failed",
                session_id=self.id,
                port=self.port,
                state=self.state.value,
                outcome=self.outcome.value,
                error=e.message,
                details=e.details,
            )

        finally:
            if writer is not None:
                writer.close()
                try:
                    await writer.wait_closed()
                except Exception as e:
                    logger.warning(
                        "mock_session_close_failed",
                        session_id=self.id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
            await self._release_listener()
            self.state = SessionState.CLOSED
            self.finished_at = datetime.utcnow()
            logger.info(
                "mock_session_finished",
                session_id=self.id,
                outcome=self.outcome.value if self.outcome else None,
                bytes_sent=self.bytes_sent,
                bytes_received=self.bytes_received,
            )

    async def _accept(self) -> socket.socket:
        loop = asyncio.get_running_loop()
        try:
            conn, peer = await asyncio.wait_for(
                loop.sock_accept(self.listen_socket),
                timeout=self.timeout_sec,
            )
        except asyncio.TimeoutError:
            raise SessionTimeoutError(
                f"No connection on {self.address}:{self.port}",
                details={"phase": "accept", "timeout_ms": self.timeout_ms},
            )
        except OSError as e:
            raise SessionIOError(
                f"Accept failed on {self.address}:{self.port}: {e}",
                details={"phase": "accept"},
            )

        # The port may serve another session while this one plays back
        await self._release_listener()

        self.peer = peer
        self.state = SessionState.CONNECTED
        self.connected_at = datetime.utcnow()
        logger.debug("mock_session_connected", session_id=self.id, port=self.port, peer=str(peer))
        return conn

    async def _playback(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        while True:
            message = self.feed.pull()
            if message is CLOSE:
                return
            if message.direction == Direction.SERVER:
                await self._send(writer, message.payload)
            else:
                await self._expect(reader, message.payload)

    async def _send(self, writer: asyncio.StreamWriter, payload: bytes) -> None:
        self.state = SessionState.SENDING
        try:
            writer.write(payload)
            await writer.drain()
        except (ConnectionError, OSError) as e:
            raise SessionIOError(
                f"Failed to send to {self.peer}: {e}",
                details={"phase": "send", "data_size": len(payload)},
            )
        self.bytes_sent += len(payload)

    async def _expect(self, reader: asyncio.StreamReader, expected: bytes) -> None:
        self.state = SessionState.RECEIVING
        try:
            received = await asyncio.wait_for(
                reader.readexactly(len(expected)),
                timeout=self.timeout_sec,
            )
        except asyncio.TimeoutError:
            raise SessionTimeoutError(
                f"Timed out waiting for {len(expected)} bytes",
                details={"phase": "receive", "timeout_ms": self.timeout_ms},
            )
        except asyncio.IncompleteReadError as e:
            raise SessionTimeoutError(
                f"Connection closed after {len(e.partial)} of {len(expected)} bytes",
                details={"phase": "receive", "received": e.partial.hex()},
            )
        except (ConnectionError, OSError) as e:
            raise SessionIOError(
                f"Failed to receive from {self.peer}: {e}",
                details={"phase": "receive"},
            )

        self.bytes_received += len(received)
        if received != expected:
            raise MismatchError(expected, received)

    async def _release_listener(self) -> None:
        if not self._listener_held:
            return
        self._listener_held = False
        try:
            await self.pool.free(self.listen_socket)
        except PoolError as e:
            # Pool already stopped or slot reclaimed
            logger.warning(
                "listener_release_failed",
                session_id=self.id,
                port=self.port,
                error=e.message,
            )

    def _on_task_done(self, task: asyncio.Task) -> None:
        self.feed.close()
        # A task cancelled before its first step never runs its finally block
        if self._listener_held:
            self.state = SessionState.CLOSED
            self.outcome = self.outcome or SessionOutcome.CANCELLED
            self.finished_at = self.finished_at or datetime.utcnow()
            self._release_task = asyncio.ensure_future(self._release_listener())
