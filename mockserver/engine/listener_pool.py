"""
Listener Pool - Pre-bound listening sockets shared by mock sessions.

Provides:
- Listener: one listening socket on an (address, port) pair with a
  free/bound state
- ListenerPool: the shared table of listeners, handing out exclusive and
  temporary ownership of one listener at a time

Every socket is opened, bound and listening for the whole life of the pool,
so a client may connect as soon as a session has been given a port. The
session frees its listener once it has accepted a connection.

bind/free/count run under a single asyncio.Lock, so each is observed as one
atomic step against the table. When no listener is free, bind polls at a
fixed interval. Waiters are not served in any particular order.
"""
from __future__ import annotations

import asyncio
import ipaddress
import socket
from typing import Iterable, List, Optional, Tuple

import structlog

from mockserver.config import settings
from mockserver.exceptions import (
    AlreadyBoundError,
    AlreadyFreedError,
    ConfigurationError,
    PoolError,
    UnknownSocketError,
    WrongAddressError,
)
from mockserver.models import ListenerInfo, ListenerState

logger = structlog.get_logger()


def canonical_address(address: str) -> str:
    """
    Normalise an IP literal so equal addresses compare equal.

    Raises:
        ValueError: If address is not an IPv4 or IPv6 literal
    """
    return str(ipaddress.ip_address(address))


class Listener:
    """
    A listening socket in the pool.

    The socket is non-blocking so sessions can accept on it through the
    event loop.
    """

    def __init__(self, address: str, port: int, backlog: Optional[int] = None):
        """
        Open, bind and listen.

        Args:
            address: IPv4 or IPv6 literal to listen on
            port: Port number, 0 for an OS-assigned port
            backlog: Listen queue length (defaults to settings.listen_backlog)

        Raises:
            ValueError: If address is not an IP literal
            OSError: If the socket cannot be bound (port in use, etc)
        """
        self.address = canonical_address(address)
        family = socket.AF_INET6 if ":" in self.address else socket.AF_INET

        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.address, port))
            sock.listen(backlog if backlog is not None else settings.listen_backlog)
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise

        self._socket: Optional[socket.socket] = sock
        self.port: int = sock.getsockname()[1]
        self.state = ListenerState.FREE

    @property
    def socket(self) -> Optional[socket.socket]:
        return self._socket

    @property
    def bound(self) -> bool:
        return self.state == ListenerState.BOUND

    @property
    def free(self) -> bool:
        return self.state == ListenerState.FREE

    def bind_address(self, address: str) -> None:
        """
        Claim this listener for a session.

        Raises:
            WrongAddressError: Listener is on a different address
            AlreadyBoundError: Listener is already claimed
        """
        if address != self.address:
            raise WrongAddressError(
                f"Listener {self.address}:{self.port} does not listen on {address}",
                details={"listener": self.address, "requested": address},
            )
        if self.bound:
            raise AlreadyBoundError(
                f"Listener {self.address}:{self.port} is already bound",
                details={"port": self.port},
            )
        self.state = ListenerState.BOUND

    def free_socket(self, sock: socket.socket) -> None:
        """
        Release this listener.

        Raises:
            UnknownSocketError: sock is not this listener's socket
            AlreadyFreedError: Listener was not bound
        """
        if sock is not self._socket:
            raise UnknownSocketError(
                f"Socket does not belong to listener {self.address}:{self.port}",
                details={"port": self.port},
            )
        if self.free:
            raise AlreadyFreedError(
                f"Listener {self.address}:{self.port} is already free",
                details={"port": self.port},
            )
        self.state = ListenerState.FREE

    def close(self) -> None:
        """Close the listening socket whatever its state."""
        if self._socket is not None:
            self._socket.close()
            self._socket = None
        self.state = ListenerState.BOUND

    def info(self) -> ListenerInfo:
        return ListenerInfo(address=self.address, port=self.port, state=self.state)


class ListenerPool:
    """
    Pool of pre-bound listeners.

    Example usage:
        pool = ListenerPool()
        pool.start(["127.0.0.1"], range(5000, 5010))

        port, sock = await pool.bind("127.0.0.1")
        ...  # accept a connection on sock
        await pool.free(sock)

        pool.stop()
    """

    def __init__(self, poll_interval_ms: Optional[int] = None, backlog: Optional[int] = None):
        if poll_interval_ms is None:
            poll_interval_ms = settings.bind_poll_interval_ms
        self.poll_interval_sec = poll_interval_ms / 1000.0
        self.backlog = backlog
        self._listeners: List[Listener] = []
        self._lock = asyncio.Lock()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def total(self) -> int:
        return len(self._listeners)

    def start(self, addresses: Iterable[str], ports: Iterable[int]) -> None:
        """
        Open one listener for every (address, port) pair.

        Listeners are ordered by address, then by port. Failing to open any
        of them closes the ones already opened.

        Raises:
            ConfigurationError: Pool already running, or a socket could not
                be bound
        """
        if self._running:
            raise ConfigurationError("Listener pool is already running")

        ports = list(ports)
        listeners: List[Listener] = []
        try:
            for address in addresses:
                for port in ports:
                    listeners.append(Listener(address, port, self.backlog))
        except (OSError, ValueError) as e:
            for listener in listeners:
                listener.close()
            logger.error(
                "listener_pool_start_failed",
                address=address,
                port=port,
                error=str(e),
            )
            raise ConfigurationError(
                f"Cannot listen on {address}:{port}: {e}",
                details={"address": address, "port": port, "error": str(e)},
            )

        if not listeners:
            raise ConfigurationError("Listener pool needs at least one address and port")

        self._listeners = listeners
        self._running = True
        logger.info(
            "listener_pool_started",
            listeners=len(listeners),
            ports=[listener.port for listener in listeners],
        )

    def stop(self) -> None:
        """Close every listener regardless of state and empty the pool."""
        for listener in self._listeners:
            listener.close()
        closed = len(self._listeners)
        self._listeners = []
        self._running = False
        logger.info("listener_pool_stopped", closed=closed)

    async def bind(self, address: str) -> Tuple[int, socket.socket]:
        """
        Claim the first free listener on address.

        Blocks, polling every poll interval, until one is available.

        Args:
            address: IP literal; must match a listener's address exactly

        Returns:
            Tuple of (port, listening socket)

        Raises:
            WrongAddressError: No listener in the pool has this address
            PoolError: The pool is not running
        """
        try:
            address = canonical_address(address)
        except ValueError:
            raise WrongAddressError(
                f"Not an IP address: {address}", details={"requested": address}
            )

        while True:
            claimed = await self.try_bind(address)
            if claimed is not None:
                return claimed
            await asyncio.sleep(self.poll_interval_sec)

    async def try_bind(self, address: str) -> Optional[Tuple[int, socket.socket]]:
        """Single bind attempt; returns None when every matching listener is bound."""
        async with self._lock:
            if not self._running:
                raise PoolError("Listener pool is not running")

            matching = [l for l in self._listeners if l.address == address]
            if not matching:
                raise WrongAddressError(
                    f"No listener on {address}",
                    details={"requested": address},
                )

            for listener in matching:
                if listener.free:
                    listener.bind_address(address)
                    logger.debug("listener_bound", address=address, port=listener.port)
                    return listener.port, listener.socket

            return None

    async def free(self, sock: socket.socket) -> None:
        """
        Return a listener to the pool.

        Raises:
            UnknownSocketError: sock is not a pool listener
            AlreadyFreedError: The listener was already free
        """
        async with self._lock:
            for listener in self._listeners:
                if listener.socket is sock:
                    listener.free_socket(sock)
                    logger.debug("listener_freed", address=listener.address, port=listener.port)
                    return

            raise UnknownSocketError("Socket is not part of the listener pool")

    async def count(self) -> int:
        """Number of free listeners."""
        async with self._lock:
            return sum(1 for listener in self._listeners if listener.free)

    def snapshot(self) -> List[ListenerInfo]:
        """Per-listener status, in pool order."""
        return [listener.info() for listener in self._listeners]
