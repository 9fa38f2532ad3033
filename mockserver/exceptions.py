"""
Custom Exception Hierarchy for the Mock Server

Provides structured exceptions for script loading, listener pool misuse
and session failures. All custom exceptions inherit from MockServerError.
"""
from typing import Any, List, Optional


class MockServerError(Exception):
    """
    Base exception for all mock server errors.

    All custom exceptions should inherit from this class to allow
    catching every mock server error with a single except clause.
    """
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# Configuration and Initialization Errors

class ConfigurationError(MockServerError):
    """
    Invalid configuration or start-up failure.

    Raised when the listener pool cannot open its sockets or settings
    contain unusable addresses or ports.
    """
    pass


# Script Errors

class ScriptLoadError(MockServerError):
    """
    Script loading failures.

    Base class for errors raised while turning a script source into
    mock messages.
    """
    pass


class ScriptNotFoundError(ScriptLoadError):
    """Named script does not exist in the script directory."""
    def __init__(self, name: str):
        super().__init__(f"Script not found: {name}", {"name": name})
        self.name = name


class ScriptParseError(ScriptLoadError):
    """Script text contains malformed lines."""
    def __init__(self, kind: str, line: int, errors: Optional[List[Any]] = None):
        super().__init__(
            f"Script parse error ({kind}) at line {line}",
            {"kind": kind, "line": line},
        )
        self.kind = kind
        self.line = line
        self.errors = errors or []


class BadMockError(ScriptLoadError):
    """A pre-built mock entry is not a (direction, bytes) pair."""
    def __init__(self, entry: Any):
        super().__init__(f"Bad mock entry: {entry!r}", {"entry": repr(entry)})
        self.entry = entry


# Feed Errors

class FeedError(MockServerError):
    """
    Message feed lifecycle errors.

    Base class for misuse of a feed outside its owning session.
    """
    pass


class FeedClosedError(FeedError):
    """Feed was torn down and can no longer be loaded."""
    pass


class FeedInUseError(FeedError):
    """Feed is already attached to a running session."""
    pass


# Listener Pool Errors

class PoolError(MockServerError):
    """
    Listener pool protocol misuse.

    Raised synchronously to the caller; the pool state is left untouched.
    """
    pass


class WrongAddressError(PoolError):
    """Listener is not listening on the requested address."""
    pass


class AlreadyBoundError(PoolError):
    """Listener is already bound to a session."""
    pass


class AlreadyFreedError(PoolError):
    """Listener was already free."""
    pass


class UnknownSocketError(PoolError):
    """Socket does not belong to the listener or pool."""
    pass


# Session Errors

class SessionError(MockServerError):
    """
    Mock session failures.

    Base class for errors that terminate a session.
    """
    pass


class SessionNotFoundError(SessionError):
    """Requested session does not exist."""
    pass


class SessionTimeoutError(SessionError):
    """Accept or receive did not complete in time, or the peer hung up early."""
    pass


class SessionIOError(SessionError):
    """Low-level send or receive failure."""
    pass


class MismatchError(SessionError):
    """Data received from the client differs from the script."""
    def __init__(self, expected: bytes, received: bytes):
        super().__init__(
            f"Expected {expected!r}, received {received!r}",
            {"expected": expected.hex(), "received": received.hex()},
        )
        self.expected = expected
        self.received = received
