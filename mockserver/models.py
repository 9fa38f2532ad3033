"""
Mock server data models and control API schemas
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field


class Direction(str, Enum):
    """Which side of the conversation produces a message"""

    SERVER = "server"
    CLIENT = "client"


class ParseErrorKind(str, Enum):
    """Kind of malformed script line"""

    BAD_LEADER = "bad_leader"
    BAD_HEXADECIMAL = "bad_hexadecimal"
    BAD_BASE64 = "bad_base64"


class ListenerState(str, Enum):
    """Listener pool slot state"""

    FREE = "free"
    BOUND = "bound"


class SessionState(str, Enum):
    """Mock session lifecycle state"""

    LISTENING = "listening"
    CONNECTED = "connected"
    SENDING = "sending"
    RECEIVING = "receiving"
    CLOSED = "closed"


class SessionOutcome(str, Enum):
    """How a mock session ended"""

    NORMAL = "normal"
    TIMEOUT = "timeout"
    MISMATCH = "mismatch"
    IO_ERROR = "io_error"
    CANCELLED = "cancelled"


# ==============================================================================
# Control API Models
# ==============================================================================


class MockMessageIn(BaseModel):
    """A pre-built mock message supplied over the API"""

    direction: Direction
    payload_b64: str  # Base64 encoded payload for JSON transport


class SessionRequest(BaseModel):
    """Request to start a mock session. Exactly one source must be set."""

    script: Optional[str] = Field(default=None, description="Name of a script in the script directory")
    text: Optional[str] = Field(default=None, description="Inline script text")
    messages: Optional[List[MockMessageIn]] = None
    address: str = "127.0.0.1"
    timeout_ms: Optional[int] = Field(
        default=None, ge=0, description="Accept/receive timeout (None = server default)"
    )


class SessionInfo(BaseModel):
    """Mock session status"""

    id: str
    address: str
    port: int
    state: SessionState
    outcome: Optional[SessionOutcome] = None
    error: Optional[str] = None
    timeout_ms: Optional[int] = None
    remaining_messages: int = 0
    created_at: datetime
    connected_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class ListenerInfo(BaseModel):
    """One listener pool slot"""

    address: str
    port: int
    state: ListenerState


class PoolStatus(BaseModel):
    """Listener pool status"""

    free: int
    total: int
    listeners: List[ListenerInfo] = Field(default_factory=list)


class ScriptUpload(BaseModel):
    """Script text to store under a name"""

    text: str


class ScriptParseRequest(BaseModel):
    """Script text to check"""

    text: str


class ParsedMessageInfo(BaseModel):
    """A successfully parsed script message"""

    direction: Direction
    size: int
    payload_hex: str


class ParseIssue(BaseModel):
    """A malformed script line"""

    kind: ParseErrorKind
    line: int


class ScriptParseResponse(BaseModel):
    """Every message and every error found in a script"""

    valid: bool
    messages: List[ParsedMessageInfo] = Field(default_factory=list)
    errors: List[ParseIssue] = Field(default_factory=list)
