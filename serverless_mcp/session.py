"""Per-connection session records and their in-memory store."""

import secrets
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set
import structlog
from prometheus_client import Gauge
from pydantic import BaseModel, Field, PrivateAttr

from .protocol.errors import DuplicateSession, SessionNotFound
from .protocol.messages import ClientInfo

logger = structlog.get_logger()

active_sessions = Gauge('mcp_active_sessions', 'Sessions currently held in the store')

# Syslog severities used by logging/setLevel, lowest first
LOG_LEVELS = ("debug", "info", "notice", "warning", "error", "critical", "alert", "emergency")
_LEVEL_RANK = {level: rank for rank, level in enumerate(LOG_LEVELS)}
_METHOD_LEVELS = {"warn": "warning", "exception": "error", "fatal": "critical", "msg": "info"}

SESSION_LOG_LEVEL_KEY = "session_log_level"


def filter_by_session_level(_logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """structlog processor dropping events below the level the session asked for.

    The level is bound into the context while one of the session's messages
    is handled; events logged outside a session pass through.
    """
    threshold = event_dict.pop(SESSION_LOG_LEVEL_KEY, None)
    if threshold is None:
        return event_dict
    level = _METHOD_LEVELS.get(method_name, method_name)
    if _LEVEL_RANK.get(level, 0) < _LEVEL_RANK.get(threshold, 0):
        raise structlog.DropEvent
    return event_dict


class SessionState(str, Enum):
    """Lifecycle states of a session."""
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    CLOSED = "closed"


class Session(BaseModel):
    """Server-side state for one client's protocol negotiation."""
    id: str
    created_at: float
    last_seen_at: float
    state: SessionState = SessionState.UNINITIALIZED
    client_info: Optional[ClientInfo] = None
    negotiated_capabilities: Set[str] = Field(default_factory=set)
    protocol_version: Optional[str] = None
    # None until the client calls logging/setLevel
    log_level: Optional[str] = None
    initialize_result: Optional[Dict[str, Any]] = None

    _lock: threading.Lock = PrivateAttr(default_factory=threading.Lock)

    @property
    def lock(self) -> threading.Lock:
        """Guards state transitions of this session."""
        return self._lock

    @property
    def initialized(self) -> bool:
        return self.state is SessionState.INITIALIZED

    @property
    def closed(self) -> bool:
        return self.state is SessionState.CLOSED


class SessionStore:
    """Thread-safe in-memory session map with TTL expiry.

    No background process is required: callers invoke ``sweep_expired``
    whenever it suits them (e.g. opportunistically on incoming requests).
    """

    def __init__(self, ttl: float = 3600.0, clock: Callable[[], float] = time.time):
        self.ttl = ttl
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    @staticmethod
    def generate_id() -> str:
        """Return a new cryptographically random session id."""
        return secrets.token_hex(16)

    def create(self, session_id: Optional[str] = None) -> Session:
        """Create and store a new session."""
        session_id = session_id or self.generate_id()
        now = self._clock()
        with self._lock:
            if session_id in self._sessions:
                raise DuplicateSession(session_id)
            session = Session(id=session_id, created_at=now, last_seen_at=now)
            self._sessions[session_id] = session
            active_sessions.set(len(self._sessions))

        logger.debug("Session created", session_id=session_id)
        return session

    def get(self, session_id: str) -> Session:
        """Return the session for ``session_id``."""
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def touch(self, session_id: str) -> Session:
        """Refresh ``last_seen_at`` and return the session."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFound(session_id)
            session.last_seen_at = self._clock()
        return session

    def delete(self, session_id: str) -> bool:
        """Remove a session immediately.

        Idempotent: returns False when the session was already gone.
        """
        with self._lock:
            session = self._sessions.pop(session_id, None)
            active_sessions.set(len(self._sessions))

        if session is None:
            logger.debug("Session already gone", session_id=session_id)
            return False

        session.state = SessionState.CLOSED
        logger.info("Session deleted", session_id=session_id)
        return True

    def sweep_expired(self, now: Optional[float] = None) -> List[str]:
        """Remove every session idle for longer than the TTL."""
        now = self._clock() if now is None else now
        with self._lock:
            expired = [
                session_id
                for session_id, session in self._sessions.items()
                if now - session.last_seen_at > self.ttl
            ]
            for session_id in expired:
                self._sessions.pop(session_id).state = SessionState.CLOSED
            active_sessions.set(len(self._sessions))

        if expired:
            logger.info("Expired sessions swept", count=len(expired), ttl=self.ttl)
        return expired

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions
