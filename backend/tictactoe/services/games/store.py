"""In-memory registry of live sessions.

The store only holds sessions; game state on a Session is changed by the
state machine while it holds ``session.lock``.
"""

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Deque, Dict, List, Optional

from .board import Board, FIRST, ROLES, new_board
from .errors import NotFound

WAITING = 'waiting'
PLAYING = 'playing'
FINISHED = 'finished'

DEFAULT_CHAT_LOG_LIMIT = 50
DEFAULT_UNJOINED_TTL_SEC = 3600


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Participant:
    display_name: str
    role: str
    joined_at: datetime = field(default_factory=utcnow)

    def to_dict(self):
        return {
            'name': self.display_name,
            'role': self.role,
            'joined_at': self.joined_at.isoformat(),
        }


@dataclass
class ChatEntry:
    author: str
    text: str
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self):
        return {
            'author': self.author,
            'text': self.text,
            'timestamp': self.timestamp.isoformat(),
        }


@dataclass
class Session:
    id: str
    chat_limit: int = DEFAULT_CHAT_LOG_LIMIT
    participants: Dict[str, Participant] = field(default_factory=dict)
    board: Board = field(default_factory=new_board)
    turn: str = FIRST
    moves: List[dict] = field(default_factory=list)
    phase: str = WAITING
    result: Optional[str] = None
    closed: bool = False
    created_at: datetime = field(default_factory=utcnow)
    chat_log: Deque[ChatEntry] = field(init=False)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def __post_init__(self):
        self.chat_log = deque(maxlen=self.chat_limit)

    def participant_list(self) -> List[dict]:
        ordered = sorted(self.participants.values(), key=lambda p: ROLES.index(p.role))
        return [p.to_dict() for p in ordered]

    def chat_list(self) -> List[dict]:
        return [entry.to_dict() for entry in self.chat_log]

    def snapshot(self, role: Optional[str] = None) -> dict:
        return {
            'session_id': self.id,
            'role': role,
            'board': list(self.board),
            'participants': self.participant_list(),
            'chat_log': self.chat_list(),
            'turn': self.turn,
            'phase': self.phase,
            'result': self.result,
        }


class SessionStore:
    """Authoritative map of session id -> Session."""

    def __init__(self, gateway, chat_limit: int = DEFAULT_CHAT_LOG_LIMIT,
                 unjoined_ttl: float = DEFAULT_UNJOINED_TTL_SEC):
        self._gateway = gateway
        self._chat_limit = chat_limit
        self._unjoined_ttl = unjoined_ttl
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def create(self) -> str:
        # Raises PersistenceUnavailable before anything is registered.
        session_id = self._gateway.create_record()
        with self._lock:
            self._sessions[session_id] = Session(id=session_id, chat_limit=self._chat_limit)
        return session_id

    def get(self, session_id: str) -> Session:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise NotFound()
        return session

    def sweep_unjoined(self, now: Optional[datetime] = None) -> List[str]:
        """Drop sessions that nobody joined within ``unjoined_ttl`` seconds.

        Sessions lose their last participant through eviction, so an empty
        session is one that was created and never joined. Returns the ids
        removed.
        """
        if not self._unjoined_ttl:
            return []
        cutoff = (now or utcnow()) - timedelta(seconds=self._unjoined_ttl)
        with self._lock:
            stale = [s for s in self._sessions.values() if not s.participants and s.created_at < cutoff]
        swept = []
        for session in stale:
            with session.lock:
                # A join may have landed since the scan.
                if session.closed or session.participants:
                    continue
                self.remove(session.id)
            swept.append(session.id)
        return swept

    def remove(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is not None:
            session.closed = True

    def __contains__(self, session_id) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
