import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, field


@dataclass
class ConversationSession:
    thread_id: str
    created_at: float = field(default_factory=time.monotonic)
    last_used: float = field(default_factory=time.monotonic)


class SessionStore(ABC):
    @abstractmethod
    def get(self, key: str) -> ConversationSession | None: ...

    @abstractmethod
    def put(self, key: str, session: ConversationSession) -> None: ...

    @abstractmethod
    def evict(self, key: str) -> None: ...


class InMemorySessionStore(SessionStore):
    """LRU map of sender id to conversation thread, expiring idle entries.

    ttl_seconds <= 0 disables reuse: every get misses.
    """

    def __init__(self, ttl_seconds: float = 1800, max_entries: int = 1000, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._sessions: OrderedDict[str, ConversationSession] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> ConversationSession | None:
        if self.ttl_seconds <= 0:
            return None
        with self._lock:
            session = self._sessions.get(key)
            if session is None:
                return None
            now = self._clock()
            if now - session.last_used > self.ttl_seconds:
                del self._sessions[key]
                return None
            session.last_used = now
            self._sessions.move_to_end(key)
            return session

    def put(self, key: str, session: ConversationSession) -> None:
        if self.ttl_seconds <= 0:
            return
        with self._lock:
            session.last_used = self._clock()
            self._sessions[key] = session
            self._sessions.move_to_end(key)
            while len(self._sessions) > self.max_entries:
                self._sessions.popitem(last=False)

    def evict(self, key: str) -> None:
        with self._lock:
            self._sessions.pop(key, None)

    def __len__(self):
        return len(self._sessions)
