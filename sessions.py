import time
import logging
import threading
from dataclasses import dataclass, field

from card_style import StyleParameters
from config import settings

logger = logging.getLogger(__name__)

IDLE = "idle"
WAITING_PROMPT = "waiting_prompt"
CONFIGURING = "configuring"
GENERATING = "generating"


def default_settings() -> dict:
    return dict(settings.DEFAULT_STYLE)


@dataclass
class ChatSession:
    step: str = IDLE
    image_bytes: bytes | None = None
    prompt_text: str = ""
    palette: list = field(default_factory=list)
    settings: dict = field(default_factory=default_settings)
    last_activity: float = 0.0

    def to_style(self) -> StyleParameters:
        # The bot renderer always left-aligns
        return StyleParameters.from_mapping({**self.settings, "promptText": self.prompt_text, "alignment": "left"})


class SessionStore:
    """Per-chat conversation state with idle expiry."""

    def __init__(self, ttl: float = settings.SESSION_TTL, clock=time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._sessions: dict = {}
        self._lock = threading.Lock()

    def _expired(self, session: ChatSession, now: float) -> bool:
        return now - session.last_activity > self.ttl

    def get(self, key) -> ChatSession:
        now = self._clock()
        with self._lock:
            session = self._sessions.get(key)
            if session is None or self._expired(session, now):
                session = ChatSession()
                self._sessions[key] = session
            session.last_activity = now
            return session

    def set(self, key, session: ChatSession) -> None:
        with self._lock:
            session.last_activity = self._clock()
            self._sessions[key] = session

    def reset(self, key) -> ChatSession:
        session = ChatSession(last_activity=self._clock())
        with self._lock:
            self._sessions[key] = session
        return session

    def update(self, key, **fields) -> ChatSession:
        session = self.get(key)
        for name, value in fields.items():
            if not hasattr(session, name):
                raise AttributeError(f"ChatSession has no field {name!r}")
            setattr(session, name, value)
        return session

    def update_settings(self, key, **values) -> ChatSession:
        session = self.get(key)
        session.settings.update(values)
        return session

    def cleanup(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, s in self._sessions.items() if self._expired(s, now)]
            for k in expired:
                del self._sessions[k]
        if expired:
            logger.info(f"Evicted {len(expired)} idle bot sessions")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, key) -> bool:
        with self._lock:
            return key in self._sessions
