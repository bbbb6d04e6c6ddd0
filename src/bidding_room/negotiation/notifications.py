import threading
from datetime import datetime

import structlog

from .types import ChangeEvent, NegotiationSession

logger = structlog.get_logger(__name__)


class InMemoryNotifier:
    """Keeps published events in order so a polling layer can read them back."""

    def __init__(self) -> None:
        self._events: list[ChangeEvent] = []
        self._lock = threading.Lock()

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[ChangeEvent]:
        with self._lock:
            return list(self._events)

    def for_session(self, session_id: str) -> list[ChangeEvent]:
        return [e for e in self.events if e.session_id == session_id]


class LoggingNotifier:
    """Writes each event to the structured log for an external relay to tail."""

    def publish(self, event: ChangeEvent) -> None:
        logger.info(
            "change_event",
            event_type=event.type.value,
            session_id=event.session_id,
            actor_role=event.actor_role.value,
            occurred_at=event.occurred_at.isoformat(),
            **event.payload,
        )


class RevealLedger:
    """Records which sessions have unlocked contact details, and when."""

    def __init__(self) -> None:
        self._opened: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def open(self, session: NegotiationSession, at: datetime) -> None:
        with self._lock:
            self._opened.setdefault(session.id, at)
        logger.info(
            "contact_reveal_opened",
            session_id=session.id,
            homeowner_id=session.homeowner_id,
            installer_id=session.installer_id,
        )

    def is_open(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._opened

    def opened_at(self, session_id: str) -> datetime | None:
        with self._lock:
            return self._opened.get(session_id)
