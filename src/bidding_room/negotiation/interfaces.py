"""
Ports between the negotiation core and its collaborators.

The core owns sessions and offers (``SessionStore``); everything else is
consumed through the narrow protocols below and wired in by the caller.
"""

from datetime import datetime
from typing import Protocol, runtime_checkable

from .types import (
    ChangeEvent,
    NegotiationSession,
    Offer,
    QuoteBaseline,
    QuoteStatus,
    SessionStatus,
)


@runtime_checkable
class SessionStore(Protocol):
    """
    Authoritative storage for sessions and their offer ledgers.

    Every mutating method is a compare-and-set: it returns False instead of
    writing when the stored state no longer matches the caller's expectation.
    """

    def add_session(self, session: NegotiationSession) -> bool:
        """Insert a session; False if one already exists for its quote."""
        ...

    def get_session(self, session_id: str) -> NegotiationSession | None: ...

    def find_by_quote(self, quote_id: str) -> NegotiationSession | None: ...

    def sessions_for_party(self, party_id: str) -> list[NegotiationSession]: ...

    def list_offers(self, session_id: str) -> list[Offer]: ...

    def append_offer(
        self, offer: Offer, expected_rounds: int, live_at: datetime
    ) -> bool:
        """
        Append ``offer`` and advance ``rounds_completed`` in one atomic step.

        Applies only while the session is in negotiation, its expiry is after
        ``live_at`` and ``rounds_completed`` still equals ``expected_rounds``.
        """
        ...

    def set_status(
        self,
        session_id: str,
        status: SessionStatus,
        live_at: datetime | None = None,
    ) -> bool:
        """
        Move a session out of ``in_negotiation``.

        When ``live_at`` is given the session must also not have expired by then.
        """
        ...

    def grant_extension(
        self, session_id: str, new_expiry: datetime, live_at: datetime
    ) -> bool:
        """Set ``new_expiry`` and flag the extension, at most once per session."""
        ...


@runtime_checkable
class QuoteStore(Protocol):
    """Written quotes; the core reads baselines and writes only ``deal``."""

    def get_quote(self, quote_id: str) -> QuoteBaseline | None: ...

    def set_status(self, quote_id: str, status: QuoteStatus) -> None: ...


@runtime_checkable
class Notifier(Protocol):
    """Relays change events to the party that did not act. Delivery is best effort."""

    def publish(self, event: ChangeEvent) -> None: ...


@runtime_checkable
class RevealGate(Protocol):
    """Told when both parties' contact details may be disclosed to each other."""

    def open(self, session: NegotiationSession, at: datetime) -> None: ...


@runtime_checkable
class RatingProvider(Protocol):
    """Read-only counterparty ratings."""

    def rating_for(self, party_id: str) -> float | None: ...
