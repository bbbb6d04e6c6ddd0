"""In-process stores. One lock per store serializes every compare-and-set."""

import threading
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime

from bidding_room.negotiation.registry import average_rating
from bidding_room.negotiation.types import (
    NegotiationSession,
    Offer,
    QuoteBaseline,
    QuoteStatus,
    SessionStatus,
)


class InMemorySessionStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, NegotiationSession] = {}
        self._by_quote: dict[str, str] = {}
        self._offers: dict[str, list[Offer]] = defaultdict(list)

    def add_session(self, session: NegotiationSession) -> bool:
        with self._lock:
            if session.quote_id in self._by_quote or session.id in self._sessions:
                return False
            self._sessions[session.id] = session
            self._by_quote[session.quote_id] = session.id
            return True

    def get_session(self, session_id: str) -> NegotiationSession | None:
        with self._lock:
            return self._sessions.get(session_id)

    def find_by_quote(self, quote_id: str) -> NegotiationSession | None:
        with self._lock:
            session_id = self._by_quote.get(quote_id)
            return self._sessions.get(session_id) if session_id else None

    def sessions_for_party(self, party_id: str) -> list[NegotiationSession]:
        with self._lock:
            return [
                s
                for s in self._sessions.values()
                if party_id in (s.homeowner_id, s.installer_id)
            ]

    def list_offers(self, session_id: str) -> list[Offer]:
        with self._lock:
            return list(self._offers.get(session_id, ()))

    def append_offer(
        self, offer: Offer, expected_rounds: int, live_at: datetime
    ) -> bool:
        with self._lock:
            session = self._sessions.get(offer.session_id)
            if (
                session is None
                or session.status is not SessionStatus.IN_NEGOTIATION
                or session.expiry_time <= live_at
                or session.rounds_completed != expected_rounds
            ):
                return False
            self._sessions[session.id] = replace(
                session, rounds_completed=expected_rounds + 1
            )
            self._offers[session.id].append(offer)
            return True

    def set_status(
        self,
        session_id: str,
        status: SessionStatus,
        live_at: datetime | None = None,
    ) -> bool:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.status is not SessionStatus.IN_NEGOTIATION:
                return False
            if live_at is not None and session.expiry_time <= live_at:
                return False
            self._sessions[session_id] = replace(session, status=status)
            return True

    def grant_extension(
        self, session_id: str, new_expiry: datetime, live_at: datetime
    ) -> bool:
        with self._lock:
            session = self._sessions.get(session_id)
            if (
                session is None
                or session.status is not SessionStatus.IN_NEGOTIATION
                or session.extension_granted
                or session.expiry_time <= live_at
            ):
                return False
            self._sessions[session_id] = replace(
                session, expiry_time=new_expiry, extension_granted=True
            )
            return True


class InMemoryQuoteStore:
    def __init__(self, quotes: Iterable[QuoteBaseline] = ()) -> None:
        self._lock = threading.Lock()
        self._quotes = {q.quote_id: q for q in quotes}

    def add_quote(self, quote: QuoteBaseline) -> None:
        with self._lock:
            self._quotes[quote.quote_id] = quote

    def get_quote(self, quote_id: str) -> QuoteBaseline | None:
        with self._lock:
            return self._quotes.get(quote_id)

    def set_status(self, quote_id: str, status: QuoteStatus) -> None:
        with self._lock:
            quote = self._quotes.get(quote_id)
            if quote is not None:
                self._quotes[quote_id] = replace(quote, status=status)


class InMemoryRatingProvider:
    """Averages raw (party_id, rating) entries, as rating rows are stored."""

    def __init__(self, entries: Iterable[tuple[str, float]] = ()) -> None:
        self._ratings: dict[str, list[float]] = defaultdict(list)
        for party_id, rating in entries:
            self._ratings[party_id].append(rating)

    def rating_for(self, party_id: str) -> float | None:
        return average_rating(self._ratings.get(party_id, ()))
