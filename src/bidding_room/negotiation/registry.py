import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog

from .clock import NegotiationClock
from .errors import ErrorKind, Outcome
from .interfaces import QuoteStore, RatingProvider, SessionStore
from .ledger import OfferLedger
from .machine import NegotiationStateMachine
from .types import NegotiationSession, Offer, SessionStatus

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Standout:
    """A session singled out by one of the cross-session aggregates."""

    session: NegotiationSession
    latest_offer: Offer
    counterparty_rating: float = 0.0


def average_rating(values: Iterable[float]) -> float | None:
    """Mean of raw rating entries, None when there are none."""
    values = list(values)
    if not values:
        return None
    return sum(values) / len(values)


class SessionRegistry:
    """One session per quote: creation, lookup and per-party views."""

    def __init__(
        self,
        store: SessionStore,
        quotes: QuoteStore,
        ledger: OfferLedger,
        machine: NegotiationStateMachine,
        ratings: RatingProvider | None = None,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.store = store
        self.quotes = quotes
        self.ledger = ledger
        self.machine = machine
        self.ratings = ratings
        self.id_factory = id_factory

    @property
    def clock(self) -> NegotiationClock:
        return self.machine.clock

    def create_sessions(
        self, quote_ids: Iterable[str], now: datetime
    ) -> list[Outcome[NegotiationSession]]:
        """
        Open a fresh negotiation for every quote that does not have one.

        Quotes that already have a session keep it untouched; their outcome is
        ``ALREADY_EXISTS`` carrying the existing session. Unknown quotes come
        back as ``NOT_FOUND``. One bad item never fails the batch.
        """
        outcomes = []
        for quote_id in quote_ids:
            outcomes.append(self._create_one(quote_id, now))

        logger.info(
            "sessions_created",
            requested=len(outcomes),
            created=sum(1 for o in outcomes if o.ok),
        )
        return outcomes

    def _create_one(self, quote_id: str, now: datetime) -> Outcome[NegotiationSession]:
        existing = self.store.find_by_quote(quote_id)
        if existing is not None:
            return Outcome.failure(ErrorKind.ALREADY_EXISTS, value=existing)

        quote = self.quotes.get_quote(quote_id)
        if quote is None:
            logger.info("quote_not_found", quote_id=quote_id)
            return Outcome.failure(ErrorKind.NOT_FOUND)

        start, expiry = self.clock.new_window(now)
        session = NegotiationSession(
            id=self.id_factory(),
            quote_id=quote.quote_id,
            homeowner_id=quote.homeowner_id,
            installer_id=quote.installer_id,
            status=SessionStatus.IN_NEGOTIATION,
            start_time=start,
            expiry_time=expiry,
        )
        if not self.store.add_session(session):
            # Lost a race with another creator for the same quote
            return Outcome.failure(
                ErrorKind.ALREADY_EXISTS, value=self.store.find_by_quote(quote_id)
            )

        logger.info(
            "session_created",
            session_id=session.id,
            quote_id=quote_id,
            expiry_time=expiry.isoformat(),
        )
        return Outcome.success(session)

    def get(self, session_id: str, now: datetime) -> Outcome[NegotiationSession]:
        session = self.store.get_session(session_id)
        if session is None:
            return Outcome.failure(ErrorKind.NOT_FOUND)
        return Outcome.success(self.machine.effective(session, now))

    def for_quote(self, quote_id: str, now: datetime) -> Outcome[NegotiationSession]:
        session = self.store.find_by_quote(quote_id)
        if session is None:
            return Outcome.failure(ErrorKind.NOT_FOUND)
        return Outcome.success(self.machine.effective(session, now))

    def list_for_party(self, party_id: str, now: datetime) -> list[NegotiationSession]:
        """Every session the party is in, soonest-expiring first."""
        sessions = self.store.sessions_for_party(party_id)
        sessions.sort(key=lambda s: (s.expiry_time, s.start_time, s.id))
        return [self.machine.effective(s, now) for s in sessions]

    def best_price(self, party_id: str, now: datetime) -> Standout | None:
        return self._pick(
            self._standouts(party_id, now), lambda s: s.latest_offer.price
        )

    def fastest_install(self, party_id: str, now: datetime) -> Standout | None:
        return self._pick(
            self._standouts(party_id, now), lambda s: s.latest_offer.install_time.days
        )

    def highest_rated_counterparty(
        self, party_id: str, now: datetime
    ) -> Standout | None:
        return self._pick(
            self._standouts(party_id, now), lambda s: -s.counterparty_rating
        )

    def _standouts(self, party_id: str, now: datetime) -> list[Standout]:
        # Only open sessions with at least one negotiated offer compete
        standouts = []
        for session in self.list_for_party(party_id, now):
            if session.status is not SessionStatus.IN_NEGOTIATION:
                continue
            latest = self.ledger.latest(session.id)
            if latest is None:
                continue
            counterparty = (
                session.installer_id
                if party_id == session.homeowner_id
                else session.homeowner_id
            )
            standouts.append(
                Standout(session, latest, self._rating_for(counterparty))
            )
        return standouts

    def _rating_for(self, party_id: str) -> float:
        if self.ratings is None:
            return 0.0
        rating = self.ratings.rating_for(party_id)
        return rating if rating is not None else 0.0

    @staticmethod
    def _pick(
        standouts: list[Standout], key: Callable[[Standout], Any]
    ) -> Standout | None:
        # Ties go to the session that expires first
        if not standouts:
            return None
        return min(standouts, key=lambda s: (key(s), s.session.expiry_time))
