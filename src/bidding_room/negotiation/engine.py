import uuid
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

import structlog
from opentelemetry import trace
from pydantic import ValidationError

from bidding_room.config import NegotiationSettings
from bidding_room.logging_config import bind_session_context, clear_session_context

from .clock import NegotiationClock
from .errors import ErrorKind, Outcome
from .interfaces import Notifier, QuoteStore, RatingProvider, RevealGate, SessionStore
from .ledger import OfferLedger
from .machine import NegotiationStateMachine
from .registry import SessionRegistry, Standout
from .types import (
    ChangeEvent,
    EventType,
    NegotiationSession,
    Offer,
    OfferProposal,
    Party,
    PermittedActions,
    QuoteBaseline,
    QuoteStatus,
    SessionSnapshot,
    SessionStatus,
)

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)


def utc_now() -> datetime:
    return datetime.now(UTC)


class NegotiationEngine:
    """
    The bidding room: one engine shared by homeowner and installer call sites.

    Flow of a write:
    Party -> State Machine guards (expiry, rounds, turn) -> Ledger append
    (compare-and-increment) -> Change Notification

    Every operation returns an ``Outcome``. Rejections carry an ``ErrorKind``;
    only store failures raise.
    """

    def __init__(
        self,
        store: SessionStore,
        quotes: QuoteStore,
        notifier: Notifier | None = None,
        reveal_gate: RevealGate | None = None,
        ratings: RatingProvider | None = None,
        settings: NegotiationSettings | None = None,
        now_fn: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.store = store
        self.quotes = quotes
        self.notifier = notifier
        self.reveal_gate = reveal_gate
        self.now_fn = now_fn
        self.id_factory = id_factory

        self.clock = NegotiationClock(settings)
        self.machine = NegotiationStateMachine(self.clock)
        self.ledger = OfferLedger(store)
        self.registry = SessionRegistry(
            store, quotes, self.ledger, self.machine, ratings, id_factory
        )

    # Reads

    def start_negotiations(
        self, quote_ids: Iterable[str], now: datetime | None = None
    ) -> list[Outcome[NegotiationSession]]:
        with tracer.start_as_current_span("negotiation_start_sessions"):
            return self.registry.create_sessions(quote_ids, self._now(now))

    def get_session(
        self, session_id: str, now: datetime | None = None
    ) -> Outcome[NegotiationSession]:
        return self.registry.get(session_id, self._now(now))

    def get_session_for_quote(
        self, quote_id: str, now: datetime | None = None
    ) -> Outcome[NegotiationSession]:
        return self.registry.for_quote(quote_id, self._now(now))

    def sessions_for_party(
        self, party_id: str, now: datetime | None = None
    ) -> list[NegotiationSession]:
        return self.registry.list_for_party(party_id, self._now(now))

    def history(self, session_id: str) -> Outcome[list[Offer]]:
        if self.store.get_session(session_id) is None:
            return Outcome.failure(ErrorKind.NOT_FOUND)
        return Outcome.success(self.ledger.history(session_id))

    def snapshot(
        self, session_id: str, now: datetime | None = None
    ) -> Outcome[SessionSnapshot]:
        now = self._now(now)
        session = self.store.get_session(session_id)
        if session is None:
            return Outcome.failure(ErrorKind.NOT_FOUND)
        return Outcome.success(
            SessionSnapshot(
                session=self.machine.effective(session, now),
                offers=tuple(self.ledger.history(session_id)),
                time_remaining=self.clock.breakdown(session, now),
                progress=self.clock.progress_fraction(session, now),
                urgency=self.clock.urgency(session, now),
            )
        )

    def permitted_actions(
        self, session_id: str, party: Party, now: datetime | None = None
    ) -> Outcome[PermittedActions]:
        session = self.store.get_session(session_id)
        if session is None:
            return Outcome.failure(ErrorKind.NOT_FOUND)
        latest = self.ledger.latest(session_id)
        return Outcome.success(
            self.machine.permitted_actions(
                session, latest, party, self._now(now)
            )
        )

    def best_price(self, party_id: str, now: datetime | None = None) -> Standout | None:
        return self.registry.best_price(party_id, self._now(now))

    def fastest_install(
        self, party_id: str, now: datetime | None = None
    ) -> Standout | None:
        return self.registry.fastest_install(party_id, self._now(now))

    def highest_rated_counterparty(
        self, party_id: str, now: datetime | None = None
    ) -> Standout | None:
        return self.registry.highest_rated_counterparty(party_id, self._now(now))

    # Writes

    def submit_offer(
        self,
        session_id: str,
        party: Party,
        proposal: OfferProposal | dict[str, Any],
        now: datetime | None = None,
    ) -> Outcome[Offer]:
        """
        Submit a counter-offer on behalf of ``party``.

        Args:
            session_id: Session to bid in
            party: The acting homeowner or installer
            proposal: Proposed terms; a plain dict is validated first
            now: Instant to judge expiry at (defaults to the engine clock)

        Returns:
            Outcome with the appended offer, or why it was refused
        """
        now = self._now(now)
        with tracer.start_as_current_span("negotiation_submit_offer") as span:
            span.set_attribute("session_id", session_id)
            span.set_attribute("role", party.role.value)
            bind_session_context(session_id)
            try:
                if not isinstance(proposal, OfferProposal):
                    try:
                        proposal = OfferProposal.model_validate(proposal)
                    except ValidationError as e:
                        return self._reject("submit_offer", ErrorKind.INVALID_OFFER, str(e))

                session = self.store.get_session(session_id)
                if session is None:
                    return self._reject("submit_offer", ErrorKind.NOT_FOUND)

                latest = self.ledger.latest(session_id)
                kind = self.machine.check_counter(session, latest, party, now)
                if kind is not None:
                    return self._reject("submit_offer", kind, session=session, now=now)

                offer = Offer(
                    id=self.id_factory(),
                    session_id=session_id,
                    round=proposal.round or session.rounds_completed + 1,
                    sender_role=party.role,
                    price=proposal.price,
                    install_time=proposal.install_time,
                    note=proposal.note,
                    created_at=now,
                )
                outcome = self.ledger.append(session_id, offer, now)
                if not outcome.ok:
                    return self._reject(
                        "submit_offer", outcome.error, session=session, now=now
                    )

                span.set_attribute("round", offer.round)
                self._emit(
                    ChangeEvent(
                        type=EventType.OFFER_SUBMITTED,
                        session_id=session_id,
                        actor_role=party.role,
                        occurred_at=now,
                        payload={"round": offer.round, "price": str(offer.price)},
                    )
                )
                return outcome
            finally:
                clear_session_context()

    def accept(
        self, session_id: str, party: Party, now: datetime | None = None
    ) -> Outcome[NegotiationSession]:
        """
        Accept the latest offer, close the session and mark the quote a deal.

        Acceptance is the point where contact details may be revealed.
        """
        now = self._now(now)
        with tracer.start_as_current_span("negotiation_accept") as span:
            span.set_attribute("session_id", session_id)
            span.set_attribute("role", party.role.value)
            bind_session_context(session_id)
            try:
                session = self.store.get_session(session_id)
                if session is None:
                    return self._reject("accept", ErrorKind.NOT_FOUND)

                latest = self.ledger.latest(session_id)
                kind = self.machine.check_accept(session, latest, party, now)
                if kind is not None:
                    return self._reject("accept", kind, session=session, now=now)

                # Marked before the session closes; undone if the close loses
                quote = self.quotes.get_quote(session.quote_id)
                self.quotes.set_status(session.quote_id, QuoteStatus.DEAL)
                if not self.store.set_status(
                    session_id, SessionStatus.ACCEPTED, live_at=now
                ):
                    kind = self._classify_lost_transition(session_id, now)
                    self._restore_quote(session_id, quote)
                    return self._reject("accept", kind)

                accepted = replace(session, status=SessionStatus.ACCEPTED)
                self._open_reveal(accepted, now)

                logger.info(
                    "session_accepted",
                    quote_id=session.quote_id,
                    role=party.role.value,
                    round=latest.round,
                    final_price=str(latest.price),
                )
                self._emit(
                    ChangeEvent(
                        type=EventType.SESSION_ACCEPTED,
                        session_id=session_id,
                        actor_role=party.role,
                        occurred_at=now,
                        payload={"round": latest.round, "price": str(latest.price)},
                    )
                )
                return Outcome.success(accepted)
            finally:
                clear_session_context()

    def decline(
        self, session_id: str, party: Party, now: datetime | None = None
    ) -> Outcome[NegotiationSession]:
        now = self._now(now)
        with tracer.start_as_current_span("negotiation_decline") as span:
            span.set_attribute("session_id", session_id)
            span.set_attribute("role", party.role.value)
            bind_session_context(session_id)
            try:
                session = self.store.get_session(session_id)
                if session is None:
                    return self._reject("decline", ErrorKind.NOT_FOUND)

                kind = self.machine.check_decline(session, party, now)
                if kind is not None:
                    return self._reject("decline", kind, session=session, now=now)

                if not self.store.set_status(
                    session_id, SessionStatus.DECLINED, live_at=now
                ):
                    return self._reject(
                        "decline", self._classify_lost_transition(session_id, now)
                    )

                logger.info("session_declined", role=party.role.value)
                self._emit(
                    ChangeEvent(
                        type=EventType.SESSION_DECLINED,
                        session_id=session_id,
                        actor_role=party.role,
                        occurred_at=now,
                    )
                )
                return Outcome.success(replace(session, status=SessionStatus.DECLINED))
            finally:
                clear_session_context()

    def request_extension(
        self, session_id: str, party: Party, now: datetime | None = None
    ) -> Outcome[NegotiationSession]:
        """Grant the one-time extension. Granted on request, no counterparty step."""
        now = self._now(now)
        with tracer.start_as_current_span("negotiation_extension") as span:
            span.set_attribute("session_id", session_id)
            span.set_attribute("role", party.role.value)
            bind_session_context(session_id)
            try:
                session = self.store.get_session(session_id)
                if session is None:
                    return self._reject("request_extension", ErrorKind.NOT_FOUND)

                kind = self.machine.check_extension(session, party, now)
                if kind is not None:
                    return self._reject(
                        "request_extension", kind, session=session, now=now
                    )

                new_expiry = self.clock.extended_expiry(session)
                if not self.store.grant_extension(session_id, new_expiry, live_at=now):
                    current = self.store.get_session(session_id)
                    if current is not None and current.extension_granted:
                        return self._reject(
                            "request_extension", ErrorKind.ALREADY_EXTENDED
                        )
                    return self._reject(
                        "request_extension",
                        self._classify_lost_transition(session_id, now),
                    )

                extended = replace(
                    session, expiry_time=new_expiry, extension_granted=True
                )
                logger.info(
                    "extension_granted",
                    role=party.role.value,
                    expiry_time=new_expiry.isoformat(),
                )
                self._emit(
                    ChangeEvent(
                        type=EventType.EXTENSION_GRANTED,
                        session_id=session_id,
                        actor_role=party.role,
                        occurred_at=now,
                        payload={"expiry_time": new_expiry.isoformat()},
                    )
                )
                return Outcome.success(extended)
            finally:
                clear_session_context()

    # Internals

    def _now(self, now: datetime | None) -> datetime:
        now = now or self.now_fn()
        if now.tzinfo is None:
            raise ValueError("now must be timezone-aware")
        return now

    def _reject(
        self,
        operation: str,
        kind: ErrorKind,
        message: str | None = None,
        session: NegotiationSession | None = None,
        now: datetime | None = None,
    ) -> Outcome[Any]:
        logger.info("negotiation_rejected", operation=operation, error_kind=kind.value)
        trace.get_current_span().set_attribute("error_kind", kind.value)
        if kind is ErrorKind.SESSION_EXPIRED and session is not None and now is not None:
            self._persist_expiry(session, now)
        return Outcome.failure(kind, message)

    def _persist_expiry(self, session: NegotiationSession, now: datetime) -> None:
        """Record the read-time expiry so later reads need not derive it."""
        if session.status is not SessionStatus.IN_NEGOTIATION:
            return
        if self.clock.is_live(session, now):
            return
        if self.store.set_status(session.id, SessionStatus.EXPIRED):
            logger.info("session_expiry_persisted", session_id=session.id)

    def _classify_lost_transition(self, session_id: str, now: datetime) -> ErrorKind:
        current = self.store.get_session(session_id)
        if current is None:
            return ErrorKind.NOT_FOUND
        kind = self.machine.check_open(current, now)
        if kind is ErrorKind.SESSION_EXPIRED:
            self._persist_expiry(current, now)
        return kind if kind is not None else ErrorKind.SESSION_CLOSED

    def _restore_quote(self, session_id: str, quote: QuoteBaseline | None) -> None:
        """Undo the deal mark unless another accept on the session won."""
        if quote is None:
            return
        current = self.store.get_session(session_id)
        if current is not None and current.status is SessionStatus.ACCEPTED:
            return
        self.quotes.set_status(quote.quote_id, quote.status)
        logger.info(
            "quote_status_restored", quote_id=quote.quote_id, status=quote.status.value
        )

    def _open_reveal(self, session: NegotiationSession, now: datetime) -> None:
        if self.reveal_gate is None:
            return
        try:
            self.reveal_gate.open(session, now)
        except Exception:
            logger.error("reveal_gate_failed", session_id=session.id, exc_info=True)

    def _emit(self, event: ChangeEvent) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.publish(event)
        except Exception:
            logger.error(
                "notification_publish_failed",
                event_type=event.type.value,
                session_id=event.session_id,
                exc_info=True,
            )
