from datetime import datetime

import structlog

from .errors import ErrorKind, Outcome
from .interfaces import SessionStore
from .types import MAX_ROUNDS, Offer, SessionStatus

logger = structlog.get_logger(__name__)


class OfferLedger:
    """Append-only, round-ordered offer history for each session."""

    def __init__(self, store: SessionStore):
        self.store = store

    def history(self, session_id: str) -> list[Offer]:
        """Offers in append order. A fresh list on every call."""
        return sorted(
            self.store.list_offers(session_id), key=lambda o: (o.round, o.created_at)
        )

    def latest(self, session_id: str) -> Offer | None:
        offers = self.history(session_id)
        return offers[-1] if offers else None

    def append(self, session_id: str, offer: Offer, now: datetime) -> Outcome[Offer]:
        """
        Append ``offer`` if it is the next round and the sender's turn.

        The write itself is conditioned on ``rounds_completed`` still being
        ``offer.round - 1``, so of two concurrent submissions for the same
        round exactly one lands. The loser is re-classified against the
        state that beat it.

        Args:
            session_id: Session whose ledger receives the offer
            offer: Fully built offer, including its round and sender
            now: Instant the submission is judged at

        Returns:
            Outcome with the stored offer, or the reason it was refused
        """
        session = self.store.get_session(session_id)
        if session is None:
            return Outcome.failure(ErrorKind.NOT_FOUND)

        if offer.round != session.rounds_completed + 1:
            return self._refuse(offer, ErrorKind.INVALID_ROUND)
        if offer.round > MAX_ROUNDS:
            return self._refuse(offer, ErrorKind.ROUND_LIMIT_EXCEEDED)

        latest = self.latest(session_id)
        if latest is not None and latest.sender_role == offer.sender_role:
            return self._refuse(offer, ErrorKind.OUT_OF_TURN)

        if self.store.append_offer(offer, expected_rounds=offer.round - 1, live_at=now):
            logger.info(
                "offer_appended",
                session_id=session_id,
                round=offer.round,
                role=offer.sender_role.value,
                price=str(offer.price),
            )
            return Outcome.success(offer)

        return self._refuse(offer, self._classify_lost_write(offer, now))

    def _classify_lost_write(self, offer: Offer, now: datetime) -> ErrorKind:
        current = self.store.get_session(offer.session_id)
        if current is None:
            return ErrorKind.NOT_FOUND
        if current.status is SessionStatus.EXPIRED or current.expiry_time <= now:
            return ErrorKind.SESSION_EXPIRED
        if current.status.is_terminal:
            return ErrorKind.SESSION_CLOSED

        latest = self.latest(offer.session_id)
        if latest is not None and latest.sender_role == offer.sender_role:
            return ErrorKind.OUT_OF_TURN
        if current.rounds_completed >= MAX_ROUNDS:
            return ErrorKind.ROUND_LIMIT_EXCEEDED
        return ErrorKind.INVALID_ROUND

    def _refuse(self, offer: Offer, kind: ErrorKind) -> Outcome[Offer]:
        logger.info(
            "offer_refused",
            session_id=offer.session_id,
            round=offer.round,
            role=offer.sender_role.value,
            error_kind=kind.value,
        )
        return Outcome.failure(kind)
