from dataclasses import replace
from datetime import datetime

from .clock import NegotiationClock
from .errors import ErrorKind
from .types import (
    MAX_ROUNDS,
    NegotiationSession,
    Offer,
    Party,
    PermittedActions,
    SessionStatus,
)


class NegotiationStateMachine:
    """
    Lifecycle rules: in_negotiation -> accepted | declined | expired.

    Guards return the ``ErrorKind`` that forbids a move, or None when the move
    is allowed. Expiry is judged through the clock on every check and always
    wins over round and turn violations.
    """

    def __init__(self, clock: NegotiationClock):
        self.clock = clock

    def effective_status(
        self, session: NegotiationSession, now: datetime
    ) -> SessionStatus:
        if session.status is SessionStatus.IN_NEGOTIATION and not self.clock.is_live(
            session, now
        ):
            return SessionStatus.EXPIRED
        return session.status

    def effective(self, session: NegotiationSession, now: datetime) -> NegotiationSession:
        """The session as callers must see it at ``now``."""
        status = self.effective_status(session, now)
        if status is session.status:
            return session
        return replace(session, status=status)

    def check_open(self, session: NegotiationSession, now: datetime) -> ErrorKind | None:
        status = self.effective_status(session, now)
        if status is SessionStatus.EXPIRED:
            return ErrorKind.SESSION_EXPIRED
        if status.is_terminal:
            return ErrorKind.SESSION_CLOSED
        return None

    def check_counter(
        self,
        session: NegotiationSession,
        latest: Offer | None,
        party: Party,
        now: datetime,
    ) -> ErrorKind | None:
        if not session.is_party(party):
            return ErrorKind.NOT_A_PARTY
        closed = self.check_open(session, now)
        if closed is not None:
            return closed
        if session.rounds_completed >= MAX_ROUNDS:
            return ErrorKind.ROUND_LIMIT_EXCEEDED
        # Either side may open; after that the sides strictly alternate
        if latest is not None and latest.sender_role is party.role:
            return ErrorKind.OUT_OF_TURN
        return None

    def check_accept(
        self,
        session: NegotiationSession,
        latest: Offer | None,
        party: Party,
        now: datetime,
    ) -> ErrorKind | None:
        if not session.is_party(party):
            return ErrorKind.NOT_A_PARTY
        closed = self.check_open(session, now)
        if closed is not None:
            return closed
        if latest is None:
            return ErrorKind.NO_OFFERS
        return None

    def check_decline(
        self, session: NegotiationSession, party: Party, now: datetime
    ) -> ErrorKind | None:
        if not session.is_party(party):
            return ErrorKind.NOT_A_PARTY
        return self.check_open(session, now)

    def check_extension(
        self, session: NegotiationSession, party: Party, now: datetime
    ) -> ErrorKind | None:
        if not session.is_party(party):
            return ErrorKind.NOT_A_PARTY
        closed = self.check_open(session, now)
        if closed is not None:
            return closed
        if session.extension_granted:
            return ErrorKind.ALREADY_EXTENDED
        if not self.clock.extension_open(session, now):
            return ErrorKind.EXTENSION_NOT_YET_AVAILABLE
        return None

    def permitted_actions(
        self,
        session: NegotiationSession,
        latest: Offer | None,
        party: Party,
        now: datetime,
    ) -> PermittedActions:
        return PermittedActions(
            can_counter=self.check_counter(session, latest, party, now) is None,
            can_accept=self.check_accept(session, latest, party, now) is None,
            can_decline=self.check_decline(session, party, now) is None,
            can_extend=self.check_extension(session, party, now) is None,
        )
