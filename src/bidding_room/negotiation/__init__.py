"""Quote negotiation engine: ledger, clock, state machine and registry."""

from .clock import NegotiationClock
from .engine import NegotiationEngine
from .errors import ERROR_MESSAGES, ErrorKind, Outcome, StoreUnavailable
from .ledger import OfferLedger
from .machine import NegotiationStateMachine
from .registry import SessionRegistry, Standout, average_rating
from .types import (
    MAX_ROUNDS,
    ChangeEvent,
    EventType,
    InstallTime,
    NegotiationSession,
    Offer,
    OfferProposal,
    Party,
    QuoteBaseline,
    QuoteStatus,
    Role,
    SessionStatus,
)

__all__ = [
    "ERROR_MESSAGES",
    "MAX_ROUNDS",
    "ChangeEvent",
    "ErrorKind",
    "EventType",
    "InstallTime",
    "NegotiationClock",
    "NegotiationEngine",
    "NegotiationSession",
    "NegotiationStateMachine",
    "Offer",
    "OfferLedger",
    "OfferProposal",
    "Outcome",
    "Party",
    "QuoteBaseline",
    "QuoteStatus",
    "Role",
    "SessionRegistry",
    "SessionStatus",
    "Standout",
    "StoreUnavailable",
    "average_rating",
]
