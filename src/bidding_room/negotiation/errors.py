"""
Error taxonomy for the bidding room.

Expected rejections (expiry, turn order, round limit...) are returned as an
``Outcome`` carrying a stable ``ErrorKind``. Only a broken data layer raises.
"""

import enum
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, enum.Enum):
    SESSION_EXPIRED = "session_expired"
    ROUND_LIMIT_EXCEEDED = "round_limit_exceeded"
    OUT_OF_TURN = "out_of_turn"
    INVALID_ROUND = "invalid_round"
    ALREADY_EXISTS = "already_exists"
    NOT_FOUND = "not_found"
    SESSION_CLOSED = "session_closed"
    NO_OFFERS = "no_offers"
    ALREADY_EXTENDED = "already_extended"
    EXTENSION_NOT_YET_AVAILABLE = "extension_not_yet_available"
    NOT_A_PARTY = "not_a_party"
    INVALID_OFFER = "invalid_offer"


ERROR_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.SESSION_EXPIRED: "This negotiation has closed.",
    ErrorKind.ROUND_LIMIT_EXCEEDED: "Maximum 3 bidding rounds allowed.",
    ErrorKind.OUT_OF_TURN: "Waiting for the other party to respond.",
    ErrorKind.INVALID_ROUND: "This negotiation changed since you last loaded it.",
    ErrorKind.ALREADY_EXISTS: "Bidding has already started for this quote.",
    ErrorKind.NOT_FOUND: "Negotiation not found.",
    ErrorKind.SESSION_CLOSED: "This negotiation has already been settled.",
    ErrorKind.NO_OFFERS: "There is no offer to accept yet.",
    ErrorKind.ALREADY_EXTENDED: "An extension has already been granted.",
    ErrorKind.EXTENSION_NOT_YET_AVAILABLE: "Extensions open closer to the deadline.",
    ErrorKind.NOT_A_PARTY: "You are not part of this negotiation.",
    ErrorKind.INVALID_OFFER: "The offer is not valid.",
}


@dataclass
class Outcome(Generic[T]):
    """Result of an engine operation: a value, an error kind, or both."""

    value: T | None = None
    error: ErrorKind | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(
        cls, kind: ErrorKind, message: str | None = None, value: T | None = None
    ) -> "Outcome[T]":
        return cls(value=value, error=kind, message=message or ERROR_MESSAGES[kind])


class StoreUnavailable(Exception):
    """Raised when the backing store cannot serve a read or write."""

    pass
