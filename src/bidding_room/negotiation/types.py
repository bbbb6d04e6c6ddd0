import enum
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# At most three counter-offers per session, shared by both parties
MAX_ROUNDS = 3

_INSTALL_TIME_PATTERN = re.compile(r"^\s*(\d+)\s*([A-Za-z]+?)s?\s*$")


class Role(str, enum.Enum):
    """The two sides of a negotiation."""

    HOMEOWNER = "homeowner"
    INSTALLER = "installer"

    @property
    def counterpart(self) -> "Role":
        return Role.INSTALLER if self is Role.HOMEOWNER else Role.HOMEOWNER


class SessionStatus(str, enum.Enum):
    IN_NEGOTIATION = "in_negotiation"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not SessionStatus.IN_NEGOTIATION


class QuoteStatus(str, enum.Enum):
    """Coarse lifecycle of a written quote, owned by the quote subsystem."""

    SUBMITTED = "submitted"
    REVIEWED = "reviewed"
    NEGOTIATION = "negotiation"
    DEAL = "deal"


class Urgency(str, enum.Enum):
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"
    EXPIRED = "expired"


class EventType(str, enum.Enum):
    OFFER_SUBMITTED = "offer_submitted"
    SESSION_ACCEPTED = "session_accepted"
    SESSION_DECLINED = "session_declined"
    EXTENSION_GRANTED = "extension_granted"


class DurationUnit(str, enum.Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"

    @property
    def days(self) -> int:
        return {"day": 1, "week": 7, "month": 30}[self.value]


class InstallTime(BaseModel):
    """
    Structured installation lead time, e.g. 3 weeks.

    Accepts the marketplace's display strings ("1 week" ... "6 weeks") as
    input and always renders back to the same form.
    """

    model_config = ConfigDict(frozen=True)

    count: int = Field(gt=0)
    unit: DurationUnit = DurationUnit.WEEK

    @model_validator(mode="before")
    @classmethod
    def parse_display_string(cls, data: Any) -> Any:
        if not isinstance(data, str):
            return data
        match = _INSTALL_TIME_PATTERN.match(data)
        if not match:
            raise ValueError(f"Unrecognized install time: {data!r}")
        count, unit = match.groups()
        try:
            return {"count": int(count), "unit": DurationUnit(unit.lower())}
        except ValueError:
            raise ValueError(f"Unknown install time unit: {unit!r}") from None

    @classmethod
    def parse(cls, text: str) -> "InstallTime":
        return cls.model_validate(text)

    @property
    def days(self) -> int:
        """Lead time normalized to days, used only for ordering."""
        return self.count * self.unit.days

    def __str__(self) -> str:
        suffix = "" if self.count == 1 else "s"
        return f"{self.count} {self.unit.value}{suffix}"


@dataclass(frozen=True)
class Party:
    """An identity resolved by the auth layer; trusted as given."""

    role: Role
    id: str


class OfferProposal(BaseModel):
    """Terms a party proposes in a counter-offer."""

    price: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    install_time: InstallTime
    note: str | None = Field(None, max_length=1000)
    # Round the client believes it is bidding in; None means "the next one"
    round: int | None = Field(None, ge=1)

    @field_validator("note")
    @classmethod
    def blank_note_is_none(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v


@dataclass(frozen=True)
class Offer:
    """An immutable entry in a session's offer ledger."""

    id: str
    session_id: str
    round: int
    sender_role: Role
    price: Decimal
    install_time: InstallTime
    created_at: datetime
    note: str | None = None


@dataclass(frozen=True)
class NegotiationSession:
    """One bidding room thread, bound 1:1 to a written quote."""

    id: str
    quote_id: str
    homeowner_id: str
    installer_id: str
    status: SessionStatus
    start_time: datetime
    expiry_time: datetime
    extension_granted: bool = False
    rounds_completed: int = 0

    def __post_init__(self) -> None:
        if self.expiry_time < self.start_time:
            raise ValueError("expiry_time cannot precede start_time")
        if not 0 <= self.rounds_completed <= MAX_ROUNDS:
            raise ValueError(f"rounds_completed must be within 0..{MAX_ROUNDS}")

    def party_id(self, role: Role) -> str:
        return self.homeowner_id if role is Role.HOMEOWNER else self.installer_id

    def is_party(self, party: Party) -> bool:
        return self.party_id(party.role) == party.id


@dataclass(frozen=True)
class QuoteBaseline:
    """The written quote a session negotiates over."""

    quote_id: str
    homeowner_id: str
    installer_id: str
    price: Decimal
    install_time: InstallTime
    system_type: str
    status: QuoteStatus = QuoteStatus.SUBMITTED


@dataclass
class ChangeEvent:
    """Fire-and-forget notice for the party that did not act."""

    type: EventType
    session_id: str
    actor_role: Role
    occurred_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TimeRemaining:
    days: int
    hours: int
    minutes: int
    seconds: int
    total: timedelta

    @classmethod
    def from_delta(cls, delta: timedelta) -> "TimeRemaining":
        delta = max(delta, timedelta(0))
        whole = int(delta.total_seconds())
        days, rest = divmod(whole, 86400)
        hours, rest = divmod(rest, 3600)
        minutes, seconds = divmod(rest, 60)
        return cls(days, hours, minutes, seconds, delta)

    @property
    def expired(self) -> bool:
        return self.total <= timedelta(0)

    def describe(self) -> str:
        if self.expired:
            return "Expired"
        if self.days > 0:
            return f"{self.days}d {self.hours}h remaining"
        if self.hours > 0:
            return f"{self.hours}h {self.minutes}m remaining"
        return f"{self.minutes}m {self.seconds}s remaining"


@dataclass(frozen=True)
class PermittedActions:
    can_counter: bool = False
    can_accept: bool = False
    can_decline: bool = False
    can_extend: bool = False


@dataclass(frozen=True)
class SessionSnapshot:
    """Read model of a session as a party would see it at one instant."""

    session: NegotiationSession
    offers: tuple[Offer, ...]
    time_remaining: TimeRemaining
    progress: float
    urgency: Urgency

    @property
    def latest_offer(self) -> Offer | None:
        return self.offers[-1] if self.offers else None
