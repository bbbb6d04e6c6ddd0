from datetime import datetime, timedelta

from bidding_room.config import NegotiationSettings

from .types import NegotiationSession, TimeRemaining, Urgency


class NegotiationClock:
    """
    Derives every time-based fact about a session from its expiry and ``now``.

    Holds configuration only. Nothing ticks: callers pass the instant they
    care about and get the same answer for the same inputs.
    """

    def __init__(self, settings: NegotiationSettings | None = None):
        self.settings = settings or NegotiationSettings()

    @property
    def window(self) -> timedelta:
        return timedelta(days=self.settings.window_days)

    @property
    def extension(self) -> timedelta:
        return timedelta(days=self.settings.extension_days)

    def new_window(self, now: datetime) -> tuple[datetime, datetime]:
        """Start and expiry for a session opened at ``now``."""
        return now, now + self.window

    def time_remaining(self, session: NegotiationSession, now: datetime) -> timedelta:
        return max(timedelta(0), session.expiry_time - now)

    def is_live(self, session: NegotiationSession, now: datetime) -> bool:
        return self.time_remaining(session, now) > timedelta(0)

    def breakdown(self, session: NegotiationSession, now: datetime) -> TimeRemaining:
        return TimeRemaining.from_delta(self.time_remaining(session, now))

    def progress_fraction(self, session: NegotiationSession, now: datetime) -> float:
        """Elapsed share of the nominal window that ends at ``expiry_time``."""
        start = session.expiry_time - self.window
        elapsed = now - start
        if elapsed <= timedelta(0):
            return 0.0
        if elapsed >= self.window:
            return 1.0
        return elapsed / self.window

    def urgency(self, session: NegotiationSession, now: datetime) -> Urgency:
        remaining = self.time_remaining(session, now)
        if remaining <= timedelta(0):
            return Urgency.EXPIRED
        if remaining <= timedelta(hours=self.settings.critical_hours):
            return Urgency.CRITICAL
        if remaining <= timedelta(hours=self.settings.warning_hours):
            return Urgency.WARNING
        return Urgency.NORMAL

    def extended_expiry(self, session: NegotiationSession) -> datetime:
        return session.expiry_time + self.extension

    def extension_open(self, session: NegotiationSession, now: datetime) -> bool:
        """Whether the request window for an extension has opened."""
        if self.settings.extension_window_hours is None:
            return True
        limit = timedelta(hours=self.settings.extension_window_hours)
        return self.time_remaining(session, now) <= limit
