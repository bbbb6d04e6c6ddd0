"""Pytest configuration and shared fixtures."""

import os
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

# Keep any stray settings lookups away from a real database
os.environ.setdefault("BIDDING_DATABASE__URL", "sqlite://")

from bidding_room.negotiation.engine import NegotiationEngine  # noqa: E402
from bidding_room.negotiation.notifications import (  # noqa: E402
    InMemoryNotifier,
    RevealLedger,
)
from bidding_room.negotiation.types import (  # noqa: E402
    InstallTime,
    Party,
    QuoteBaseline,
    Role,
)
from bidding_room.store.memory import (  # noqa: E402
    InMemoryQuoteStore,
    InMemoryRatingProvider,
    InMemorySessionStore,
)

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)
DAY = timedelta(days=1)

HOMEOWNER = Party(Role.HOMEOWNER, "home-1")
INSTALLER = Party(Role.INSTALLER, "inst-1")


def make_quote(
    quote_id: str,
    homeowner_id: str = "home-1",
    installer_id: str = "inst-1",
    price: str = "12500",
    install_time: str = "4 weeks",
) -> QuoteBaseline:
    return QuoteBaseline(
        quote_id=quote_id,
        homeowner_id=homeowner_id,
        installer_id=installer_id,
        price=Decimal(price),
        install_time=InstallTime.parse(install_time),
        system_type="6.6kW grid-connected",
    )


def offer_terms(price: str, install_time: str = "3 weeks", **extra) -> dict:
    return {"price": price, "install_time": install_time, **extra}


@pytest.fixture
def quote_store():
    return InMemoryQuoteStore(
        [
            make_quote("q-1"),
            make_quote("q-2", installer_id="inst-2", price="8000"),
            make_quote("q-3", installer_id="inst-3"),
            make_quote("q-other", homeowner_id="home-2", installer_id="inst-1"),
        ]
    )


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def notifier():
    return InMemoryNotifier()


@pytest.fixture
def reveal():
    return RevealLedger()


@pytest.fixture
def ratings():
    return InMemoryRatingProvider(
        [("inst-1", 4.0), ("inst-1", 5.0), ("inst-2", 3.5), ("inst-3", 4.8)]
    )


@pytest.fixture
def engine(session_store, quote_store, notifier, reveal, ratings):
    return NegotiationEngine(
        store=session_store,
        quotes=quote_store,
        notifier=notifier,
        reveal_gate=reveal,
        ratings=ratings,
        now_fn=lambda: NOW,
    )


@pytest.fixture
def session(engine):
    """A freshly opened session for quote q-1 (home-1 vs inst-1)."""
    return engine.start_negotiations(["q-1"])[0].value
