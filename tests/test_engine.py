"""Behavioural tests for the negotiation engine."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from conftest import DAY, HOMEOWNER, INSTALLER, NOW, offer_terms

from bidding_room.config import NegotiationSettings
from bidding_room.negotiation.engine import NegotiationEngine
from bidding_room.negotiation.errors import ERROR_MESSAGES, ErrorKind, StoreUnavailable
from bidding_room.negotiation.types import (
    EventType,
    Party,
    QuoteStatus,
    Role,
    SessionStatus,
    Urgency,
)


class TestScenarios:
    def test_counter_then_accept_closes_the_deal(self, engine, session, quote_store, reveal):
        opening = engine.submit_offer(session.id, INSTALLER, offer_terms("12000"))
        counter = engine.submit_offer(session.id, HOMEOWNER, offer_terms("11000"))
        accepted = engine.accept(session.id, INSTALLER)

        assert opening.ok and opening.value.round == 1
        assert counter.ok and counter.value.round == 2
        assert accepted.ok
        assert accepted.value.status is SessionStatus.ACCEPTED

        stored = engine.get_session(session.id).value
        assert stored.status is SessionStatus.ACCEPTED
        assert stored.rounds_completed == 2
        assert quote_store.get_quote("q-1").status is QuoteStatus.DEAL
        assert reveal.is_open(session.id)

    def test_consecutive_submissions_are_out_of_turn(self, engine, session):
        assert engine.submit_offer(session.id, HOMEOWNER, offer_terms("10000")).ok
        second = engine.submit_offer(session.id, HOMEOWNER, offer_terms("9500"))

        assert second.error is ErrorKind.OUT_OF_TURN
        assert second.message == ERROR_MESSAGES[ErrorKind.OUT_OF_TURN]
        assert len(engine.history(session.id).value) == 1

    def test_round_limit_still_allows_accept(self, engine, session):
        engine.submit_offer(session.id, INSTALLER, offer_terms("12000"))
        engine.submit_offer(session.id, HOMEOWNER, offer_terms("11000"))
        engine.submit_offer(session.id, INSTALLER, offer_terms("11500"))

        fourth = engine.submit_offer(session.id, HOMEOWNER, offer_terms("11200"))
        assert fourth.error is ErrorKind.ROUND_LIMIT_EXCEEDED
        assert fourth.message == "Maximum 3 bidding rounds allowed."

        assert engine.accept(session.id, HOMEOWNER).ok
        assert engine.get_session(session.id).value.rounds_completed == 3

    def test_expired_session_refuses_offers(self, engine, session):
        late = session.expiry_time + timedelta(seconds=1)
        outcome = engine.submit_offer(session.id, INSTALLER, offer_terms("12000"), now=late)
        assert outcome.error is ErrorKind.SESSION_EXPIRED

    def test_extension_before_expiry_keeps_the_session_open(self, engine, session):
        assert engine.request_extension(session.id, HOMEOWNER, now=NOW + 6 * DAY).ok
        late = session.expiry_time + timedelta(seconds=1)
        assert engine.submit_offer(session.id, INSTALLER, offer_terms("12000"), now=late).ok

    def test_best_price_ignores_sessions_without_offers(self, engine, session):
        q2, q3 = [o.value for o in engine.start_negotiations(["q-2", "q-3"])]
        engine.submit_offer(session.id, INSTALLER, offer_terms("9000"))
        engine.submit_offer(q3.id, Party(Role.INSTALLER, "inst-3"), offer_terms("9500"))
        # q-2 sits at an 8000 baseline but nobody has bid on it

        best = engine.best_price("home-1")
        assert best.session.id == session.id
        assert best.latest_offer.price == Decimal("9000")
        assert q2.id not in {
            engine.best_price("home-1").session.id,
            engine.fastest_install("home-1").session.id,
            engine.highest_rated_counterparty("home-1").session.id,
        }

    def test_second_extension_is_refused(self, engine, session):
        first = engine.request_extension(session.id, HOMEOWNER)
        second = engine.request_extension(session.id, INSTALLER)

        assert first.ok
        assert second.error is ErrorKind.ALREADY_EXTENDED
        stored = engine.get_session(session.id).value
        assert stored.expiry_time == session.expiry_time + 2 * DAY
        assert stored.extension_granted


class TestLifecycleGuarantees:
    def test_offers_alternate_and_rounds_count_up(self, engine, session):
        sequence = [
            (HOMEOWNER, "10000"),
            (HOMEOWNER, "9800"),
            (INSTALLER, "11800"),
            (INSTALLER, "11700"),
            (HOMEOWNER, "10500"),
            (INSTALLER, "10900"),
        ]
        seen_rounds = []
        for party, price in sequence:
            engine.submit_offer(session.id, party, offer_terms(price))
            seen_rounds.append(engine.get_session(session.id).value.rounds_completed)

        offers = engine.history(session.id).value
        assert seen_rounds == sorted(seen_rounds)
        assert max(seen_rounds) == 3
        assert [o.round for o in offers] == [1, 2, 3]
        for previous, current in zip(offers, offers[1:]):
            assert previous.sender_role is not current.sender_role

    @pytest.mark.parametrize("closing", ["accept", "decline"])
    def test_terminal_sessions_are_frozen(self, engine, session, closing):
        engine.submit_offer(session.id, INSTALLER, offer_terms("12000"))
        assert getattr(engine, closing)(session.id, HOMEOWNER).ok
        status = engine.get_session(session.id).value.status

        assert engine.submit_offer(session.id, HOMEOWNER, offer_terms("1")).error is (
            ErrorKind.SESSION_CLOSED
        )
        assert engine.accept(session.id, HOMEOWNER).error is ErrorKind.SESSION_CLOSED
        assert engine.decline(session.id, INSTALLER).error is ErrorKind.SESSION_CLOSED
        assert engine.request_extension(session.id, HOMEOWNER).error is ErrorKind.SESSION_CLOSED
        assert engine.get_session(session.id).value.status is status
        assert len(engine.history(session.id).value) == 1

    def test_expiry_dominates_round_and_turn(self, engine, session):
        engine.submit_offer(session.id, INSTALLER, offer_terms("12000"))
        engine.submit_offer(session.id, HOMEOWNER, offer_terms("11000"))
        engine.submit_offer(session.id, INSTALLER, offer_terms("11500"))
        late = session.expiry_time

        assert engine.submit_offer(session.id, INSTALLER, offer_terms("1"), now=late).error is (
            ErrorKind.SESSION_EXPIRED
        )
        assert engine.accept(session.id, HOMEOWNER, now=late).error is ErrorKind.SESSION_EXPIRED

    def test_expiry_is_surfaced_on_read_and_persisted_on_write(
        self, engine, session, session_store
    ):
        late = session.expiry_time + timedelta(minutes=1)
        assert engine.get_session(session.id, now=late).value.status is SessionStatus.EXPIRED
        assert session_store.get_session(session.id).status is SessionStatus.IN_NEGOTIATION

        engine.accept(session.id, HOMEOWNER, now=late)
        assert session_store.get_session(session.id).status is SessionStatus.EXPIRED
        # Once persisted, even an earlier clock cannot revive it
        assert engine.request_extension(session.id, HOMEOWNER, now=NOW).error is (
            ErrorKind.SESSION_EXPIRED
        )


class TestWrites:
    def test_accept_needs_an_offer(self, engine, session, quote_store):
        outcome = engine.accept(session.id, HOMEOWNER)
        assert outcome.error is ErrorKind.NO_OFFERS
        assert quote_store.get_quote("q-1").status is QuoteStatus.SUBMITTED

    def test_decline_leaves_the_quote_alone(self, engine, session, quote_store, reveal):
        outcome = engine.decline(session.id, INSTALLER)
        assert outcome.ok and outcome.value.status is SessionStatus.DECLINED
        assert quote_store.get_quote("q-1").status is QuoteStatus.SUBMITTED
        assert not reveal.is_open(session.id)

    def test_outsiders_cannot_act(self, engine, session):
        stranger = Party(Role.INSTALLER, "inst-2")
        assert engine.submit_offer(session.id, stranger, offer_terms("100")).error is (
            ErrorKind.NOT_A_PARTY
        )
        assert engine.request_extension(session.id, stranger).error is ErrorKind.NOT_A_PARTY

    def test_invalid_terms_are_reported_not_raised(self, engine, session):
        outcome = engine.submit_offer(session.id, INSTALLER, offer_terms("-10"))
        assert outcome.error is ErrorKind.INVALID_OFFER
        assert "price" in outcome.message

    def test_stale_round_from_client(self, engine, session):
        engine.submit_offer(session.id, INSTALLER, offer_terms("12000"))
        stale = engine.submit_offer(session.id, HOMEOWNER, offer_terms("11000", round=1))
        retried = engine.submit_offer(session.id, HOMEOWNER, offer_terms("11000", round=2))
        assert stale.error is ErrorKind.INVALID_ROUND
        assert retried.ok

    def test_quote_store_failure_keeps_the_session_open(
        self, engine, session, quote_store, notifier, mocker
    ):
        engine.submit_offer(session.id, INSTALLER, offer_terms("12000"))
        mocker.patch.object(
            quote_store, "set_status", side_effect=StoreUnavailable("quotes down")
        )

        with pytest.raises(StoreUnavailable):
            engine.accept(session.id, HOMEOWNER)

        assert engine.get_session(session.id).value.status is SessionStatus.IN_NEGOTIATION
        assert [e.type for e in notifier.for_session(session.id)] == [
            EventType.OFFER_SUBMITTED
        ]

        mocker.stopall()
        assert engine.accept(session.id, HOMEOWNER).ok
        assert quote_store.get_quote("q-1").status is QuoteStatus.DEAL

    def test_quote_is_restored_when_the_close_loses(
        self, engine, session, session_store, quote_store, mocker
    ):
        engine.submit_offer(session.id, INSTALLER, offer_terms("12000"))
        set_status = session_store.set_status

        def declined_meanwhile(session_id, status, live_at=None):
            set_status(session_id, SessionStatus.DECLINED, live_at)
            return False

        mocker.patch.object(session_store, "set_status", side_effect=declined_meanwhile)

        assert engine.accept(session.id, HOMEOWNER).error is ErrorKind.SESSION_CLOSED
        assert quote_store.get_quote("q-1").status is QuoteStatus.SUBMITTED

    def test_expiry_between_guard_and_write_is_persisted(
        self, engine, session, session_store, mocker
    ):
        engine.submit_offer(session.id, INSTALLER, offer_terms("12000"))
        late = session.expiry_time + timedelta(seconds=1)
        # Guards judged the session live; the store write sees it expired
        mocker.patch.object(engine.machine, "check_accept", return_value=None)
        mocker.patch.object(engine.machine, "check_decline", return_value=None)

        assert engine.decline(session.id, HOMEOWNER, now=late).error is (
            ErrorKind.SESSION_EXPIRED
        )
        assert session_store.get_session(session.id).status is SessionStatus.EXPIRED
        assert engine.accept(session.id, HOMEOWNER, now=late).error is (
            ErrorKind.SESSION_EXPIRED
        )

    def test_naive_clock_is_rejected(self, engine, session):
        with pytest.raises(ValueError):
            engine.submit_offer(
                session.id, INSTALLER, offer_terms("12000"), now=datetime(2026, 3, 2, 9)
            )

    def test_unknown_session(self, engine):
        assert engine.submit_offer("missing", HOMEOWNER, offer_terms("1")).error is (
            ErrorKind.NOT_FOUND
        )
        assert engine.accept("missing", HOMEOWNER).error is ErrorKind.NOT_FOUND
        assert engine.history("missing").error is ErrorKind.NOT_FOUND
        assert engine.snapshot("missing").error is ErrorKind.NOT_FOUND

    def test_extension_window(self, session_store, quote_store):
        engine = NegotiationEngine(
            store=session_store,
            quotes=quote_store,
            settings=NegotiationSettings(extension_window_hours=24),
            now_fn=lambda: NOW,
        )
        session = engine.start_negotiations(["q-1"])[0].value

        early = engine.request_extension(session.id, HOMEOWNER, now=NOW + DAY)
        assert early.error is ErrorKind.EXTENSION_NOT_YET_AVAILABLE
        assert engine.request_extension(session.id, HOMEOWNER, now=NOW + 6.5 * DAY).ok


class TestNotifications:
    def test_events_for_each_write(self, engine, session, notifier):
        engine.submit_offer(session.id, INSTALLER, offer_terms("12000"))
        engine.request_extension(session.id, HOMEOWNER)
        engine.accept(session.id, HOMEOWNER)

        events = notifier.for_session(session.id)
        assert [e.type for e in events] == [
            EventType.OFFER_SUBMITTED,
            EventType.EXTENSION_GRANTED,
            EventType.SESSION_ACCEPTED,
        ]
        assert [e.actor_role for e in events] == [Role.INSTALLER, Role.HOMEOWNER, Role.HOMEOWNER]
        assert events[0].payload == {"round": 1, "price": "12000"}

    def test_rejections_emit_nothing(self, engine, session, notifier):
        engine.accept(session.id, HOMEOWNER)
        assert notifier.events == []

    def test_notifier_failure_does_not_undo_the_write(self, engine, session, notifier, mocker):
        mocker.patch.object(notifier, "publish", side_effect=RuntimeError("relay down"))
        outcome = engine.submit_offer(session.id, INSTALLER, offer_terms("12000"))
        assert outcome.ok
        assert len(engine.history(session.id).value) == 1

    def test_reveal_failure_does_not_undo_acceptance(self, engine, session, reveal, mocker):
        mocker.patch.object(reveal, "open", side_effect=RuntimeError("profile service down"))
        engine.submit_offer(session.id, INSTALLER, offer_terms("12000"))
        assert engine.accept(session.id, HOMEOWNER).ok
        assert engine.get_session(session.id).value.status is SessionStatus.ACCEPTED


class TestReads:
    def test_snapshot(self, engine, session):
        engine.submit_offer(session.id, INSTALLER, offer_terms("12000"))
        snapshot = engine.snapshot(session.id, now=NOW + 6 * DAY + timedelta(hours=2)).value

        assert snapshot.latest_offer.price == Decimal("12000")
        assert snapshot.urgency is Urgency.CRITICAL
        assert snapshot.time_remaining.describe() == "22h 0m remaining"
        assert 0.8 < snapshot.progress < 0.9

    def test_permitted_actions(self, engine, session):
        engine.submit_offer(session.id, INSTALLER, offer_terms("12000"))
        installer = engine.permitted_actions(session.id, INSTALLER).value
        homeowner = engine.permitted_actions(session.id, HOMEOWNER).value
        assert not installer.can_counter and homeowner.can_counter
        assert installer.can_accept and homeowner.can_accept

    def test_lookup_by_quote(self, engine, session):
        assert engine.get_session_for_quote("q-1").value.id == session.id
        assert engine.get_session_for_quote("q-404").error is ErrorKind.NOT_FOUND
