"""Settings loading and production wiring."""

import pytest
import structlog
from conftest import HOMEOWNER, INSTALLER, NOW, make_quote, offer_terms
from pydantic import ValidationError

from bidding_room.app import build_engine
from bidding_room.config import ServerSettings, Settings
from bidding_room.negotiation.clock import NegotiationClock
from bidding_room.negotiation.types import QuoteStatus
from bidding_room.store.sql import SqlQuoteStore, SqlSessionStore
from bidding_room.telemetry import init_telemetry


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    structlog.reset_defaults()


def test_defaults():
    settings = Settings()
    assert settings.negotiation.window_days == 7
    assert settings.negotiation.extension_days == 2
    assert settings.negotiation.extension_window_hours is None
    assert settings.server.log_format == "json"
    assert not settings.server.telemetry_enabled


def test_nested_environment_overrides(monkeypatch):
    monkeypatch.setenv("BIDDING_NEGOTIATION__WINDOW_DAYS", "5")
    monkeypatch.setenv("BIDDING_NEGOTIATION__EXTENSION_WINDOW_HOURS", "48")
    monkeypatch.setenv("BIDDING_SERVER__LOG_FORMAT", "console")

    settings = Settings()

    assert settings.negotiation.window_days == 5
    assert settings.negotiation.extension_window_hours == 48
    assert settings.server.log_format == "console"
    start, expiry = NegotiationClock(settings.negotiation).new_window(NOW)
    assert (expiry - start).days == 5


def test_critical_band_must_fit_inside_warning_band():
    with pytest.raises(ValidationError):
        Settings(negotiation={"warning_hours": 12, "critical_hours": 24})


def test_window_must_be_positive():
    with pytest.raises(ValidationError):
        Settings(negotiation={"window_days": 0})


def test_build_engine_wires_sql_storage():
    settings = Settings(
        database={"url": "sqlite://"},
        server={"log_format": "console", "log_level": "warning"},
    )

    engine = build_engine(settings)

    assert isinstance(engine.store, SqlSessionStore)
    assert isinstance(engine.quotes, SqlQuoteStore)
    engine.quotes.add_quote(make_quote("q-1"))

    session = engine.start_negotiations(["q-1"], now=NOW)[0].value
    assert engine.submit_offer(session.id, INSTALLER, offer_terms("12000"), now=NOW).ok
    assert engine.accept(session.id, HOMEOWNER, now=NOW).ok
    assert engine.quotes.get_quote("q-1").status is QuoteStatus.DEAL
    assert engine.reveal_gate.is_open(session.id)


class TestTelemetry:
    def test_console_exporter_without_endpoint(self, mocker):
        set_provider = mocker.patch("bidding_room.telemetry.trace.set_tracer_provider")

        provider = init_telemetry(
            ServerSettings(otel_service_name=" Bidding-Room ", otel_exporter_otlp_endpoint=None)
        )

        set_provider.assert_called_once_with(provider)
        assert provider.resource.attributes["service.name"] == "bidding-room"

    def test_falls_back_to_console_when_otlp_fails(self, mocker):
        mocker.patch("bidding_room.telemetry.trace.set_tracer_provider")
        mocker.patch(
            "bidding_room.telemetry.OTLPSpanExporter", side_effect=RuntimeError("no grpc")
        )
        console = mocker.patch("bidding_room.telemetry.ConsoleSpanExporter")

        init_telemetry(ServerSettings())

        console.assert_called_once_with()

    def test_blank_service_name_is_rejected(self):
        with pytest.raises(ValueError):
            init_telemetry(ServerSettings(otel_service_name="  "))

    def test_build_engine_instruments_the_database(self, mocker):
        init = mocker.patch("bidding_room.app.init_telemetry")
        instrumentor = mocker.patch("bidding_room.app.SQLAlchemyInstrumentor")

        build_engine(
            Settings(
                database={"url": "sqlite://"},
                server={"telemetry_enabled": True, "log_level": "warning"},
            )
        )

        init.assert_called_once()
        instrumentor.return_value.instrument.assert_called_once()
