"""Wires a production engine: structured logs, optional tracing, SQL storage."""

from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from sqlalchemy.orm import sessionmaker

from bidding_room.config import Settings, get_settings
from bidding_room.logging_config import configure_logging, get_logger
from bidding_room.negotiation.engine import NegotiationEngine
from bidding_room.negotiation.notifications import LoggingNotifier, RevealLedger
from bidding_room.store.sql import (
    SqlQuoteStore,
    SqlRatingProvider,
    SqlSessionStore,
    create_db_engine,
    init_db,
)
from bidding_room.telemetry import init_telemetry

logger = get_logger("bidding-room")


def build_engine(settings: Settings | None = None) -> NegotiationEngine:
    settings = settings or get_settings()
    configure_logging(settings.server.log_level, settings.server.log_format)

    db_engine = create_db_engine(settings.database)
    if settings.server.telemetry_enabled:
        init_telemetry(settings.server)
        SQLAlchemyInstrumentor().instrument(engine=db_engine)

    init_db(db_engine)
    session_factory = sessionmaker(bind=db_engine)

    engine = NegotiationEngine(
        store=SqlSessionStore(session_factory),
        quotes=SqlQuoteStore(session_factory),
        notifier=LoggingNotifier(),
        reveal_gate=RevealLedger(),
        ratings=SqlRatingProvider(session_factory),
        settings=settings.negotiation,
    )
    logger.info("negotiation_engine_ready", database=db_engine.url.render_as_string())
    return engine
