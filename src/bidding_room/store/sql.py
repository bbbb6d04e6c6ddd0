"""
SQLAlchemy-backed stores.

The database is the single authority that serializes the two parties'
writes: each compare-and-set is one conditional UPDATE whose rowcount says
whether this caller won.
"""

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from decimal import Decimal

import structlog
from sqlalchemy import (
    Boolean,
    DateTime,
    Engine,
    Enum,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    func,
    or_,
    select,
    update,
)
from sqlalchemy.types import TypeDecorator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from bidding_room.config import DatabaseSettings
from bidding_room.negotiation.errors import StoreUnavailable
from bidding_room.negotiation.types import (
    DurationUnit,
    InstallTime,
    NegotiationSession,
    Offer,
    QuoteBaseline,
    QuoteStatus,
    Role,
    SessionStatus,
)

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    pass


class UTCDateTime(TypeDecorator):
    """An instant stored as UTC. SQLite drops offsets, so aware values are normalized."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime cannot be stored; attach a timezone")
        return value.astimezone(UTC)

    def process_result_value(
        self, value: datetime | None, dialect
    ) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class SessionRecord(Base):
    __tablename__ = "negotiation_sessions"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=lambda: str(uuid.uuid4())
    )
    quote_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    homeowner_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    installer_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    status: Mapped[SessionStatus] = mapped_column(
        Enum(SessionStatus),
        nullable=False,
        default=SessionStatus.IN_NEGOTIATION,
        index=True,
    )
    start_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    expiry_time: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, index=True
    )
    extension_granted: Mapped[bool] = mapped_column(Boolean, default=False)
    rounds_completed: Mapped[int] = mapped_column(Integer, default=0)

    def to_domain(self) -> NegotiationSession:
        return NegotiationSession(
            id=self.id,
            quote_id=self.quote_id,
            homeowner_id=self.homeowner_id,
            installer_id=self.installer_id,
            status=self.status,
            start_time=self.start_time,
            expiry_time=self.expiry_time,
            extension_granted=self.extension_granted,
            rounds_completed=self.rounds_completed,
        )


class OfferRecord(Base):
    """A ledger row. Never updated or deleted."""

    __tablename__ = "offers"
    __table_args__ = (UniqueConstraint("session_id", "round"),)

    id: Mapped[str] = mapped_column(String, primary_key=True)
    session_id: Mapped[str] = mapped_column(
        ForeignKey("negotiation_sessions.id"), nullable=False, index=True
    )
    round: Mapped[int] = mapped_column(Integer, nullable=False)
    sender_role: Mapped[Role] = mapped_column(Enum(Role), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    install_count: Mapped[int] = mapped_column(Integer, nullable=False)
    install_unit: Mapped[DurationUnit] = mapped_column(Enum(DurationUnit), nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    @classmethod
    def from_domain(cls, offer: Offer) -> "OfferRecord":
        return cls(
            id=offer.id,
            session_id=offer.session_id,
            round=offer.round,
            sender_role=offer.sender_role,
            price=offer.price,
            install_count=offer.install_time.count,
            install_unit=offer.install_time.unit,
            note=offer.note,
            created_at=offer.created_at,
        )

    def to_domain(self) -> Offer:
        return Offer(
            id=self.id,
            session_id=self.session_id,
            round=self.round,
            sender_role=self.sender_role,
            price=Decimal(self.price),
            install_time=InstallTime(count=self.install_count, unit=self.install_unit),
            note=self.note,
            created_at=self.created_at,
        )


class WrittenQuote(Base):
    __tablename__ = "written_quotes"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=lambda: str(uuid.uuid4())
    )
    homeowner_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    installer_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    install_count: Mapped[int] = mapped_column(Integer, nullable=False)
    install_unit: Mapped[DurationUnit] = mapped_column(Enum(DurationUnit), nullable=False)
    system_type: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[QuoteStatus] = mapped_column(
        Enum(QuoteStatus), nullable=False, default=QuoteStatus.SUBMITTED
    )

    def to_domain(self) -> QuoteBaseline:
        return QuoteBaseline(
            quote_id=self.id,
            homeowner_id=self.homeowner_id,
            installer_id=self.installer_id,
            price=Decimal(self.price),
            install_time=InstallTime(count=self.install_count, unit=self.install_unit),
            system_type=self.system_type,
            status=self.status,
        )


class InstallerRating(Base):
    __tablename__ = "installer_ratings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    installer_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    rating: Mapped[float] = mapped_column(Float, nullable=False)


def create_db_engine(settings: DatabaseSettings) -> Engine:
    if settings.url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection, or every session sees an empty database
        return create_engine(
            settings.url,
            echo=settings.echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(settings.url, echo=settings.echo)


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)


class _SqlStore:
    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    @contextmanager
    def _db(self) -> Iterator[Session]:
        try:
            with self.session_factory() as db:
                yield db
        except SQLAlchemyError as e:
            logger.error("store_unavailable", error=str(e), exc_info=True)
            raise StoreUnavailable(str(e)) from e


class SqlSessionStore(_SqlStore):
    def add_session(self, session: NegotiationSession) -> bool:
        with self._db() as db:
            db.add(
                SessionRecord(
                    id=session.id,
                    quote_id=session.quote_id,
                    homeowner_id=session.homeowner_id,
                    installer_id=session.installer_id,
                    status=session.status,
                    start_time=session.start_time,
                    expiry_time=session.expiry_time,
                    extension_granted=session.extension_granted,
                    rounds_completed=session.rounds_completed,
                )
            )
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                return False
            return True

    def get_session(self, session_id: str) -> NegotiationSession | None:
        with self._db() as db:
            record = db.get(SessionRecord, session_id)
            return record.to_domain() if record else None

    def find_by_quote(self, quote_id: str) -> NegotiationSession | None:
        with self._db() as db:
            record = db.scalars(
                select(SessionRecord).where(SessionRecord.quote_id == quote_id)
            ).first()
            return record.to_domain() if record else None

    def sessions_for_party(self, party_id: str) -> list[NegotiationSession]:
        with self._db() as db:
            stmt = select(SessionRecord).where(
                or_(
                    SessionRecord.homeowner_id == party_id,
                    SessionRecord.installer_id == party_id,
                )
            )
            return [r.to_domain() for r in db.scalars(stmt)]

    def list_offers(self, session_id: str) -> list[Offer]:
        with self._db() as db:
            stmt = (
                select(OfferRecord)
                .where(OfferRecord.session_id == session_id)
                .order_by(OfferRecord.round, OfferRecord.created_at)
            )
            return [r.to_domain() for r in db.scalars(stmt)]

    def append_offer(
        self, offer: Offer, expected_rounds: int, live_at: datetime
    ) -> bool:
        with self._db() as db:
            result = db.execute(
                update(SessionRecord)
                .where(
                    SessionRecord.id == offer.session_id,
                    SessionRecord.status == SessionStatus.IN_NEGOTIATION,
                    SessionRecord.expiry_time > live_at,
                    SessionRecord.rounds_completed == expected_rounds,
                )
                .values(rounds_completed=expected_rounds + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                return False

            db.add(OfferRecord.from_domain(offer))
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                return False
            return True

    def set_status(
        self,
        session_id: str,
        status: SessionStatus,
        live_at: datetime | None = None,
    ) -> bool:
        conditions = [
            SessionRecord.id == session_id,
            SessionRecord.status == SessionStatus.IN_NEGOTIATION,
        ]
        if live_at is not None:
            conditions.append(SessionRecord.expiry_time > live_at)

        with self._db() as db:
            result = db.execute(
                update(SessionRecord)
                .where(*conditions)
                .values(status=status)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return result.rowcount == 1

    def grant_extension(
        self, session_id: str, new_expiry: datetime, live_at: datetime
    ) -> bool:
        with self._db() as db:
            result = db.execute(
                update(SessionRecord)
                .where(
                    SessionRecord.id == session_id,
                    SessionRecord.status == SessionStatus.IN_NEGOTIATION,
                    SessionRecord.extension_granted.is_(False),
                    SessionRecord.expiry_time > live_at,
                )
                .values(expiry_time=new_expiry, extension_granted=True)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return result.rowcount == 1


class SqlQuoteStore(_SqlStore):
    def add_quote(self, quote: QuoteBaseline) -> None:
        with self._db() as db:
            db.add(
                WrittenQuote(
                    id=quote.quote_id,
                    homeowner_id=quote.homeowner_id,
                    installer_id=quote.installer_id,
                    price=quote.price,
                    install_count=quote.install_time.count,
                    install_unit=quote.install_time.unit,
                    system_type=quote.system_type,
                    status=quote.status,
                )
            )
            db.commit()

    def get_quote(self, quote_id: str) -> QuoteBaseline | None:
        with self._db() as db:
            record = db.get(WrittenQuote, quote_id)
            return record.to_domain() if record else None

    def set_status(self, quote_id: str, status: QuoteStatus) -> None:
        with self._db() as db:
            db.execute(
                update(WrittenQuote)
                .where(WrittenQuote.id == quote_id)
                .values(status=status)
            )
            db.commit()


class SqlRatingProvider(_SqlStore):
    def add_rating(self, installer_id: str, rating: float) -> None:
        with self._db() as db:
            db.add(InstallerRating(installer_id=installer_id, rating=rating))
            db.commit()

    def rating_for(self, party_id: str) -> float | None:
        with self._db() as db:
            return db.scalar(
                select(func.avg(InstallerRating.rating)).where(
                    InstallerRating.installer_id == party_id
                )
            )
