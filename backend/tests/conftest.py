"""
Shared fixtures: a fresh in-memory SQLite database per test, a frozen clock,
and doubles for the payment gateway and the notification transport.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
import os
from typing import Iterator
from unittest.mock import MagicMock

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest  # noqa: E402
from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from roombook.core.clock import FixedClock  # noqa: E402
from roombook.core.enums import RoleName  # noqa: E402
from roombook.core.permissions import Principal  # noqa: E402
from roombook.database import Base  # noqa: E402
import roombook.models  # noqa: E402,F401
from roombook.models.payment_settings import PaymentSettings  # noqa: E402
from roombook.models.resource import Resource  # noqa: E402
from roombook.services.booking_service import BookingService  # noqa: E402
from roombook.services.notification_service import NotificationResult  # noqa: E402
from roombook.services.payment_service import PaymentService  # noqa: E402
from roombook.services.payment_settings_service import PaymentSettingsService  # noqa: E402
from roombook.services.stripe_gateway import CheckoutSession  # noqa: E402

NOW = datetime(2025, 3, 10, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite defers BEGIN; take over so SAVEPOINT nests inside a real transaction
    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(engine) -> Iterator[Session]:
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def resource(db: Session) -> Resource:
    room = Resource(name="Sala Riunioni", hourly_rate=Decimal("50.00"), is_active=True)
    db.add(room)
    db.commit()
    return room


@pytest.fixture
def projector(db: Session) -> Resource:
    item = Resource(name="Proiettore", hourly_rate=Decimal("10.00"), is_active=True)
    db.add(item)
    db.commit()
    return item


@pytest.fixture
def payment_settings(db: Session) -> PaymentSettings:
    """Both payment options enabled with bank details filled in."""
    current = PaymentSettings(
        stripe_enabled=True,
        bank_transfer_enabled=True,
        bank_name="Banca Esempio",
        bank_account_holder="Coworking Srl",
        bank_iban="IT60X0542811101000000123456",
        bank_bic="BPMOIT22XXX",
        bank_transfer_note="Prenotazione {CODICE} - {RISORSA} - {DATA}",
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret="whsec_test_123",
        payment_deadline_days=2,
        payment_reminder_hours=24,
        send_reminders=True,
        currency="EUR",
    )
    db.add(current)
    db.commit()
    return current


@pytest.fixture
def requester() -> Principal:
    return Principal(id="01HZZZZZZZZZZZZZZZZZZUSER1", email="mario@example.com")


@pytest.fixture
def other_user() -> Principal:
    return Principal(id="01HZZZZZZZZZZZZZZZZZZUSER2", email="luisa@example.com")


@pytest.fixture
def manager() -> Principal:
    return Principal(
        id="01HZZZZZZZZZZZZZZZZZZMGR01",
        email="cm@example.com",
        role=RoleName.COMMUNITY_MANAGER.value,
    )


@pytest.fixture
def admin() -> Principal:
    return Principal(id="01HZZZZZZZZZZZZZZZZZADMIN1", email="admin@example.com", role="ADMIN")


@pytest.fixture
def gateway() -> MagicMock:
    gw = MagicMock()
    gw.create_checkout_session.return_value = CheckoutSession(
        id="cs_test_123", url="https://checkout.stripe.test/cs_test_123"
    )
    gw.create_refund.return_value = "re_test_123"
    return gw


@pytest.fixture
def notifier() -> MagicMock:
    sender = MagicMock()
    sender.send.return_value = NotificationResult(success=True)
    return sender


@pytest.fixture
def payment_service(db, clock, gateway, notifier) -> PaymentService:
    return PaymentService(
        db,
        clock=clock,
        gateway=gateway,
        notification_service=notifier,
        settings_service=PaymentSettingsService(db, clock=clock),
    )


@pytest.fixture
def booking_service(db, clock, payment_service, notifier) -> BookingService:
    return BookingService(
        db, clock=clock, payment_service=payment_service, notification_service=notifier
    )


@pytest.fixture
def make_window():
    """Build ``[start, end)`` pairs relative to the frozen clock's day."""

    def _window(day_offset: int = 1, start_hour: int = 10, hours: int = 2, minute: int = 0):
        start = NOW.replace(hour=start_hour, minute=minute) + timedelta(days=day_offset)
        return start, start + timedelta(hours=hours)

    return _window


@pytest.fixture
def create_booking(booking_service, resource, requester, make_window):
    """Create a PENDING booking for ``requester`` on ``resource``."""

    def _create(principal=None, **overrides):
        start, end = make_window(
            overrides.pop("day_offset", 1),
            overrides.pop("start_hour", 10),
            overrides.pop("hours", 2),
        )
        fields = {
            "resource_id": resource.id,
            "start_time": start,
            "end_time": end,
            "title": "Riunione di team",
        }
        fields.update(overrides)
        return booking_service.create_booking(principal or requester, **fields)

    return _create


@pytest.fixture(autouse=True)
def _plain_secrets(monkeypatch):
    """Secrets in fixtures are stored unencrypted; keep any ambient key out of the way."""
    from roombook.core.config import settings

    monkeypatch.setattr(settings, "encryption_key", None)


@pytest.fixture
def approved_booking(booking_service, create_booking, manager, payment_settings):
    """A booking approved by staff at the frozen clock's instant, both options opened."""
    booking = create_booking()
    return booking_service.approve_booking(manager, booking.id).booking
