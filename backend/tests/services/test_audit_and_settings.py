from datetime import timedelta

from cryptography.fernet import Fernet
import pytest

from roombook.core import crypto
from roombook.core.crypto import MASKED_SECRET
from roombook.core.enums import AuditAction
from roombook.core.exceptions import ForbiddenException, ValidationException
from roombook.models.audit_log import AuditLog
from roombook.services.audit_service import AuditService
from roombook.services.payment_settings_service import PaymentSettingsService


@pytest.fixture
def settings_service(db, clock):
    return PaymentSettingsService(db, clock=clock)


@pytest.fixture
def audit_service(db, clock):
    return AuditService(db, clock=clock)


class TestPaymentSettings:
    def test_defaults_are_created_on_first_read(self, settings_service):
        current = settings_service.get_settings()

        assert current.id is not None
        assert current.currency == "EUR"
        assert settings_service.get_settings().id == current.id

    def test_secrets_are_masked(self, settings_service, payment_settings, admin):
        data = settings_service.get_masked_settings(admin)

        assert data["stripe_secret_key"] == MASKED_SECRET
        assert data["stripe_webhook_secret"] == MASKED_SECRET
        assert data["bank_iban"] == payment_settings.bank_iban

    def test_only_admin_manages_settings(self, settings_service, manager):
        with pytest.raises(ForbiddenException):
            settings_service.get_masked_settings(manager)
        with pytest.raises(ForbiddenException):
            settings_service.update_settings(manager, {"currency": "USD"})

    def test_masked_secret_leaves_stored_value(self, settings_service, payment_settings, admin):
        settings_service.update_settings(
            admin, {"stripe_secret_key": MASKED_SECRET, "stripe_webhook_secret": "", "bank_name": "Nuova Banca"}
        )

        assert payment_settings.stripe_secret_key == "sk_test_123"
        assert payment_settings.stripe_webhook_secret == "whsec_test_123"
        assert payment_settings.bank_name == "Nuova Banca"

    def test_new_secret_is_encrypted(
        self, settings_service, payment_settings, admin, monkeypatch
    ):
        monkeypatch.setattr(crypto.settings, "encryption_key", Fernet.generate_key().decode())

        data = settings_service.update_settings(admin, {"stripe_secret_key": "sk_live_new"})

        assert data["stripe_secret_key"] == MASKED_SECRET
        assert payment_settings.stripe_secret_key != "sk_live_new"
        assert crypto.decrypt_str(payment_settings.stripe_secret_key) == "sk_live_new"

    def test_credentials_fall_back_to_stored_plain_values(self, settings_service, payment_settings):
        credentials = settings_service.gateway_credentials()

        assert credentials.secret_key == "sk_test_123"
        assert credentials.webhook_secret == "whsec_test_123"

    @pytest.mark.parametrize(
        "field,value",
        [("payment_deadline_days", 0), ("payment_reminder_hours", 200), ("tax_rate", -1)],
    )
    def test_out_of_range_values_are_rejected(self, settings_service, admin, field, value):
        with pytest.raises(ValidationException) as exc_info:
            settings_service.update_settings(admin, {field: value})
        assert exc_info.value.details["field"] == field

    def test_update_is_audited_without_secret_values(
        self, settings_service, payment_settings, admin, db
    ):
        settings_service.update_settings(admin, {"stripe_secret_key": "sk_new", "currency": "USD"})

        entry = db.query(AuditLog).filter(AuditLog.action == "SETTINGS_UPDATE").one()
        assert entry.details == {"fields": ["currency", "stripe_secret_key"]}
        assert entry.actor_id == admin.id


class TestAuditService:
    def test_log_records_actor_and_normalized_metadata(self, audit_service, admin, db, clock):
        entry = audit_service.log(
            AuditAction.UPDATE,
            "booking",
            entity_id="b1",
            description="Booking updated",
            actor=admin,
            metadata={"when": clock.now(), "action": AuditAction.CANCEL},
        )
        db.commit()

        assert entry.actor_id == admin.id
        assert entry.actor_email == admin.email
        assert entry.actor_role == "ADMIN"
        assert entry.details == {"when": clock.now().isoformat(), "action": "CANCEL"}

    def test_find_all_filters_and_paginates(self, audit_service, admin, manager, db):
        for i in range(3):
            audit_service.log(
                AuditAction.UPDATE, "booking", entity_id=f"b{i}", description="u", actor=admin
            )
        audit_service.log(AuditAction.CANCEL, "booking", entity_id="b9", description="c", actor=manager)
        db.commit()

        page = audit_service.find_all(actor_id=admin.id, limit=2)
        assert page["total"] == 3
        assert len(page["logs"]) == 2
        assert page["limit"] == 2

        cancels = audit_service.find_all(action="CANCEL")
        assert [e.entity_id for e in cancels["logs"]] == ["b9"]

    def test_find_by_entity(self, audit_service, admin, db):
        audit_service.log(AuditAction.CREATE, "booking", entity_id="b1", description="c", actor=admin)
        audit_service.log(AuditAction.CREATE, "booking", entity_id="b2", description="c", actor=admin)
        db.commit()

        assert [e.entity_id for e in audit_service.find_by_entity("booking", "b1")] == ["b1"]

    def test_delete_old_logs(self, db, clock, admin):
        old = AuditService(db, clock=clock)
        old.log(AuditAction.CREATE, "booking", entity_id="old", description="c", actor=admin)
        db.commit()

        clock.advance(timedelta(days=91))
        recent = AuditService(db, clock=clock)
        recent.log(AuditAction.CREATE, "booking", entity_id="new", description="c", actor=admin)
        db.commit()

        assert recent.delete_old_logs() == {"deleted": 1}
        db.commit()
        assert [e.entity_id for e in db.query(AuditLog).all()] == ["new"]

    def test_failed_write_does_not_break_caller(self, audit_service, db, monkeypatch):
        def _boom(entry):
            raise RuntimeError("disk full")

        monkeypatch.setattr(audit_service.repository, "write", _boom)

        assert audit_service.log(AuditAction.CREATE, "booking", description="c") is None
