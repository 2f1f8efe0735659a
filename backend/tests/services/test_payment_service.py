from datetime import timedelta
from decimal import Decimal

import pytest

from roombook.core.clock import ensure_utc
from roombook.core.enums import NotificationKind
from roombook.core.exceptions import (
    BusinessRuleException,
    ConflictException,
    DuplicatePaymentException,
    ForbiddenException,
    InvariantViolationException,
    NotFoundException,
    ValidationException,
    WebhookSignatureException,
)
from roombook.models.audit_log import AuditLog
from roombook.models.booking import BookingStatus
from roombook.models.payment import PaymentMethod, PaymentStatus


def _event(event_type, **obj):
    return {"id": "evt_test", "type": event_type, "data": {"object": obj}}


def _pay_by_card(payment_service, intent="pi_test_123"):
    return payment_service.handle_gateway_event(
        _event("checkout.session.completed", id="cs_test_123", payment_status="paid", payment_intent=intent)
    )


class TestDirectPayment:
    def test_bank_transfer_record_starts_pending(
        self, payment_service, create_booking, requester, payment_settings
    ):
        booking = create_booking()

        payment = payment_service.create_direct_payment(
            requester, booking.id, PaymentMethod.BANK_TRANSFER
        )

        assert payment.status == PaymentStatus.PENDING.value
        assert payment.amount == Decimal("100.00")
        assert payment.currency == "EUR"
        assert booking.payment_status == PaymentStatus.PENDING.value

    def test_card_record_starts_processing(
        self, payment_service, create_booking, requester, payment_settings
    ):
        booking = create_booking()

        payment = payment_service.create_direct_payment(requester, booking.id, "GATEWAY_CARD")

        assert payment.status == PaymentStatus.PROCESSING.value
        assert booking.payment_status == PaymentStatus.PROCESSING.value

    def test_second_payment_is_rejected(
        self, payment_service, create_booking, requester, payment_settings
    ):
        booking = create_booking()
        payment_service.create_direct_payment(requester, booking.id, PaymentMethod.BANK_TRANSFER)

        with pytest.raises(DuplicatePaymentException) as exc_info:
            payment_service.create_direct_payment(requester, booking.id, PaymentMethod.BANK_TRANSFER)
        assert exc_info.value.code == "PAYMENT_EXISTS"

    def test_only_owner_or_staff(self, payment_service, create_booking, other_user):
        booking = create_booking()
        with pytest.raises(ForbiddenException):
            payment_service.create_direct_payment(other_user, booking.id, PaymentMethod.BANK_TRANSFER)

    def test_cancelled_booking_is_not_payable(
        self, payment_service, booking_service, create_booking, requester
    ):
        booking = create_booking()
        booking_service.cancel_booking(requester, booking.id)

        with pytest.raises(BusinessRuleException):
            payment_service.create_direct_payment(requester, booking.id, PaymentMethod.BANK_TRANSFER)


class TestGatewayCheckout:
    def test_checkout_requires_approval(self, payment_service, create_booking, requester):
        booking = create_booking()
        with pytest.raises(BusinessRuleException) as exc_info:
            payment_service.create_gateway_checkout(requester, booking.id)
        assert exc_info.value.code == "BOOKING_NOT_APPROVED"

    def test_session_expiry_is_capped(
        self, payment_service, approved_booking, requester, gateway, clock
    ):
        gateway.create_checkout_session.reset_mock()

        result = payment_service.create_gateway_checkout(requester, approved_booking.id)

        kwargs = gateway.create_checkout_session.call_args.kwargs
        assert kwargs["expires_at"] == clock.now() + timedelta(hours=24)
        assert kwargs["amount_cents"] == 10000
        assert kwargs["currency"] == "EUR"
        assert kwargs["customer_email"] == requester.email
        assert result["checkout_url"] == "https://checkout.stripe.test/cs_test_123"
        assert result["amount"] == Decimal("100.00")

    def test_settled_payment_blocks_new_checkout(
        self, payment_service, approved_booking, requester
    ):
        _pay_by_card(payment_service)

        with pytest.raises(ConflictException) as exc_info:
            payment_service.create_gateway_checkout(requester, approved_booking.id)
        assert exc_info.value.code == "PAYMENT_ALREADY_SETTLED"


class TestBankTransfer:
    def test_instructions_carry_code_and_note(
        self, payment_service, approved_booking, requester, payment_settings
    ):
        instructions = payment_service.create_bank_transfer(requester, approved_booking.id)

        code = instructions["bank_transfer_code"]
        assert code == approved_booking.payment.bank_transfer_code
        assert instructions["note"] == f"Prenotazione {code} - Sala Riunioni - 11/03/2025"
        assert instructions["iban"] == payment_settings.bank_iban
        assert instructions["account_holder"] == payment_settings.bank_account_holder
        assert instructions["amount"] == Decimal("100.00")

    def test_repeated_request_reuses_code(self, payment_service, approved_booking, requester):
        first = payment_service.create_bank_transfer(requester, approved_booking.id)
        second = payment_service.create_bank_transfer(requester, approved_booking.id)
        assert first["bank_transfer_code"] == second["bank_transfer_code"]

    def test_disabled_bank_transfer(
        self, payment_service, approved_booking, requester, payment_settings, db
    ):
        payment_settings.bank_transfer_enabled = False
        db.commit()
        with pytest.raises(BusinessRuleException) as exc_info:
            payment_service.create_bank_transfer(requester, approved_booking.id)
        assert exc_info.value.code == "BANK_TRANSFER_DISABLED"

    def test_admin_verifies_once(self, payment_service, approved_booking, admin, db):
        payment = approved_booking.payment

        verified = payment_service.verify_bank_transfer(admin, payment.id)

        assert verified.status == PaymentStatus.SUCCEEDED.value
        assert verified.method == PaymentMethod.BANK_TRANSFER.value
        assert verified.bank_transfer_verified is True
        assert verified.verified_by == admin.id
        assert verified.amount == Decimal("100.00")
        assert approved_booking.payment_status == PaymentStatus.SUCCEEDED.value
        entry = (
            db.query(AuditLog)
            .filter(AuditLog.entity == "payment", AuditLog.action == "APPROVE")
            .one()
        )
        assert entry.details["bankTransferCode"] == payment.bank_transfer_code

        with pytest.raises(InvariantViolationException) as exc_info:
            payment_service.verify_bank_transfer(admin, payment.id)
        assert exc_info.value.code == "ALREADY_VERIFIED"

    def test_manager_cannot_verify(self, payment_service, approved_booking, manager):
        with pytest.raises(ForbiddenException):
            payment_service.verify_bank_transfer(manager, approved_booking.payment.id)

    def test_pending_list_drops_verified(self, payment_service, approved_booking, admin, manager):
        assert [p.id for p in payment_service.list_pending_bank_transfers(manager)] == [
            approved_booking.payment.id
        ]

        payment_service.verify_bank_transfer(admin, approved_booking.payment.id)

        assert payment_service.list_pending_bank_transfers(manager) == []

    def test_unknown_payment(self, payment_service, admin):
        with pytest.raises(NotFoundException):
            payment_service.verify_bank_transfer(admin, "01HZZZZZZZZZZZZZZZZZZZZZZZ")


class TestWebhooks:
    def test_completed_session_settles_payment(self, payment_service, approved_booking):
        result = _pay_by_card(payment_service)

        payment = approved_booking.payment
        assert result == {
            "handled": True,
            "event_type": "checkout.session.completed",
            "payment_id": payment.id,
        }
        assert payment.status == PaymentStatus.SUCCEEDED.value
        assert payment.method == PaymentMethod.GATEWAY_CARD.value
        assert payment.stripe_payment_intent_id == "pi_test_123"
        assert approved_booking.payment_status == PaymentStatus.SUCCEEDED.value

    def test_redelivered_event_is_harmless(self, payment_service, approved_booking):
        _pay_by_card(payment_service)
        paid_at = approved_booking.payment.paid_at

        _pay_by_card(payment_service)

        assert approved_booking.payment.paid_at == paid_at
        assert approved_booking.payment.status == PaymentStatus.SUCCEEDED.value

    def test_intent_events_track_status(self, payment_service, approved_booking):
        _pay_by_card(payment_service)
        approved_booking.payment.status = PaymentStatus.PENDING.value

        payment_service.handle_gateway_event(_event("payment_intent.processing", id="pi_test_123"))
        assert approved_booking.payment.status == PaymentStatus.PROCESSING.value

        payment_service.handle_gateway_event(_event("payment_intent.payment_failed", id="pi_test_123"))
        assert approved_booking.payment.status == PaymentStatus.FAILED.value

        payment_service.handle_gateway_event(_event("payment_intent.succeeded", id="pi_test_123"))
        assert approved_booking.payment.status == PaymentStatus.SUCCEEDED.value

    def test_expired_session_keeps_open_bank_transfer(self, payment_service, approved_booking):
        payment_service.handle_gateway_event(_event("checkout.session.expired", id="cs_test_123"))

        payment = approved_booking.payment
        assert payment.checkout_url is None
        assert payment.status == PaymentStatus.PENDING.value

    def test_unknown_event_type_is_ignored(self, payment_service):
        result = payment_service.handle_gateway_event(_event("customer.created", id="cus_1"))
        assert result == {"handled": False, "event_type": "customer.created"}

    def test_unknown_session(self, payment_service, approved_booking):
        with pytest.raises(NotFoundException):
            payment_service.handle_gateway_event(
                _event("checkout.session.completed", id="cs_unknown")
            )

    def test_signature_is_checked_before_anything(
        self, payment_service, gateway, approved_booking, payment_settings
    ):
        gateway.construct_event.side_effect = WebhookSignatureException()

        with pytest.raises(WebhookSignatureException):
            payment_service.handle_gateway_webhook(b"{}", "t=1,v1=bad")

        gateway.construct_event.assert_called_once_with(b"{}", "t=1,v1=bad", "whsec_test_123")
        assert approved_booking.payment.status == PaymentStatus.PENDING.value

    def test_verified_event_is_applied(self, payment_service, gateway, approved_booking):
        gateway.construct_event.return_value = _event(
            "checkout.session.completed", id="cs_test_123", payment_intent="pi_test_123"
        )

        result = payment_service.handle_gateway_webhook(b"{}", "t=1,v1=ok")

        assert result["handled"] is True
        assert approved_booking.payment.status == PaymentStatus.SUCCEEDED.value


class TestRefunds:
    def test_full_refund(self, payment_service, approved_booking, admin, gateway, notifier):
        _pay_by_card(payment_service)

        payment = payment_service.refund_payment(admin, approved_booking.payment.id)

        gateway.create_refund.assert_called_once_with(
            secret_key="sk_test_123", payment_intent_id="pi_test_123", amount_cents=10000
        )
        assert payment.status == PaymentStatus.REFUNDED.value
        assert payment.refunded_amount == Decimal("100.00")
        assert payment.stripe_refund_id == "re_test_123"
        assert approved_booking.payment_status == PaymentStatus.REFUNDED.value
        kinds = [c.args[0] for c in notifier.send.call_args_list]
        assert NotificationKind.PAYMENT_REFUNDED in kinds

    def test_partial_then_remaining(self, payment_service, approved_booking, admin, gateway):
        _pay_by_card(payment_service)
        payment_id = approved_booking.payment.id

        partial = payment_service.refund_payment(admin, payment_id, Decimal("30"))
        assert partial.status == PaymentStatus.PARTIALLY_REFUNDED.value
        assert partial.refunded_amount == Decimal("30.00")

        rest = payment_service.refund_payment(admin, payment_id)
        assert rest.status == PaymentStatus.REFUNDED.value
        assert gateway.create_refund.call_args.kwargs["amount_cents"] == 7000

    def test_over_refund_is_rejected(self, payment_service, approved_booking, admin, gateway):
        _pay_by_card(payment_service)

        with pytest.raises(ValidationException) as exc_info:
            payment_service.refund_payment(admin, approved_booking.payment.id, Decimal("100.01"))
        assert exc_info.value.code == "INVALID_REFUND_AMOUNT"
        gateway.create_refund.assert_not_called()

    def test_unpaid_payment_is_not_refundable(self, payment_service, approved_booking, admin):
        approved_booking.payment.stripe_payment_intent_id = "pi_pending"
        with pytest.raises(BusinessRuleException) as exc_info:
            payment_service.refund_payment(admin, approved_booking.payment.id)
        assert exc_info.value.code == "PAYMENT_NOT_REFUNDABLE"

    def test_bank_transfer_is_not_refundable_here(self, payment_service, approved_booking, admin):
        payment_service.verify_bank_transfer(admin, approved_booking.payment.id)

        with pytest.raises(BusinessRuleException) as exc_info:
            payment_service.refund_payment(admin, approved_booking.payment.id)
        assert exc_info.value.code == "REFUND_NOT_SUPPORTED"

    def test_refund_requires_admin(self, payment_service, approved_booking, manager):
        with pytest.raises(ForbiddenException):
            payment_service.refund_payment(manager, approved_booking.payment.id)


def test_payment_deadline_is_the_later_of_both_options(approved_booking, clock):
    expires_at = ensure_utc(approved_booking.payment.expires_at)
    assert expires_at == clock.now() + timedelta(days=2)
    assert approved_booking.status == BookingStatus.APPROVED.value
