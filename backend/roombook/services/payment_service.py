# backend/roombook/services/payment_service.py
"""
Payment Orchestrator

Owns the one Payment row a booking may have and the two ways of settling it:

- a hosted Stripe checkout (``GATEWAY_CARD``), confirmed by webhook;
- a bank transfer matched by a remittance reference code
  (``BANK_TRANSFER``), confirmed by an admin.

Both options may be offered on the same row after approval; the method is
fixed when the payment actually settles. Gateway calls run outside database
transactions so a slow gateway never holds a row lock.
"""

from datetime import datetime, timedelta
from decimal import Decimal
import logging
import secrets
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.clock import Clock, ensure_utc
from ..core.config import settings
from ..core.enums import Action, AuditAction, NotificationKind
from ..core.exceptions import (
    BusinessRuleException,
    ConflictException,
    DuplicatePaymentException,
    InvariantViolationException,
    NotFoundException,
    ServiceException,
    ValidationException,
)
from ..core.permissions import SYSTEM_PRINCIPAL, Principal, authorize
from ..models.booking import Booking, BookingStatus
from ..models.payment import Payment, PaymentMethod, PaymentStatus, round_amount, to_minor_units
from ..models.payment_settings import DEFAULT_BANK_TRANSFER_NOTE, PaymentSettings
from ..repositories.factory import RepositoryFactory
from .audit_service import AuditService
from .base import BaseService
from .notification_service import NotificationService, booking_context
from .payment_settings_service import PaymentSettingsService
from .pricing import price_for_booking
from .stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)

# Stripe rejects checkout sessions that live longer than a day
STRIPE_MAX_SESSION_LIFETIME = timedelta(hours=24)

# No 0/O or 1/I so codes survive being read aloud or retyped
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_SUFFIX_LENGTH = 4
CODE_MAX_ATTEMPTS = 5

_SETTLED_STATUSES = frozenset(
    {
        PaymentStatus.SUCCEEDED.value,
        PaymentStatus.REFUNDED.value,
        PaymentStatus.PARTIALLY_REFUNDED.value,
    }
)
_REFUNDABLE_STATUSES = frozenset(
    {PaymentStatus.SUCCEEDED.value, PaymentStatus.PARTIALLY_REFUNDED.value}
)


def render_remittance_note(
    template: Optional[str], *, code: str, resource_name: str, start_time: datetime
) -> str:
    """Fill the ``{CODICE}``, ``{RISORSA}`` and ``{DATA}`` placeholders."""
    note = template or DEFAULT_BANK_TRANSFER_NOTE
    return (
        note.replace("{CODICE}", code)
        .replace("{RISORSA}", resource_name)
        .replace("{DATA}", ensure_utc(start_time).strftime("%d/%m/%Y"))
    )


def generate_bank_transfer_code(booking_id: str, now: datetime) -> str:
    """Reference code: booking id fragment, date stamp, random suffix."""
    fragment = booking_id[-6:].upper()
    suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_SUFFIX_LENGTH))
    return f"BK-{fragment}-{now.strftime('%y%m%d')}-{suffix}"


class PaymentService(BaseService):
    """Creates, settles and refunds booking payments."""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        gateway: Optional[StripeGateway] = None,
        notification_service: Optional[NotificationService] = None,
        settings_service: Optional[PaymentSettingsService] = None,
    ):
        super().__init__(db, clock=clock)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.gateway = gateway or StripeGateway()
        self.notification_service = notification_service or NotificationService(
            db, clock=self.clock
        )
        self.settings_service = settings_service or PaymentSettingsService(db, clock=self.clock)
        self.audit_service = AuditService(db, clock=self.clock)

    # Lookups

    def _get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_booking_with_details(booking_id)
        if not booking:
            raise NotFoundException("Booking not found", code="BOOKING_NOT_FOUND")
        return booking

    def _get_payment(self, payment_id: str, for_update: bool = False) -> Payment:
        payment = self.payment_repository.get_by_id(payment_id, for_update=for_update)
        if not payment:
            raise NotFoundException("Payment not found", code="PAYMENT_NOT_FOUND")
        return payment

    def _require_approved(self, booking: Booking) -> None:
        if booking.status != BookingStatus.APPROVED.value:
            raise BusinessRuleException(
                "Payment options are only available for approved bookings",
                code="BOOKING_NOT_APPROVED",
                details={"status": booking.status},
            )

    @staticmethod
    def _ensure_open(payment: Optional[Payment]) -> None:
        if payment is not None and payment.status in _SETTLED_STATUSES:
            raise ConflictException(
                "This booking has already been paid",
                code="PAYMENT_ALREADY_SETTLED",
                details={"payment_id": payment.id, "status": payment.status},
            )

    # Direct payment

    @BaseService.measure_operation("create_direct_payment")
    def create_direct_payment(
        self, principal: Principal, booking_id: str, method: PaymentMethod
    ) -> Payment:
        """
        Requester-initiated payment record, available before approval.

        Bank transfers start PENDING; gateway card payments start PROCESSING.
        """
        booking = self._get_booking(booking_id)
        authorize(principal, Action.CREATE_PAYMENT, booking)

        if not booking.is_live:
            raise BusinessRuleException(
                f"Cannot create a payment for a {booking.status.lower()} booking",
                code="BOOKING_NOT_PAYABLE",
            )
        if self.payment_repository.get_by_booking_id(booking.id):
            raise DuplicatePaymentException(booking.id)

        method = PaymentMethod(method)
        current = self.settings_service.get_settings()
        amount = round_amount(price_for_booking(booking))
        status = (
            PaymentStatus.PROCESSING
            if method == PaymentMethod.GATEWAY_CARD
            else PaymentStatus.PENDING
        )

        try:
            with self.transaction():
                payment = self.payment_repository.create(
                    booking_id=booking.id,
                    amount=amount,
                    currency=current.currency,
                    method=method.value,
                    status=status.value,
                    expires_at=self.now() + timedelta(days=current.payment_deadline_days),
                )
                booking.payment_status = status.value
                self.audit_service.log(
                    AuditAction.PAYMENT,
                    "payment",
                    entity_id=payment.id,
                    description=f"Payment created for booking {booking.id}",
                    actor=principal,
                    metadata={"bookingId": booking.id, "method": method, "amount": amount},
                )
        except IntegrityError:
            raise DuplicatePaymentException(booking.id)

        self.log_operation("direct_payment_created", booking_id=booking.id, method=method.value)
        return payment

    # Gateway checkout

    @BaseService.measure_operation("create_gateway_checkout")
    def create_gateway_checkout(self, principal: Principal, booking_id: str) -> Dict[str, Any]:
        booking = self._get_booking(booking_id)
        authorize(principal, Action.CREATE_PAYMENT, booking)
        self._require_approved(booking)
        payment = self.open_gateway_checkout(booking, actor=principal)
        return {
            "payment_id": payment.id,
            "session_id": payment.stripe_session_id,
            "checkout_url": payment.checkout_url,
            "amount": payment.amount,
            "currency": payment.currency,
            "expires_at": payment.expires_at,
        }

    def open_gateway_checkout(
        self,
        booking: Booking,
        amount: Optional[Decimal] = None,
        actor: Any = None,
    ) -> Payment:
        """
        Create a hosted checkout session and persist it on the booking's payment.

        The gateway is called before the transaction opens; on gateway failure
        nothing is written.
        """
        existing = self.payment_repository.get_by_booking_id(booking.id)
        self._ensure_open(existing)

        current = self.settings_service.get_settings()
        credentials = self.settings_service.gateway_credentials()
        charge = self._resolve_charge(booking, existing, amount)

        now = self.now()
        expires_at = now + timedelta(hours=settings.gateway_checkout_expiry_hours)
        session_expires_at = min(expires_at, now + STRIPE_MAX_SESSION_LIFETIME)
        resource_name = booking.resource.name if booking.resource else booking.resource_id

        session = self.gateway.create_checkout_session(
            secret_key=credentials.secret_key,
            booking_id=booking.id,
            description=f"{resource_name} - {booking.title}",
            amount_cents=to_minor_units(charge),
            currency=current.currency,
            expires_at=session_expires_at,
            success_url=(
                f"{settings.frontend_url}/bookings/{booking.id}/payment/success"
                "?session_id={CHECKOUT_SESSION_ID}"
            ),
            cancel_url=f"{settings.frontend_url}/bookings/{booking.id}/payment",
            customer_email=booking.recipient_email,
        )

        with self.transaction():
            payment = existing or self.payment_repository.create(
                booking_id=booking.id,
                amount=charge,
                currency=current.currency,
                method=PaymentMethod.GATEWAY_CARD.value,
                status=PaymentStatus.PENDING.value,
            )
            self.payment_repository.update(
                payment,
                amount=charge,
                stripe_session_id=session.id,
                stripe_payment_intent_id=session.payment_intent_id
                or payment.stripe_payment_intent_id,
                checkout_url=session.url,
                checkout_expires_at=session_expires_at,
                expires_at=self._later_expiry(payment.expires_at, expires_at),
                status=PaymentStatus.PENDING.value,
            )
            booking.payment_status = PaymentStatus.PENDING.value
            self.audit_service.log(
                AuditAction.PAYMENT,
                "payment",
                entity_id=payment.id,
                description=f"Checkout session created - Session: {session.id}",
                actor=actor or SYSTEM_PRINCIPAL,
                metadata={
                    "bookingId": booking.id,
                    "sessionId": session.id,
                    "amount": charge,
                    "expiresAt": expires_at,
                },
            )

        self.logger.info(f"Checkout session {session.id} created for booking {booking.id}")
        return payment

    # Bank transfer

    @BaseService.measure_operation("create_bank_transfer")
    def create_bank_transfer(self, principal: Principal, booking_id: str) -> Dict[str, Any]:
        booking = self._get_booking(booking_id)
        authorize(principal, Action.CREATE_PAYMENT, booking)
        self._require_approved(booking)
        payment = self.open_bank_transfer(booking, actor=principal)
        return self.bank_transfer_instructions(payment)

    def open_bank_transfer(
        self,
        booking: Booking,
        amount: Optional[Decimal] = None,
        actor: Any = None,
    ) -> Payment:
        """
        Issue (or reuse) the booking's remittance reference code.

        A payment that already carries an unverified code keeps it, so a
        repeated request hands the payer the same reference.
        """
        current = self.settings_service.get_settings()
        if not current.bank_transfer_enabled:
            raise BusinessRuleException(
                "Bank transfer payments are not enabled", code="BANK_TRANSFER_DISABLED"
            )

        existing = self.payment_repository.get_by_booking_id(booking.id)
        self._ensure_open(existing)
        charge = self._resolve_charge(booking, existing, amount)
        now = self.now()
        expires_at = now + timedelta(days=current.payment_deadline_days)
        resource_name = booking.resource.name if booking.resource else booking.resource_id

        with self.transaction():
            if existing is not None and existing.bank_transfer_code:
                code = existing.bank_transfer_code
            else:
                code = self._unique_bank_transfer_code(booking.id, now)
            note = render_remittance_note(
                current.bank_transfer_note,
                code=code,
                resource_name=resource_name,
                start_time=booking.start_time,
            )
            payment = existing or self.payment_repository.create(
                booking_id=booking.id,
                amount=charge,
                currency=current.currency,
                method=PaymentMethod.BANK_TRANSFER.value,
                status=PaymentStatus.PENDING.value,
            )
            self.payment_repository.update(
                payment,
                amount=charge,
                bank_transfer_code=code,
                bank_transfer_note=note,
                expires_at=self._later_expiry(payment.expires_at, expires_at),
                status=PaymentStatus.PENDING.value,
            )
            booking.payment_status = PaymentStatus.PENDING.value
            self.audit_service.log(
                AuditAction.PAYMENT,
                "payment",
                entity_id=payment.id,
                description=f"Bank transfer requested - Code: {code}",
                actor=actor or SYSTEM_PRINCIPAL,
                metadata={"bookingId": booking.id, "bankTransferCode": code, "amount": charge},
            )

        self.logger.info(f"Bank transfer code {code} issued for booking {booking.id}")
        return payment

    def bank_transfer_instructions(
        self, payment: Payment, current: Optional[PaymentSettings] = None
    ) -> Dict[str, Any]:
        """What the payer needs to make the transfer."""
        current = current or self.settings_service.get_settings()
        return {
            "payment_id": payment.id,
            "bank_transfer_code": payment.bank_transfer_code,
            "amount": payment.amount,
            "currency": payment.currency,
            "expires_at": payment.expires_at,
            "bank_name": current.bank_name,
            "account_holder": current.bank_account_holder,
            "iban": current.bank_iban,
            "bic": current.bank_bic,
            "address": current.bank_address,
            "note": payment.bank_transfer_note,
        }

    def _unique_bank_transfer_code(self, booking_id: str, now: datetime) -> str:
        for _ in range(CODE_MAX_ATTEMPTS):
            code = generate_bank_transfer_code(booking_id, now)
            if not self.payment_repository.bank_transfer_code_exists(code):
                return code
            self.logger.warning(f"Bank transfer code collision on {code}, retrying")
        raise ServiceException(
            "Could not generate a unique bank transfer code", code="CODE_GENERATION_FAILED"
        )

    @BaseService.measure_operation("verify_bank_transfer")
    def verify_bank_transfer(self, principal: Principal, payment_id: str) -> Payment:
        """
        Admin attestation that the transfer arrived.

        Once only: a second verification raises instead of double-counting.
        """
        authorize(principal, Action.VERIFY_BANK_TRANSFER)

        with self.transaction():
            payment = self._get_payment(payment_id, for_update=True)
            if not payment.bank_transfer_code:
                raise BusinessRuleException(
                    "Payment has no bank transfer to verify", code="NOT_A_BANK_TRANSFER"
                )
            if payment.bank_transfer_verified:
                raise InvariantViolationException(
                    "Bank transfer already verified",
                    code="ALREADY_VERIFIED",
                    details={"payment_id": payment.id},
                )
            if payment.status in _SETTLED_STATUSES:
                raise InvariantViolationException(
                    "Payment is already settled",
                    code="PAYMENT_ALREADY_SETTLED",
                    details={"payment_id": payment.id, "status": payment.status},
                )

            now = self.now()
            self.payment_repository.update(
                payment,
                status=PaymentStatus.SUCCEEDED.value,
                method=PaymentMethod.BANK_TRANSFER.value,
                bank_transfer_verified=True,
                bank_transfer_verified_at=now,
                verified_by=principal.id,
                paid_at=now,
            )
            payment.booking.payment_status = PaymentStatus.SUCCEEDED.value
            self.audit_service.log(
                AuditAction.APPROVE,
                "payment",
                entity_id=payment.id,
                description=f"Bank transfer verified - Code: {payment.bank_transfer_code}",
                actor=principal,
                metadata={
                    "paymentId": payment.id,
                    "bankTransferCode": payment.bank_transfer_code,
                    "amount": payment.amount,
                },
            )

        self.logger.info(f"Bank transfer verified for payment {payment.id} by {principal.id}")
        return payment

    def list_pending_bank_transfers(self, principal: Principal) -> List[Payment]:
        authorize(principal, Action.LIST_BANK_TRANSFERS)
        return self.payment_repository.get_pending_bank_transfers()

    # Webhooks

    def handle_gateway_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify and apply a Stripe webhook.

        Signature failures raise before anything is read or written.
        """
        credentials = self.settings_service.gateway_credentials()
        event = self.gateway.construct_event(payload, signature, credentials.webhook_secret)
        return self.handle_gateway_event(event)

    @BaseService.measure_operation("handle_gateway_event")
    def handle_gateway_event(self, event: Mapping[str, Any]) -> Dict[str, Any]:
        event_type = str(event.get("type", ""))
        obj = event.get("data", {}).get("object", {}) or {}
        self.logger.info(f"Processing gateway event {event.get('id')} ({event_type})")

        if event_type == "checkout.session.completed":
            payment = self._payment_for_session(obj.get("id"))
            if obj.get("payment_status") in (None, "paid"):
                self._mark_gateway_succeeded(payment, obj.get("payment_intent"))
            else:
                self._set_gateway_status(
                    payment, PaymentStatus.PROCESSING, obj.get("payment_intent")
                )
        elif event_type == "checkout.session.expired":
            payment = self._payment_for_session(obj.get("id"))
            self._expire_checkout(payment)
        elif event_type == "payment_intent.succeeded":
            payment = self._payment_for_intent(obj.get("id"))
            self._mark_gateway_succeeded(payment, obj.get("id"))
        elif event_type == "payment_intent.processing":
            payment = self._payment_for_intent(obj.get("id"))
            self._set_gateway_status(payment, PaymentStatus.PROCESSING)
        elif event_type == "payment_intent.payment_failed":
            payment = self._payment_for_intent(obj.get("id"))
            self._set_gateway_status(payment, PaymentStatus.FAILED)
        else:
            self.logger.debug(f"Ignoring unhandled gateway event type {event_type}")
            return {"handled": False, "event_type": event_type}

        return {"handled": True, "event_type": event_type, "payment_id": payment.id}

    def _payment_for_session(self, session_id: Optional[str]) -> Payment:
        payment = self.payment_repository.get_by_session_id(session_id) if session_id else None
        if not payment:
            raise NotFoundException(
                "No payment matches this checkout session",
                code="PAYMENT_NOT_FOUND",
                details={"session_id": session_id},
            )
        return payment

    def _payment_for_intent(self, intent_id: Optional[str]) -> Payment:
        payment = self.payment_repository.get_by_payment_intent_id(intent_id) if intent_id else None
        if not payment:
            raise NotFoundException(
                "No payment matches this payment intent",
                code="PAYMENT_NOT_FOUND",
                details={"payment_intent_id": intent_id},
            )
        return payment

    def _mark_gateway_succeeded(self, payment: Payment, intent_id: Optional[str]) -> None:
        if payment.status in _SETTLED_STATUSES:
            # Stripe redelivers events; a settled payment stays as it is
            self.logger.info(f"Payment {payment.id} already settled, ignoring duplicate event")
            return
        with self.transaction():
            self.payment_repository.update(
                payment,
                status=PaymentStatus.SUCCEEDED.value,
                method=PaymentMethod.GATEWAY_CARD.value,
                stripe_payment_intent_id=intent_id or payment.stripe_payment_intent_id,
                paid_at=self.now(),
            )
            payment.booking.payment_status = PaymentStatus.SUCCEEDED.value
            self.audit_service.log(
                AuditAction.PAYMENT,
                "payment",
                entity_id=payment.id,
                description="Card payment confirmed by gateway",
                actor=SYSTEM_PRINCIPAL,
                metadata={"bookingId": payment.booking_id, "paymentIntentId": intent_id},
            )
        self.logger.info(f"Payment {payment.id} succeeded via gateway")

    def _set_gateway_status(
        self, payment: Payment, status: PaymentStatus, intent_id: Optional[str] = None
    ) -> None:
        if payment.status in _SETTLED_STATUSES:
            self.logger.warning(
                f"Ignoring {status.value} for settled payment {payment.id} ({payment.status})"
            )
            return
        with self.transaction():
            changes: Dict[str, Any] = {"status": status.value}
            if intent_id:
                changes["stripe_payment_intent_id"] = intent_id
            self.payment_repository.update(payment, **changes)
        self.logger.info(f"Payment {payment.id} moved to {status.value}")

    def _expire_checkout(self, payment: Payment) -> None:
        """Drop the dead session; the payment fails only if no bank transfer remains open."""
        if payment.status in _SETTLED_STATUSES:
            return
        with self.transaction():
            changes: Dict[str, Any] = {"checkout_url": None}
            if not payment.bank_transfer_code:
                changes["status"] = PaymentStatus.FAILED.value
            self.payment_repository.update(payment, **changes)
        self.logger.info(f"Checkout session expired for payment {payment.id}")

    # Refunds

    @BaseService.measure_operation("refund_payment")
    def refund_payment(
        self, principal: Principal, payment_id: str, amount: Optional[Decimal] = None
    ) -> Payment:
        authorize(principal, Action.REFUND_PAYMENT)
        payment = self._get_payment(payment_id)
        return self.issue_refund(payment, amount=amount, actor=principal)

    def issue_refund(
        self,
        payment: Payment,
        amount: Optional[Decimal] = None,
        actor: Any = None,
        reason: Optional[str] = None,
    ) -> Payment:
        """
        Refund all (default) or part of what remains on a gateway payment.

        Bank-transfer payments have no gateway intent and cannot be refunded
        here; they are settled out of band.
        """
        if not payment.stripe_payment_intent_id:
            raise BusinessRuleException(
                "Only gateway payments can be refunded automatically",
                code="REFUND_NOT_SUPPORTED",
                details={"payment_id": payment.id},
            )
        if payment.status not in _REFUNDABLE_STATUSES:
            raise BusinessRuleException(
                "Only settled payments can be refunded",
                code="PAYMENT_NOT_REFUNDABLE",
                details={"payment_id": payment.id, "status": payment.status},
            )

        already = Decimal(payment.refunded_amount or 0)
        remaining = Decimal(payment.amount) - already
        refund_amount = round_amount(amount) if amount is not None else remaining
        if refund_amount <= 0 or refund_amount > remaining:
            raise ValidationException(
                "Refund amount must be positive and not exceed the remaining balance",
                code="INVALID_REFUND_AMOUNT",
                details={"requested": str(refund_amount), "remaining": str(remaining)},
            )

        credentials = self.settings_service.gateway_credentials()
        refund_id = self.gateway.create_refund(
            secret_key=credentials.secret_key,
            payment_intent_id=payment.stripe_payment_intent_id,
            amount_cents=to_minor_units(refund_amount),
        )

        total = already + refund_amount
        status = (
            PaymentStatus.REFUNDED
            if total >= Decimal(payment.amount)
            else PaymentStatus.PARTIALLY_REFUNDED
        )
        with self.transaction():
            self.payment_repository.update(
                payment,
                refunded_amount=total,
                refunded_at=self.now(),
                stripe_refund_id=refund_id,
                status=status.value,
            )
            payment.booking.payment_status = status.value
            self.audit_service.log(
                AuditAction.REFUND,
                "payment",
                entity_id=payment.id,
                description=f"Refund of {refund_amount} {payment.currency} issued",
                actor=actor or SYSTEM_PRINCIPAL,
                metadata={
                    "bookingId": payment.booking_id,
                    "refundId": refund_id,
                    "amount": refund_amount,
                    "refundedTotal": total,
                    "reason": reason,
                },
            )

        self.logger.info(f"Refund {refund_id} issued for payment {payment.id} ({status.value})")
        booking = payment.booking
        self.notification_service.send(
            NotificationKind.PAYMENT_REFUNDED,
            booking.recipient_email,
            {"booking": booking_context(booking), "amount": f"{refund_amount} {payment.currency}"},
        )
        return payment

    # Helpers

    @staticmethod
    def _resolve_charge(
        booking: Booking, existing: Optional[Payment], amount: Optional[Decimal]
    ) -> Decimal:
        if amount is not None:
            return round_amount(amount)
        if existing is not None:
            return round_amount(existing.amount)
        return round_amount(booking.total_price)

    @staticmethod
    def _later_expiry(current: Optional[datetime], candidate: datetime) -> datetime:
        if current is None:
            return candidate
        return max(ensure_utc(current), candidate)
