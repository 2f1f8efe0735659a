# backend/roombook/core/enums.py
"""
Core enums for the reservation engine.

This module contains enumeration types used throughout the application
for type safety and consistency.
"""

from enum import Enum


class RoleName(str, Enum):
    """Roles supplied by the identity provider for the acting principal."""

    ADMIN = "ADMIN"
    COMMUNITY_MANAGER = "COMMUNITY_MANAGER"
    USER = "USER"


STAFF_ROLES = frozenset({RoleName.ADMIN, RoleName.COMMUNITY_MANAGER})


class Action(str, Enum):
    """Capabilities checked at the top of each state-machine operation."""

    CREATE_BOOKING = "create_booking"
    VIEW_BOOKING = "view_booking"
    UPDATE_BOOKING = "update_booking"
    CANCEL_BOOKING = "cancel_booking"
    APPROVE_BOOKING = "approve_booking"
    REJECT_BOOKING = "reject_booking"
    MARK_PAYMENT_RECEIVED = "mark_payment_received"
    MARK_INVOICE_ISSUED = "mark_invoice_issued"
    ADMIN_UPDATE_BOOKING = "admin_update_booking"
    CREATE_MANUAL_BOOKING = "create_manual_booking"
    PURGE_BOOKING = "purge_booking"
    CREATE_PAYMENT = "create_payment"
    VERIFY_BANK_TRANSFER = "verify_bank_transfer"
    LIST_BANK_TRANSFERS = "list_bank_transfers"
    REFUND_PAYMENT = "refund_payment"
    MANAGE_PAYMENT_SETTINGS = "manage_payment_settings"
    VIEW_AUDIT_LOG = "view_audit_log"


class AuditAction(str, Enum):
    """Kinds of mutation recorded in the audit trail."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    CANCEL = "CANCEL"
    PAYMENT = "PAYMENT"
    REFUND = "REFUND"
    SETTINGS_UPDATE = "SETTINGS_UPDATE"


class RejectionReason(str, Enum):
    """Reason codes an approver must pick when rejecting a booking."""

    RESOURCE_UNAVAILABLE = "RESOURCE_UNAVAILABLE"
    MAINTENANCE_SCHEDULED = "MAINTENANCE_SCHEDULED"
    EVENT_ALREADY_BOOKED = "EVENT_ALREADY_BOOKED"
    INSUFFICIENT_DOCUMENTATION = "INSUFFICIENT_DOCUMENTATION"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    PAYMENT_ISSUES = "PAYMENT_ISSUES"
    OTHER = "OTHER"

    @property
    def message(self) -> str:
        return REJECTION_REASON_MESSAGES[self]


REJECTION_REASON_MESSAGES = {
    RejectionReason.RESOURCE_UNAVAILABLE: "La risorsa richiesta non è disponibile",
    RejectionReason.MAINTENANCE_SCHEDULED: "È prevista una manutenzione programmata",
    RejectionReason.EVENT_ALREADY_BOOKED: "Un altro evento è già stato prenotato",
    RejectionReason.INSUFFICIENT_DOCUMENTATION: "Documentazione insufficiente",
    RejectionReason.CAPACITY_EXCEEDED: "Capacità massima superata",
    RejectionReason.PAYMENT_ISSUES: "Problemi con precedenti pagamenti",
    RejectionReason.OTHER: "Altro motivo",
}


class NotificationKind(str, Enum):
    """Messages the engine asks the notification dispatcher to deliver."""

    NEW_BOOKING_ADMIN = "new_booking_admin"
    NEW_BOOKING_REQUESTER = "new_booking_requester"
    BOOKING_APPROVED = "booking_approved"
    BOOKING_REJECTED = "booking_rejected"
    PAYMENT_REMINDER = "payment_reminder"
    BOOKING_CANCELLED = "booking_cancelled"
    PAYMENT_REFUNDED = "payment_refunded"
