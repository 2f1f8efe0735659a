# backend/roombook/services/notification_service.py
"""
Notification dispatcher for booking lifecycle events.

``send`` never raises: delivery problems come back as
``NotificationResult(success=False, error=...)`` and are logged. Callers
dispatch after their transaction commits and do not depend on the outcome.
"""

from dataclasses import dataclass
import logging
from typing import Any, Callable, Dict, Mapping, Optional

from jinja2 import Environment, StrictUndefined
import resend
from sqlalchemy.orm import Session

from ..core.clock import Clock
from ..core.config import settings
from ..core.enums import NotificationKind
from .base import BaseService

logger = logging.getLogger(__name__)

# (subject, body) plain-text templates per notification kind
_TEMPLATES: Dict[NotificationKind, tuple] = {
    NotificationKind.NEW_BOOKING_ADMIN: (
        "Nuova richiesta di prenotazione: {{ booking.title }}",
        "{{ booking.requester }} ha richiesto {{ booking.resource_name }} "
        "dal {{ booking.start_time }} al {{ booking.end_time }}. Importo: {{ booking.total_price }}.",
    ),
    NotificationKind.NEW_BOOKING_REQUESTER: (
        "Richiesta ricevuta: {{ booking.title }}",
        "La tua richiesta per {{ booking.resource_name }} dal {{ booking.start_time }} "
        "al {{ booking.end_time }} è in attesa di approvazione.",
    ),
    NotificationKind.BOOKING_APPROVED: (
        "Prenotazione approvata: {{ booking.title }}",
        "La tua prenotazione è stata approvata. Importo dovuto: {{ amount }}."
        "{% if checkout_url %} Paga online: {{ checkout_url }}{% endif %}"
        "{% if bank_transfer %} Bonifico a {{ bank_transfer.account_holder }} "
        "IBAN {{ bank_transfer.iban }}, causale: {{ bank_transfer.note }}{% endif %}",
    ),
    NotificationKind.BOOKING_REJECTED: (
        "Prenotazione rifiutata: {{ booking.title }}",
        "La tua prenotazione è stata rifiutata. Motivo: {{ reason }}",
    ),
    NotificationKind.PAYMENT_REMINDER: (
        "Promemoria pagamento: {{ booking.title }}",
        "Mancano {{ hours_remaining }} ore alla scadenza del pagamento. "
        "Completa il pagamento qui: {{ payment_url }}",
    ),
    NotificationKind.BOOKING_CANCELLED: (
        "Prenotazione annullata: {{ booking.title }}",
        "La prenotazione è stata annullata. Motivo: {{ reason }}",
    ),
    NotificationKind.PAYMENT_REFUNDED: (
        "Rimborso emesso: {{ booking.title }}",
        "È stato emesso un rimborso di {{ amount }}.",
    ),
}

_env = Environment(undefined=StrictUndefined, autoescape=False)


@dataclass(frozen=True)
class NotificationResult:
    success: bool
    error: Optional[str] = None


Sender = Callable[[str, str, str], Any]


def resend_sender(recipient: str, subject: str, body: str) -> Any:
    """Deliver through Resend; requires ``settings.resend_api_key``."""
    resend.api_key = settings.resend_api_key
    return resend.Emails.send(
        {"from": settings.from_email, "to": recipient, "subject": subject, "text": body}
    )


def log_only_sender(recipient: str, subject: str, body: str) -> None:
    logger.info("Notification (not delivered, no transport configured) to %s: %s", recipient, subject)


def default_sender() -> Sender:
    return resend_sender if settings.resend_api_key else log_only_sender


class NotificationService(BaseService):
    """Renders and dispatches lifecycle notifications."""

    def __init__(
        self,
        db: Optional[Session] = None,
        sender: Optional[Sender] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(db, clock=clock)  # type: ignore[arg-type]
        self.sender = sender or default_sender()

    def render(self, kind: NotificationKind, payload: Mapping[str, Any]) -> tuple:
        subject_tpl, body_tpl = _TEMPLATES[kind]
        return (
            _env.from_string(subject_tpl).render(**payload),
            _env.from_string(body_tpl).render(**payload),
        )

    @BaseService.measure_operation("send_notification")
    def send(
        self,
        kind: NotificationKind,
        recipient: Optional[str],
        payload: Mapping[str, Any],
    ) -> NotificationResult:
        """Render and deliver one notification; failures are returned, not raised."""
        if not recipient:
            self.logger.warning(f"Skipping {kind.value} notification: no recipient")
            return NotificationResult(success=False, error="missing recipient")
        try:
            subject, body = self.render(kind, payload)
            self.sender(recipient, subject, body)
            self.log_operation("notification_sent", kind=kind.value, recipient=recipient)
            return NotificationResult(success=True)
        except Exception as e:
            self.logger.error(f"Failed to send {kind.value} notification to {recipient}: {str(e)}")
            return NotificationResult(success=False, error=str(e))


def booking_context(booking: Any) -> Dict[str, Any]:
    """Template variables describing a booking."""
    resource = getattr(booking, "resource", None)
    return {
        "id": booking.id,
        "title": booking.title,
        "resource_name": getattr(resource, "name", booking.resource_id),
        "start_time": booking.start_time.isoformat() if booking.start_time else "",
        "end_time": booking.end_time.isoformat() if booking.end_time else "",
        "total_price": str(booking.total_price),
        "status": booking.status,
        "requester": booking.requester_email or booking.guest_name or booking.requester_id,
    }
