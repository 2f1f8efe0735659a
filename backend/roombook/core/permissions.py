# backend/roombook/core/permissions.py
"""
Capability checks for booking and payment operations.

Every state-machine method calls ``authorize`` first. The identity provider
is trusted to supply the principal; this module only decides whether that
principal may perform the action on the given booking or payment.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Optional

from .enums import STAFF_ROLES, Action, RoleName
from .exceptions import ForbiddenException

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """The acting user as supplied by the identity layer."""

    id: str
    email: Optional[str] = None
    role: str = RoleName.USER.value

    @property
    def is_staff(self) -> bool:
        return self.role in {r.value for r in STAFF_ROLES}

    @property
    def is_admin(self) -> bool:
        return self.role == RoleName.ADMIN.value


SYSTEM_PRINCIPAL = Principal(id="system", email="system", role="SYSTEM")

_ADMIN_ONLY = frozenset(
    {
        Action.PURGE_BOOKING,
        Action.VERIFY_BANK_TRANSFER,
        Action.REFUND_PAYMENT,
        Action.MANAGE_PAYMENT_SETTINGS,
        Action.VIEW_AUDIT_LOG,
    }
)

_STAFF_ONLY = frozenset(
    {
        Action.APPROVE_BOOKING,
        Action.REJECT_BOOKING,
        Action.MARK_PAYMENT_RECEIVED,
        Action.MARK_INVOICE_ISSUED,
        Action.ADMIN_UPDATE_BOOKING,
        Action.CREATE_MANUAL_BOOKING,
        Action.LIST_BANK_TRANSFERS,
    }
)

# Owner-scoped actions; staff may also act on any booking except where noted.
_OWNER_ONLY = frozenset({Action.UPDATE_BOOKING})
_OWNER_OR_STAFF = frozenset({Action.VIEW_BOOKING, Action.CANCEL_BOOKING, Action.CREATE_PAYMENT})


def _owner_id(resource: Any) -> Optional[str]:
    for attr in ("requester_id", "user_id"):
        value = getattr(resource, attr, None)
        if value is not None:
            return str(value)
    booking = getattr(resource, "booking", None)
    if booking is not None and booking is not resource:
        return _owner_id(booking)
    return None


def is_allowed(principal: Principal, action: Action, resource: Any = None) -> bool:
    """Pure decision function: may ``principal`` perform ``action`` on ``resource``?"""
    if principal is SYSTEM_PRINCIPAL:
        return True
    if action in _ADMIN_ONLY:
        return principal.is_admin
    if action in _STAFF_ONLY:
        return principal.is_staff
    if action in _OWNER_ONLY:
        return resource is not None and _owner_id(resource) == principal.id
    if action in _OWNER_OR_STAFF:
        if principal.is_staff:
            return True
        return resource is not None and _owner_id(resource) == principal.id
    # Remaining actions only require an authenticated principal.
    return bool(principal.id)


def authorize(principal: Principal, action: Action, resource: Any = None) -> bool:
    """Return True when allowed, otherwise raise a ForbiddenException tagged with the action."""
    if is_allowed(principal, action, resource):
        return True
    logger.info(
        "Denied %s for principal %s (role=%s)",
        action.value,
        principal.id,
        principal.role,
    )
    raise ForbiddenException(
        f"Not allowed to {action.value.replace('_', ' ')}",
        code="FORBIDDEN",
        details={"action": action.value},
    )
