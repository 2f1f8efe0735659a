# backend/roombook/api/dependencies/auth.py
"""
Principal resolution.

Authentication happens upstream: the gateway in front of this service
verifies the session and forwards the identity in ``X-User-*`` headers.
"""

import logging
from typing import Optional

from fastapi import Header, HTTPException, status

from ...core.enums import RoleName
from ...core.permissions import Principal

logger = logging.getLogger(__name__)

_KNOWN_ROLES = {role.value for role in RoleName}


def get_current_principal(
    x_user_id: Optional[str] = Header(None),
    x_user_email: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Principal:
    """Build the acting principal from identity headers; 401 when absent."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": "Authentication required", "code": "UNAUTHENTICATED"},
        )
    role = (x_user_role or RoleName.USER.value).strip().upper()
    if role not in _KNOWN_ROLES:
        logger.info("Unknown role %r for principal %s; treating as USER", role, x_user_id)
        role = RoleName.USER.value
    return Principal(id=x_user_id.strip(), email=x_user_email, role=role)
