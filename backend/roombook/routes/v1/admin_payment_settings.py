# backend/roombook/routes/v1/admin_payment_settings.py
"""Admin payment settings. Gateway secrets are write-only and come back masked."""

import asyncio

from fastapi import APIRouter, Body, Depends

from ...api.dependencies import get_current_principal, get_payment_settings_service
from ...core.exceptions import DomainException
from ...core.permissions import Principal
from ...errors import handle_domain_exception
from ...schemas.payment_settings import PaymentSettingsResponse, PaymentSettingsUpdate
from ...services.payment_settings_service import PaymentSettingsService

router = APIRouter(tags=["admin-payment-settings"])


@router.get("", response_model=PaymentSettingsResponse)
async def get_payment_settings(
    current_principal: Principal = Depends(get_current_principal),
    settings_service: PaymentSettingsService = Depends(get_payment_settings_service),
) -> PaymentSettingsResponse:
    try:
        data = await asyncio.to_thread(settings_service.get_masked_settings, current_principal)
        return PaymentSettingsResponse(**data)
    except DomainException as e:
        handle_domain_exception(e)


@router.put("", response_model=PaymentSettingsResponse)
async def update_payment_settings(
    update_data: PaymentSettingsUpdate = Body(...),
    current_principal: Principal = Depends(get_current_principal),
    settings_service: PaymentSettingsService = Depends(get_payment_settings_service),
) -> PaymentSettingsResponse:
    """
    Partial update; omitted fields are unchanged.

    Sending the masked placeholder (or an empty string) for a secret keeps
    the stored secret.
    """
    try:
        data = await asyncio.to_thread(
            settings_service.update_settings, current_principal, update_data.changes()
        )
        return PaymentSettingsResponse(**data)
    except DomainException as e:
        handle_domain_exception(e)
