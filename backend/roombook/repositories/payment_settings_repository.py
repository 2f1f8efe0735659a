# backend/roombook/repositories/payment_settings_repository.py
"""Single-row store for payment settings."""

import logging
from typing import Optional, cast

from sqlalchemy.orm import Session

from ..models.payment_settings import PaymentSettings, default_payment_settings
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class PaymentSettingsRepository(BaseRepository[PaymentSettings]):
    def __init__(self, db: Session):
        super().__init__(db, PaymentSettings)

    def get_current(self) -> Optional[PaymentSettings]:
        return cast(
            Optional[PaymentSettings],
            self.db.query(PaymentSettings).order_by(PaymentSettings.created_at).first(),
        )

    def get_or_create(self) -> PaymentSettings:
        """Return the settings row, materializing defaults on first access."""
        current = self.get_current()
        if current is not None:
            return current
        self.logger.info("No payment settings row found; creating defaults")
        return self.create(**default_payment_settings())
