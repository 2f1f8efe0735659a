# backend/roombook/repositories/payment_repository.py
"""
Payment Repository

Lookups by booking, gateway identifiers and bank-transfer reference code.
"""

import logging
from typing import List, Optional, cast

from sqlalchemy.orm import Session, joinedload

from ..core.exceptions import RepositoryException
from ..models.payment import Payment, PaymentStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class PaymentRepository(BaseRepository[Payment]):
    def __init__(self, db: Session):
        super().__init__(db, Payment)

    def get_by_booking_id(self, booking_id: str) -> Optional[Payment]:
        return self.find_one_by(booking_id=booking_id)

    def get_by_session_id(self, session_id: str) -> Optional[Payment]:
        return self.find_one_by(stripe_session_id=session_id)

    def get_by_payment_intent_id(self, payment_intent_id: str) -> Optional[Payment]:
        return self.find_one_by(stripe_payment_intent_id=payment_intent_id)

    def bank_transfer_code_exists(self, code: str) -> bool:
        return self.find_one_by(bank_transfer_code=code) is not None

    def get_pending_bank_transfers(self) -> List[Payment]:
        try:
            return cast(
                List[Payment],
                self.db.query(Payment)
                .options(joinedload(Payment.booking))
                .filter(
                    Payment.bank_transfer_code.isnot(None),
                    Payment.bank_transfer_verified.is_(False),
                    Payment.status == PaymentStatus.PENDING.value,
                )
                .order_by(Payment.created_at)
                .all(),
            )
        except Exception as e:
            self.logger.error(f"Error listing pending bank transfers: {str(e)}")
            raise RepositoryException(f"Failed to list pending bank transfers: {str(e)}")
