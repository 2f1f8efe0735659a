# backend/roombook/models/resource.py
"""
Bookable resource (room, equipment).

The catalog owns these rows; the reservation engine only reads the hourly
rate and the active flag.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
import ulid

from ..database import Base


class Resource(Base):
    __tablename__ = "resources"

    id: Mapped[str] = mapped_column(
        String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID())
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    hourly_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=func.now()
    )

    __table_args__ = (CheckConstraint("hourly_rate >= 0", name="check_resource_rate_non_negative"),)

    def __repr__(self) -> str:
        return f"<Resource {self.id} {self.name!r} rate={self.hourly_rate} active={self.is_active}>"
