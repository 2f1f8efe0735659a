"""Booking price computation: hours x hourly rate x quantity, summed over lines."""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Tuple

from ..core.clock import ensure_utc

# Scale of Booking.total_price; payment amounts are rounded to cents later
PRICE_SCALE = Decimal("0.0001")


def booking_hours(start_time: datetime, end_time: datetime) -> Decimal:
    seconds = int((ensure_utc(end_time) - ensure_utc(start_time)).total_seconds())
    return Decimal(seconds) / Decimal(3600)


def calculate_price(
    start_time: datetime,
    end_time: datetime,
    hourly_rate: Decimal,
    additional: Iterable[Tuple[Decimal, int]] = (),
) -> Decimal:
    """
    Price of the main resource plus add-on lines, each ``(hourly_rate, quantity)``.

    No rounding happens here; amounts are converted to minor units only when a
    payment is created.
    """
    hours = booking_hours(start_time, end_time)
    total = hours * Decimal(hourly_rate)
    for rate, quantity in additional:
        total += hours * Decimal(rate) * int(quantity)
    return total


def stored_price(price: Decimal) -> Decimal:
    """Quantize a computed price to the scale the booking row keeps."""
    return Decimal(price).quantize(PRICE_SCALE, rounding=ROUND_HALF_UP)


def price_for_booking(booking) -> Decimal:
    """Recompute a persisted booking's price from current resource rates."""
    return calculate_price(
        booking.start_time,
        booking.end_time,
        booking.resource.hourly_rate,
        [(line.resource.hourly_rate, line.quantity) for line in booking.additional_resources],
    )
