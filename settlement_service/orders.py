"""
Order issuing: fixes the price of a batch seat server-side, records a
pending payment attempt and mints the matching gateway order.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from settlement_service import catalog, enrollments, models, schemas
from settlement_service.errors import (
    AlreadyEnrolled,
    BatchNotPurchasable,
    GatewayUnavailable,
    NotFound,
    Unauthorized,
)
from settlement_service.gateway import GatewayClient
from settlement_service.models import BatchStatus, EnrollmentPaymentStatus, PaymentStatus

logger = logging.getLogger(__name__)

_ONE = Decimal("1")


@dataclass(frozen=True)
class IssuedOrder:
    payment_record_id: int
    order_id: str
    amount: int
    currency: str
    gateway_key: str


def to_minor_units(value: Decimal) -> int:
    return int((Decimal(value) * 100).quantize(_ONE, rounding=ROUND_HALF_UP))


def price_for(fee: Decimal, tax_rate: Decimal) -> Tuple[int, int]:
    """Return (amount, tax) in minor units for a batch fee in major units."""
    base = to_minor_units(fee)
    tax = int((Decimal(base) * Decimal(tax_rate)).quantize(_ONE, rounding=ROUND_HALF_UP))
    return base + tax, tax


def _receipt_number(student_id: str) -> str:
    return f"RCP{int(time.time() * 1000)}_{student_id[:8]}_{uuid.uuid4().hex[:6]}"


def _billing_address(billing: schemas.BillingInfo) -> Optional[str]:
    if not billing.address:
        return None
    parts = [billing.address, billing.city, billing.state]
    line = ", ".join(p for p in parts if p)
    if billing.pincode:
        line = f"{line} {billing.pincode}"
    return line


def create_order(
    db: Session,
    gateway: GatewayClient,
    student_id: Optional[str],
    batch_id: int,
    billing: schemas.BillingInfo,
    *,
    tax_rate: Decimal,
    currency: str,
) -> IssuedOrder:
    if not student_id:
        raise Unauthorized()

    batch = catalog.get_batch(db, batch_id)
    if batch is None:
        raise NotFound("batch", batch_id)
    if batch.status != BatchStatus.ACTIVE.value:
        raise BatchNotPurchasable(batch_id, f"batch is {batch.status}")

    existing = enrollments.get(db, batch_id, student_id)
    if existing is not None and existing.payment_status == EnrollmentPaymentStatus.PAID.value:
        logger.info("Rejecting order: student=%s already enrolled in batch=%s", student_id, batch_id)
        raise AlreadyEnrolled(batch_id, existing.id)

    # advisory only; the unique (batch, student) constraint is the hard guarantee
    if batch.capacity > 0 and enrollments.count_paid_seats(db, batch_id) >= batch.capacity:
        raise BatchNotPurchasable(batch_id, "batch is full")

    order_currency = batch.currency or currency
    amount, tax = price_for(batch.fee, tax_rate)

    record = models.PaymentRecord(
        batch_id=batch_id,
        student_id=student_id,
        amount=amount,
        tax_amount=tax,
        currency=order_currency,
        status=PaymentStatus.PENDING.value,
        receipt_number=_receipt_number(student_id),
        billing_name=f"{billing.first_name} {billing.last_name}".strip(),
        billing_email=billing.email,
        billing_phone=billing.phone,
        billing_address=_billing_address(billing),
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    logger.info(
        "Created payment record id=%s student=%s batch=%s amount=%s %s status=pending",
        record.id, student_id, batch_id, amount, order_currency,
    )

    try:
        order = gateway.create_order(
            amount,
            order_currency,
            record.receipt_number,
            notes={"batch_id": str(batch_id), "student_id": student_id, "payment_record_id": str(record.id)},
        )
        if order.amount != amount or order.currency != order_currency:
            raise GatewayUnavailable(
                f"gateway order {order.order_id} has {order.amount} {order.currency}, expected {amount} {order_currency}"
            )
    except GatewayUnavailable as e:
        logger.warning("Gateway order failed for payment record id=%s: %s", record.id, e.detail)
        record.failure_reason = "gateway_unavailable"
        db.commit()
        raise

    record.gateway_order_id = order.order_id
    db.commit()
    logger.info("Payment record id=%s bound to gateway order %s", record.id, order.order_id)

    return IssuedOrder(
        payment_record_id=record.id,
        order_id=order.order_id,
        amount=amount,
        currency=order_currency,
        gateway_key=gateway.key_id,
    )
