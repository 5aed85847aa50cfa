"""Read-only views over payment records and paid enrollments for the student UI."""

import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from settlement_service import models
from settlement_service.errors import NotFound
from settlement_service.models import EnrollmentPaymentStatus, EnrollmentStatus


@dataclass
class PaymentPage:
    items: List[models.PaymentRecord]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_more(self) -> bool:
        return self.page * self.limit < self.total


def list_payments(
    db: Session,
    student_id: str,
    page: int = 1,
    limit: int = 10,
    status: Optional[str] = None,
    batch_id: Optional[int] = None,
) -> PaymentPage:
    page = max(page, 1)
    limit = max(limit, 1)
    q = db.query(models.PaymentRecord).filter(models.PaymentRecord.student_id == student_id)
    if status:
        q = q.filter(models.PaymentRecord.status == status.lower())
    if batch_id is not None:
        q = q.filter(models.PaymentRecord.batch_id == batch_id)
    total = q.count()
    items = (
        q.order_by(models.PaymentRecord.created_at.desc(), models.PaymentRecord.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return PaymentPage(items=items, page=page, limit=limit, total=total)


def get_payment(db: Session, student_id: str, payment_id: int) -> models.PaymentRecord:
    payment = db.get(models.PaymentRecord, payment_id)
    if payment is None or payment.student_id != student_id:
        raise NotFound("payment", payment_id)
    return payment


def list_enrolled_batches(db: Session, student_id: str) -> List[Tuple[models.Enrollment, models.Batch]]:
    return (
        db.query(models.Enrollment, models.Batch)
        .join(models.Batch, models.Batch.id == models.Enrollment.batch_id)
        .filter(
            models.Enrollment.student_id == student_id,
            models.Enrollment.status.in_([EnrollmentStatus.ACTIVE.value, EnrollmentStatus.COMPLETED.value]),
            models.Enrollment.payment_status == EnrollmentPaymentStatus.PAID.value,
        )
        .order_by(models.Enrollment.enrolled_at.desc(), models.Enrollment.id.desc())
        .all()
    )
