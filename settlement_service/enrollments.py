"""
Enrollment store: the source of truth for "student X holds a paid seat in
batch Y". Only the settlement pipeline writes through `upsert_paid`.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from settlement_service import models
from settlement_service.models import EnrollmentPaymentStatus, EnrollmentStatus

logger = logging.getLogger(__name__)


def get(db: Session, batch_id: int, student_id: str) -> Optional[models.Enrollment]:
    return (
        db.query(models.Enrollment)
        .filter(models.Enrollment.batch_id == batch_id, models.Enrollment.student_id == student_id)
        .first()
    )


def list_for_student(db: Session, student_id: str, batch_ids: List[int]) -> List[models.Enrollment]:
    if not batch_ids:
        return []
    return (
        db.query(models.Enrollment)
        .filter(models.Enrollment.student_id == student_id, models.Enrollment.batch_id.in_(batch_ids))
        .all()
    )


def count_paid_seats(db: Session, batch_id: int) -> int:
    return (
        db.query(models.Enrollment)
        .filter(
            models.Enrollment.batch_id == batch_id,
            models.Enrollment.status == EnrollmentStatus.ACTIVE.value,
            models.Enrollment.payment_status == EnrollmentPaymentStatus.PAID.value,
        )
        .count()
    )


def _mark_paid(enrollment: models.Enrollment, amount: int, now: datetime) -> None:
    enrollment.status = EnrollmentStatus.ACTIVE.value
    enrollment.payment_status = EnrollmentPaymentStatus.PAID.value
    enrollment.payment_amount = amount
    enrollment.payment_date = now
    if enrollment.enrolled_at is None:
        enrollment.enrolled_at = now


def upsert_paid(db: Session, batch_id: int, student_id: str, amount: int, now: datetime) -> models.Enrollment:
    """
    Create or activate the (batch, student) enrollment as active/paid.

    Runs inside the caller's transaction and does not commit. The insert is
    wrapped in a savepoint: if another transaction inserted the same pair
    first, the unique constraint rejects ours and the existing row is
    updated instead.
    """
    enrollment = get(db, batch_id, student_id)
    if enrollment is None:
        try:
            with db.begin_nested():
                enrollment = models.Enrollment(batch_id=batch_id, student_id=student_id, progress_percentage=0)
                _mark_paid(enrollment, amount, now)
                db.add(enrollment)
            logger.info("Created enrollment id=%s batch=%s student=%s", enrollment.id, batch_id, student_id)
            return enrollment
        except IntegrityError:
            logger.info("Enrollment for batch=%s student=%s created concurrently, updating it", batch_id, student_id)
            enrollment = get(db, batch_id, student_id)
            if enrollment is None:
                raise

    _mark_paid(enrollment, amount, now)
    db.flush()
    logger.info("Activated enrollment id=%s batch=%s student=%s", enrollment.id, batch_id, student_id)
    return enrollment
