"""
Entitlement evaluation for batch content.

A student may see a batch's learning content only while holding an active
(or completed) enrollment that is paid. Everything else is locked with a
reason the UI can act on. Locked is a normal return value; only a missing
batch/subject/chapter raises (NotFound).

Decisions are computed per request and never cached: enrollment state may
change between two page loads.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from settlement_service import catalog, enrollments, models
from settlement_service.errors import NotFound
from settlement_service.models import EnrollmentPaymentStatus, EnrollmentStatus


class LockReason(str, enum.Enum):
    NOT_ENROLLED = "not_enrolled"
    PAYMENT_PENDING = "payment_pending"
    DROPPED = "dropped"


LOCK_MESSAGES = {
    LockReason.NOT_ENROLLED: "Enroll in this batch to access its content.",
    LockReason.PAYMENT_PENDING: "Complete your payment to access this batch.",
    LockReason.DROPPED: "Your enrollment in this batch has ended.",
}

_UNLOCKING_STATUSES = (EnrollmentStatus.ACTIVE.value, EnrollmentStatus.COMPLETED.value)
_ENDED_STATUSES = (EnrollmentStatus.DROPPED.value, EnrollmentStatus.INACTIVE.value)


@dataclass(frozen=True)
class AccessDecision:
    unlocked: bool
    reason: Optional[LockReason] = None
    message: Optional[str] = None

    @classmethod
    def allow(cls) -> "AccessDecision":
        return cls(unlocked=True)

    @classmethod
    def lock(cls, reason: LockReason) -> "AccessDecision":
        return cls(unlocked=False, reason=reason, message=LOCK_MESSAGES[reason])

    def to_dict(self) -> dict:
        d: dict = {"unlocked": self.unlocked}
        if self.reason is not None:
            d["reason"] = self.reason.value
            d["message"] = self.message
        return d


@dataclass(frozen=True)
class ResourcePath:
    batch_id: int
    subject_id: Optional[int] = None
    chapter_id: Optional[int] = None

    def __post_init__(self):
        if self.chapter_id is not None and self.subject_id is None:
            raise ValueError("chapter_id requires subject_id")


def decide(enrollment: Optional[models.Enrollment]) -> AccessDecision:
    """Map an enrollment row (or its absence) to an access decision."""
    if enrollment is None:
        return AccessDecision.lock(LockReason.NOT_ENROLLED)
    if enrollment.status in _ENDED_STATUSES:
        return AccessDecision.lock(LockReason.DROPPED)
    if enrollment.payment_status == EnrollmentPaymentStatus.REFUNDED.value:
        return AccessDecision.lock(LockReason.NOT_ENROLLED)
    if enrollment.payment_status == EnrollmentPaymentStatus.PAID.value and enrollment.status in _UNLOCKING_STATUSES:
        return AccessDecision.allow()
    # pending enrollment or pending/failed payment: never unlocks
    return AccessDecision.lock(LockReason.PAYMENT_PENDING)


def _resolve(db: Session, path: ResourcePath) -> catalog.BatchSnapshot:
    batch = catalog.get_batch(db, path.batch_id)
    if batch is None:
        raise NotFound("batch", path.batch_id)
    if path.subject_id is not None and catalog.get_subject(db, path.batch_id, path.subject_id) is None:
        raise NotFound("subject", path.subject_id)
    if path.chapter_id is not None and catalog.get_chapter(db, path.subject_id, path.chapter_id) is None:
        raise NotFound("chapter", path.chapter_id)
    return batch


def evaluate(db: Session, student_id: Optional[str], path: ResourcePath, is_admin: bool = False) -> AccessDecision:
    _resolve(db, path)
    if is_admin:
        return AccessDecision.allow()
    if not student_id:
        return AccessDecision.lock(LockReason.NOT_ENROLLED)
    # Subject/chapter level overrides (requires_enrollment) are not honoured yet:
    # all content is gated on the batch enrollment.
    return decide(enrollments.get(db, path.batch_id, student_id))


@dataclass
class BatchEnrollmentStatus:
    batch_id: int
    is_enrolled: bool
    status: Optional[str] = None
    payment_status: Optional[str] = None
    enrolled_at: Optional[datetime] = None
    decision: AccessDecision = field(default_factory=lambda: AccessDecision.lock(LockReason.NOT_ENROLLED))


def evaluate_many(db: Session, student_id: str, batch_ids: List[int]) -> Dict[int, BatchEnrollmentStatus]:
    """Enrollment status for several batches at once; unknown batches simply read as not enrolled."""
    rows = {e.batch_id: e for e in enrollments.list_for_student(db, student_id, batch_ids)}
    result = {}
    for batch_id in batch_ids:
        enrollment = rows.get(batch_id)
        decision = decide(enrollment)
        result[batch_id] = BatchEnrollmentStatus(
            batch_id=batch_id,
            is_enrolled=decision.unlocked,
            status=enrollment.status if enrollment else None,
            payment_status=enrollment.payment_status if enrollment else None,
            enrolled_at=enrollment.enrolled_at if enrollment else None,
            decision=decision,
        )
    return result


@dataclass
class ChapterView:
    chapter: catalog.ChapterSnapshot
    is_locked: bool


@dataclass
class SubjectView:
    subject: catalog.SubjectSnapshot
    is_locked: bool
    chapters: List[ChapterView]


@dataclass
class CurriculumView:
    batch: catalog.BatchSnapshot
    decision: AccessDecision
    subjects: List[SubjectView]


def curriculum(db: Session, student_id: Optional[str], batch_id: int, is_admin: bool = False) -> CurriculumView:
    """
    Batch details plus its subjects and chapters, each flagged locked or not.

    Titles are always listed so prospective students can preview the
    curriculum; only the chapters' content is gated.
    """
    decision = evaluate(db, student_id, ResourcePath(batch_id), is_admin=is_admin)
    batch = catalog.get_batch(db, batch_id)
    locked = not decision.unlocked
    subjects = []
    for subject in catalog.list_subjects(db, batch_id):
        chapters = [ChapterView(chapter=c, is_locked=locked) for c in catalog.list_chapters(db, subject.id)]
        subjects.append(SubjectView(subject=subject, is_locked=locked, chapters=chapters))
    return CurriculumView(batch=batch, decision=decision, subjects=subjects)
