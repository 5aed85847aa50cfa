"""Read-only accessors for batches, subjects, chapters and chapter content."""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from settlement_service import models


@dataclass(frozen=True)
class BatchSnapshot:
    id: int
    name: str
    description: Optional[str]
    category: Optional[str]
    class_type: Optional[str]
    thumbnail: Optional[str]
    capacity: int
    fee: Decimal
    currency: str
    status: str
    start_date: Optional[date]
    end_date: Optional[date]
    teacher_name: Optional[str]
    teacher_subject: Optional[str]
    teacher_bio: Optional[str]


@dataclass(frozen=True)
class SubjectSnapshot:
    id: int
    batch_id: int
    name: str
    description: Optional[str]
    order_index: int
    requires_enrollment: bool


@dataclass(frozen=True)
class ChapterSnapshot:
    id: int
    subject_id: int
    name: str
    description: Optional[str]
    order_index: int
    requires_enrollment: bool


@dataclass(frozen=True)
class ContentItem:
    id: int
    kind: str  # "video" | "pdf"
    title: str
    url: str
    order_index: int


def _batch(row: models.Batch) -> BatchSnapshot:
    return BatchSnapshot(
        id=row.id,
        name=row.name,
        description=row.description,
        category=row.category,
        class_type=row.class_type,
        thumbnail=row.thumbnail,
        capacity=row.capacity or 0,
        fee=Decimal(row.fee or 0),
        currency=row.currency,
        status=row.status,
        start_date=row.start_date,
        end_date=row.end_date,
        teacher_name=row.teacher_name,
        teacher_subject=row.teacher_subject,
        teacher_bio=row.teacher_bio,
    )


def _subject(row: models.Subject) -> SubjectSnapshot:
    return SubjectSnapshot(
        id=row.id,
        batch_id=row.batch_id,
        name=row.name,
        description=row.description,
        order_index=row.order_index,
        requires_enrollment=bool(row.requires_enrollment),
    )


def _chapter(row: models.Chapter) -> ChapterSnapshot:
    return ChapterSnapshot(
        id=row.id,
        subject_id=row.subject_id,
        name=row.name,
        description=row.description,
        order_index=row.order_index,
        requires_enrollment=bool(row.requires_enrollment),
    )


def get_batch(db: Session, batch_id: int) -> Optional[BatchSnapshot]:
    row = db.get(models.Batch, batch_id)
    return _batch(row) if row else None


def get_subject(db: Session, batch_id: int, subject_id: int) -> Optional[SubjectSnapshot]:
    row = (
        db.query(models.Subject)
        .filter(models.Subject.id == subject_id, models.Subject.batch_id == batch_id)
        .first()
    )
    return _subject(row) if row else None


def get_chapter(db: Session, subject_id: int, chapter_id: int) -> Optional[ChapterSnapshot]:
    row = (
        db.query(models.Chapter)
        .filter(models.Chapter.id == chapter_id, models.Chapter.subject_id == subject_id)
        .first()
    )
    return _chapter(row) if row else None


def list_subjects(db: Session, batch_id: int) -> List[SubjectSnapshot]:
    rows = (
        db.query(models.Subject)
        .filter(models.Subject.batch_id == batch_id)
        .order_by(models.Subject.order_index, models.Subject.id)
        .all()
    )
    return [_subject(r) for r in rows]


def list_chapters(db: Session, subject_id: int) -> List[ChapterSnapshot]:
    rows = (
        db.query(models.Chapter)
        .filter(models.Chapter.subject_id == subject_id)
        .order_by(models.Chapter.order_index, models.Chapter.id)
        .all()
    )
    return [_chapter(r) for r in rows]


def list_chapter_content(db: Session, chapter_id: int) -> List[ContentItem]:
    videos = (
        db.query(models.ChapterVideo)
        .filter(models.ChapterVideo.chapter_id == chapter_id)
        .order_by(models.ChapterVideo.order_index, models.ChapterVideo.id)
        .all()
    )
    pdfs = (
        db.query(models.ChapterPdf)
        .filter(models.ChapterPdf.chapter_id == chapter_id)
        .order_by(models.ChapterPdf.order_index, models.ChapterPdf.id)
        .all()
    )
    items = [ContentItem(v.id, "video", v.title, v.url, v.order_index) for v in videos]
    items += [ContentItem(p.id, "pdf", p.title, p.url, p.order_index) for p in pdfs]
    return items
