import enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from settlement_service.database import Base


class BatchStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    INACTIVE = "inactive"
    COMPLETED = "completed"


class EnrollmentStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"
    COMPLETED = "completed"
    DROPPED = "dropped"


class EnrollmentPaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    REFUNDED = "refunded"


# Catalog tables are owned by the admin tooling; this service only reads them.

class Batch(Base):
    __tablename__ = "batches"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=True)
    class_type = Column(String(20), nullable=True)
    thumbnail = Column(Text, nullable=True)
    capacity = Column(Integer, nullable=False, default=0)
    fee = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="INR")
    status = Column(String(20), nullable=False, default=BatchStatus.DRAFT.value)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    teacher_name = Column(String(255), nullable=True)
    teacher_subject = Column(String(255), nullable=True)
    teacher_bio = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class Subject(Base):
    __tablename__ = "batch_subjects"
    id = Column(Integer, primary_key=True, index=True)
    batch_id = Column(Integer, ForeignKey("batches.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    order_index = Column(Integer, nullable=False, default=0)
    requires_enrollment = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Chapter(Base):
    __tablename__ = "batch_subject_chapters"
    id = Column(Integer, primary_key=True, index=True)
    subject_id = Column(Integer, ForeignKey("batch_subjects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    order_index = Column(Integer, nullable=False, default=0)
    requires_enrollment = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ChapterVideo(Base):
    __tablename__ = "chapter_videos"
    id = Column(Integer, primary_key=True, index=True)
    chapter_id = Column(Integer, ForeignKey("batch_subject_chapters.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    url = Column(Text, nullable=False)
    duration_seconds = Column(Integer, nullable=True)
    order_index = Column(Integer, nullable=False, default=0)


class ChapterPdf(Base):
    __tablename__ = "chapter_pdfs"
    id = Column(Integer, primary_key=True, index=True)
    chapter_id = Column(Integer, ForeignKey("batch_subject_chapters.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    url = Column(Text, nullable=False)
    order_index = Column(Integer, nullable=False, default=0)


class Enrollment(Base):
    __tablename__ = "batch_enrollments"
    __table_args__ = (
        UniqueConstraint("batch_id", "student_id", name="uq_enrollment_batch_student"),
        CheckConstraint("progress_percentage >= 0 AND progress_percentage <= 100", name="ck_enrollment_progress"),
    )
    id = Column(Integer, primary_key=True, index=True)
    batch_id = Column(Integer, ForeignKey("batches.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(String(64), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=EnrollmentStatus.PENDING.value)
    payment_status = Column(String(20), nullable=False, default=EnrollmentPaymentStatus.PENDING.value)
    payment_amount = Column(Integer, nullable=True)
    payment_date = Column(DateTime(timezone=True), nullable=True)
    progress_percentage = Column(Integer, nullable=False, default=0)
    enrolled_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class PaymentRecord(Base):
    __tablename__ = "payment_records"
    __table_args__ = (
        Index("ix_payment_records_student_created", "student_id", "created_at"),
    )
    id = Column(Integer, primary_key=True, index=True)
    batch_id = Column(Integer, ForeignKey("batches.id"), nullable=False, index=True)
    student_id = Column(String(64), nullable=False)
    # minor units (paise), tax included
    amount = Column(Integer, nullable=False)
    tax_amount = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False)
    status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True)
    receipt_number = Column(String(100), nullable=False, unique=True)
    billing_name = Column(String(255), nullable=False)
    billing_email = Column(String(255), nullable=False)
    billing_phone = Column(String(20), nullable=True)
    billing_address = Column(Text, nullable=True)
    payment_provider = Column(String(50), nullable=False, default="razorpay")
    gateway_order_id = Column(String(255), nullable=True, index=True)
    gateway_payment_id = Column(String(255), nullable=True, unique=True)
    gateway_signature = Column(String(255), nullable=True)
    signature_verified = Column(Boolean, nullable=True)
    failure_reason = Column(String(255), nullable=True)
    enrollment_id = Column(Integer, ForeignKey("batch_enrollments.id"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    paid_at = Column(DateTime(timezone=True), nullable=True)
