from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Dict, List, Optional
from datetime import date, datetime
from decimal import Decimal


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class BillingInfo(CamelModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(default="", max_length=100)
    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    phone: Optional[str] = Field(default=None, max_length=20)
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None


class OrderCreate(CamelModel):
    # no amount field: price is always computed from the stored batch fee
    batch_id: int
    billing_info: BillingInfo


class OrderOut(CamelModel):
    order_id: str
    amount: int
    currency: str
    gateway_key: str
    payment_record_id: int


class PaymentVerify(CamelModel):
    payment_record_id: int
    gateway_order_id: str
    gateway_payment_id: str
    gateway_signature: str


class SettlementOut(CamelModel):
    enrollment_id: int
    payment_record_id: int
    batch_id: int


class EntitlementOut(CamelModel):
    unlocked: bool
    reason: Optional[str] = None
    message: Optional[str] = None


class BatchOut(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    class_type: Optional[str] = None
    thumbnail: Optional[str] = None
    capacity: int
    fee: Decimal
    currency: str
    status: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    teacher_name: Optional[str] = None
    teacher_subject: Optional[str] = None
    teacher_bio: Optional[str] = None


class ChapterOut(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    order_index: int
    is_locked: bool


class SubjectOut(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    order_index: int
    is_locked: bool
    chapters: List[ChapterOut]


class CurriculumOut(CamelModel):
    batch: BatchOut
    access: EntitlementOut
    subjects: List[SubjectOut]


class ContentItemOut(CamelModel):
    id: int
    kind: str
    title: str
    url: str
    order_index: int


class ChapterContentOut(CamelModel):
    chapter_id: int
    items: List[ContentItemOut]


class EnrollmentStatusRequest(CamelModel):
    batch_ids: List[int]


class EnrollmentStatusOut(CamelModel):
    is_enrolled: bool
    status: Optional[str] = None
    payment_status: Optional[str] = None
    enrolled_at: Optional[datetime] = None
    reason: Optional[str] = None


class EnrollmentStatusMap(CamelModel):
    enrollment_status: Dict[int, EnrollmentStatusOut]


class EnrolledBatchOut(BatchOut):
    enrollment_id: int
    enrolled_at: Optional[datetime] = None
    payment_amount: Optional[int] = None
    progress_percentage: int = 0


class PaymentOut(CamelModel):
    id: int
    batch_id: int
    student_id: str
    amount: int
    tax_amount: int
    currency: str
    status: str
    receipt_number: str
    billing_name: str
    billing_email: str
    billing_phone: Optional[str] = None
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    enrollment_id: Optional[int] = None
    created_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_more: bool


class PaymentHistoryOut(CamelModel):
    payments: List[PaymentOut]
    pagination: Pagination
