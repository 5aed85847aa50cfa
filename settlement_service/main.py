# settlement_service/main.py
from functools import partial
from typing import List, Optional
import logging

from fastapi import FastAPI, HTTPException, Depends, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

from settlement_service import catalog, config, database, entitlement, events, history, orders, schemas, settlement
from settlement_service.catalog import BatchSnapshot
from settlement_service.entitlement import AccessDecision, ResourcePath
from settlement_service.errors import AppError, NotFound, Unauthorized, app_error_handler
from settlement_service.gateway import GatewayClient, RazorpayGateway

# logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("settlement-service")

app = FastAPI(title="Batch Settlement Service")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_exception_handler(AppError, app_error_handler)

@app.on_event("startup")
def startup():
    logger.info("Initializing DB...")
    database.init_db(config.DATABASE_URL)
    logger.info("Startup complete.")

def get_db():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()

def get_gateway() -> GatewayClient:
    return RazorpayGateway(
        key_id=config.GATEWAY_KEY_ID,
        key_secret=config.GATEWAY_KEY_SECRET,
        base_url=config.GATEWAY_BASE_URL,
        timeout=config.GATEWAY_TIMEOUT_SECONDS,
    )

def get_publisher():
    return partial(events.publish_event, config.RABBITMQ_URL)

# Identity comes from the upstream auth layer; this service trusts but never authenticates.
def current_student(x_student_id: Optional[str] = Header(None)) -> Optional[str]:
    return x_student_id or None

def require_student(student_id: Optional[str] = Depends(current_student)) -> str:
    if not student_id:
        raise Unauthorized()
    return student_id

def is_admin(x_user_role: Optional[str] = Header(None)) -> bool:
    return (x_user_role or "").lower() == "admin"

def _batch_out(batch: BatchSnapshot) -> schemas.BatchOut:
    return schemas.BatchOut.model_validate(batch)

def _entitlement_out(decision: AccessDecision) -> schemas.EntitlementOut:
    return schemas.EntitlementOut(**decision.to_dict())

# Root and health endpoints
@app.get("/")
def root():
    return {"service": "Batch Settlement Service", "status": "running", "endpoints": ["/orders", "/payments", "/entitlement", "/batches", "/docs"]}

@app.get("/health")
def health():
    try:
        db = database.SessionLocal()
        db.execute(text("SELECT 1"))
        db.close()
    except Exception as e:
        logger.exception("Health check failed: %s", e)
        raise HTTPException(status_code=503, detail="Database unreachable")
    return {"status": "ok"}

# Create a pending payment and the matching gateway order
@app.post("/orders", response_model=schemas.OrderOut)
def create_order(
    order_in: schemas.OrderCreate,
    student_id: str = Depends(require_student),
    db: Session = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway),
):
    issued = orders.create_order(
        db,
        gateway,
        student_id,
        order_in.batch_id,
        order_in.billing_info,
        tax_rate=config.TAX_RATE,
        currency=config.CURRENCY,
    )
    return schemas.OrderOut.model_validate(issued)

# Verify the checkout callback and activate the enrollment
@app.post("/payments/verify", response_model=schemas.SettlementOut)
def verify_payment(
    verify_in: schemas.PaymentVerify,
    student_id: str = Depends(require_student),
    db: Session = Depends(get_db),
    publish=Depends(get_publisher),
):
    result = settlement.verify_and_settle(
        db,
        student_id,
        verify_in.payment_record_id,
        verify_in.gateway_order_id,
        verify_in.gateway_payment_id,
        verify_in.gateway_signature,
        key_secret=config.GATEWAY_KEY_SECRET,
        publish=publish,
    )
    return schemas.SettlementOut.model_validate(result)

# Payment history for the current student
@app.get("/payments/history", response_model=schemas.PaymentHistoryOut)
def payment_history(
    page: int = Query(1, ge=1),
    limit: int = Query(config.HISTORY_PAGE_LIMIT, ge=1, le=100),
    status: Optional[str] = Query(None),
    batch_id: Optional[int] = Query(None, alias="batchId"),
    student_id: str = Depends(require_student),
    db: Session = Depends(get_db),
):
    result = history.list_payments(db, student_id, page=page, limit=limit, status=status, batch_id=batch_id)
    return schemas.PaymentHistoryOut(
        payments=[schemas.PaymentOut.model_validate(p) for p in result.items],
        pagination=schemas.Pagination(
            page=result.page,
            limit=result.limit,
            total=result.total,
            total_pages=result.total_pages,
            has_more=result.has_more,
        ),
    )

# Get payment by id
@app.get("/payments/{payment_id}", response_model=schemas.PaymentOut)
def get_payment(payment_id: int, student_id: str = Depends(require_student), db: Session = Depends(get_db)):
    return schemas.PaymentOut.model_validate(history.get_payment(db, student_id, payment_id))

@app.get("/entitlement", response_model=schemas.EntitlementOut, response_model_exclude_none=True)
def get_entitlement(
    student_id: Optional[str] = Query(None, alias="studentId"),
    batch_id: int = Query(..., alias="batchId"),
    subject_id: Optional[int] = Query(None, alias="subjectId"),
    chapter_id: Optional[int] = Query(None, alias="chapterId"),
    admin: bool = Depends(is_admin),
    db: Session = Depends(get_db),
):
    try:
        path = ResourcePath(batch_id, subject_id, chapter_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _entitlement_out(entitlement.evaluate(db, student_id, path, is_admin=admin))

# Batch details are never gated
@app.get("/batches/{batch_id}", response_model=schemas.BatchOut)
def get_batch(batch_id: int, db: Session = Depends(get_db)):
    batch = catalog.get_batch(db, batch_id)
    if batch is None:
        raise NotFound("batch", batch_id)
    return _batch_out(batch)

@app.get("/batches/{batch_id}/curriculum", response_model=schemas.CurriculumOut)
def get_curriculum(
    batch_id: int,
    student_id: Optional[str] = Depends(current_student),
    admin: bool = Depends(is_admin),
    db: Session = Depends(get_db),
):
    view = entitlement.curriculum(db, student_id, batch_id, is_admin=admin)
    return schemas.CurriculumOut(
        batch=_batch_out(view.batch),
        access=_entitlement_out(view.decision),
        subjects=[
            schemas.SubjectOut(
                id=s.subject.id,
                name=s.subject.name,
                description=s.subject.description,
                order_index=s.subject.order_index,
                is_locked=s.is_locked,
                chapters=[
                    schemas.ChapterOut(
                        id=c.chapter.id,
                        name=c.chapter.name,
                        description=c.chapter.description,
                        order_index=c.chapter.order_index,
                        is_locked=c.is_locked,
                    )
                    for c in s.chapters
                ],
            )
            for s in view.subjects
        ],
    )

@app.get("/batches/{batch_id}/subjects/{subject_id}/chapters/{chapter_id}/content", response_model=schemas.ChapterContentOut)
def get_chapter_content(
    batch_id: int,
    subject_id: int,
    chapter_id: int,
    student_id: Optional[str] = Depends(current_student),
    admin: bool = Depends(is_admin),
    db: Session = Depends(get_db),
):
    decision = entitlement.evaluate(db, student_id, ResourcePath(batch_id, subject_id, chapter_id), is_admin=admin)
    if not decision.unlocked:
        raise AppError("CONTENT_LOCKED", decision.message, 403, {"reason": decision.reason.value})
    items = catalog.list_chapter_content(db, chapter_id)
    return schemas.ChapterContentOut(
        chapter_id=chapter_id,
        items=[schemas.ContentItemOut.model_validate(i) for i in items],
    )

@app.get("/students/me/batches", response_model=List[schemas.EnrolledBatchOut])
def enrolled_batches(student_id: str = Depends(require_student), db: Session = Depends(get_db)):
    out = []
    for enrollment, batch in history.list_enrolled_batches(db, student_id):
        data = schemas.BatchOut.model_validate(batch).model_dump()
        out.append(schemas.EnrolledBatchOut(
            **data,
            enrollment_id=enrollment.id,
            enrolled_at=enrollment.enrolled_at,
            payment_amount=enrollment.payment_amount,
            progress_percentage=enrollment.progress_percentage or 0,
        ))
    return out

@app.post("/students/me/enrollment-status", response_model=schemas.EnrollmentStatusMap)
def enrollment_status(
    body: schemas.EnrollmentStatusRequest,
    student_id: str = Depends(require_student),
    db: Session = Depends(get_db),
):
    statuses = entitlement.evaluate_many(db, student_id, body.batch_ids)
    return schemas.EnrollmentStatusMap(enrollment_status={
        batch_id: schemas.EnrollmentStatusOut(
            is_enrolled=s.is_enrolled,
            status=s.status,
            payment_status=s.payment_status,
            enrolled_at=s.enrolled_at,
            reason=s.decision.reason.value if s.decision.reason else None,
        )
        for batch_id, s in statuses.items()
    })
