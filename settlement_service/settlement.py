"""
Settlement: the only code path that turns "the gateway says the payment
went through" into "the student has paid access".

A payment record moves exactly once out of `pending`:

    pending --(signature ok)--> success   (terminal, replays return the same enrollment)
    pending --(signature bad)--> failed   (terminal, a new order is needed)

The success transition and the enrollment upsert commit in one
transaction. The transition itself is a conditional UPDATE on
status='pending', so two callbacks for the same record racing on
different instances produce one winner; the loser replays.
"""

import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from settlement_service import enrollments, models
from settlement_service.errors import NotFound, StorageUnavailable, VerificationFailed
from settlement_service.gateway import verify_signature
from settlement_service.models import PaymentStatus

logger = logging.getLogger(__name__)

Publisher = Callable[[str, dict], None]


def _no_publish(routing_key: str, event: dict) -> None:
    pass


@dataclass(frozen=True)
class SettlementResult:
    payment_record_id: int
    enrollment_id: int
    batch_id: int
    replayed: bool = False


def _load(db: Session, student_id: str, payment_record_id: int) -> models.PaymentRecord:
    record = db.get(models.PaymentRecord, payment_record_id)
    if record is None or record.student_id != student_id:
        raise NotFound("payment_record", payment_record_id)
    return record


def _replay(record: models.PaymentRecord) -> SettlementResult:
    logger.info(
        "Payment record id=%s already settled, returning enrollment id=%s",
        record.id, record.enrollment_id,
    )
    return SettlementResult(
        payment_record_id=record.id,
        enrollment_id=record.enrollment_id,
        batch_id=record.batch_id,
        replayed=True,
    )


def _claim(db: Session, payment_record_id: int, values: dict) -> bool:
    claimed = (
        db.query(models.PaymentRecord)
        .filter(
            models.PaymentRecord.id == payment_record_id,
            models.PaymentRecord.status == PaymentStatus.PENDING.value,
        )
        .update(values, synchronize_session=False)
    )
    return claimed == 1


def _reject(db: Session, record: models.PaymentRecord, reason: str, publish: Publisher) -> VerificationFailed:
    now = datetime.now(timezone.utc)
    if _claim(db, record.id, {
        "status": PaymentStatus.FAILED.value,
        "signature_verified": False,
        "failure_reason": reason,
        "updated_at": now,
    }):
        db.commit()
        publish("payment.events.failed", {
            "type": "PaymentFailed",
            "payload": {"payment_id": record.id, "batch_id": record.batch_id, "student_id": record.student_id},
        })
    else:
        db.rollback()
    return VerificationFailed(record.id, reason)


def verify_and_settle(
    db: Session,
    student_id: str,
    payment_record_id: int,
    gateway_order_id: str,
    gateway_payment_id: str,
    gateway_signature: str,
    *,
    key_secret: str,
    publish: Optional[Publisher] = None,
) -> SettlementResult:
    publish = publish or _no_publish

    record = _load(db, student_id, payment_record_id)
    if record.status == PaymentStatus.SUCCESS.value:
        return _replay(record)
    if record.status != PaymentStatus.PENDING.value:
        logger.warning("Verification attempted on payment record id=%s in status %s", record.id, record.status)
        raise VerificationFailed(record.id, f"payment record is {record.status}")

    # The signature is re-derived from the stored order, never from what the client claims.
    stored_order_id = record.gateway_order_id or ""
    if not stored_order_id or not hmac.compare_digest(stored_order_id, gateway_order_id or ""):
        reason = "gateway order id does not match payment record"
    elif not verify_signature(key_secret, stored_order_id, gateway_payment_id, gateway_signature):
        reason = "signature mismatch"
    else:
        reason = None

    if reason is not None:
        logger.error(
            "Payment verification failed: record=%s student=%s batch=%s stored_order=%s supplied_order=%s payment=%s reason=%s",
            record.id, student_id, record.batch_id, stored_order_id, gateway_order_id, gateway_payment_id, reason,
        )
        raise _reject(db, record, reason, publish)

    now = datetime.now(timezone.utc)
    batch_id = record.batch_id
    amount = record.amount
    try:
        claimed = _claim(db, record.id, {
            "status": PaymentStatus.SUCCESS.value,
            "gateway_payment_id": gateway_payment_id,
            "gateway_signature": gateway_signature,
            "signature_verified": True,
            "paid_at": now,
            "updated_at": now,
        })
        if not claimed:
            # a concurrent callback won the transition
            db.rollback()
            return _settled_elsewhere(db, student_id, payment_record_id)

        enrollment = enrollments.upsert_paid(db, batch_id, student_id, amount, now)
        db.query(models.PaymentRecord).filter(models.PaymentRecord.id == payment_record_id).update(
            {"enrollment_id": enrollment.id}, synchronize_session=False
        )
        enrollment_id = enrollment.id
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        if _is_duplicate_gateway_payment(e):
            logger.error(
                "Gateway payment %s for record id=%s is already claimed by another record: %s",
                gateway_payment_id, payment_record_id, e.orig,
            )
            raise VerificationFailed(payment_record_id, "gateway payment already settled") from e
        logger.exception(
            "Settlement commit failed for record id=%s gateway payment %s; needs reconciliation",
            payment_record_id, gateway_payment_id,
        )
        publish("payment.events.reconciliation_required", {
            "type": "SettlementReconciliationRequired",
            "payload": {
                "payment_id": payment_record_id,
                "batch_id": batch_id,
                "student_id": student_id,
                "gateway_order_id": stored_order_id,
                "gateway_payment_id": gateway_payment_id,
            },
        })
        raise StorageUnavailable(payment_record_id, str(e)) from e

    logger.info(
        "Payment record id=%s settled, enrollment id=%s active for student=%s batch=%s",
        payment_record_id, enrollment_id, student_id, batch_id,
    )
    publish("payment.events.confirmed", {
        "type": "PaymentConfirmed",
        "payload": {
            "payment_id": payment_record_id,
            "enrollment_id": enrollment_id,
            "batch_id": batch_id,
            "student_id": student_id,
            "amount": amount,
        },
    })
    return SettlementResult(payment_record_id=payment_record_id, enrollment_id=enrollment_id, batch_id=batch_id)


def _is_duplicate_gateway_payment(error: SQLAlchemyError) -> bool:
    # sqlite names the column, postgres the constraint/index; both contain it
    return isinstance(error, IntegrityError) and "gateway_payment_id" in str(error.orig)


def _settled_elsewhere(db: Session, student_id: str, payment_record_id: int) -> SettlementResult:
    record = _load(db, student_id, payment_record_id)
    db.refresh(record)
    if record.status == PaymentStatus.SUCCESS.value and record.enrollment_id is not None:
        return _replay(record)
    raise VerificationFailed(payment_record_id, f"payment record is {record.status}")
