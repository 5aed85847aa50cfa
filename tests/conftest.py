"""
Shared fixtures: a file-backed SQLite database per test, catalog factories,
a fake payment gateway and an in-memory event sink.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

import pytest

from settlement_service import config, database, models
from settlement_service.errors import GatewayUnavailable
from settlement_service.gateway import GatewayClient, GatewayOrder, compute_signature

GATEWAY_SECRET = "test_key_secret"
STUDENT = "student-0001"
OTHER_STUDENT = "student-0002"


class FakeGateway(GatewayClient):
    """Gateway double that mints sequential order ids and records every call."""

    key_id = "rzp_test_publishable"

    def __init__(self):
        self.calls: List[Dict] = []
        self.fail = False
        self.amount_override: Optional[int] = None

    def create_order(self, amount, currency, receipt, notes=None):
        self.calls.append({"amount": amount, "currency": currency, "receipt": receipt, "notes": notes})
        if self.fail:
            raise GatewayUnavailable("connection refused")
        return GatewayOrder(
            order_id=f"order_test_{len(self.calls):04d}",
            amount=self.amount_override if self.amount_override is not None else amount,
            currency=currency,
            receipt=receipt,
        )


@pytest.fixture(autouse=True)
def test_config(monkeypatch):
    monkeypatch.setattr(config, "RABBITMQ_URL", "")
    monkeypatch.setattr(config, "GATEWAY_KEY_SECRET", GATEWAY_SECRET)
    monkeypatch.setattr(config, "TAX_RATE", Decimal("0.18"))


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'settlement.db'}"


@pytest.fixture
def db(db_url):
    database.init_db(db_url)
    session = database.SessionLocal()
    yield session
    session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def published():
    return []


@pytest.fixture
def publish(published):
    def _publish(routing_key, event):
        published.append((routing_key, event))
    return _publish


def make_batch(db, **kw) -> models.Batch:
    values = dict(
        name="JEE Advanced 2026",
        category="JEE",
        class_type="12th",
        fee=Decimal("1000.00"),
        currency="INR",
        capacity=0,
        status=models.BatchStatus.ACTIVE.value,
        teacher_name="R. Sharma",
        teacher_bio="Physics, 12 years",
    )
    values.update(kw)
    batch = models.Batch(**values)
    db.add(batch)
    db.commit()
    db.refresh(batch)
    return batch


def make_subject(db, batch, name="Physics", order_index=0) -> models.Subject:
    subject = models.Subject(batch_id=batch.id, name=name, order_index=order_index)
    db.add(subject)
    db.commit()
    db.refresh(subject)
    return subject


def make_chapter(db, subject, name="Kinematics", order_index=0) -> models.Chapter:
    chapter = models.Chapter(subject_id=subject.id, name=name, order_index=order_index)
    db.add(chapter)
    db.commit()
    db.refresh(chapter)
    db.add(models.ChapterVideo(chapter_id=chapter.id, title=f"{name} lecture", url="https://cdn.example.com/v/1.mp4"))
    db.add(models.ChapterPdf(chapter_id=chapter.id, title=f"{name} notes", url="https://cdn.example.com/p/1.pdf"))
    db.commit()
    return chapter


def make_enrollment(db, batch, student_id=STUDENT, status="active", payment_status="paid") -> models.Enrollment:
    enrollment = models.Enrollment(
        batch_id=batch.id,
        student_id=student_id,
        status=status,
        payment_status=payment_status,
        enrolled_at=datetime.now(timezone.utc),
    )
    db.add(enrollment)
    db.commit()
    db.refresh(enrollment)
    return enrollment


def sign(order_id: str, payment_id: str, secret: str = GATEWAY_SECRET) -> str:
    return compute_signature(secret, order_id, payment_id)


def callback_for(order_id: str, payment_id: str = "pay_test_0001") -> Tuple[str, str, str]:
    """(order id, payment id, signature) as the hosted checkout would return them."""
    return order_id, payment_id, sign(order_id, payment_id)


@pytest.fixture
def curriculum(db):
    batch = make_batch(db)
    physics = make_subject(db, batch, "Physics", 0)
    chemistry = make_subject(db, batch, "Chemistry", 1)
    kinematics = make_chapter(db, physics, "Kinematics", 0)
    make_chapter(db, physics, "Laws of Motion", 1)
    make_chapter(db, chemistry, "Mole Concept", 0)
    return {"batch": batch, "subject": physics, "chapter": kinematics, "other_subject": chemistry}
