"""
Tests for order issuing: server-side pricing, purchasability checks,
double-enrollment guard and gateway failure handling.
"""

from decimal import Decimal

import httpx
import pytest

from settlement_service import models, orders, schemas
from settlement_service.errors import (
    AlreadyEnrolled,
    BatchNotPurchasable,
    GatewayUnavailable,
    NotFound,
    Unauthorized,
)
from settlement_service.gateway import RazorpayGateway

from conftest import OTHER_STUDENT, STUDENT, make_batch, make_enrollment

TAX = Decimal("0.18")


def billing():
    return schemas.BillingInfo(
        first_name="Asha",
        last_name="Verma",
        email="asha@example.com",
        phone="9876543210",
        address="12 MG Road",
        city="Pune",
        state="MH",
        pincode="411001",
    )


def issue(db, gateway, batch_id, student_id=STUDENT):
    return orders.create_order(db, gateway, student_id, batch_id, billing(), tax_rate=TAX, currency="INR")


class TestPricing:

    @pytest.mark.parametrize(
        "fee,expected",
        [
            (Decimal("1000"), (118000, 18000)),
            (Decimal("999.99"), (117999, 18000)),
            (Decimal("0"), (0, 0)),
            (Decimal("49.50"), (5841, 891)),
        ],
    )
    def test_price_for(self, fee, expected):
        assert orders.price_for(fee, TAX) == expected

    def test_zero_tax(self):
        assert orders.price_for(Decimal("250.25"), Decimal("0")) == (25025, 0)


class TestCreateOrder:

    def test_creates_pending_record_and_gateway_order(self, db, gateway):
        batch = make_batch(db, fee=Decimal("1000.00"))

        issued = issue(db, gateway, batch.id)

        assert issued.amount == 118000
        assert issued.currency == "INR"
        assert issued.gateway_key == "rzp_test_publishable"
        assert issued.order_id == "order_test_0001"

        record = db.get(models.PaymentRecord, issued.payment_record_id)
        assert record.status == "pending"
        assert record.amount == 118000
        assert record.tax_amount == 18000
        assert record.gateway_order_id == issued.order_id
        assert record.billing_name == "Asha Verma"
        assert record.billing_email == "asha@example.com"
        assert record.billing_address == "12 MG Road, Pune, MH 411001"
        assert record.receipt_number.startswith("RCP")

        call = gateway.calls[0]
        assert call["amount"] == 118000
        assert call["receipt"] == record.receipt_number
        assert call["notes"]["payment_record_id"] == str(record.id)

    def test_amount_follows_stored_fee(self, db, gateway):
        batch = make_batch(db, fee=Decimal("1000.00"))
        first = issue(db, gateway, batch.id)

        batch.fee = Decimal("2000.00")
        db.commit()
        second = issue(db, gateway, batch.id)

        assert first.amount == 118000
        assert second.amount == 236000

    def test_requires_student(self, db, gateway):
        batch = make_batch(db)
        with pytest.raises(Unauthorized):
            issue(db, gateway, batch.id, student_id=None)
        assert gateway.calls == []

    def test_unknown_batch(self, db, gateway):
        with pytest.raises(NotFound) as exc:
            issue(db, gateway, 777)
        assert exc.value.status_code == 404

    @pytest.mark.parametrize("status", ["draft", "inactive", "completed"])
    def test_batch_must_be_active(self, db, gateway, status):
        batch = make_batch(db, status=status)
        with pytest.raises(BatchNotPurchasable) as exc:
            issue(db, gateway, batch.id)
        assert exc.value.reason == f"batch is {status}"
        assert db.query(models.PaymentRecord).count() == 0

    def test_full_batch(self, db, gateway):
        batch = make_batch(db, capacity=1)
        make_enrollment(db, batch, student_id=OTHER_STUDENT)
        with pytest.raises(BatchNotPurchasable) as exc:
            issue(db, gateway, batch.id)
        assert exc.value.reason == "batch is full"

    def test_zero_capacity_is_unlimited(self, db, gateway):
        batch = make_batch(db, capacity=0)
        make_enrollment(db, batch, student_id=OTHER_STUDENT)
        assert issue(db, gateway, batch.id).amount == 118000

    def test_already_enrolled(self, db, gateway):
        batch = make_batch(db)
        enrollment = make_enrollment(db, batch)
        with pytest.raises(AlreadyEnrolled) as exc:
            issue(db, gateway, batch.id)
        assert exc.value.enrollment_id == enrollment.id
        assert exc.value.status_code == 409
        assert db.query(models.PaymentRecord).count() == 0
        assert gateway.calls == []

    def test_unpaid_enrollment_may_retry_checkout(self, db, gateway):
        batch = make_batch(db)
        make_enrollment(db, batch, status="pending", payment_status="failed")
        assert issue(db, gateway, batch.id).payment_record_id is not None

    def test_gateway_down_keeps_auditable_record(self, db, gateway):
        batch = make_batch(db)
        gateway.fail = True

        with pytest.raises(GatewayUnavailable):
            issue(db, gateway, batch.id)

        record = db.query(models.PaymentRecord).one()
        assert record.status == "pending"
        assert record.gateway_order_id is None
        assert record.failure_reason == "gateway_unavailable"

    def test_retry_after_gateway_failure_creates_new_record(self, db, gateway):
        batch = make_batch(db)
        gateway.fail = True
        with pytest.raises(GatewayUnavailable):
            issue(db, gateway, batch.id)

        gateway.fail = False
        issued = issue(db, gateway, batch.id)

        assert db.query(models.PaymentRecord).count() == 2
        assert db.get(models.PaymentRecord, issued.payment_record_id).gateway_order_id == issued.order_id

    def test_gateway_amount_mismatch_is_rejected(self, db, gateway):
        batch = make_batch(db)
        gateway.amount_override = 100

        with pytest.raises(GatewayUnavailable):
            issue(db, gateway, batch.id)

        record = db.query(models.PaymentRecord).one()
        assert record.gateway_order_id is None

    def test_malformed_gateway_body_keeps_auditable_record(self, db):
        batch = make_batch(db)
        gateway = RazorpayGateway(
            key_id="rzp_test_key",
            key_secret="secret",
            base_url="https://gateway.test/v1",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=[])),
        )

        with pytest.raises(GatewayUnavailable):
            issue(db, gateway, batch.id)

        record = db.query(models.PaymentRecord).one()
        assert record.gateway_order_id is None
        assert record.failure_reason == "gateway_unavailable"
