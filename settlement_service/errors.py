"""
Error taxonomy for order issuing, settlement and entitlement lookups.

Every error carries a machine-readable code and the HTTP status the API
surfaces it with. A locked resource is NOT an error: the entitlement
evaluator returns it as a normal AccessDecision.
"""

import logging
from typing import Any, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base application error with a consistent response shape."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class Unauthorized(AppError):
    def __init__(self, message: str = "Please login to continue."):
        super().__init__("UNAUTHORIZED", message, status.HTTP_401_UNAUTHORIZED)


class NotFound(AppError):
    def __init__(self, resource: str, resource_id: Any):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(
            f"{resource.upper()}_NOT_FOUND",
            f"{resource.replace('_', ' ').capitalize()} not found",
            status.HTTP_404_NOT_FOUND,
            {"id": resource_id},
        )


class AlreadyEnrolled(AppError):
    def __init__(self, batch_id: int, enrollment_id: int):
        self.batch_id = batch_id
        self.enrollment_id = enrollment_id
        super().__init__(
            "ALREADY_ENROLLED",
            "You're already enrolled in this batch.",
            status.HTTP_409_CONFLICT,
            {"batch_id": batch_id, "enrollment_id": enrollment_id},
        )


class BatchNotPurchasable(AppError):
    def __init__(self, batch_id: int, reason: str):
        self.batch_id = batch_id
        self.reason = reason
        super().__init__(
            "BATCH_NOT_PURCHASABLE",
            "This batch is not open for enrollment.",
            status.HTTP_409_CONFLICT,
            {"batch_id": batch_id, "reason": reason},
        )


class VerificationFailed(AppError):
    """
    The gateway callback could not be verified.

    `reason` is kept for server-side logs only; the client always gets the
    generic message so signing internals never leak.
    """

    def __init__(self, payment_record_id: int, reason: str):
        self.payment_record_id = payment_record_id
        self.reason = reason
        super().__init__(
            "VERIFICATION_FAILED",
            "Payment could not be verified. Please try again.",
            status.HTTP_400_BAD_REQUEST,
        )


class GatewayUnavailable(AppError):
    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(
            "GATEWAY_UNAVAILABLE",
            "Payment gateway is unavailable. Please try again.",
            status.HTTP_502_BAD_GATEWAY,
        )


class StorageUnavailable(AppError):
    def __init__(self, payment_record_id: int, detail: str):
        self.payment_record_id = payment_record_id
        self.detail = detail
        super().__init__(
            "STORAGE_UNAVAILABLE",
            "Payment received, access pending. Please contact support.",
            status.HTTP_503_SERVICE_UNAVAILABLE,
            {"payment_record_id": payment_record_id},
        )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    logger.info("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
