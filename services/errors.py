"""Credit accounting error taxonomy.

Every error carries the HTTP status it maps to and a stable ``code`` string;
``main.py`` renders them as ``{"detail": {"code", "message", ...}}``.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class CreditError(Exception):
    status_code = 500
    code = "credit_error"

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra: Dict[str, Any] = extra

    def to_detail(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.extra}


class AccountNotFound(CreditError):
    status_code = 404
    code = "account_not_found"

    def __init__(self, account_id: str):
        super().__init__(f"Account {account_id} not found.", account_id=account_id)


class InsufficientCredits(CreditError):
    status_code = 402
    code = "insufficient_credits"

    def __init__(self, required: int, available: int):
        super().__init__(
            f"Insufficient credits. Required: {required}, available: {available}. Top up credits to continue.",
            required=required,
            available=available,
            shortfall=max(required - available, 0),
        )
        self.required = required
        self.available = available


class InvalidPackage(CreditError):
    status_code = 400
    code = "invalid_package"

    def __init__(self, package_id: Optional[str]):
        super().__init__("Invalid package.", package_id=package_id)


class StorageUnavailable(CreditError):
    status_code = 500
    code = "storage_unavailable"


class Unauthenticated(CreditError):
    status_code = 401
    code = "unauthenticated"


class PaymentNotConfirmed(CreditError):
    status_code = 409
    code = "payment_not_confirmed"


class BillingUnavailable(CreditError):
    status_code = 503
    code = "billing_unavailable"


class Forbidden(CreditError):
    status_code = 403
    code = "forbidden"


class IdempotencyConflict(CreditError):
    status_code = 409
    code = "idempotency_conflict"

    def __init__(self, request_id: str):
        super().__init__(
            "Idempotency key was already used for a different operation.",
            request_id=request_id,
        )


class AccountConflict(CreditError):
    status_code = 409
    code = "account_conflict"
