"""
Error taxonomy shared by every component.

Each error carries a machine-readable ``kind`` and the HTTP status it maps to.
Messages are meant for humans and must never contain keys or ciphertext.
"""
from typing import Any, Dict, Optional


class PaygateError(Exception):
    kind = "InternalError"
    status_code = 500

    def __init__(self, message: str = "", kind: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message or self.kind)
        self.message = message or self.kind
        if kind:
            self.kind = kind
        if status_code:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "message": self.message}


class ConfigurationError(PaygateError):
    kind = "ConfigurationError"


class ValidationError(PaygateError):
    kind = "ValidationError"
    status_code = 400


class MalformedInput(ValidationError):
    kind = "MalformedInput"


class NotFound(PaygateError):
    kind = "NotFound"
    status_code = 404


class ContentNotFound(NotFound):
    kind = "ContentNotFound"


class IntentExpired(PaygateError):
    kind = "IntentExpired"
    status_code = 400


class BuyerMismatch(PaygateError):
    kind = "BuyerMismatch"
    status_code = 400


class InsufficientPayment(PaygateError):
    kind = "InsufficientPayment"
    status_code = 402


class PaymentVerificationFailed(PaygateError):
    kind = "PaymentVerificationFailed"
    status_code = 402


class AuthenticationFailed(PaygateError):
    kind = "AuthenticationFailed"
    status_code = 500


class InvalidSignature(PaygateError):
    kind = "InvalidSignature"
    status_code = 401


class Malformed(PaygateError):
    kind = "Malformed"
    status_code = 401


class Expired(PaygateError):
    kind = "Expired"
    status_code = 401

    def __init__(self, message: str = "", payload: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.payload = payload


class GrantMismatch(PaygateError):
    kind = "GrantMismatch"
    status_code = 401


class LedgerUnavailable(PaygateError):
    kind = "LedgerUnavailable"
    status_code = 503


class StorageFailure(PaygateError):
    kind = "StorageFailure"
    status_code = 502
