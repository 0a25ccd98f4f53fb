"""
Error Taxonomy Module

Typed failures raised by the transfer engine, the token lifecycle and the
stores. Each carries a stable code and the HTTP status the API maps it to.
"""

from typing import Any, Dict, Optional


class FlashPayError(Exception):
    """Base class for all domain failures"""

    code = "FLASHPAY_ERROR"
    http_status = 500
    default_message = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None, **details: Any):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        result = {"code": self.code, "message": self.message}
        if self.details:
            result["details"] = self.details
        return result


class AccountNotFound(FlashPayError):
    code = "ACCOUNT_NOT_FOUND"
    http_status = 404
    default_message = "Account not found"


class TransferNotFound(FlashPayError):
    code = "TRANSFER_NOT_FOUND"
    http_status = 404
    default_message = "Transfer not found"


class InvalidOperation(FlashPayError):
    code = "INVALID_OPERATION"
    http_status = 400
    default_message = "Operation not allowed"


class ForbiddenOperation(FlashPayError):
    code = "FORBIDDEN_OPERATION"
    http_status = 403
    default_message = "Operation forbidden for this account"


class InvalidAmount(FlashPayError):
    code = "INVALID_AMOUNT"
    http_status = 400
    default_message = "Amount must be a positive value with at most 2 decimal places"


class InsufficientBalance(FlashPayError):
    code = "INSUFFICIENT_BALANCE"
    http_status = 422
    default_message = "Insufficient balance"


class ConcurrentUpdateConflict(FlashPayError):
    """Raised when a compare-and-save finds the record changed since it was read"""
    code = "CONCURRENT_UPDATE_CONFLICT"
    http_status = 409
    default_message = "Record was modified concurrently"


class InvalidToken(FlashPayError):
    code = "INVALID_TOKEN"
    http_status = 401
    default_message = "Invalid or expired token"


class StoreUnavailable(FlashPayError):
    """Raised when a store call times out or the backend reports an operational error"""
    code = "STORE_UNAVAILABLE"
    http_status = 503
    default_message = "Storage backend unavailable"


class DuplicateResource(FlashPayError):
    code = "DUPLICATE_RESOURCE"
    http_status = 409
    default_message = "Resource already exists"


class InvalidCredentials(FlashPayError):
    code = "INVALID_CREDENTIALS"
    http_status = 401
    default_message = "Invalid email or password"
