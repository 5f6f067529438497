"""
Custom exceptions for the PDF store
Provides structured error handling across all domains
"""
from typing import Any, Dict, Optional


class StoreError(Exception):
    """Base exception for all store errors"""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[str] = None,
        status_code: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses"""
        body: Dict[str, Any] = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(StoreError):
    """Raised when input validation fails"""

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            details=details or (f"Invalid field: {field}" if field else None),
            status_code=400,
        )
        self.field = field


class InvalidStateError(StoreError):
    """Raised when a resource is not in a state that allows the operation"""

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="INVALID_STATE",
            details=details,
            status_code=400,
        )


class AlreadyPurchasedError(StoreError):
    """Raised when the buyer already owns the requested item"""

    def __init__(self, user_id: str, pdf_id: str):
        super().__init__(
            message="You have already purchased this PDF",
            error_code="ALREADY_PURCHASED",
            details=f"user={user_id} pdf={pdf_id}",
            status_code=400,
        )
        self.user_id = user_id
        self.pdf_id = pdf_id


class NotFoundError(StoreError):
    """Raised when a resource is not found"""

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            message=f"{resource} not found",
            error_code="NOT_FOUND",
            details=str(identifier),
            status_code=404,
        )
        self.resource = resource
        self.identifier = identifier


class RateLimitedError(StoreError):
    """Raised when a caller exceeds its request quota"""

    def __init__(self, retry_after: Optional[int] = None):
        message = "Rate limit exceeded"
        details = f"Retry after {retry_after} seconds" if retry_after else None
        super().__init__(
            message=message,
            error_code="RATE_LIMITED",
            details=details,
            status_code=429,
        )
        self.retry_after = retry_after


class SignatureError(StoreError):
    """Raised when a webhook payload fails authenticity checks"""

    def __init__(self, message: str = "Invalid webhook signature", details: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="SIGNATURE_ERROR",
            details=details,
            status_code=400,
        )


class ProviderError(StoreError):
    """Raised when an external provider call fails"""

    def __init__(self, provider: str, message: str, details: Optional[str] = None):
        super().__init__(
            message=f"{provider} API error: {message}",
            error_code="PROVIDER_ERROR",
            details=details,
            status_code=500,
        )
        self.provider = provider


class PersistenceError(StoreError):
    """Raised when database operations fail"""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="PERSISTENCE_ERROR",
            details=f"operation={operation}" if operation else None,
            status_code=500,
        )
        self.operation = operation


class TokenExpiredError(StoreError):
    """Raised when a download token is past its expiry"""

    def __init__(self):
        super().__init__(
            message="Download link has expired",
            error_code="TOKEN_EXPIRED",
            status_code=410,
        )


class TokenExhaustedError(StoreError):
    """Raised when a download token has no redemptions left"""

    def __init__(self, max_downloads: int):
        super().__init__(
            message="Download limit exceeded",
            error_code="TOKEN_EXHAUSTED",
            details=f"Maximum {max_downloads} downloads allowed",
            status_code=429,
        )
        self.max_downloads = max_downloads


class EmailDeliveryError(StoreError):
    """Raised when email delivery fails"""

    def __init__(self, message: str, email: Optional[str] = None, reason: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="EMAIL_DELIVERY_ERROR",
            details=reason,
            status_code=500,
        )
        self.email = email
        self.reason = reason


class ConfigurationError(StoreError):
    """Raised when configuration is invalid or missing"""

    def __init__(self, message: str, setting: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="CONFIGURATION_ERROR",
            details=f"setting={setting}" if setting else None,
            status_code=500,
        )
