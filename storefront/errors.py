from typing import Any, Dict, Optional

from fastapi import status


class StorefrontError(Exception):
    """Base class for errors that map directly onto an HTTP response."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail: Any = "Internal server error"
    headers: Optional[Dict[str, str]] = None

    def __init__(self, detail: Any = None):
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


class NotFoundError(StorefrontError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "Not found"


class ConflictError(StorefrontError):
    status_code = status.HTTP_409_CONFLICT
    detail = "Conflict"


class EmailAlreadyRegisteredError(ConflictError):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "This email is already registered"


class InsufficientStockError(StorefrontError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, product_id, available: int, requested: int):
        self.product_id = product_id
        self.available = available
        self.requested = requested
        super().__init__(
            {
                "error": "insufficient_stock",
                "product_id": str(product_id),
                "available": available,
                "requested": requested,
            }
        )


class ForbiddenError(StorefrontError):
    status_code = status.HTTP_403_FORBIDDEN
    detail = "You are not allowed to access this resource"


class UnauthorizedError(StorefrontError):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "Could not validate credentials"
    headers = {"WWW-Authenticate": "Bearer"}


class StorageError(StorefrontError):
    # detail stays generic; the cause is only logged
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail = "Internal server error"


class StorageUnavailableError(StorageError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    detail = "Database is unavailable, try again later"


class PaymentProviderUnavailableError(StorefrontError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    detail = "Payment provider is not configured"
