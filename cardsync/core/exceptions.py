"""
Exception hierarchy for the CardTrader sync service.

All exceptions inherit from CardSyncError and include structured error information
for consistent error handling and logging.
"""
from typing import Any, Dict, Optional


class CardSyncError(Exception):
    """
    Base exception for all CardSync errors.

    Attributes:
        status_code: HTTP status code for API responses
        error_code: Machine-readable error code
        detail: Human-readable error message
        context: Additional context (entity ids, retry hints, etc.)
    """

    def __init__(
        self,
        detail: str,
        status_code: int = 500,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code
        self.error_code = error_code or self.__class__.__name__
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON responses."""
        return {
            "error": {
                "code": self.error_code,
                "message": self.detail,
                "context": self.context,
            }
        }


# Sync

class SyncError(CardSyncError):
    """Base exception for sync-related errors."""

    def __init__(
        self,
        detail: str,
        status_code: int = 500,
        error_code: str = "SYNC_ERROR",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(detail, status_code, error_code, context)


class SyncInProgressError(SyncError):
    """Another full sync holds the sync lease."""

    def __init__(
        self,
        holder: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        detail = "A synchronization is already in progress"
        if holder:
            detail += f" (run {holder})"
        super().__init__(
            detail=detail,
            status_code=409,
            error_code="SYNC_IN_PROGRESS",
            context={"holder": holder, **(context or {})},
        )


# CardTrader gateway

class CardTraderAPIError(CardSyncError):
    """Base exception for CardTrader API errors."""

    def __init__(
        self,
        detail: str,
        status_code: int = 502,  # Bad Gateway
        error_code: str = "CARDTRADER_API_ERROR",
        context: Optional[Dict[str, Any]] = None,
        upstream_status: Optional[int] = None,
    ):
        super().__init__(
            detail,
            status_code,
            error_code,
            {"upstream_status": upstream_status, **(context or {})},
        )
        self.upstream_status = upstream_status


class RateLimitError(CardTraderAPIError):
    """Local rate limiter queue is full, or CardTrader kept answering 429."""

    def __init__(
        self,
        detail: str = "Rate limit exceeded",
        retry_after: Optional[float] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        if retry_after:
            detail += f". Please retry after {retry_after:.2f} seconds"
        super().__init__(
            detail=detail,
            status_code=429,
            error_code="RATE_LIMIT_EXCEEDED",
            context={"retry_after": retry_after, **(context or {})},
        )
        self.retry_after = retry_after


class CardTraderServiceUnavailableError(CardTraderAPIError):
    """CardTrader service unavailable (circuit breaker open)."""

    def __init__(
        self,
        detail: str = "CardTrader service temporarily unavailable",
        retry_after: Optional[float] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        if retry_after:
            detail += f". Retry in {retry_after:.0f} seconds"
        super().__init__(
            detail=detail,
            status_code=503,
            error_code="CARDTRADER_SERVICE_UNAVAILABLE",
            context={"retry_after": retry_after, **(context or {})},
        )
        self.retry_after = retry_after


# Pending listings

class PendingListingError(CardSyncError):
    """Base exception for pending listing errors."""

    def __init__(
        self,
        detail: str,
        status_code: int = 400,
        error_code: str = "PENDING_LISTING_ERROR",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(detail, status_code, error_code, context)


class ListingAlreadySyncedError(PendingListingError):
    """Synced listings are immutable locally."""

    def __init__(
        self,
        listing_id: int,
        action: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            detail=f"Cannot {action} listing {listing_id}: it is already published to CardTrader",
            status_code=409,
            error_code="LISTING_ALREADY_SYNCED",
            context={"listing_id": listing_id, "action": action, **(context or {})},
        )


# Generic

class ValidationError(CardSyncError):
    """Input validation error."""

    def __init__(
        self,
        detail: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            detail=detail,
            status_code=400,
            error_code="VALIDATION_ERROR",
            context={"field": field, "value": value, **(context or {})},
        )


class NotFoundError(CardSyncError):
    """Resource not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Any,
        context: Optional[Dict[str, Any]] = None,
    ):
        detail = f"{resource_type} with id {resource_id} not found"
        super().__init__(
            detail=detail,
            status_code=404,
            error_code="NOT_FOUND",
            context={"resource_type": resource_type, "resource_id": resource_id, **(context or {})},
        )


class ConfigurationError(CardSyncError):
    """Configuration error."""

    def __init__(
        self,
        detail: str,
        setting: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            detail=detail,
            status_code=500,
            error_code="CONFIGURATION_ERROR",
            context={"setting": setting, **(context or {})},
        )


# Webhooks

class WebhookValidationError(CardSyncError):
    """Webhook signature validation error."""

    def __init__(
        self,
        detail: str = "Webhook signature validation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            detail=detail,
            status_code=401,
            error_code="WEBHOOK_VALIDATION_ERROR",
            context=context or {},
        )


class WebhookPayloadError(CardSyncError):
    """Webhook body is not a valid notification."""

    def __init__(
        self,
        detail: str = "Malformed webhook payload",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            detail=detail,
            status_code=400,
            error_code="WEBHOOK_PAYLOAD_ERROR",
            context=context or {},
        )
