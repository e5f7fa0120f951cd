"""
Accounting Events Exceptions - Classified exception hierarchy.

============================================================
CLASSIFICATION
============================================================
Every error carries enough information for a caller to decide
what to do next:

- error_type:         stable machine-readable class
- retryable:          "try again later" (network, upstream, rate limit)
- blocked_by_design:  "this can never be produced safely"
- user_action:        short caller-facing hint

InsufficientData / Blocked are permanent. Network / Upstream are
transient. Conflating the two makes callers retry forever or give
up on recoverable data.

============================================================
"""

from datetime import datetime
from typing import Any, Optional


class AccountingEventsError(Exception):
    """Base exception for all accounting event errors."""

    error_type = "internal"
    retryable = False
    blocked_by_design = False
    user_action = "This is a bug. Please report it."

    def __init__(
        self,
        message: str,
        source_id: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.source_id = source_id
        self.original_error = original_error
        self.context = context or {}
        self.timestamp = datetime.utcnow()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "type": self.error_type,
            "message": self.message,
            "source_id": self.source_id,
            "retryable": self.retryable,
            "blocked_by_design": self.blocked_by_design,
            "user_action": self.user_action,
            "original_error": str(self.original_error) if self.original_error else None,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        parts = [f"{self.__class__.__name__}: {self.message}"]
        if self.source_id:
            parts.append(f"[source={self.source_id}]")
        if self.original_error:
            parts.append(f"(caused by: {self.original_error})")
        return " ".join(parts)


class SourceAdapterError(AccountingEventsError):
    """Error raised by or on behalf of one source adapter."""


class InvalidInputError(SourceAdapterError):
    """Caller-correctable input error (bad account format, unknown source)."""

    error_type = "validation"
    user_action = "Check the account or source and try again."

    def __init__(
        self,
        message: str,
        source_id: Optional[str] = None,
        field_name: Optional[str] = None,
        value: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, source_id, original_error, context)
        self.field_name = field_name
        self.value = value

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data.update({
            "field_name": self.field_name,
            "value": self.value,
        })
        return data


class AuthRequiredError(SourceAdapterError):
    """Source needs credentials and none were supplied."""

    error_type = "auth"
    user_action = "Provide an API key and secret for this source."


class AuthInvalidError(SourceAdapterError):
    """Upstream rejected the supplied credentials."""

    error_type = "auth"
    user_action = "Check your API key and secret, then retry."


class InsufficientDataError(SourceAdapterError):
    """
    Upstream lacks an explicit protocol-level value for a required field.

    Permanent per-source limitation. Never retried, never worked around
    by deriving the value from balances or estimates.
    """

    error_type = "insufficient_data"
    blocked_by_design = True
    user_action = "This data cannot be exported safely from this source."

    def __init__(
        self,
        message: str,
        source_id: Optional[str] = None,
        field_name: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, source_id, original_error, context)
        self.field_name = field_name

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data["field_name"] = self.field_name
        return data


class BlockedSourceError(InsufficientDataError):
    """Source is in Blocked mode and can produce no safe event at all."""

    error_type = "blocked"


class UpstreamError(SourceAdapterError):
    """Non-2xx response from the upstream API."""

    error_type = "upstream"
    retryable = True
    user_action = "The upstream API returned an error. Try again later."

    def __init__(
        self,
        message: str,
        source_id: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, source_id, original_error, context)
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data.update({
            "status_code": self.status_code,
            "response_body": self.response_body,
            "request_url": self.request_url,
        })
        return data

    def is_server_error(self) -> bool:
        """Check if error is a 5xx response."""
        return self.status_code is not None and self.status_code >= 500


class RateLimitError(UpstreamError):
    """Upstream rejected the request for rate limiting (HTTP 429)."""

    error_type = "rate_limit"
    user_action = "Wait a few minutes and try again."

    def __init__(
        self,
        message: str,
        source_id: Optional[str] = None,
        retry_after_seconds: Optional[int] = None,
        request_url: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message,
            source_id,
            status_code=429,
            request_url=request_url,
            original_error=original_error,
            context=context,
        )
        self.retry_after_seconds = retry_after_seconds

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data["retry_after_seconds"] = self.retry_after_seconds
        return data


class NetworkError(SourceAdapterError):
    """Connectivity failure or per-call timeout."""

    error_type = "network"
    retryable = True
    user_action = "Check your internet connection or try again later."

    def __init__(
        self,
        message: str,
        source_id: Optional[str] = None,
        request_url: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, source_id, original_error, context)
        self.request_url = request_url


class MalformedPayloadError(SourceAdapterError):
    """Upstream answered 2xx with a payload that cannot be read."""

    error_type = "upstream"
    user_action = "The upstream API changed its response format."

    def __init__(
        self,
        message: str,
        source_id: Optional[str] = None,
        raw_data: Optional[Any] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, source_id, original_error, context)
        self.raw_data = raw_data

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data["raw_data"] = str(self.raw_data)[:500] if self.raw_data is not None else None
        return data


class AdapterContractError(SourceAdapterError):
    """Adapter returned something other than canonical Events."""

    def __init__(
        self,
        message: str,
        source_id: Optional[str] = None,
        row_index: Optional[int] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, source_id, original_error, context)
        self.row_index = row_index


class CapabilityViolationError(AdapterContractError):
    """Adapter emitted a category outside its declared capability set."""

    def __init__(
        self,
        message: str,
        source_id: Optional[str] = None,
        row_index: Optional[int] = None,
        category: Optional[str] = None,
        allowed: Optional[list[str]] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, source_id, row_index, None, context)
        self.category = category
        self.allowed = allowed or []

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data.update({
            "row_index": self.row_index,
            "category": self.category,
            "allowed": self.allowed,
        })
        return data


class BatchFetchError(AccountingEventsError):
    """Every source selected in a batch failed."""

    error_type = "batch_failed"
    user_action = "All selected sources failed. See per-source errors."

    def __init__(
        self,
        message: str,
        failures: Optional[dict[str, AccountingEventsError]] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, None, None, context)
        self.failures = failures or {}
        # Retry only makes sense if at least one failure was transient
        self.retryable = any(e.retryable for e in self.failures.values())

    @property
    def failed_sources(self) -> list[str]:
        return list(self.failures)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data["failures"] = {s: e.to_dict() for s, e in self.failures.items()}
        return data


class ExportRefusedError(AccountingEventsError):
    """Export gate: the collection still carries validation errors."""

    error_type = "schema_violation"
    user_action = "Fix or re-fetch the flagged rows before exporting."

    def __init__(
        self,
        message: str,
        validation_errors: Optional[list] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, None, None, context)
        self.validation_errors = list(validation_errors or [])

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data["validation_errors"] = [e.to_dict() for e in self.validation_errors]
        return data


def classify_error(error: BaseException, source_id: Optional[str] = None) -> AccountingEventsError:
    """
    Return a classified error for any exception.

    Known errors pass through unchanged; anything else is wrapped as an
    internal SourceAdapterError so it can be recorded against one source.
    """
    if isinstance(error, AccountingEventsError):
        return error
    return SourceAdapterError(
        message=f"Unexpected error: {error}",
        source_id=source_id,
        original_error=error if isinstance(error, Exception) else None,
    )
