"""
Pydantic Schemas for the Accounting Events API.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from accounting_events.decimals import to_decimal
from accounting_events.models import (
    BatchResult,
    Credentials,
    Event,
    SourceDescriptor,
    SourceEventsResult,
    ValidationError,
)


# =============================================================
# EVENT SCHEMAS
# =============================================================

class EventSchema(BaseModel):
    """One event in export shape. Numbers travel as strings."""
    date: str
    asset: str
    amount: Union[str, int, float]
    fee: Union[str, int, float]
    pnl: Union[str, int, float]
    paymentToken: str = ""
    notes: str = ""
    externalId: str
    category: str

    @classmethod
    def from_event(cls, event: Event) -> "EventSchema":
        return cls(**event.to_dict())

    def to_event(self) -> Event:
        """Convert to a domain Event; unparsable numbers are kept for validation."""
        return Event(
            timestamp=self.date,
            asset=self.asset,
            amount=_number(self.amount),
            fee=_number(self.fee),
            realized_pnl=_number(self.pnl),
            settlement_token=self.paymentToken,
            notes=self.notes,
            external_id=self.externalId,
            category=self.category,
        )


def _number(value: Union[str, int, float]) -> Any:
    parsed = to_decimal(value)
    return parsed if parsed is not None else value


class ValidationErrorSchema(BaseModel):
    """Positional validation finding."""
    row: int
    field: str
    message: str
    value: str = ""

    @classmethod
    def from_error(cls, error: ValidationError) -> "ValidationErrorSchema":
        return cls(**error.to_dict())

    def to_error(self) -> ValidationError:
        return ValidationError(self.row, self.field, self.message, self.value)


# =============================================================
# SOURCE SCHEMAS
# =============================================================

class SourceDescriptorSchema(BaseModel):
    id: str
    display_name: str
    mode: str
    capabilities: List[str]
    requires_credentials: bool = False
    family: str = ""
    notes: str = ""

    @classmethod
    def from_descriptor(cls, descriptor: SourceDescriptor) -> "SourceDescriptorSchema":
        return cls(**descriptor.to_dict())


class SourceOutcomeSchema(BaseModel):
    source_id: str
    status: str
    mode: str
    event_count: int = 0
    truncated: bool = False
    error: Optional[Dict[str, Any]] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None


# =============================================================
# REQUEST SCHEMAS
# =============================================================

class CredentialFields(BaseModel):
    """Optional API credentials, only used by sources that need them."""
    api_key: Optional[str] = Field(None, description="API key (never logged)")
    api_secret: Optional[str] = Field(None, description="API secret (never logged)")

    def credentials(self) -> Optional[Credentials]:
        if not self.api_key and not self.api_secret:
            return None
        return Credentials(api_key=self.api_key, api_secret=self.api_secret)


class EventsRequest(CredentialFields):
    """Single-source request."""
    source_id: str = Field(..., min_length=1)
    account: str = Field(..., min_length=1)


class BatchRequest(CredentialFields):
    """Multi-source request."""
    source_ids: List[str]
    account: str = Field(..., min_length=1)


class ExportRequest(BaseModel):
    """Events to export plus the errors reported for them."""
    events: List[EventSchema] = Field(default_factory=list)
    validation_errors: List[ValidationErrorSchema] = Field(default_factory=list)


# =============================================================
# RESPONSE SCHEMAS
# =============================================================

class EventsResponse(BaseModel):
    source_id: str
    source_name: str
    mode: str
    events: List[EventSchema]
    validation_errors: List[ValidationErrorSchema]
    count: int
    truncated: bool = False
    review_required: bool = False
    partial_coverage: bool = False

    @classmethod
    def from_result(cls, result: SourceEventsResult) -> "EventsResponse":
        return cls(**result.to_dict())


class BatchResponse(BaseModel):
    account: str
    merged_events: List[EventSchema]
    validation_errors: List[ValidationErrorSchema]
    per_source_status: Dict[str, str]
    outcomes: Dict[str, SourceOutcomeSchema]
    dropped_duplicates: int = 0
    count: int

    @classmethod
    def from_result(cls, result: BatchResult) -> "BatchResponse":
        return cls(**result.to_dict())


class ErrorResponse(BaseModel):
    """Classified error body."""
    error: str
    type: str
    retryable: bool = False
    blocked_by_design: bool = False
    user_action: Optional[str] = None
    source_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
