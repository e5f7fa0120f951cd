"""
Accounting Event Models - Canonical record schema and request/result types.

============================================================
CANONICAL EVENT
============================================================
Every source adapter emits ONLY instances of Event.

- timestamp:        MM/DD/YYYY HH:MM:SS (UTC, second precision)
- asset:            ticker
- amount / fee:     non-negative, at most 8 fractional digits
- realized_pnl:     signed, at most 8 fractional digits
- settlement_token: token the P&L / reward is paid in
- external_id:      opaque natural key, unique per exported collection
- category:         closed set (see EventCategory)

Events are immutable. Re-fetch, never patch.

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Union

from accounting_events.decimals import to_plain_string


Number = Union[Decimal, int, float, str]


class EventCategory(str, Enum):
    """Closed set of accounting event categories."""
    OPEN_POSITION = "open_position"
    CLOSE_POSITION = "close_position"
    FUNDING_PAYMENT = "funding_payment"
    STAKING_REWARD = "staking_reward"
    SLASHING = "slashing"


VALID_CATEGORIES = frozenset(c.value for c in EventCategory)

# Categories that settle value and therefore need a settlement token
SETTLING_CATEGORIES = frozenset({
    EventCategory.CLOSE_POSITION.value,
    EventCategory.FUNDING_PAYMENT.value,
    EventCategory.STAKING_REWARD.value,
    EventCategory.SLASHING.value,
})

PERPS_CAPABILITIES = frozenset({
    EventCategory.OPEN_POSITION,
    EventCategory.CLOSE_POSITION,
    EventCategory.FUNDING_PAYMENT,
})

STAKING_CAPABILITIES = frozenset({
    EventCategory.STAKING_REWARD,
    EventCategory.SLASHING,
})


class Mode(str, Enum):
    """Per-source review/refusal policy. Never relaxes validation."""
    STRICT = "strict"
    ASSISTED = "assisted"
    PARTIAL = "partial"
    BLOCKED = "blocked"


class SourceStatus(str, Enum):
    """Progress of one source inside a batch request."""
    PENDING = "pending"
    LOADING = "loading"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Event:
    """
    Canonical accounting event - STRICT schema.

    Numeric fields are expected as Decimal. Other numeric types are
    accepted so that the Validation Engine can report on them instead of
    failing at construction time.
    """
    timestamp: str
    asset: str
    amount: Number
    fee: Number
    realized_pnl: Number
    settlement_token: str
    notes: str
    external_id: str
    category: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to the export shape (numbers rendered by the exporter)."""
        category = self.category.value if isinstance(self.category, Enum) else self.category
        return {
            "date": self.timestamp,
            "asset": self.asset,
            "amount": to_plain_string(self.amount),
            "fee": to_plain_string(self.fee),
            "pnl": to_plain_string(self.realized_pnl),
            "paymentToken": self.settlement_token,
            "notes": self.notes,
            "externalId": self.external_id,
            "category": category,
        }


@dataclass(frozen=True)
class ValidationError:
    """A single advisory, positional validation finding."""
    row_index: int
    field: str
    message: str
    offending_value: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "row": self.row_index,
            "field": self.field,
            "message": self.message,
            "value": self.offending_value,
        }

    def __str__(self) -> str:
        return f"Row {self.row_index}: [{self.field}] {self.message}"


@dataclass(frozen=True)
class Credentials:
    """API credentials for sources that need them."""
    api_key: Optional[str] = None
    api_secret: Optional[str] = None

    def is_complete(self) -> bool:
        """Check both key and secret are present."""
        return bool(self.api_key) and bool(self.api_secret)

    def __repr__(self) -> str:
        key = "***" if self.api_key else None
        secret = "***" if self.api_secret else None
        return f"Credentials(api_key={key!r}, api_secret={secret!r})"


@dataclass(frozen=True)
class SourceDescriptor:
    """Static description of a registered source."""
    id: str
    display_name: str
    mode: Mode
    capabilities: frozenset
    requires_credentials: bool = False
    family: str = ""
    notes: str = ""

    def supports(self, category: Union[EventCategory, str]) -> bool:
        """Check if the source may ever emit this category."""
        value = category.value if isinstance(category, EventCategory) else category
        return value in {c.value for c in self.capabilities}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "display_name": self.display_name,
            "mode": self.mode.value,
            "capabilities": sorted(c.value for c in self.capabilities),
            "requires_credentials": self.requires_credentials,
            "family": self.family,
            "notes": self.notes,
        }


@dataclass
class FetchResult:
    """Events produced by one adapter call."""
    source_id: str
    events: list[Event] = field(default_factory=list)
    truncated: bool = False
    pages_fetched: int = 0

    @property
    def count(self) -> int:
        return len(self.events)


@dataclass
class SourceEventsResult:
    """Response of a single-source request."""
    source_id: str
    source_name: str
    mode: Mode
    events: list[Event]
    validation_errors: list[ValidationError]
    truncated: bool = False
    review_required: bool = False
    partial_coverage: bool = False

    @property
    def count(self) -> int:
        return len(self.events)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "source_id": self.source_id,
            "source_name": self.source_name,
            "mode": self.mode.value,
            "events": [e.to_dict() for e in self.events],
            "validation_errors": [e.to_dict() for e in self.validation_errors],
            "count": self.count,
            "truncated": self.truncated,
            "review_required": self.review_required,
            "partial_coverage": self.partial_coverage,
        }


@dataclass
class SourceOutcome:
    """Per-source record inside a batch."""
    source_id: str
    status: SourceStatus = SourceStatus.PENDING
    mode: Mode = Mode.STRICT
    event_count: int = 0
    truncated: bool = False
    error: Optional[dict[str, Any]] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.status == SourceStatus.DONE

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "source_id": self.source_id,
            "status": self.status.value,
            "mode": self.mode.value,
            "event_count": self.event_count,
            "truncated": self.truncated,
            "error": self.error,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass(frozen=True)
class DroppedDuplicate:
    """A merge-time duplicate, kept for information only."""
    external_id: str
    source_id: str
    kept_from: str


@dataclass
class BatchResult:
    """Merged result of a batch request. Created per request."""
    account: str
    merged_events: list[Event]
    validation_errors: list[ValidationError]
    outcomes: dict[str, SourceOutcome]
    dropped_duplicates: list[DroppedDuplicate] = field(default_factory=list)

    @property
    def per_source_status(self) -> dict[str, SourceStatus]:
        return {source_id: o.status for source_id, o in self.outcomes.items()}

    @property
    def count(self) -> int:
        return len(self.merged_events)

    @property
    def failed_sources(self) -> list[str]:
        return [s for s, o in self.outcomes.items() if o.status == SourceStatus.ERROR]

    @property
    def truncated(self) -> bool:
        return any(o.truncated for o in self.outcomes.values())

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "account": self.account,
            "merged_events": [e.to_dict() for e in self.merged_events],
            "validation_errors": [e.to_dict() for e in self.validation_errors],
            "per_source_status": {s: st.value for s, st in self.per_source_status.items()},
            "outcomes": {s: o.to_dict() for s, o in self.outcomes.items()},
            "dropped_duplicates": len(self.dropped_duplicates),
            "count": self.count,
        }
