"""
Accounting Events Package - Per-account event normalizer and exporter.

Fetches perpetual-trading and staking history for one account from
several blockchain/exchange sources, normalizes it into one canonical
accounting event schema, validates it and exports CSV / JSON for tax
and accounting import.

Correctness over completeness: a value that is not explicitly reported
by the upstream protocol is never derived. Such sources fail with
InsufficientDataError instead.

Quick Start:
    from accounting_events import EventService, load_config

    async def export_account():
        service = EventService.from_config(load_config())

        result = await service.events("hyperliquid", "0x...")
        if result.validation_errors:
            for error in result.validation_errors:
                print(error)
            return

        print(service.export_csv(result.events, result.validation_errors))

Batch:
    result = await service.batch_events(
        ["osmosis-staking", "levana-osmosis"],
        "osmo1...",
        on_status=lambda source_id, status: print(source_id, status.value),
    )

Adding New Sources:
    class NewAdapter(BaseSourceAdapter):
        source_id = ...         # property
        display_name = ...      # property
        capabilities = ...      # property, frozenset of EventCategory

        def validate_account(self, account): ...
        async def fetch_events(self, ctx, account, credentials): ...

    registry.register(NewAdapter(config))
"""

from accounting_events.aggregator import BatchAggregator, merge_events
from accounting_events.base import (
    BaseSourceAdapter,
    FetchContext,
    Page,
    SourceAdapter,
    classify_http_status,
    require_decimal,
    require_field,
)
from accounting_events.config import ExportConfig, load_config
from accounting_events.exceptions import (
    AccountingEventsError,
    AdapterContractError,
    AuthInvalidError,
    AuthRequiredError,
    BatchFetchError,
    BlockedSourceError,
    CapabilityViolationError,
    ExportRefusedError,
    InsufficientDataError,
    InvalidInputError,
    MalformedPayloadError,
    NetworkError,
    RateLimitError,
    SourceAdapterError,
    UpstreamError,
    classify_error,
)
from accounting_events.exporter import (
    CSV_HEADER,
    export_csv,
    export_json,
    parse_csv,
    validate_csv_header,
)
from accounting_events.models import (
    BatchResult,
    Credentials,
    DroppedDuplicate,
    Event,
    EventCategory,
    FetchResult,
    Mode,
    SourceDescriptor,
    SourceEventsResult,
    SourceOutcome,
    SourceStatus,
    ValidationError,
)
from accounting_events.modes import (
    DEFAULT_SOURCE_MODES,
    ModePolicy,
    ModeSemantics,
    build_mode_policy,
)
from accounting_events.registry import SourceRegistry, build_default_registry
from accounting_events.service import EventService
from accounting_events.validation import validate, validate_event


__all__ = [
    # Service
    "EventService",
    # Models
    "BatchResult",
    "Credentials",
    "DroppedDuplicate",
    "Event",
    "EventCategory",
    "FetchResult",
    "Mode",
    "SourceDescriptor",
    "SourceEventsResult",
    "SourceOutcome",
    "SourceStatus",
    "ValidationError",
    # Adapters
    "BaseSourceAdapter",
    "FetchContext",
    "Page",
    "SourceAdapter",
    "classify_http_status",
    "require_decimal",
    "require_field",
    # Registry / modes
    "SourceRegistry",
    "build_default_registry",
    "DEFAULT_SOURCE_MODES",
    "ModePolicy",
    "ModeSemantics",
    "build_mode_policy",
    # Validation / export
    "validate",
    "validate_event",
    "CSV_HEADER",
    "export_csv",
    "export_json",
    "parse_csv",
    "validate_csv_header",
    # Aggregation
    "BatchAggregator",
    "merge_events",
    # Config
    "ExportConfig",
    "load_config",
    # Exceptions
    "AccountingEventsError",
    "AdapterContractError",
    "AuthInvalidError",
    "AuthRequiredError",
    "BatchFetchError",
    "BlockedSourceError",
    "CapabilityViolationError",
    "ExportRefusedError",
    "InsufficientDataError",
    "InvalidInputError",
    "MalformedPayloadError",
    "NetworkError",
    "RateLimitError",
    "SourceAdapterError",
    "UpstreamError",
    "classify_error",
]


__version__ = "1.0.0"
