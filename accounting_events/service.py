"""
Event Service - Caller-facing facade.

Ties the registry, mode policy, validation, aggregation and export
together. The API router and the CLI only talk to this class.

Every call recomputes from upstream; nothing is cached or persisted.
"""

import logging
from typing import Iterable, Optional, Sequence

from accounting_events.aggregator import BatchAggregator, StatusCallback
from accounting_events.config import ExportConfig
from accounting_events.exporter import export_csv, export_json
from accounting_events.modes import ModePolicy, build_mode_policy
from accounting_events.models import (
    BatchResult,
    Credentials,
    Event,
    SourceDescriptor,
    SourceEventsResult,
    ValidationError,
)
from accounting_events.registry import SourceRegistry, build_default_registry
from accounting_events.validation import validate


logger = logging.getLogger(__name__)


class EventService:
    """
    Fetch, validate and export accounting events.

    Usage:
        service = EventService.from_config(load_config())
        result = await service.events("hyperliquid", "0x...")
        csv_text = service.export_csv(result.events, result.validation_errors)
    """

    def __init__(self, registry: SourceRegistry, policy: ModePolicy) -> None:
        self._registry = registry
        self._policy = policy
        self._aggregator = BatchAggregator(registry, policy)

    @classmethod
    def from_config(cls, config: Optional[ExportConfig] = None) -> "EventService":
        """Build the default registry and policy from configuration."""
        config = config or ExportConfig()
        registry = build_default_registry(config)
        policy = build_mode_policy(config.mode_overrides)
        return cls(registry, policy)

    @property
    def registry(self) -> SourceRegistry:
        return self._registry

    @property
    def policy(self) -> ModePolicy:
        return self._policy

    def list_sources(self) -> list[SourceDescriptor]:
        """Descriptors for every registered source."""
        return self._registry.descriptors(self._policy)

    async def events(
        self,
        source_id: str,
        account: str,
        credentials: Optional[Credentials] = None,
    ) -> SourceEventsResult:
        """
        Fetch and validate one source.

        Validation errors are returned alongside the events, never raised.

        Raises:
            InvalidInputError: Unknown source or bad account
            BlockedSourceError: Source is in Blocked mode
            SourceAdapterError: Any classified adapter failure
        """
        adapter = self._registry.require(source_id)
        self._policy.ensure_allowed(source_id, getattr(adapter, "blocked_reason", None))

        result = await adapter.fetch(account, credentials)
        errors = validate(result.events, adapter.capabilities)
        semantics = self._policy.semantics_of(source_id)

        if errors:
            logger.warning(f"[{source_id}] {len(errors)} validation errors in {result.count} events")

        return SourceEventsResult(
            source_id=source_id,
            source_name=adapter.display_name,
            mode=semantics.mode,
            events=result.events,
            validation_errors=errors,
            truncated=result.truncated,
            review_required=semantics.requires_review,
            partial_coverage=semantics.partial_coverage,
        )

    async def batch_events(
        self,
        source_ids: Iterable[str],
        account: str,
        credentials: Optional[Credentials] = None,
        on_status: Optional[StatusCallback] = None,
    ) -> BatchResult:
        """Fetch several sources concurrently and merge."""
        return await self._aggregator.run(source_ids, account, credentials, on_status)

    def export_csv(
        self,
        events: Sequence[Event],
        validation_errors: Optional[Sequence[ValidationError]] = None,
    ) -> str:
        return export_csv(events, validation_errors)

    def export_json(
        self,
        events: Sequence[Event],
        validation_errors: Optional[Sequence[ValidationError]] = None,
    ) -> str:
        return export_json(events, validation_errors)
