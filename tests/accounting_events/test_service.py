"""
Tests for the EventService facade and the source registry.
"""

from decimal import Decimal

import pytest

from accounting_events.config import ExportConfig
from accounting_events.exceptions import (
    BlockedSourceError,
    ExportRefusedError,
    InvalidInputError,
)
from accounting_events.models import Mode
from accounting_events.registry import SourceRegistry, build_default_registry
from accounting_events.service import EventService


# ============================================================
# SINGLE SOURCE
# ============================================================

class TestEvents:
    """Tests for EventService.events."""

    @pytest.mark.asyncio
    async def test_strict_source(self, make_adapter, make_event, make_service, account):
        service = make_service(make_adapter("a", events=[make_event()]))

        result = await service.events("a", account)

        assert result.mode == Mode.STRICT
        assert result.count == 1
        assert result.validation_errors == []
        assert not result.review_required
        assert not result.partial_coverage
        assert result.source_name == "Stub a"

    @pytest.mark.asyncio
    async def test_assisted_flags_review(self, make_adapter, make_event, make_service, account):
        service = make_service(make_adapter("a", events=[make_event()]), modes={"a": "assisted"})

        result = await service.events("a", account)

        assert result.review_required
        assert result.to_dict()["mode"] == "assisted"

    @pytest.mark.asyncio
    async def test_partial_flags_coverage(self, make_adapter, make_service, account):
        service = make_service(make_adapter("a"), modes={"a": "partial"})

        result = await service.events("a", account)

        assert result.partial_coverage
        assert result.events == []

    @pytest.mark.asyncio
    async def test_blocked_source_refused(self, make_adapter, make_service, account):
        adapter = make_adapter("a")
        service = make_service(adapter, modes={"a": "blocked"})

        with pytest.raises(BlockedSourceError):
            await service.events("a", account)

        assert adapter.calls == 0

    @pytest.mark.asyncio
    async def test_unknown_source(self, make_service, account):
        with pytest.raises(InvalidInputError, match="Unknown source 'nope'"):
            await make_service().events("nope", account)

    @pytest.mark.asyncio
    async def test_validation_errors_returned_not_raised(self, make_adapter, make_event, make_service, account):
        events = [make_event(external_id="a"), make_event(external_id="b", fee=Decimal("-2"))]
        service = make_service(make_adapter("a", events=events))

        result = await service.events("a", account)

        assert result.count == 2
        assert [(e.row_index, e.field) for e in result.validation_errors] == [(1, "fee")]

        with pytest.raises(ExportRefusedError):
            service.export_csv(result.events, result.validation_errors)

    @pytest.mark.asyncio
    async def test_fetch_then_export(self, make_adapter, make_event, make_service, account):
        service = make_service(make_adapter("a", events=[make_event()]))

        result = await service.events("a", account)
        content = service.export_csv(result.events, result.validation_errors)

        assert content.count("\r\n") == 2

    def test_list_sources(self, make_adapter, make_service):
        service = make_service(make_adapter("a"), make_adapter("b"), modes={"b": "blocked"})

        descriptors = service.list_sources()

        assert [(d.id, d.mode) for d in descriptors] == [("a", Mode.STRICT), ("b", Mode.BLOCKED)]


# ============================================================
# DEFAULT WIRING
# ============================================================

class TestDefaultWiring:
    """Tests for from_config and the built-in registry."""

    def test_all_builtin_sources(self):
        service = EventService.from_config(ExportConfig())

        ids = service.registry.list_sources()

        assert len(ids) == 15
        assert ids[:3] == ["hyperliquid", "aevo", "kwenta"]
        assert "levana-juno" in ids
        assert "secret-staking" in ids
        assert ids[-1] == "drift"

    def test_default_modes(self):
        service = EventService.from_config(ExportConfig())
        modes = {d.id: d.mode for d in service.list_sources()}

        assert modes["hyperliquid"] == Mode.STRICT
        assert modes["levana-osmosis"] == Mode.ASSISTED
        assert modes["kwenta"] == Mode.PARTIAL
        assert modes["drift"] == Mode.BLOCKED

    def test_enabled_sources_filter(self):
        config = ExportConfig(enabled_sources=["hyperliquid", "osmosis-staking", "missing"])

        registry = build_default_registry(config)

        assert registry.list_sources() == ["hyperliquid", "osmosis-staking"]

    def test_mode_overrides(self):
        service = EventService.from_config(ExportConfig(mode_overrides={"kwenta": "strict"}))

        assert service.policy.mode_of("kwenta") == Mode.STRICT

    def test_aevo_descriptor_requires_credentials(self):
        descriptors = {d.id: d for d in EventService.from_config().list_sources()}

        assert descriptors["aevo"].requires_credentials
        assert not descriptors["hyperliquid"].requires_credentials

    @pytest.mark.asyncio
    async def test_drift_refused_with_explanation(self):
        service = EventService.from_config()

        with pytest.raises(BlockedSourceError, match="per-trade realized PnL"):
            await service.events("drift", "So11111111111111111111111111111111111111112")


class TestSourceRegistry:
    """Tests for SourceRegistry."""

    def test_frozen_registry_rejects_changes(self, make_adapter):
        registry = SourceRegistry().freeze()

        with pytest.raises(RuntimeError):
            registry.register(make_adapter("a"))
        with pytest.raises(RuntimeError):
            registry.unregister("a")

    def test_replace_and_unregister(self, make_adapter):
        registry = SourceRegistry()
        first, second = make_adapter("a"), make_adapter("a")

        registry.register(first)
        registry.register(second)

        assert len(registry) == 1
        assert registry.get("a") is second
        assert registry.unregister("a") is second
        assert "a" not in registry

    def test_require_unknown(self):
        with pytest.raises(InvalidInputError):
            SourceRegistry().require("x")
