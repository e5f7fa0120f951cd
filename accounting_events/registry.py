"""
Source Registry - Registered adapters keyed by stable source id.

Features:
- Adapter registration and discovery in registration order
- Descriptors combining static adapter facts with the mode policy
- Freeze after start-up so concurrent requests only ever read it
"""

import logging
from typing import Iterable, Optional

from accounting_events.base import BaseSourceAdapter, SourceAdapter
from accounting_events.config import ExportConfig
from accounting_events.exceptions import InvalidInputError
from accounting_events.modes import ModePolicy
from accounting_events.models import SourceDescriptor
from accounting_events.providers import (
    COSMOS_CHAINS,
    LEVANA_DEPLOYMENTS,
    AevoAdapter,
    CosmosStakingAdapter,
    DriftAdapter,
    HyperliquidAdapter,
    KwentaAdapter,
    LevanaAdapter,
)


logger = logging.getLogger(__name__)


class SourceRegistry:
    """
    Central registry for source adapters.

    Usage:
        registry = SourceRegistry()
        registry.register(HyperliquidAdapter(config))
        registry.freeze()

        adapter = registry.require("hyperliquid")
    """

    def __init__(self) -> None:
        self._adapters: dict[str, SourceAdapter] = {}
        self._frozen = False

    def register(self, adapter: SourceAdapter) -> None:
        """Register an adapter under its source id."""
        if self._frozen:
            raise RuntimeError("Registry is frozen")

        source_id = adapter.source_id
        if source_id in self._adapters:
            logger.warning(f"Source '{source_id}' already registered, replacing")

        self._adapters[source_id] = adapter
        logger.debug(f"Registered source '{source_id}'")

    def unregister(self, source_id: str) -> Optional[SourceAdapter]:
        """Unregister an adapter."""
        if self._frozen:
            raise RuntimeError("Registry is frozen")
        adapter = self._adapters.pop(source_id, None)
        if adapter is not None:
            logger.info(f"Unregistered source '{source_id}'")
        return adapter

    def freeze(self) -> "SourceRegistry":
        """Disallow further changes."""
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, source_id: str) -> Optional[SourceAdapter]:
        """Get an adapter by id, or None."""
        return self._adapters.get(source_id)

    def require(self, source_id: str) -> SourceAdapter:
        """
        Get an adapter by id.

        Raises:
            InvalidInputError: If no source has this id
        """
        adapter = self._adapters.get(source_id)
        if adapter is None:
            raise InvalidInputError(
                message=f"Unknown source '{source_id}'",
                source_id=source_id,
                field_name="source_id",
                value=source_id,
            )
        return adapter

    def list_sources(self) -> list[str]:
        """Source ids in registration order."""
        return list(self._adapters)

    def descriptors(self, policy: ModePolicy) -> list[SourceDescriptor]:
        """Descriptor for every source under the given policy."""
        result = []
        for source_id, adapter in self._adapters.items():
            mode = policy.mode_of(source_id)
            if isinstance(adapter, BaseSourceAdapter):
                result.append(adapter.describe(mode))
            else:
                result.append(SourceDescriptor(
                    id=source_id,
                    display_name=adapter.display_name,
                    mode=mode,
                    capabilities=frozenset(adapter.capabilities),
                    requires_credentials=adapter.requires_credentials,
                    family=adapter.family,
                ))
        return result

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)


def default_adapters(config: ExportConfig) -> Iterable[BaseSourceAdapter]:
    """Every built-in adapter, configured."""
    yield HyperliquidAdapter(config)
    yield AevoAdapter(config)
    yield KwentaAdapter(config)
    for deployment in LEVANA_DEPLOYMENTS:
        yield LevanaAdapter(deployment, config)
    for chain in COSMOS_CHAINS:
        yield CosmosStakingAdapter(chain, config)
    yield DriftAdapter(config)


def build_default_registry(config: Optional[ExportConfig] = None) -> SourceRegistry:
    """
    Build and freeze the registry of built-in sources.

    config.enabled_sources, when non-empty, limits which are registered.
    """
    config = config or ExportConfig()
    enabled = set(config.enabled_sources)

    registry = SourceRegistry()
    for adapter in default_adapters(config):
        if enabled and adapter.source_id not in enabled:
            continue
        registry.register(adapter)

    unknown = enabled - set(registry.list_sources())
    if unknown:
        logger.warning(f"Ignoring unknown enabled sources: {sorted(unknown)}")

    logger.info(f"Registered {len(registry)} sources")
    return registry.freeze()
