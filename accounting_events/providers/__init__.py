"""
Providers package - Source adapter implementations.
"""

from accounting_events.providers.aevo import AevoAdapter
from accounting_events.providers.cosmos_staking import (
    COSMOS_CHAINS,
    CosmosChain,
    CosmosStakingAdapter,
)
from accounting_events.providers.drift import DriftAdapter
from accounting_events.providers.hyperliquid import HyperliquidAdapter
from accounting_events.providers.kwenta import KwentaAdapter
from accounting_events.providers.levana import (
    LEVANA_DEPLOYMENTS,
    LevanaAdapter,
    LevanaDeployment,
)


__all__ = [
    "AevoAdapter",
    "COSMOS_CHAINS",
    "CosmosChain",
    "CosmosStakingAdapter",
    "DriftAdapter",
    "HyperliquidAdapter",
    "KwentaAdapter",
    "LEVANA_DEPLOYMENTS",
    "LevanaAdapter",
    "LevanaDeployment",
]
