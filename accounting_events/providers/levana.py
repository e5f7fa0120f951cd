"""
Levana Adapter - CosmWasm perps on several Cosmos chains (assisted).

Data source: chain LCD smart-contract queries
1. Factory contract: {"markets": {}} lists the markets
2. Each market: {"trade_history": {owner, start_after, limit}}

Smart query messages are base64-encoded JSON in the URL path.

Assisted mode: trade history carries no fee breakdown and no
funding record, so every result must be reviewed before it is trusted.
A closed trade without an explicit pnl is never exported.
"""

import base64
import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional
from urllib.parse import quote

from accounting_events.base import (
    BaseSourceAdapter,
    FetchContext,
    Page,
    is_bech32_address,
    require_decimal,
    require_field,
    sort_events,
)
from accounting_events.decimals import format_epoch
from accounting_events.exceptions import InsufficientDataError, MalformedPayloadError
from accounting_events.models import Credentials, Event, EventCategory


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LevanaDeployment:
    """One Levana deployment."""
    id: str
    name: str
    lcd_base: str
    factory_contract: str
    bech32_prefix: str
    settlement_token: str


LEVANA_DEPLOYMENTS = (
    LevanaDeployment(
        id="osmosis",
        name="Osmosis",
        lcd_base="https://lcd.osmosis.zone",
        factory_contract="osmo1ssw6x553kzqher0eqsiruj0987dxmmy0yxf96j9v0lqd6q0skjsqknppnw",
        bech32_prefix="osmo",
        settlement_token="USDC",
    ),
    LevanaDeployment(
        id="injective",
        name="Injective",
        lcd_base="https://lcd.injective.network",
        factory_contract="inj1vdu3s39dl8t5l88tyqwuhzklsx9587adv8cnn9",
        bech32_prefix="inj",
        settlement_token="USDT",
    ),
    LevanaDeployment(
        id="neutron",
        name="Neutron",
        lcd_base="https://rest.neutron.org",
        factory_contract="neutron1an6v6eezl5sxlsfqkqsjhswjdg7pqalhn5hxq2yddpkqflps32sq6hm3qf",
        bech32_prefix="neutron",
        settlement_token="USDC",
    ),
    LevanaDeployment(
        id="juno",
        name="Juno",
        lcd_base="https://rest.cosmos.directory/juno",
        factory_contract="juno1smrp26pc2n25r4ee08fkx5k5ygmejnnwfvhwvg6gu2grsv9vstqq3udexv",
        bech32_prefix="juno",
        settlement_token="USDC",
    ),
)


def encode_query(message: dict[str, Any]) -> str:
    """Base64 JSON smart query, escaped for use as a path segment."""
    raw = base64.b64encode(json.dumps(message, separators=(",", ":")).encode()).decode()
    return quote(raw, safe="")


class LevanaAdapter(BaseSourceAdapter):
    """Levana perps adapter for one deployment."""

    PAGE_SIZE = 100

    family = "cosmwasm-perps"
    notes = "Fees and funding are not reported by trade history; review before use."

    def __init__(self, deployment: LevanaDeployment, config=None, session=None) -> None:
        super().__init__(config, session)
        self.deployment = deployment

    @property
    def source_id(self) -> str:
        return f"levana-{self.deployment.id}"

    @property
    def display_name(self) -> str:
        return f"Levana ({self.deployment.name})"

    @property
    def capabilities(self) -> frozenset:
        return frozenset({EventCategory.OPEN_POSITION, EventCategory.CLOSE_POSITION})

    def validate_account(self, account: str) -> None:
        prefix = self.deployment.bech32_prefix
        if not is_bech32_address(account, prefix):
            raise self.invalid_account(account, f"a bech32 address starting with {prefix}1")

    def _smart_url(self, contract: str, message: dict[str, Any]) -> str:
        return (
            f"{self.deployment.lcd_base}/cosmwasm/wasm/v1/contract/"
            f"{contract}/smart/{encode_query(message)}"
        )

    async def fetch_events(
        self,
        ctx: FetchContext,
        account: str,
        credentials: Optional[Credentials],
    ) -> list[Event]:
        markets = await self._fetch_markets(ctx)
        if not markets:
            return []

        events = []
        for market_addr, market_id in markets:
            trades = await ctx.paginate(self._trade_page_fetcher(ctx, market_addr, account))
            for trade in trades:
                events.append(self._normalize_trade(trade, market_addr, market_id))

        logger.debug(f"[{self.source_id}] {len(events)} trades across {len(markets)} markets")
        return sort_events(events)

    async def _fetch_markets(self, ctx: FetchContext) -> list[tuple[str, str]]:
        """(market_addr, market_id) for every market of the factory."""
        body = await ctx.get_json(self._smart_url(self.deployment.factory_contract, {"markets": {}}))
        data = (body or {}).get("data") or {}
        markets = []
        for market in data.get("markets") or []:
            if isinstance(market, dict):
                addr = require_field(market, "market_addr", self.source_id, "market address")
                markets.append((addr, market.get("market_id") or addr))
            elif isinstance(market, str):
                # Factory only listed the id; resolve its contract address
                info = await ctx.get_json(self._smart_url(
                    self.deployment.factory_contract,
                    {"market_info": {"market_id": market}},
                ))
                info_data = (info or {}).get("data") or {}
                addr = require_field(info_data, "market_addr", self.source_id, "market address")
                markets.append((addr, market))
            else:
                raise MalformedPayloadError(
                    message="Unexpected market entry in factory response",
                    source_id=self.source_id,
                    raw_data=market,
                )
        return markets

    def _trade_page_fetcher(self, ctx: FetchContext, market_addr: str, account: str):
        async def fetch_page(start_after: Optional[str]) -> Page:
            body = await ctx.get_json(self._smart_url(market_addr, {
                "trade_history": {
                    "owner": account,
                    "start_after": start_after,
                    "limit": self.PAGE_SIZE,
                },
            }))
            trades = ((body or {}).get("data") or {}).get("trades") or []
            if len(trades) < self.PAGE_SIZE:
                return Page(items=trades)
            return Page(items=trades, next_cursor=str(trades[-1].get("trade_id")))

        return fetch_page

    def _normalize_trade(self, trade: dict[str, Any], market_addr: str, market_id: str) -> Event:
        collateral = abs(require_decimal(trade, "collateral", self.source_id))
        direction = trade.get("direction", "")
        trade_id = require_field(trade, "trade_id", self.source_id, "trade id")
        external_id = trade.get("tx_hash") or f"{market_addr}-{trade_id}"
        opened_at = require_field(trade, "open_timestamp", self.source_id)

        if trade.get("close_price") is not None:
            if trade.get("pnl") is None:
                raise InsufficientDataError(
                    message=(
                        f"Closed trade {trade_id} on {market_id} has no explicit pnl; "
                        f"it will not be derived from prices"
                    ),
                    source_id=self.source_id,
                    field_name="pnl",
                )
            return Event(
                timestamp=format_epoch(trade.get("close_timestamp") or opened_at, unit="s"),
                asset=market_id,
                amount=collateral,
                fee=Decimal(0),
                realized_pnl=require_decimal(trade, "pnl", self.source_id),
                settlement_token=self.deployment.settlement_token,
                notes=f"Levana {self.deployment.name} {direction} close",
                external_id=external_id,
                category=EventCategory.CLOSE_POSITION.value,
            )

        return Event(
            timestamp=format_epoch(opened_at, unit="s"),
            asset=market_id,
            amount=collateral,
            fee=Decimal(0),
            realized_pnl=Decimal(0),
            settlement_token=self.deployment.settlement_token,
            notes=f"Levana {self.deployment.name} {direction} open",
            external_id=external_id,
            category=EventCategory.OPEN_POSITION.value,
        )
