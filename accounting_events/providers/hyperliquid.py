"""
Hyperliquid Adapter - Perpetual fills and funding payments.

Data source: Hyperliquid info endpoint (https://api.hyperliquid.xyz/info)
- userFillsByTime: trade fills, max 2000 per response
- userFunding: funding deltas, max 2000 per response

Both streams are paged backward through time: the next request ends
1ms before the oldest record of the previous page.

Open/close is read from the `dir` field ("Open Long", "Close Short"...).
Realized P&L on closes comes from the platform-reported `closedPnl`.
"""

import asyncio
import logging
import time
from decimal import Decimal
from typing import Any, Optional

from accounting_events.base import (
    BaseSourceAdapter,
    FetchContext,
    Page,
    is_evm_address,
    parse_decimal,
    require_decimal,
    require_field,
    sort_events,
)
from accounting_events.decimals import format_epoch
from accounting_events.exceptions import MalformedPayloadError
from accounting_events.models import (
    PERPS_CAPABILITIES,
    Credentials,
    Event,
    EventCategory,
)


logger = logging.getLogger(__name__)


class HyperliquidAdapter(BaseSourceAdapter):
    """Hyperliquid perpetuals adapter."""

    API_URL = "https://api.hyperliquid.xyz/info"
    PAGE_SIZE = 2000
    SETTLEMENT_TOKEN = "USDC"

    family = "evm-perps"

    @property
    def source_id(self) -> str:
        return "hyperliquid"

    @property
    def display_name(self) -> str:
        return "Hyperliquid"

    @property
    def capabilities(self) -> frozenset:
        return PERPS_CAPABILITIES

    def validate_account(self, account: str) -> None:
        if not is_evm_address(account):
            raise self.invalid_account(account, "a 42-character hex address starting with 0x")

    async def fetch_events(
        self,
        ctx: FetchContext,
        account: str,
        credentials: Optional[Credentials],
    ) -> list[Event]:
        fills, funding = await asyncio.gather(
            ctx.paginate(self._page_fetcher(ctx, "userFillsByTime", account)),
            ctx.paginate(self._page_fetcher(ctx, "userFunding", account)),
        )

        logger.debug(f"[{self.source_id}] {len(fills)} fills, {len(funding)} funding entries")

        events = [self._normalize_fill(f) for f in fills]
        events.extend(self._normalize_funding(e) for e in funding)
        return sort_events(events)

    def _page_fetcher(self, ctx: FetchContext, request_type: str, account: str):
        """Build a backward-in-time page fetcher for one info request type."""

        async def fetch_page(end_time: Optional[int]) -> Page:
            payload = {
                "type": request_type,
                "user": account,
                "startTime": 0,
                "endTime": end_time if end_time is not None else int(time.time() * 1000),
            }
            if request_type == "userFillsByTime":
                payload["aggregateByTime"] = False

            data = await ctx.post_json(self.API_URL, payload)
            if data is None:
                return Page(items=[])
            if not isinstance(data, list):
                raise MalformedPayloadError(
                    message=f"Expected a list from {request_type}",
                    source_id=self.source_id,
                    raw_data=data,
                )

            if len(data) < self.PAGE_SIZE:
                return Page(items=data)

            oldest = min(int(require_field(item, "time", self.source_id)) for item in data)
            return Page(items=data, next_cursor=oldest - 1)

        return fetch_page

    # ─────────────────────────────────────────────────────────────
    # Normalization
    # ─────────────────────────────────────────────────────────────

    def _normalize_fill(self, fill: dict[str, Any]) -> Event:
        direction = str(require_field(fill, "dir", self.source_id, "fill direction"))
        is_close = direction.startswith("Close")

        size = abs(require_decimal(fill, "sz", self.source_id, "fill size"))
        fee = abs(parse_decimal(fill.get("fee") or "0", "fee", self.source_id))
        if is_close:
            pnl = require_decimal(fill, "closedPnl", self.source_id, "realized P&L of a close")
        else:
            pnl = Decimal(0)

        tid = require_field(fill, "tid", self.source_id, "trade id")
        tx_hash = fill.get("hash")

        return Event(
            timestamp=format_epoch(require_field(fill, "time", self.source_id), unit="ms"),
            asset=str(require_field(fill, "coin", self.source_id)),
            amount=size,
            fee=fee,
            realized_pnl=pnl,
            settlement_token=self.SETTLEMENT_TOKEN if is_close else "",
            notes=f"{direction} @ {fill.get('px', '')}",
            external_id=f"{tx_hash}-{tid}" if tx_hash else f"fill-{tid}",
            category=(
                EventCategory.CLOSE_POSITION.value if is_close
                else EventCategory.OPEN_POSITION.value
            ),
        )

    def _normalize_funding(self, entry: dict[str, Any]) -> Event:
        delta = require_field(entry, "delta", self.source_id, "funding delta")
        usdc = require_decimal(delta, "usdc", self.source_id, "funding amount")
        entry_time = require_field(entry, "time", self.source_id)
        coin = delta.get("coin", "")
        tx_hash = entry.get("hash")

        return Event(
            timestamp=format_epoch(entry_time, unit="ms"),
            asset=self.SETTLEMENT_TOKEN,
            amount=abs(usdc),
            fee=Decimal(0),
            realized_pnl=usdc,
            settlement_token=self.SETTLEMENT_TOKEN,
            notes=f"Funding: {coin} rate={delta.get('fundingRate', '')} size={delta.get('szi', '')}",
            # Funding hashes are shared by every coin settled in the same hour
            external_id=(
                f"{tx_hash}-funding-{coin}-{entry_time}" if tx_hash
                else f"funding-{coin}-{entry_time}"
            ),
            category=EventCategory.FUNDING_PAYMENT.value,
        )
