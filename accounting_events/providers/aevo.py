"""
Aevo Adapter - Perpetual trade history (requires API credentials).

Data source: Aevo REST API (https://api.aevo.xyz)
- GET /trade-history: account fills, including trade_type="funding" rows

Authentication:
- AEVO-KEY + AEVO-SECRET headers
- Read-only keys are sufficient

Notes:
- `is_closing` marks closes directly
- `realized_pnl` is platform-reported; a closing trade without it cannot
  be exported (no reconstruction from prices)
- Timestamps are nanoseconds
- Only perpetual instruments ("-PERP") are processed
- Offset pagination, 50 rows per page
"""

import logging
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


class AevoAdapter(BaseSourceAdapter):
    """Aevo perpetuals adapter."""

    API_URL = "https://api.aevo.xyz/trade-history"
    PAGE_SIZE = 50
    SETTLEMENT_TOKEN = "USDC"
    PERP_SUFFIX = "-PERP"

    requires_credentials = True
    family = "evm-perps"
    notes = "Create a read-only API key at https://app.aevo.xyz/settings/api-keys"
    page_cap = 100

    @property
    def source_id(self) -> str:
        return "aevo"

    @property
    def display_name(self) -> str:
        return "Aevo"

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
        headers = {
            "AEVO-KEY": credentials.api_key,
            "AEVO-SECRET": credentials.api_secret,
        }

        async def fetch_page(offset: Optional[int]) -> Page:
            offset = offset or 0
            params = {
                "account": account,
                "limit": str(self.PAGE_SIZE),
                "offset": str(offset),
            }
            data = await ctx.get_json(self.API_URL, params=params, headers=headers)
            trades = self._extract_trades(data)
            if len(trades) < self.PAGE_SIZE:
                return Page(items=trades)
            return Page(items=trades, next_cursor=offset + self.PAGE_SIZE)

        trades = await ctx.paginate(fetch_page)

        events = []
        skipped = 0
        for trade in trades:
            if not str(trade.get("instrument_name") or "").endswith(self.PERP_SUFFIX):
                skipped += 1
                continue
            events.append(self._normalize_trade(trade))

        if skipped:
            logger.debug(f"[{self.source_id}] Skipped {skipped} non-perpetual trades")

        return sort_events(events)

    def _extract_trades(self, data: Any) -> list[dict[str, Any]]:
        """Response is either a list or {"trade_history": [...]}."""
        if data is None:
            return []
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            return data.get("trade_history") or []
        raise MalformedPayloadError(
            message="Unexpected trade-history response shape",
            source_id=self.source_id,
            raw_data=data,
        )

    def _normalize_trade(self, trade: dict[str, Any]) -> Event:
        instrument = trade["instrument_name"]
        asset = instrument[: -len(self.PERP_SUFFIX)]

        raw_ts = str(require_field(trade, "timestamp", self.source_id))
        if not raw_ts.isdigit():
            raise MalformedPayloadError(
                message=f"Invalid nanosecond timestamp {raw_ts!r}",
                source_id=self.source_id,
                raw_data=trade,
            )
        timestamp = format_epoch(raw_ts, unit="ns")
        trade_id = trade.get("trade_id") or raw_ts
        side = trade.get("side", "")

        if trade.get("trade_type") == "funding":
            pnl = require_decimal(trade, "realized_pnl", self.source_id, "funding amount")
            return Event(
                timestamp=timestamp,
                asset=asset,
                amount=abs(pnl),
                fee=Decimal(0),
                realized_pnl=pnl,
                settlement_token=self.SETTLEMENT_TOKEN,
                notes=f"Funding payment {side} {instrument}",
                external_id=f"aevo-funding-{trade_id}",
                category=EventCategory.FUNDING_PAYMENT.value,
            )

        filled = abs(parse_decimal(trade.get("filled") or trade.get("amount") or "0", "filled", self.source_id))
        fee = abs(parse_decimal(trade.get("fees") or "0", "fees", self.source_id))
        notes = f"{side} {instrument} @ {trade.get('price', '')} ({trade.get('liquidity') or 'taker'})"

        if trade.get("is_closing") is True:
            pnl = require_decimal(trade, "realized_pnl", self.source_id, "realized P&L of a closing trade")
            return Event(
                timestamp=timestamp,
                asset=asset,
                amount=filled,
                fee=fee,
                realized_pnl=pnl,
                settlement_token=self.SETTLEMENT_TOKEN,
                notes=notes,
                external_id=f"aevo-{trade_id}",
                category=EventCategory.CLOSE_POSITION.value,
            )

        return Event(
            timestamp=timestamp,
            asset=asset,
            amount=filled,
            fee=fee,
            realized_pnl=Decimal(0),
            settlement_token="",
            notes=notes,
            external_id=f"aevo-{trade_id}",
            category=EventCategory.OPEN_POSITION.value,
        )
