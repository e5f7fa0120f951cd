"""
Kwenta Adapter - Close-only export from the Synthetix perps subgraph.

Data source: Kwenta subgraph on Optimism (The Graph gateway)
- FuturesTrade entities, 1000 per page, skip pagination

Partial coverage:
- Only close_position events are exported, using the subgraph `pnl`
- Opens are not exported: the subgraph has no reliable open marker
- Funding is not discrete in Synthetix (accrued via funding index
  deltas), so it is never exported

Known limitation: a trade with pnl == 0 is skipped. It is either an
open or a break-even close and the payload cannot tell them apart.
Break-even closes are therefore missing from the export.
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
from accounting_events.exceptions import MalformedPayloadError, UpstreamError
from accounting_events.models import Credentials, Event, EventCategory


logger = logging.getLogger(__name__)


_TRADE_FIELDS = """
      id
      timestamp
      account
      abstractAccount
      asset
      marketKey
      size
      price
      positionSize
      positionClosed
      pnl
      feesPaid
      keeperFeesPaid
      orderType
      txHash
"""


def _trades_query(account_field: str) -> str:
    return f"""
  query GetTrades($account: String!, $skip: Int!) {{
    futuresTrades(
      where: {{ {account_field}: $account }}
      orderBy: timestamp
      orderDirection: desc
      first: 1000
      skip: $skip
    ) {{{_TRADE_FIELDS}    }}
  }}
"""


def resolve_asset(asset: Optional[str], market_key: Optional[str]) -> str:
    """
    Resolve a Synthetix asset / market key to a ticker.

    "sETH" -> "ETH", "sETHPERP" -> "ETH". Hex identifiers fall back to a
    shortened "KWENTA-0x..." label.
    """
    if asset and not asset.startswith("0x"):
        if asset.startswith("s") and len(asset) > 1 and asset[1] == asset[1].upper():
            return asset[1:]
        return asset

    if market_key and not market_key.startswith("0x"):
        cleaned = market_key
        if cleaned.upper().endswith("PERP"):
            cleaned = cleaned[:-4]
        if cleaned[:1] in ("s", "S"):
            cleaned = cleaned[1:]
        return cleaned or market_key

    if asset:
        return f"KWENTA-{asset[:10]}"
    if market_key:
        return f"KWENTA-{market_key[:10]}"
    return "UNKNOWN"


class KwentaAdapter(BaseSourceAdapter):
    """Kwenta close-only adapter."""

    SUBGRAPH_URL = (
        "https://gateway.thegraph.com/api/subgraphs/id/"
        "2tTiLxz6JCcTBBHcNpFH4LRYzLZQFbDBiGmvaRnZWP5o"
    )
    PAGE_SIZE = 1000
    SETTLEMENT_TOKEN = "sUSD"

    family = "evm-perps"
    notes = (
        "Close-only. Break-even closes (pnl = 0) are not exported. "
        "Smart margin users may need their smart margin account address."
    )
    page_cap = 5

    @property
    def source_id(self) -> str:
        return "kwenta"

    @property
    def display_name(self) -> str:
        return "Kwenta"

    @property
    def capabilities(self) -> frozenset:
        return frozenset({EventCategory.CLOSE_POSITION})

    def validate_account(self, account: str) -> None:
        if not is_evm_address(account):
            raise self.invalid_account(
                account,
                "a 42-character hex address starting with 0x "
                "(possibly your Kwenta smart margin account)",
            )

    async def fetch_events(
        self,
        ctx: FetchContext,
        account: str,
        credentials: Optional[Credentials],
    ) -> list[Event]:
        trades = await ctx.paginate(self._page_fetcher(ctx, "account", account))
        if not trades:
            # Smart margin owner lookup
            trades = await ctx.paginate(self._page_fetcher(ctx, "abstractAccount", account))

        events = []
        for trade in trades:
            event = self._normalize_close(trade)
            if event is not None:
                events.append(event)

        logger.debug(
            f"[{self.source_id}] {len(events)} closes from {len(trades)} trades "
            f"({len(trades) - len(events)} skipped with pnl = 0)"
        )
        return sort_events(events)

    def _page_fetcher(self, ctx: FetchContext, account_field: str, account: str):
        query = _trades_query(account_field)

        async def fetch_page(skip: Optional[int]) -> Page:
            skip = skip or 0
            body = await ctx.post_json(
                self.SUBGRAPH_URL,
                {"query": query, "variables": {"account": account.lower(), "skip": skip}},
            )
            if body is None:
                return Page(items=[])
            if not isinstance(body, dict):
                raise MalformedPayloadError(
                    message="Unexpected subgraph response shape",
                    source_id=self.source_id,
                    raw_data=body,
                )
            if body.get("errors"):
                messages = ", ".join(str(e.get("message", e)) for e in body["errors"])
                raise UpstreamError(
                    message=f"Subgraph GraphQL error: {messages}",
                    source_id=self.source_id,
                    request_url=self.SUBGRAPH_URL,
                )

            trades = (body.get("data") or {}).get("futuresTrades") or []
            if len(trades) < self.PAGE_SIZE:
                return Page(items=trades)
            return Page(items=trades, next_cursor=skip + self.PAGE_SIZE)

        return fetch_page

    def _normalize_close(self, trade: dict[str, Any]) -> Optional[Event]:
        pnl = require_decimal(trade, "pnl", self.source_id, "realized P&L")
        if pnl == 0:
            return None

        size = abs(parse_decimal(trade.get("size") or "0", "size", self.source_id))
        fees_paid = parse_decimal(trade.get("feesPaid") or "0", "feesPaid", self.source_id)
        keeper_fees = parse_decimal(trade.get("keeperFeesPaid") or "0", "keeperFeesPaid", self.source_id)

        order_type = trade.get("orderType")
        label = "Liquidation" if order_type == "Liquidation" else (order_type or "Close")
        closed = "full close" if trade.get("positionClosed") else "partial close"
        trade_id = require_field(trade, "id", self.source_id, "trade id")
        tx_hash = trade.get("txHash")

        return Event(
            timestamp=format_epoch(require_field(trade, "timestamp", self.source_id), unit="s"),
            asset=resolve_asset(trade.get("asset"), trade.get("marketKey")),
            amount=size,
            fee=fees_paid + keeper_fees,
            realized_pnl=pnl,
            settlement_token=self.SETTLEMENT_TOKEN,
            notes=f"{label} @ {trade.get('price') or 'N/A'} ({closed})",
            external_id=f"{tx_hash}-{trade_id}" if tx_hash else f"kwenta-{trade_id}",
            category=EventCategory.CLOSE_POSITION.value,
        )
