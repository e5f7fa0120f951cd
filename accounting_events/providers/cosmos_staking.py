"""
Cosmos SDK Staking Adapter - Reward withdrawals and slashing.

Data source: chain LCD tx search (/cosmos/tx/v1beta1/txs)
- Rewards: MsgWithdrawDelegatorReward sent by the account
- Slashing: txs carrying a slash event for the account

Amounts come from event attributes in base units ("12345uatom,67uosmo")
and are scaled by the chain's denom decimals. Nothing is derived from
balance changes.

One adapter instance per chain; chains are plain records below.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Optional

from accounting_events.base import (
    BaseSourceAdapter,
    FetchContext,
    Page,
    is_bech32_address,
    require_field,
    sort_events,
)
from accounting_events.decimals import format_iso_timestamp, scale_integer
from accounting_events.exceptions import MalformedPayloadError
from accounting_events.models import (
    STAKING_CAPABILITIES,
    Credentials,
    Event,
    EventCategory,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CosmosChain:
    """Per-chain staking configuration."""
    id: str
    name: str
    lcd_base: str
    native_token: str
    denom: str
    decimals: int
    bech32_prefix: str


COSMOS_CHAINS = (
    CosmosChain("cosmos-hub", "Cosmos Hub", "https://rest.cosmos.directory/cosmoshub", "ATOM", "uatom", 6, "cosmos"),
    CosmosChain("osmosis", "Osmosis", "https://lcd.osmosis.zone", "OSMO", "uosmo", 6, "osmo"),
    CosmosChain("neutron", "Neutron", "https://rest.neutron.org", "NTRN", "untrn", 6, "neutron"),
    CosmosChain("juno", "Juno", "https://rest.cosmos.directory/juno", "JUNO", "ujuno", 6, "juno"),
    CosmosChain("stride", "Stride", "https://stride-fleet.main.stridenet.co", "STRD", "ustrd", 6, "stride"),
    CosmosChain("akash", "Akash", "https://rest.cosmos.directory/akash", "AKT", "uakt", 6, "akash"),
    CosmosChain("secret", "Secret Network", "https://lcd.secret.express", "SCRT", "uscrt", 6, "secret"),
)

WITHDRAW_REWARD_ACTION = "/cosmos.distribution.v1beta1.MsgWithdrawDelegatorReward"


def parse_denom_amount(value: str, denom: str) -> Optional[str]:
    """
    Pick the base-unit amount for `denom` out of a coin list.

    "12345uatom,678uosmo" -> "12345" for uatom. None if the denom is absent.
    """
    for part in (value or "").split(","):
        part = part.strip()
        if part.endswith(denom):
            raw = part[: -len(denom)]
            if raw.isdigit():
                return raw
    return None


def tx_events(tx: dict[str, Any]) -> list[dict[str, Any]]:
    """
    Events of a tx response.

    Older SDKs report them per message log, newer ones only at the top
    level. Some report both with identical content, so logs win.
    """
    from_logs = [e for log in (tx.get("logs") or []) for e in (log.get("events") or [])]
    return from_logs or list(tx.get("events") or [])


def _attribute(event: dict[str, Any], *keys: str) -> Optional[str]:
    for attribute in event.get("attributes") or []:
        if attribute.get("key") in keys and attribute.get("value"):
            return attribute["value"]
    return None


class CosmosStakingAdapter(BaseSourceAdapter):
    """Staking rewards and slashing for one Cosmos SDK chain."""

    PAGE_SIZE = 100

    family = "cosmos-staking"

    def __init__(self, chain: CosmosChain, config=None, session=None) -> None:
        super().__init__(config, session)
        self.chain = chain

    @property
    def source_id(self) -> str:
        return f"{self.chain.id}-staking"

    @property
    def display_name(self) -> str:
        return f"{self.chain.name} Staking"

    @property
    def capabilities(self) -> frozenset:
        return STAKING_CAPABILITIES

    def validate_account(self, account: str) -> None:
        prefix = self.chain.bech32_prefix
        if not is_bech32_address(account, prefix):
            raise self.invalid_account(account, f"a bech32 address starting with {prefix}1")

    async def fetch_events(
        self,
        ctx: FetchContext,
        account: str,
        credentials: Optional[Credentials],
    ) -> list[Event]:
        reward_txs = await ctx.paginate(self._search_fetcher(ctx, [
            f"message.sender='{account}'",
            f"message.action='{WITHDRAW_REWARD_ACTION}'",
        ]))
        slash_txs = await ctx.paginate(self._search_fetcher(ctx, [
            f"slash.address='{account}'",
        ]))

        events = list(self._reward_events(reward_txs))
        events.extend(self._slash_events(slash_txs))

        logger.debug(
            f"[{self.source_id}] {len(reward_txs)} reward txs, {len(slash_txs)} slash txs "
            f"-> {len(events)} events"
        )
        return sort_events(events)

    def _search_fetcher(self, ctx: FetchContext, filters: list[str]):
        url = f"{self.chain.lcd_base}/cosmos/tx/v1beta1/txs"

        async def fetch_page(offset: Optional[int]) -> Page:
            offset = offset or 0
            params = [("events", f) for f in filters]
            params += [
                ("order_by", "ORDER_BY_DESC"),
                ("pagination.limit", str(self.PAGE_SIZE)),
                ("pagination.offset", str(offset)),
            ]
            body = await ctx.get_json(url, params=params)
            if body is None:
                return Page(items=[])
            if not isinstance(body, dict):
                raise MalformedPayloadError(
                    message="Unexpected tx search response shape",
                    source_id=self.source_id,
                    raw_data=body,
                )
            txs = body.get("tx_responses") or []
            if len(txs) < self.PAGE_SIZE:
                return Page(items=txs)
            return Page(items=txs, next_cursor=offset + self.PAGE_SIZE)

        return fetch_page

    def _amount(self, raw: str) -> Decimal:
        try:
            return scale_integer(raw, self.chain.decimals)
        except ValueError as e:
            raise MalformedPayloadError(
                message=str(e),
                source_id=self.source_id,
                raw_data=raw,
                original_error=e,
            )

    def _matching(self, tx: dict[str, Any], event_type: str, keys: tuple) -> Iterable[Decimal]:
        """Scaled amounts of every `event_type` event in the tx for our denom."""
        for event in tx_events(tx):
            if event.get("type") != event_type:
                continue
            raw = parse_denom_amount(_attribute(event, *keys) or "", self.chain.denom)
            if raw is None:
                continue
            amount = self._amount(raw)
            if amount > 0:
                yield amount

    def _reward_events(self, txs: list[dict[str, Any]]) -> Iterable[Event]:
        for tx in txs:
            tx_hash = require_field(tx, "txhash", self.source_id)
            timestamp = self._timestamp(tx)
            # One withdraw_rewards event per validator withdrawn from
            for index, amount in enumerate(self._matching(tx, "withdraw_rewards", ("amount",))):
                yield Event(
                    timestamp=timestamp,
                    asset=self.chain.native_token,
                    amount=amount,
                    fee=Decimal(0),
                    realized_pnl=amount,
                    settlement_token=self.chain.native_token,
                    notes=f"{self.chain.name} staking reward withdrawal",
                    external_id=f"{tx_hash}-reward-{index}",
                    category=EventCategory.STAKING_REWARD.value,
                )

    def _slash_events(self, txs: list[dict[str, Any]]) -> Iterable[Event]:
        for tx in txs:
            tx_hash = require_field(tx, "txhash", self.source_id)
            timestamp = self._timestamp(tx)
            for index, amount in enumerate(self._matching(tx, "slash", ("amount", "burned_coins"))):
                yield Event(
                    timestamp=timestamp,
                    asset=self.chain.native_token,
                    amount=amount,
                    fee=Decimal(0),
                    realized_pnl=-amount,
                    settlement_token=self.chain.native_token,
                    notes=f"{self.chain.name} slashing event",
                    external_id=f"{tx_hash}-slash-{index}",
                    category=EventCategory.SLASHING.value,
                )

    def _timestamp(self, tx: dict[str, Any]) -> str:
        raw = require_field(tx, "timestamp", self.source_id, "block time")
        try:
            return format_iso_timestamp(raw)
        except ValueError as e:
            raise MalformedPayloadError(
                message=str(e),
                source_id=self.source_id,
                raw_data=raw,
                original_error=e,
            )
