"""
Drift Adapter - Blocked.

Drift fill records carry side, fee, amount, price and market index, but
no per-fill realized P&L. `realizedPnl` / `settledPnl` only exist on the
cumulative on-chain PerpPosition. Reconstructing per-trade P&L would mean
computing position deltas, which is never done here.

The adapter is registered so callers get an explanation instead of an
empty list.
"""

from typing import Optional

from accounting_events.base import BaseSourceAdapter, FetchContext
from accounting_events.exceptions import InsufficientDataError
from accounting_events.models import Credentials, Event


BASE58_ALPHABET = set("123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz")

DRIFT_BLOCKED_REASON = (
    "Drift fill events do not include per-trade realized PnL; only cumulative "
    "position PnL is available on-chain and it will not be inferred from position deltas"
)


def is_solana_address(account: str) -> bool:
    """Base58, 32-44 characters."""
    return 32 <= len(account) <= 44 and all(c in BASE58_ALPHABET for c in account)


class DriftAdapter(BaseSourceAdapter):
    """Drift perps: never produces events."""

    family = "solana-perps"
    notes = DRIFT_BLOCKED_REASON
    blocked_reason = DRIFT_BLOCKED_REASON

    @property
    def source_id(self) -> str:
        return "drift"

    @property
    def display_name(self) -> str:
        return "Drift"

    @property
    def capabilities(self) -> frozenset:
        return frozenset()

    def validate_account(self, account: str) -> None:
        if not is_solana_address(account):
            raise self.invalid_account(account, "a base58 Solana address (32-44 characters)")

    async def fetch_events(
        self,
        ctx: FetchContext,
        account: str,
        credentials: Optional[Credentials],
    ) -> list[Event]:
        raise InsufficientDataError(
            message=DRIFT_BLOCKED_REASON,
            source_id=self.source_id,
            field_name="realized_pnl",
        )
