"""
Shared fixtures for accounting event tests.
"""

from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

import pytest

from accounting_events.base import BaseSourceAdapter
from accounting_events.modes import build_mode_policy
from accounting_events.models import PERPS_CAPABILITIES, Event
from accounting_events.registry import SourceRegistry
from accounting_events.service import EventService


VALID_EVM = "0x" + "ab" * 20


def _event(**overrides: Any) -> Event:
    data = {
        "timestamp": "01/15/2024 10:30:00",
        "asset": "BTC",
        "amount": Decimal("0.5"),
        "fee": Decimal("1.25"),
        "realized_pnl": Decimal("100.5"),
        "settlement_token": "USDC",
        "notes": "Close Long @ 42000",
        "external_id": "0xabc-1",
        "category": "close_position",
    }
    data.update(overrides)
    return Event(**data)


class StubAdapter(BaseSourceAdapter):
    """In-memory adapter; never opens a network session."""

    def __init__(
        self,
        source_id: str,
        events: Optional[list] = None,
        error: Optional[BaseException] = None,
        before: Optional[Callable[[], Awaitable[None]]] = None,
        capabilities: frozenset = PERPS_CAPABILITIES,
        requires_credentials: bool = False,
    ) -> None:
        super().__init__()
        self._source_id = source_id
        self._events = events or []
        self._error = error
        self._before = before
        self._capabilities = capabilities
        self.requires_credentials = requires_credentials
        self.calls = 0

    @property
    def source_id(self) -> str:
        return self._source_id

    @property
    def display_name(self) -> str:
        return f"Stub {self._source_id}"

    @property
    def capabilities(self) -> frozenset:
        return self._capabilities

    def validate_account(self, account: str) -> None:
        if not account.startswith("0x"):
            raise self.invalid_account(account, "an address starting with 0x")

    async def fetch_events(self, ctx, account, credentials):
        self.calls += 1
        if self._before is not None:
            await self._before()
        if self._error is not None:
            raise self._error
        return list(self._events)

    @asynccontextmanager
    async def _open_session(self):
        yield None


@pytest.fixture
def make_event() -> Callable[..., Event]:
    """Factory for a valid close_position event with overrides."""
    return _event


@pytest.fixture
def make_adapter() -> Callable[..., StubAdapter]:
    return StubAdapter


@pytest.fixture
def account() -> str:
    return VALID_EVM


@pytest.fixture
def make_service() -> Callable[..., EventService]:
    """Build a service over stub adapters with optional mode overrides."""

    def build(*adapters: StubAdapter, modes: Optional[dict] = None) -> EventService:
        registry = SourceRegistry()
        for adapter in adapters:
            registry.register(adapter)
        registry.freeze()
        return EventService(registry, build_mode_policy(modes or {}, base={}))

    return build
