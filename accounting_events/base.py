"""
Source Adapter contract - Interface every per-chain client implements.

All adapters MUST:
- Reject a malformed account before any network access (InvalidInputError)
- Paginate until the upstream signals completion or the page cap is hit
  (hitting the cap marks the result truncated, it is not a failure)
- Treat "not found" / empty upstream results as a valid empty sequence
- Emit only categories from their declared capability set
- NEVER derive a financial value from balance deltas or estimates. If a
  value required for an Event field is not an explicit protocol-level
  quantity in the upstream payload, fail with InsufficientDataError.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

import aiohttp

from accounting_events.config import ExportConfig
from accounting_events.decimals import TIMESTAMP_FORMAT, parse_and_truncate
from accounting_events.exceptions import (
    AdapterContractError,
    AuthInvalidError,
    AuthRequiredError,
    CapabilityViolationError,
    InsufficientDataError,
    InvalidInputError,
    MalformedPayloadError,
    NetworkError,
    RateLimitError,
    SourceAdapterError,
    UpstreamError,
)
from accounting_events.logging_utils import mask_headers, mask_params, mask_url
from accounting_events.models import (
    Credentials,
    Event,
    EventCategory,
    FetchResult,
    Mode,
    SourceDescriptor,
)


logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────
# Contract
# ─────────────────────────────────────────────────────────────

@runtime_checkable
class SourceAdapter(Protocol):
    """What the registry, service and aggregator rely on."""

    source_id: str
    display_name: str
    capabilities: frozenset
    requires_credentials: bool
    family: str

    def validate_account(self, account: str) -> None: ...

    async def fetch(
        self,
        account: str,
        credentials: Optional[Credentials] = None,
    ) -> FetchResult: ...


# ─────────────────────────────────────────────────────────────
# HTTP classification
# ─────────────────────────────────────────────────────────────

def classify_http_status(
    status: int,
    source_id: Optional[str] = None,
    url: Optional[str] = None,
    body: Optional[str] = None,
    retry_after: Optional[str] = None,
) -> SourceAdapterError:
    """Map a non-2xx, non-404 HTTP status to a classified error."""
    if status in (401, 403):
        return AuthInvalidError(
            message=f"Authentication failed (HTTP {status})",
            source_id=source_id,
            context={"status_code": status},
        )
    if status == 429:
        return RateLimitError(
            message="Rate limited by upstream API",
            source_id=source_id,
            retry_after_seconds=int(retry_after) if retry_after and retry_after.isdigit() else None,
            request_url=url,
        )
    return UpstreamError(
        message=f"HTTP {status}",
        source_id=source_id,
        status_code=status,
        response_body=(body or "")[:500],
        request_url=url,
    )


@dataclass
class Page:
    """One upstream page and the cursor for the next one (None = done)."""
    items: Sequence[Any]
    next_cursor: Optional[Any] = None


PageFetcher = Callable[[Optional[Any]], Awaitable[Page]]


class FetchContext:
    """
    Per-call fetch state.

    One context exists per adapter call, so concurrent fetches never
    share mutable state. Pages are fetched strictly in order: page N+1
    needs page N's cursor.
    """

    def __init__(
        self,
        source_id: str,
        session: aiohttp.ClientSession,
        max_pages: int = 50,
        request_timeout: float = 30.0,
        max_retries: int = 1,
        retry_backoff_base: float = 1.5,
    ) -> None:
        self.source_id = source_id
        self.session = session
        self.max_pages = max_pages
        self.request_timeout = request_timeout
        self.max_retries = max_retries
        self.retry_backoff_base = retry_backoff_base
        self.truncated = False
        self.pages_fetched = 0
        self.requests_made = 0

    async def paginate(
        self,
        fetch_page: PageFetcher,
        max_pages: Optional[int] = None,
    ) -> list[Any]:
        """
        Fetch pages until the upstream signals completion.

        Completion is an empty page or a page without a next cursor.
        Reaching the page cap sets `truncated` and returns what was read.
        """
        limit = max_pages or self.max_pages
        items: list[Any] = []
        cursor: Optional[Any] = None

        for _ in range(limit):
            page = await fetch_page(cursor)
            self.pages_fetched += 1
            items.extend(page.items)
            if not page.items or page.next_cursor is None:
                return items
            cursor = page.next_cursor

        self.truncated = True
        logger.warning(
            f"[{self.source_id}] Page cap of {limit} reached, results truncated "
            f"({len(items)} items)"
        )
        return items

    async def get_json(
        self,
        url: str,
        params: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """GET returning decoded JSON, or None when the upstream says 404."""
        return await self.request_json("GET", url, params=params, headers=headers)

    async def post_json(
        self,
        url: str,
        payload: Any,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """POST a JSON body returning decoded JSON, or None on 404."""
        return await self.request_json("POST", url, json_body=payload, headers=headers)

    async def request_json(
        self,
        method: str,
        url: str,
        params: Any = None,
        json_body: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """Make a request with limited retries for transient failures."""
        for attempt in range(self.max_retries + 1):
            try:
                return await self._request_once(method, url, params, json_body, headers)
            except (NetworkError, UpstreamError) as e:
                transient = isinstance(e, NetworkError) or (
                    not isinstance(e, RateLimitError) and e.is_server_error()
                )
                if not transient or attempt >= self.max_retries:
                    raise
                wait_time = self.retry_backoff_base ** attempt
                logger.warning(
                    f"[{self.source_id}] Retry {attempt + 1}/{self.max_retries} "
                    f"in {wait_time:.1f}s: {e}"
                )
                await asyncio.sleep(wait_time)

        # range() above always returns or raises
        raise AssertionError("unreachable")

    async def _request_once(
        self,
        method: str,
        url: str,
        params: Any,
        json_body: Any,
        headers: Optional[dict[str, str]],
    ) -> Any:
        """Single HTTP call scoped by its own timeout."""
        self.requests_made += 1
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)
        logged_params = mask_params(params) if isinstance(params, dict) else params
        logger.debug(
            f"[{self.source_id}] {method} {mask_url(url)} "
            f"params={logged_params} headers={mask_headers(headers)}"
        )

        try:
            async with self.session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=headers,
                timeout=timeout,
            ) as response:
                if response.status == 404:
                    logger.debug(f"[{self.source_id}] 404 treated as empty result")
                    return None

                if not 200 <= response.status < 300:
                    body = await response.text()
                    raise classify_http_status(
                        response.status,
                        source_id=self.source_id,
                        url=mask_url(url),
                        body=body,
                        retry_after=response.headers.get("Retry-After"),
                    )

                try:
                    return await response.json(content_type=None)
                except (aiohttp.ContentTypeError, ValueError) as e:
                    raise MalformedPayloadError(
                        message="Response body is not valid JSON",
                        source_id=self.source_id,
                        original_error=e,
                    )

        except asyncio.TimeoutError as e:
            raise NetworkError(
                message=f"Request timed out after {self.request_timeout}s",
                source_id=self.source_id,
                request_url=mask_url(url),
                original_error=e,
            )
        except aiohttp.ClientError as e:
            raise NetworkError(
                message=f"Could not reach API: {e}",
                source_id=self.source_id,
                request_url=mask_url(url),
                original_error=e,
            )


# ─────────────────────────────────────────────────────────────
# Non-inference helpers
# ─────────────────────────────────────────────────────────────

def require_field(
    payload: Mapping[str, Any],
    key: str,
    source_id: str,
    description: Optional[str] = None,
) -> Any:
    """
    Return an explicit upstream value or raise InsufficientDataError.

    Missing, null and blank values are all "not reported". The caller
    must not substitute a derived value.
    """
    value = payload.get(key) if isinstance(payload, Mapping) else None
    if value is None or (isinstance(value, str) and not value.strip()):
        what = description or key
        raise InsufficientDataError(
            message=(
                f"Upstream does not report {what} explicitly; "
                f"it will not be derived from balances or estimates"
            ),
            source_id=source_id,
            field_name=key,
            context={"available_fields": sorted(payload)[:25] if isinstance(payload, Mapping) else []},
        )
    return value


def require_decimal(
    payload: Mapping[str, Any],
    key: str,
    source_id: str,
    description: Optional[str] = None,
) -> Decimal:
    """Explicit upstream number, truncated to 8 places."""
    raw = require_field(payload, key, source_id, description)
    try:
        return parse_and_truncate(raw, key)
    except ValueError as e:
        raise MalformedPayloadError(
            message=str(e),
            source_id=source_id,
            raw_data=raw,
            original_error=e,
        )


def parse_decimal(value: Any, field_name: str, source_id: str) -> Decimal:
    """Parse an upstream number that is present, raising MalformedPayloadError."""
    try:
        return parse_and_truncate(value, field_name)
    except ValueError as e:
        raise MalformedPayloadError(
            message=str(e),
            source_id=source_id,
            raw_data=value,
            original_error=e,
        )


# ─────────────────────────────────────────────────────────────
# Account predicates
# ─────────────────────────────────────────────────────────────

_HEX = set("0123456789abcdefABCDEF")
_BECH32_CHARSET = set("qpzry9x8gf2tvdw0s3jn54khce6mua7l")


def is_evm_address(account: str) -> bool:
    """0x followed by 40 hex characters."""
    return (
        isinstance(account, str)
        and len(account) == 42
        and account.startswith("0x")
        and all(c in _HEX for c in account[2:])
    )


def is_bech32_address(account: str, prefix: str) -> bool:
    """Lower-case bech32 address with the given human-readable prefix."""
    if not isinstance(account, str) or not account.startswith(f"{prefix}1"):
        return False
    body = account[len(prefix) + 1:]
    return len(body) >= 38 and all(c in _BECH32_CHARSET for c in body)


def sort_events(events: Sequence[Event]) -> list[Event]:
    """Sort ascending by timestamp, keeping upstream order for ties."""
    def key(event: Event) -> datetime:
        try:
            return datetime.strptime(event.timestamp, TIMESTAMP_FORMAT)
        except (TypeError, ValueError):
            return datetime.min
    return sorted(events, key=key)


# ─────────────────────────────────────────────────────────────
# Base implementation
# ─────────────────────────────────────────────────────────────

class BaseSourceAdapter(ABC):
    """
    Shared plumbing for concrete adapters.

    Each adapter must:
    1. Declare source_id, display_name and capabilities
    2. Implement validate_account() - address-format predicate
    3. Implement fetch_events() - fetch and normalize into Events

    fetch() wraps those with the contract checks.
    """

    requires_credentials: bool = False
    family: str = ""
    notes: str = ""

    # Adapter-specific page cap; None uses the configured one
    page_cap: Optional[int] = None

    # Explanation shown when the source is refused in BLOCKED mode
    blocked_reason: Optional[str] = None

    def __init__(
        self,
        config: Optional[ExportConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._config = config or ExportConfig()
        self._session = session

    @property
    @abstractmethod
    def source_id(self) -> str:
        """Stable registry id."""
        pass

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Human-readable name."""
        pass

    @property
    @abstractmethod
    def capabilities(self) -> frozenset:
        """Closed set of EventCategory values this source may emit."""
        pass

    @abstractmethod
    def validate_account(self, account: str) -> None:
        """
        Check the account format.

        Raises:
            InvalidInputError: If the account cannot belong to this source
        """
        pass

    @abstractmethod
    async def fetch_events(
        self,
        ctx: FetchContext,
        account: str,
        credentials: Optional[Credentials],
    ) -> list[Event]:
        """
        Fetch and normalize all events for an account.

        Raises:
            InsufficientDataError: If a required value is not explicit upstream
            UpstreamError / NetworkError: On transport failures
        """
        pass

    def describe(self, mode: Mode = Mode.STRICT) -> SourceDescriptor:
        """Static descriptor for this adapter under the given mode."""
        return SourceDescriptor(
            id=self.source_id,
            display_name=self.display_name,
            mode=mode,
            capabilities=frozenset(self.capabilities),
            requires_credentials=self.requires_credentials,
            family=self.family,
            notes=self.notes,
        )

    def invalid_account(self, account: str, expected: str) -> InvalidInputError:
        """Build the standard bad-account error."""
        return InvalidInputError(
            message=f"Invalid account for {self.display_name}. Expected {expected}.",
            source_id=self.source_id,
            field_name="account",
            value=account,
        )

    async def fetch(
        self,
        account: str,
        credentials: Optional[Credentials] = None,
    ) -> FetchResult:
        """
        Fetch events (main entry point).

        This method:
        1. Validates the account before any network access
        2. Checks credentials for sources that need them
        3. Runs fetch_events() inside a fresh FetchContext
        4. Enforces the Event type and capability contract
        """
        account = account.strip() if isinstance(account, str) else ""
        if not account:
            raise InvalidInputError(
                message="Account is required",
                source_id=self.source_id,
                field_name="account",
                value="",
            )
        self.validate_account(account)

        if self.requires_credentials and (credentials is None or not credentials.is_complete()):
            raise AuthRequiredError(
                message=f"{self.display_name} requires an API key and secret",
                source_id=self.source_id,
            )

        logger.info(f"[{self.source_id}] Fetching events for {account}")

        async with self._open_session() as session:
            ctx = FetchContext(
                source_id=self.source_id,
                session=session,
                max_pages=self.page_cap or self._config.max_pages,
                request_timeout=self._config.request_timeout_seconds,
                max_retries=self._config.max_retries,
                retry_backoff_base=self._config.retry_backoff_base,
            )
            events = await self.fetch_events(ctx, account, credentials)

        self._check_contract(events)

        logger.info(
            f"[{self.source_id}] Fetched {len(events)} events in {ctx.pages_fetched} pages"
            + (" (truncated)" if ctx.truncated else "")
        )
        return FetchResult(
            source_id=self.source_id,
            events=list(events),
            truncated=ctx.truncated,
            pages_fetched=ctx.pages_fetched,
        )

    @asynccontextmanager
    async def _open_session(self) -> AsyncIterator[aiohttp.ClientSession]:
        """Use the injected session, or own one for the duration of a call."""
        if self._session is not None and not self._session.closed:
            yield self._session
            return
        async with aiohttp.ClientSession(headers=self._default_headers()) as session:
            yield session

    def _default_headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "User-Agent": self._config.user_agent,
        }

    def _check_contract(self, events: Any) -> None:
        """Every item must be an Event within the capability set."""
        if not isinstance(events, list):
            raise AdapterContractError(
                message=f"Adapter returned {type(events).__name__}, expected a list of Events",
                source_id=self.source_id,
            )

        allowed = {c.value if isinstance(c, EventCategory) else c for c in self.capabilities}
        for index, event in enumerate(events):
            if not isinstance(event, Event):
                raise AdapterContractError(
                    message=f"Adapter returned invalid event at index {index}",
                    source_id=self.source_id,
                    row_index=index,
                )
            category = event.category.value if isinstance(event.category, EventCategory) else event.category
            if category not in allowed:
                raise CapabilityViolationError(
                    message=f"Category '{category}' is outside the declared capability set",
                    source_id=self.source_id,
                    row_index=index,
                    category=str(category),
                    allowed=sorted(allowed),
                )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(source_id={self.source_id})>"
