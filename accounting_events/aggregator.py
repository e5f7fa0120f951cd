"""
Batch Aggregator - Fan out one account to many sources and merge.

============================================================
FLOW
============================================================
1. Reject an empty selection or unknown ids; collapse repeats
2. Launch every selected source concurrently
3. Join with isolated failures (one failing source never aborts
   the others)
4. Concatenate successful results in selection order
5. Deduplicate by external id, first occurrence wins
6. Re-validate the merged list (row indices match its order)
7. Raise BatchFetchError only if every source failed

Progress is reported per source through an optional callback:
pending -> loading -> done | error (| cancelled)

Nothing is shared between requests: outcomes, results and the
merged list are built per run.

============================================================
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from accounting_events.exceptions import (
    AccountingEventsError,
    BatchFetchError,
    InvalidInputError,
    classify_error,
)
from accounting_events.modes import ModePolicy
from accounting_events.models import (
    BatchResult,
    Credentials,
    DroppedDuplicate,
    Event,
    SourceOutcome,
    SourceStatus,
)
from accounting_events.registry import SourceRegistry
from accounting_events.validation import validate


logger = logging.getLogger(__name__)


StatusCallback = Callable[[str, SourceStatus], None]


def merge_events(
    results: Iterable[tuple[str, list[Event]]],
) -> tuple[list[Event], list[DroppedDuplicate]]:
    """
    Concatenate per-source events and drop repeated external ids.

    The first occurrence wins; later ones are reported, not exported.
    """
    merged: list[Event] = []
    dropped: list[DroppedDuplicate] = []
    kept_from: dict[str, str] = {}

    for source_id, events in results:
        for event in events:
            key = event.external_id
            if key in kept_from:
                dropped.append(DroppedDuplicate(key, source_id, kept_from[key]))
                continue
            kept_from[key] = source_id
            merged.append(event)

    return merged, dropped


class BatchAggregator:
    """
    Concurrent multi-source fetch for one account.

    Usage:
        aggregator = BatchAggregator(registry, policy)
        result = await aggregator.run(["hyperliquid", "aevo"], "0x...")
    """

    def __init__(self, registry: SourceRegistry, policy: ModePolicy) -> None:
        self._registry = registry
        self._policy = policy

    def select(self, source_ids: Iterable[str]) -> list[str]:
        """
        Normalize a selection.

        Raises:
            InvalidInputError: On an empty selection or an unknown id
        """
        selected: list[str] = []
        for source_id in source_ids or []:
            if source_id not in selected:
                selected.append(source_id)

        if not selected:
            raise InvalidInputError(
                message="Select at least one source",
                field_name="source_ids",
                value="",
            )

        unknown = [s for s in selected if s not in self._registry]
        if unknown:
            raise InvalidInputError(
                message=f"Unknown source(s): {', '.join(unknown)}",
                field_name="source_ids",
                value=",".join(unknown),
            )
        return selected

    async def run(
        self,
        source_ids: Iterable[str],
        account: str,
        credentials: Optional[Credentials] = None,
        on_status: Optional[StatusCallback] = None,
    ) -> BatchResult:
        """
        Fetch every selected source concurrently and merge.

        Raises:
            InvalidInputError: Bad selection
            BatchFetchError: Every selected source failed
            asyncio.CancelledError: The batch was cancelled
        """
        selected = self.select(source_ids)
        outcomes = {
            source_id: SourceOutcome(source_id=source_id, mode=self._policy.mode_of(source_id))
            for source_id in selected
        }
        for source_id in selected:
            self._notify(on_status, source_id, SourceStatus.PENDING)

        logger.info(f"Batch fetch for {account}: {len(selected)} sources")

        tasks = {
            source_id: asyncio.create_task(
                self._run_one(source_id, account, credentials, outcomes[source_id], on_status),
                name=f"fetch-{source_id}",
            )
            for source_id in selected
        }

        try:
            await asyncio.gather(*tasks.values())
        except asyncio.CancelledError:
            for task in tasks.values():
                task.cancel()
            await asyncio.gather(*tasks.values(), return_exceptions=True)
            for source_id, outcome in outcomes.items():
                if outcome.status in (SourceStatus.PENDING, SourceStatus.LOADING):
                    outcome.status = SourceStatus.CANCELLED
                    outcome.finished_at = datetime.utcnow()
                    self._notify(on_status, source_id, SourceStatus.CANCELLED)
            logger.info(f"Batch fetch for {account} cancelled")
            raise

        failures: dict[str, AccountingEventsError] = {}
        successes: list[tuple[str, list[Event]]] = []
        for source_id in selected:
            events, error = tasks[source_id].result()
            if error is not None:
                failures[source_id] = error
            else:
                successes.append((source_id, events))

        if not successes:
            raise BatchFetchError(
                message=(
                    f"All {len(failures)} selected sources failed: "
                    + ", ".join(failures)
                ),
                failures=failures,
                context={"account": account},
            )

        merged, dropped = merge_events(successes)
        errors = validate(merged)

        if dropped:
            logger.info(f"Dropped {len(dropped)} duplicate events while merging")
        logger.info(
            f"Batch fetch for {account}: {len(merged)} events, "
            f"{len(failures)} failed sources, {len(errors)} validation errors"
        )

        return BatchResult(
            account=account,
            merged_events=merged,
            validation_errors=errors,
            outcomes=outcomes,
            dropped_duplicates=dropped,
        )

    async def _run_one(
        self,
        source_id: str,
        account: str,
        credentials: Optional[Credentials],
        outcome: SourceOutcome,
        on_status: Optional[StatusCallback],
    ) -> tuple[list[Event], Optional[AccountingEventsError]]:
        """Fetch one source, recording its outcome. Never raises except on cancel."""
        outcome.status = SourceStatus.LOADING
        outcome.started_at = datetime.utcnow()
        self._notify(on_status, source_id, SourceStatus.LOADING)

        try:
            adapter = self._registry.require(source_id)
            self._policy.ensure_allowed(source_id, getattr(adapter, "blocked_reason", None))
            result = await adapter.fetch(account, credentials)
        except Exception as e:
            error = classify_error(e, source_id)
            outcome.status = SourceStatus.ERROR
            outcome.error = error.to_dict()
            outcome.finished_at = datetime.utcnow()
            logger.warning(f"[{source_id}] Fetch failed: {error}")
            self._notify(on_status, source_id, SourceStatus.ERROR)
            return [], error

        outcome.status = SourceStatus.DONE
        outcome.event_count = result.count
        outcome.truncated = result.truncated
        outcome.finished_at = datetime.utcnow()
        self._notify(on_status, source_id, SourceStatus.DONE)
        return result.events, None

    def _notify(
        self,
        on_status: Optional[StatusCallback],
        source_id: str,
        status: SourceStatus,
    ) -> None:
        if on_status is None:
            return
        try:
            on_status(source_id, status)
        except Exception as e:
            logger.error(f"Status callback error for {source_id}: {e}")
