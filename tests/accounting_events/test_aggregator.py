"""
Batch Aggregator Tests.

============================================================
PURPOSE
============================================================
- Concurrent fan-out with isolated per-source failures
- Merge order, first-occurrence dedup and re-validation
- Selection errors and all-failed batches
- Cancellation

============================================================
"""

import asyncio
from decimal import Decimal

import pytest

from accounting_events.aggregator import merge_events
from accounting_events.exceptions import (
    BatchFetchError,
    InvalidInputError,
    NetworkError,
    UpstreamError,
)
from accounting_events.models import SourceStatus


# ============================================================
# MERGE
# ============================================================

class TestMergeEvents:
    """Tests for the pure merge step."""

    def test_first_occurrence_wins(self, make_event):
        first = make_event(external_id="x", notes="from a")
        second = make_event(external_id="x", notes="from b")

        merged, dropped = merge_events([("a", [first]), ("b", [second])])

        assert merged == [first]
        assert len(dropped) == 1
        assert dropped[0].source_id == "b"
        assert dropped[0].kept_from == "a"

    def test_order_is_selection_then_source_order(self, make_event):
        a = [make_event(external_id="a1"), make_event(external_id="a2")]
        b = [make_event(external_id="b1")]

        merged, _ = merge_events([("b", b), ("a", a)])

        assert [e.external_id for e in merged] == ["b1", "a1", "a2"]


# ============================================================
# RUN
# ============================================================

class TestBatchRun:
    """Tests for BatchAggregator.run through the service."""

    @pytest.mark.asyncio
    async def test_merges_successes_and_isolates_failures(self, make_adapter, make_event, make_service, account):
        good = make_adapter("good", events=[make_event(external_id="g1")])
        bad = make_adapter("bad", error=UpstreamError("HTTP 503", source_id="bad", status_code=503))
        other = make_adapter("other", events=[make_event(external_id="o1")])
        service = make_service(good, bad, other)

        result = await service.batch_events(["good", "bad", "other"], account)

        assert [e.external_id for e in result.merged_events] == ["g1", "o1"]
        assert result.validation_errors == []
        assert result.per_source_status == {
            "good": SourceStatus.DONE,
            "bad": SourceStatus.ERROR,
            "other": SourceStatus.DONE,
        }
        assert result.failed_sources == ["bad"]
        assert result.outcomes["bad"].error["type"] == "upstream"
        assert result.outcomes["bad"].error["retryable"] is True
        assert result.outcomes["good"].event_count == 1

    @pytest.mark.asyncio
    async def test_duplicates_dropped_across_sources(self, make_adapter, make_event, make_service, account):
        a = make_adapter("a", events=[make_event(external_id="dup", notes="a")])
        b = make_adapter("b", events=[make_event(external_id="dup", notes="b")])
        service = make_service(a, b)

        result = await service.batch_events(["a", "b"], account)

        assert result.count == 1
        assert result.merged_events[0].notes == "a"
        assert result.dropped_duplicates[0].source_id == "b"
        assert result.validation_errors == []

    @pytest.mark.asyncio
    async def test_revalidates_merged_list(self, make_adapter, make_event, make_service, account):
        a = make_adapter("a", events=[make_event(external_id="a1")])
        b = make_adapter("b", events=[make_event(external_id="b1", fee=Decimal("-1"))])
        service = make_service(a, b)

        result = await service.batch_events(["a", "b"], account)

        assert len(result.validation_errors) == 1
        assert result.validation_errors[0].row_index == 1
        assert result.validation_errors[0].field == "fee"

    @pytest.mark.asyncio
    async def test_all_failed(self, make_adapter, make_service, account):
        a = make_adapter("a", error=NetworkError("unreachable", source_id="a"))
        b = make_adapter("b", error=UpstreamError("HTTP 400", source_id="b", status_code=400))
        service = make_service(a, b)

        with pytest.raises(BatchFetchError) as exc_info:
            await service.batch_events(["a", "b"], account)

        error = exc_info.value
        assert error.failed_sources == ["a", "b"]
        assert error.retryable
        assert "All 2 selected sources failed" in error.message

    @pytest.mark.asyncio
    async def test_empty_success_is_not_failure(self, make_adapter, make_service, account):
        service = make_service(make_adapter("a"))

        result = await service.batch_events(["a"], account)

        assert result.count == 0
        assert result.per_source_status == {"a": SourceStatus.DONE}

    @pytest.mark.asyncio
    async def test_blocked_source_not_called(self, make_adapter, make_event, make_service, account):
        blocked = make_adapter("blocked")
        ok = make_adapter("ok", events=[make_event()])
        service = make_service(blocked, ok, modes={"blocked": "blocked"})

        result = await service.batch_events(["blocked", "ok"], account)

        assert blocked.calls == 0
        assert result.outcomes["blocked"].error["type"] == "blocked"
        assert result.outcomes["blocked"].error["blocked_by_design"] is True
        assert result.count == 1

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_classified(self, make_adapter, make_event, make_service, account):
        broken = make_adapter("broken", error=RuntimeError("boom"))
        ok = make_adapter("ok", events=[make_event()])
        service = make_service(broken, ok)

        result = await service.batch_events(["broken", "ok"], account)

        assert result.outcomes["broken"].error["type"] == "internal"
        assert "boom" in result.outcomes["broken"].error["message"]

    @pytest.mark.asyncio
    async def test_invalid_account_recorded_per_source(self, make_adapter, make_service):
        service = make_service(make_adapter("a"), make_adapter("b"))

        with pytest.raises(BatchFetchError) as exc_info:
            await service.batch_events(["a", "b"], "not-an-address")

        assert all(e.error_type == "validation" for e in exc_info.value.failures.values())

    @pytest.mark.asyncio
    async def test_mode_recorded_on_outcome(self, make_adapter, make_event, make_service, account):
        service = make_service(make_adapter("a", events=[make_event()]), modes={"a": "partial"})

        result = await service.batch_events(["a"], account)

        assert result.outcomes["a"].mode.value == "partial"


# ============================================================
# SELECTION
# ============================================================

class TestSelection:
    """Tests for source selection."""

    @pytest.mark.asyncio
    async def test_empty_selection(self, make_service, account):
        with pytest.raises(InvalidInputError, match="Select at least one source"):
            await make_service().batch_events([], account)

    @pytest.mark.asyncio
    async def test_unknown_source(self, make_adapter, make_service, account):
        adapter = make_adapter("a")
        service = make_service(adapter)

        with pytest.raises(InvalidInputError, match="Unknown source"):
            await service.batch_events(["a", "nope"], account)

        assert adapter.calls == 0

    @pytest.mark.asyncio
    async def test_repeated_ids_collapse(self, make_adapter, make_event, make_service, account):
        adapter = make_adapter("a", events=[make_event()])
        service = make_service(adapter)

        result = await service.batch_events(["a", "a"], account)

        assert adapter.calls == 1
        assert list(result.outcomes) == ["a"]


# ============================================================
# CONCURRENCY / CANCELLATION
# ============================================================

class TestConcurrency:
    """Tests for concurrent execution and cancellation."""

    @pytest.mark.asyncio
    async def test_sources_run_concurrently(self, make_adapter, make_service, account):
        a_started = asyncio.Event()
        b_started = asyncio.Event()

        async def before_a():
            a_started.set()
            await b_started.wait()

        async def before_b():
            b_started.set()
            await a_started.wait()

        service = make_service(
            make_adapter("a", before=before_a),
            make_adapter("b", before=before_b),
        )

        # Sequential execution would deadlock here
        result = await asyncio.wait_for(service.batch_events(["a", "b"], account), timeout=2)

        assert result.failed_sources == []

    @pytest.mark.asyncio
    async def test_status_progression(self, make_adapter, make_event, make_service, account):
        seen = []
        service = make_service(make_adapter("a", events=[make_event()]))

        await service.batch_events(["a"], account, on_status=lambda s, st: seen.append((s, st)))

        assert seen == [
            ("a", SourceStatus.PENDING),
            ("a", SourceStatus.LOADING),
            ("a", SourceStatus.DONE),
        ]

    @pytest.mark.asyncio
    async def test_callback_errors_do_not_fail_batch(self, make_adapter, make_event, make_service, account):
        def explode(source_id, status):
            raise ValueError("callback broke")

        service = make_service(make_adapter("a", events=[make_event()]))

        result = await service.batch_events(["a"], account, on_status=explode)

        assert result.count == 1

    @pytest.mark.asyncio
    async def test_cancellation(self, make_adapter, make_service, account):
        never = asyncio.Event()
        loading = asyncio.Event()
        seen = []

        def on_status(source_id, status):
            seen.append((source_id, status))
            if sum(1 for _, st in seen if st == SourceStatus.LOADING) == 2:
                loading.set()

        service = make_service(
            make_adapter("a", before=never.wait),
            make_adapter("b", before=never.wait),
        )

        task = asyncio.create_task(service.batch_events(["a", "b"], account, on_status=on_status))
        await asyncio.wait_for(loading.wait(), timeout=2)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        cancelled = sorted(s for s, st in seen if st == SourceStatus.CANCELLED)
        assert cancelled == ["a", "b"]
