"""Tests for chunking and BatchAggregator accounting."""

from __future__ import annotations

from typing import Any

import pytest

from apaas_client.errors import (
    AuthError,
    PermanentRemoteError,
    TransientRemoteError,
    ValidationError,
)
from apaas_client.resilience.batching import (
    BatchAggregator,
    BatchResult,
    FailedItem,
    Failure,
    Success,
    UnitOutcome,
    default_identify,
    split,
    validate_batch_input,
)
from apaas_client.resilience.retry import RetryExecutor, RetryPolicy
from apaas_client.resilience.scheduler import CallScheduler


class TestSplit:
    """Tests for split."""

    @pytest.mark.parametrize(
        ("n", "size", "expected_chunks"),
        [(0, 10, 0), (1, 10, 1), (10, 10, 1), (11, 10, 2), (250, 100, 3), (5, 1, 5)],
    )
    def test_chunk_count_and_order(self, n: int, size: int, expected_chunks: int) -> None:
        """ceil(N/C) chunks of size <= C that concatenate back to the input."""
        items = list(range(n))
        chunks = split(items, size)
        assert len(chunks) == expected_chunks
        assert all(len(chunk) <= size for chunk in chunks)
        assert all(len(chunk) == size for chunk in chunks[:-1])
        assert [x for chunk in chunks for x in chunk] == items

    def test_non_positive_size_rejected(self) -> None:
        with pytest.raises(ValidationError):
            split([1, 2], 0)


class TestBatchResult:
    """Tests for BatchResult."""

    def test_counts_and_dict(self) -> None:
        result: BatchResult[Any] = BatchResult(
            total=3,
            success=[{"_id": "a"}, {"_id": "b"}],
            failed=[FailedItem("c", "boom")],
        )
        assert result.success_count == 2
        assert result.failed_count == 1
        assert result.to_dict() == {
            "total": 3,
            "success": [{"_id": "a"}, {"_id": "b"}],
            "failed": [{"_id": "c", "success": False, "error": "boom"}],
            "successCount": 2,
            "failedCount": 1,
        }


class TestIdentify:
    """Tests for default_identify and input validation."""

    def test_identify(self) -> None:
        assert default_identify("rec_1") == "rec_1"
        assert default_identify({"_id": 42, "name": "x"}) == "42"
        assert default_identify({"name": "no id"}) == "unknown"
        assert default_identify(3.5) == "unknown"

    @pytest.mark.parametrize("bad", ["abc", b"abc", {"_id": 1}, 42, None])
    def test_rejects_non_sequences(self, bad: Any) -> None:
        with pytest.raises(ValidationError):
            validate_batch_input(bad)

    def test_accepts_list_and_tuple(self) -> None:
        assert validate_batch_input([1]) == [1]
        assert validate_batch_input((1,)) == (1,)


class TestBatchAggregator:
    """Tests for BatchAggregator."""

    @pytest.fixture
    def sleeps(self) -> list[float]:
        return []

    @pytest.fixture
    def aggregator(self, sleeps: list[float]) -> BatchAggregator:
        async def fake_sleep(seconds: float) -> None:
            sleeps.append(seconds)

        return BatchAggregator(CallScheduler(), RetryExecutor(sleep=fake_sleep))

    @pytest.mark.asyncio
    async def test_empty_input_makes_no_calls(self, aggregator: BatchAggregator) -> None:
        calls = 0

        async def unit_call(chunk: list[Any]) -> list[UnitOutcome]:
            nonlocal calls
            calls += 1
            return []

        result = await aggregator.run_batch([], 100, unit_call)
        assert calls == 0
        assert (result.total, result.success_count, result.failed_count) == (0, 0, 0)

    @pytest.mark.asyncio
    async def test_chunk_failure_isolated(self, aggregator: BatchAggregator) -> None:
        """150 items, first chunk raises: 100 failed, 50 succeeded."""
        items = [{"_id": f"r{i}"} for i in range(150)]
        calls: list[int] = []

        async def unit_call(chunk: list[dict[str, str]]) -> list[UnitOutcome]:
            calls.append(len(chunk))
            if len(calls) == 1:
                raise TransientRemoteError("connection reset")
            return [Success(item, item["_id"]) for item in chunk]

        result = await aggregator.run_batch(items, 100, unit_call)

        assert calls == [100, 50]
        assert result.total == 150
        assert result.failed_count == 100
        assert result.success_count == 50
        assert result.failed[0] == FailedItem("r0", "connection reset")
        assert result.success[0] == {"_id": "r100"}

    @pytest.mark.asyncio
    async def test_per_item_failures_counted(self, aggregator: BatchAggregator) -> None:
        async def unit_call(chunk: list[str]) -> list[UnitOutcome]:
            return [
                Failure(item, "duplicate") if item.endswith("3") else Success(item)
                for item in chunk
            ]

        items = [f"id{i}" for i in range(25)]
        result = await aggregator.run_batch(items, 10, unit_call)

        assert result.success_count + result.failed_count == result.total == 25
        assert [f.id for f in result.failed] == ["id3", "id13", "id23"]

    @pytest.mark.asyncio
    async def test_outcome_count_mismatch_keeps_accounting(
        self, aggregator: BatchAggregator
    ) -> None:
        """Missing outcomes become failures and extra outcomes are kept aside."""

        async def short(chunk: list[str]) -> list[UnitOutcome]:
            return [Success(chunk[0])]

        result = await aggregator.run_batch(["a", "b", "c"], 3, short)
        assert result.success == ["a"]
        assert result.failed == [
            FailedItem("b", "no outcome reported"),
            FailedItem("c", "no outcome reported"),
        ]

        async def long(chunk: list[str]) -> list[UnitOutcome]:
            return [Success(x) for x in chunk * 2]

        result = await aggregator.run_batch(["a", "b"], 2, long)
        assert result.success == ["a", "b"]
        assert result.unmatched == ["a", "b"]
        assert result.success_count + result.failed_count == result.total == 2

    @pytest.mark.asyncio
    async def test_match_key_pairs_outcomes_by_id(self, aggregator: BatchAggregator) -> None:
        """With match_key the missing id is the one reported, wherever it sits."""

        async def unit_call(chunk: list[str]) -> list[UnitOutcome]:
            return [Success({"id": x}) for x in reversed(chunk) if x != "b"]

        result = await aggregator.run_batch(
            ["a", "b", "c"], 10, unit_call, match_key=lambda value: value["id"]
        )

        assert result.success == [{"id": "a"}, {"id": "c"}]
        assert result.failed == [FailedItem("b", "no outcome reported")]
        assert result.unmatched == []

    @pytest.mark.asyncio
    async def test_match_key_failures_and_strays(self, aggregator: BatchAggregator) -> None:
        async def unit_call(chunk: list[str]) -> list[UnitOutcome]:
            return [
                Failure("b", "rejected"),
                Success({"id": "a"}),
                Success({"id": "a"}),
                Success({"id": "x"}),
                Success({"name": "no id"}),
            ]

        result = await aggregator.run_batch(
            ["a", "b"], 10, unit_call, match_key=lambda value: value.get("id")
        )

        assert result.success == [{"id": "a"}]
        assert result.failed == [FailedItem("b", "rejected")]
        assert result.unmatched == [{"id": "a"}, {"name": "no id"}, {"id": "x"}]
        assert result.success_count + result.failed_count == result.total == 2

    @pytest.mark.asyncio
    async def test_match_key_without_ids_falls_back_to_position(
        self, aggregator: BatchAggregator
    ) -> None:
        async def unit_call(chunk: list[str]) -> list[UnitOutcome]:
            return [Success({"n": i}) for i, _ in enumerate(chunk)]

        result = await aggregator.run_batch(
            ["a", "b"], 10, unit_call, match_key=lambda value: value.get("id")
        )

        assert result.success == [{"n": 0}, {"n": 1}]
        assert result.failed == []

    @pytest.mark.asyncio
    async def test_auth_error_aborts_run(self, aggregator: BatchAggregator) -> None:
        """A credential failure propagates instead of failing each chunk."""
        calls = 0

        async def unit_call(chunk: list[str]) -> list[UnitOutcome]:
            nonlocal calls
            calls += 1
            raise AuthError("invalid client secret", "k_auth")

        with pytest.raises(AuthError, match="invalid client secret"):
            await aggregator.run_batch(
                [f"id{i}" for i in range(30)], 10, unit_call, retry_policy=RetryPolicy()
            )
        assert calls == 1

    @pytest.mark.asyncio
    async def test_retry_policy_replays_transient_chunk(
        self, aggregator: BatchAggregator, sleeps: list[float]
    ) -> None:
        attempts = 0

        async def unit_call(chunk: list[str]) -> list[UnitOutcome]:
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise TransientRemoteError("503", status=503)
            return [Success(x) for x in chunk]

        result = await aggregator.run_batch(
            ["a", "b"], 10, unit_call, retry_policy=RetryPolicy(max_retries=2)
        )
        assert attempts == 2
        assert sleeps == [1.0]
        assert result.success_count == 2

    @pytest.mark.asyncio
    async def test_permanent_chunk_failure_not_retried(
        self, aggregator: BatchAggregator, sleeps: list[float]
    ) -> None:
        async def unit_call(chunk: list[str]) -> list[UnitOutcome]:
            raise PermanentRemoteError("Creation failed with code k_1", code="k_1")

        result = await aggregator.run_batch(
            ["a", "b"], 10, unit_call, retry_policy=RetryPolicy()
        )
        assert sleeps == []
        assert result.failed_count == 2
        assert result.failed[0].error == "Creation failed with code k_1"

    @pytest.mark.asyncio
    async def test_validation(self, aggregator: BatchAggregator) -> None:
        async def unit_call(chunk: list[Any]) -> list[UnitOutcome]:
            return []

        with pytest.raises(ValidationError):
            await aggregator.run_batch("not-a-list", 10, unit_call)  # type: ignore[arg-type]
        with pytest.raises(ValidationError):
            await aggregator.run_batch([1], 0, unit_call)
