"""
Chunked batch execution.

An oversized ordered collection is split into contiguous chunks, one remote
call is issued per chunk, and per-item outcomes are merged into a single
BatchResult. A chunk failure never stops the run: every item of that chunk
is recorded as failed and processing continues with the next chunk. The one
exception is AuthError, which aborts the run.

Outcomes are matched to input items by position, or by id when the caller
supplies a match_key.

Accounting invariant: success_count + failed_count == total == len(items).
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from apaas_client.errors import AuthError, ValidationError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from apaas_client.resilience.retry import RetryExecutor, RetryPolicy
    from apaas_client.resilience.scheduler import CallScheduler

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

UNKNOWN_ID = "unknown"


def split(items: Sequence[T], size: int) -> list[list[T]]:
    """
    Partition items into ceil(len(items) / size) contiguous chunks.

    All chunks but the last hold exactly ``size`` items.

    Raises:
        ValidationError: If size <= 0.
    """
    if size <= 0:
        raise ValidationError(f"chunk size must be > 0, got {size}")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


@dataclass(frozen=True)
class Success(Generic[R]):
    """A unit that the server reports as done."""

    value: R
    identifier: str | None = None


@dataclass(frozen=True)
class Failure:
    """A unit that the server reports as failed."""

    identifier: str
    error: str


UnitOutcome = Success[Any] | Failure


@dataclass(frozen=True)
class FailedItem:
    """One failed item in a BatchResult."""

    id: str
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"_id": self.id, "success": False, "error": self.error}


@dataclass
class BatchResult(Generic[R]):
    """
    Merged outcome of a chunked batch run.

    ``unmatched`` keeps values the server returned that belong to no input
    item. They are not counted in success_count.
    """

    total: int = 0
    success: list[R] = field(default_factory=list)
    failed: list[FailedItem] = field(default_factory=list)
    unmatched: list[R] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return len(self.success)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire-style result dict."""
        result: dict[str, Any] = {
            "total": self.total,
            "success": list(self.success),
            "failed": [item.to_dict() for item in self.failed],
            "successCount": self.success_count,
            "failedCount": self.failed_count,
        }
        if self.unmatched:
            result["unmatched"] = list(self.unmatched)
        return result


def default_identify(item: Any) -> str:
    """Identifier for an input item: the item itself for IDs, else its ``_id``."""
    if isinstance(item, str):
        return item
    if isinstance(item, Mapping):
        value = item.get("_id")
        return str(value) if value else UNKNOWN_ID
    return UNKNOWN_ID


def validate_batch_input(items: Any, name: str = "items") -> Sequence[Any]:
    """
    Check that items is a real sequence of units.

    Raises:
        ValidationError: For non-sequences, strings, bytes and mappings.
    """
    if isinstance(items, (str, bytes, Mapping)) or not isinstance(items, Sequence):
        raise ValidationError(f"{name} must be a list, got {type(items).__name__}")
    return items


class BatchAggregator:
    """
    Drives one remote call per chunk and merges per-item outcomes.

    Chunks are processed strictly in order, each admitted by the shared
    CallScheduler. When a RetryPolicy is given, each chunk is replayed on
    transient failures, with every attempt re-admitted by the scheduler.
    """

    def __init__(self, scheduler: CallScheduler, retry: RetryExecutor) -> None:
        self._scheduler = scheduler
        self._retry = retry

    async def run_batch(
        self,
        items: Sequence[T],
        size: int,
        unit_call: Callable[[list[T]], Awaitable[list[UnitOutcome]]],
        *,
        identify: Callable[[T], str] = default_identify,
        match_key: Callable[[Any], str | None] | None = None,
        retry_policy: RetryPolicy | None = None,
        label: str = "batch",
    ) -> BatchResult[Any]:
        """
        Run unit_call once per chunk of items.

        Args:
            items: Ordered input units.
            size: Chunk size.
            unit_call: Issues the remote call for one chunk and returns one
                outcome per item, or raises.
            identify: Maps an input item to its id (failure records, matching).
            match_key: Maps a success value to the input id it answers. When
                given, outcomes are matched by id instead of by position.
            retry_policy: Retry transient chunk failures (None = single attempt).
            label: Call-site label for log records.

        Raises:
            ValidationError: For malformed input or a non-positive size.
            AuthError: When no access token can be obtained.
        """
        validate_batch_input(items)
        if size <= 0:
            raise ValidationError(f"chunk size must be > 0, got {size}")

        result: BatchResult[Any] = BatchResult(total=len(items))
        if not items:
            logger.warning("Empty batch input, nothing to do", extra={"label": label})
            return result

        chunks = split(items, size)
        logger.debug(
            "Chunking %d items into %d groups of %d",
            len(items),
            len(chunks),
            size,
            extra={"label": label},
        )

        for index, chunk in enumerate(chunks, start=1):
            logger.debug(
                "Processing chunk %d/%d: %d items",
                index,
                len(chunks),
                len(chunk),
                extra={"label": label},
            )
            try:
                outcomes = await self._run_chunk(chunk, unit_call, retry_policy, label)
            except AuthError:
                logger.error(
                    "Credential unavailable, aborting batch",
                    extra={"label": label, "chunk": index, "chunks": len(chunks)},
                )
                raise
            except Exception as e:
                error = str(e) or type(e).__name__
                logger.error(
                    "Chunk %d failed",
                    index,
                    extra={"label": label, "chunk_size": len(chunk), "error": error},
                )
                result.failed.extend(FailedItem(identify(item), error) for item in chunk)
                continue

            if match_key is None:
                self._merge(result, chunk, outcomes, identify, label)
            else:
                self._merge_by_key(result, chunk, outcomes, identify, match_key, label)
            logger.info(
                "Chunk %d/%d completed",
                index,
                len(chunks),
                extra={
                    "label": label,
                    "success_count": result.success_count,
                    "failed_count": result.failed_count,
                },
            )

        logger.info(
            "Batch completed",
            extra={
                "label": label,
                "total": result.total,
                "success_count": result.success_count,
                "failed_count": result.failed_count,
            },
        )
        return result

    async def _run_chunk(
        self,
        chunk: list[T],
        unit_call: Callable[[list[T]], Awaitable[list[UnitOutcome]]],
        retry_policy: RetryPolicy | None,
        label: str,
    ) -> list[UnitOutcome]:
        async def admitted() -> list[UnitOutcome]:
            return await self._scheduler.schedule(lambda: unit_call(chunk), label=label)

        if retry_policy is None:
            return await admitted()
        return await self._retry.run(admitted, retry_policy, context=label)

    @staticmethod
    def _merge(
        result: BatchResult[Any],
        chunk: list[T],
        outcomes: list[UnitOutcome],
        identify: Callable[[T], str],
        label: str,
    ) -> None:
        """Classify outcomes positionally against the chunk."""
        if len(outcomes) != len(chunk):
            logger.warning(
                "Outcome count does not match chunk size",
                extra={"label": label, "chunk_size": len(chunk), "outcomes": len(outcomes)},
            )

        for outcome in outcomes[: len(chunk)]:
            if isinstance(outcome, Failure):
                result.failed.append(FailedItem(outcome.identifier, outcome.error))
            else:
                result.success.append(outcome.value)

        for item in chunk[len(outcomes) :]:
            result.failed.append(FailedItem(identify(item), "no outcome reported"))

        for outcome in outcomes[len(chunk) :]:
            if isinstance(outcome, Success):
                result.unmatched.append(outcome.value)

    @staticmethod
    def _merge_by_key(
        result: BatchResult[Any],
        chunk: list[T],
        outcomes: list[UnitOutcome],
        identify: Callable[[T], str],
        match_key: Callable[[Any], str | None],
        label: str,
    ) -> None:
        """
        Classify outcomes against the chunk by input id.

        Falls back to positional matching when no outcome carries an id.
        """
        keys = [
            outcome.identifier if isinstance(outcome, Failure) else match_key(outcome.value)
            for outcome in outcomes
        ]
        if outcomes and all(key is None for key in keys):
            logger.debug("Outcomes carry no ids, matching by position", extra={"label": label})
            BatchAggregator._merge(result, chunk, outcomes, identify, label)
            return

        by_key: dict[str, UnitOutcome] = {}
        for outcome, key in zip(outcomes, keys, strict=True):
            if key is None or key in by_key:
                if isinstance(outcome, Success):
                    result.unmatched.append(outcome.value)
                continue
            by_key[key] = outcome

        answered: set[str] = set()
        for item in chunk:
            key = identify(item)
            outcome = by_key.get(key)
            if outcome is None:
                result.failed.append(FailedItem(key, "no outcome reported"))
            elif isinstance(outcome, Failure):
                result.failed.append(FailedItem(key, outcome.error))
            else:
                result.success.append(outcome.value)
            answered.add(key)

        stray = [outcome for key, outcome in by_key.items() if key not in answered]
        if stray:
            logger.warning(
                "Server returned outcomes for unknown ids",
                extra={"label": label, "count": len(stray)},
            )
        result.unmatched.extend(o.value for o in stray if isinstance(o, Success))

