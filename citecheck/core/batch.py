"""
Bounded-concurrency batch runner for per-query optimization work.

Batch optimization (analysis, optimization and re-scoring of many queries)
sits above the engine, but the engine constrains how it may run:

- at most ``concurrency`` queries are processed at once
- progress is reported with a completed count that never goes down
- one failing query is recorded and does not stop the batch
- aborting keeps every completed result and discards only in-flight work
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, Sequence, TypeVar

from citecheck.core.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BatchPhase(Enum):
    ANALYSIS = "analysis"
    OPTIMIZATION = "optimization"
    SCORING = "scoring"


@dataclass(frozen=True)
class BatchProgress:
    """
    Snapshot of batch progress.

    Attributes:
        completed: Items finished (successfully or with an error)
        total: Items in the batch
        current_query: Query whose phase changed most recently
        phase: Phase that query just entered (None once it finished)
    """
    completed: int
    total: int
    current_query: Optional[str]
    phase: Optional[BatchPhase]

    @property
    def fraction(self) -> float:
        return self.completed / self.total if self.total else 1.0


@dataclass
class BatchResult(Generic[T]):
    """
    Outcome of a batch run.

    Attributes:
        results: Successful results keyed by query, in completion order
        errors: Error message per failed query
        aborted: Whether the batch was stopped before finishing
    """
    results: Dict[str, T] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    aborted: bool = False

    @property
    def completed_count(self) -> int:
        return len(self.results) + len(self.errors)


PhaseReporter = Callable[[BatchPhase], None]
Worker = Callable[[str, PhaseReporter], Awaitable[T]]
ProgressCallback = Callable[[BatchProgress], Any]


async def run_batch(
    queries: Sequence[str],
    worker: Worker,
    concurrency: Optional[int] = None,
    on_progress: Optional[ProgressCallback] = None,
    abort_event: Optional[asyncio.Event] = None,
) -> BatchResult:
    """
    Run ``worker`` for each query with bounded concurrency.

    The worker receives the query and a callback it calls when entering a
    new phase. Setting ``abort_event`` stops the batch: queued queries are
    skipped, in-flight ones are cancelled and discarded, and completed
    results are returned untouched.

    Args:
        queries: Queries to process, in order (duplicates run once)
        worker: Async callable (query, report_phase) -> result
        concurrency: Max simultaneous workers (default from settings)
        on_progress: Called with a BatchProgress after every change
        abort_event: Event that aborts the batch when set

    Returns:
        BatchResult with results, errors and the aborted flag
    """
    if concurrency is None:
        concurrency = get_settings().BATCH_CONCURRENCY
    concurrency = max(1, concurrency)
    abort_event = abort_event or asyncio.Event()

    unique = list(dict.fromkeys(queries))
    if len(unique) < len(queries):
        logger.warning("Ignoring %d duplicate batch queries", len(queries) - len(unique))

    result: BatchResult = BatchResult()
    total = len(unique)
    semaphore = asyncio.Semaphore(concurrency)

    def emit(query: Optional[str], phase: Optional[BatchPhase]) -> None:
        if on_progress is not None:
            on_progress(BatchProgress(
                completed=result.completed_count,
                total=total,
                current_query=query,
                phase=phase,
            ))

    async def process(query: str) -> None:
        async with semaphore:
            if abort_event.is_set():
                return

            def report_phase(phase: BatchPhase) -> None:
                emit(query, phase)

            try:
                value = await worker(query, report_phase)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Batch item %r failed: %s", query, e)
                result.errors[query] = str(e)
            else:
                result.results[query] = value
            emit(query, None)

    tasks = [asyncio.ensure_future(process(q)) for q in unique]
    if not tasks:
        return result

    gather = asyncio.gather(*tasks, return_exceptions=True)
    abort_wait = asyncio.ensure_future(abort_event.wait())
    try:
        done, _ = await asyncio.wait({gather, abort_wait}, return_when=asyncio.FIRST_COMPLETED)
        if abort_wait in done and not gather.done():
            result.aborted = True
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(
                "Batch aborted after %d of %d queries", result.completed_count, total
            )
        elif abort_event.is_set():
            result.aborted = result.completed_count < total
    finally:
        abort_wait.cancel()
        if not gather.done():
            gather.cancel()

    return result
