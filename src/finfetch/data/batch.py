"""
Batch coordinator: fan single-subject fetches out over a bounded pool.

Each subject runs as its own task, gated by a semaphore of size
`concurrency` and bounded by a per-unit timeout. Faults are converted to
envelopes at the unit boundary so one subject can never affect another.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from finfetch.config import Settings, get_settings
from finfetch.logging import get_logger
from finfetch.types import Envelope, FailureKind, err

logger = get_logger(__name__)

FetchOne = Callable[[str], Awaitable[Envelope[Any]]]


def _valid_concurrency(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


class BatchCoordinator:
    """Runs one fetch per subject with bounded concurrency."""

    def __init__(
        self,
        settings: Settings | None = None,
        unit_timeout: float | None = None,
        shutdown_grace: float | None = None,
    ) -> None:
        """Initialize batch coordinator.

        Args:
            settings: Settings; defaults to get_settings().
            unit_timeout: Seconds each subject may take (BATCH_UNIT_TIMEOUT).
            shutdown_grace: Seconds to let in-flight units finish before they
                are cancelled (BATCH_SHUTDOWN_GRACE).
        """
        settings = settings or get_settings()
        self.unit_timeout = settings.BATCH_UNIT_TIMEOUT if unit_timeout is None else unit_timeout
        self.shutdown_grace = settings.BATCH_SHUTDOWN_GRACE if shutdown_grace is None else shutdown_grace

    async def fetch_many(
        self,
        subjects: Sequence[str],
        fetch_one: FetchOne,
        concurrency: Any,
    ) -> dict[str, Envelope[Any]]:
        """Fetch every subject, collecting one envelope each.

        Args:
            subjects: Subjects to fetch. Duplicates collapse to one entry.
            fetch_one: Single-subject verbose operation.
            concurrency: Positive int bounding in-flight fetches.

        Returns:
            Mapping subject -> envelope with exactly one entry per distinct
            subject. Never raises except when the caller itself cancels.
        """
        unique = list(dict.fromkeys(subjects))

        if not _valid_concurrency(concurrency):
            logger.warning("Invalid batch concurrency", concurrency=concurrency)
            return {
                subject: err(
                    FailureKind.INVALID_REQUEST,
                    "Concurrency must be a positive integer",
                    subject=subject,
                    field="concurrency",
                    value=concurrency,
                )
                for subject in unique
            }

        logger.info("Starting batch fetch", subjects=len(unique), concurrency=concurrency)

        semaphore = asyncio.Semaphore(concurrency)
        stopping = asyncio.Event()

        async def run_unit(subject: str) -> Envelope[Any]:
            async with semaphore:
                if stopping.is_set():
                    return err(FailureKind.INTERRUPTED, "Batch shut down before fetch started", subject=subject)
                try:
                    return await asyncio.wait_for(fetch_one(subject), timeout=self.unit_timeout)
                except asyncio.TimeoutError:
                    logger.warning("Batch unit timed out", subject=subject, timeout=self.unit_timeout)
                    return err(
                        FailureKind.TIMEOUT,
                        f"Fetch timed out after {self.unit_timeout}s",
                        subject=subject,
                    )
                except asyncio.CancelledError:
                    task = asyncio.current_task()
                    if task is not None and task.cancelling():
                        raise
                    return err(FailureKind.INTERRUPTED, "Fetch interrupted", subject=subject)
                except Exception as e:
                    logger.warning("Batch unit failed", subject=subject, error=str(e))
                    return err(
                        FailureKind.EXECUTION_ERROR,
                        str(e) or e.__class__.__name__,
                        subject=subject,
                        error_type=e.__class__.__name__,
                    )

        tasks = {
            subject: asyncio.create_task(run_unit(subject), name=f"finfetch-batch-{subject}")
            for subject in unique
        }

        try:
            if tasks:
                await asyncio.wait(tasks.values())
        finally:
            stopping.set()
            await self._shutdown(list(tasks.values()))

        results: dict[str, Envelope[Any]] = {}
        for subject, task in tasks.items():
            if task.cancelled():
                results[subject] = err(FailureKind.INTERRUPTED, "Fetch interrupted", subject=subject)
            else:
                results[subject] = task.result()

        failed = sum(1 for r in results.values() if not r.success)
        logger.info("Batch fetch complete", subjects=len(results), failed=failed)
        return results

    async def _shutdown(self, tasks: list[asyncio.Task[Envelope[Any]]]) -> None:
        """Wait briefly for in-flight units, then cancel whatever remains."""
        pending = [t for t in tasks if not t.done()]
        if not pending:
            return

        _, still_running = await asyncio.wait(pending, timeout=self.shutdown_grace)
        if not still_running:
            return

        logger.warning("Forcing batch shutdown", remaining=len(still_running))
        for task in still_running:
            task.cancel()
        await asyncio.gather(*still_running, return_exceptions=True)
