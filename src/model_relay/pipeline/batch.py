"""
Batch dispatch across several inference models.

Model ids are split into sequential batches of at most three concurrent
calls, with a short pause between batches. Every model's outcome is kept,
so one failing model never aborts its siblings.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from model_relay.config import DISPATCH
from model_relay.errors import ConfigurationError
from model_relay.pipeline.invoker import (
    Failure,
    InferenceTask,
    InvocationResult,
    ResilientInvoker,
    Success,
    TaskLike,
)
from model_relay.utils.logging import audit_logger

logger = logging.getLogger(__name__)

# Upper bound on concurrent vendor calls, whatever the caller asks for
MAX_CONCURRENT_CEILING = 3


@dataclass
class BatchReport:
    """Aggregated outcome of a batch dispatch."""

    results: list[InvocationResult] = field(default_factory=list)

    @property
    def successful(self) -> list[Success]:
        return [r for r in self.results if isinstance(r, Success)]

    @property
    def failed(self) -> list[Failure]:
        return [r for r in self.results if isinstance(r, Failure)]

    @property
    def success_count(self) -> int:
        return len(self.successful)

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": len(self.results),
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "successful": [r.to_dict() for r in self.successful],
            "failed": [r.to_dict() for r in self.failed],
        }


def effective_batch_size(max_concurrent: int) -> int:
    """Clamp requested concurrency to [1, MAX_CONCURRENT_CEILING]."""
    return max(1, min(max_concurrent, MAX_CONCURRENT_CEILING))


class BatchDispatcher:
    """Runs the same input through several models in bounded batches."""

    def __init__(
        self,
        invoker: ResilientInvoker | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        pause_seconds: float | None = None,
    ) -> None:
        """
        Initialize dispatcher.

        Args:
            invoker: Single-model invoker.
            sleep: Coroutine used for the pause between batches.
            pause_seconds: Pause between batches.
        """
        self.invoker = invoker or ResilientInvoker()
        self._sleep = sleep or asyncio.sleep
        self.pause_seconds = (
            DISPATCH.BATCH_PAUSE_SECONDS if pause_seconds is None else pause_seconds
        )

    async def invoke_many(
        self,
        model_ids: list[str],
        text: str,
        task: TaskLike = InferenceTask.TEXT_GENERATION,
        max_concurrent: int = MAX_CONCURRENT_CEILING,
        max_attempts: int | None = None,
    ) -> BatchReport:
        """
        Invoke every model and collect all outcomes.

        Args:
            model_ids: Models to call, in reporting order.
            text: Input passed to every model.
            task: Inference task kind.
            max_concurrent: Requested concurrency (capped at 3).
            max_attempts: Attempt budget per model.

        Returns:
            BatchReport with one result per model id, in input order.
        """
        start_time = time.time()
        batch_size = effective_batch_size(max_concurrent)
        report = BatchReport()

        batches = [
            model_ids[i : i + batch_size] for i in range(0, len(model_ids), batch_size)
        ]

        for index, batch in enumerate(batches):
            if index > 0:
                await self._sleep(self.pause_seconds)

            logger.info(f"Dispatching batch {index + 1}/{len(batches)}: {batch}")
            outcomes = await asyncio.gather(
                *(
                    self.invoker.invoke(model_id, text, task, max_attempts=max_attempts)
                    for model_id in batch
                ),
                return_exceptions=True,
            )

            for model_id, outcome in zip(batch, outcomes):
                if isinstance(outcome, ConfigurationError):
                    raise outcome
                if isinstance(outcome, BaseException):
                    logger.error(f"Invocation of {model_id} raised: {outcome}")
                    outcome = Failure(model=model_id, last_error=str(outcome))
                report.results.append(outcome)

        audit_logger.log_batch_complete(
            total=len(report.results),
            success_count=report.success_count,
            failure_count=report.failure_count,
            batch_size=batch_size,
            duration_ms=(time.time() - start_time) * 1000,
        )
        return report
