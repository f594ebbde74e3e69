"""
Resilient Hugging Face model invoker.

Formats a request for the task kind, calls the inference endpoint and
retries transient failures (model loading, rate limits, 503, 429) with a
per-error backoff window. Fatal errors stop the dispatch at once. The sleep
and jitter functions are injectable so retry behaviour can be tested without
real timers.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from model_relay.config import DISPATCH
from model_relay.errors import ConfigurationError, TransientVendorError, VendorError
from model_relay.models.vendor_client import AsyncVendorClient, Vendor
from model_relay.utils.logging import audit_logger

logger = logging.getLogger(__name__)


def _get_metrics() -> dict | None:
    """Lazy import metrics to avoid circular imports."""
    try:
        from model_relay.server import METRICS
        return METRICS
    except ImportError:
        return None


class InferenceTask(Enum):
    """Hugging Face pipeline tasks with dedicated request/response shapes."""

    TEXT_GENERATION = "text-generation"
    TEXT_CLASSIFICATION = "text-classification"
    QUESTION_ANSWERING = "question-answering"
    SUMMARIZATION = "summarization"
    FILL_MASK = "fill-mask"


class AttemptOutcome(Enum):
    """Classified outcome of one network call."""

    SUCCESS = "success"
    TRANSIENT = "transient"
    FATAL = "fatal"


@dataclass(frozen=True)
class DispatchAttempt:
    """Record of one call made during a dispatch."""

    model_id: str
    attempt_number: int
    outcome: AttemptOutcome
    wait_before_retry_ms: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempt_number": self.attempt_number,
            "outcome": self.outcome.value,
            "wait_before_retry_ms": self.wait_before_retry_ms,
            "error": self.error,
        }


@dataclass(frozen=True)
class Success:
    """Invocation that produced a usable response."""

    model: str
    parsed_response: str
    raw_response: Any
    attempts: tuple[DispatchAttempt, ...] = ()

    ok = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "success": True,
            "response": self.parsed_response,
            "raw_response": self.raw_response,
            "attempts": len(self.attempts),
        }


@dataclass(frozen=True)
class Failure:
    """Invocation that failed fatally or ran out of attempts."""

    model: str
    last_error: str
    error_category: str = "unknown"
    attempts: tuple[DispatchAttempt, ...] = ()

    ok = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "success": False,
            "error": self.last_error,
            "error_category": self.error_category,
            "attempts": len(self.attempts),
        }


InvocationResult = Success | Failure

TaskLike = InferenceTask | str


def coerce_task(task: TaskLike) -> InferenceTask | None:
    """Map a task name onto a known InferenceTask, or None if unrecognized."""
    if isinstance(task, InferenceTask):
        return task
    try:
        return InferenceTask(task)
    except ValueError:
        return None


def format_request(
    task: TaskLike, text: str, context: str | None = None
) -> dict[str, Any]:
    """Build the inference request body for a task."""
    kind = coerce_task(task)
    if kind is InferenceTask.TEXT_GENERATION:
        return {
            "inputs": text,
            "parameters": {
                "max_new_tokens": 250,
                "temperature": 0.7,
                "return_full_text": False,
            },
        }
    if kind is InferenceTask.SUMMARIZATION:
        return {"inputs": text, "parameters": {"max_length": 150, "min_length": 30}}
    if kind is InferenceTask.QUESTION_ANSWERING:
        return {"inputs": {"question": text, "context": context or text}}
    return {"inputs": text}


def _stringify(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def _first_element(payload: Any) -> Any:
    """First result element, unwrapping one level of list nesting."""
    if isinstance(payload, list):
        if not payload:
            return None
        first = payload[0]
        if isinstance(first, list):
            return first[0] if first else None
        return first
    return payload


def _field_or_stringified(element: Any, *names: str) -> str:
    if isinstance(element, dict):
        for name in names:
            value = element.get(name)
            if value:
                return str(value)
    return _stringify(element)


def parse_response(task: TaskLike, payload: Any) -> str:
    """Extract the human-readable answer from an inference payload."""
    kind = coerce_task(task)

    if kind is InferenceTask.TEXT_GENERATION:
        element = _first_element(payload)
        if isinstance(element, str):
            return element
        return _field_or_stringified(element, "generated_text", "text")
    if kind is InferenceTask.TEXT_CLASSIFICATION:
        return _field_or_stringified(_first_element(payload), "label")
    if kind is InferenceTask.QUESTION_ANSWERING:
        return _field_or_stringified(_first_element(payload), "answer")
    if kind is InferenceTask.SUMMARIZATION:
        return _field_or_stringified(_first_element(payload), "summary_text", "summary")
    if kind is InferenceTask.FILL_MASK:
        candidates = payload if isinstance(payload, list) else [payload]
        if candidates and isinstance(candidates[0], list):
            candidates = candidates[0]
        return ", ".join(
            f"{c.get('token_str', '')} ({float(c.get('score', 0)) * 100:.1f}%)"
            for c in candidates
            if isinstance(c, dict)
        )
    return _stringify(payload)


class ResilientInvoker:
    """Invokes a single inference model with bounded retries."""

    def __init__(
        self,
        client: AsyncVendorClient | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        jitter: Callable[[float, float], float] | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
    ) -> None:
        """
        Initialize invoker.

        Args:
            client: Vendor client instance.
            sleep: Coroutine used to wait between attempts.
            jitter: Picks a wait inside a (min, max) backoff window.
            timeout: Per-call timeout in seconds.
            max_attempts: Default attempt budget.
        """
        self.client = client or AsyncVendorClient()
        self._sleep = sleep or asyncio.sleep
        self._jitter = jitter or random.uniform
        self.timeout = timeout or DISPATCH.INFERENCE_TIMEOUT
        self.max_attempts = max_attempts or DISPATCH.MAX_ATTEMPTS

    def _backoff(self, retry_state: RetryCallState) -> float:
        """Wait strategy: a jittered value inside the failing error's window."""
        error = retry_state.outcome.exception() if retry_state.outcome else None
        low, high = getattr(error, "backoff", (0.0, 0.0))
        return self._jitter(low, high)

    async def invoke(
        self,
        model_id: str,
        text: str,
        task: TaskLike = InferenceTask.TEXT_GENERATION,
        max_attempts: int | None = None,
        context: str | None = None,
    ) -> InvocationResult:
        """
        Invoke a model, retrying transient failures.

        Args:
            model_id: Hugging Face model id.
            text: Input text.
            task: Inference task kind.
            max_attempts: Attempt budget (each backoff wait belongs to an attempt).
            context: Passage for question-answering.

        Returns:
            Success or Failure. Never raises for vendor errors.

        Raises:
            ConfigurationError: If no inference credentials are configured.
        """
        budget = max(1, max_attempts or self.max_attempts)
        body = format_request(task, text, context=context)
        attempts: list[DispatchAttempt] = []

        def record_wait(retry_state: RetryCallState) -> None:
            wait = retry_state.next_action.sleep if retry_state.next_action else 0.0
            attempts[-1] = replace(attempts[-1], wait_before_retry_ms=int(wait * 1000))

        retrying = AsyncRetrying(
            stop=stop_after_attempt(budget),
            wait=self._backoff,
            retry=retry_if_exception_type(TransientVendorError),
            sleep=self._sleep,
            before_sleep=record_wait,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    raw = await self._attempt(
                        model_id, body, attempt.retry_state.attempt_number, attempts
                    )
        except ConfigurationError:
            self._log_attempts(attempts)
            raise
        except VendorError as e:
            self._log_attempts(attempts)
            return Failure(
                model=model_id,
                last_error=str(e),
                error_category=e.category,
                attempts=tuple(attempts),
            )
        except Exception as e:
            logger.exception(f"Unexpected error invoking {model_id}")
            self._log_attempts(attempts)
            return Failure(model=model_id, last_error=str(e), attempts=tuple(attempts))

        self._log_attempts(attempts)
        return Success(
            model=model_id,
            parsed_response=parse_response(task, raw),
            raw_response=raw,
            attempts=tuple(attempts),
        )

    async def _attempt(
        self,
        model_id: str,
        body: dict[str, Any],
        attempt_number: int,
        attempts: list[DispatchAttempt],
    ) -> Any:
        """Make one call and record its classified outcome."""
        try:
            raw = await self.client.invoke(
                Vendor.HUGGINGFACE, model_id, body, timeout=self.timeout
            )
        except TransientVendorError as e:
            attempts.append(
                DispatchAttempt(model_id, attempt_number, AttemptOutcome.TRANSIENT, error=str(e))
            )
            raise
        except Exception as e:
            attempts.append(
                DispatchAttempt(model_id, attempt_number, AttemptOutcome.FATAL, error=str(e))
            )
            raise

        attempts.append(DispatchAttempt(model_id, attempt_number, AttemptOutcome.SUCCESS))
        return raw

    @staticmethod
    def _log_attempts(attempts: list[DispatchAttempt]) -> None:
        prom_metrics = _get_metrics()
        for record in attempts:
            audit_logger.log_dispatch_attempt(
                model_id=record.model_id,
                attempt_number=record.attempt_number,
                outcome=record.outcome.value,
                wait_before_retry_ms=record.wait_before_retry_ms,
                error=record.error,
            )
            if prom_metrics:
                prom_metrics["dispatch_attempts"].labels(outcome=record.outcome.value).inc()
