"""
Relay Service

Wires the classifier, selector, invokers and vendor client together and
exposes the operations served by the HTTP API.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from model_relay.config import MODELS
from model_relay.errors import ConfigurationError, UnknownVendorError
from model_relay.models.catalog import (
    DEFAULT_CATALOG,
    CostTier,
    ModelDescriptor,
    SpeedTier,
    get_descriptor,
)
from model_relay.models.vendor_client import AsyncVendorClient, Vendor
from model_relay.pipeline.batch import MAX_CONCURRENT_CEILING, BatchDispatcher
from model_relay.pipeline.classifier import Priority, TaskAnalysis, TaskClassifier
from model_relay.pipeline.invoker import (
    Failure,
    InferenceTask,
    ResilientInvoker,
    TaskLike,
)
from model_relay.pipeline.selector import ModelSelection, select_model
from model_relay.session.manager import SessionContext, SessionManager
from model_relay.utils.logging import audit_logger

logger = logging.getLogger(__name__)

ANALYSIS_PROMPTS: dict[str, str] = {
    "sentiment": (
        "Analyze the sentiment of this text. Provide sentiment score (-1 to 1), "
        "emotional tone, and key sentiment indicators:\n\n{text}"
    ),
    "summary": (
        "Provide a concise summary of this text, highlighting the main points:\n\n{text}"
    ),
    "technical": (
        "Analyze this text from a technical perspective. Identify technical concepts, "
        "accuracy, and complexity level:\n\n{text}"
    ),
    "creative": (
        "Analyze the creative elements of this text. Look at literary devices, "
        "creativity, and artistic merit:\n\n{text}"
    ),
    "logical": (
        "Analyze the logical structure of this text. Identify arguments, reasoning "
        "patterns, and logical fallacies:\n\n{text}"
    ),
}
DEFAULT_ANALYSIS_PROMPT = "Analyze this text:\n\n{text}"

_SPEED_SCORES = {SpeedTier.FAST: 0.9, SpeedTier.MEDIUM: 0.6, SpeedTier.SLOW: 0.3}
_QUALITY_SCORES = {
    CostTier.VERY_LOW: 0.7,
    CostTier.LOW: 0.75,
    CostTier.MEDIUM: 0.9,
    CostTier.HIGH: 0.95,
}
# Higher is cheaper
_COST_SCORES = {
    CostTier.VERY_LOW: 0.9,
    CostTier.LOW: 0.8,
    CostTier.MEDIUM: 0.4,
    CostTier.HIGH: 0.2,
}


def _now() -> str:
    return datetime.now(UTC).isoformat()


def estimated_performance(descriptor: ModelDescriptor) -> dict[str, float]:
    """Rough speed/quality/cost scores derived from a model's tiers."""
    return {
        "speed": _SPEED_SCORES[descriptor.speed_tier],
        "quality": _QUALITY_SCORES[descriptor.cost_tier],
        "cost": _COST_SCORES[descriptor.cost_tier],
    }


class RelayService:
    """
    Coordinates model selection and vendor calls.

    Vendor errors propagate to the caller except where an operation reports
    per-model outcomes (comparison, single and batch inference).
    """

    def __init__(
        self,
        client: AsyncVendorClient | None = None,
        session_manager: SessionManager | None = None,
        catalog: Sequence[ModelDescriptor] | None = None,
        classifier: TaskClassifier | None = None,
        invoker: ResilientInvoker | None = None,
        batch_dispatcher: BatchDispatcher | None = None,
    ) -> None:
        """
        Initialize service with shared components.

        Args:
            client: Shared vendor client.
            session_manager: Shared session manager.
            catalog: Models considered for selection, in tie-break order.
            classifier: Task classifier.
            invoker: Single-model inference invoker.
            batch_dispatcher: Multi-model dispatcher.
        """
        self.client = client or AsyncVendorClient()
        self.session_manager = session_manager or SessionManager()
        self.catalog = tuple(DEFAULT_CATALOG if catalog is None else catalog)
        self.classifier = classifier or TaskClassifier(client=self.client)
        self.invoker = invoker or ResilientInvoker(client=self.client)
        self.batch_dispatcher = batch_dispatcher or BatchDispatcher(invoker=self.invoker)

    @staticmethod
    def _record(
        session: SessionContext | None, tool: str, arguments: dict[str, Any]
    ) -> None:
        if session is not None:
            session.record(tool, arguments)

    async def select(
        self,
        task_description: str,
        priority: Priority | None = None,
    ) -> tuple[ModelSelection, TaskAnalysis]:
        """Classify a task and pick a model; returns (selection, analysis)."""
        analysis = await self.classifier.classify(task_description)
        if priority is not None:
            analysis = replace(analysis, priority=priority)

        selection = select_model(analysis, self.catalog)
        audit_logger.log_model_selected(
            model_id=selection.descriptor.id,
            score=selection.score,
            confidence=selection.confidence,
            reasons=list(selection.reasons),
        )
        return selection, analysis

    async def recommend_model(
        self,
        task_description: str,
        priority: Priority | None = None,
        session: SessionContext | None = None,
    ) -> dict[str, Any]:
        """
        Recommend a model for a task.

        Args:
            task_description: Free-text task.
            priority: Overrides the classified priority when given.
            session: Session to record the call in.

        Returns:
            Recommendation with analysis, reasoning and alternatives.
        """
        self._record(
            session,
            "select_model",
            {
                "task_description": task_description,
                "priority": priority.value if priority else None,
            },
        )
        selection, analysis = await self.select(task_description, priority)
        best = selection.descriptor

        if selection.reasons:
            reasoning = "Matched criteria: " + "; ".join(selection.reasons)
        else:
            reasoning = "No scoring criteria matched; first catalog entry chosen"

        return {
            "recommended_model": best.id,
            "display_name": best.display_name,
            "provider": best.provider,
            "score": selection.score,
            "confidence": selection.confidence,
            "reasoning": reasoning,
            "task_analysis": analysis.to_dict(),
            "alternative_options": [
                {"model": d.id, "display_name": d.display_name, "score": s}
                for d, s in selection.alternatives
            ],
            "estimated_performance": estimated_performance(best),
        }

    async def compare(
        self, prompt: str, session: SessionContext | None = None
    ) -> dict[str, Any]:
        """
        Send the same prompt to Gemini Flash and Gemini Pro.

        A failure in one model is reported in its entry; the other still returns.

        Raises:
            ConfigurationError: If Gemini is not configured.
        """
        self._record(session, "compare_models", {"prompt": prompt})
        flash, pro = await asyncio.gather(
            self.client.gemini_generate(prompt, model=MODELS.GEMINI_FLASH_MODEL),
            self.client.gemini_generate(prompt, model=MODELS.GEMINI_PRO_MODEL),
            return_exceptions=True,
        )

        for outcome in (flash, pro):
            if isinstance(outcome, ConfigurationError):
                raise outcome

        def entry(outcome: str | BaseException, name: str, traits: str) -> dict[str, Any]:
            if isinstance(outcome, BaseException):
                logger.warning(f"{name} failed during comparison: {outcome}")
                return {"model": name, "response": None, "error": str(outcome), "characteristics": traits}
            return {"model": name, "response": outcome, "error": None, "characteristics": traits}

        return {
            "prompt": prompt,
            "responses": {
                "gemini_flash": entry(flash, "Gemini 1.5 Flash", "Fast, cost-effective"),
                "gemini_pro": entry(pro, "Gemini 1.5 Pro", "Higher quality, better reasoning"),
            },
            "timestamp": _now(),
        }

    async def analyze_text(
        self,
        text: str,
        analysis_type: str = "summary",
        session: SessionContext | None = None,
    ) -> dict[str, Any]:
        """Run a templated analysis of a text with Gemini Pro."""
        self._record(session, "analyze_text", {"text": text, "analysis_type": analysis_type})
        template = ANALYSIS_PROMPTS.get(analysis_type, DEFAULT_ANALYSIS_PROMPT)
        analysis = await self.client.gemini_generate(
            template.format(text=text), model=MODELS.GEMINI_PRO_MODEL
        )
        return {
            "original_text": text,
            "analysis_type": analysis_type,
            "analysis": analysis,
            "metadata": {
                "model": "Gemini 1.5 Pro",
                "text_length": len(text),
                "analysis_length": len(analysis),
                "timestamp": _now(),
            },
        }

    async def generate_image(
        self,
        prompt: str,
        style: str = "photographic",
        session: SessionContext | None = None,
    ) -> dict[str, Any]:
        """Generate an image with Stable Diffusion XL."""
        self._record(session, "generate_image", {"prompt": prompt, "style": style})
        result = await self.client.stability_text_to_image(prompt, style=style)
        return {
            "prompt": prompt,
            "style": style,
            "image_base64": result["image"],
            "image_data": f"data:image/png;base64,{result['image']}",
            "seed": result["seed"],
            "metadata": {
                "model": "Stable Diffusion XL 1024",
                "dimensions": "1024x1024",
                "timestamp": _now(),
            },
        }

    async def generate_with(self, descriptor: ModelDescriptor, prompt: str) -> str:
        """
        Generate text with a catalog model through its vendor.

        Raises:
            VendorError: If the vendor call fails.
            ConfigurationError: If the provider is unsupported or unconfigured.
        """
        provider = Vendor(descriptor.provider)
        if provider is Vendor.GEMINI:
            return await self.client.gemini_generate(prompt, model=descriptor.upstream_model)
        if provider is Vendor.CLAUDE:
            return await self.client.claude_message(prompt, model=descriptor.upstream_model)
        if provider is Vendor.HUGGINGFACE:
            result = await self.invoker.invoke(
                descriptor.upstream_model, prompt, InferenceTask.TEXT_GENERATION
            )
            if isinstance(result, Failure):
                raise UnknownVendorError(result.last_error, vendor=provider.value)
            return result.parsed_response
        raise ConfigurationError(f"Provider {descriptor.provider} cannot generate text")

    async def route_and_generate(
        self, prompt: str, session: SessionContext | None = None
    ) -> dict[str, Any]:
        """Pick the best model for a prompt and generate a response with it."""
        self._record(session, "route_and_generate", {"prompt": prompt})
        selection, analysis = await self.select(prompt)
        response = await self.generate_with(selection.descriptor, prompt)
        return {
            "prompt": prompt,
            "model": selection.descriptor.id,
            "display_name": selection.descriptor.display_name,
            "confidence": selection.confidence,
            "task_analysis": analysis.to_dict(),
            "response": response,
            "timestamp": _now(),
        }

    async def run_inference(
        self,
        model_id: str,
        text: str,
        task: TaskLike = InferenceTask.TEXT_GENERATION,
        max_attempts: int | None = None,
        context: str | None = None,
    ) -> dict[str, Any]:
        """Invoke one inference model with retries and report the outcome."""
        result = await self.invoker.invoke(
            model_id, text, task, max_attempts=max_attempts, context=context
        )
        report = result.to_dict()
        report["attempt_log"] = [a.to_dict() for a in result.attempts]
        return report

    async def run_batch(
        self,
        model_ids: list[str],
        text: str,
        task: TaskLike = InferenceTask.TEXT_GENERATION,
        max_concurrent: int = MAX_CONCURRENT_CEILING,
    ) -> dict[str, Any]:
        """Invoke several inference models in bounded batches."""
        report = await self.batch_dispatcher.invoke_many(
            model_ids, text, task, max_concurrent=max_concurrent
        )
        return {
            "input": text,
            "task": task.value if isinstance(task, InferenceTask) else task,
            **report.to_dict(),
            "timestamp": _now(),
        }

    async def send_email(
        self, to: str, sender: str, subject: str, body: str
    ) -> dict[str, Any]:
        """Send a plain-text email."""
        await self.client.mailchannels_send(to, sender, subject, body)
        return {"sent": True, "to": to, "subject": subject, "timestamp": _now()}

    def record_feedback(
        self,
        session: SessionContext,
        interaction: dict[str, Any],
        feedback_type: str,
        weight: float = 1.0,
    ) -> dict[str, Any]:
        """Store user feedback in the session's preference map."""
        session.record(
            "learn_user_patterns",
            {"interaction_data": interaction, "feedback_type": feedback_type, "learning_weight": weight},
        )
        counts = dict(session.preferences.get("feedback_counts", {}))
        counts[feedback_type] = counts.get(feedback_type, 0) + 1
        session.set_preference("feedback_counts", counts)
        session.set_preference(
            "last_feedback",
            {"data": interaction, "feedback": feedback_type, "weight": weight, "timestamp": _now()},
        )
        return {
            "learning_applied": True,
            "feedback_type": feedback_type,
            "weight_applied": weight,
            "updated_preferences": dict(session.preferences),
            "learning_confidence": session.learning_confidence,
        }

    def describe_model(self, model_id: str) -> dict[str, Any] | None:
        descriptor = get_descriptor(model_id, self.catalog)
        return descriptor.to_dict() if descriptor else None

    async def health_check(self) -> dict[str, Any]:
        """Report vendor configuration and session statistics."""
        vendors = self.client.configured_vendors()
        return {
            "healthy": any(
                configured
                for name, configured in vendors.items()
                if name != Vendor.MAILCHANNELS.value
            ),
            "vendors": vendors,
            "catalog": [d.id for d in self.catalog],
            "sessions": self.session_manager.get_stats(),
        }

    async def close(self) -> None:
        """Release network resources."""
        await self.client.close()
