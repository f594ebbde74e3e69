"""
Task classification.

Asks a fast text model to categorize a free-text task as JSON and falls back
to a deterministic length and keyword heuristic whenever that fails.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any

from model_relay.config import DISPATCH, MODELS
from model_relay.errors import ClassificationParseError
from model_relay.models.catalog import REQUIREMENT_TAGS, Capability
from model_relay.models.vendor_client import AsyncVendorClient
from model_relay.utils.logging import audit_logger

logger = logging.getLogger(__name__)

# Fallback length thresholds (characters)
HIGH_COMPLEXITY_LENGTH = 200
MEDIUM_COMPLEXITY_LENGTH = 50
COMPLEX_ANALYSIS_LENGTH = 100
CHARS_PER_TOKEN = 4


class TaskType(Enum):
    """Broad category of a task."""

    SIMPLE_QUESTION = "simple_question"
    COMPLEX_ANALYSIS = "complex_analysis"
    CREATIVE_WRITING = "creative_writing"
    TECHNICAL = "technical"
    CLASSIFICATION = "classification"
    OTHER = "other"


class Complexity(Enum):
    """How demanding a task is."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Priority(Enum):
    """What the caller cares about most."""

    SPEED = "speed"
    QUALITY = "quality"
    BALANCE = "balance"


class AnalysisSource(Enum):
    """Which path produced a TaskAnalysis."""

    CLASSIFIER = "classifier"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class TaskAnalysis:
    """Structured classification of a task."""

    task_type: TaskType
    complexity: Complexity
    requirements: frozenset[Capability]
    estimated_tokens: int
    priority: Priority
    source: AnalysisSource = AnalysisSource.CLASSIFIER

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_type": self.task_type.value,
            "complexity": self.complexity.value,
            "requirements": sorted(r.value for r in self.requirements),
            "estimated_tokens": self.estimated_tokens,
            "priority": self.priority.value,
            "source": self.source.value,
        }


def fallback_analysis(task_text: str) -> TaskAnalysis:
    """
    Classify a task from its length and keywords alone.

    Deterministic and side-effect free. The task_type threshold (100) is
    intentionally independent of the complexity thresholds (50/200).
    """
    length = len(task_text)

    if length > HIGH_COMPLEXITY_LENGTH:
        complexity = Complexity.HIGH
    elif length > MEDIUM_COMPLEXITY_LENGTH:
        complexity = Complexity.MEDIUM
    else:
        complexity = Complexity.LOW

    task_type = (
        TaskType.COMPLEX_ANALYSIS
        if length > COMPLEX_ANALYSIS_LENGTH
        else TaskType.SIMPLE_QUESTION
    )

    # Case-sensitive on purpose
    if "creative" in task_text:
        requirements = frozenset({Capability.CREATIVITY})
    else:
        requirements = frozenset({Capability.ACCURACY})

    return TaskAnalysis(
        task_type=task_type,
        complexity=complexity,
        requirements=requirements,
        estimated_tokens=math.ceil(length / CHARS_PER_TOKEN),
        priority=Priority.BALANCE,
        source=AnalysisSource.FALLBACK,
    )


def strip_markdown_json(content: str) -> str:
    """Strip markdown code blocks from JSON content."""
    content = content.strip()
    if content.startswith("```"):
        lines = content.split("\n")
        if lines:
            lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        content = "\n".join(lines)
    return content.strip()


def parse_analysis(content: str) -> TaskAnalysis:
    """
    Parse classifier output into a TaskAnalysis.

    Raises:
        ClassificationParseError: If the output is not JSON, a field is
            missing or a value is outside its vocabulary.
    """
    try:
        data = json.loads(strip_markdown_json(content))
    except json.JSONDecodeError as e:
        raise ClassificationParseError(f"Classifier output is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ClassificationParseError("Classifier output is not a JSON object")

    missing = [
        name
        for name in ("task_type", "complexity", "requirements", "estimated_tokens", "priority")
        if name not in data
    ]
    if missing:
        raise ClassificationParseError(f"Classifier output missing fields: {missing}")

    try:
        task_type = TaskType(data["task_type"])
        complexity = Complexity(data["complexity"])
        priority = Priority(data["priority"])
    except ValueError as e:
        raise ClassificationParseError(f"Unknown classifier value: {e}") from e

    raw_requirements = data["requirements"]
    if isinstance(raw_requirements, str):
        raw_requirements = [raw_requirements]
    if not isinstance(raw_requirements, list):
        raise ClassificationParseError("requirements must be a list")
    try:
        requirements = frozenset(Capability(str(r)) for r in raw_requirements)
    except ValueError as e:
        raise ClassificationParseError(f"Unknown requirement tag: {e}") from e
    if not requirements <= REQUIREMENT_TAGS:
        raise ClassificationParseError("requirements contain non-requirement tags")

    raw_tokens = data["estimated_tokens"]
    # Integral values only; bools and fractional floats are rejected
    if (
        isinstance(raw_tokens, bool)
        or not isinstance(raw_tokens, (int, float, str))
        or (isinstance(raw_tokens, float) and not raw_tokens.is_integer())
    ):
        raise ClassificationParseError(f"estimated_tokens is not an integer: {raw_tokens!r}")
    try:
        estimated_tokens = int(raw_tokens)
    except ValueError as e:
        raise ClassificationParseError(f"estimated_tokens is not an integer: {e}") from e
    if estimated_tokens < 0:
        raise ClassificationParseError("estimated_tokens must be non-negative")

    return TaskAnalysis(
        task_type=task_type,
        complexity=complexity,
        requirements=requirements,
        estimated_tokens=estimated_tokens,
        priority=priority,
        source=AnalysisSource.CLASSIFIER,
    )


class TaskClassifier:
    """
    Task classifier using a remote text model with a local fallback.

    ``classify`` never raises.
    """

    INSTRUCTION_TEMPLATE = """Analyze the following task and classify it.

Respond with a single JSON object and nothing else:
{{
  "task_type": "simple_question | complex_analysis | creative_writing | technical | classification | other",
  "complexity": "low | medium | high",
  "requirements": ["speed" | "accuracy" | "creativity" | "reasoning" | "classification"],
  "estimated_tokens": <integer estimate of the response length in tokens>,
  "priority": "speed | quality | balance"
}}

Task: {task}"""

    def __init__(
        self,
        client: AsyncVendorClient | None = None,
        model: str | None = None,
        timeout: float | None = None,
    ) -> None:
        """
        Initialize task classifier.

        Args:
            client: Vendor client instance.
            model: Gemini model used for classification.
            timeout: Classifier call timeout in seconds.
        """
        self.client = client or AsyncVendorClient()
        self.model = model or MODELS.CLASSIFIER_MODEL
        self.timeout = timeout or DISPATCH.CLASSIFIER_TIMEOUT

    async def classify(self, task_text: str) -> TaskAnalysis:
        """
        Classify a task.

        Args:
            task_text: Free-text task description.

        Returns:
            TaskAnalysis from the remote classifier, or from the fallback
            heuristic if the call or parsing failed.
        """
        try:
            content = await self.client.gemini_generate(
                self.INSTRUCTION_TEMPLATE.format(task=task_text),
                model=self.model,
                timeout=self.timeout,
            )
            analysis = parse_analysis(content)
        except ClassificationParseError as e:
            logger.warning(f"Classifier output unusable, using fallback: {e}")
            analysis = fallback_analysis(task_text)
        except Exception as e:
            logger.warning(f"Classifier call failed, using fallback: {e}")
            analysis = fallback_analysis(task_text)

        audit_logger.log_task_classified(
            task_type=analysis.task_type.value,
            complexity=analysis.complexity.value,
            priority=analysis.priority.value,
            estimated_tokens=analysis.estimated_tokens,
            source=analysis.source.value,
        )
        return analysis
