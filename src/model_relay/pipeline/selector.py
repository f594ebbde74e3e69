"""
Model selection.

Scores each catalog entry against a TaskAnalysis with an additive rule table
and picks the highest-scoring model. Ties go to the earlier catalog entry.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from model_relay.errors import ConfigurationError
from model_relay.models.catalog import Capability, CostTier, ModelDescriptor, SpeedTier
from model_relay.pipeline.classifier import Complexity, Priority, TaskAnalysis, TaskType

logger = logging.getLogger(__name__)

# Fixed divisor for the reported confidence
CONFIDENCE_DIVISOR = 10


@dataclass(frozen=True)
class ScoringRule:
    """One additive scoring criterion."""

    name: str
    points: int
    applies: Callable[[TaskAnalysis, ModelDescriptor], bool]


SCORING_RULES: tuple[ScoringRule, ...] = (
    ScoringRule(
        "low complexity favours speed",
        3,
        lambda a, d: a.complexity is Complexity.LOW and d.has(Capability.SPEED),
    ),
    ScoringRule(
        "high complexity needs reasoning",
        3,
        lambda a, d: a.complexity is Complexity.HIGH and d.has(Capability.REASONING),
    ),
    ScoringRule(
        "creative writing task",
        2,
        lambda a, d: a.task_type is TaskType.CREATIVE_WRITING
        and d.has(Capability.CREATIVE_WRITING),
    ),
    ScoringRule(
        "classification task",
        2,
        lambda a, d: a.task_type is TaskType.CLASSIFICATION
        and d.has(Capability.CLASSIFICATION),
    ),
    ScoringRule(
        "complex analysis task",
        2,
        lambda a, d: a.task_type is TaskType.COMPLEX_ANALYSIS
        and d.has(Capability.ANALYSIS),
    ),
    ScoringRule(
        "speed priority and fast model",
        1,
        lambda a, d: a.priority is Priority.SPEED and d.speed_tier is SpeedTier.FAST,
    ),
    ScoringRule(
        "quality priority and medium cost model",
        1,
        lambda a, d: a.priority is Priority.QUALITY and d.cost_tier is CostTier.MEDIUM,
    ),
)


@dataclass(frozen=True)
class ModelSelection:
    """Result of a selection pass."""

    descriptor: ModelDescriptor
    score: int
    confidence: float
    reasons: tuple[str, ...] = ()
    alternatives: tuple[tuple[ModelDescriptor, int], ...] = field(default_factory=tuple)


def score_model(
    analysis: TaskAnalysis, descriptor: ModelDescriptor
) -> tuple[int, list[str]]:
    """
    Score one model against a task.

    Returns:
        Tuple of (score, names of the rules that matched).
    """
    score = 0
    reasons: list[str] = []
    for rule in SCORING_RULES:
        if rule.applies(analysis, descriptor):
            score += rule.points
            reasons.append(rule.name)
    return score, reasons


def rank_models(
    analysis: TaskAnalysis, catalog: Sequence[ModelDescriptor]
) -> list[tuple[ModelDescriptor, int, list[str]]]:
    """Score every model, highest first; equal scores keep catalog order."""
    scored = [(d, *score_model(analysis, d)) for d in catalog]
    # sorted() is stable, which makes catalog order the tie-break
    return sorted(scored, key=lambda entry: entry[1], reverse=True)


def select_model(
    analysis: TaskAnalysis, catalog: Sequence[ModelDescriptor]
) -> ModelSelection:
    """
    Pick the best model for a task.

    Args:
        analysis: Task classification.
        catalog: Candidate models, in tie-break order.

    Returns:
        ModelSelection for the highest-scoring model.

    Raises:
        ConfigurationError: If the catalog is empty.
    """
    if not catalog:
        raise ConfigurationError("Model catalog is empty")

    ranked = rank_models(analysis, catalog)
    best, best_score, reasons = ranked[0]

    logger.debug(
        f"Selected {best.id} with score {best_score} "
        f"over {[(d.id, s) for d, s, _ in ranked[1:]]}"
    )

    return ModelSelection(
        descriptor=best,
        score=best_score,
        confidence=best_score / CONFIDENCE_DIVISOR,
        reasons=tuple(reasons),
        alternatives=tuple((d, s) for d, s, _ in ranked[1:]),
    )
