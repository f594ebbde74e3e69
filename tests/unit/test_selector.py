"""Unit tests for model selection."""

from dataclasses import replace

import pytest

from model_relay.errors import ConfigurationError
from model_relay.models.catalog import (
    DEFAULT_CATALOG,
    Capability,
    CostTier,
    ModelDescriptor,
    SpeedTier,
)
from model_relay.pipeline.classifier import (
    Complexity,
    Priority,
    TaskAnalysis,
    TaskType,
    fallback_analysis,
)
from model_relay.pipeline.selector import (
    SCORING_RULES,
    rank_models,
    score_model,
    select_model,
)


def make_analysis(
    task_type=TaskType.OTHER,
    complexity=Complexity.MEDIUM,
    priority=Priority.BALANCE,
    requirements=frozenset({Capability.ACCURACY}),
) -> TaskAnalysis:
    return TaskAnalysis(
        task_type=task_type,
        complexity=complexity,
        requirements=requirements,
        estimated_tokens=100,
        priority=priority,
    )


def make_descriptor(model_id="m", characteristics=(), cost=CostTier.LOW, speed=SpeedTier.MEDIUM):
    return ModelDescriptor(
        id=model_id,
        display_name=model_id,
        provider="huggingface",
        characteristics=frozenset(characteristics),
        cost_tier=cost,
        speed_tier=speed,
        upstream_model=model_id,
    )


class TestScoreModel:
    """Tests for individual scoring rules."""

    def test_low_complexity_rewards_speed(self):
        score, reasons = score_model(
            make_analysis(complexity=Complexity.LOW),
            make_descriptor(characteristics={Capability.SPEED}),
        )
        assert score == 3
        assert reasons == ["low complexity favours speed"]

    def test_high_complexity_rewards_reasoning(self):
        score, _ = score_model(
            make_analysis(complexity=Complexity.HIGH),
            make_descriptor(characteristics={Capability.REASONING}),
        )
        assert score == 3

    def test_task_type_rules(self):
        descriptor = make_descriptor(
            characteristics={
                Capability.CREATIVE_WRITING,
                Capability.CLASSIFICATION,
                Capability.ANALYSIS,
            }
        )
        for task_type in (
            TaskType.CREATIVE_WRITING,
            TaskType.CLASSIFICATION,
            TaskType.COMPLEX_ANALYSIS,
        ):
            score, _ = score_model(make_analysis(task_type=task_type), descriptor)
            assert score == 2

    def test_priority_rules(self):
        fast = make_descriptor(speed=SpeedTier.FAST)
        medium_cost = make_descriptor(cost=CostTier.MEDIUM)

        assert score_model(make_analysis(priority=Priority.SPEED), fast)[0] == 1
        assert score_model(make_analysis(priority=Priority.QUALITY), medium_cost)[0] == 1
        assert score_model(make_analysis(priority=Priority.BALANCE), fast)[0] == 0

    def test_no_match_scores_zero(self):
        score, reasons = score_model(make_analysis(), make_descriptor())
        assert score == 0
        assert reasons == []

    def test_rules_are_additive(self):
        analysis = make_analysis(
            task_type=TaskType.CLASSIFICATION,
            complexity=Complexity.LOW,
            priority=Priority.SPEED,
        )
        flash = DEFAULT_CATALOG[0]
        score, reasons = score_model(analysis, flash)
        assert score == 6
        assert len(reasons) == 3


class TestSelectModel:
    """Tests for picking the best catalog entry."""

    def test_short_prompt_picks_flash(self):
        selection = select_model(fallback_analysis("Write me a short poem"), DEFAULT_CATALOG)

        # flash and mistral tie at 3; catalog order wins
        assert selection.descriptor.id == "gemini-flash"
        assert selection.score == 3
        assert selection.confidence == pytest.approx(0.3)

    def test_long_analysis_picks_pro(self):
        selection = select_model(fallback_analysis("x" * 250), DEFAULT_CATALOG)

        assert selection.descriptor.id == "gemini-pro"
        assert selection.score == 5
        assert selection.confidence == pytest.approx(0.5)

    def test_creative_quality_picks_pro(self):
        analysis = make_analysis(task_type=TaskType.CREATIVE_WRITING, priority=Priority.QUALITY)
        selection = select_model(analysis, DEFAULT_CATALOG)
        assert selection.descriptor.id == "gemini-pro"
        assert selection.score == 3

    def test_no_criteria_match_returns_first_entry(self):
        selection = select_model(make_analysis(), DEFAULT_CATALOG)

        assert selection.descriptor.id == DEFAULT_CATALOG[0].id
        assert selection.score == 0
        assert selection.confidence == 0
        assert selection.reasons == ()

    def test_tie_break_follows_catalog_order(self):
        a = make_descriptor("a", {Capability.SPEED})
        b = make_descriptor("b", {Capability.SPEED})
        analysis = make_analysis(complexity=Complexity.LOW)

        assert select_model(analysis, [a, b]).descriptor.id == "a"
        assert select_model(analysis, [b, a]).descriptor.id == "b"

    def test_alternatives_exclude_winner(self):
        selection = select_model(make_analysis(), DEFAULT_CATALOG)
        ids = [d.id for d, _ in selection.alternatives]
        assert selection.descriptor.id not in ids
        assert len(ids) == len(DEFAULT_CATALOG) - 1

    def test_empty_catalog_raises(self):
        with pytest.raises(ConfigurationError):
            select_model(make_analysis(), [])

    def test_rank_is_descending(self):
        ranked = rank_models(fallback_analysis("x" * 250), DEFAULT_CATALOG)
        scores = [score for _, score, _ in ranked]
        assert scores == sorted(scores, reverse=True)


class TestMonotonicity:
    """Adding a matching characteristic never lowers a model's score."""

    @pytest.mark.parametrize("capability", list(Capability))
    def test_adding_characteristic_never_lowers_score(self, capability):
        base = make_descriptor(characteristics={Capability.ACCURACY})
        extended = replace(base, characteristics=base.characteristics | {capability})

        for task_type in TaskType:
            for complexity in Complexity:
                for priority in Priority:
                    analysis = make_analysis(task_type, complexity, priority)
                    assert score_model(analysis, extended)[0] >= score_model(analysis, base)[0]

    def test_rule_points_are_positive(self):
        assert all(rule.points > 0 for rule in SCORING_RULES)
