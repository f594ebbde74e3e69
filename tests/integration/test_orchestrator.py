"""Integration tests for RelayService with a mocked vendor client."""

import json
from unittest.mock import AsyncMock

import pytest

from model_relay.errors import (
    ConfigurationError,
    ModelLoadingError,
    UnauthorizedError,
    UnknownVendorError,
    VendorRequestError,
)
from model_relay.models.catalog import DEFAULT_CATALOG
from model_relay.pipeline.classifier import Priority
from model_relay.pipeline.orchestrator import ANALYSIS_PROMPTS, estimated_performance


class TestRecommendModel:
    """Tests for model recommendation."""

    @pytest.mark.asyncio
    async def test_fallback_recommendation_for_short_prompt(
        self, relay_service, failing_classifier_client
    ):
        result = await relay_service.recommend_model("Write me a short poem")

        assert result["recommended_model"] == "gemini-flash"
        assert result["confidence"] == pytest.approx(0.3)
        assert result["task_analysis"]["source"] == "fallback"
        assert result["task_analysis"]["estimated_tokens"] == 6
        assert len(result["alternative_options"]) == len(DEFAULT_CATALOG) - 1
        assert result["estimated_performance"]["speed"] == 0.9

    @pytest.mark.asyncio
    async def test_uses_remote_classification(self, relay_service, mock_vendor_client, classifier_json):
        mock_vendor_client.gemini_generate = AsyncMock(return_value=classifier_json)

        result = await relay_service.recommend_model("Write a sonnet about autumn")

        # creative_writing + quality priority favours the medium-cost reasoning model
        assert result["recommended_model"] == "gemini-pro"
        assert result["score"] == 3
        assert "creative writing task" in result["reasoning"]

    @pytest.mark.asyncio
    async def test_priority_override(self, relay_service, failing_classifier_client):
        result = await relay_service.recommend_model(
            "Write me a short poem", priority=Priority.SPEED
        )

        assert result["task_analysis"]["priority"] == "speed"
        assert result["score"] == 4

    @pytest.mark.asyncio
    async def test_records_session_history(self, relay_service, session_manager, failing_classifier_client):
        session, _ = await session_manager.get_or_create(None)

        await relay_service.recommend_model("Quick question", session=session)

        assert session.history[0].tool == "select_model"
        assert session.history[0].arguments["task_description"] == "Quick question"

    @pytest.mark.asyncio
    async def test_empty_catalog_raises(self, relay_service, failing_classifier_client):
        relay_service.catalog = ()
        with pytest.raises(ConfigurationError):
            await relay_service.recommend_model("anything")

    def test_estimated_performance_from_tiers(self):
        flash, pro = DEFAULT_CATALOG[0], DEFAULT_CATALOG[1]
        assert estimated_performance(flash)["speed"] > estimated_performance(pro)["speed"]
        assert estimated_performance(pro)["quality"] > estimated_performance(flash)["quality"]
        assert estimated_performance(flash)["cost"] > estimated_performance(pro)["cost"]


class TestCompare:
    """Tests for the side-by-side Gemini comparison."""

    @pytest.mark.asyncio
    async def test_both_models_answer(self, relay_service, mock_vendor_client):
        mock_vendor_client.gemini_generate = AsyncMock(side_effect=["fast answer", "deep answer"])

        result = await relay_service.compare("Explain recursion")

        assert result["responses"]["gemini_flash"]["response"] == "fast answer"
        assert result["responses"]["gemini_pro"]["response"] == "deep answer"
        assert mock_vendor_client.gemini_generate.await_count == 2

    @pytest.mark.asyncio
    async def test_one_failure_is_reported_per_model(self, relay_service, mock_vendor_client):
        mock_vendor_client.gemini_generate = AsyncMock(
            side_effect=["fast answer", VendorRequestError("quota")]
        )

        result = await relay_service.compare("Explain recursion")

        assert result["responses"]["gemini_flash"]["error"] is None
        assert result["responses"]["gemini_pro"]["response"] is None
        assert result["responses"]["gemini_pro"]["error"] == "quota"

    @pytest.mark.asyncio
    async def test_missing_credentials_raise(self, relay_service, mock_vendor_client):
        mock_vendor_client.gemini_generate = AsyncMock(side_effect=ConfigurationError("no key"))
        with pytest.raises(ConfigurationError):
            await relay_service.compare("Explain recursion")


class TestAnalyzeAndImage:
    """Tests for text analysis and image generation."""

    @pytest.mark.asyncio
    async def test_analyze_uses_template(self, relay_service, mock_vendor_client):
        mock_vendor_client.gemini_generate = AsyncMock(return_value="Positive tone")

        result = await relay_service.analyze_text("I love it", "sentiment")

        prompt = mock_vendor_client.gemini_generate.call_args.args[0]
        assert prompt == ANALYSIS_PROMPTS["sentiment"].format(text="I love it")
        assert result["analysis"] == "Positive tone"
        assert result["metadata"]["text_length"] == 9

    @pytest.mark.asyncio
    async def test_analyze_unknown_type_uses_default_prompt(self, relay_service, mock_vendor_client):
        await relay_service.analyze_text("Some text", "astrological")
        prompt = mock_vendor_client.gemini_generate.call_args.args[0]
        assert prompt == "Analyze this text:\n\nSome text"

    @pytest.mark.asyncio
    async def test_generate_image(self, relay_service, mock_vendor_client):
        result = await relay_service.generate_image("a lighthouse", "cinematic")

        assert result["image_data"] == "data:image/png;base64,aW1hZ2U="
        assert result["seed"] == 42
        mock_vendor_client.stability_text_to_image.assert_awaited_once_with(
            "a lighthouse", style="cinematic"
        )

    @pytest.mark.asyncio
    async def test_vendor_errors_propagate(self, relay_service, mock_vendor_client):
        mock_vendor_client.stability_text_to_image = AsyncMock(side_effect=UnauthorizedError())
        with pytest.raises(UnauthorizedError):
            await relay_service.generate_image("a lighthouse")


class TestRouteAndGenerate:
    """Tests for routing a prompt to its best model."""

    @pytest.mark.asyncio
    async def test_routes_to_gemini(self, relay_service, mock_vendor_client):
        mock_vendor_client.gemini_generate = AsyncMock(
            side_effect=[RuntimeError("classifier down"), "Generated text"]
        )

        result = await relay_service.route_and_generate("Write me a short poem")

        assert result["model"] == "gemini-flash"
        assert result["response"] == "Generated text"
        assert mock_vendor_client.gemini_generate.call_args.kwargs["model"] == DEFAULT_CATALOG[0].upstream_model

    @pytest.mark.asyncio
    async def test_routes_to_claude(self, relay_service, mock_vendor_client):
        claude = DEFAULT_CATALOG[2]
        relay_service.catalog = (claude,)
        mock_vendor_client.gemini_generate = AsyncMock(side_effect=RuntimeError("down"))

        result = await relay_service.route_and_generate("Hello")

        assert result["response"] == "Mock Claude response"
        mock_vendor_client.claude_message.assert_awaited_once_with("Hello", model=claude.upstream_model)

    @pytest.mark.asyncio
    async def test_routes_to_huggingface_via_invoker(self, relay_service, mock_vendor_client):
        relay_service.catalog = (DEFAULT_CATALOG[3],)
        mock_vendor_client.gemini_generate = AsyncMock(side_effect=RuntimeError("down"))

        result = await relay_service.route_and_generate("Hello")

        assert result["response"] == "Mock output"
        assert mock_vendor_client.invoke.await_count == 1

    @pytest.mark.asyncio
    async def test_huggingface_failure_raises_vendor_error(self, relay_service, mock_vendor_client):
        relay_service.catalog = (DEFAULT_CATALOG[3],)
        mock_vendor_client.gemini_generate = AsyncMock(side_effect=RuntimeError("down"))
        mock_vendor_client.invoke = AsyncMock(side_effect=VendorRequestError("bad input"))

        with pytest.raises(UnknownVendorError, match="bad input"):
            await relay_service.route_and_generate("Hello")


class TestInference:
    """Tests for single and batch inference reports."""

    @pytest.mark.asyncio
    async def test_run_inference_reports_attempts(self, relay_service, mock_vendor_client):
        mock_vendor_client.invoke = AsyncMock(
            side_effect=[ModelLoadingError(), [{"generated_text": "ready"}]]
        )

        report = await relay_service.run_inference("gpt2", "Hello")

        assert report["success"] is True
        assert report["response"] == "ready"
        assert report["attempts"] == 2
        assert report["attempt_log"][0]["outcome"] == "transient"
        assert report["attempt_log"][0]["wait_before_retry_ms"] == 12500

    @pytest.mark.asyncio
    async def test_run_batch(self, relay_service, mock_vendor_client):
        report = await relay_service.run_batch(["a", "b", "c", "d"], "Hello", "text-generation")

        assert report["total"] == 4
        assert report["success_count"] == 4
        assert report["task"] == "text-generation"

    @pytest.mark.asyncio
    async def test_send_email(self, relay_service, mock_vendor_client):
        result = await relay_service.send_email("a@example.com", "b@example.com", "Hi", "Body")
        assert result["sent"] is True
        mock_vendor_client.mailchannels_send.assert_awaited_once()


class TestFeedbackAndHealth:
    """Tests for preference learning and health reporting."""

    @pytest.mark.asyncio
    async def test_record_feedback(self, relay_service, session_manager):
        session, _ = await session_manager.get_or_create(None)

        first = relay_service.record_feedback(session, {"model": "gemini-pro"}, "positive", 2.0)
        relay_service.record_feedback(session, {}, "positive")

        assert first["learning_applied"] is True
        assert first["weight_applied"] == 2.0
        assert session.preferences["feedback_counts"] == {"positive": 2}
        assert session.learning_confidence == pytest.approx(0.2)
        assert json.dumps(session.preferences)

    @pytest.mark.asyncio
    async def test_health_check(self, relay_service):
        health = await relay_service.health_check()

        assert health["healthy"] is True
        assert "gemini" in health["vendors"]
        assert health["sessions"]["active_sessions"] == 0

    @pytest.mark.asyncio
    async def test_unhealthy_without_credentials(self, relay_service, mock_vendor_client):
        mock_vendor_client.configured_vendors.return_value = {
            "gemini": False,
            "stability": False,
            "huggingface": False,
            "claude": False,
            "mailchannels": True,
        }
        health = await relay_service.health_check()
        assert health["healthy"] is False

    @pytest.mark.asyncio
    async def test_close(self, relay_service, mock_vendor_client):
        await relay_service.close()
        mock_vendor_client.close.assert_awaited_once()
