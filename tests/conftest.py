"""
Pytest configuration and shared fixtures.

Provides mock vendor clients, recording sleeps and pre-built pipeline
components for unit and integration tests of model_relay.
"""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from model_relay.config import VendorCredentials
from model_relay.models.vendor_client import AsyncVendorClient
from model_relay.pipeline.batch import BatchDispatcher
from model_relay.pipeline.classifier import TaskClassifier
from model_relay.pipeline.invoker import ResilientInvoker
from model_relay.pipeline.orchestrator import RelayService
from model_relay.session.manager import SessionManager

# ============================================================================
# Credentials
# ============================================================================


@pytest.fixture
def test_credentials() -> VendorCredentials:
    """Credentials with every vendor configured."""
    return VendorCredentials(
        GEMINI_API_KEY="test-gemini",
        STABILITY_API_KEY="test-stability",
        HUGGINGFACE_API_KEY="test-hf",
        ANTHROPIC_API_KEY="test-anthropic",
        MAILCHANNELS_API_KEY="",
    )


@pytest.fixture
def empty_credentials() -> VendorCredentials:
    """Credentials with nothing configured."""
    return VendorCredentials(
        GEMINI_API_KEY="",
        STABILITY_API_KEY="",
        HUGGINGFACE_API_KEY="",
        ANTHROPIC_API_KEY="",
        MAILCHANNELS_API_KEY="",
    )


# ============================================================================
# Mock Vendor Client Fixtures
# ============================================================================


@pytest.fixture
def classifier_json() -> str:
    """Well-formed classifier output for a creative task."""
    return json.dumps(
        {
            "task_type": "creative_writing",
            "complexity": "medium",
            "requirements": ["creativity"],
            "estimated_tokens": 400,
            "priority": "quality",
        }
    )


@pytest.fixture
def mock_vendor_client() -> MagicMock:
    """Vendor client double with every network method mocked."""
    client = MagicMock(spec=AsyncVendorClient)
    client.invoke = AsyncMock(return_value=[{"generated_text": "Mock output"}])
    client.gemini_generate = AsyncMock(return_value="Mock Gemini response")
    client.claude_message = AsyncMock(return_value="Mock Claude response")
    client.stability_text_to_image = AsyncMock(
        return_value={"image": "aW1hZ2U=", "seed": 42}
    )
    client.mailchannels_send = AsyncMock(return_value={})
    client.close = AsyncMock()
    client.configured_vendors = MagicMock(
        return_value={
            "gemini": True,
            "stability": True,
            "huggingface": True,
            "claude": True,
            "mailchannels": True,
        }
    )
    return client


@pytest.fixture
def failing_classifier_client(mock_vendor_client: MagicMock) -> MagicMock:
    """Vendor client whose Gemini call always fails, forcing the fallback."""
    mock_vendor_client.gemini_generate = AsyncMock(side_effect=RuntimeError("down"))
    return mock_vendor_client


# ============================================================================
# Timing Fixtures
# ============================================================================


@pytest.fixture
def recording_sleep() -> AsyncMock:
    """Sleep replacement that records requested durations and returns at once."""
    return AsyncMock(return_value=None)


@pytest.fixture
def midpoint_jitter():
    """Deterministic jitter picking the middle of each backoff window."""

    def jitter(low: float, high: float) -> float:
        return (low + high) / 2

    return jitter


# ============================================================================
# Component Fixtures
# ============================================================================


@pytest.fixture
def session_manager() -> SessionManager:
    """Create a session manager for testing."""
    return SessionManager(ttl_seconds=60)


@pytest.fixture
def invoker(mock_vendor_client, recording_sleep, midpoint_jitter) -> ResilientInvoker:
    return ResilientInvoker(
        client=mock_vendor_client,
        sleep=recording_sleep,
        jitter=midpoint_jitter,
        max_attempts=3,
    )


@pytest.fixture
def batch_dispatcher(invoker, recording_sleep) -> BatchDispatcher:
    return BatchDispatcher(invoker=invoker, sleep=recording_sleep, pause_seconds=2.5)


@pytest.fixture
def relay_service(
    mock_vendor_client, session_manager, invoker, batch_dispatcher
) -> RelayService:
    """Relay service wired to the mock vendor client."""
    return RelayService(
        client=mock_vendor_client,
        session_manager=session_manager,
        classifier=TaskClassifier(client=mock_vendor_client),
        invoker=invoker,
        batch_dispatcher=batch_dispatcher,
    )


@pytest.fixture
def response_factory():
    """Factory for mock httpx responses."""
    return _make_response


def _make_response(
    status_code: int = 200,
    data: Any = None,
    content: bytes | None = None,
    json_error: bool = False,
) -> MagicMock:
    """Build a mock httpx response."""
    response = MagicMock()
    response.status_code = status_code
    if json_error:
        response.json.side_effect = json.JSONDecodeError("Expecting value", "", 0)
        response.content = content if content is not None else b"not json"
    else:
        response.json.return_value = data
        response.content = content if content is not None else json.dumps(data).encode()
    return response
