"""Tests for configuration module."""

import os
from unittest import mock

import pytest

from model_relay.config import (
    CREDENTIALS,
    DISPATCH,
    MODELS,
    SESSIONS,
    _env_float,
    _env_int,
    get_all_config,
)


class TestEnvHelpers:
    """Tests for environment parsing helpers."""

    def test_env_int_enforces_minimum(self):
        with mock.patch.dict(os.environ, {"TEST_RELAY_INT": "0"}):
            assert _env_int("TEST_RELAY_INT", 3, min_val=1) == 1

    def test_env_int_invalid_falls_back_to_default(self):
        with mock.patch.dict(os.environ, {"TEST_RELAY_INT": "many"}):
            assert _env_int("TEST_RELAY_INT", 3) == 3

    def test_env_float_clamps_both_ends(self):
        with mock.patch.dict(os.environ, {"TEST_RELAY_FLOAT": "10"}):
            assert _env_float("TEST_RELAY_FLOAT", 2.5, min_val=2.0, max_val=3.0) == 3.0
        with mock.patch.dict(os.environ, {"TEST_RELAY_FLOAT": "0.1"}):
            assert _env_float("TEST_RELAY_FLOAT", 2.5, min_val=2.0, max_val=3.0) == 2.0

    def test_env_float_default(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            assert _env_float("TEST_RELAY_FLOAT", 2.5) == 2.5


class TestDispatchConfig:
    """Tests for DispatchConfig configuration."""

    def test_default_values(self):
        assert DISPATCH.MAX_ATTEMPTS >= 1
        assert DISPATCH.INFERENCE_TIMEOUT >= 10.0
        assert DISPATCH.CLASSIFIER_TIMEOUT >= 5.0
        assert DISPATCH.IMAGE_TIMEOUT >= 30.0

    def test_batch_pause_within_bounds(self):
        assert 2.0 <= DISPATCH.BATCH_PAUSE_SECONDS <= 3.0

    def test_immutability(self):
        with pytest.raises(AttributeError):
            DISPATCH.MAX_ATTEMPTS = 100  # type: ignore


class TestModelConfig:
    """Tests for ModelConfig configuration."""

    def test_default_values(self):
        assert MODELS.CLASSIFIER_MODEL
        assert MODELS.GEMINI_FLASH_MODEL
        assert MODELS.GEMINI_PRO_MODEL
        assert MODELS.STABILITY_ENGINE


class TestSessionLimits:
    def test_default_values(self):
        assert SESSIONS.TTL_SECONDS >= 60
        assert SESSIONS.DEFAULT_LOOKBACK >= 1


class TestGetAllConfig:
    """Tests for the debug config dump."""

    def test_secrets_are_redacted(self):
        config = get_all_config()
        credentials = config["credentials"]
        for name, value in credentials.items():
            assert value in ("", "***")
            if getattr(CREDENTIALS, name):
                assert value == "***"

    def test_contains_all_groups(self):
        assert set(get_all_config()) == {
            "credentials",
            "endpoints",
            "models",
            "dispatch",
            "sessions",
            "server",
        }
