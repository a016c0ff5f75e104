"""Tests for configuration loading and validation."""

import logging

import pytest

from conftest import KEY_A, KEY_B, KEY_C
from perplexity_cli import config as config_module
from perplexity_cli.config import (
    DEFAULT_MODEL,
    DEFAULT_TIMEOUT,
    Config,
    ConfigError,
    InvalidModelError,
    MissingAPIKeyError,
    get_api_keys_from_env,
    validate_model,
)


class TestKeysFromEnv:
    def test_comma_separated_list(self, monkeypatch):
        monkeypatch.setenv("PERPLEXITY_API_KEYS", f" {KEY_A} ,,{KEY_B}, ")
        assert get_api_keys_from_env() == [KEY_A, KEY_B]

    def test_list_wins_over_single_key(self, monkeypatch):
        monkeypatch.setenv("PERPLEXITY_API_KEYS", KEY_A)
        monkeypatch.setenv("PERPLEXITY_API_KEY", KEY_B)
        assert get_api_keys_from_env() == [KEY_A]

    def test_single_key_fallback(self, monkeypatch):
        monkeypatch.setenv("PERPLEXITY_API_KEYS", " , ")
        monkeypatch.setenv("PERPLEXITY_API_KEY", f"  {KEY_B}  ")
        assert get_api_keys_from_env() == [KEY_B]

    def test_nothing_set(self):
        assert get_api_keys_from_env() == []


class TestConfigValidate:
    def test_missing_key(self):
        with pytest.raises(MissingAPIKeyError, match="PERPLEXITY_API_KEYS"):
            Config.from_env()

    def test_explicit_key_overrides_env(self, monkeypatch):
        monkeypatch.setenv("PERPLEXITY_API_KEYS", f"{KEY_A},{KEY_B}")
        config = Config.from_env(api_key=KEY_C)
        assert config.keys.keys == [KEY_C]
        assert config.current_key == KEY_C

    def test_random_start_index(self, monkeypatch):
        monkeypatch.setenv("PERPLEXITY_API_KEYS", f"{KEY_A},{KEY_B},{KEY_C}")
        monkeypatch.setattr(config_module.random, "randrange", lambda n: 2)
        config = Config.from_env()
        assert config.keys.count == 3
        assert config.current_key == KEY_C

    def test_start_index_in_range(self, monkeypatch):
        monkeypatch.setenv("PERPLEXITY_API_KEYS", f"{KEY_A},{KEY_B}")
        for _ in range(20):
            assert Config.from_env().keys.index in (0, 1)

    def test_invalid_model(self, monkeypatch):
        monkeypatch.setenv("PERPLEXITY_API_KEY", KEY_A)
        with pytest.raises(InvalidModelError, match="gpt-4"):
            Config.from_env(model="gpt-4")

    def test_malformed_key(self):
        with pytest.raises(ConfigError, match="too short"):
            Config.from_env(api_key="pplx-short")

    def test_malformed_key_in_list_names_its_position(self, monkeypatch):
        monkeypatch.setenv("PERPLEXITY_API_KEYS", f"{KEY_A},bad key with spaces!")
        with pytest.raises(ConfigError, match="invalid API key 2"):
            Config.from_env()

    def test_key_without_prefix_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="perplexity_cli.config"):
            config = Config.from_env(api_key="sk-" + "x" * 30)
        assert config.current_key.startswith("sk-")
        assert "pplx-" in caplog.text

    def test_defaults(self, monkeypatch):
        monkeypatch.setenv("PERPLEXITY_API_KEY", KEY_A)
        config = Config.from_env()
        assert config.model == DEFAULT_MODEL
        assert config.timeout == DEFAULT_TIMEOUT
        assert config.rate_limit == 0


class TestEnvOverrides:
    def test_timeout_and_rate_limit(self, monkeypatch):
        monkeypatch.setenv("PERPLEXITY_API_KEY", KEY_A)
        monkeypatch.setenv("PERPLEXITY_TIMEOUT", "30")
        monkeypatch.setenv("PERPLEXITY_RATE_LIMIT", "12.5")
        config = Config.from_env()
        assert config.timeout == 30.0
        assert config.rate_limit == 12.5

    def test_explicit_values_win(self, monkeypatch):
        monkeypatch.setenv("PERPLEXITY_API_KEY", KEY_A)
        monkeypatch.setenv("PERPLEXITY_RATE_LIMIT", "12")
        assert Config.from_env(rate_limit=3).rate_limit == 3

    def test_explicit_default_values_win(self, monkeypatch):
        monkeypatch.setenv("PERPLEXITY_API_KEY", KEY_A)
        monkeypatch.setenv("PERPLEXITY_TIMEOUT", "30")
        monkeypatch.setenv("PERPLEXITY_RATE_LIMIT", "12")
        config = Config.from_env(timeout=DEFAULT_TIMEOUT, rate_limit=0)
        assert config.timeout == DEFAULT_TIMEOUT
        assert config.rate_limit == 0

    def test_env_applies_without_validation(self, monkeypatch):
        monkeypatch.setenv("PERPLEXITY_TIMEOUT", "45")
        monkeypatch.setenv("PERPLEXITY_RATE_LIMIT", "6")
        config = Config.from_keys([KEY_A])
        assert config.timeout == 45.0
        assert config.rate_limit == 6.0

    def test_non_positive_timeout_is_ignored(self, monkeypatch):
        monkeypatch.setenv("PERPLEXITY_API_KEY", KEY_A)
        monkeypatch.setenv("PERPLEXITY_TIMEOUT", "0")
        assert Config.from_env().timeout == DEFAULT_TIMEOUT

    def test_bad_values_are_ignored(self, monkeypatch, caplog):
        monkeypatch.setenv("PERPLEXITY_API_KEY", KEY_A)
        monkeypatch.setenv("PERPLEXITY_TIMEOUT", "soon")
        monkeypatch.setenv("PERPLEXITY_RATE_LIMIT", "fast")
        with caplog.at_level(logging.WARNING, logger="perplexity_cli.config"):
            config = Config.from_env()
        assert config.timeout == DEFAULT_TIMEOUT
        assert config.rate_limit == 0
        assert "PERPLEXITY_TIMEOUT" in caplog.text


class TestModels:
    def test_validate_model(self):
        assert validate_model("sonar")
        assert validate_model("sonar-deep-research")
        assert not validate_model("Sonar")
        assert not validate_model("")
