"""Tests for configuration loading."""

import pytest
from pydantic import ValidationError

from src.concierge.config import ConciergeSettings, OrchestrationConfig, get_settings


@pytest.fixture
def concierge_env(monkeypatch):
    """Set the required CONCIERGE_ variables."""
    monkeypatch.setenv("CONCIERGE_GITHUB_TOKEN", "ghp_test")
    monkeypatch.setenv("CONCIERGE_BOT_USERNAME", "support-concierge[bot]")
    monkeypatch.setenv("CONCIERGE_LLM_URL", "http://llm:8000/v1")


class TestConciergeSettings:
    def test_defaults(self, concierge_env):
        settings = get_settings()

        assert settings.github_base_url == "https://api.github.com"
        assert settings.max_user_loops == 3
        assert settings.compression_threshold_bytes == 2000
        assert settings.write_mode is True
        assert settings.spec_pack_path is None

    def test_overrides_from_env(self, concierge_env, monkeypatch):
        monkeypatch.setenv("CONCIERGE_MAX_USER_LOOPS", "5")
        monkeypatch.setenv("CONCIERGE_WRITE_MODE", "false")
        monkeypatch.setenv("CONCIERGE_RESPONSE_THRESHOLD", "8.5")

        settings = get_settings()

        assert settings.max_user_loops == 5
        assert settings.write_mode is False
        assert settings.response_threshold == 8.5

    def test_missing_required_fields(self, monkeypatch):
        monkeypatch.delenv("CONCIERGE_GITHUB_TOKEN", raising=False)
        monkeypatch.delenv("CONCIERGE_BOT_USERNAME", raising=False)
        monkeypatch.delenv("CONCIERGE_LLM_URL", raising=False)
        with pytest.raises(ValidationError):
            ConciergeSettings()

    @pytest.mark.parametrize(
        "name,value",
        [
            ("CONCIERGE_LLM_URL", "llm:8000"),
            ("CONCIERGE_BOT_USERNAME", "   "),
            ("CONCIERGE_TRIAGE_THRESHOLD", "11"),
            ("CONCIERGE_OFF_TOPIC_CONFIDENCE_THRESHOLD", "1.5"),
            ("CONCIERGE_MAX_USER_LOOPS", "0"),
            ("CONCIERGE_STAGE_TIMEOUT_SECONDS", "0"),
            ("CONCIERGE_PORT", "70000"),
        ],
    )
    def test_invalid_values_are_rejected(self, concierge_env, monkeypatch, name, value):
        monkeypatch.setenv(name, value)
        with pytest.raises(ValidationError):
            get_settings()

    def test_to_orchestration_config(self, concierge_env, monkeypatch):
        monkeypatch.setenv("CONCIERGE_OFF_TOPIC_STRIKE_LIMIT", "4")
        config = get_settings().to_orchestration_config()

        assert isinstance(config, OrchestrationConfig)
        assert config.bot_username == "support-concierge[bot]"
        assert config.off_topic_strike_limit == 4


class TestOrchestrationConfig:
    def test_is_frozen(self):
        config = OrchestrationConfig()
        with pytest.raises(ValidationError):
            config.max_user_loops = 10

    @pytest.mark.parametrize(
        "username,expected",
        [
            ("support-concierge[bot]", True),
            ("Support-Concierge[bot] ", True),
            ("alice", False),
            ("", False),
            (None, False),
        ],
    )
    def test_is_bot(self, username, expected):
        assert OrchestrationConfig().is_bot(username) is expected

    def test_rejects_zero_loop_bound(self):
        with pytest.raises(ValidationError):
            OrchestrationConfig(max_user_loops=0)
