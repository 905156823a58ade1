"""Tests for merging request options with admin and user settings."""

from types import SimpleNamespace

from adiva.services.policy import resolve_effective_settings, resolve_model
from adiva.services.settings_service import DEFAULT_SETTINGS, PolicySettings


def _policy(**overrides):
    data = dict(DEFAULT_SETTINGS)
    data.update(overrides)
    return PolicySettings.from_dict(data)


def _user_settings(**overrides):
    values = {
        "default_model": None,
        "default_temperature": 0.7,
        "default_max_tokens": 2000,
        "custom_system_prompt": None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class TestModelResolution:
    def test_allowed_request_is_kept(self):
        assert resolve_model(_policy(), "claude-sonnet-4-20250514") == "claude-sonnet-4-20250514"

    def test_disallowed_request_falls_back_to_default(self):
        assert resolve_model(_policy(), "gpt-4o") == "gpt-5-nano"

    def test_disallowed_request_without_default_uses_first_allowed(self):
        policy = _policy(defaultModel="", allowedModels=["claude-sonnet-4-20250514", "gpt-5-nano"])
        assert resolve_model(policy, "gpt-4o") == "claude-sonnet-4-20250514"

    def test_empty_allowed_list_allows_anything(self):
        assert resolve_model(_policy(allowedModels=[]), "gpt-4o") == "gpt-4o"

    def test_no_request_uses_policy_default(self):
        assert resolve_effective_settings(_policy()).model == "gpt-5-nano"

    def test_user_default_model_applies_when_not_requested(self):
        settings = resolve_effective_settings(
            _policy(), user_settings=_user_settings(default_model="claude-sonnet-4-20250514")
        )
        assert settings.model == "claude-sonnet-4-20250514"


class TestSystemPrompt:
    def test_template_and_caller_prompt_are_joined(self):
        settings = resolve_effective_settings(
            _policy(systemPromptTemplate="Be brief."), requested_system_prompt="Answer in French."
        )
        assert settings.system_prompt == "Be brief.\n\nAnswer in French."

    def test_template_only(self):
        settings = resolve_effective_settings(_policy(systemPromptTemplate="Be brief."))
        assert settings.system_prompt == "Be brief."

    def test_custom_prompt_used_when_request_has_none(self):
        settings = resolve_effective_settings(
            _policy(), user_settings=_user_settings(custom_system_prompt="You are a tutor.")
        )
        assert settings.system_prompt == "You are a tutor."

    def test_request_prompt_wins_over_custom_prompt(self):
        settings = resolve_effective_settings(
            _policy(),
            requested_system_prompt="Request prompt",
            user_settings=_user_settings(custom_system_prompt="Custom prompt"),
        )
        assert settings.system_prompt == "Request prompt"


class TestTokensAndTemperature:
    def test_guest_gets_policy_max_tokens_and_fixed_temperature(self):
        settings = resolve_effective_settings(_policy(maxTokens=1500))
        assert settings.max_tokens == 1500
        assert settings.temperature == 1.0

    def test_guest_without_policy_max_uses_default(self):
        assert resolve_effective_settings(_policy(maxTokens=None)).max_tokens == 2000

    def test_user_max_tokens_capped_by_policy(self):
        settings = resolve_effective_settings(
            _policy(maxTokens=1000), user_settings=_user_settings(default_max_tokens=3000)
        )
        assert settings.max_tokens == 1000

    def test_user_max_tokens_below_policy_is_kept(self):
        settings = resolve_effective_settings(
            _policy(maxTokens=4000), user_settings=_user_settings(default_max_tokens=500)
        )
        assert settings.max_tokens == 500

    def test_user_temperature_is_used(self):
        settings = resolve_effective_settings(
            _policy(), user_settings=_user_settings(default_temperature=0.2)
        )
        assert settings.temperature == 0.2

    def test_requested_max_tokens_only_lowers(self):
        policy = _policy(maxTokens=1000)
        assert resolve_effective_settings(policy, requested_max_tokens=300).max_tokens == 300
        assert resolve_effective_settings(policy, requested_max_tokens=5000).max_tokens == 1000
        assert resolve_effective_settings(policy, requested_max_tokens=0).max_tokens == 1000
