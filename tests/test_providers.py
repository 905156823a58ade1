"""Tests for provider strategies, usage normalization and error mapping."""

from types import SimpleNamespace

import httpx
import openai
import pytest

from adiva.services.model_catalog import ANTHROPIC_FAMILY, OPENAI_FAMILY
from adiva.services.providers import (
    FALLBACK_REPLY, ClaudeChatProvider, GenerationRequest, ImageAttachment,
    OpenAIChatProvider, ProviderAdapter, map_provider_error, normalize_usage
)
from adiva.utils.errors import (
    LLMAPIKeyError, LLMContextLengthError, LLMError, LLMQuotaError,
    LLMRateLimitError, LLMTimeoutError
)

from conftest import FakeAPIError


def _request(model="gpt-4o-mini", temperature=0.7, messages=None, system_prompt=None):
    return GenerationRequest(
        model=model,
        messages=messages or [{"role": "user", "content": "hi"}],
        max_tokens=100,
        temperature=temperature,
        system_prompt=system_prompt,
    )


class TestNormalizeUsage:
    def test_openai_shape(self):
        usage = normalize_usage(SimpleNamespace(prompt_tokens=12, completion_tokens=8, total_tokens=20))
        assert usage == {"total_tokens": 20, "prompt_tokens": 12, "completion_tokens": 8}

    def test_claude_shape_sums_total(self):
        usage = normalize_usage({"input_tokens": 10, "output_tokens": 5})
        assert usage == {"total_tokens": 15, "prompt_tokens": 10, "completion_tokens": 5}

    def test_missing_usage_is_all_zero(self):
        assert normalize_usage(None) == {"total_tokens": 0, "prompt_tokens": 0, "completion_tokens": 0}

    def test_missing_fields_become_zero(self):
        usage = normalize_usage({"prompt_tokens": 4})
        assert usage == {"total_tokens": 0, "prompt_tokens": 4, "completion_tokens": 0}

    def test_values_are_integers(self):
        usage = normalize_usage({"input_tokens": "3", "output_tokens": 2.0})
        assert usage == {"total_tokens": 5, "prompt_tokens": 3, "completion_tokens": 2}


class TestMapProviderError:
    @pytest.mark.parametrize("error, expected", [
        (FakeAPIError("quota", status_code=429, code="insufficient_quota"), LLMQuotaError),
        (FakeAPIError("Your credit balance is too low", status_code=400), LLMQuotaError),
        (FakeAPIError("bad key", status_code=401, code="invalid_api_key"), LLMAPIKeyError),
        (FakeAPIError("denied", status_code=401), LLMAPIKeyError),
        (FakeAPIError("x", body={"error": {"type": "authentication_error"}}), LLMAPIKeyError),
        (FakeAPIError("too long", status_code=400, code="context_length_exceeded"), LLMContextLengthError),
        (FakeAPIError("prompt is too long: 300000 tokens", status_code=400), LLMContextLengthError),
        (FakeAPIError("slow down", status_code=429), LLMRateLimitError),
        (FakeAPIError("x", body={"error": {"type": "rate_limit_error"}}), LLMRateLimitError),
        (RuntimeError("boom"), LLMError),
    ])
    def test_mapping(self, error, expected):
        assert type(map_provider_error(error)) is expected

    def test_sdk_timeout(self):
        error = openai.APITimeoutError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))
        mapped = map_provider_error(error)
        assert isinstance(mapped, LLMTimeoutError)
        assert mapped.status_code == 504

    def test_quota_wins_over_rate_limit_status(self):
        error = FakeAPIError("quota", status_code=429, code="insufficient_quota")
        assert map_provider_error(error).error_code == "INSUFFICIENT_QUOTA"


class TestOpenAIChatProvider:
    def test_fixed_temperature_model_omits_temperature(self, adapter, openai_client):
        adapter.generate(_request(model="gpt-5-nano", temperature=0.3))
        params = openai_client.completions.calls[-1]
        assert "temperature" not in params
        assert params["max_completion_tokens"] == 100

    def test_other_models_send_temperature(self, adapter, openai_client):
        adapter.generate(_request(model="gpt-4o-mini", temperature=0.3))
        assert openai_client.completions.calls[-1]["temperature"] == 0.3

    def test_unknown_model_uses_openai(self, adapter, openai_client):
        result = adapter.generate(_request(model="some-new-model"))
        assert result.text == "Hello from OpenAI"
        assert openai_client.completions.calls[-1]["model"] == "some-new-model"

    def test_image_becomes_data_url_part(self, adapter, openai_client):
        image = ImageAttachment(mime_type="image/png", data=b"\x89PNG")
        adapter.generate(_request(messages=[{"role": "user", "content": "what?", "image": image}]))
        content = openai_client.completions.calls[-1]["messages"][0]["content"]
        assert content[0] == {"type": "text", "text": "what?"}
        assert content[1]["image_url"]["url"] == "data:image/png;base64,iVBORw=="

    def test_result_usage_is_normalized(self, adapter):
        result = adapter.generate(_request())
        assert result.usage == {"total_tokens": 20, "prompt_tokens": 12, "completion_tokens": 8}

    def test_blank_reply_gets_fallback_text(self, adapter, openai_client):
        openai_client.completions.reply = "   "
        assert adapter.generate(_request()).text == FALLBACK_REPLY

    def test_sdk_errors_are_mapped(self, adapter, openai_client):
        openai_client.completions.error = FakeAPIError("quota", status_code=429, code="insufficient_quota")
        with pytest.raises(LLMQuotaError):
            adapter.generate(_request())
        assert len(openai_client.completions.calls) == 1

    def test_stream_yields_pieces_then_usage(self, adapter):
        chunks = list(adapter.stream(_request()))
        assert [c.content for c in chunks[:-1]] == ["Hel", "lo ", "there"]
        assert chunks[-1].done
        assert chunks[-1].usage["total_tokens"] == 20

    def test_empty_stream_gets_fallback_text(self, adapter, openai_client):
        openai_client.completions.stream_pieces = []
        chunks = list(adapter.stream(_request()))
        assert chunks[0].content == FALLBACK_REPLY
        assert chunks[-1].done

    def test_missing_api_key(self):
        adapter = ProviderAdapter({OPENAI_FAMILY: OpenAIChatProvider(api_key=None)})
        with pytest.raises(LLMAPIKeyError):
            adapter.generate(_request())


class TestClaudeChatProvider:
    def test_system_prompt_sent_out_of_band(self, adapter, anthropic_client):
        messages = [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "hi"},
        ]
        adapter.generate(_request(model="claude-sonnet-4-20250514", messages=messages, system_prompt="Be brief."))
        params = anthropic_client.messages.calls[-1]
        assert params["system"] == "Be brief."
        assert all(m["role"] != "system" for m in params["messages"])
        assert params["max_tokens"] == 100

    def test_usage_total_is_summed(self, adapter):
        result = adapter.generate(_request(model="claude-sonnet-4-20250514"))
        assert result.text == "Hello from Claude"
        assert result.usage == {"total_tokens": 15, "prompt_tokens": 10, "completion_tokens": 5}

    def test_format_merges_same_role_and_starts_with_user(self):
        formatted = ClaudeChatProvider.format_messages([
            {"role": "assistant", "content": "orphan"},
            {"role": "user", "content": "a"},
            {"role": "user", "content": "b"},
            {"role": "assistant", "content": "c"},
        ])
        assert [m["role"] for m in formatted] == ["user", "assistant"]
        assert [block["text"] for block in formatted[0]["content"]] == ["a", "b"]

    def test_image_becomes_base64_block(self):
        image = ImageAttachment(mime_type="image/jpeg", data=b"jpg")
        formatted = ClaudeChatProvider.format_messages([{"role": "user", "content": "look", "image": image}])
        block = formatted[0]["content"][1]
        assert block["type"] == "image"
        assert block["source"] == {"type": "base64", "media_type": "image/jpeg", "data": "anBn"}

    def test_stream_is_word_by_word(self, adapter, anthropic_client):
        anthropic_client.messages.reply = "one two three"
        chunks = list(adapter.stream(_request(model="claude-sonnet-4-20250514")))
        assert "".join(c.content for c in chunks) == "one two three"
        assert len(chunks) == 4
        assert chunks[-1].usage["total_tokens"] == 15

    def test_errors_are_mapped(self, adapter, anthropic_client):
        anthropic_client.messages.error = FakeAPIError(
            "overloaded", status_code=429, body={"error": {"type": "rate_limit_error"}}
        )
        with pytest.raises(LLMRateLimitError):
            adapter.generate(_request(model="claude-sonnet-4-20250514"))

    def test_family_without_provider(self):
        adapter = ProviderAdapter({OPENAI_FAMILY: OpenAIChatProvider(client=object())})
        with pytest.raises(LLMError):
            adapter.provider_for("claude-sonnet-4-20250514")
        assert ANTHROPIC_FAMILY not in adapter.providers
