import base64
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterator, List, Optional

import anthropic
import openai

from adiva.services.model_catalog import (
    ANTHROPIC_FAMILY, OPENAI_FAMILY, family_for, uses_fixed_temperature
)
from adiva.utils.errors import (
    LLMError, LLMAPIKeyError, LLMContextLengthError, LLMQuotaError,
    LLMRateLimitError, LLMTimeoutError
)
from adiva.utils.logger import logger, log_function_call

FALLBACK_REPLY = "Sorry, I could not generate a response. Please try again."


@dataclass(frozen=True)
class ImageAttachment:
    """Image sent along with a user turn, encoded inline as base64."""
    mime_type: str
    data: bytes

    @property
    def base64_data(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64_data}"


@dataclass
class GenerationRequest:
    model: str
    messages: List[Dict[str, Any]]
    max_tokens: int
    temperature: Optional[float] = None
    system_prompt: Optional[str] = None


@dataclass
class GenerationResult:
    text: str
    usage: Dict[str, int] = field(default_factory=dict)


@dataclass
class StreamChunk:
    content: str
    usage: Optional[Dict[str, int]] = None
    done: bool = False


def _field(raw, name):
    if isinstance(raw, dict):
        return raw.get(name)
    return getattr(raw, name, None)


def _as_int(value) -> int:
    return int(value) if value is not None else 0


def normalize_usage(raw) -> Dict[str, int]:
    """
    Map provider usage onto total/prompt/completion token counts.

    Missing fields become 0. Claude reports input/output tokens and no total,
    so the total is their sum.
    """
    if raw is None:
        return {"total_tokens": 0, "prompt_tokens": 0, "completion_tokens": 0}

    input_tokens = _field(raw, "input_tokens")
    output_tokens = _field(raw, "output_tokens")
    if input_tokens is not None or output_tokens is not None:
        prompt = _as_int(input_tokens)
        completion = _as_int(output_tokens)
        total = _field(raw, "total_tokens")
        return {
            "total_tokens": _as_int(total) if total is not None else prompt + completion,
            "prompt_tokens": prompt,
            "completion_tokens": completion,
        }

    return {
        "total_tokens": _as_int(_field(raw, "total_tokens")),
        "prompt_tokens": _as_int(_field(raw, "prompt_tokens")),
        "completion_tokens": _as_int(_field(raw, "completion_tokens")),
    }


def _error_code(error) -> Optional[str]:
    code = getattr(error, "code", None)
    if code:
        return str(code)
    body = getattr(error, "body", None)
    if isinstance(body, dict):
        inner = body.get("error", body)
        if isinstance(inner, dict):
            return inner.get("code") or inner.get("type")
    return None


def map_provider_error(error: Exception) -> LLMError:
    """Translate an upstream SDK exception into a caller-visible LLMError."""
    if isinstance(error, (openai.APITimeoutError, anthropic.APITimeoutError)):
        return LLMTimeoutError(details=str(error))

    status = getattr(error, "status_code", None)
    code = _error_code(error)
    text = str(error).lower()

    if code == "insufficient_quota" or "credit balance" in text:
        return LLMQuotaError(details=str(error))
    if code in ("invalid_api_key", "authentication_error") or status == 401:
        return LLMAPIKeyError(details=str(error))
    if (code == "context_length_exceeded" or "maximum context length" in text
            or "prompt is too long" in text):
        return LLMContextLengthError(details=str(error))
    if code in ("rate_limit_exceeded", "rate_limit_error") or status == 429:
        return LLMRateLimitError(details=str(error))
    return LLMError(details=str(error))


class ChatProvider:
    """Strategy for one upstream provider family."""
    family = None

    def __init__(self, api_key=None, timeout=60.0, client=None):
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    @property
    def client(self):
        if self._client is None:
            if not self.api_key:
                logger.error(f"No API key configured for {self.family}")
                raise LLMAPIKeyError()
            self._client = self._build_client()
        return self._client

    def _build_client(self):
        raise NotImplementedError

    def generate(self, request: GenerationRequest) -> GenerationResult:
        raise NotImplementedError

    def stream(self, request: GenerationRequest) -> Iterator[StreamChunk]:
        raise NotImplementedError


class OpenAIChatProvider(ChatProvider):
    """Chat completions: the unified message list maps almost one to one."""
    family = OPENAI_FAMILY

    def _build_client(self):
        # Deadline on every call; errors surface immediately, no SDK retries
        return openai.OpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)

    @staticmethod
    def format_messages(messages):
        formatted = []
        for message in messages:
            image = message.get("image")
            if image is None:
                formatted.append({"role": message["role"], "content": message["content"]})
                continue
            formatted.append({
                "role": message["role"],
                "content": [
                    {"type": "text", "text": message["content"]},
                    {"type": "image_url", "image_url": {"url": image.data_url}},
                ],
            })
        return formatted

    def _params(self, request):
        params = {
            "model": request.model,
            "messages": self.format_messages(request.messages),
            "max_completion_tokens": request.max_tokens,
        }
        if request.temperature is not None:
            params["temperature"] = request.temperature
        return params

    def generate(self, request):
        response = self.client.chat.completions.create(**self._params(request))
        choices = getattr(response, "choices", None) or []
        text = choices[0].message.content if choices else None
        return GenerationResult(text=text or "", usage=normalize_usage(getattr(response, "usage", None)))

    def stream(self, request):
        params = self._params(request)
        params["stream"] = True
        params["stream_options"] = {"include_usage": True}

        usage = None
        for chunk in self.client.chat.completions.create(**params):
            choices = getattr(chunk, "choices", None) or []
            if choices:
                content = getattr(choices[0].delta, "content", None)
                if content:
                    yield StreamChunk(content=content)
            if getattr(chunk, "usage", None):
                usage = normalize_usage(chunk.usage)
        yield StreamChunk(content="", usage=usage or normalize_usage(None), done=True)


class ClaudeChatProvider(ChatProvider):
    """Anthropic messages API: system prompt out of band, content as blocks."""
    family = ANTHROPIC_FAMILY

    def _build_client(self):
        return anthropic.Anthropic(api_key=self.api_key, timeout=self.timeout, max_retries=0)

    @staticmethod
    def format_messages(messages):
        """Drop system turns, merge consecutive same-role turns, start on a user turn."""
        formatted = []
        for message in messages:
            if message["role"] == "system":
                continue
            blocks = [{"type": "text", "text": message["content"]}]
            image = message.get("image")
            if image is not None:
                blocks.append({
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": image.mime_type,
                        "data": image.base64_data,
                    },
                })
            if formatted and formatted[-1]["role"] == message["role"]:
                formatted[-1]["content"].extend(blocks)
            elif formatted or message["role"] == "user":
                formatted.append({"role": message["role"], "content": blocks})
        return formatted

    def generate(self, request):
        system_prompt = request.system_prompt or "\n\n".join(
            m["content"] for m in request.messages if m["role"] == "system"
        )
        params = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "messages": self.format_messages(request.messages),
        }
        if system_prompt:
            params["system"] = system_prompt
        if request.temperature is not None:
            params["temperature"] = request.temperature

        response = self.client.messages.create(**params)
        text = "".join(
            block.text for block in (getattr(response, "content", None) or [])
            if getattr(block, "type", None) == "text"
        )
        return GenerationResult(text=text, usage=normalize_usage(getattr(response, "usage", None)))

    def stream(self, request):
        # Generated in one call, then sent word by word
        result = self.generate(request)
        words = result.text.split(" ") if result.text else []
        for index, word in enumerate(words):
            yield StreamChunk(content=word + (" " if index < len(words) - 1 else ""))
        yield StreamChunk(content="", usage=result.usage, done=True)


class ProviderAdapter:
    """Picks the provider strategy for a model and normalizes what comes back."""

    def __init__(self, providers: Dict[str, ChatProvider]):
        self.providers = providers

    def provider_for(self, model: str) -> ChatProvider:
        family = family_for(model)
        provider = self.providers.get(family)
        if provider is None:
            raise LLMError(f"No provider configured for model '{model}'")
        return provider

    @staticmethod
    def _prepare(request):
        if request.temperature is not None and uses_fixed_temperature(request.model):
            logger.debug(f"Ignoring temperature for fixed-temperature model {request.model}")
            return replace(request, temperature=None)
        return request

    @log_function_call(logger)
    def generate(self, request: GenerationRequest) -> GenerationResult:
        """
        Run one non-streaming generation.

        Raises:
            LLMError subclasses; nothing is retried
        """
        provider = self.provider_for(request.model)
        try:
            result = provider.generate(self._prepare(request))
        except LLMError:
            raise
        except Exception as e:
            raise map_provider_error(e) from e

        if not result.text or not result.text.strip():
            logger.warning(f"Empty response from {request.model}, using fallback text")
            result.text = FALLBACK_REPLY
        result.usage = normalize_usage(result.usage)
        return result

    def stream(self, request: GenerationRequest) -> Iterator[StreamChunk]:
        provider = self.provider_for(request.model)
        produced = False
        try:
            for chunk in provider.stream(self._prepare(request)):
                if chunk.done:
                    if not produced:
                        yield StreamChunk(content=FALLBACK_REPLY)
                    yield StreamChunk(content="", usage=normalize_usage(chunk.usage), done=True)
                    return
                if chunk.content.strip():
                    produced = True
                yield chunk
        except LLMError:
            raise
        except Exception as e:
            raise map_provider_error(e) from e


def build_provider_adapter(app_config) -> ProviderAdapter:
    timeout = app_config["LLM_TIMEOUT_SECONDS"]
    return ProviderAdapter({
        OPENAI_FAMILY: OpenAIChatProvider(api_key=app_config.get("OPENAI_API_KEY"), timeout=timeout),
        ANTHROPIC_FAMILY: ClaudeChatProvider(api_key=app_config.get("ANTHROPIC_API_KEY"), timeout=timeout),
    })
