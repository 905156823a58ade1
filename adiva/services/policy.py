"""Precedence rules that turn request options plus settings into call parameters."""

from dataclasses import dataclass
from typing import Optional

DEFAULT_MAX_TOKENS = 2000
GUEST_TEMPERATURE = 1.0


@dataclass(frozen=True)
class EffectiveSettings:
    model: str
    system_prompt: str
    max_tokens: int
    temperature: float


def resolve_model(policy, candidate: Optional[str]) -> Optional[str]:
    allowed = policy.allowed_models
    if allowed and candidate not in allowed:
        return policy.default_model or allowed[0] or candidate
    return candidate


def resolve_effective_settings(
    policy,
    requested_model: Optional[str] = None,
    requested_system_prompt: Optional[str] = None,
    requested_max_tokens: Optional[int] = None,
    user_settings=None,
) -> EffectiveSettings:
    """
    Merge request options with admin policy and, for signed-in users, their defaults.

    Args:
        policy: PolicySettings for this request
        requested_model: Model id sent by the client
        requested_system_prompt: Client-supplied system prompt
        requested_max_tokens: Optional client cap; can only lower the result
        user_settings: UserSettings of an authenticated user, None for guests

    Returns:
        EffectiveSettings
    """
    user_model = user_settings.default_model if user_settings is not None else None
    model = resolve_model(policy, requested_model or user_model or policy.default_model)

    caller_prompt = requested_system_prompt
    if not caller_prompt and user_settings is not None:
        caller_prompt = user_settings.custom_system_prompt
    system_prompt = "\n\n".join(
        part for part in (policy.system_prompt_template, caller_prompt) if part
    )

    if user_settings is None:
        max_tokens = policy.max_tokens or DEFAULT_MAX_TOKENS
        temperature = GUEST_TEMPERATURE
    else:
        user_max = user_settings.default_max_tokens or DEFAULT_MAX_TOKENS
        max_tokens = min(user_max, policy.max_tokens or user_max)
        temperature = user_settings.default_temperature

    if requested_max_tokens and requested_max_tokens > 0:
        max_tokens = min(max_tokens, requested_max_tokens)

    return EffectiveSettings(
        model=model,
        system_prompt=system_prompt,
        max_tokens=max_tokens,
        temperature=temperature,
    )
