from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

OPENAI_FAMILY = "openai"
ANTHROPIC_FAMILY = "anthropic"

# Unknown model ids default to the chat completions shape
DEFAULT_FAMILY = OPENAI_FAMILY


@dataclass(frozen=True)
class ModelInfo:
    id: str
    name: str
    family: str
    provider: str
    max_tokens: int
    cost_per_1k_tokens: float
    description: str
    capabilities: Tuple[str, ...] = field(default_factory=tuple)
    fixed_temperature: bool = False

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "provider": self.provider,
            "maxTokens": self.max_tokens,
            "costPer1kTokens": self.cost_per_1k_tokens,
            "description": self.description,
            "capabilities": list(self.capabilities),
        }


MODEL_CATALOG: Dict[str, ModelInfo] = {
    model.id: model for model in (
        ModelInfo(
            id="gpt-5-nano",
            name="Adiva-5.0-Nano",
            family=OPENAI_FAMILY,
            provider="OpenAI",
            max_tokens=8192,
            cost_per_1k_tokens=0.00005,
            description="Ultra-fast GPT-5 Nano",
            capabilities=("text-generation", "conversation", "vision"),
            fixed_temperature=True,
        ),
        ModelInfo(
            id="gpt-5-mini",
            name="Adiva-5.0-Mini",
            family=OPENAI_FAMILY,
            provider="OpenAI",
            max_tokens=16384,
            cost_per_1k_tokens=0.00025,
            description="Balanced GPT-5 Mini",
            capabilities=("text-generation", "conversation", "analysis", "coding", "vision"),
            fixed_temperature=True,
        ),
        ModelInfo(
            id="gpt-4o-mini",
            name="Adiva-2.0-Mini",
            family=OPENAI_FAMILY,
            provider="OpenAI",
            max_tokens=16384,
            cost_per_1k_tokens=0.00015,
            description="Fast and efficient model for most tasks",
            capabilities=("text-generation", "conversation", "analysis", "coding", "vision"),
        ),
        ModelInfo(
            id="claude-sonnet-4-20250514",
            name="Adiva-4.0-Sonnet",
            family=ANTHROPIC_FAMILY,
            provider="Anthropic",
            max_tokens=200000,
            cost_per_1k_tokens=0.003,
            description="Most intelligent Claude model for complex reasoning",
            capabilities=("text-generation", "conversation", "analysis", "coding", "reasoning", "math", "vision"),
        ),
        ModelInfo(
            id="claude-3-5-haiku-20241022",
            name="Adiva-3.5-Haiku",
            family=ANTHROPIC_FAMILY,
            provider="Anthropic",
            max_tokens=200000,
            cost_per_1k_tokens=0.0008,
            description="Fast Claude model for everyday chat",
            capabilities=("text-generation", "conversation", "coding"),
        ),
    )
}


def get_model_info(model_id: str) -> Optional[ModelInfo]:
    return MODEL_CATALOG.get(model_id)


def family_for(model_id: str) -> str:
    info = MODEL_CATALOG.get(model_id)
    return info.family if info else DEFAULT_FAMILY


def uses_fixed_temperature(model_id: str) -> bool:
    info = MODEL_CATALOG.get(model_id)
    return bool(info and info.fixed_temperature)
