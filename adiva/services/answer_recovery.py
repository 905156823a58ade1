"""
Best-effort recovery of an ``answer`` field from model output.

Only used when a client explicitly asks for ``answerFormat: "json"``; the
normal reply contract is plain text and never goes through here.
"""

import json
import re
from typing import Optional

_ANSWER_PATTERN = re.compile(
    r'"answer"\s*:\s*"([\s\S]*?)"\s*,\s*"(defense|hallucination_risk|defense_quality|tone|task_type)"'
)
_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$")


def _normalize(raw: str) -> str:
    text = raw.strip()
    text = _FENCE_PATTERN.sub("", text)
    return text.replace("“", '"').replace("”", '"')


def _parse_object(text: str) -> Optional[dict]:
    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last <= first:
        return None
    try:
        parsed = json.loads(text[first:last + 1])
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def extract_answer(raw: str) -> Optional[str]:
    """Strict JSON first, then a regex over JSON-like text. None if neither works."""
    text = _normalize(raw)
    parsed = _parse_object(text)
    if parsed is not None and isinstance(parsed.get("answer"), str):
        return parsed["answer"]

    match = _ANSWER_PATTERN.search(text)
    if not match:
        return None
    try:
        return json.loads(f'"{match.group(1)}"')
    except json.JSONDecodeError:
        return match.group(1)


def recover_answer(raw: str) -> str:
    return extract_answer(raw) or raw
