from typing import Dict, List, Optional

from adiva.services.providers import ImageAttachment

MAX_HISTORY_TURNS = 10


def build_messages(
    history: List[Dict[str, str]],
    system_prompt: Optional[str],
    new_user_content: str,
    image: Optional[ImageAttachment] = None,
    max_history: int = MAX_HISTORY_TURNS,
) -> List[Dict]:
    """
    Assemble the bounded message list sent to a provider.

    The system turn (if any) comes first, then the most recent `max_history`
    history turns in order, then the new user turn.
    """
    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})

    recent = history[-max_history:] if max_history > 0 else []
    messages.extend({"role": turn["role"], "content": turn["content"]} for turn in recent)

    user_turn = {"role": "user", "content": new_user_content}
    if image is not None:
        user_turn["image"] = image
    messages.append(user_turn)

    return messages
