import json
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import select

from adiva.extensions import db
from adiva.models import Chat, ChatMessage, utcnow
from adiva.services.analytics_service import UserAnalyticsService
from adiva.services.answer_recovery import recover_answer
from adiva.services.auth_service import AuthService
from adiva.services.conversation_window import build_messages
from adiva.services.policy import resolve_effective_settings
from adiva.services.providers import GenerationRequest, ImageAttachment
from adiva.utils.errors import GuestLimitError, LLMError, NotFoundError, ValidationError
from adiva.utils.logger import logger
from adiva.utils.metrics import GUEST_DENIALS_TOTAL, track_error, track_exchange

PLACEHOLDER_CONVERSATION_ID = "current"
EMPTY_MESSAGE_CONTENT = "[no content]"
TITLE_LENGTH = 50
MAX_CONVERSATION_ID_LENGTH = 128
_OPTIONAL_TEXT_FIELDS = ("conversationId", "systemPrompt", "userPrompt", "modelId", "answerFormat")


@dataclass
class ChatPayload:
    """Validated body of a chat request."""
    message: str
    conversation_id: Optional[str] = None
    system_prompt: Optional[str] = None
    user_prompt: Optional[str] = None
    model_id: Optional[str] = None
    max_tokens: Optional[int] = None
    answer_format: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ChatPayload":
        if not data:
            raise ValidationError("Missing request body")
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")

        message = data.get("message")
        if not isinstance(message, str) or not message.strip():
            raise ValidationError("Message is required")

        for key in _OPTIONAL_TEXT_FIELDS:
            value = data.get(key)
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"'{key}' must be a string")

        max_tokens = data.get("maxTokens")
        if max_tokens is not None:
            if isinstance(max_tokens, bool):
                raise ValidationError("'maxTokens' must be an integer")
            try:
                max_tokens = int(max_tokens)
            except (TypeError, ValueError):
                raise ValidationError("'maxTokens' must be an integer")

        conversation_id = data.get("conversationId") or None
        if conversation_id is not None and len(conversation_id) > MAX_CONVERSATION_ID_LENGTH:
            raise ValidationError(f"'conversationId' cannot exceed {MAX_CONVERSATION_ID_LENGTH} characters")
        if conversation_id == PLACEHOLDER_CONVERSATION_ID:
            conversation_id = None

        return cls(
            message=message,
            conversation_id=conversation_id,
            system_prompt=data.get("systemPrompt") or None,
            user_prompt=data.get("userPrompt") or None,
            model_id=data.get("modelId") or None,
            max_tokens=max_tokens,
            answer_format=data.get("answerFormat") or None,
        )

    @property
    def prompt_text(self) -> str:
        """What the model sees; the stored turn is always `message`."""
        return self.user_prompt or self.message


@dataclass
class PreparedTurn:
    audience: str  # 'guest' or 'user'
    conversation_id: str
    request: GenerationRequest
    payload: ChatPayload
    policy: Any
    chat: Optional[Chat] = None
    has_image: bool = False


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _title_from(message: str) -> str:
    title = message[:TITLE_LENGTH]
    return title + "..." if len(message) > TITLE_LENGTH else title


def encode_sse(data: Dict[str, Any]) -> str:
    return f"data: {json.dumps(data)}\n\n"


class ChatService:
    """
    Runs a chat turn end to end: quota gate for guests, policy merge,
    conversation window, provider call and bookkeeping.
    """

    def __init__(self, adapter, conversation_store, quota_gate, max_history: int = 10):
        self.adapter = adapter
        self.conversation_store = conversation_store
        self.quota_gate = quota_gate
        self.max_history = max_history

    # Preparation

    def prepare_guest_turn(self, guest_id: str, payload: ChatPayload, policy,
                           image: Optional[ImageAttachment] = None) -> PreparedTurn:
        decision = self.quota_gate.check_and_consume(guest_id, policy)
        if not decision.allowed:
            GUEST_DENIALS_TOTAL.inc()
            raise GuestLimitError(decision.max_chats)

        effective = resolve_effective_settings(
            policy, payload.model_id, payload.system_prompt, payload.max_tokens
        )
        conversation_id = payload.conversation_id or f"guest_{guest_id}"
        history = self.conversation_store.get(conversation_id)
        messages = build_messages(
            history, effective.system_prompt, payload.prompt_text, image, self.max_history
        )
        return PreparedTurn(
            audience="guest",
            conversation_id=conversation_id,
            request=GenerationRequest(
                model=effective.model,
                messages=messages,
                max_tokens=effective.max_tokens,
                temperature=effective.temperature,
                system_prompt=effective.system_prompt,
            ),
            payload=payload,
            policy=policy,
            has_image=image is not None,
        )

    def prepare_user_turn(self, user, payload: ChatPayload, policy,
                          image: Optional[ImageAttachment] = None) -> PreparedTurn:
        user_settings = AuthService.get_user_settings(user)
        effective = resolve_effective_settings(
            policy, payload.model_id, payload.system_prompt, payload.max_tokens, user_settings
        )

        conversation_id = payload.conversation_id or (
            f"chat_{int(time.time() * 1000)}_{user.id}_{uuid.uuid4().hex[:8]}"
        )
        chat = self._get_or_create_chat(user, conversation_id, payload.message, effective)
        history = self._recent_history(chat)

        system_prompt = effective.system_prompt or chat.system_prompt or ""
        messages = build_messages(
            history, system_prompt, payload.prompt_text, image, self.max_history
        )

        # Persisted before the upstream call; a failed call leaves this turn in place
        self._add_message(chat, "user", payload.message, effective.model, has_image=image is not None)
        db.session.commit()

        return PreparedTurn(
            audience="user",
            conversation_id=conversation_id,
            request=GenerationRequest(
                model=effective.model,
                messages=messages,
                max_tokens=effective.max_tokens,
                temperature=effective.temperature,
                system_prompt=system_prompt,
            ),
            payload=payload,
            policy=policy,
            chat=chat,
            has_image=image is not None,
        )

    def _get_or_create_chat(self, user, conversation_id, message, effective) -> Chat:
        chat = db.session.execute(
            select(Chat).filter_by(conversation_id=conversation_id)
        ).scalar_one_or_none()
        if chat is not None:
            if chat.user_id != user.id:
                raise NotFoundError("Chat not found")
            return chat

        chat = Chat(
            user_id=user.id,
            conversation_id=conversation_id,
            title=_title_from(message),
            model=effective.model,
            temperature=effective.temperature,
            max_tokens=effective.max_tokens,
            system_prompt=effective.system_prompt or None,
        )
        db.session.add(chat)
        db.session.flush()
        logger.info(f"Created chat {conversation_id} for user {user.id}")
        return chat

    def _recent_history(self, chat: Chat) -> List[Dict[str, str]]:
        """Newest `max_history` persisted turns, oldest first. The chat itself is never pruned."""
        rows = db.session.execute(
            select(ChatMessage)
            .filter_by(chat_id=chat.id)
            .order_by(ChatMessage.id.desc())
            .limit(self.max_history)
        ).scalars().all()
        return [{"role": row.role, "content": row.content} for row in reversed(rows)]

    @staticmethod
    def _add_message(chat: Chat, role: str, content: str, model: str,
                     tokens: int = 0, has_image: bool = False) -> ChatMessage:
        if not isinstance(content, str) or not content.strip():
            content = EMPTY_MESSAGE_CONTENT
        message = ChatMessage(
            chat_id=chat.id,
            role=role,
            content=content,
            model=model,
            tokens=tokens,
            has_image=has_image,
        )
        db.session.add(message)
        chat.message_count = (chat.message_count or 0) + 1
        chat.total_tokens = (chat.total_tokens or 0) + tokens
        chat.last_message_at = utcnow()
        return message

    # Completion

    def _finish(self, turn: PreparedTurn, reply: str, usage: Dict[str, int]) -> Dict[str, Any]:
        model = turn.request.model
        track_exchange(turn.policy, model, usage, turn.audience)

        if turn.audience == "guest":
            stored = self.conversation_store.append(
                turn.conversation_id,
                {"role": "user", "content": turn.payload.message},
                {"role": "assistant", "content": reply},
            )
            return {
                "reply": reply,
                "conversationId": turn.conversation_id,
                "messageCount": len(stored),
                "usage": usage,
                "model": model,
                "timestamp": _timestamp(),
            }

        chat = turn.chat
        self._add_message(chat, "assistant", reply, model, tokens=usage.get("total_tokens", 0))
        db.session.commit()
        if turn.policy.analytics_enabled:
            UserAnalyticsService.record_exchange(chat.user_id, model, usage.get("total_tokens", 0))
        return {
            "reply": reply,
            "conversationId": turn.conversation_id,
            "messageCount": chat.message_count,
            "usage": usage,
            "model": model,
            "timestamp": _timestamp(),
            "chatId": chat.id,
            "title": chat.title,
        }

    def complete(self, turn: PreparedTurn) -> Dict[str, Any]:
        """Generate the reply for a prepared turn and record it."""
        try:
            result = self.adapter.generate(turn.request)
        except LLMError as e:
            track_error(e.error_code)
            raise

        reply = result.text
        if turn.payload.answer_format == "json":
            reply = recover_answer(reply)
        return self._finish(turn, reply, result.usage)

    def stream(self, turn: PreparedTurn) -> Iterator[str]:
        """
        Yield SSE frames for a prepared turn.

        Upstream failures after the stream has started become an error frame;
        a client disconnect only stops the frames, not an in-flight upstream call.
        """
        pieces = []
        usage = None
        try:
            for chunk in self.adapter.stream(turn.request):
                if chunk.done:
                    usage = chunk.usage
                    break
                pieces.append(chunk.content)
                yield encode_sse({"type": "content", "content": chunk.content, "done": False})

            usage = usage or {"total_tokens": 0, "prompt_tokens": 0, "completion_tokens": 0}
            body = self._finish(turn, "".join(pieces), usage)
            yield encode_sse({
                "type": "done",
                "content": "",
                "usage": usage,
                "conversationId": body["conversationId"],
                "done": True,
            })
        except LLMError as e:
            track_error(e.error_code)
            logger.error(f"Streaming error for {turn.conversation_id}: {e.error_code} ({e.details})")
            yield encode_sse({"type": "error", "content": e.message, "code": e.error_code, "done": True})
