import json
import threading
from collections import OrderedDict
from typing import Dict, List

from adiva.utils.logger import logger


class ConversationStore:
    """Guest conversation history keyed by conversation id."""

    def get(self, conversation_id: str) -> List[Dict[str, str]]:
        raise NotImplementedError

    def append(self, conversation_id: str, *turns: Dict[str, str]) -> List[Dict[str, str]]:
        raise NotImplementedError

    def delete(self, conversation_id: str) -> bool:
        raise NotImplementedError

    def exists(self, conversation_id: str) -> bool:
        raise NotImplementedError


class InMemoryConversationStore(ConversationStore):
    """
    Process-local bounded LRU of guest conversations.

    Each conversation keeps at most `max_turns` turns; past `max_conversations`
    the least recently used conversation is evicted. Not shared between
    processes, so multi-instance deployments need sticky routing or
    RedisConversationStore.
    """

    def __init__(self, max_turns: int = 10, max_conversations: int = 1000):
        self.max_turns = max_turns
        self.max_conversations = max_conversations
        self._conversations: "OrderedDict[str, List[Dict[str, str]]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, conversation_id):
        with self._lock:
            history = self._conversations.get(conversation_id)
            if history is None:
                return []
            self._conversations.move_to_end(conversation_id)
            return list(history)

    def append(self, conversation_id, *turns):
        with self._lock:
            history = self._conversations.pop(conversation_id, [])
            history = (history + [dict(turn) for turn in turns])[-self.max_turns:]
            self._conversations[conversation_id] = history

            while len(self._conversations) > self.max_conversations:
                evicted, _ = self._conversations.popitem(last=False)
                logger.debug(f"Evicted guest conversation {evicted}")

            return list(history)

    def delete(self, conversation_id):
        with self._lock:
            return self._conversations.pop(conversation_id, None) is not None

    def exists(self, conversation_id):
        with self._lock:
            return conversation_id in self._conversations

    def __len__(self):
        with self._lock:
            return len(self._conversations)


class RedisConversationStore(ConversationStore):
    """Shared guest history: one Redis list per conversation, trimmed and expiring."""

    def __init__(self, client, max_turns: int = 10, ttl_seconds: int = 7 * 24 * 3600,
                 prefix: str = "conversation:"):
        self.client = client
        self.max_turns = max_turns
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    def _key(self, conversation_id):
        return f"{self.prefix}{conversation_id}"

    def get(self, conversation_id):
        raw = self.client.lrange(self._key(conversation_id), 0, -1)
        return [json.loads(item) for item in raw]

    def append(self, conversation_id, *turns):
        key = self._key(conversation_id)
        pipe = self.client.pipeline()
        pipe.rpush(key, *[json.dumps(turn) for turn in turns])
        pipe.ltrim(key, -self.max_turns, -1)
        pipe.expire(key, self.ttl_seconds)
        pipe.execute()
        return self.get(conversation_id)

    def delete(self, conversation_id):
        return self.client.delete(self._key(conversation_id)) > 0

    def exists(self, conversation_id):
        return self.client.exists(self._key(conversation_id)) > 0
