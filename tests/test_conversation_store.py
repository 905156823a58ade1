"""Tests for guest conversation stores."""

from adiva.services.conversation_store import InMemoryConversationStore, RedisConversationStore


class FakePipeline:
    def __init__(self, client):
        self.client = client
        self.ops = []

    def rpush(self, key, *values):
        self.ops.append(("rpush", key, *values))

    def ltrim(self, key, start, end):
        self.ops.append(("ltrim", key, start, end))

    def expire(self, key, seconds):
        self.ops.append(("expire", key, seconds))

    def execute(self):
        for name, key, *args in self.ops:
            getattr(self.client, name)(key, *args)
        self.ops = []


class FakeRedis:
    """Just the list commands the store uses; values come back as bytes."""

    def __init__(self):
        self.lists = {}
        self.ttls = {}

    def pipeline(self):
        return FakePipeline(self)

    def rpush(self, key, *values):
        self.lists.setdefault(key, []).extend(v.encode() for v in values)

    def ltrim(self, key, start, end):
        items = self.lists.get(key, [])
        stop = len(items) if end == -1 else end + 1
        self.lists[key] = items[start:stop] if start >= 0 else items[max(len(items) + start, 0):stop]

    def expire(self, key, seconds):
        self.ttls[key] = seconds

    def lrange(self, key, start, end):
        return list(self.lists.get(key, []))

    def delete(self, key):
        return 1 if self.lists.pop(key, None) is not None else 0

    def exists(self, key):
        return 1 if key in self.lists else 0


def _turns(count):
    return [{"role": "user", "content": f"m{i}"} for i in range(count)]


class TestInMemoryConversationStore:
    def test_missing_conversation_is_empty(self):
        store = InMemoryConversationStore()
        assert store.get("nope") == []
        assert not store.exists("nope")

    def test_append_keeps_last_turns(self):
        store = InMemoryConversationStore(max_turns=4)
        store.append("c1", *_turns(3))
        history = store.append("c1", {"role": "assistant", "content": "a1"}, {"role": "user", "content": "m3"})
        assert [t["content"] for t in history] == ["m1", "m2", "a1", "m3"]
        assert store.get("c1") == history

    def test_returned_history_is_a_copy(self):
        store = InMemoryConversationStore()
        store.append("c1", {"role": "user", "content": "hi"})
        store.get("c1").append({"role": "assistant", "content": "injected"})
        assert len(store.get("c1")) == 1

    def test_least_recently_used_conversation_is_evicted(self):
        store = InMemoryConversationStore(max_conversations=2)
        store.append("a", {"role": "user", "content": "a"})
        store.append("b", {"role": "user", "content": "b"})
        store.get("a")
        store.append("c", {"role": "user", "content": "c"})

        assert len(store) == 2
        assert store.exists("a")
        assert not store.exists("b")
        assert store.exists("c")

    def test_delete(self):
        store = InMemoryConversationStore()
        store.append("a", {"role": "user", "content": "a"})
        assert store.delete("a")
        assert not store.delete("a")


class TestRedisConversationStore:
    def test_append_and_get_round_trip_through_json(self):
        client = FakeRedis()
        store = RedisConversationStore(client, max_turns=10, ttl_seconds=60)
        history = store.append("c1", {"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"})

        assert history == [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]
        assert client.ttls["conversation:c1"] == 60

    def test_list_is_trimmed(self):
        client = FakeRedis()
        store = RedisConversationStore(client, max_turns=3)
        store.append("c1", *_turns(5))
        assert [t["content"] for t in store.get("c1")] == ["m2", "m3", "m4"]

    def test_exists_and_delete(self):
        store = RedisConversationStore(FakeRedis())
        assert not store.exists("c1")
        store.append("c1", {"role": "user", "content": "hi"})
        assert store.exists("c1")
        assert store.delete("c1")
        assert not store.delete("c1")
