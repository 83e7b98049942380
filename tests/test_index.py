"""
Tests for lorectl.index — IndexCache load/save, mutations, search, caching.
"""

import json
import threading
import time

import pytest

from lorectl.blobstore import MemoryBlobStore
from lorectl.index import IndexCache
from lorectl.types import CharacterIndex, MemoryEntry, MessageIndexEntry

KEY = "characters/lan-abc"
PATH = f"{KEY}/index.json"


@pytest.fixture
def store():
    return MemoryBlobStore()


@pytest.fixture
def cache(store):
    return IndexCache(store)


def msg(mid, role="user"):
    return MessageIndexEntry(id=mid, role=role, preview=f"preview {mid}")


# ---------------------------------------------------------------------------
# Load
# ---------------------------------------------------------------------------


class TestLoad:
    def test_missing_document_loads_empty(self, cache):
        index = cache.load(KEY)
        assert index.messages == []
        assert index.memories == []
        assert index.message_count == 0

    def test_malformed_json_loads_empty(self, store, cache):
        store.create(PATH, "{not json")
        assert cache.load(KEY).messages == []

    def test_wrong_shape_loads_empty(self, store, cache):
        store.create(PATH, json.dumps(["not", "an", "object"]))
        assert cache.load(KEY).memories == []

    def test_reads_existing_document(self, store, cache):
        doc = {
            "messageCount": 1,
            "lastUpdated": "2026-01-01T00:00:00+00:00",
            "messages": [{"id": "m1", "role": "user", "timestamp": "t"}],
            "memories": [{
                "id": "mem-1", "content": "User likes tea", "type": "preference",
                "importance": 0.7, "sourceMessageId": "m1",
                "keywords": ["user", "likes", "tea"], "createdAt": "t",
            }],
        }
        store.create(PATH, json.dumps(doc))
        index = cache.load(KEY)
        assert [m.id for m in index.messages] == ["m1"]
        assert index.memories[0].source_message_id == "m1"
        assert index.memories[0].type == "preference"

    def test_cache_hit_skips_store_read(self, store, cache):
        store.create(PATH, json.dumps(CharacterIndex().to_dict()))
        first = cache.load(KEY)
        reads = store.reads
        second = cache.load(KEY)
        assert second is first
        assert store.reads == reads

    def test_empty_index_is_cached_too(self, store, cache):
        store.create(PATH, "garbage")
        cache.load(KEY)
        reads = store.reads
        cache.load(KEY)
        assert store.reads == reads

    def test_clear_cache_forces_reload(self, store, cache):
        store.create(PATH, json.dumps(CharacterIndex().to_dict()))
        cache.load(KEY)
        reads = store.reads
        cache.clear_cache(KEY)
        cache.load(KEY)
        assert store.reads == reads + 1

    def test_clear_all(self, store, cache):
        cache.load(KEY)
        cache.load("characters/other")
        cache.clear_all()
        store.create(PATH, json.dumps({"messages": [
            {"id": "m9", "role": "assistant", "timestamp": "t"},
        ]}))
        assert [m.id for m in cache.load(KEY).messages] == ["m9"]


# ---------------------------------------------------------------------------
# Save
# ---------------------------------------------------------------------------


class TestSave:
    def test_creates_document(self, store, cache):
        index = CharacterIndex(messages=[msg("m1")])
        cache.save(KEY, index)
        doc = json.loads(store.read(PATH))
        assert doc["messageCount"] == 1
        assert doc["messages"][0]["id"] == "m1"
        assert "lastUpdated" in doc

    def test_indented_json(self, store, cache):
        cache.save(KEY, CharacterIndex())
        assert "\n  " in store.read(PATH)

    def test_modifies_existing_document(self, store, cache):
        cache.save(KEY, CharacterIndex())
        cache.save(KEY, CharacterIndex(messages=[msg("m1"), msg("m2")]))
        assert json.loads(store.read(PATH))["messageCount"] == 2

    def test_stamps_last_updated(self, cache):
        index = CharacterIndex(last_updated="1970-01-01T00:00:00+00:00")
        cache.save(KEY, index)
        assert index.last_updated != "1970-01-01T00:00:00+00:00"

    def test_create_race_retried_as_modify(self, store):
        class RacyStore(MemoryBlobStore):
            """Document appears between exists() and create()."""

            def exists(self, path):
                return False

        racy = RacyStore({PATH: "{}"})
        cache = IndexCache(racy)
        cache.save(KEY, CharacterIndex(messages=[msg("m1")]))
        assert json.loads(racy.read(PATH))["messageCount"] == 1

    def test_other_failures_propagate(self):
        class BrokenStore(MemoryBlobStore):
            def create(self, path, text):
                raise PermissionError("read-only")

        cache = IndexCache(BrokenStore())
        with pytest.raises(PermissionError):
            cache.save(KEY, CharacterIndex())

    def test_save_refreshes_cache(self, store, cache):
        index = CharacterIndex(messages=[msg("m1")])
        cache.save(KEY, index)
        reads = store.reads
        assert cache.load(KEY) is index
        assert store.reads == reads


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


class TestMutations:
    def test_add_message_keeps_count(self, cache):
        cache.add_message(KEY, msg("m1"))
        cache.add_message(KEY, msg("m2", "assistant"))
        index = cache.load(KEY)
        assert index.message_count == len(index.messages) == 2

    def test_add_memory_recomputes_keywords(self, cache):
        memory = MemoryEntry(content="Lan loves the old castle", keywords=["bogus"])
        cache.add_memory(KEY, memory)
        stored = cache.load(KEY).memories[0]
        assert stored.keywords == ["lan", "loves", "old", "castle"]

    def test_add_memories_single_save(self, store, cache):
        writes = []
        original = store.create

        def counting_create(path, text):
            writes.append(path)
            original(path, text)

        store.create = counting_create
        cache.add_memories(KEY, [
            MemoryEntry(content="first fact"),
            MemoryEntry(content="second fact"),
        ])
        assert writes == [PATH]
        assert len(cache.load(KEY).memories) == 2

    def test_add_memories_empty_is_noop(self, store, cache):
        assert cache.add_memories(KEY, []) == []
        assert not store.exists(PATH)

    def test_remove_message_cascades_exactly(self, cache):
        cache.add_message(KEY, msg("m1"))
        cache.add_message(KEY, msg("m2"))
        cache.add_memories(KEY, [
            MemoryEntry(content="from one", source_message_id="m1"),
            MemoryEntry(content="also from one", source_message_id="m1"),
            MemoryEntry(content="from two", source_message_id="m2"),
            MemoryEntry(content="manual"),
        ])
        cache.remove_message(KEY, "m1")
        index = cache.load(KEY)
        assert [m.id for m in index.messages] == ["m2"]
        assert index.message_count == 1
        assert sorted(m.content for m in index.memories) == ["from two", "manual"]

    def test_remove_unknown_message_keeps_everything(self, cache):
        cache.add_message(KEY, msg("m1"))
        cache.add_memory(KEY, MemoryEntry(content="kept", source_message_id="m1"))
        cache.remove_message(KEY, "nope")
        index = cache.load(KEY)
        assert len(index.messages) == 1
        assert len(index.memories) == 1

    def test_mutations_persist(self, store, cache):
        cache.add_message(KEY, msg("m1"))
        fresh = IndexCache(store)
        assert [m.id for m in fresh.load(KEY).messages] == ["m1"]

    def test_concurrent_adds_on_same_key_lose_nothing(self, cache):
        def worker(start):
            for i in range(start, start + 20):
                cache.add_message(KEY, msg(f"m{i}"))

        threads = [threading.Thread(target=worker, args=(n * 100,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert cache.load(KEY).message_count == 80

    def test_recent_message_ids(self, cache):
        for i in range(5):
            cache.add_message(KEY, msg(f"m{i}"))
        assert cache.recent_message_ids(KEY, 2) == ["m3", "m4"]
        assert cache.recent_message_ids(KEY, 0) == []


# ---------------------------------------------------------------------------
# Consistency
# ---------------------------------------------------------------------------


class SlowReadStore(MemoryBlobStore):
    """Signals when a read starts, then stalls before returning it."""

    def __init__(self, documents=None, delay=0.2):
        super().__init__(documents)
        self.reading = threading.Event()
        self.delay = delay

    def read(self, path):
        text = super().read(path)
        self.reading.set()
        time.sleep(self.delay)
        return text


class FlakyStore(MemoryBlobStore):
    """modify() raises while failing is set."""

    failing = False

    def modify(self, path, text):
        if self.failing:
            raise OSError("disk full")
        super().modify(path, text)


class TestConsistency:
    def test_cold_read_does_not_clobber_concurrent_write(self):
        store = SlowReadStore({PATH: json.dumps(CharacterIndex().to_dict())})
        cache = IndexCache(store)

        reader = threading.Thread(
            target=cache.search_memories, args=(KEY, "dragon"),
        )
        reader.start()
        assert store.reading.wait(5)
        cache.add_memory(KEY, MemoryEntry(content="The dragon sleeps", importance=1.0))
        cache.add_message(KEY, msg("m2"))
        reader.join()

        cache.clear_all()
        index = cache.load(KEY)
        assert len(index.memories) == 1
        assert [m.id for m in index.messages] == ["m2"]

    def test_failed_add_message_leaves_cache_unchanged(self):
        store = FlakyStore()
        cache = IndexCache(store)
        cache.add_message(KEY, msg("m1"))

        store.failing = True
        with pytest.raises(OSError):
            cache.add_message(KEY, msg("m2"))
        assert [m.id for m in cache.load(KEY).messages] == ["m1"]
        assert cache.load(KEY).message_count == 1

        store.failing = False
        cache.add_message(KEY, msg("m3"))
        assert [m.id for m in IndexCache(store).load(KEY).messages] == ["m1", "m3"]

    def test_failed_add_memory_not_searchable(self):
        store = FlakyStore()
        cache = IndexCache(store)
        cache.add_message(KEY, msg("m1"))

        store.failing = True
        with pytest.raises(OSError):
            cache.add_memory(KEY, MemoryEntry(content="dragon gold", importance=1.0))
        assert cache.load(KEY).memories == []
        assert cache.search_memories(KEY, "dragon", min_score=0.0) == []

    def test_failed_remove_keeps_message_and_memories(self):
        store = FlakyStore()
        cache = IndexCache(store)
        cache.add_message(KEY, msg("m1"))
        cache.add_memory(KEY, MemoryEntry(content="kept", source_message_id="m1"))

        store.failing = True
        with pytest.raises(OSError):
            cache.remove_message(KEY, "m1")
        index = cache.load(KEY)
        assert [m.id for m in index.messages] == ["m1"]
        assert [m.content for m in index.memories] == ["kept"]


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


class TestSearch:
    def test_lan_example_through_index(self, cache):
        cache.add_memory(KEY, MemoryEntry(content="User's name is Lan", importance=0.9))
        cache.add_memory(KEY, MemoryEntry(content="User likes coffee", importance=0.3))
        results = cache.search_memories(KEY, "Lan")
        assert [m.content for m in results] == ["User's name is Lan"]

    def test_search_sees_new_memories(self, cache):
        assert cache.search_memories(KEY, "dragon") == []
        cache.add_memory(KEY, MemoryEntry(content="The dragon sleeps", importance=1.0))
        cache.add_memory(KEY, MemoryEntry(content="Knights guard gates"))
        assert len(cache.search_memories(KEY, "dragon")) == 1

    def test_search_scored_returns_scores(self, cache):
        cache.add_memory(KEY, MemoryEntry(content="dragon hoard gold", importance=1.0))
        cache.add_memory(KEY, MemoryEntry(content="quiet village"))
        (memory, score), = cache.search_memories_scored(KEY, "dragon")
        assert memory.content == "dragon hoard gold"
        assert score > 0.5

    def test_characters_are_independent(self, cache):
        cache.add_memory("characters/a", MemoryEntry(content="dragon lair", importance=1.0))
        cache.add_memory("characters/a", MemoryEntry(content="other thing"))
        assert cache.search_memories("characters/b", "dragon") == []
