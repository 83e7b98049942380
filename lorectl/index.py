"""
Index Cache — per-character index.json with a derived BM25 engine

One CharacterIndex document per character folder:

    <character folder>/index.json

Read policy: availability first. A missing or malformed document loads as a
fresh empty index; load() never raises.

Write policy: every mutation is persisted immediately. Creation races (the
document appeared between the existence check and the create) are retried
once as a modify; any other failure propagates.

Thread safety: read-modify-write helpers and cache misses hold a
per-character re-entrant lock, so concurrent mutations of the same character
are serialized within one process. Mutations work on a copy that replaces
the cached index only after the write succeeds. Different characters never
contend.
"""

from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Tuple

from lorectl.blobstore import BlobStore, normalize_path
from lorectl.bm25 import BM25Engine, extract_keywords
from lorectl.types import CharacterIndex, MemoryEntry, MessageIndexEntry, _now_iso

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.json"


class IndexCache:
    """Explicit cache of character indexes and their BM25 engines."""

    def __init__(self, store: BlobStore):
        """Bind the cache to a blob store."""
        self._store = store
        self._indexes: Dict[str, CharacterIndex] = {}
        self._engines: Dict[str, BM25Engine] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @staticmethod
    def index_path(key: str) -> str:
        """Path of the index document for a character folder."""
        return normalize_path(f"{key}/{INDEX_FILENAME}")

    @contextmanager
    def locked(self, key: str) -> Iterator[None]:
        """Hold the per-character lock for a read-modify-write sequence."""
        with self._locks_guard:
            lock = self._locks.setdefault(key, threading.RLock())
        with lock:
            yield

    # -- Load / save ---------------------------------------------------------

    def load(self, key: str) -> CharacterIndex:
        """Return the character index (cached, stored, or fresh empty).

        A cache miss is filled under the character lock, so a reader can
        never install a copy older than one a concurrent writer saved.
        """
        cached = self._indexes.get(key)
        if cached is not None:
            return cached

        with self.locked(key):
            cached = self._indexes.get(key)
            if cached is not None:
                return cached

            path = self.index_path(key)
            index = CharacterIndex.empty()
            try:
                if self._store.exists(path):
                    index = CharacterIndex.from_dict(json.loads(self._store.read(path)))
            except (OSError, ValueError, KeyError, TypeError) as e:
                # json.JSONDecodeError is a ValueError
                logger.warning("Unreadable index %s, starting empty: %s", path, e)
                index = CharacterIndex.empty()

            self._indexes[key] = index
            self._engines[key] = BM25Engine(index.memories)
            return index

    def _working_copy(self, key: str) -> CharacterIndex:
        """Mutable copy of the cached index; the cache changes only on save."""
        index = self.load(key)
        return CharacterIndex(
            message_count=index.message_count,
            last_updated=index.last_updated,
            messages=list(index.messages),
            memories=list(index.memories),
        )

    def save(self, key: str, index: CharacterIndex) -> None:
        """Persist the index (create or modify) and refresh both caches."""
        path = self.index_path(key)
        index.sync_count()
        index.last_updated = _now_iso()
        content = json.dumps(index.to_dict(), ensure_ascii=False, indent=2)

        if self._store.exists(path):
            self._store.modify(path, content)
        else:
            try:
                self._store.create(path, content)
            except FileExistsError:
                logger.debug("Index %s created concurrently, retrying as modify", path)
                self._store.modify(path, content)

        self._indexes[key] = index
        self._engines[key] = BM25Engine(index.memories)

    # -- Mutations -------------------------------------------------------------

    def add_message(self, key: str, entry: MessageIndexEntry) -> None:
        """Append a message entry."""
        with self.locked(key):
            index = self._working_copy(key)
            index.messages.append(entry)
            index.sync_count()
            self.save(key, index)

    def remove_message(self, key: str, message_id: str) -> None:
        """Remove a message entry and every memory extracted from it."""
        with self.locked(key):
            index = self._working_copy(key)
            index.messages = [m for m in index.messages if m.id != message_id]
            index.sync_count()
            before = len(index.memories)
            index.memories = [
                m for m in index.memories if m.source_message_id != message_id
            ]
            dropped = before - len(index.memories)
            if dropped:
                logger.info(
                    "Removed %d memory(ies) linked to message %s", dropped, message_id,
                )
            self.save(key, index)

    def add_memory(self, key: str, memory: MemoryEntry) -> MemoryEntry:
        """Append a memory; its keywords are recomputed from content."""
        return self.add_memories(key, [memory])[0]

    def add_memories(self, key: str, memories: List[MemoryEntry]) -> List[MemoryEntry]:
        """Append several memories with a single save."""
        if not memories:
            return []
        with self.locked(key):
            index = self._working_copy(key)
            for memory in memories:
                memory.keywords = extract_keywords(memory.content)
                index.memories.append(memory)
            self.save(key, index)
        return memories

    # -- Queries ---------------------------------------------------------------

    def search_memories(
        self, key: str, query: str, limit: int = 5, min_score: float = 0.5,
    ) -> List[MemoryEntry]:
        """BM25 search over the character's memories."""
        return [m for m, _ in self.search_memories_scored(key, query, limit, min_score)]

    def search_memories_scored(
        self, key: str, query: str, limit: int = 5, min_score: float = 0.5,
    ) -> List[Tuple[MemoryEntry, float]]:
        """BM25 search returning (memory, score) pairs."""
        engine = self._engines.get(key)
        if engine is None:
            index = self.load(key)
            engine = self._engines.get(key)
            if engine is None:
                engine = BM25Engine(index.memories)
                self._engines[key] = engine
        return engine.search_scored(query, limit, min_score)

    def recent_message_ids(self, key: str, count: int = 10) -> List[str]:
        """IDs of the last `count` messages, oldest first."""
        if count <= 0:
            return []
        return [m.id for m in self.load(key).messages[-count:]]

    # -- Invalidation ------------------------------------------------------------

    def clear_cache(self, key: str) -> None:
        """Drop cached state for one character (e.g. after deletion)."""
        self._indexes.pop(key, None)
        self._engines.pop(key, None)

    def clear_all(self) -> None:
        """Drop all cached state."""
        self._indexes.clear()
        self._engines.clear()
