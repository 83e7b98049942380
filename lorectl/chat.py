"""
Chat Service — one roleplay turn, end to end

    user text
      -> persisted (message document + index entry)
      -> memories (BM25) and lorebook entries (keywords), retrieved concurrently
      -> ContextAssembler -> LLM (streaming or not)
      -> assistant reply persisted
      -> background memory extraction (optional)

The service owns its IndexCache; there is no module-level cache.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

import requests

from lorectl.blobstore import BlobStore, FolderBlobStore
from lorectl.characters import CharacterRepository, DialogueLog
from lorectl.config import LoreConfig
from lorectl.context import (
    ChatMessage,
    ContextAssembler,
    GenerationOptions,
    PromptContext,
    format_memories,
)
from lorectl.extract import BackgroundExtractor, MemoryExtractor
from lorectl.index import IndexCache
from lorectl.llm import LLMClient
from lorectl.matcher import LorebookMatcher
from lorectl.presets import LoadedPresets, load_presets
from lorectl.sanitize import PromptSanitizer
from lorectl.types import (
    CharacterCard,
    DialogueMessage,
    LorebookEntry,
    MemoryEntry,
    MessageIndexEntry,
)

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 20


@dataclass
class RetrievedContext:
    """What retrieval found for one turn, before formatting."""
    memories: List[MemoryEntry]
    lore_entries: List[LorebookEntry]
    prompt: PromptContext


class ChatService:
    """Wires storage, retrieval, prompt assembly and the LLM transport."""

    def __init__(
        self,
        store: BlobStore,
        llm: LLMClient,
        config: Optional[LoreConfig] = None,
        extractor: Optional[MemoryExtractor] = None,
    ):
        self.config = config or LoreConfig()
        self.store = store
        self.llm = llm
        self.sanitizer = PromptSanitizer()
        self.index = IndexCache(store)
        self.matcher = LorebookMatcher(
            store, self.sanitizer, self.config.lorebook.max_active_entries,
        )
        self.characters = CharacterRepository(store)
        self.dialogue = DialogueLog(store, self.index)
        self.assembler = ContextAssembler()
        self._background: Optional[BackgroundExtractor] = None
        if extractor is not None:
            self._background = BackgroundExtractor(extractor, self.index.add_memories)

    @classmethod
    def from_config(
        cls,
        config: LoreConfig,
        session: Optional[requests.Session] = None,
    ) -> ChatService:
        """Folder-backed service; extraction is enabled by config."""
        store = FolderBlobStore(config.storage.root)
        llm = LLMClient(config.llm, session=session)
        extractor = None
        if config.extraction.enabled:
            provider = config.extraction.resolve_provider(config.llm)
            extractor = MemoryExtractor(
                LLMClient(provider, session=session),
                temperature=config.extraction.temperature,
            )
        return cls(store, llm, config=config, extractor=extractor)

    # -- Options -----------------------------------------------------------------

    def default_options(self) -> GenerationOptions:
        gen = self.config.generation
        return GenerationOptions(
            temperature=gen.temperature,
            top_p=gen.top_p,
            response_length=gen.response_length,
        )

    def presets(self) -> LoadedPresets:
        return load_presets(self.store)

    # -- Retrieval ---------------------------------------------------------------

    def retrieve(
        self,
        character_key: str,
        query: str,
        recent_texts: Sequence[str],
    ) -> RetrievedContext:
        """Search memories and activate lorebook entries for one turn."""
        retrieval = self.config.retrieval
        with ThreadPoolExecutor(max_workers=2) as pool:
            memories_future = pool.submit(
                self.index.search_memories,
                character_key, query, retrieval.memory_limit, retrieval.min_score,
            )
            lore_future = pool.submit(
                self.matcher.get_active_entries,
                character_key, list(recent_texts), self.config.lorebook.scan_depth,
            )
            memories = memories_future.result()
            lore_entries = lore_future.result()

        prompt = PromptContext(
            relevant_memories=format_memories(memories, self.sanitizer),
            world_info=self.matcher.format_for_context(lore_entries),
        )
        logger.debug(
            "Retrieved %d memory(ies) and %d lorebook entry(ies) for %s",
            len(memories), len(lore_entries), character_key,
        )
        return RetrievedContext(memories, lore_entries, prompt)

    def prepare_messages(
        self,
        character: CharacterCard,
        history: Sequence[DialogueMessage],
        options: Optional[GenerationOptions] = None,
    ) -> Tuple[List[ChatMessage], RetrievedContext]:
        """Messages for the LLM; history must end with the user's turn."""
        query = history[-1].content if history else ""
        retrieved = self.retrieve(
            character.folder_path, query, [m.content for m in history],
        )
        messages = self.assembler.build_messages(
            character, history, self.presets(), options or self.default_options(),
            retrieved.prompt,
        )
        return messages, retrieved

    # -- Turn ----------------------------------------------------------------------

    def record(self, character_key: str, message: DialogueMessage) -> None:
        """Persist a message document and its index entry."""
        self.dialogue.write(character_key, message)
        self.index.add_message(character_key, MessageIndexEntry.for_message(message))

    def chat_turn(
        self,
        character: CharacterCard,
        history: Sequence[DialogueMessage],
        user_text: str,
        options: Optional[GenerationOptions] = None,
        on_chunk: Optional[Callable[[str], None]] = None,
    ) -> DialogueMessage:
        """Run one turn and return the persisted assistant message.

        With on_chunk the reply is streamed and each delta is passed to it.
        """
        key = character.folder_path
        options = options or self.default_options()

        user_msg = DialogueMessage(role="user", content=user_text)
        self.record(key, user_msg)

        window = list(history)[-(HISTORY_WINDOW - 1):] + [user_msg]
        messages, _ = self.prepare_messages(character, window, options)

        if on_chunk is None:
            reply = self.llm.complete(messages, options.temperature, options.top_p)
        else:
            parts: List[str] = []
            for delta in self.llm.stream(messages, options.temperature, options.top_p):
                parts.append(delta)
                on_chunk(delta)
            reply = "".join(parts)

        assistant_msg = DialogueMessage(role="assistant", content=reply)
        self.record(key, assistant_msg)

        if self._background is not None and reply:
            self._background.submit(key, user_text, reply, assistant_msg.id)
        return assistant_msg

    def remove_message(self, character_key: str, message_id: str) -> None:
        """Drop a message from the index along with its memories."""
        self.index.remove_message(character_key, message_id)

    def close(self) -> None:
        """Drain pending background extractions."""
        if self._background is not None:
            self._background.shutdown(wait=True)
