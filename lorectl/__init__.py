"""
lorectl — long-term memory and lorebook context for LLM roleplay chat.

Per-character index of dialogue and extracted memories, BM25 memory
retrieval, keyword-triggered lorebook entries, and deterministic prompt
assembly over a plain folder of JSON and markdown documents.
"""

__version__ = "0.1.0"

from lorectl.types import (
    CharacterCard,
    CharacterIndex,
    DialogueMessage,
    Lorebook,
    LorebookEntry,
    MemoryEntry,
    MessageIndexEntry,
)
from lorectl.blobstore import FolderBlobStore, MemoryBlobStore
from lorectl.bm25 import BM25Engine
from lorectl.index import IndexCache
from lorectl.matcher import LorebookMatcher
from lorectl.sanitize import PromptSanitizer
from lorectl.context import ContextAssembler, PromptContext
from lorectl.config import LoreConfig

__all__ = [
    "__version__",
    "CharacterCard",
    "CharacterIndex",
    "DialogueMessage",
    "Lorebook",
    "LorebookEntry",
    "MemoryEntry",
    "MessageIndexEntry",
    "FolderBlobStore",
    "MemoryBlobStore",
    "BM25Engine",
    "IndexCache",
    "LorebookMatcher",
    "PromptSanitizer",
    "ContextAssembler",
    "PromptContext",
    "LoreConfig",
]
