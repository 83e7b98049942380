"""
Roleplay Data Model — Index, Memory, Lorebook, Character

Defines the per-character index document (messages + extracted memories),
lorebook entries, character cards and dialogue messages.

Python attributes are snake_case; the persisted JSON/YAML documents keep
their camelCase field names, so every type carries to_dict()/from_dict()
converters for its durable form.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

# ---------------------------------------------------------------------------
# Type aliases (Literal unions for validation)
# ---------------------------------------------------------------------------

MessageRole = Literal["user", "assistant"]
MemoryType = Literal["fact", "event", "preference", "relationship"]
LorebookScope = Literal["private", "shared"]

VALID_ROLES: set = {"user", "assistant"}
VALID_MEMORY_TYPES: set = {"fact", "event", "preference", "relationship"}
VALID_SCOPES: set = {"private", "shared"}

PREVIEW_MAX_CHARS = 100
DEFAULT_ENTRY_ORDER = 100


def _now_iso() -> str:
    """Current UTC time as ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def _generate_id(prefix: str = "mem") -> str:
    """Generate a unique ID with prefix."""
    short = uuid.uuid4().hex[:12]
    return f"{prefix}-{short}"


# ---------------------------------------------------------------------------
# Index entries
# ---------------------------------------------------------------------------

@dataclass
class MessageIndexEntry:
    """Lightweight pointer to a dialogue message (no full content)."""

    id: str
    role: MessageRole
    timestamp: str = field(default_factory=_now_iso)
    preview: Optional[str] = None

    def __post_init__(self):
        """Validate role."""
        if self.role not in VALID_ROLES:
            raise ValueError(f"Invalid role: {self.role!r}")

    @classmethod
    def for_message(cls, message: DialogueMessage) -> MessageIndexEntry:
        """Index entry for a full dialogue message (preview = first 100 chars)."""
        return cls(
            id=message.id,
            role=message.role,
            timestamp=message.timestamp,
            preview=message.content[:PREVIEW_MAX_CHARS],
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the index.json message shape."""
        d: Dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "timestamp": self.timestamp,
        }
        if self.preview is not None:
            d["preview"] = self.preview
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> MessageIndexEntry:
        """Deserialize from the index.json message shape."""
        return cls(
            id=str(d["id"]),
            role=d["role"],
            timestamp=d.get("timestamp") or _now_iso(),
            preview=d.get("preview"),
        )


@dataclass
class MemoryEntry:
    """
    A long-term memory extracted from dialogue.

    keywords are derived from content (see bm25.extract_keywords) whenever
    a memory enters the index; they are never edited by hand.
    """

    content: str
    type: MemoryType = "fact"
    importance: float = 0.5
    source_message_id: str = ""
    keywords: List[str] = field(default_factory=list)
    id: str = field(default_factory=lambda: _generate_id("mem"))
    created_at: str = field(default_factory=_now_iso)

    def __post_init__(self):
        """Validate type and importance range."""
        if self.type not in VALID_MEMORY_TYPES:
            raise ValueError(f"Invalid memory type: {self.type!r}")
        if not 0.0 <= self.importance <= 1.0:
            raise ValueError(f"Importance out of [0, 1]: {self.importance!r}")

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the index.json memory shape."""
        return {
            "id": self.id,
            "content": self.content,
            "type": self.type,
            "importance": self.importance,
            "sourceMessageId": self.source_message_id,
            "keywords": list(self.keywords),
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> MemoryEntry:
        """Deserialize from the index.json memory shape."""
        return cls(
            id=str(d["id"]),
            content=d.get("content", ""),
            type=d.get("type", "fact"),
            importance=float(d.get("importance", 0.5)),
            source_message_id=d.get("sourceMessageId", ""),
            keywords=list(d.get("keywords", [])),
            created_at=d.get("createdAt") or _now_iso(),
        )


@dataclass
class CharacterIndex:
    """
    Per-character index document (index.json).

    Invariant: message_count == len(messages) after every mutation.
    """

    message_count: int = 0
    last_updated: str = field(default_factory=_now_iso)
    messages: List[MessageIndexEntry] = field(default_factory=list)
    memories: List[MemoryEntry] = field(default_factory=list)

    @classmethod
    def empty(cls) -> CharacterIndex:
        """Fresh empty index."""
        return cls()

    def sync_count(self) -> None:
        """Restore the message_count invariant."""
        self.message_count = len(self.messages)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the index.json document shape."""
        return {
            "messageCount": self.message_count,
            "lastUpdated": self.last_updated,
            "messages": [m.to_dict() for m in self.messages],
            "memories": [m.to_dict() for m in self.memories],
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> CharacterIndex:
        """Deserialize from the index.json document shape."""
        if not isinstance(d, dict):
            raise ValueError("Index document must be a JSON object")
        messages = [MessageIndexEntry.from_dict(m) for m in d.get("messages", [])]
        memories = [MemoryEntry.from_dict(m) for m in d.get("memories", [])]
        index = cls(
            message_count=len(messages),
            last_updated=d.get("lastUpdated") or _now_iso(),
            messages=messages,
            memories=memories,
        )
        return index


# ---------------------------------------------------------------------------
# Lorebook
# ---------------------------------------------------------------------------

@dataclass
class LorebookEntry:
    """Keyword-triggered world-info entry."""

    name: str
    content: str = ""
    keys: List[str] = field(default_factory=list)
    always_active: bool = False
    # Lower = earlier/weaker, higher = later/stronger
    order: int = DEFAULT_ENTRY_ORDER
    enabled: bool = True
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        """Serialize entry to a plain dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "keys": list(self.keys),
            "content": self.content,
            "alwaysActive": self.always_active,
            "order": self.order,
            "enabled": self.enabled,
        }


@dataclass
class Lorebook:
    """Lorebook container: one private per character, any number shared."""

    id: str
    name: str
    scope: LorebookScope = "shared"
    entries: List[LorebookEntry] = field(default_factory=list)
    source_path: str = ""
    description: Optional[str] = None

    def __post_init__(self):
        """Validate scope."""
        if self.scope not in VALID_SCOPES:
            raise ValueError(f"Invalid lorebook scope: {self.scope!r}")


# ---------------------------------------------------------------------------
# Characters and dialogue
# ---------------------------------------------------------------------------

@dataclass
class CharacterCard:
    """Character card: card.md frontmatter plus its folder location."""

    id: str
    name: str
    description: str = ""
    personality: str = ""
    scenario: str = ""
    first_message: str = ""
    created_at: str = field(default_factory=_now_iso)
    avatar: Optional[str] = None
    folder_path: str = ""

    _FIELD_NAMES = {
        "id": "id",
        "name": "name",
        "description": "description",
        "personality": "personality",
        "scenario": "scenario",
        "firstMessage": "first_message",
        "createdAt": "created_at",
        "avatar": "avatar",
    }

    def to_frontmatter(self) -> Dict[str, Any]:
        """Frontmatter mapping (camelCase keys, avatar only when set)."""
        data: Dict[str, Any] = {}
        for key, attr in self._FIELD_NAMES.items():
            value = getattr(self, attr)
            if attr == "avatar" and not value:
                continue
            data[key] = value
        return data

    @classmethod
    def from_frontmatter(
        cls, data: Dict[str, Any], folder_path: str = "",
    ) -> CharacterCard:
        """Build a card from frontmatter, ignoring unknown keys."""
        kwargs: Dict[str, Any] = {}
        for key, attr in cls._FIELD_NAMES.items():
            if key in data and data[key] is not None:
                kwargs[attr] = str(data[key])
        if "id" not in kwargs or "name" not in kwargs:
            raise ValueError("Character card requires 'id' and 'name'")
        return cls(folder_path=folder_path, **kwargs)


@dataclass
class DialogueMessage:
    """A full dialogue message as exchanged with the LLM."""

    role: MessageRole
    content: str
    id: str = field(default_factory=lambda: _generate_id("msg"))
    timestamp: str = field(default_factory=_now_iso)

    def __post_init__(self):
        """Validate role."""
        if self.role not in VALID_ROLES:
            raise ValueError(f"Invalid role: {self.role!r}")

    def to_chat_message(self) -> Dict[str, str]:
        """OpenAI-style {role, content} message."""
        return {"role": self.role, "content": self.content}
