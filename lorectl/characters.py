"""
Character Repository — card.md documents and dialogue message files

Layout inside the blob store:

    characters/<slug>/card.md                 frontmatter card + private lorebook
    characters/<slug>/index.json              IndexCache document
    characters/<slug>/messages/<msg-id>.md    one dialogue message per file

The character key used by IndexCache and LorebookMatcher is the folder path
("characters/<slug>").
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import yaml

from lorectl.blobstore import BlobStore, normalize_path
from lorectl.frontmatter import parse_frontmatter, stringify_frontmatter
from lorectl.index import IndexCache
from lorectl.matcher import card_path
from lorectl.slug import generate_unique_slug
from lorectl.types import CharacterCard, DialogueMessage

logger = logging.getLogger(__name__)

CHARACTERS_FOLDER = "characters"
MESSAGES_FOLDER = "messages"


def _folder_name(path: str) -> str:
    return path.rsplit("/", 1)[-1]


class CharacterRepository:
    """Create, load and list character cards."""

    def __init__(self, store: BlobStore):
        self._store = store

    def folder_for(self, slug: str) -> str:
        """Character key for a slug (already-qualified keys pass through)."""
        slug = normalize_path(slug)
        if slug.startswith(f"{CHARACTERS_FOLDER}/"):
            return slug
        return f"{CHARACTERS_FOLDER}/{slug}"

    def load(self, key: str) -> CharacterCard:
        """Load a character card.

        Raises:
            FileNotFoundError: When the folder has no card.md.
            ValueError: When the frontmatter lacks id or name.
        """
        folder = self.folder_for(key)
        data, _ = parse_frontmatter(self._store.read(card_path(folder)))
        return CharacterCard.from_frontmatter(data, folder_path=folder)

    def exists(self, key: str) -> bool:
        """Return True if the character has a card."""
        return self._store.exists(card_path(self.folder_for(key)))

    def list_characters(self) -> List[CharacterCard]:
        """All loadable characters; broken cards are logged and skipped."""
        cards: List[CharacterCard] = []
        for folder in self._list_folders():
            if not self._store.exists(card_path(folder)):
                continue
            try:
                cards.append(self.load(folder))
            except (OSError, ValueError, yaml.YAMLError) as e:
                logger.warning("Skipping character %s: %s", folder, e)
        return cards

    def _list_folders(self) -> List[str]:
        list_folders = getattr(self._store, "list_folders", None)
        if list_folders is None:
            return []
        return list_folders(CHARACTERS_FOLDER)

    def create(
        self,
        name: str,
        description: str = "",
        personality: str = "",
        scenario: str = "",
        first_message: str = "",
        avatar: Optional[str] = None,
    ) -> CharacterCard:
        """Create a new character folder with its card."""
        if not name.strip():
            raise ValueError("Character name must not be empty")
        existing = [_folder_name(f) for f in self._list_folders()]
        slug = generate_unique_slug(name, existing)
        card = CharacterCard(
            id=slug,
            name=name.strip(),
            description=description,
            personality=personality,
            scenario=scenario,
            first_message=first_message,
            avatar=avatar,
            folder_path=f"{CHARACTERS_FOLDER}/{slug}",
        )
        self._store.create(
            card_path(card.folder_path),
            stringify_frontmatter(card.to_frontmatter(), ""),
        )
        logger.info("Created character %s (%s)", card.name, card.folder_path)
        return card

    def save(self, card: CharacterCard) -> None:
        """Rewrite the card frontmatter, keeping the body (private lorebook)."""
        path = card_path(card.folder_path)
        _, body = parse_frontmatter(self._store.read(path))
        self._store.modify(path, stringify_frontmatter(card.to_frontmatter(), body))


# ---------------------------------------------------------------------------
# Dialogue messages
# ---------------------------------------------------------------------------

def message_path(character_key: str, message_id: str) -> str:
    """Path of one dialogue message document."""
    return normalize_path(f"{character_key}/{MESSAGES_FOLDER}/{message_id}.md")


class DialogueLog:
    """Full dialogue messages, ordered by the character index."""

    def __init__(self, store: BlobStore, index: IndexCache):
        self._store = store
        self._index = index

    def write(self, character_key: str, message: DialogueMessage) -> None:
        """Persist the message body (frontmatter id/role/timestamp)."""
        meta = {"id": message.id, "role": message.role, "timestamp": message.timestamp}
        self._store.create(
            message_path(character_key, message.id),
            stringify_frontmatter(meta, message.content),
        )

    def read(self, character_key: str, message_id: str) -> DialogueMessage:
        """Load one message document."""
        data, body = parse_frontmatter(
            self._store.read(message_path(character_key, message_id)),
        )
        return DialogueMessage(
            id=str(data.get("id", message_id)),
            role=data.get("role", "user"),
            content=body,
            timestamp=str(data.get("timestamp", "")),
        )

    def history(
        self, character_key: str, limit: Optional[int] = None,
    ) -> List[DialogueMessage]:
        """Indexed messages in dialogue order; missing files are skipped.

        Messages removed from the index are not returned even if their
        document remains.
        """
        entries = self._index.load(character_key).messages
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        out: List[DialogueMessage] = []
        for entry in entries:
            try:
                out.append(self.read(character_key, entry.id))
            except FileNotFoundError:
                logger.debug("Message %s has no document", entry.id)
        return out


def first_message_history(card: CharacterCard) -> Sequence[DialogueMessage]:
    """Opening assistant message from the card, if any."""
    if not card.first_message:
        return []
    return [DialogueMessage(role="assistant", content=card.first_message)]

