"""
Lorebook Matcher — private + shared world-info, keyword activation

Sources:
    <character folder>/card.md   private lorebook (body section of the card)
    lorebooks/*.md               shared lorebooks (frontmatter + section)

Activation for one turn:
    1. load private and shared lorebooks (concurrently)
    2. keep enabled entries
    3. scan text = last `scan_depth` messages joined by newlines
    4. an entry qualifies if always_active, or if it has keys and one of
       them occurs in the scan text
    5. stable sort by ascending order, keep the first max_active_entries
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence

import yaml

from lorectl.blobstore import BlobStore, normalize_path
from lorectl.frontmatter import parse_frontmatter, stringify_frontmatter
from lorectl.lorebook import (
    matches_keywords,
    parse_lorebook_section,
    serialize_lorebook_section,
    update_lorebook_in_content,
)
from lorectl.sanitize import PromptSanitizer
from lorectl.slug import generate_slug
from lorectl.types import Lorebook, LorebookEntry

logger = logging.getLogger(__name__)

LOREBOOKS_FOLDER = "lorebooks"
CARD_FILENAME = "card.md"
MAX_ACTIVE_ENTRIES = 5


def card_path(character_key: str) -> str:
    """Path of the character card inside a character folder."""
    return normalize_path(f"{character_key}/{CARD_FILENAME}")


def _stem(path: str) -> str:
    name = path.rsplit("/", 1)[-1]
    return name[:-3] if name.endswith(".md") else name


class LorebookMatcher:
    """Loads lorebooks from the blob store and selects active entries."""

    def __init__(
        self,
        store: BlobStore,
        sanitizer: Optional[PromptSanitizer] = None,
        max_active_entries: int = MAX_ACTIVE_ENTRIES,
    ):
        self._store = store
        self._sanitizer = sanitizer or PromptSanitizer()
        self.max_active_entries = max_active_entries

    # -- Loading ---------------------------------------------------------------

    def load_private(self, character_key: str) -> Optional[Lorebook]:
        """Private lorebook from the character card, or None.

        None when the card is missing or its body has no entries.
        """
        path = card_path(character_key)
        if not self._store.exists(path):
            return None

        data, body = parse_frontmatter(self._store.read(path))
        entries = parse_lorebook_section(body)
        if not entries:
            return None

        char_id = data.get("id") or _stem(character_key)
        char_name = data.get("name") or char_id
        return Lorebook(
            id=f"private-{char_id}",
            name=f"{char_name}'s Lorebook",
            scope="private",
            entries=entries,
            source_path=path,
        )

    def load_shared(self) -> List[Lorebook]:
        """All shared lorebooks; malformed documents are skipped."""
        lorebooks: List[Lorebook] = []
        for path in self._store.list(LOREBOOKS_FOLDER):
            if not path.endswith(".md"):
                continue
            try:
                lorebooks.append(self._load_shared_file(path))
            except (OSError, ValueError, yaml.YAMLError) as e:
                logger.warning("Skipping shared lorebook %s: %s", path, e)
        return lorebooks

    def _load_shared_file(self, path: str) -> Lorebook:
        data, body = parse_frontmatter(self._store.read(path))
        stem = _stem(path)
        description = data.get("description")
        return Lorebook(
            id=str(data.get("id") or stem),
            name=str(data.get("name") or stem),
            description=str(description) if description is not None else None,
            scope="shared",
            entries=parse_lorebook_section(body),
            source_path=path,
        )

    # -- Activation ------------------------------------------------------------

    def get_active_entries(
        self,
        character_key: str,
        recent_messages: Sequence[str],
        scan_depth: int,
    ) -> List[LorebookEntry]:
        """Entries activated by the recent dialogue, ordered and capped."""
        with ThreadPoolExecutor(max_workers=2) as pool:
            private_future = pool.submit(self.load_private, character_key)
            shared_future = pool.submit(self.load_shared)
            private = private_future.result()
            shared = shared_future.result()

        candidates: List[LorebookEntry] = []
        if private is not None:
            candidates.extend(private.entries)
        for lorebook in shared:
            candidates.extend(lorebook.entries)

        scan_text = ""
        if scan_depth > 0:
            scan_text = "\n".join(list(recent_messages)[-scan_depth:])

        active = [
            entry for entry in candidates
            if entry.enabled and (
                entry.always_active
                or (entry.keys and matches_keywords(scan_text, entry.keys))
            )
        ]
        # sorted() is stable: equal orders keep private-then-shared order
        active = sorted(active, key=lambda e: e.order)
        logger.debug(
            "Lorebook: %d candidate(s), %d active for %s",
            len(candidates), len(active), character_key,
        )
        return active[: self.max_active_entries]

    def format_for_context(self, entries: Sequence[LorebookEntry]) -> str:
        """Render entries as sanitized "**Name:**" blocks."""
        if not entries:
            return ""
        blocks = []
        for entry in entries:
            name = self._sanitizer.sanitize(entry.name)
            content = self._sanitizer.sanitize(entry.content)
            blocks.append(f"**{name}:**\n{content}")
        return "\n\n".join(blocks).strip()

    # -- Saving ----------------------------------------------------------------

    def save_private(
        self, character_key: str, entries: Sequence[LorebookEntry],
    ) -> None:
        """Rewrite the lorebook section of the character card.

        Raises:
            FileNotFoundError: When the character has no card.
        """
        path = card_path(character_key)
        if not self._store.exists(path):
            raise FileNotFoundError(f"Character card not found: {path}")
        data, body = parse_frontmatter(self._store.read(path))
        new_body = update_lorebook_in_content(body, entries)
        self._store.modify(path, stringify_frontmatter(data, new_body))

    def save_shared(self, lorebook: Lorebook) -> str:
        """Create or overwrite a shared lorebook document; returns its path."""
        path = lorebook.source_path
        if not path:
            slug = generate_slug(lorebook.name) or generate_slug(lorebook.id) or "lorebook"
            path = normalize_path(f"{LOREBOOKS_FOLDER}/{slug}.md")

        meta = {
            "id": lorebook.id,
            "name": lorebook.name,
            "description": lorebook.description,
        }
        content = stringify_frontmatter(meta, serialize_lorebook_section(lorebook.entries))

        if self._store.exists(path):
            self._store.modify(path, content)
        else:
            self._store.create(path, content)
        lorebook.source_path = path
        return path
