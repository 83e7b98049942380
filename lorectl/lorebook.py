"""
Lorebook markdown format — parser and serializer

A lorebook lives in a markdown body (character card or shared lorebook
document) under a level-2 section:

    ## Lorebook

    ### [Entry Name]
    - keys: keyword1, keyword2
    - always_active: false
    - order: 100
    - id: lore-1

    Entry content here...

Parsing rules:
  - The region runs from "## Lorebook" to the next level-2 header or EOF.
  - "### [Name]" starts an entry.
  - "- key: value" lines are metadata only while the entry has no content
    yet. Known fields: keys, always_active, order, enabled, id. Unknown keys
    are consumed and ignored.
  - The first other non-blank line starts the content, which runs to the
    next entry header and is trimmed of surrounding blank lines.

serialize_lorebook_section() is the inverse; an enabled entry omits the
"enabled" line and parses back as enabled.
"""

from __future__ import annotations

import enum
import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from lorectl.types import DEFAULT_ENTRY_ORDER, LorebookEntry

logger = logging.getLogger(__name__)

LOREBOOK_SECTION_RE = re.compile(r"^##\s+Lorebook\s*$", re.MULTILINE)
NEXT_SECTION_RE = re.compile(r"^##\s+[^#]", re.MULTILINE)
ENTRY_HEADER_RE = re.compile(r"^###\s+\[([^\]]+)\]\s*$")
METADATA_RE = re.compile(r"^-\s+(\w+):[ \t]*(.*?)\s*$")


# ---------------------------------------------------------------------------
# Metadata fields
# ---------------------------------------------------------------------------

class MetadataField(enum.Enum):
    """Closed set of entry metadata keys."""

    KEYS = "keys"
    ALWAYS_ACTIVE = "always_active"
    ORDER = "order"
    ENABLED = "enabled"
    ID = "id"

    @classmethod
    def lookup(cls, key: str) -> Optional[MetadataField]:
        """Field for a metadata key, or None for an unknown key."""
        key = key.lower()
        if key == "alwaysactive":
            return cls.ALWAYS_ACTIVE
        try:
            return cls(key)
        except ValueError:
            return None


def parse_keys(value: str) -> List[str]:
    """Comma-separated keys -> trimmed, lowercased, empties dropped."""
    return [k.strip().lower() for k in value.split(",") if k.strip()]


def parse_order(value: str) -> int:
    """Integer order, DEFAULT_ENTRY_ORDER when unparseable."""
    try:
        return int(value.strip())
    except ValueError:
        return DEFAULT_ENTRY_ORDER


@dataclass
class _EntryDraft:
    """Entry under construction while scanning lines."""

    name: str
    keys: List[str] = field(default_factory=list)
    always_active: bool = False
    order: int = DEFAULT_ENTRY_ORDER
    enabled: bool = True
    id: Optional[str] = None
    lines: List[str] = field(default_factory=list)
    in_metadata: bool = True

    def apply(self, meta: MetadataField, value: str) -> None:
        """Apply one metadata field; every member of MetadataField is handled."""
        if meta is MetadataField.KEYS:
            self.keys = parse_keys(value)
        elif meta is MetadataField.ALWAYS_ACTIVE:
            self.always_active = value.strip().lower() == "true"
        elif meta is MetadataField.ORDER:
            self.order = parse_order(value)
        elif meta is MetadataField.ENABLED:
            self.enabled = value.strip().lower() != "false"
        elif meta is MetadataField.ID:
            self.id = value.strip() or None

    def build(self) -> LorebookEntry:
        """Freeze the draft into a LorebookEntry."""
        return LorebookEntry(
            id=self.id or str(uuid.uuid4()),
            name=self.name,
            keys=self.keys,
            content=_trim_blank_lines(self.lines),
            always_active=self.always_active,
            order=self.order,
            enabled=self.enabled,
        )


def _trim_blank_lines(lines: Sequence[str]) -> str:
    """Join lines, dropping leading and trailing blank lines."""
    start, end = 0, len(lines)
    while start < end and not lines[start].strip():
        start += 1
    while end > start and not lines[end - 1].strip():
        end -= 1
    return "\n".join(lines[start:end])


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def find_lorebook_region(content: str) -> Optional[tuple]:
    """(start, body_start, end) offsets of the lorebook region, or None.

    start is the offset of the "## Lorebook" header, body_start the offset
    right after it, end the offset of the next level-2 header (or EOF).
    """
    match = LOREBOOK_SECTION_RE.search(content)
    if not match:
        return None
    body_start = match.end()
    nxt = NEXT_SECTION_RE.search(content, body_start)
    end = nxt.start() if nxt else len(content)
    return match.start(), body_start, end


def parse_lorebook_section(content: str) -> List[LorebookEntry]:
    """Parse the lorebook entries out of a markdown body."""
    region = find_lorebook_region(content)
    if region is None:
        return []
    _, body_start, end = region
    return parse_lorebook_entries(content[body_start:end])


def parse_lorebook_entries(section: str) -> List[LorebookEntry]:
    """Parse entries from the text inside a lorebook region."""
    entries: List[LorebookEntry] = []
    draft: Optional[_EntryDraft] = None

    for line in section.splitlines():
        header = ENTRY_HEADER_RE.match(line)
        if header:
            if draft is not None:
                entries.append(draft.build())
            draft = _EntryDraft(name=header.group(1).strip())
            continue

        if draft is None:
            continue

        if draft.in_metadata:
            meta_match = METADATA_RE.match(line)
            if meta_match:
                key, value = meta_match.groups()
                meta = MetadataField.lookup(key)
                if meta is None:
                    logger.debug("Ignoring unknown lorebook metadata key %r", key)
                else:
                    draft.apply(meta, value)
                continue
            if not line.strip():
                continue
            draft.in_metadata = False

        draft.lines.append(line)

    if draft is not None:
        entries.append(draft.build())

    return entries


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def serialize_entry(entry: LorebookEntry) -> List[str]:
    """Lines for one entry: header, metadata, blank, content, blank."""
    lines = [
        f"### [{entry.name}]",
        f"- keys: {', '.join(entry.keys)}",
        f"- always_active: {'true' if entry.always_active else 'false'}",
        f"- order: {entry.order}",
    ]
    if not entry.enabled:
        lines.append("- enabled: false")
    lines.append(f"- id: {entry.id}")
    lines.append("")
    lines.append(entry.content)
    lines.append("")
    return lines


def serialize_lorebook_section(entries: Sequence[LorebookEntry]) -> str:
    """Render entries as a "## Lorebook" section ("" when there are none)."""
    if not entries:
        return ""
    lines = ["## Lorebook", ""]
    for entry in entries:
        lines.extend(serialize_entry(entry))
    return "\n".join(lines)


def update_lorebook_in_content(content: str, entries: Sequence[LorebookEntry]) -> str:
    """Replace (or append) the lorebook section, keeping the other sections."""
    section = serialize_lorebook_section(entries)
    region = find_lorebook_region(content)

    if region is None:
        if not section:
            return content
        if not content.strip():
            return section
        return content.strip() + "\n\n" + section

    start, _, end = region
    before = content[:start].rstrip()
    after = content[end:]

    parts = [p for p in (before, section.strip(), after.strip()) if p]
    return "\n\n".join(parts).strip() + "\n"


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------

def matches_keywords(text: str, keys: Sequence[str]) -> bool:
    """True if any key occurs in text (case-insensitive substring match).

    Plain containment: "an" matches inside "banana".
    """
    lower = text.lower()
    return any(k.lower() in lower for k in keys if k)
