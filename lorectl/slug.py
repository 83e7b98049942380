"""
Slug generation for character folders and shared lorebook files.

Transliterates Vietnamese and common European letters to ASCII; scripts
without a mapping (CJK, emoji) are dropped, and generate_unique_slug falls
back to "character-<suffix>".

    "Chuyện 2 nàng dâu" -> "chuyen-2-nang-dau"
    "Café München"      -> "cafe-muenchen"
"""

from __future__ import annotations

import re
import time
import unicodedata
from typing import Iterable, Optional

# Letters that do not decompose into base + combining mark
_CHAR_MAP = {
    "đ": "d",
    # German/European
    "ä": "ae", "ö": "oe", "ü": "ue", "ß": "ss",
    # French
    "œ": "oe", "æ": "ae",
    # Polish
    "ł": "l",
    # Turkish
    "ı": "i",
    # Nordic
    "ø": "o",
}

_NON_WORD_RE = re.compile(r"[^a-z0-9\s_-]")
_SEPARATOR_RE = re.compile(r"[\s_]+")
_HYPHENS_RE = re.compile(r"-+")


def transliterate(text: str) -> str:
    """Map accented/special letters to ASCII, dropping combining marks."""
    out = []
    for char in text:
        lower = char.lower()
        if lower in _CHAR_MAP:
            mapped = _CHAR_MAP[lower]
            out.append(mapped if char == lower else mapped.upper())
            continue
        decomposed = unicodedata.normalize("NFD", char)
        out.append("".join(c for c in decomposed if not unicodedata.combining(c)))
    return "".join(out)


def generate_slug(name: str) -> str:
    """URL-safe slug for a display name (may be empty for CJK-only names)."""
    slug = transliterate(name).lower().strip()
    slug = slug.encode("ascii", "ignore").decode("ascii")
    slug = _NON_WORD_RE.sub("", slug)
    slug = _SEPARATOR_RE.sub("-", slug)
    slug = _HYPHENS_RE.sub("-", slug)
    return slug.strip("-")


def _base36(number: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if number == 0:
        return "0"
    out = []
    while number:
        number, rem = divmod(number, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


def generate_unique_slug(
    name: str,
    existing: Iterable[str] = (),
    *,
    now_ms: Optional[int] = None,
) -> str:
    """Slug with a compact base36 timestamp suffix.

    A collision with an existing slug (same name within one millisecond)
    gets a numeric suffix appended.
    """
    stamp = _base36(now_ms if now_ms is not None else int(time.time() * 1000))
    base = generate_slug(name) or "character"
    candidate = f"{base}-{stamp}"
    taken = set(existing)
    n = 2
    unique = candidate
    while unique in taken:
        unique = f"{candidate}-{n}"
        n += 1
    return unique
