"""
YAML frontmatter codec for markdown documents (character cards, lorebooks).

    ---
    id: lan
    name: Lan
    ---
    body...
"""

from __future__ import annotations

import re
from typing import Any, Dict, Tuple

import yaml

_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)


def parse_frontmatter(text: str) -> Tuple[Dict[str, Any], str]:
    """Split a document into (frontmatter mapping, body).

    A document without frontmatter yields ({}, text).

    Raises:
        yaml.YAMLError: When the frontmatter block is not valid YAML.
        ValueError: When the frontmatter is valid YAML but not a mapping.
    """
    match = _FRONTMATTER_RE.match(text)
    if not match:
        return {}, text
    data = yaml.safe_load(match.group(1)) or {}
    if not isinstance(data, dict):
        raise ValueError("Frontmatter must be a YAML mapping")
    return data, text[match.end():]


def stringify_frontmatter(data: Dict[str, Any], body: str) -> str:
    """Render a frontmatter mapping and body back into one document."""
    clean = {k: v for k, v in data.items() if v is not None}
    if not clean:
        return body
    header = yaml.safe_dump(
        clean, allow_unicode=True, sort_keys=False, default_flow_style=False,
    )
    body = body.lstrip("\n")
    return f"---\n{header}---\n{body}"
