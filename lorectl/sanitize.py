"""
Prompt Sanitizer — neutralize adversarial text before LLM injection

Applied to text sourced from editable documents (lorebook entries, stored
memories) before it is concatenated into a prompt. Rules run in order:

    1. fenced code blocks      -> "[code block removed]"
    2. inline code spans       -> "[code]"
    3. role markers            (system: / assistant: / user:) stripped
    4. instruction delimiters  ([INST], [/INST], <<SYS>>, <</SYS>>, <|...|>) stripped
    5. 3+ consecutive newlines -> 2

This is a best-effort denylist, not a security boundary.
"""

from __future__ import annotations

import re
from typing import List, Optional, Sequence, Tuple

CODE_BLOCK_PLACEHOLDER = "[code block removed]"
INLINE_CODE_PLACEHOLDER = "[code]"

SanitizeRule = Tuple[re.Pattern, str]

DEFAULT_RULES: List[SanitizeRule] = [
    (re.compile(r"```[\s\S]*?```"), CODE_BLOCK_PLACEHOLDER),
    (re.compile(r"`[^`]+`"), INLINE_CODE_PLACEHOLDER),
    (re.compile(r"\b(?:system|assistant|user):\s*", re.IGNORECASE), ""),
    (re.compile(r"\[INST\]|\[/INST\]|<</?SYS>>|<\|[^>]+\|>", re.IGNORECASE), ""),
    (re.compile(r"\n{3,}"), "\n\n"),
]


class PromptSanitizer:
    """Ordered regex rewrite rules applied to untrusted text."""

    def __init__(self, rules: Optional[Sequence[SanitizeRule]] = None):
        """Initialize with the default rule list unless rules are given."""
        self._rules = list(rules if rules is not None else DEFAULT_RULES)

    def sanitize(self, text: str) -> str:
        """Apply every rule in order."""
        if not text:
            return ""
        for pattern, replacement in self._rules:
            text = pattern.sub(replacement, text)
        return text


_default = PromptSanitizer()


def sanitize_for_llm(text: str) -> str:
    """Sanitize text with the default rules."""
    return _default.sanitize(text)
