"""
Memory Extraction — summarize a dialogue turn into long-term memories

A small/cheap model reads one user/assistant exchange and returns a JSON
array of facts worth remembering:

    [{"content": "User's name is Minh", "type": "fact", "importance": 0.9}]

Extraction never interrupts the chat: transport errors and malformed output
are logged and yield no memories.  BackgroundExtractor runs extraction off
the chat path and hands results to IndexCache.add_memories().
"""

from __future__ import annotations

import json
import logging
import re
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional

import requests

from lorectl.bm25 import extract_keywords
from lorectl.llm import LLMClient, LLMError
from lorectl.types import VALID_MEMORY_TYPES, MemoryEntry

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = """\
Analyze the following conversation and extract the important information \
worth remembering.

Only extract information with long-term value, such as:
- Facts about the user (name, age, occupation, preferences)
- Important events that happened
- Relationships between characters
- Decisions or commitments made by the user

Do NOT extract temporary information such as passing moods or simple questions.

User: {user_message}
AI: {ai_message}

Return a JSON array (do NOT use a markdown code block):
[{{"content": "short description", "type": "fact|event|preference|relationship", "importance": 0.1-1.0}}]

If there is nothing important, return: []"""

_FENCE_RE = re.compile(r"```(?:json)?[ \t]*\n?|```")
_decoder = json.JSONDecoder()


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

def _first_json_array(text: str) -> Optional[List[Any]]:
    """First well-formed JSON array embedded in text, or None."""
    pos = text.find("[")
    while pos != -1:
        try:
            value, _ = _decoder.raw_decode(text, pos)
        except json.JSONDecodeError:
            pos = text.find("[", pos + 1)
            continue
        if isinstance(value, list):
            return value
        pos = text.find("[", pos + 1)
    return None


def _valid_item(item: Any) -> bool:
    if not isinstance(item, dict):
        return False
    content = item.get("content")
    importance = item.get("importance")
    return (
        isinstance(content, str)
        and bool(content.strip())
        and item.get("type") in VALID_MEMORY_TYPES
        and isinstance(importance, (int, float))
        and not isinstance(importance, bool)
        and 0.0 <= importance <= 1.0
    )


def parse_extraction_response(text: str) -> List[Dict[str, Any]]:
    """Validated items from a model response; [] when nothing usable."""
    if not isinstance(text, str):
        logger.warning("Extraction response is not text: %s", type(text).__name__)
        return []
    if not text:
        return []
    cleaned = _FENCE_RE.sub("", text.strip())
    items = _first_json_array(cleaned)
    if items is None:
        logger.warning("Extraction response has no JSON array: %r", text[:200])
        return []
    valid = [item for item in items if _valid_item(item)]
    if len(valid) < len(items):
        logger.debug("Dropped %d invalid extraction item(s)", len(items) - len(valid))
    return valid


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

class MemoryExtractor:
    """Calls the extraction model and converts its output to MemoryEntry."""

    def __init__(self, client: LLMClient, temperature: float = 0.1):
        self._client = client
        self.temperature = temperature

    def extract_memories(
        self, user_message: str, ai_message: str, source_message_id: str,
    ) -> List[MemoryEntry]:
        """Memories for one exchange, linked to source_message_id."""
        prompt = EXTRACTION_PROMPT.format(
            user_message=user_message, ai_message=ai_message,
        )
        try:
            response = self._client.complete(
                [{"role": "user", "content": prompt}],
                temperature=self.temperature,
            )
        except (LLMError, requests.RequestException) as e:
            logger.warning("Memory extraction failed: %s", e)
            return []

        return [
            MemoryEntry(
                content=item["content"].strip(),
                type=item["type"],
                importance=float(item["importance"]),
                source_message_id=source_message_id,
                keywords=extract_keywords(item["content"]),
            )
            for item in parse_extraction_response(response)
        ]


class BackgroundExtractor:
    """
    Fire-and-forget extraction on a worker pool.

    on_result receives (character_key, memories) when extraction produced
    anything; failures are logged and never reach the caller.
    """

    def __init__(
        self,
        extractor: MemoryExtractor,
        on_result: Callable[[str, List[MemoryEntry]], Any],
        max_workers: int = 2,
    ):
        self._extractor = extractor
        self._on_result = on_result
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="lorectl-extract",
        )

    def submit(
        self,
        character_key: str,
        user_message: str,
        ai_message: str,
        source_message_id: str,
    ) -> Future:
        """Schedule extraction for one exchange."""
        return self._pool.submit(
            self._run, character_key, user_message, ai_message, source_message_id,
        )

    def _run(
        self,
        character_key: str,
        user_message: str,
        ai_message: str,
        source_message_id: str,
    ) -> List[MemoryEntry]:
        try:
            memories = self._extractor.extract_memories(
                user_message, ai_message, source_message_id,
            )
            if memories:
                self._on_result(character_key, memories)
                logger.info(
                    "Stored %d extracted memory(ies) for %s",
                    len(memories), character_key,
                )
            return memories
        except Exception:
            logger.exception("Background extraction failed for %s", character_key)
            return []

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work; wait=True drains pending extractions."""
        self._pool.shutdown(wait=wait)
