"""
lorectl MCP Tools — memory, lorebook and prompt-context tools.

Thin wrappers around ChatService components.  Every tool returns a status
dict ({"status": "ok", ...} or {"status": "error", "message": ...}) and
never raises to the MCP client; timing is logged in a finally block.

Tools:
    RETRIEVAL:  memory_search     — BM25 search over a character's memories
                lorebook_active   — keyword-activated lorebook entries
                context_build     — full system prompt + message list
    WRITE:      memory_add        — store a memory (keywords derived)
                message_remove    — drop a message and its memories
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

from lorectl.chat import ChatService
from lorectl.types import DialogueMessage, MemoryEntry

logger = logging.getLogger(__name__)


def register_lore_tools(mcp, service: ChatService) -> None:
    """
    Register the lorectl MCP tools on a FastMCP server instance.

    Args:
        mcp: FastMCP server instance (anything exposing ``tool()``).
        service: ChatService owning the store, index and matcher.
    """

    def _character_key(character: str) -> str:
        key = service.characters.folder_for(character)
        if not service.characters.exists(key):
            raise ValueError(f"Unknown character: {character}")
        return key

    def _done(tool: str, t0: float, outcome: str) -> None:
        logger.debug(
            "%s %s in %.1f ms", tool, outcome, (time.monotonic() - t0) * 1000,
        )

    # =====================================================================
    # RETRIEVAL
    # =====================================================================

    @mcp.tool()
    def memory_search(
        character: str,
        query: str,
        limit: int = 5,
        min_score: float = 0.5,
    ) -> Dict[str, Any]:
        """BM25 search over a character's long-term memories.

        Args:
            character: Character slug or folder (characters/<slug>).
            query: Free-text query.
            limit: Maximum results (default 5).
            min_score: Drop results scoring below this (default 0.5).

        Returns:
            results: [{id, content, type, importance, score}] best first.
        """
        t0 = time.monotonic()
        outcome = "ok"
        try:
            key = _character_key(character)
            scored = service.index.search_memories_scored(key, query, limit, min_score)
            results = [
                {
                    "id": m.id,
                    "content": m.content,
                    "type": m.type,
                    "importance": m.importance,
                    "score": round(score, 4),
                }
                for m, score in scored
            ]
            return {"status": "ok", "character": key, "results": results,
                    "count": len(results)}
        except Exception as e:
            outcome = "error"
            return {"status": "error", "message": f"Search failed: {e}"}
        finally:
            _done("memory_search", t0, outcome)

    @mcp.tool()
    def lorebook_active(
        character: str,
        messages: List[str],
        scan_depth: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Lorebook entries activated by recent dialogue text.

        Args:
            character: Character slug or folder.
            messages: Recent message texts, oldest first.
            scan_depth: How many trailing messages to scan (default: config).

        Returns:
            entries: Active entries ordered by ``order``.
            context: Sanitized world-info text as injected into prompts.
        """
        t0 = time.monotonic()
        outcome = "ok"
        try:
            key = _character_key(character)
            depth = service.config.lorebook.scan_depth if scan_depth is None else scan_depth
            entries = service.matcher.get_active_entries(key, messages, depth)
            return {
                "status": "ok",
                "character": key,
                "entries": [e.to_dict() for e in entries],
                "context": service.matcher.format_for_context(entries),
            }
        except Exception as e:
            outcome = "error"
            return {"status": "error", "message": f"Lorebook activation failed: {e}"}
        finally:
            _done("lorebook_active", t0, outcome)

    @mcp.tool()
    def context_build(
        character: str,
        history: List[Dict[str, str]],
        response_length: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Assemble the exact messages a chat turn would send to the LLM.

        Args:
            character: Character slug or folder.
            history: Dialogue window [{role, content}], ending with the user turn.
            response_length: Target word count (default: config).

        Returns:
            messages: [{role, content}] starting with the system prompt.
            memories / lore_entries: What retrieval contributed.
        """
        t0 = time.monotonic()
        outcome = "ok"
        try:
            key = _character_key(character)
            card = service.characters.load(key)
            dialogue = [
                DialogueMessage(role=m["role"], content=m["content"]) for m in history
            ]
            options = service.default_options()
            if response_length is not None:
                options.response_length = response_length
            messages, retrieved = service.prepare_messages(card, dialogue, options)
            return {
                "status": "ok",
                "character": key,
                "messages": messages,
                "memories": [m.id for m in retrieved.memories],
                "lore_entries": [e.name for e in retrieved.lore_entries],
            }
        except Exception as e:
            outcome = "error"
            return {"status": "error", "message": f"Context build failed: {e}"}
        finally:
            _done("context_build", t0, outcome)

    # =====================================================================
    # WRITE
    # =====================================================================

    @mcp.tool()
    def memory_add(
        character: str,
        content: str,
        type: str = "fact",
        importance: float = 0.5,
        source_message_id: str = "",
    ) -> Dict[str, Any]:
        """Store a long-term memory for a character.

        Args:
            character: Character slug or folder.
            content: The fact to remember (one short sentence).
            type: fact | event | preference | relationship.
            importance: 0.0-1.0; boosts ranking.
            source_message_id: Message the memory came from (for cascade delete).
        """
        t0 = time.monotonic()
        outcome = "ok"
        try:
            key = _character_key(character)
            if not content.strip():
                raise ValueError("content must not be empty")
            memory = MemoryEntry(
                content=content.strip(),
                type=type,
                importance=float(importance),
                source_message_id=source_message_id,
            )
            service.index.add_memory(key, memory)
            return {"status": "ok", "character": key, "memory": memory.to_dict()}
        except Exception as e:
            outcome = "error"
            return {"status": "error", "message": f"Add failed: {e}"}
        finally:
            _done("memory_add", t0, outcome)

    @mcp.tool()
    def message_remove(character: str, message_id: str) -> Dict[str, Any]:
        """Remove a message from the index together with its memories.

        Args:
            character: Character slug or folder.
            message_id: ID of the message to remove.
        """
        t0 = time.monotonic()
        outcome = "ok"
        try:
            key = _character_key(character)
            index = service.index.load(key)
            if not any(m.id == message_id for m in index.messages):
                outcome = "not_found"
                return {"status": "not_found", "message": f"No message {message_id}"}
            linked = sum(1 for m in index.memories if m.source_message_id == message_id)
            service.remove_message(key, message_id)
            return {"status": "ok", "character": key, "removed_memories": linked}
        except Exception as e:
            outcome = "error"
            return {"status": "error", "message": f"Remove failed: {e}"}
        finally:
            _done("message_remove", t0, outcome)
