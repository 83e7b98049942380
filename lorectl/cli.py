"""
lorectl CLI — Roleplay Memory and Lorebook Commands

Commands:
    lorectl init   [--force]                          — scaffold store + presets + config
    lorectl create NAME [--description ...]           — create a character card
    lorectl list                                      — list characters
    lorectl search CHAR "query" [-k N]                — BM25 memory search → stdout
    lorectl remember CHAR "fact" [--type T]           — store a memory
    lorectl forget CHAR MESSAGE_ID                    — drop a message + its memories
    lorectl lore   CHAR [TEXT ...] [--scan-depth N]   — active lorebook entries
    lorectl prompt CHAR "user text"                   — assembled messages (no LLM call)
    lorectl chat   CHAR [-m TEXT] [--no-stream]       — chat turn(s) with the LLM
    lorectl serve                                     — start MCP server (foreground)

Environment variables:
    LORECTL_ROOT     Store root directory (default: .lorectl)
    LORECTL_CONFIG   Path to config.json (default: <root>/config.json if present)
    LORECTL_API_KEY  API key for the main LLM provider

Precedence (invariant):
    CLI --flag  >  LORECTL_* env var  >  config file  >  compiled default

Exit codes:
    0  Success (including idempotent no-op)
    1  Operational error (bad args, unknown character, LLM error)
    2  Internal failure (unexpected exception, I/O error)
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

import requests

from lorectl.config import LoreConfig, StorageConfig, load_config

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Env parsing
# ---------------------------------------------------------------------------


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    """Parse string env var with fallback (empty counts as unset)."""
    return os.environ.get(name) or default


# ---------------------------------------------------------------------------
# Resolvers
# ---------------------------------------------------------------------------


def _resolve_root(args: Optional[argparse.Namespace] = None) -> Optional[str]:
    """Explicit store root: CLI --root > LORECTL_ROOT > None."""
    if args and getattr(args, "root", None):
        return args.root
    return _env_str("LORECTL_ROOT")


def _resolve_config(args: Optional[argparse.Namespace] = None) -> LoreConfig:
    """Load config and apply root / API key overrides."""
    root = _resolve_root(args)
    path = getattr(args, "config", None) if args else None
    path = path or _env_str("LORECTL_CONFIG")
    if path is None:
        candidate = Path(root or StorageConfig().root) / "config.json"
        if candidate.is_file():
            path = str(candidate)

    cfg = load_config(path)
    if root:
        cfg.storage.root = root
    api_key = _env_str("LORECTL_API_KEY")
    if api_key:
        cfg.llm.api_key = api_key
    return cfg


def _open_service(args: argparse.Namespace):
    """ChatService for the resolved configuration."""
    from lorectl.chat import ChatService
    return ChatService.from_config(_resolve_config(args))


def _load_character(service, name: str):
    """Character card by slug or folder; exits 1 when unknown."""
    key = service.characters.folder_for(name)
    if not service.characters.exists(key):
        _warn(f"Unknown character: {name}")
        sys.exit(1)
    return service.characters.load(key)


# ---------------------------------------------------------------------------
# Stderr helpers (respect --quiet)
# ---------------------------------------------------------------------------

_quiet = False


def _info(msg: str) -> None:
    """Print progress to stderr (suppressed by --quiet)."""
    if not _quiet:
        print(msg, file=sys.stderr)


def _warn(msg: str) -> None:
    """Print warning to stderr (always visible)."""
    print(msg, file=sys.stderr)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


_DEFAULT_CONFIG = {
    "llm": {
        "base_url": "https://api.openai.com/v1",
        "model_name": "gpt-4-turbo",
    },
    "generation": {"temperature": 0.8, "top_p": 0.9, "response_length": 300},
    "retrieval": {"memory_limit": 5, "min_score": 0.5},
    "lorebook": {"scan_depth": 5, "max_active_entries": 5},
    "extraction": {"enabled": False},
}


# ===========================================================================
# Command: init
# ===========================================================================


def cmd_init(args: argparse.Namespace) -> None:
    """Initialize a store root with presets and a config template."""
    from lorectl.blobstore import FolderBlobStore
    from lorectl.presets import ensure_presets

    root = Path(_resolve_config(args).storage.root).resolve()
    config_path = root / "config.json"

    if config_path.exists() and not args.force:
        _info(f"Store exists: {root}")
        print(f'export LORECTL_ROOT="{root}"')
        return

    store = FolderBlobStore(str(root))
    created = ensure_presets(store)

    config_path.write_text(
        json.dumps(_DEFAULT_CONFIG, indent=2) + "\n", encoding="utf-8",
    )
    gitignore_path = root / ".gitignore"
    if not gitignore_path.exists():
        gitignore_path.write_text("config.json\n", encoding="utf-8")

    _info(f"Store initialized: {root}")
    _info(f"  Config:  {config_path}")
    _info(f"  Presets: {created} created")
    print(f'export LORECTL_ROOT="{root}"')


# ===========================================================================
# Command: create / list
# ===========================================================================


def cmd_create(args: argparse.Namespace) -> None:
    """Create a character card."""
    service = _open_service(args)
    try:
        card = service.characters.create(
            args.name,
            description=args.description,
            personality=args.personality,
            scenario=args.scenario,
            first_message=args.first_message,
        )
    except ValueError as e:
        _warn(f"Error: {e}")
        sys.exit(1)

    if getattr(args, "json", False):
        _print_json({**card.to_frontmatter(), "folderPath": card.folder_path})
    else:
        print(card.id)
    _info(f"Created {card.name} in {card.folder_path}")


def cmd_list(args: argparse.Namespace) -> None:
    """List characters."""
    service = _open_service(args)
    cards = service.characters.list_characters()
    if getattr(args, "json", False):
        _print_json([{"id": c.id, "name": c.name, "folderPath": c.folder_path}
                     for c in cards])
        return
    if not cards:
        _info("No characters.")
        return
    for c in cards:
        print(f"{c.id:30s}  {c.name}")


# ===========================================================================
# Command: search  (BM25 → stdout)
# ===========================================================================


def cmd_search(args: argparse.Namespace) -> None:
    """Search a character's memories."""
    service = _open_service(args)
    card = _load_character(service, args.character)
    results = service.index.search_memories_scored(
        card.folder_path, args.query, limit=args.k, min_score=args.min_score,
    )

    if getattr(args, "json", False):
        _print_json([
            {**m.to_dict(), "score": round(score, 4)} for m, score in results
        ])
        return

    if not results:
        _info("No results found.")
        return

    print(f"Found {len(results)} memory(ies):\n")
    for m, score in results:
        print(f"  {m.id}  {m.type:12s}  score={score:.3f}  importance={m.importance:.2f}")
        print(f"    {m.content}")
        print()


# ===========================================================================
# Command: remember / forget
# ===========================================================================


def cmd_remember(args: argparse.Namespace) -> None:
    """Store a memory for a character."""
    from lorectl.types import MemoryEntry

    service = _open_service(args)
    card = _load_character(service, args.character)
    try:
        memory = MemoryEntry(
            content=args.content.strip(),
            type=args.type,
            importance=args.importance,
            source_message_id=args.source or "",
        )
    except ValueError as e:
        _warn(f"Error: {e}")
        sys.exit(1)
    if not memory.content:
        _warn("Error: empty memory content")
        sys.exit(1)

    service.index.add_memory(card.folder_path, memory)
    if getattr(args, "json", False):
        _print_json(memory.to_dict())
    else:
        print(memory.id)
    _info(f"Remembered for {card.name}: {', '.join(memory.keywords) or '(no keywords)'}")


def cmd_forget(args: argparse.Namespace) -> None:
    """Remove a message and every memory extracted from it."""
    service = _open_service(args)
    card = _load_character(service, args.character)
    index = service.index.load(card.folder_path)
    if not any(m.id == args.message_id for m in index.messages):
        _warn(f"Message not found: {args.message_id}")
        sys.exit(1)
    linked = sum(1 for m in index.memories if m.source_message_id == args.message_id)
    service.remove_message(card.folder_path, args.message_id)
    _info(f"Removed {args.message_id} and {linked} linked memory(ies)")


# ===========================================================================
# Command: lore  (active lorebook entries)
# ===========================================================================


def cmd_lore(args: argparse.Namespace) -> None:
    """Show lorebook entries activated by the given (or recent) messages."""
    service = _open_service(args)
    card = _load_character(service, args.character)
    texts = args.text or [
        m.content for m in service.dialogue.history(card.folder_path)
    ]
    depth = args.scan_depth
    if depth is None:
        depth = service.config.lorebook.scan_depth
    entries = service.matcher.get_active_entries(card.folder_path, texts, depth)

    if getattr(args, "json", False):
        _print_json([e.to_dict() for e in entries])
        return
    if not entries:
        _info("No active lorebook entries.")
        return
    print(service.matcher.format_for_context(entries))


# ===========================================================================
# Command: prompt  (assemble without calling the LLM)
# ===========================================================================


def cmd_prompt(args: argparse.Namespace) -> None:
    """Print the messages a chat turn would send."""
    from lorectl.chat import HISTORY_WINDOW
    from lorectl.types import DialogueMessage

    service = _open_service(args)
    card = _load_character(service, args.character)
    history = service.dialogue.history(card.folder_path, HISTORY_WINDOW - 1)
    history.append(DialogueMessage(role="user", content=args.text))
    messages, retrieved = service.prepare_messages(card, history)

    if getattr(args, "json", False):
        _print_json(messages)
        return
    print(messages[0]["content"])
    _info(
        f"\n[{len(messages) - 1} dialogue message(s), "
        f"{len(retrieved.memories)} memory(ies), "
        f"{len(retrieved.lore_entries)} lorebook entry(ies)]"
    )


# ===========================================================================
# Command: chat
# ===========================================================================


def _run_turn(service, card, text: str, stream: bool) -> bool:
    """One chat turn; returns False on an LLM/transport error."""
    from lorectl.chat import HISTORY_WINDOW
    from lorectl.llm import LLMError

    history = service.dialogue.history(card.folder_path, HISTORY_WINDOW - 1)

    def _echo(chunk: str) -> None:
        sys.stdout.write(chunk)
        sys.stdout.flush()

    try:
        reply = service.chat_turn(
            card, history, text, on_chunk=_echo if stream else None,
        )
    except (LLMError, requests.RequestException) as e:
        _warn(f"\nError: {e}")
        return False
    if stream:
        print()
    else:
        print(reply.content)
    return True


def cmd_chat(args: argparse.Namespace) -> None:
    """Chat with a character (one-shot with -m, otherwise a stdin REPL)."""
    from lorectl.characters import first_message_history

    service = _open_service(args)
    card = _load_character(service, args.character)
    stream = not args.no_stream

    try:
        if not service.index.load(card.folder_path).messages:
            for opening in first_message_history(card):
                service.record(card.folder_path, opening)
                if args.message is None:
                    print(opening.content)

        if args.message is not None:
            if not _run_turn(service, card, args.message, stream):
                sys.exit(1)
            return

        _info(f"Chatting with {card.name}. Ctrl+D to quit.")
        while True:
            try:
                text = input("> ")
            except EOFError:
                print()
                break
            if text.strip():
                _run_turn(service, card, text, stream)
    finally:
        service.close()


# ===========================================================================
# Command: serve  (start MCP server)
# ===========================================================================


def cmd_serve(args: argparse.Namespace) -> None:
    """Start the lorectl MCP server in foreground."""
    try:
        from lorectl.mcp.server import build_parser as mcp_parser, create_server
    except ImportError:
        _warn("MCP dependencies not installed. Run: pip install lorectl[mcp]")
        sys.exit(1)

    server_argv = []
    root = _resolve_root(args)
    if root:
        server_argv.extend(["--root", root])
    if getattr(args, "config", None):
        server_argv.extend(["--config", args.config])
    if getattr(args, "verbose", False):
        server_argv.append("--verbose")

    server_args = mcp_parser().parse_args(server_argv)

    try:
        mcp, service = create_server(server_args)
    except ImportError:
        _warn("MCP dependencies not installed. Run: pip install lorectl[mcp]")
        sys.exit(1)

    _info(f"lorectl MCP server (root={service.config.storage.root})")
    _info("Press Ctrl+C to stop.")
    try:
        mcp.run()
    finally:
        service.close()


# ===========================================================================
# Entry point
# ===========================================================================


def main() -> None:
    """CLI entry point: lorectl <command> [args]."""
    global _quiet

    # SUPPRESS defaults keep subparser defaults from overriding values
    # parsed at the main-parser level (argparse parents quirk).
    _common = argparse.ArgumentParser(add_help=False)
    _common.add_argument(
        "--root", default=argparse.SUPPRESS,
        help="Store root directory (default: $LORECTL_ROOT or .lorectl)",
    )
    _common.add_argument(
        "--config", default=argparse.SUPPRESS,
        help="Path to config.json (default: $LORECTL_CONFIG or <root>/config.json)",
    )
    _common.add_argument(
        "--quiet", "-q", action="store_true", default=argparse.SUPPRESS,
        help="Suppress stderr progress messages",
    )
    _common.add_argument(
        "--json", action="store_true", default=argparse.SUPPRESS,
        help="Machine-readable JSON output",
    )
    _common.add_argument(
        "-v", "--verbose", action="store_true", default=argparse.SUPPRESS,
        help="Enable verbose logging",
    )

    parser = argparse.ArgumentParser(
        prog="lorectl",
        description="lorectl — long-term memory and lorebook context for roleplay chat",
        parents=[_common],
    )

    sub = parser.add_subparsers(dest="command", help="Available commands")

    # -- init --------------------------------------------------------------
    p_init = sub.add_parser("init", parents=[_common], help="Initialize a store root")
    p_init.add_argument("--force", action="store_true", help="Rewrite config.json")
    p_init.set_defaults(func=cmd_init)

    # -- create ------------------------------------------------------------
    p_create = sub.add_parser("create", parents=[_common], help="Create a character")
    p_create.add_argument("name", help="Display name")
    p_create.add_argument("--description", default="", help="Character description")
    p_create.add_argument("--personality", default="", help="Personality summary")
    p_create.add_argument("--scenario", default="", help="Scenario / setting")
    p_create.add_argument("--first-message", default="", help="Opening message")
    p_create.set_defaults(func=cmd_create)

    # -- list --------------------------------------------------------------
    p_list = sub.add_parser("list", parents=[_common], help="List characters")
    p_list.set_defaults(func=cmd_list)

    # -- search ------------------------------------------------------------
    p_search = sub.add_parser("search", parents=[_common], help="Search memories (BM25)")
    p_search.add_argument("character", help="Character slug")
    p_search.add_argument("query", help="Search query")
    p_search.add_argument("-k", type=int, default=5, help="Max results (default: 5)")
    p_search.add_argument(
        "--min-score", type=float, default=0.5,
        help="Minimum BM25 score (default: 0.5)",
    )
    p_search.set_defaults(func=cmd_search)

    # -- remember ----------------------------------------------------------
    p_rem = sub.add_parser("remember", parents=[_common], help="Store a memory")
    p_rem.add_argument("character", help="Character slug")
    p_rem.add_argument("content", help="Fact to remember")
    p_rem.add_argument(
        "--type", default="fact",
        choices=["fact", "event", "preference", "relationship"],
        help="Memory type (default: fact)",
    )
    p_rem.add_argument(
        "--importance", type=float, default=0.5,
        help="Importance 0.0-1.0 (default: 0.5)",
    )
    p_rem.add_argument("--source", default=None, help="Source message ID")
    p_rem.set_defaults(func=cmd_remember)

    # -- forget ------------------------------------------------------------
    p_forget = sub.add_parser(
        "forget", parents=[_common], help="Remove a message and its memories",
    )
    p_forget.add_argument("character", help="Character slug")
    p_forget.add_argument("message_id", help="Message ID")
    p_forget.set_defaults(func=cmd_forget)

    # -- lore --------------------------------------------------------------
    p_lore = sub.add_parser("lore", parents=[_common], help="Show active lorebook entries")
    p_lore.add_argument("character", help="Character slug")
    p_lore.add_argument(
        "text", nargs="*",
        help="Message texts to scan (default: the character's recent dialogue)",
    )
    p_lore.add_argument(
        "--scan-depth", type=int, default=None,
        help="Trailing messages to scan (default: config lorebook.scan_depth)",
    )
    p_lore.set_defaults(func=cmd_lore)

    # -- prompt ------------------------------------------------------------
    p_prompt = sub.add_parser(
        "prompt", parents=[_common], help="Print the assembled prompt (no LLM call)",
    )
    p_prompt.add_argument("character", help="Character slug")
    p_prompt.add_argument("text", help="User message for the turn")
    p_prompt.set_defaults(func=cmd_prompt)

    # -- chat --------------------------------------------------------------
    p_chat = sub.add_parser("chat", parents=[_common], help="Chat with a character")
    p_chat.add_argument("character", help="Character slug")
    p_chat.add_argument("-m", "--message", default=None, help="Send one message and exit")
    p_chat.add_argument("--no-stream", action="store_true", help="Disable streaming")
    p_chat.set_defaults(func=cmd_chat)

    # -- serve -------------------------------------------------------------
    p_serve = sub.add_parser("serve", parents=[_common], help="Start MCP server")
    p_serve.set_defaults(func=cmd_serve)

    # -- Parse and dispatch ------------------------------------------------
    args = parser.parse_args()

    _quiet = getattr(args, "quiet", False)

    if getattr(args, "verbose", False):
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(name)s %(levelname)s %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except BrokenPipeError:
        # e.g. lorectl search ... | head
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
        sys.exit(0)
    except KeyboardInterrupt:
        sys.exit(0)
    except Exception as e:
        _warn(f"Internal error: {e}")
        if getattr(args, "verbose", False):
            import traceback
            traceback.print_exc(file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
