"""
lorectl MCP Server — roleplay memory and lorebook context over MCP

Standalone MCP server exposing lorectl retrieval and memory operations via
the Model Context Protocol.  Thin layer: all logic lives in lorectl/*.

Usage:
    python -m lorectl.mcp.server --root ~/roleplay
    python -m lorectl.mcp.server --config ~/roleplay/config.json -v
"""

from __future__ import annotations

import argparse
import logging
import os

logger = logging.getLogger(__name__)

_MCP_INSTRUCTIONS = (
    "Long-term memory and world information for roleplay characters.\n"
    "\n"
    "RETRIEVE: memory_search for facts from earlier conversations,\n"
    "          lorebook_active for world-info triggered by recent messages,\n"
    "          context_build for the full prompt a chat turn would send.\n"
    "STORE:    memory_add for one short fact; message_remove to forget a\n"
    "          message and every memory extracted from it.\n"
    "\n"
    "Characters are addressed by slug (e.g. 'lan-m5x7k2a')."
)


def build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser for the lorectl MCP server."""
    p = argparse.ArgumentParser(
        prog="lorectl-mcp",
        description="lorectl MCP Server — roleplay memory and lorebook context",
    )
    p.add_argument(
        "--root",
        default=os.environ.get("LORECTL_ROOT"),
        help="Store root directory (default: config storage.root or $LORECTL_ROOT)",
    )
    p.add_argument(
        "--config",
        default=os.environ.get("LORECTL_CONFIG"),
        help="Path to config.json (default: $LORECTL_CONFIG)",
    )
    p.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    return p


def create_server(args=None):
    """
    Create and configure the FastMCP server with lorectl tools.

    Args:
        args: Parsed argparse.Namespace, or None to parse from sys.argv.

    Returns:
        (mcp_server, service) tuple.
    """
    from mcp.server.fastmcp import FastMCP

    from lorectl.chat import ChatService
    from lorectl.config import load_config
    from lorectl.mcp.tools import register_lore_tools

    if args is None:
        args = build_parser().parse_args()

    config = load_config(args.config)
    if args.root:
        config.storage.root = args.root
    api_key = os.environ.get("LORECTL_API_KEY")
    if api_key:
        config.llm.api_key = api_key

    service = ChatService.from_config(config)

    mcp = FastMCP(
        name="lorectl",
        instructions=_MCP_INSTRUCTIONS,
    )
    register_lore_tools(mcp, service)

    logger.info("lorectl MCP server ready: root=%s", config.storage.root)
    return mcp, service


def main():
    """CLI entry point — parse args, create server, run."""
    parser = build_parser()
    args = parser.parse_args()

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    mcp, service = create_server(args)
    try:
        mcp.run()
    finally:
        service.close()


if __name__ == "__main__":
    main()
