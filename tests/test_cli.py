"""
Tests for the lorectl CLI via subprocess.

Every test runs the real entry point (`python -m lorectl.cli`) against a
temporary store root so there are no side-effects on the developer machine.
No test reaches a real LLM: chat is pointed at a closed local port.
"""

import json
import os
import subprocess
import sys

import pytest


PYTHON = sys.executable
CLI = [PYTHON, "-m", "lorectl.cli"]


def run(args, *, env=None, stdin=None):
    """Run a lorectl CLI command and return CompletedProcess."""
    base = {k: v for k, v in os.environ.items() if not k.startswith("LORECTL_")}
    return subprocess.run(
        CLI + args,
        capture_output=True,
        text=True,
        env={**base, **(env or {})},
        input=stdin,
        timeout=60,
    )


@pytest.fixture
def root(tmp_path):
    """An initialized store root."""
    path = str(tmp_path / "store")
    r = run(["init", "--root", path, "-q"])
    assert r.returncode == 0, f"init failed: {r.stderr}"
    return path


@pytest.fixture
def character(root):
    """Slug of a character with a private lorebook entry."""
    r = run([
        "create", "Lan", "--root", root,
        "--description", "A tea merchant.",
        "--first-message", "Welcome to my shop!",
    ])
    assert r.returncode == 0, f"create failed: {r.stderr}"
    slug = r.stdout.strip()
    card = os.path.join(root, "characters", slug, "card.md")
    with open(card, "a", encoding="utf-8") as f:
        f.write("\n## Lorebook\n\n### [Tea House]\n- keys: tea\n- order: 10\n\nBy the river.\n")
    return slug


def read_index(root, slug):
    with open(os.path.join(root, "characters", slug, "index.json"), encoding="utf-8") as f:
        return json.load(f)


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------


class TestInit:
    def test_creates_layout(self, root):
        assert os.path.isfile(os.path.join(root, "config.json"))
        assert os.path.isfile(os.path.join(root, "presets", "persona-prompt.md"))
        assert os.path.isfile(os.path.join(root, "presets", "output-format-prompt.md"))
        with open(os.path.join(root, ".gitignore"), encoding="utf-8") as f:
            assert "config.json" in f.read()

    def test_prints_export(self, tmp_path):
        path = tmp_path / "fresh"
        r = run(["init", "--root", str(path)])
        assert r.returncode == 0
        assert r.stdout.strip() == f'export LORECTL_ROOT="{path.resolve()}"'
        assert "Store initialized" in r.stderr

    def test_idempotent(self, root):
        config = os.path.join(root, "config.json")
        with open(config, "w", encoding="utf-8") as f:
            f.write('{"lorebook": {"scan_depth": 3}}')
        r = run(["init", "--root", root])
        assert r.returncode == 0
        assert "Store exists" in r.stderr
        with open(config, encoding="utf-8") as f:
            assert json.load(f) == {"lorebook": {"scan_depth": 3}}

    def test_force_rewrites_config(self, root):
        config = os.path.join(root, "config.json")
        with open(config, "w", encoding="utf-8") as f:
            f.write("{}")
        assert run(["init", "--root", root, "--force", "-q"]).returncode == 0
        with open(config, encoding="utf-8") as f:
            assert "generation" in json.load(f)

    def test_env_root(self, tmp_path):
        path = tmp_path / "via-env"
        r = run(["init", "-q"], env={"LORECTL_ROOT": str(path)})
        assert r.returncode == 0
        assert (path / "config.json").is_file()


# ---------------------------------------------------------------------------
# create / list
# ---------------------------------------------------------------------------


class TestCharacters:
    def test_create_prints_slug(self, root, character):
        assert character.startswith("lan-")
        assert os.path.isdir(os.path.join(root, "characters", character))

    def test_create_json(self, root):
        r = run(["create", "Minh", "--root", root, "--json", "-q"])
        assert r.returncode == 0
        data = json.loads(r.stdout)
        assert data["name"] == "Minh"
        assert data["folderPath"] == f"characters/{data['id']}"

    def test_create_empty_name(self, root):
        r = run(["create", "  ", "--root", root])
        assert r.returncode == 1
        assert "Error" in r.stderr

    def test_list(self, root, character):
        r = run(["list", "--root", root, "--json"])
        assert r.returncode == 0
        assert [c["id"] for c in json.loads(r.stdout)] == [character]

    def test_list_empty(self, root):
        r = run(["list", "--root", root])
        assert r.returncode == 0
        assert r.stdout == ""
        assert "No characters" in r.stderr


# ---------------------------------------------------------------------------
# remember / search
# ---------------------------------------------------------------------------


class TestMemories:
    def test_remember_then_search(self, root, character):
        for fact in ("User loves green tea", "User lives in Hue", "User owns a cat"):
            r = run(["remember", character, fact, "--root", root, "-q"])
            assert r.returncode == 0, r.stderr
            assert r.stdout.strip().startswith("mem-")

        r = run(["search", character, "green tea", "--root", root, "--json"])
        assert r.returncode == 0, r.stderr
        results = json.loads(r.stdout)
        assert [m["content"] for m in results] == ["User loves green tea"]
        assert results[0]["score"] > 0.5

    def test_search_text_output(self, root, character):
        run(["remember", character, "Storm destroyed the bridge", "--type", "event",
             "--importance", "0.9", "--root", root, "-q"])
        run(["remember", character, "User lives in Hue", "--root", root, "-q"])
        r = run(["search", character, "storm", "--root", root])
        assert r.returncode == 0
        assert "Found 1 memory(ies)" in r.stdout
        assert "Storm destroyed the bridge" in r.stdout

    def test_search_no_results(self, root, character):
        r = run(["search", character, "dragons", "--root", root])
        assert r.returncode == 0
        assert "No results" in r.stderr

    def test_remember_bad_importance(self, root, character):
        r = run(["remember", character, "x", "--importance", "3", "--root", root])
        assert r.returncode == 1

    def test_remember_bad_type(self, root, character):
        r = run(["remember", character, "x", "--type", "opinion", "--root", root])
        assert r.returncode == 2  # argparse usage error

    def test_memory_stored_in_index(self, root, character):
        run(["remember", character, "Likes rain", "--source", "msg-1", "--root", root, "-q"])
        (memory,) = read_index(root, character)["memories"]
        assert memory["sourceMessageId"] == "msg-1"
        assert memory["keywords"] == ["likes", "rain"]


# ---------------------------------------------------------------------------
# lore / prompt
# ---------------------------------------------------------------------------


class TestLoreAndPrompt:
    def test_lore_from_text(self, root, character):
        r = run(["lore", character, "some tea please", "--root", root])
        assert r.returncode == 0
        assert r.stdout.strip() == "**Tea House:**\nBy the river."

    def test_lore_json(self, root, character):
        r = run(["lore", character, "tea", "--root", root, "--json"])
        (entry,) = json.loads(r.stdout)
        assert entry["name"] == "Tea House"
        assert entry["order"] == 10

    def test_lore_nothing_active(self, root, character):
        r = run(["lore", character, "coffee", "--root", root])
        assert r.returncode == 0
        assert "No active lorebook entries" in r.stderr

    def test_lore_zero_depth(self, root, character):
        r = run(["lore", character, "tea", "--scan-depth", "0", "--root", root])
        assert r.returncode == 0
        assert r.stdout == ""

    def test_prompt(self, root, character):
        run(["remember", character, "User loves green tea", "--root", root, "-q"])
        run(["remember", character, "User lives in Hue", "--root", root, "-q"])
        r = run(["prompt", character, "Any green tea?", "--root", root])
        assert r.returncode == 0, r.stderr
        assert "## Character Information\n**Name:** Lan" in r.stdout
        assert "## World Information\n**Tea House:**\nBy the river." in r.stdout
        assert "- User loves green tea" in r.stdout
        assert "1 memory(ies)" in r.stderr

    def test_prompt_json(self, root, character):
        r = run(["prompt", character, "Hello", "--root", root, "--json"])
        messages = json.loads(r.stdout)
        assert messages[0]["role"] == "system"
        assert messages[-1] == {"role": "user", "content": "Hello"}


# ---------------------------------------------------------------------------
# chat / forget
# ---------------------------------------------------------------------------


@pytest.fixture
def offline_config(tmp_path):
    """Config whose LLM endpoint refuses connections."""
    path = tmp_path / "offline.json"
    path.write_text(json.dumps({
        "llm": {"base_url": "http://127.0.0.1:9/v1", "model_name": "none", "timeout": 5},
    }), encoding="utf-8")
    return str(path)


class TestChatAndForget:
    def test_chat_llm_unreachable(self, root, character, offline_config):
        r = run(["chat", character, "-m", "Hello?", "--root", root,
                 "--config", offline_config])
        assert r.returncode == 1
        assert "Error" in r.stderr
        roles = [m["role"] for m in read_index(root, character)["messages"]]
        # opening message recorded, then the user turn
        assert roles == ["assistant", "user"]

    def test_forget(self, root, character, offline_config):
        run(["chat", character, "-m", "Remember me", "--root", root,
             "--config", offline_config])
        user_id = read_index(root, character)["messages"][-1]["id"]
        run(["remember", character, "User asked to be remembered",
             "--source", user_id, "--root", root, "-q"])

        r = run(["forget", character, user_id, "--root", root])
        assert r.returncode == 0, r.stderr
        assert "1 linked memory(ies)" in r.stderr
        index = read_index(root, character)
        assert user_id not in [m["id"] for m in index["messages"]]
        assert index["memories"] == []
        assert index["messageCount"] == len(index["messages"])

    def test_forget_unknown_message(self, root, character):
        r = run(["forget", character, "msg-nope", "--root", root])
        assert r.returncode == 1
        assert "Message not found" in r.stderr


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TestErrors:
    def test_no_command(self):
        r = run([])
        assert r.returncode == 1

    @pytest.mark.parametrize("command", [
        ["search", "ghost", "tea"],
        ["remember", "ghost", "fact"],
        ["forget", "ghost", "msg-1"],
        ["lore", "ghost"],
        ["prompt", "ghost", "hi"],
        ["chat", "ghost", "-m", "hi"],
    ])
    def test_unknown_character(self, root, command):
        r = run(command + ["--root", root])
        assert r.returncode == 1
        assert "Unknown character: ghost" in r.stderr
