"""
Prompt presets: persona prompt and output-format prompt.

Stored as editable markdown documents under presets/; compiled-in defaults
are used for any preset document that is missing or empty.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict

from lorectl.blobstore import BlobStore, normalize_path

logger = logging.getLogger(__name__)

PRESETS_FOLDER = "presets"
PERSONA_PROMPT_FILE = "persona-prompt.md"
OUTPUT_FORMAT_PROMPT_FILE = "output-format-prompt.md"

RESPONSE_LENGTH_PLACEHOLDER = "${responseLength}"

DEFAULT_PERSONA_PROMPT = """\
## Roleplay Persona

**CORE ROLE:**
You are the narrator and voice of the character described below. Stay in
character at all times, speak and act the way the character would, and build
a genuine, evolving connection with the user through the story.

**GUIDELINES:**
*   Let the scene, the character's history and the user's intent drive the
    tone. Shifts in mood should feel gradual and earned, never abrupt.
*   Show, do not tell: favor concrete gestures, expressions and sensory
    detail over summaries of feelings.
*   Respect what the story has established. Facts from earlier conversations
    and from the world information stay true unless the story changes them.
*   Never speak for the user or decide their actions.

---
**ANTI-REPETITION:**
*   Vary sentence structure, vocabulary and the way emotions are expressed.
*   Do not reuse the same action verbs or stock phrases turn after turn.
*   Change perspective, rhythm and focus to keep the story moving."""

DEFAULT_OUTPUT_FORMAT_PROMPT = """\
## Output Format Requirements

**Follow the Markdown format below strictly and write a response of about \
${responseLength} words.**

**Use whitespace sparingly:** separate paragraphs or action/dialogue beats \
with **at most two** consecutive line breaks.

### Response Format

Write the main response with the character's dialogue, actions and inner \
thoughts. Use markdown formatting:
- *Actions* or _thoughts_ in italics
- **Emphasis** in bold
- "Dialogue" in double quotes
- Sensible line breaks between paragraphs

### Suggested Next Actions

After the main response, add one short line of suggestions for the player:

> **Suggestions:** [3 short options for what to do next, narrated in the third person]"""

DEFAULT_PRESETS: Dict[str, str] = {
    PERSONA_PROMPT_FILE: DEFAULT_PERSONA_PROMPT,
    OUTPUT_FORMAT_PROMPT_FILE: DEFAULT_OUTPUT_FORMAT_PROMPT,
}


@dataclass
class LoadedPresets:
    """Preset texts used to build the system prompt."""
    persona_prompt: str = DEFAULT_PERSONA_PROMPT
    output_format_prompt: str = DEFAULT_OUTPUT_FORMAT_PROMPT


def preset_path(filename: str) -> str:
    return normalize_path(f"{PRESETS_FOLDER}/{filename}")


def _read_preset(store: BlobStore, filename: str) -> str:
    path = preset_path(filename)
    if store.exists(path):
        text = store.read(path)
        if text.strip():
            return text
        logger.debug("Preset %s is empty, using default", path)
    return DEFAULT_PRESETS[filename]


def load_presets(store: BlobStore) -> LoadedPresets:
    """Load presets from the store, falling back to the defaults."""
    return LoadedPresets(
        persona_prompt=_read_preset(store, PERSONA_PROMPT_FILE),
        output_format_prompt=_read_preset(store, OUTPUT_FORMAT_PROMPT_FILE),
    )


def ensure_presets(store: BlobStore) -> int:
    """Write any missing preset document with its default. Returns count created."""
    created = 0
    for filename, text in DEFAULT_PRESETS.items():
        path = preset_path(filename)
        if store.exists(path):
            continue
        try:
            store.create(path, text)
        except FileExistsError:
            continue
        created += 1
        logger.info("Created preset %s", path)
    return created
