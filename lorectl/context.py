"""
Context Assembler — deterministic system prompt and message list

System prompt layout (sections joined by "\\n\\n---\\n"):

    1. persona preset
    2. ## Character Information   (name always; description, personality,
                                   scenario only when non-empty)
    3. ## World Information       (only when the lorebook text is non-empty)
    4. ## Long-term Memory        (only when the memory text is non-empty)
    5. output-format preset       (${responseLength} substituted)

The same inputs always produce the same prompt, so the streaming and
non-streaming paths send identical messages.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from lorectl.presets import RESPONSE_LENGTH_PLACEHOLDER, LoadedPresets
from lorectl.sanitize import PromptSanitizer
from lorectl.types import CharacterCard, DialogueMessage, MemoryEntry

SECTION_SEPARATOR = "\n\n---\n"
MEMORY_HEADER = "**Important information from previous conversations:**"

ChatMessage = Dict[str, str]


@dataclass
class GenerationOptions:
    """Per-turn sampling options; response_length is a target word count."""
    temperature: float = 0.8
    top_p: float = 0.9
    response_length: int = 300


@dataclass
class PromptContext:
    """Retrieved text injected into the system prompt."""
    relevant_memories: str = ""
    world_info: str = ""


def format_memories(
    memories: Sequence[MemoryEntry],
    sanitizer: Optional[PromptSanitizer] = None,
) -> str:
    """One "- content" line per memory, sanitized."""
    sanitizer = sanitizer or PromptSanitizer()
    return "\n".join(f"- {sanitizer.sanitize(m.content)}" for m in memories)


class ContextAssembler:
    """Builds the system prompt and the message list for one turn."""

    def build_system_prompt(
        self,
        character: CharacterCard,
        presets: LoadedPresets,
        options: Optional[GenerationOptions] = None,
        context: Optional[PromptContext] = None,
    ) -> str:
        options = options or GenerationOptions()
        context = context or PromptContext()

        info = [f"## Character Information\n**Name:** {character.name}"]
        if character.description:
            info.append(f"**Description:** {character.description}")
        if character.personality:
            info.append(f"**Personality:** {character.personality}")
        if character.scenario:
            info.append(f"**Scenario:** {character.scenario}")

        sections = [presets.persona_prompt, "\n".join(info)]

        if context.world_info:
            sections.append(f"## World Information\n{context.world_info}")

        if context.relevant_memories:
            sections.append(
                f"## Long-term Memory\n{MEMORY_HEADER}\n{context.relevant_memories}"
            )

        sections.append(
            presets.output_format_prompt.replace(
                RESPONSE_LENGTH_PLACEHOLDER, str(options.response_length),
            )
        )
        return SECTION_SEPARATOR.join(sections)

    def build_messages(
        self,
        character: CharacterCard,
        dialogue: Sequence[DialogueMessage],
        presets: LoadedPresets,
        options: Optional[GenerationOptions] = None,
        context: Optional[PromptContext] = None,
    ) -> List[ChatMessage]:
        """System message followed by the dialogue window, verbatim."""
        messages: List[ChatMessage] = [{
            "role": "system",
            "content": self.build_system_prompt(character, presets, options, context),
        }]
        messages.extend(m.to_chat_message() for m in dialogue)
        return messages
