"""
lorectl Configuration

Configuration dataclasses for storage, LLM providers, generation options,
memory retrieval, lorebook activation and background extraction.  Includes
load_config() for reading a JSON config file with silent fallback to
compiled defaults.

Example config.json:

    {
      "storage": {"root": "~/roleplay"},
      "llm": {"base_url": "http://localhost:11434/v1", "model_name": "llama3"},
      "extraction": {"enabled": true}
    }
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(ValueError):
    """Raised when config values are out of valid range."""


def _check_range(
    errors: List[str], name: str, value, lo, hi, typ=None,
) -> None:
    """Append an error message if value is out of [lo, hi] or wrong type."""
    if typ is not None and (not isinstance(value, typ) or isinstance(value, bool)):
        expected = "/".join(t.__name__ for t in typ) if isinstance(typ, tuple) else typ.__name__
        errors.append(f"{name}: expected {expected}, got {type(value).__name__}")
        return
    if value < lo or value > hi:
        errors.append(f"{name}: {value} not in [{lo}, {hi}]")


@dataclass
class StorageConfig:
    """Blob store location."""
    root: str = ".lorectl"

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        if not self.root:
            return ["storage.root: must not be empty"]
        return []


@dataclass
class LLMProviderConfig:
    """OpenAI-compatible endpoint (OpenAI, OpenRouter, Ollama, LM Studio...)."""
    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model_name: str = "gpt-4-turbo"
    timeout: float = 120.0

    def validate(self, section: str = "llm") -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        if not self.base_url.startswith(("http://", "https://")):
            errors.append(f"{section}.base_url: must start with http:// or https://")
        if not self.model_name:
            errors.append(f"{section}.model_name: must not be empty")
        _check_range(errors, f"{section}.timeout",
                      self.timeout, 1.0, 3600.0, (int, float))
        return errors


@dataclass
class GenerationConfig:
    """Default sampling options for a chat turn."""
    temperature: float = 0.8
    top_p: float = 0.9
    response_length: int = 300

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "generation.temperature",
                      self.temperature, 0.0, 2.0, (int, float))
        _check_range(errors, "generation.top_p",
                      self.top_p, 0.0, 1.0, (int, float))
        _check_range(errors, "generation.response_length",
                      self.response_length, 10, 10000, int)
        return errors


@dataclass
class RetrievalConfig:
    """BM25 memory retrieval."""
    memory_limit: int = 5
    min_score: float = 0.5

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "retrieval.memory_limit",
                      self.memory_limit, 0, 100, int)
        _check_range(errors, "retrieval.min_score",
                      self.min_score, 0.0, 100.0, (int, float))
        return errors


@dataclass
class LorebookConfig:
    """Lorebook activation."""
    scan_depth: int = 5
    max_active_entries: int = 5

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "lorebook.scan_depth",
                      self.scan_depth, 0, 1000, int)
        _check_range(errors, "lorebook.max_active_entries",
                      self.max_active_entries, 0, 100, int)
        return errors


@dataclass
class ExtractionConfig:
    """Background memory extraction (a fast/cheap model is recommended)."""
    enabled: bool = False
    provider: LLMProviderConfig = field(
        default_factory=lambda: LLMProviderConfig(model_name="gpt-4o-mini")
    )
    temperature: float = 0.1

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> ExtractionConfig:
        """Build from a dict whose "provider" is itself a dict."""
        kwargs = dict(d)
        if "provider" in kwargs:
            kwargs["provider"] = LLMProviderConfig(**kwargs["provider"])
        return cls(**kwargs)

    def resolve_provider(self, main: LLMProviderConfig) -> LLMProviderConfig:
        """Extraction provider; an empty api_key falls back to the main key."""
        if self.provider.api_key:
            return self.provider
        return LLMProviderConfig(
            base_url=self.provider.base_url,
            api_key=main.api_key,
            model_name=self.provider.model_name,
            timeout=self.provider.timeout,
        )

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        if self.enabled:
            errors.extend(self.provider.validate("extraction.provider"))
        _check_range(errors, "extraction.temperature",
                      self.temperature, 0.0, 2.0, (int, float))
        return errors


@dataclass
class LoreConfig:
    """Top-level lorectl configuration."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    llm: LLMProviderConfig = field(default_factory=LLMProviderConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    lorebook: LorebookConfig = field(default_factory=LorebookConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> LoreConfig:
        """Build config from a nested dict (e.g. JSON)."""
        kwargs: Dict[str, Any] = {}
        if "storage" in d:
            kwargs["storage"] = StorageConfig(**d["storage"])
        if "llm" in d:
            kwargs["llm"] = LLMProviderConfig(**d["llm"])
        if "generation" in d:
            kwargs["generation"] = GenerationConfig(**d["generation"])
        if "retrieval" in d:
            kwargs["retrieval"] = RetrievalConfig(**d["retrieval"])
        if "lorebook" in d:
            kwargs["lorebook"] = LorebookConfig(**d["lorebook"])
        if "extraction" in d:
            kwargs["extraction"] = ExtractionConfig.from_dict(d["extraction"])
        return cls(**kwargs)

    def validate(self) -> List[str]:
        """Validate all config sections. Returns list of error messages."""
        errors: List[str] = []
        errors.extend(self.storage.validate())
        errors.extend(self.llm.validate())
        errors.extend(self.generation.validate())
        errors.extend(self.retrieval.validate())
        errors.extend(self.lorebook.validate())
        errors.extend(self.extraction.validate())
        return errors


def load_config(
    path: Optional[str] = None, *, strict: bool = False,
) -> LoreConfig:
    """Load config from a JSON file. Returns defaults if file missing/invalid.

    Args:
        path: Path to config.json. If None, returns compiled defaults.
        strict: If True, raise ValidationError on invalid config values.

    Returns:
        LoreConfig with values from file or defaults.

    Raises:
        ValidationError: If strict=True and config values are out of range.
    """
    if path is None:
        cfg = LoreConfig()
    else:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            cfg = LoreConfig.from_dict(data)
        except (FileNotFoundError, json.JSONDecodeError, TypeError, KeyError):
            cfg = LoreConfig()

    if strict:
        errors = cfg.validate()
        if errors:
            raise ValidationError(
                f"Config validation failed: {'; '.join(errors)}"
            )

    return cfg
