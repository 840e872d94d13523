"""Inkwell configuration loader.

Layers, later ones winning:
  1. Hardcoded defaults (the dataclasses below)
  2. Global ~/.inkwell/config.yaml  (shared model choices; never API keys)
  3. inkwell.yaml in the working directory  (per-journal-database tuning)
  4. INKWELL_GENERATION_MODEL / INKWELL_EMBEDDING_MODEL / INKWELL_LOG_LEVEL
  5. CLI flags, applied by the command that owns them

API keys live in provider environment variables only. YAML is always read
with yaml.safe_load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_PATH: Path = Path.home() / ".inkwell" / "config.yaml"
_PROJECT_CONFIG_NAME: str = "inkwell.yaml"

# Key names that look like credentials. max_tokens and history_token_budget
# must not match.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_SECTIONS: tuple[str, ...] = ("embedding", "generation", "retrieval", "conversation", "logging")

DEFAULT_PERSONA = (
    "You are a warm, thoughtful journaling companion. Help the user reflect on "
    "their day, thoughts and feelings. Ask gentle follow-up questions, keep "
    "replies short, and never judge. When past journal entries are provided, "
    "refer to them only when they are genuinely relevant."
)

# Written by ensure_global_config(); kept small so users see what matters.
_GLOBAL_TEMPLATE: dict[str, dict[str, Any]] = {
    "embedding": {"model": "openai/text-embedding-3-small"},
    "generation": {"model": "openai/gpt-4o-mini"},
    "retrieval": {"top_k": 3, "min_score": 0.7},
}


class ConfigError(ValueError):
    """A config file holds a forbidden key or a value that can't be used."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingCfg:
    """Embedding gateway configuration (inkwell.yaml: embedding:).

    Attributes:
        model: LiteLLM embedding model string (provider/model format).
        dimensions: Expected vector size; None adopts the size of the first
            stored vector.
        max_attempts: Total attempts per embed call, including the first.
        base_delay: Backoff before the second attempt, in seconds; doubles
            on every further attempt.
        timeout_seconds: Per-attempt timeout; None waits indefinitely.
    """

    model: str = "openai/text-embedding-3-small"
    dimensions: int | None = None
    max_attempts: int = 3
    base_delay: float = 0.5
    timeout_seconds: float | None = None


@dataclass
class GenerationCfg:
    """Text generation configuration (inkwell.yaml: generation:)."""

    model: str = "openai/gpt-4o-mini"
    persona: str = DEFAULT_PERSONA
    max_tokens: int = 1024
    temperature: float = 0.7
    timeout_seconds: float | None = None
    history_token_budget: int = 6_000


@dataclass
class RetrievalCfg:
    """Context retrieval tuning (inkwell.yaml: retrieval:).

    Attributes:
        top_k: Maximum number of past entries injected into a prompt.
        min_score: Minimum cosine similarity for an entry to be used.
    """

    top_k: int = 3
    min_score: float = 0.7


@dataclass
class ConversationCfg:
    """UI-level conversation policy (inkwell.yaml: conversation:)."""

    single_active_draft: bool = False


@dataclass
class LoggingCfg:
    level: str = "WARNING"


@dataclass
class InkwellConfig:
    """Everything load_config() knows, one dataclass per YAML section."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    conversation: ConversationCfg = field(default_factory=ConversationCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)


# ---------------------------------------------------------------------------
# Reading layers
# ---------------------------------------------------------------------------


def _forbidden_key(data: Any, prefix: str = "") -> str | None:
    """Dotted path of the first credential-like key in *data*, if any."""
    if not isinstance(data, dict):
        return None
    for key, value in data.items():
        dotted = f"{prefix}.{key}" if prefix else str(key)
        if _API_KEY_RE.search(str(key)):
            return dotted
        nested = _forbidden_key(value, dotted)
        if nested is not None:
            return nested
    return None


def _read_layer(path: Path, *, is_global: bool) -> dict[str, Any]:
    """Parse one YAML layer; a missing or empty file is an empty layer."""
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"'{path}' must contain a mapping of sections.")

    if is_global:
        bad = _forbidden_key(data)
        if bad is not None:
            raise ConfigError(
                f"Global config '{path}' contains a forbidden key '{bad}'.\n"
                f"  Journal API keys belong in environment variables.\n"
                f"  Delete '{bad}' from {path.name} and export the provider key instead,\n"
                f"  e.g.  export OPENAI_API_KEY=sk-..."
            )

    for section in data:
        if section not in _SECTIONS:
            warnings.warn(
                f"Ignoring unknown section '{section}' in '{path}'.",
                UserWarning,
                stacklevel=4,
            )
    return data


def _merged(base: dict[str, Any], top: dict[str, Any]) -> dict[str, Any]:
    """Recursive dict merge; values from *top* win, inputs are not mutated."""
    out = dict(base)
    for key, value in top.items():
        below = out.get(key)
        out[key] = _merged(below, value) if isinstance(below, dict) and isinstance(value, dict) else value
    return out


# ---------------------------------------------------------------------------
# Building the dataclasses
# ---------------------------------------------------------------------------


def _optional(cast: Any, value: Any) -> Any:
    return None if value is None else cast(value)


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    return data.get(name) or {}


def _cfg_from_dict(data: dict[str, Any]) -> InkwellConfig:
    """Turn a merged raw YAML dict into an *InkwellConfig*."""
    defaults = InkwellConfig()

    emb = _section(data, "embedding")
    d = defaults.embedding
    embedding = EmbeddingCfg(
        model=str(emb.get("model", d.model)),
        dimensions=_optional(int, emb.get("dimensions", d.dimensions)),
        max_attempts=int(emb.get("max_attempts", d.max_attempts)),
        base_delay=float(emb.get("base_delay", d.base_delay)),
        timeout_seconds=_optional(float, emb.get("timeout_seconds", d.timeout_seconds)),
    )

    gen = _section(data, "generation")
    g = defaults.generation
    generation = GenerationCfg(
        model=str(gen.get("model", g.model)),
        persona=str(gen.get("persona", g.persona)),
        max_tokens=int(gen.get("max_tokens", g.max_tokens)),
        temperature=float(gen.get("temperature", g.temperature)),
        timeout_seconds=_optional(float, gen.get("timeout_seconds", g.timeout_seconds)),
        history_token_budget=int(gen.get("history_token_budget", g.history_token_budget)),
    )

    ret = _section(data, "retrieval")
    retrieval = RetrievalCfg(
        top_k=int(ret.get("top_k", defaults.retrieval.top_k)),
        min_score=float(ret.get("min_score", defaults.retrieval.min_score)),
    )

    conv = _section(data, "conversation")
    conversation = ConversationCfg(
        single_active_draft=bool(
            conv.get("single_active_draft", defaults.conversation.single_active_draft)
        ),
    )

    log = _section(data, "logging")
    logging_cfg = LoggingCfg(level=str(log.get("level", defaults.logging.level)))

    return InkwellConfig(
        embedding=embedding,
        generation=generation,
        retrieval=retrieval,
        conversation=conversation,
        logging=logging_cfg,
    )


def _apply_env_overrides(cfg: InkwellConfig) -> InkwellConfig:
    if value := os.environ.get("INKWELL_GENERATION_MODEL"):
        cfg.generation.model = value
    if value := os.environ.get("INKWELL_EMBEDDING_MODEL"):
        cfg.embedding.model = value
    if value := os.environ.get("INKWELL_LOG_LEVEL"):
        cfg.logging.level = value
    return cfg


def validate_config(cfg: InkwellConfig) -> None:
    """Raise ConfigError for values outside their allowed range."""
    checks = [
        (cfg.retrieval.top_k >= 1, f"retrieval.top_k must be >= 1, got {cfg.retrieval.top_k}"),
        (
            -1.0 <= cfg.retrieval.min_score <= 1.0,
            f"retrieval.min_score must be between -1 and 1, got {cfg.retrieval.min_score}",
        ),
        (
            cfg.embedding.max_attempts >= 1,
            f"embedding.max_attempts must be >= 1, got {cfg.embedding.max_attempts}",
        ),
        (
            cfg.embedding.base_delay >= 0,
            f"embedding.base_delay must be >= 0, got {cfg.embedding.base_delay}",
        ),
        (
            cfg.embedding.dimensions is None or cfg.embedding.dimensions >= 1,
            f"embedding.dimensions must be >= 1, got {cfg.embedding.dimensions}",
        ),
    ]
    for ok, message in checks:
        if not ok:
            raise ConfigError(message)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> InkwellConfig:
    """Load and return the merged *InkwellConfig*.

    Args:
        project_dir: Directory holding *inkwell.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: Credential-like key in the global file, a malformed
            file, or a value out of range.
    """
    global_path = global_config_path or _GLOBAL_CONFIG_PATH
    project_path = (project_dir or Path.cwd()) / _PROJECT_CONFIG_NAME

    merged = _merged(
        _read_layer(global_path, is_global=True),
        _read_layer(project_path, is_global=False),
    )
    try:
        cfg = _cfg_from_dict(merged)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc

    cfg = _apply_env_overrides(cfg)
    validate_config(cfg)
    return cfg


def ensure_global_config(global_config_path: Path | None = None) -> Path:
    """Write a starter global config unless one exists; return its path.

    The directory is created 0o700 and the file 0o600, since it sits in the
    user's home next to private journal settings.
    """
    target = global_config_path or _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    if target.exists():
        return target

    header = (
        "# Inkwell global settings: model choices and retrieval defaults.\n"
        "# Do not put API keys here; export them instead, e.g.\n"
        "#   export OPENAI_API_KEY=sk-...\n\n"
    )
    target.write_text(
        header + yaml.safe_dump(_GLOBAL_TEMPLATE, sort_keys=False), encoding="utf-8"
    )
    target.chmod(0o600)
    return target
