"""Prompt registry: versioned prompt templates stored as text files.

Templates use ``$name`` placeholders (``string.Template``) so the JSON
examples embedded in oracle prompts need no brace escaping.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from string import Template

_PROMPTS_DIR = Path(__file__).parent


@lru_cache(maxsize=32)
def load_prompt(name: str, version: str = "v1") -> Template:
    """Load a prompt template by name and version.

    Args:
        name: Prompt name without extension (e.g., "analyze_batch", "explain_cluster", "search")
        version: Prompt version directory (e.g., "v1")
    """
    path = _PROMPTS_DIR / version / f"{name}.txt"
    if not path.exists():
        raise FileNotFoundError(f"Prompt not found: {path}")
    return Template(path.read_text(encoding="utf-8"))


def format_prompt(name: str, version: str = "v1", **kwargs: object) -> str:
    """Load a template and substitute every placeholder; a missing one raises KeyError."""
    return load_prompt(name, version).substitute({k: str(v) for k, v in kwargs.items()})


def available_prompts(version: str = "v1") -> list[str]:
    path = _PROMPTS_DIR / version
    if not path.exists():
        return []
    return sorted(p.stem for p in path.glob("*.txt"))
