"""Prompt helpers for script polish."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

SCRIPT_SYSTEM_PROMPT = "You are a professional morning briefing writer for a wake-up audio app. You edit drafts for the ear, never for the page."


def _replace_placeholders(template: str, values: dict[str, str]) -> str:
  """Substitute {{PLACEHOLDER}} markers so prompts carry actual context."""
  rendered = template
  for key, value in values.items():
    rendered = rendered.replace(f"{{{{{key}}}}}", value)

  return rendered


def render_polish_prompt(draft: str, *, target_words: int, lower_words: int, upper_words: int, listener_name: str | None, sections: list[str]) -> str:
  """Render the polish prompt for a deterministic draft."""
  values = {
    "DRAFT_WORDS": str(len(draft.split())),
    "TARGET_WORDS": str(target_words),
    "LOWER_WORDS": str(lower_words),
    "UPPER_WORDS": str(upper_words),
    "LISTENER_NAME": listener_name or "-",
    "SECTIONS": ", ".join(sections) if sections else "-",
    "DRAFT": draft,
  }
  return _replace_placeholders(_load_prompt("script_polish.md"), values)


@lru_cache(maxsize=8)
def _load_prompt(name: str) -> str:
  try:
    path = Path(__file__).parent / "templates" / name
    return path.read_text(encoding="utf-8").strip()
  except (FileNotFoundError, PermissionError, UnicodeDecodeError) as exc:
    raise RuntimeError(f"Failed to load prompt '{name}': {exc}") from exc
