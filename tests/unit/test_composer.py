"""Script drafting, length targeting and model polish."""

from __future__ import annotations

import re
from decimal import Decimal

import pytest

from app.ai.composer import WORDS_PER_MINUTE, Script, ScriptComposer, ScriptPreferences, build_draft, sanitize_for_tts, story_limits, word_window
from app.ai.providers.base import AIModel, SimpleModelResponse
from app.content.models import ContentItem, NormalizedContent
from app.content.quotes import daily_quotes
from tests.fakes import START


def _content(content_type: str, items: list[ContentItem]) -> NormalizedContent:
  return NormalizedContent(content_type=content_type, scope="test", source="test", fetched_at=START, items=items)


NEWS = _content(
  "news",
  [
    ContentItem(headline=f"Story {index} headline about the city council vote", detail=f"Council members debated item {index} for three hours before a narrow vote. Residents packed the chamber.")
    for index in range(8)
  ],
)
WEATHER = _content("weather", [ContentItem(headline="Rain in Portland", detail="Expect rain in Portland with a high of 58 and a low of 44 degrees.", data={"current": 51, "high": 58, "low": 44, "condition": "rain", "precipitation_chance": 70, "unit": "F"})])
SPORTS = _content("sports", [ContentItem(headline="Warriors beat Lakers 112 to 104", detail="Lakers at Warriors"), ContentItem(headline="Kings visit Suns, 7:30 PM")])
STOCKS = _content("stocks", [ContentItem(headline="Apple is up 1.2 percent at 190.00 dollars"), ContentItem(headline="Microsoft is flat at 410.50 dollars")])
CALENDAR = _content("calendar", [ContentItem(headline="Dentist at 9am"), ContentItem(headline="Team sync at 11am")])


def _preferences(minutes: int, sections: tuple[str, ...], name: str | None = "Sam") -> ScriptPreferences:
  return ScriptPreferences(local_date="2026-10-18", target_minutes=minutes, enabled_sections=sections, preferred_name=name)


class _PolishModel(AIModel):
  name = "gpt-4o-mini"

  def __init__(self, text: str | None = None, error: Exception | None = None) -> None:
    self.text = text
    self.error = error
    self.prompts: list[str] = []
    self.max_tokens: list[int | None] = []

  async def generate(self, prompt, *, system=None, temperature=None, max_tokens=None):  # type: ignore[no-untyped-def]
    self.prompts.append(prompt)
    self.max_tokens.append(max_tokens)
    if self.error is not None:
      raise self.error
    return SimpleModelResponse(content=self.text or "", usage={"prompt_tokens": 1000, "completion_tokens": 500})


ALL_SECTIONS = ("calendar", "weather", "news", "sports", "stocks", "quotes")


def _quotes(preference: str | None) -> NormalizedContent:
  return _content("quotes", daily_quotes(preference, "2026-10-18"))


def _sentences(text: str) -> list[str]:
  return [sentence for sentence in re.split(r"(?<=[.!?])\s+", text) if sentence]


@pytest.mark.parametrize(
  ("minutes", "sections", "content"),
  [
    (1, ("news",), {"news": NEWS}),
    (3, ("weather", "news"), {"weather": WEATHER, "news": NEWS}),
    (3, ("quotes",), {"quotes": _quotes("stoic")}),
    (5, ("weather", "news", "quotes"), {"weather": WEATHER, "news": NEWS, "quotes": _quotes("stoic")}),
    (5, ALL_SECTIONS, {"calendar": CALENDAR, "weather": WEATHER, "news": NEWS, "sports": SPORTS, "stocks": STOCKS, "quotes": _quotes(None)}),
  ],
)
@pytest.mark.anyio
async def test_draft_lands_within_length_window(minutes: int, sections: tuple[str, ...], content: dict) -> None:
  script = await ScriptComposer().compose(_preferences(minutes, sections), content)

  lower, upper = word_window(minutes * WORDS_PER_MINUTE)
  assert lower <= script.word_count <= upper
  assert script.within_tolerance()
  assert script.sections == sections
  assert script.text.startswith("Good morning, Sam.")
  assert not script.polished
  sentences = _sentences(script.text)
  assert len(sentences) == len(set(sentences))


@pytest.mark.parametrize(
  ("sections", "content"),
  [
    (("quotes",), {"quotes": _quotes("stoic")}),
    (ALL_SECTIONS, {"calendar": CALENDAR, "weather": WEATHER, "news": NEWS, "sports": SPORTS, "stocks": STOCKS, "quotes": _quotes(None)}),
  ],
)
@pytest.mark.anyio
async def test_long_briefing_with_thin_content_is_short_rather_than_repetitive(sections: tuple[str, ...], content: dict) -> None:
  script = await ScriptComposer().compose(_preferences(15, sections), content)

  sentences = _sentences(script.text)
  assert len(sentences) == len(set(sentences))
  assert script.word_count < word_window(15 * WORDS_PER_MINUTE)[0]
  assert "Whatever yesterday looked like, today is a fresh page." in sentences
  assert "Let that set the tone for your day." in sentences


@pytest.mark.anyio
async def test_missing_content_still_produces_a_full_length_script() -> None:
  script = await ScriptComposer().compose(_preferences(3, ("weather", "news")), {"weather": None, "news": None})
  assert script.sections == ()
  assert script.within_tolerance()
  assert "quiet morning" in script.text


def test_draft_is_deterministic_and_skips_disabled_sections() -> None:
  preferences = _preferences(5, ("news",), name=None)
  first = build_draft(preferences, {"news": NEWS, "weather": WEATHER})
  assert first == build_draft(preferences, {"news": NEWS, "weather": WEATHER})
  text, sections = first
  assert sections == ("news",)
  assert "Portland" not in text
  assert text.startswith("Good morning.")


def test_story_limits_grow_with_length() -> None:
  assert story_limits(1).news == 1
  assert story_limits(3).news == 2
  assert story_limits(5).news == 3
  assert story_limits(10).news == 4


@pytest.mark.anyio
async def test_polish_within_window_replaces_draft() -> None:
  target = 3 * WORDS_PER_MINUTE
  model = _PolishModel(text=" ".join(["Morning"] * target))
  script = await ScriptComposer(model, provider="openai").compose(_preferences(3, ("news",)), {"news": NEWS})

  assert script.polished
  assert script.word_count == target
  assert script.cost == Decimal("0.00045")
  assert "Story 0 headline" in model.prompts[0]


@pytest.mark.anyio
async def test_polish_outside_window_keeps_draft() -> None:
  model = _PolishModel(text="Too short.")
  script = await ScriptComposer(model, provider="openai").compose(_preferences(3, ("news",)), {"news": NEWS})

  assert not script.polished
  assert script.within_tolerance()
  assert script.cost == Decimal("0.00045")


@pytest.mark.anyio
async def test_polish_failure_keeps_draft() -> None:
  model = _PolishModel(error=RuntimeError("model overloaded"))
  script = await ScriptComposer(model, provider="openai").compose(_preferences(3, ("news",)), {"news": NEWS})

  assert not script.polished
  assert script.within_tolerance()
  assert script.cost == Decimal("0")


def test_sanitize_for_tts_removes_markup_and_labels() -> None:
  assert sanitize_for_tts("**Weather:** [upbeat] Sunny skies and a light breeze.") == "Sunny skies and a light breeze."
  assert sanitize_for_tts("Good morning, Sam. Good morning! Here we go.") == "Good morning, Sam. Here we go."


def test_script_tolerance_bounds() -> None:
  assert Script(text=" ".join(["w"] * 124), target_words=145, sections=()).within_tolerance()
  assert not Script(text=" ".join(["w"] * 123), target_words=145, sections=()).within_tolerance()
  assert not Script(text=" ".join(["w"] * 167), target_words=145, sections=()).within_tolerance()


@pytest.mark.anyio
async def test_polish_token_budget_covers_the_longest_briefing() -> None:
  model = _PolishModel(text="Too short.")
  await ScriptComposer(model, provider="openai").compose(_preferences(15, ("news",)), {"news": NEWS})

  _, upper = word_window(15 * WORDS_PER_MINUTE)
  assert model.max_tokens[0] >= int(upper * 1.3)
  assert model.max_tokens[0] > 2000


@pytest.mark.anyio
async def test_model_may_expand_a_short_draft() -> None:
  expanded = " ".join(f"word{index}" for index in range(1200))
  model = _PolishModel(text=expanded)
  script = await ScriptComposer(model, provider="openai").compose(_preferences(15, ("quotes",)), {"quotes": _quotes("stoic")})

  assert script.polished
  assert script.word_count == 1200
  assert not script.within_tolerance()
