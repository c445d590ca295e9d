"""Script composition for spoken briefings.

A deterministic draft is assembled from section renderers under a word budget,
then optionally polished by a text model. Drafts aim for LENGTH_TOLERANCE of
the target word count: trailing sentences are trimmed from long ones, and short
ones first take the section detail the allocation left out, then each reflection
at most once. Nothing is repeated, so thin content can leave a draft short; the
model may expand it, and a polish result outside the window is otherwise
discarded in favour of the draft.
"""

from __future__ import annotations

import hashlib
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from app.ai.prompts import SCRIPT_SYSTEM_PROMPT, render_polish_prompt
from app.ai.providers.base import AIModel
from app.ai.utils.cost import calculate_total_cost, to_cost_decimal
from app.content.models import ContentItem, NormalizedContent
from app.jobs.models import JobRecord

logger = logging.getLogger(__name__)

WORDS_PER_MINUTE = 145
LENGTH_TOLERANCE = 0.15
MAX_SENTENCE_WORDS = 35
SECTION_ORDER = ("calendar", "weather", "news", "sports", "stocks", "quotes")
# Relative share of the body budget; calendar and weather outrank the supplementary sections.
SECTION_WEIGHTS = {"calendar": 1.0, "weather": 1.0, "news": 1.4, "sports": 0.7, "stocks": 0.7, "quotes": 0.4}

TRANSITIONS = {
  "calendar": "Let's start with your day.",
  "weather": "Now for the weather.",
  "news": "Here's what's making news this morning.",
  "sports": "Over in sports.",
  "stocks": "A quick look at the markets.",
  "quotes": "And a thought to carry with you.",
}

REFLECTIONS = (
  "Take a slow breath before you dive in.",
  "Pick the one task that would make today feel like a win, and start there.",
  "A few minutes of quiet now can save an hour of scrambling later.",
  "Notice one small thing you're grateful for this morning.",
  "Drink a glass of water before the coffee kicks in.",
  "If the day gets busy, come back to your first priority.",
  "Kindness costs nothing, so spend it freely today.",
  "Step outside for a moment if you can, even just to feel the air.",
  "Progress beats perfection, so keep moving.",
  "Check in with someone you haven't talked to in a while.",
  "Give yourself permission to take a real break at lunch.",
  "Stretch your shoulders and unclench your jaw.",
  "Whatever yesterday looked like, today is a fresh page.",
  "Decide now what you will leave for tomorrow.",
  "Small steps taken every day add up to big changes.",
  "Keep your phone face down for the first focused hour.",
  "Ask yourself what would make today a little easier, and do that first.",
  "Celebrate one thing you finished yesterday.",
  "Move your body for a few minutes, it clears the head.",
  "Be patient with yourself and with the people around you.",
  "Write down the three things that matter most before the inbox takes over.",
  "Open a window and let some fresh air into the room.",
  "Say thank you to someone who usually goes unnoticed.",
  "Plan one moment today that is just for you.",
  "If a task takes two minutes, do it now and let it go.",
  "Put your shoulders back and take the day at your own pace.",
  "Listen a little longer than you talk in your next conversation.",
  "Tidy one small corner of your space before you start working.",
  "Eat something that will actually keep you going until lunch.",
  "Remember that asking for help is a sign of strength.",
  "Set a gentle reminder to stand up and move every hour.",
  "Let go of one worry you cannot change today.",
  "Learn one new thing, however small, before the day is done.",
  "Smile at the first person you see, and watch what happens.",
  "Finish what you start, even if it is only the first page.",
  "Look up from the screen now and then and rest your eyes.",
  "Choose curiosity over judgment when something surprises you.",
  "Save a little energy for the people waiting for you this evening.",
  "When you feel rushed, slow your breathing before you answer.",
  "End the day by noting one thing that went right.",
)

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


@dataclass(frozen=True)
class StoryLimits:
  news: int
  sports: int
  stocks: int


def story_limits(target_minutes: int) -> StoryLimits:
  """Starting item counts by briefing length; extra items are pulled only when budget remains."""
  if target_minutes <= 1:
    return StoryLimits(news=1, sports=1, stocks=1)
  if target_minutes <= 3:
    return StoryLimits(news=2, sports=1, stocks=1)
  if target_minutes <= 5:
    return StoryLimits(news=3, sports=1, stocks=2)
  return StoryLimits(news=4, sports=2, stocks=2)


def count_words(text: str) -> int:
  return len(text.split())


def word_window(target_words: int) -> tuple[int, int]:
  return math.ceil(target_words * (1 - LENGTH_TOLERANCE)), math.floor(target_words * (1 + LENGTH_TOLERANCE))


@dataclass(frozen=True)
class ScriptPreferences:
  """Listener preferences that shape the script."""

  local_date: str
  target_minutes: int
  enabled_sections: tuple[str, ...]
  preferred_name: str | None = None
  stock_symbols: tuple[str, ...] = ()

  @classmethod
  def from_job(cls, job: JobRecord) -> ScriptPreferences:
    return cls(local_date=job.local_date, target_minutes=job.daystart_length, enabled_sections=tuple(job.enabled_content_types()), preferred_name=job.preferred_name, stock_symbols=tuple(job.stock_symbols))


@dataclass(frozen=True)
class Script:
  text: str
  target_words: int
  sections: tuple[str, ...]
  polished: bool = False
  cost: Decimal = Decimal("0")
  usage: list[dict[str, Any]] = field(default_factory=list, hash=False)

  @property
  def word_count(self) -> int:
    return count_words(self.text)

  @property
  def estimated_seconds(self) -> int:
    return round(self.word_count / WORDS_PER_MINUTE * 60)

  def within_tolerance(self) -> bool:
    lower, upper = word_window(self.target_words)
    return lower <= self.word_count <= upper


def sanitize_for_tts(raw: str) -> str:
  """Strip stage directions, markdown and section labels so the text reads cleanly aloud."""
  text = raw.strip()
  text = re.sub(r"\[.*?\]", "", text)
  text = re.sub(r"[*_#`>]+", "", text)
  text = re.sub(r"^(weather|news|sports|stocks|quotes?|calendar)\s*:\s*", "", text, flags=re.IGNORECASE | re.MULTILINE)
  text = re.sub(r"^((good morning[^.!?]*[.!?])\s*)(good morning[^.!?]*[.!?]\s*)+", r"\1", text, flags=re.IGNORECASE)
  text = re.sub(r"\s{2,}", " ", text)
  return text.strip()


def _clip(sentence: str, max_words: int = MAX_SENTENCE_WORDS) -> str:
  sentence = sanitize_for_tts(sentence)
  words = sentence.split()
  if len(words) <= max_words:
    return sentence
  return " ".join(words[:max_words]).rstrip(",;:") + "."


def _sentence(text: str) -> str:
  text = text.strip()
  if not text:
    return ""
  if text[-1] not in ".!?":
    text += "."
  return _clip(text)


def _first_sentence(text: str) -> str:
  parts = _SENTENCE_SPLIT.split(text.strip(), maxsplit=1)
  return _sentence(parts[0]) if parts and parts[0] else ""


@dataclass
class _Section:
  name: str
  core: list[str]
  extras: list[str]
  sentences: list[str] = field(default_factory=list)

  @property
  def words(self) -> int:
    return sum(count_words(sentence) for sentence in self.sentences)


def _render_calendar(items: list[ContentItem], limits: StoryLimits) -> tuple[list[str], list[str]]:
  events = [item.headline for item in items]
  noun = "event" if len(events) == 1 else "events"
  core = [_sentence(f"You have {len(events)} {noun} on your calendar today"), _sentence(f"First up, {events[0]}")]
  extras = [_sentence(f"After that, {event}") for event in events[1:]]
  extras.append("Leave yourself a few minutes between commitments.")
  return core, extras


def _render_weather(items: list[ContentItem], limits: StoryLimits) -> tuple[list[str], list[str]]:
  item = items[0]
  data = item.data
  core = [_sentence(item.detail or item.headline)]
  extras: list[str] = []
  if data.get("current") is not None:
    extras.append(_sentence(f"Right now it's {data['current']} degrees"))
  condition = str(data.get("condition") or "")
  high = data.get("high")
  low = data.get("low")
  unit = data.get("unit") or "F"
  if "rain" in condition or "drizzle" in condition or "thunder" in condition or (data.get("precipitation_chance") or 0) >= 50:
    extras.append("You may want to keep an umbrella handy.")
  if "snow" in condition:
    extras.append("Give yourself extra time if you're heading out on the roads.")
  if high is not None and high >= (85 if unit == "F" else 29):
    extras.append("It's going to be a warm one, so stay hydrated.")
  if low is not None and low <= (40 if unit == "F" else 4):
    extras.append("Grab a warm layer before you head out.")
  return core, extras


def _render_stories(items: list[ContentItem], limit: int) -> tuple[list[str], list[str]]:
  """Headlines up to the limit are core; details and later stories are extras."""
  lead = items[:limit]
  rest = items[limit:]
  core = [_sentence(item.headline) for item in lead]
  extras = [_first_sentence(item.detail) for item in lead if item.detail]
  for item in rest:
    extras.append(_sentence(item.headline))
    if item.detail:
      extras.append(_first_sentence(item.detail))
  return core, [sentence for sentence in extras if sentence]


def _render_news(items: list[ContentItem], limits: StoryLimits) -> tuple[list[str], list[str]]:
  return _render_stories(items, limits.news)


def _render_sports(items: list[ContentItem], limits: StoryLimits) -> tuple[list[str], list[str]]:
  return _render_stories(items, limits.sports)


def _render_stocks(items: list[ContentItem], limits: StoryLimits) -> tuple[list[str], list[str]]:
  return _render_stories(items, limits.stocks)


def _render_quotes(items: list[ContentItem], limits: StoryLimits) -> tuple[list[str], list[str]]:
  item = items[0]
  attribution = f"As {item.detail} put it" if item.detail else "As the saying goes"
  core = [_clip(f"{attribution}: {item.headline}", max_words=60)]
  extras = ["Let that set the tone for your day."]
  for companion in items[1:]:
    source = f", from {companion.detail}" if companion.detail else ""
    extras.append(_clip(f"Another line worth keeping{source}: {companion.headline}", max_words=60))
  return core, extras


_RENDERERS = {"calendar": _render_calendar, "weather": _render_weather, "news": _render_news, "sports": _render_sports, "stocks": _render_stocks, "quotes": _render_quotes}


def _greeting(preferences: ScriptPreferences) -> list[str]:
  name = f", {preferences.preferred_name}" if preferences.preferred_name else ""
  try:
    day = date.fromisoformat(preferences.local_date)
    when = f"It's {day.strftime('%A, %B')} {day.day}."
  except ValueError:
    when = "Here's a fresh day."
  return [f"Good morning{name}.", when, "This is your DayStart."]


def _sign_off(preferences: ScriptPreferences) -> list[str]:
  name = f", {preferences.preferred_name}" if preferences.preferred_name else ""
  return ["That's your DayStart for today.", f"Go make it a great one{name}."]


def _fillers(seed: str) -> list[str]:
  """Every reflection once, rotated by seed so listeners do not all hear the same opener."""
  offset = int.from_bytes(hashlib.sha256(seed.encode()).digest()[:2], "big") % len(REFLECTIONS)
  return list(REFLECTIONS[offset:] + REFLECTIONS[:offset])


def _take(core: list[str], extras: list[str], allocation: int, mandatory: int) -> list[str]:
  chosen = core[:mandatory]
  used = sum(count_words(sentence) for sentence in chosen)
  for sentence in core[mandatory:] + extras:
    words = count_words(sentence)
    if used + words > allocation:
      break
    chosen.append(sentence)
    used += words
  return chosen


def build_draft(preferences: ScriptPreferences, content_by_type: dict[str, NormalizedContent | None]) -> tuple[str, tuple[str, ...]]:
  """Assemble the deterministic script and return it with the sections it covers."""
  target = preferences.target_minutes * WORDS_PER_MINUTE
  lower, upper = word_window(target)
  limits = story_limits(preferences.target_minutes)

  opening = _greeting(preferences)
  closing = _sign_off(preferences)

  sections: list[_Section] = []
  for name in SECTION_ORDER:
    if name not in preferences.enabled_sections:
      continue
    content = content_by_type.get(name)
    if content is None or not content.items:
      continue
    core, extras = _RENDERERS[name](content.items, limits)
    core = [sentence for sentence in core if sentence]
    if not core:
      continue
    sections.append(_Section(name=name, core=[TRANSITIONS[name], *core], extras=[sentence for sentence in extras if sentence]))

  budget = target - sum(count_words(sentence) for sentence in opening + closing)
  # Allocate by weight over the sections still to come, so unused words flow forward.
  for index, section in enumerate(sections):
    weight_left = sum(SECTION_WEIGHTS[later.name] for later in sections[index:])
    allocation = int(budget * SECTION_WEIGHTS[section.name] / weight_left) if weight_left else 0
    section.sentences = _take(section.core, section.extras, allocation, mandatory=2)
    budget -= section.words

  padding: list[str] = []
  if not sections:
    padding.append("It's a quiet morning, so let's keep things simple.")
  fillers = _fillers(f"{preferences.local_date}:{preferences.preferred_name or ''}")

  def _total() -> int:
    return sum(count_words(sentence) for sentence in opening + closing + padding) + sum(section.words for section in sections)

  # Drop trailing detail from the least important sections until the draft fits.
  while _total() > upper:
    trimmable = [section for section in reversed(sections) if len(section.sentences) > 2]
    if trimmable:
      trimmable[0].sentences.pop()
    elif padding:
      padding.pop()
    elif sections:
      sections.pop()
    else:
      break

  # Pull in section material the allocation left out before reaching for reflections.
  for section in sections:
    for sentence in section.core + section.extras:
      if _total() >= target:
        break
      if sentence in section.sentences or _total() + count_words(sentence) > upper:
        continue
      section.sentences.append(sentence)

  for filler in fillers:
    if _total() >= target:
      break
    if _total() + count_words(filler) <= upper:
      padding.append(filler)

  if _total() < lower:
    logger.info("Draft is %d words, short of the %d-%d window; not enough material to pad without repeating.", _total(), lower, upper)

  body = [sentence for section in sections for sentence in section.sentences]
  text = " ".join(opening + body + padding + closing)
  names = tuple(section.name for section in sections)
  logger.debug("Draft %d words (target %d, window %d-%d) sections=%s", count_words(text), target, lower, upper, names)
  return text, names


class ScriptComposer:
  """Build scripts from cached content, with optional model polish."""

  def __init__(self, model: AIModel | None = None, *, provider: str | None = None) -> None:
    self._model = model
    self._provider = provider

  async def compose(self, preferences: ScriptPreferences, content_by_type: dict[str, NormalizedContent | None], target_minutes: int | None = None) -> Script:
    if target_minutes is not None and target_minutes != preferences.target_minutes:
      preferences = ScriptPreferences(local_date=preferences.local_date, target_minutes=target_minutes, enabled_sections=preferences.enabled_sections, preferred_name=preferences.preferred_name, stock_symbols=preferences.stock_symbols)
    target = preferences.target_minutes * WORDS_PER_MINUTE
    draft_text, sections = build_draft(preferences, content_by_type)
    draft = Script(text=sanitize_for_tts(draft_text), target_words=target, sections=sections)
    if self._model is None or not sections:
      return draft
    return await self._polish(draft, preferences)

  async def _polish(self, draft: Script, preferences: ScriptPreferences) -> Script:
    lower, upper = word_window(draft.target_words)
    prompt = render_polish_prompt(draft.text, target_words=draft.target_words, lower_words=lower, upper_words=upper, listener_name=preferences.preferred_name, sections=list(draft.sections))
    # About 1.3 tokens per English word, with headroom so the upper bound is never cut off.
    max_tokens = max(int(upper * 1.6), 300)
    try:
      response = await self._model.generate(prompt, system=SCRIPT_SYSTEM_PROMPT, temperature=0.5, max_tokens=max_tokens)
    except Exception:  # noqa: BLE001
      logger.warning("Script polish failed; keeping deterministic draft.", exc_info=True)
      return draft

    usage: list[dict[str, Any]] = []
    if response.usage:
      usage.append({"provider": self._provider, "model": self._model.name, **response.usage})
    cost = to_cost_decimal(calculate_total_cost(usage, provider=self._provider))
    polished = Script(text=sanitize_for_tts(response.content), target_words=draft.target_words, sections=draft.sections, polished=True, cost=cost, usage=usage)
    if draft.word_count < lower and draft.word_count < polished.word_count <= upper:
      logger.info("Model expanded a short %d-word draft to %d words.", draft.word_count, polished.word_count)
      return polished
    if not polished.within_tolerance():
      logger.info("Polished script has %d words outside %d-%d; keeping draft.", polished.word_count, lower, upper)
      return Script(text=draft.text, target_words=draft.target_words, sections=draft.sections, cost=cost, usage=usage)
    return polished
