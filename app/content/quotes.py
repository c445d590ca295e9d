"""Bundled quote library with a deterministic daily pick per category."""

from __future__ import annotations

import hashlib
import logging

from app.content.models import ContentItem

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "inspirational"

# Client display names map onto library keys.
CATEGORY_ALIASES = {
  "buddhist": "buddhist",
  "christian": "christian",
  "good feelings": "goodFeelings",
  "goodfeelings": "goodFeelings",
  "hindu": "hindu",
  "inspirational": "inspirational",
  "jewish": "jewish",
  "mindfulness": "mindfulness",
  "muslim": "muslim",
  "philosophical": "philosophical",
  "stoic": "stoic",
  "success": "success",
  "zen": "zen",
}

QUOTE_LIBRARY: dict[str, tuple[tuple[str, str], ...]] = {
  "buddhist": (
    ("What you think, you become.", "the Buddha"),
    ("Peace comes from within. Do not seek it without.", "the Buddha"),
    ("Hatred does not cease by hatred, but only by love.", "the Dhammapada"),
    ("Just as a candle cannot burn without fire, men cannot live without a spiritual life.", "the Buddha"),
    ("Every morning we are born again. What we do today is what matters most.", "the Buddha"),
  ),
  "christian": (
    ("This is the day which the Lord hath made; we will rejoice and be glad in it.", "Psalm 118"),
    ("Be strong and of a good courage; be not afraid.", "Joshua 1:9"),
    ("Let all that you do be done in love.", "1 Corinthians 16:14"),
    ("His compassions fail not. They are new every morning.", "Lamentations 3"),
    ("Cast all your anxiety on him because he cares for you.", "1 Peter 5:7"),
  ),
  "goodFeelings": (
    ("Keep your face always toward the sunshine, and shadows will fall behind you.", "Walt Whitman"),
    ("Happiness is not something ready made. It comes from your own actions.", "the Dalai Lama"),
    ("A smile is a curve that sets everything straight.", "Phyllis Diller"),
    ("Wherever you go, no matter what the weather, always bring your own sunshine.", "Anthony J. D'Angelo"),
    ("The best way to cheer yourself up is to try to cheer somebody else up.", "Mark Twain"),
  ),
  "hindu": (
    ("You have the right to work, but never to the fruit of work.", "the Bhagavad Gita"),
    ("The mind is restless, but it can be trained by practice.", "the Bhagavad Gita"),
    ("Truth is one; the wise call it by many names.", "the Rig Veda"),
    ("Arise, awake, and stop not till the goal is reached.", "Swami Vivekananda"),
    ("As a person acts, so does he become.", "the Upanishads"),
  ),
  "inspirational": (
    ("The secret of getting ahead is getting started.", "Mark Twain"),
    ("It always seems impossible until it is done.", "Nelson Mandela"),
    ("What lies behind us and what lies before us are tiny matters compared to what lies within us.", "Ralph Waldo Emerson"),
    ("Act as if what you do makes a difference. It does.", "William James"),
    ("You are never too old to set another goal or to dream a new dream.", "C. S. Lewis"),
    ("Believe you can and you're halfway there.", "Theodore Roosevelt"),
  ),
  "jewish": (
    ("If I am not for myself, who will be for me? And if not now, when?", "Hillel"),
    ("Who is rich? One who is happy with their portion.", "Pirkei Avot"),
    ("It is not your duty to finish the work, but neither are you free to desist from it.", "Rabbi Tarfon"),
    ("Kindness is the highest form of wisdom.", "the Talmud"),
    ("The whole world is a very narrow bridge; the main thing is not to be afraid.", "Rabbi Nachman of Breslov"),
  ),
  "mindfulness": (
    ("The present moment is filled with joy and happiness. If you are attentive, you will see it.", "Thich Nhat Hanh"),
    ("Wherever you go, there you are.", "Jon Kabat-Zinn"),
    ("Feelings come and go like clouds in a windy sky. Conscious breathing is my anchor.", "Thich Nhat Hanh"),
    ("The little things? The little moments? They aren't little.", "Jon Kabat-Zinn"),
    ("Almost everything will work again if you unplug it for a few minutes, including you.", "Anne Lamott"),
  ),
  "muslim": (
    ("Verily, with hardship comes ease.", "the Quran"),
    ("The best of people are those most beneficial to people.", "the Prophet Muhammad"),
    ("Be in this world as if you were a stranger or a traveler.", "the Prophet Muhammad"),
    ("What is meant for you will reach you, even if it is beneath two mountains.", "Ibn al-Qayyim"),
    ("Yesterday I was clever, so I wanted to change the world. Today I am wise, so I am changing myself.", "Rumi"),
  ),
  "philosophical": (
    ("The unexamined life is not worth living.", "Socrates"),
    ("We are what we repeatedly do. Excellence, then, is not an act, but a habit.", "Will Durant"),
    ("He who has a why to live can bear almost any how.", "Friedrich Nietzsche"),
    ("Happiness depends upon ourselves.", "Aristotle"),
    ("The only true wisdom is in knowing you know nothing.", "Socrates"),
  ),
  "stoic": (
    ("You have power over your mind, not outside events. Realize this, and you will find strength.", "Marcus Aurelius"),
    ("We suffer more often in imagination than in reality.", "Seneca"),
    ("It's not what happens to you, but how you react to it that matters.", "Epictetus"),
    ("Waste no more time arguing what a good man should be. Be one.", "Marcus Aurelius"),
    ("Begin at once to live, and count each separate day as a separate life.", "Seneca"),
  ),
  "success": (
    ("Success is not final, failure is not fatal. It is the courage to continue that counts.", "Winston Churchill"),
    ("The way to get started is to quit talking and begin doing.", "Walt Disney"),
    ("Opportunities don't happen. You create them.", "Chris Grosser"),
    ("Do what you can, with what you have, where you are.", "Theodore Roosevelt"),
    ("Quality is not an act, it is a habit.", "Aristotle"),
  ),
  "zen": (
    ("Before enlightenment, chop wood, carry water. After enlightenment, chop wood, carry water.", "a Zen proverb"),
    ("In the beginner's mind there are many possibilities, in the expert's mind there are few.", "Shunryu Suzuki"),
    ("When walking, walk. When eating, eat.", "a Zen proverb"),
    ("No snowflake ever falls in the wrong place.", "a Zen saying"),
    ("The obstacle is the path.", "a Zen proverb"),
  ),
}


def resolve_category(preference: str | None) -> str:
  """Map a client preference onto a library key, defaulting to inspirational."""
  if not preference:
    return DEFAULT_CATEGORY
  category = CATEGORY_ALIASES.get(preference.strip().lower())
  if category is None:
    logger.info("Unknown quote preference %r; using %s", preference, DEFAULT_CATEGORY)
    return DEFAULT_CATEGORY
  return category


def _daily_index(category: str, local_date: str) -> int:
  digest = hashlib.sha256(f"{category}:{local_date}".encode()).digest()
  return int.from_bytes(digest[:4], "big") % len(QUOTE_LIBRARY[category])


def _item(category: str, index: int) -> ContentItem:
  text, author = QUOTE_LIBRARY[category][index]
  return ContentItem(headline=text, detail=author, source="library", data={"category": category})


def daily_quotes(preference: str | None, local_date: str) -> list[ContentItem]:
  """The same day's quote for every listener sharing a category and local date, then the rest of its category."""
  category = resolve_category(preference)
  start = _daily_index(category, local_date)
  count = len(QUOTE_LIBRARY[category])
  return [_item(category, (start + offset) % count) for offset in range(count)]
