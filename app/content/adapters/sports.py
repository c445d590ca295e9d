"""League scoreboards from ESPN's public site API."""

from __future__ import annotations

from typing import Any

from app.config import Settings
from app.content.adapters.base import SourceAdapter
from app.content.models import ContentItem
from app.core.errors import PermanentSourceError

SCOREBOARD_URL = "https://site.api.espn.com/apis/site/v2/sports/{path}/scoreboard"
LEAGUE_PATHS = {"mlb": "baseball/mlb", "nhl": "hockey/nhl", "nba": "basketball/nba", "nfl": "football/nfl", "ncaaf": "football/college-football"}
MAX_GAMES = 10

# Finished games lead the section, then games in progress, then today's schedule.
_STATE_ORDER = {"post": 0, "in": 1, "pre": 2}


def _competitors(event: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]] | None:
  competitions = event.get("competitions") or []
  if not competitions:
    return None
  teams = competitions[0].get("competitors") or []
  home = next((team for team in teams if team.get("homeAway") == "home"), None)
  away = next((team for team in teams if team.get("homeAway") == "away"), None)
  if home is None or away is None:
    return None
  return home, away


def _team_name(competitor: dict[str, Any]) -> str:
  team = competitor.get("team") or {}
  return str(team.get("shortDisplayName") or team.get("displayName") or "Unknown")


def _score(competitor: dict[str, Any]) -> int | None:
  try:
    return int(competitor.get("score"))
  except (TypeError, ValueError):
    return None


def describe_game(event: dict[str, Any], league: str) -> ContentItem | None:
  """Turn one scoreboard event into a spoken line; None when the event is malformed."""
  pair = _competitors(event)
  if pair is None:
    return None
  home, away = pair
  status_type = (event.get("status") or {}).get("type") or {}
  state = str(status_type.get("state") or "pre")
  detail = str(status_type.get("shortDetail") or status_type.get("detail") or "")
  home_name, away_name = _team_name(home), _team_name(away)
  home_score, away_score = _score(home), _score(away)
  label = league.upper()

  if state == "post" and home_score is not None and away_score is not None:
    winner, loser, high, low = (home_name, away_name, home_score, away_score) if home_score >= away_score else (away_name, home_name, away_score, home_score)
    headline = f"{winner} beat {loser} {high} to {low}" if high != low else f"{home_name} and {away_name} tied at {high}"
  elif state == "in" and home_score is not None and away_score is not None:
    leader, trailer, high, low = (home_name, away_name, home_score, away_score) if home_score >= away_score else (away_name, home_name, away_score, home_score)
    headline = f"{leader} lead {trailer} {high} to {low}" + (f", {detail}" if detail else "")
  else:
    state = "pre"
    headline = f"{away_name} visit {home_name}" + (f", {detail}" if detail else "")

  data = {"league": label, "state": state, "home": home_name, "away": away_name, "home_score": home_score, "away_score": away_score}
  return ContentItem(headline=headline, detail=str(event.get("name") or ""), source="espn", published_at=event.get("date"), score=float(2 - _STATE_ORDER.get(state, 2)), data=data)


class SportsAdapter(SourceAdapter):
  content_type = "sports"
  provider = "espn"

  def configured_scopes(self, settings: Settings) -> list[str]:
    return [league.lower() for league in settings.default_sports if league.lower() in LEAGUE_PATHS]

  async def _fetch_items(self, scope: str) -> tuple[list[ContentItem], str]:
    path = LEAGUE_PATHS.get(scope.lower())
    if path is None:
      raise PermanentSourceError(f"Unsupported league scope '{scope}'.", source=self.provider, code="invalid_scope")
    payload = await self._get_json(SCOREBOARD_URL.format(path=path))
    items = [item for item in (describe_game(event, scope) for event in payload.get("events") or []) if item is not None]
    items.sort(key=lambda item: (_STATE_ORDER.get(item.data.get("state"), 2), item.published_at or ""))
    return items[:MAX_GAMES], self.provider
