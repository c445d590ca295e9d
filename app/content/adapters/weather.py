"""Daily forecast from Open-Meteo, scoped by coarse location."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from app.content.adapters.base import SourceAdapter
from app.content.models import ContentItem, NormalizedContent
from app.core.errors import PermanentSourceError

GEOCODE_URL = "https://geocoding-api.open-meteo.com/v1/search"
FORECAST_URL = "https://api.open-meteo.com/v1/forecast"
_FAHRENHEIT_COUNTRIES = {"us", "usa", "united states", "united states of america"}

# WMO weather interpretation codes grouped into spoken conditions.
_WMO_CONDITIONS: tuple[tuple[range, str], ...] = (
  (range(0, 1), "clear skies"),
  (range(1, 3), "partly cloudy skies"),
  (range(3, 4), "overcast skies"),
  (range(45, 49), "fog"),
  (range(51, 58), "drizzle"),
  (range(61, 68), "rain"),
  (range(71, 78), "snow"),
  (range(80, 83), "rain showers"),
  (range(85, 87), "snow showers"),
  (range(95, 100), "thunderstorms"),
)


def describe_weather_code(code: int | None) -> str:
  if code is None:
    return "mixed conditions"
  for codes, label in _WMO_CONDITIONS:
    if code in codes:
      return label
  return "mixed conditions"


def weather_scope(location: dict[str, Any] | None) -> str | None:
  """Build the `city|state|country` cache scope; None when no city is known."""
  if not location:
    return None
  city = str(location.get("city") or "").strip().lower()
  if not city:
    return None
  state = str(location.get("state") or "").strip().lower()
  country = str(location.get("country") or "").strip().lower()
  return f"{city}|{state}|{country}"


def _first(values: list[Any] | None) -> Any:
  return values[0] if values else None


def _rounded(value: Any) -> int | None:
  if value is None:
    return None
  return round(float(value))


def weather_item(*, location: str, current: int | None, high: int | None, low: int | None, condition: str, precipitation_chance: int | None, unit: str) -> ContentItem:
  parts = [f"Expect {condition} in {location}"]
  if high is not None and low is not None:
    parts.append(f"with a high of {high} and a low of {low} degrees")
  detail = " ".join(parts) + "."
  if precipitation_chance:
    detail += f" There is a {precipitation_chance} percent chance of precipitation."
  data = {"location": location, "current": current, "high": high, "low": low, "condition": condition, "precipitation_chance": precipitation_chance, "unit": unit}
  return ContentItem(headline=f"{condition.capitalize()} in {location}", detail=detail, data=data)


def content_from_client_weather(weather_data: dict[str, Any], *, location: str | None, fetched_at: datetime) -> NormalizedContent | None:
  """Normalize a forecast supplied by the client device; None when it carries nothing speakable."""
  high = _rounded(weather_data.get("highTemperatureF"))
  low = _rounded(weather_data.get("lowTemperatureF"))
  current = _rounded(weather_data.get("temperatureF"))
  condition = str(weather_data.get("condition") or "").strip().lower()
  if high is None and current is None and not condition:
    return None
  item = weather_item(location=location or "your area", current=current, high=high, low=low, condition=condition or "mixed conditions", precipitation_chance=_rounded(weather_data.get("precipitationChance")), unit="F")
  return NormalizedContent(content_type="weather", scope="client", source="client", fetched_at=fetched_at, items=[item])


class WeatherAdapter(SourceAdapter):
  content_type = "weather"
  provider = "open-meteo"

  async def _fetch_items(self, scope: str) -> tuple[list[ContentItem], str]:
    city, _, rest = scope.partition("|")
    state, _, country = rest.partition("|")
    if not city:
      raise PermanentSourceError("Weather scope requires a city.", source=self.provider, code="invalid_scope")

    geocode = await self._get_json(GEOCODE_URL, params={"name": city, "count": 10, "language": "en", "format": "json"})
    place = _pick_place(geocode.get("results") or [], state=state, country=country)
    if place is None:
      raise PermanentSourceError(f"No location matched '{city}'.", source=self.provider, code="location_not_found")

    fahrenheit = country in _FAHRENHEIT_COUNTRIES or str(place.get("country_code") or "").lower() == "us"
    params = {
      "latitude": place["latitude"],
      "longitude": place["longitude"],
      "current": "temperature_2m,weather_code",
      "daily": "temperature_2m_max,temperature_2m_min,precipitation_probability_max,weather_code",
      "temperature_unit": "fahrenheit" if fahrenheit else "celsius",
      "timezone": "auto",
      "forecast_days": 1,
    }
    forecast = await self._get_json(FORECAST_URL, params=params)
    daily = forecast.get("daily") or {}
    current = forecast.get("current") or {}
    code = _first(daily.get("weather_code"))
    if code is None:
      code = current.get("weather_code")
    item = weather_item(
      location=str(place.get("name") or city.title()),
      current=_rounded(current.get("temperature_2m")),
      high=_rounded(_first(daily.get("temperature_2m_max"))),
      low=_rounded(_first(daily.get("temperature_2m_min"))),
      condition=describe_weather_code(code),
      precipitation_chance=_rounded(_first(daily.get("precipitation_probability_max"))),
      unit="F" if fahrenheit else "C",
    )
    return [item], self.provider


def _pick_place(results: list[dict[str, Any]], *, state: str, country: str) -> dict[str, Any] | None:
  """Prefer a geocoding result matching the state and country hints."""
  if not results:
    return None
  for place in results:
    admin1 = str(place.get("admin1") or "").lower()
    place_country = {str(place.get("country") or "").lower(), str(place.get("country_code") or "").lower()}
    if (not state or state == admin1) and (not country or country in place_country):
      return place
  return results[0]
