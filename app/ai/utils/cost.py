from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

PricingTable = dict[str, dict[str, tuple[float, float]]]

# USD per 1M tokens (input, output).
DEFAULT_PRICING: PricingTable = {
  "openai": {"gpt-4o-mini": (0.15, 0.60), "gpt-4o": (2.50, 10.00), "gpt-4.1-mini": (0.40, 1.60)},
  "gemini": {"gemini-2.0-flash": (0.10, 0.40), "gemini-2.0-flash-lite": (0.075, 0.30), "gemini-2.5-flash": (0.30, 2.50)},
}

# USD per 1K narrated characters.
TTS_PRICING_PER_1K_CHARS: dict[str, Decimal] = {"elevenlabs": Decimal("0.10"), "openai": Decimal("0.015"), "gemini": Decimal("0.010")}

_COST_QUANTUM = Decimal("0.00001")


def calculate_total_cost(usage: list[dict[str, Any]], pricing_table: PricingTable | None = None, provider: str | None = None) -> float:
  """Estimate total cost based on token usage."""
  pricing = pricing_table if pricing_table is not None else DEFAULT_PRICING
  # Normalize the provider to keep pricing lookups stable.
  fallback_provider = str(provider or "openai").strip().lower()

  total = 0.0
  for entry in usage:
    entry_provider = str(entry.get("provider") or fallback_provider).strip().lower()
    model = str(entry.get("model") or "").strip()
    price_in, price_out = pricing.get(entry_provider, {}).get(model, (0.0, 0.0))

    in_tokens = int(entry.get("prompt_tokens") or 0)
    out_tokens = int(entry.get("completion_tokens") or 0)

    call_cost = (in_tokens / 1_000_000) * price_in
    call_cost += (out_tokens / 1_000_000) * price_out

    entry["input_tokens"] = in_tokens
    entry["output_tokens"] = out_tokens
    entry["estimated_cost"] = round(call_cost, 6)

    total += call_cost

  return round(total, 6)


def calculate_tts_cost(provider: str, characters: int) -> Decimal:
  """Price a narration by character count; unknown providers cost nothing."""
  rate = TTS_PRICING_PER_1K_CHARS.get(provider.strip().lower(), Decimal("0"))
  return (rate * Decimal(characters) / Decimal(1000)).quantize(_COST_QUANTUM, rounding=ROUND_HALF_UP)


def to_cost_decimal(value: float) -> Decimal:
  return Decimal(str(value)).quantize(_COST_QUANTUM, rounding=ROUND_HALF_UP)
