"""Runtime environment contract checks for service and migrator processes.

How/Why:
- Keep runtime configuration explicit so deploy-time mistakes fail immediately.
- Prevent secret leakage by redacting sensitive values in startup logs.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

EnvUseTarget = Literal["service", "migrator", "both"]
EnvValidator = Callable[[str, dict[str, str]], str | None]

_TTS_KEYS = {"elevenlabs": "ELEVENLABS_API_KEY", "openai": "OPENAI_API_KEY", "gemini": "GEMINI_API_KEY"}


@dataclass(frozen=True)
class EnvVarDefinition:
  """Describe how and where an environment variable must be validated."""

  name: str
  required: bool
  secret: bool
  used_by: EnvUseTarget
  validator: EnvValidator | None = None


class EnvContractError(RuntimeError):
  """Raised when required runtime environment keys are missing or invalid."""


def _parse_bool(raw: str | None, *, default: bool = False) -> bool:
  """Parse boolean-ish environment values consistently for contract checks."""
  if raw is None:
    return default

  return raw.strip().lower() in {"1", "true", "yes", "on"}


def _validate_non_empty(value: str, _: dict[str, str]) -> str | None:
  """Ensure a value is not blank after trimming whitespace."""
  if value.strip() == "":
    return "must not be empty."

  return None


def _validate_allowed_origins(value: str, _: dict[str, str]) -> str | None:
  """Enforce strict CORS origins so wildcards cannot be introduced silently."""
  origins = [origin.strip() for origin in value.split(",") if origin.strip()]
  if not origins:
    return "must include at least one origin."

  if "*" in origins:
    return "must not include wildcard origins."

  return None


def _validate_environment_name(value: str, _: dict[str, str]) -> str | None:
  """Keep environment names predictable for deployment and startup controls."""
  normalized = value.strip().lower()
  if normalized in {"dev", "development", "stage", "staging", "prod", "production", "test", "testing"}:
    return None

  return "must be one of: development, stage, production, test (or aliases)."


def _validate_distinct_cleanup_token(value: str, env_map: dict[str, str]) -> str | None:
  """The retention sweep needs credentials the processing trigger does not carry."""
  if value.strip() and value.strip() == env_map.get("DAYSTART_WORKER_AUTH_TOKEN", "").strip():
    return "must differ from DAYSTART_WORKER_AUTH_TOKEN."

  return None


def _validate_tts_credentials(value: str, env_map: dict[str, str]) -> str | None:
  """Require the API key of the configured primary narration provider."""
  provider = (value.strip() or "elevenlabs").lower()
  key_name = _TTS_KEYS.get(provider)
  if key_name is None:
    return f"must be one of: {', '.join(sorted(_TTS_KEYS))}."

  if os.getenv(key_name, "").strip() == "" and env_map.get(key_name, "").strip() == "":
    return f"requires {key_name} to be set."

  return None


REQUIRED_ENV_REGISTRY: tuple[EnvVarDefinition, ...] = (
  EnvVarDefinition(name="DAYSTART_ENV", required=True, secret=False, used_by="service", validator=_validate_environment_name),
  EnvVarDefinition(name="DAYSTART_ALLOWED_ORIGINS", required=True, secret=False, used_by="service", validator=_validate_allowed_origins),
  EnvVarDefinition(name="DAYSTART_PG_DSN", required=True, secret=True, used_by="both", validator=_validate_non_empty),
  EnvVarDefinition(name="DAYSTART_AUDIO_BUCKET", required=True, secret=False, used_by="service", validator=_validate_non_empty),
  EnvVarDefinition(name="DAYSTART_WORKER_AUTH_TOKEN", required=True, secret=True, used_by="service", validator=_validate_non_empty),
  EnvVarDefinition(name="DAYSTART_CLEANUP_AUTH_TOKEN", required=True, secret=True, used_by="service", validator=_validate_distinct_cleanup_token),
  EnvVarDefinition(name="DAYSTART_TASK_SECRET", required=True, secret=True, used_by="service", validator=_validate_non_empty),
  EnvVarDefinition(name="DAYSTART_TTS_PRIMARY", required=False, secret=False, used_by="service", validator=_validate_tts_credentials),
)


def _iter_applicable_definitions(*, target: Literal["service", "migrator"]) -> tuple[EnvVarDefinition, ...]:
  """Filter registry entries so each process validates only relevant keys."""
  applicable: list[EnvVarDefinition] = []
  for definition in REQUIRED_ENV_REGISTRY:
    if definition.used_by == "both" or definition.used_by == target:
      applicable.append(definition)

  return tuple(applicable)


def _resolve_value(*, definition: EnvVarDefinition) -> str:
  """Resolve values with the DATABASE_URL alias for the DSN."""
  raw = os.getenv(definition.name)
  if raw is not None:
    return raw

  if definition.name == "DAYSTART_PG_DSN":
    return os.getenv("DATABASE_URL", "")

  return ""


def list_required_env_names(*, target: Literal["service", "migrator"]) -> tuple[str, ...]:
  """Expose required key names for deploy automation and script guardrails."""
  names: list[str] = []
  for definition in _iter_applicable_definitions(target=target):
    if definition.required:
      names.append(definition.name)

  return tuple(names)


def validate_env_values(*, target: Literal["service", "migrator"], env_map: dict[str, str]) -> list[str]:
  """Validate a provided env map against contract rules for a target process."""
  errors: list[str] = []
  applicable_definitions = _iter_applicable_definitions(target=target)
  for definition in applicable_definitions:
    value = env_map.get(definition.name, "")
    if definition.required and value.strip() == "":
      errors.append(f"{definition.name}: required variable is missing.")
      continue

    # Optional keys are validated even when unset so dependent-credential checks can run.
    if definition.validator and (value.strip() != "" or not definition.required):
      validation_error = definition.validator(value, env_map)
      if validation_error:
        errors.append(f"{definition.name}: {validation_error}")

  return errors


def validate_runtime_env_or_raise(*, logger: logging.Logger, target: Literal["service", "migrator"]) -> None:
  """Validate and log runtime env values using the centralized contract."""
  # Default to False to allow CI/Test environments to verify image startup without full config.
  # Production environments should explicitly set DAYSTART_ENV_CONTRACT_ENFORCE=1.
  env_contract_enabled = _parse_bool(os.getenv("DAYSTART_ENV_CONTRACT_ENFORCE"), default=False)
  resolved_values: dict[str, str] = {}
  applicable_definitions = _iter_applicable_definitions(target=target)
  for definition in applicable_definitions:
    value = _resolve_value(definition=definition)
    resolved_values[definition.name] = value
    if definition.secret:
      logger.info("ENV_CHECK key=%s value=<redacted>", definition.name)
    else:
      if value == "":
        logger.info("ENV_CHECK key=%s value=<missing>", definition.name)
      else:
        logger.info("ENV_CHECK key=%s value=%s", definition.name, value)

  errors = validate_env_values(target=target, env_map=resolved_values)

  if not errors:
    logger.info("ENV_CHECK status=ok target=%s checked=%d", target, len(applicable_definitions))
    return

  message = "ENV_CHECK status=failed target={target} violations:\n- {errors}".format(target=target, errors="\n- ".join(errors))
  if env_contract_enabled:
    logger.error(message)
    raise EnvContractError(message)

  logger.warning("ENV_CHECK enforcement disabled by DAYSTART_ENV_CONTRACT_ENFORCE=0")
  logger.warning(message)
