from __future__ import annotations

from typing import Any

from sqlalchemy import MetaData


def include_object(object: Any, name: str, type_: str, reflected: bool, compare_to: Any) -> bool:
  """Keep autogenerate from proposing drops for objects the ORM does not model."""
  if type_ == "table" and name == "alembic_version":
    return False
  if type_ in ("table", "column") and reflected and compare_to is None:
    return False
  return True


def build_migration_context_options(*, target_metadata: MetaData) -> dict[str, Any]:
  """Shared Alembic options for online, offline and drift-check runs."""
  return {
    "compare_type": True,
    "compare_server_default": True,
    "include_schemas": False,
    "transaction_per_migration": True,
    "include_object": include_object,
    "target_metadata": target_metadata,
  }
