"""Idempotent Alembic operations so a half-applied revision can be re-run safely."""

from __future__ import annotations

from typing import Any

from alembic import op
from sqlalchemy import text


def _resolve_schema(*, schema: str | None) -> str:
  return schema or "public"


def table_exists(*, table_name: str, schema: str | None = None) -> bool:
  """Return True when a base table exists in the target schema."""
  statement = text(
    """
    SELECT 1
    FROM information_schema.tables
    WHERE table_schema = :schema
      AND table_name = :table_name
      AND table_type = 'BASE TABLE'
    LIMIT 1
    """
  )
  result = op.get_bind().execute(statement, {"schema": _resolve_schema(schema=schema), "table_name": table_name})
  return result.first() is not None


def index_exists(*, index_name: str, schema: str | None = None) -> bool:
  """Return True when an index exists in the target schema."""
  statement = text(
    """
    SELECT 1
    FROM pg_indexes
    WHERE schemaname = :schema
      AND indexname = :index_name
    LIMIT 1
    """
  )
  result = op.get_bind().execute(statement, {"schema": _resolve_schema(schema=schema), "index_name": index_name})
  return result.first() is not None


def guarded_create_table(table_name: str, *args: Any, **kwargs: Any) -> None:
  """Create a table unless it already exists."""
  if table_exists(table_name=table_name, schema=kwargs.get("schema")):
    return
  op.create_table(table_name, *args, **kwargs)


def guarded_drop_table(table_name: str, *args: Any, **kwargs: Any) -> None:
  """Drop a table when present."""
  if not table_exists(table_name=table_name, schema=kwargs.get("schema")):
    return
  op.drop_table(table_name, *args, **kwargs)


def guarded_create_index(index_name: str, table_name: str, *args: Any, **kwargs: Any) -> None:
  """Create an index when its table exists and the index does not."""
  schema = kwargs.get("schema")
  if not table_exists(table_name=table_name, schema=schema):
    return
  if index_exists(index_name=index_name, schema=schema):
    return
  op.create_index(index_name, table_name, *args, **kwargs)


def guarded_drop_index(index_name: str, *args: Any, **kwargs: Any) -> None:
  """Drop an index when present."""
  if not index_exists(index_name=index_name, schema=kwargs.get("schema")):
    return
  op.drop_index(index_name, *args, **kwargs)
