from __future__ import annotations

import logging
import secrets
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from app.config import Settings, get_settings
from app.jobs.models import AccessTier

logger = logging.getLogger(__name__)

MAX_IDENTITY_LENGTH = 200


def require_identity(x_client_info: Annotated[str | None, Header()] = None) -> str:
  """Resolve the opaque client identity that scopes every job."""
  identity = (x_client_info or "").strip()
  if not identity:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail={"code": "missing_identity", "message": "x-client-info header is required."})
  if len(identity) > MAX_IDENTITY_LENGTH:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"code": "invalid_field", "field": "x-client-info", "message": "Identity header is too long."})
  return identity


def resolve_access_tier(x_auth_type: Annotated[str | None, Header()] = None) -> AccessTier:
  """Map the x-auth-type header onto an access tier; anything unknown is anonymous."""
  if (x_auth_type or "").strip().lower() == "purchase":
    return "purchase"
  return "anonymous"


def _bearer_matches(authorization: str | None, token: str) -> bool:
  return secrets.compare_digest((authorization or "").encode(), f"Bearer {token}".encode())


def require_worker_token(settings: Annotated[Settings, Depends(get_settings)], authorization: Annotated[str | None, Header()] = None) -> None:
  """Guard the processing, refresh and content-status triggers."""
  # Secure-by-default: an unset token disables the endpoint rather than opening it.
  if not settings.worker_auth_token:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Worker authentication is not configured.")
  if not _bearer_matches(authorization, settings.worker_auth_token):
    logger.warning("Unauthorized worker trigger attempt")
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid worker token.")


def require_cleanup_token(settings: Annotated[Settings, Depends(get_settings)], authorization: Annotated[str | None, Header()] = None) -> None:
  """Guard the retention sweep with its own elevated token."""
  if not settings.cleanup_auth_token:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cleanup authentication is not configured.")
  if not _bearer_matches(authorization, settings.cleanup_auth_token):
    logger.warning("Unauthorized cleanup trigger attempt")
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid cleanup token.")


def require_task_secret(settings: Annotated[Settings, Depends(get_settings)], authorization: Annotated[str | None, Header()] = None, x_daystart_task_secret: Annotated[str | None, Header()] = None) -> None:
  """Guard internal task endpoints; Cloud Tasks sends the secret header because OIDC occupies Authorization."""
  if not settings.task_secret:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Task authentication is not configured.")
  shared_secret_valid = secrets.compare_digest((x_daystart_task_secret or "").encode(), settings.task_secret.encode())
  bearer_valid = _bearer_matches(authorization, settings.task_secret)
  if not shared_secret_valid and not bearer_valid:
    logger.warning("Unauthorized access attempt to /internal/tasks/process-job")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid task secret.")
