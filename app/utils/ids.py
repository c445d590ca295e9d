"""Identifier utilities."""

from __future__ import annotations

import os
import socket
import uuid


def generate_job_id() -> str:
  """Return a new job identifier."""
  return str(uuid.uuid4())


def generate_worker_id(prefix: str = "worker") -> str:
  """Return a lease-owner id unique to this invocation."""
  # Host and pid make lease owners traceable in logs; the suffix keeps concurrent invocations distinct.
  return f"{prefix}-{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:8]}"
