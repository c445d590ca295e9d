from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import jobs, status, tasks, worker
from app.config import get_settings
from app.core.errors import DayStartError
from app.core.exceptions import daystart_exception_handler, global_exception_handler, http_exception_handler, request_validation_exception_handler
from app.core.json import DecimalJSONResponse
from app.core.lifespan import lifespan
from app.core.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware

APP_VERSION = "1.0.0"

settings = get_settings()

app = FastAPI(default_response_class=DecimalJSONResponse, lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

app.add_middleware(
  CORSMiddleware,
  allow_origins=settings.allowed_origins,
  allow_credentials=True,
  allow_methods=["GET", "POST", "OPTIONS"],
  allow_headers=["content-type", "authorization", "x-client-info", "x-auth-type"],
  expose_headers=["content-length", "x-request-id", "x-client-info", "x-auth-type"],
)


# Add exception handlers
app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(DayStartError, daystart_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)

# Add middleware
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(SecurityHeadersMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": APP_VERSION}


app.include_router(jobs.router, prefix="/v1", tags=["jobs"])
app.include_router(status.router, prefix="/v1", tags=["status"])
app.include_router(worker.router, prefix="/v1", tags=["worker"])
app.include_router(tasks.router, prefix="/internal", tags=["tasks"])
