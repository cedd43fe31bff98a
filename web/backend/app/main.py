"""FastAPI application for the Agora web service.

Provides REST API endpoints wrapping the agora Python package for:
- Registration and context-based login
- Trusted / blocked login context management and preferences
- Community membership, bans, moderators and post reports
- Admin community, rule and moderator management, and the audit log
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Callable

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from agora import __version__
from agora.config import configure_logging
from agora.errors import AgoraError
from web.backend.app.routers import admin, auth, communities

logger = logging.getLogger("agora.web")

app = FastAPI(
    title="Agora API",
    description=(
        "REST API for Agora. Provides endpoints for context-based login, "
        "login context management, community moderation and post reports."
    ),
    version=__version__,
)

# ---------------------------------------------------------------------------
# CORS middleware (allow all origins for development)
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Errors, request ids and access logs
# ---------------------------------------------------------------------------


@app.exception_handler(AgoraError)
async def agora_error_handler(request: Request, exc: AgoraError):
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message}, headers=headers)


@app.middleware("http")
async def request_id_and_access_log(request: Request, call_next: Callable):
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    start = time.time()
    try:
        response = await call_next(request)
    except Exception:  # noqa: BLE001
        logger.exception("Unhandled error", extra={"request_id": request_id})
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal error."},
            headers={"x-request-id": request_id},
        )

    duration_ms = int((time.time() - start) * 1000)
    response.headers["x-request-id"] = request_id

    # Structured access log (no bodies, no tokens).
    logger.info(
        json.dumps(
            {
                "event": "access",
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": getattr(response, "status_code", None),
                "duration_ms": duration_ms,
            }
        )
    )
    return response


@app.on_event("startup")
async def _configure_logging() -> None:
    configure_logging()


# ---------------------------------------------------------------------------
# Include routers
# ---------------------------------------------------------------------------
app.include_router(auth.router)
app.include_router(communities.router)
app.include_router(admin.router)


# ---------------------------------------------------------------------------
# Root and health-check endpoints
# ---------------------------------------------------------------------------


@app.get("/", tags=["meta"])
async def root():
    """Return basic API information."""
    return {
        "name": "Agora API",
        "version": __version__,
        "description": "Context-based login trust and community moderation",
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


@app.get("/health", tags=["meta"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
