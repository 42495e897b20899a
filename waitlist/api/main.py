"""
waitlist.api.main — FastAPI application entry point
====================================================

Run with::

    uvicorn waitlist.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from waitlist.api.deps import get_engine  # noqa: E402
from waitlist.api.routes.account import router as account_router  # noqa: E402
from waitlist.api.routes.admin import router as admin_router  # noqa: E402
from waitlist.api.routes.onboarding import router as onboarding_router  # noqa: E402
from waitlist.database.engine import init_db  # noqa: E402
from waitlist.errors import WaitlistError  # noqa: E402

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once for the API process."""
    logging.basicConfig(
        level=getattr(logging, (level or os.getenv("LOG_LEVEL", "INFO")).upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — create tables and warm the DB engine."""
    configure_logging()
    engine = get_engine()
    init_db(engine)
    logger.info("Waitlist API started — engine ready (%s)", engine.url.database)
    yield
    logger.info("Waitlist API shutting down")


app = FastAPI(
    title="Waitlist API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(WaitlistError)
async def waitlist_error_handler(request: Request, exc: WaitlistError) -> JSONResponse:
    logger.info(
        "%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.code
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(onboarding_router, prefix="/api")
app.include_router(account_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
