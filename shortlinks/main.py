"""FastAPI application entry point for the short link service.

This module configures the FastAPI application with middleware, lifecycle
management, metrics exposure and route registration.

Application Lifecycle Diagram
=============================
::
    ┌──────────────────┐
    │ uvicorn startup  │
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ lifespan():      │
    │ init_db()        │
    │ manager.init()   │  (redis, cache, resolver, recorder,
    └────────┬─────────┘   background workers)
             ▼
    ┌──────────────────┐
    │ Serve HTTP       │
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ lifespan():      │
    │ manager.cleanup()│  (drains background queue first)
    │ close_db()       │
    └──────────────────┘

How to Use
===========
**Step 1 — Run with uvicorn**::
    uvicorn shortlinks.main:app --host 0.0.0.0 --port 8080

**Step 2 — Create an account**::
    python -m shortlinks.cli create-user alice alice@example.com --password secret

**Step 3 — Make API calls**::
    curl -X POST http://localhost:8080/api/auth/login \
         -H "Content-Type: application/json" \
         -d '{"username": "alice", "password": "secret"}'

Key Behaviours
===============
- Database tables are created automatically on startup.
- Pending visit and click jobs are drained before shutdown.
- /metrics is registered before the catch-all redirect route.
"""

__all__ = ["app"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from shortlinks.config import get_settings
from shortlinks.database import close_db, init_db
from shortlinks.dependencies import _service_manager
from shortlinks.routes import router

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await init_db()
    await _service_manager.initialize(settings)
    yield
    # Shutdown
    await _service_manager.cleanup()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Short links with redirect analytics",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
).instrument(app).expose(app)

app.include_router(router)
