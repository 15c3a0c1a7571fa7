import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .database import engine, init_models, seed_program_locks
from .routers import reservations, slots
from .utils.request_id import request_id_middleware

settings = get_settings()

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    if settings.create_tables:
        logger.info("creating reservation schema")
        await init_models(engine)
    else:
        await seed_program_locks(engine)
    yield
    await engine.dispose()


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)
app.middleware("http")(request_id_middleware)


@app.get("/health")
@app.get("/healthz")
async def healthz() -> dict[str, Any]:
    return {"ok": True, "ts": datetime.now(timezone.utc).isoformat(), "app": settings.app_name}


app.include_router(slots.router)
app.include_router(reservations.router)
