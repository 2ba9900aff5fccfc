"""HTTP entry point: Meta webhook plus the operator API.

    uv run uvicorn salon_bot.server:app --host 0.0.0.0 --port 8000

Point each tenant's Meta app at ``https://<host>/webhook?tenant=<tenant id>``.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from salon_bot.agent import create_conversation_engine
from salon_bot.api.routes import router
from salon_bot.api.webhook import router as webhook_router
from salon_bot.config import CORS_ORIGINS, SERVER_HOST, SERVER_PORT
from salon_bot.db.session import SessionLocal, init_db
from salon_bot.db.session import engine as db_engine
from salon_bot.services.whatsapp_client import WhatsAppClient

SERVICE_NAME = "Salon WhatsApp Bot"
VERSION = "1.0.0"

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(application: FastAPI):
    # Handlers only ever read these from app.state
    init_db()
    application.state.session_factory = SessionLocal
    application.state.gateway_factory = WhatsAppClient.for_tenant
    application.state.engine = create_conversation_engine(SessionLocal)
    logger.info("Conversation engine ready")
    try:
        yield
    finally:
        db_engine.dispose()
        logger.info("Database pool closed")


async def request_id_middleware(request: Request, call_next) -> Response:
    """Echo or mint ``X-Request-ID`` and log one line per request."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = request_id
    started = time.perf_counter()
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    logger.info(
        "[%s] %s %s -> %d (%.0f ms)",
        request_id, request.method, request.url.path,
        response.status_code, (time.perf_counter() - started) * 1000,
    )
    return response


def create_app() -> FastAPI:
    application = FastAPI(
        title=SERVICE_NAME,
        description="Multi-tenant WhatsApp booking assistant for barbershops and salons.",
        version=VERSION,
        lifespan=lifespan,
    )
    application.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.middleware("http")(request_id_middleware)
    application.include_router(webhook_router)
    application.include_router(router, prefix="/api")

    @application.get("/")
    async def index():
        return {
            "service": SERVICE_NAME,
            "version": VERSION,
            "docs": "/docs",
            "health": "/api/health",
            "webhook": "/webhook",
        }

    return application


app = create_app()


if __name__ == "__main__":
    logger.info("Listening on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run("salon_bot.server:app", host=SERVER_HOST, port=SERVER_PORT)
