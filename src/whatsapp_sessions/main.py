"""FastAPI application entry point."""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from datetime import timedelta

from fastapi import FastAPI, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST

from whatsapp_sessions import log_redaction
from whatsapp_sessions.api.routes import register_error_handlers
from whatsapp_sessions.api.routes import router as sessions_router
from whatsapp_sessions.config import settings
from whatsapp_sessions.database.engine import async_session_factory, init_db
from whatsapp_sessions.database.repository import SessionRepository
from whatsapp_sessions.services.email_service import EmailService
from whatsapp_sessions.services.notifier import SessionNotifier
from whatsapp_sessions.sessions.auth_state import FileAuthStateStore
from whatsapp_sessions.sessions.controller import SessionLifecycleController
from whatsapp_sessions.sessions.rate_limiter import RateLimiter
from whatsapp_sessions.transport.base import Transport
from whatsapp_sessions.transport.bridge import BridgeTransport
from whatsapp_sessions.webhook.handler import router as webhook_router

logging.basicConfig(
    level=logging.DEBUG if settings.debug else settings.log_level.upper(),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
log_redaction.install()

logger = logging.getLogger(__name__)


def build_controller(transport: Transport) -> SessionLifecycleController:
    """Wire the lifecycle controller from settings."""
    return SessionLifecycleController(
        transport=transport,
        repository=SessionRepository(async_session_factory),
        auth_store=FileAuthStateStore(settings.auth_state_dir),
        rate_limiter=RateLimiter(
            window_seconds=settings.rate_limit_window_seconds,
            max_requests=settings.rate_limit_max_requests,
        ),
        notifier=SessionNotifier(EmailService(), alert_email=settings.alert_email_to),
        max_retry_attempts=settings.max_retry_attempts,
        retry_delay=settings.retry_delay_seconds,
        retention=timedelta(hours=settings.session_retention_hours),
    )


async def _cleanup_loop(controller: SessionLifecycleController) -> None:
    while True:
        await asyncio.sleep(settings.cleanup_interval_seconds)
        await controller.cleanup_inactive_sessions()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle hook."""
    logger.info("Starting %s …", settings.app_name)
    await init_db()
    logger.info("Database initialised")

    transport = BridgeTransport(
        base_url=settings.bridge_base_url,
        token=settings.bridge_token,
        callback_base_url=settings.public_base_url,
    )
    controller = build_controller(transport)
    app.state.transport = transport
    app.state.controller = controller

    await controller.restore_sessions()
    cleanup_task = asyncio.create_task(_cleanup_loop(controller))
    yield
    logger.info("Shutting down %s …", settings.app_name)
    cleanup_task.cancel()
    with suppress(asyncio.CancelledError):
        await cleanup_task
    await controller.aclose()


app = FastAPI(
    title=settings.app_name,
    description="Per-tenant WhatsApp session lifecycle management",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(sessions_router)
app.include_router(webhook_router)
register_error_handlers(app)


@app.get("/health")
async def health_check():
    """Simple liveness check."""
    return {"status": "healthy", "app": settings.app_name}


@app.get("/metrics")
async def prometheus_metrics(request: Request) -> Response:
    controller: SessionLifecycleController = request.app.state.controller
    return Response(content=controller.metrics.render(), media_type=CONTENT_TYPE_LATEST)
