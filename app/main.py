import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from prometheus_client import make_asgi_app

from app.commands.base_whatsapp import BaseWhatsAppCommand
from app.config import get_settings
from app.infra.logging_config import LoggingConfig
from app.routers import cron, system, webhooks
from app.routers.utils.dependencies import REQUEST_ID_HEADER

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await BaseWhatsAppCommand.close_whatsapp_adapter()


def create_app(testing: bool = False) -> FastAPI:
    """Create and configure the FastAPI application.

    ``testing`` skips the Prometheus mount so test clients never touch the
    process-global collector registry endpoint.
    """
    settings = get_settings()
    LoggingConfig()

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    app.include_router(webhooks.router)
    app.include_router(cron.router)
    app.include_router(system.router)

    if not testing:
        app.mount("/metrics", make_asgi_app())

    logger.info("Application created (environment=%s)", settings.environment)
    return app


app = create_app()
