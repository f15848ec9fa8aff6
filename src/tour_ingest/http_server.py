"""Admin HTTP server runner (uvicorn inside the service's event loop)."""

from __future__ import annotations

import uvicorn

from .config.settings import get_settings
from .http_app import app
from .observability.logger import get_logger

logger = get_logger(__name__)


async def run_http_server() -> None:
    settings = get_settings()
    config = uvicorn.Config(
        app=app,
        host=settings.http_host,
        port=settings.http_port,
        log_level="warning",  # structlog is the primary logger
        loop="asyncio",
        # Job executions run inside requests and can take minutes.
        timeout_graceful_shutdown=settings.http_shutdown_grace_seconds,
    )
    server = uvicorn.Server(config)

    logger.info(
        "admin_http_listening",
        address=f"http://{settings.http_host}:{settings.http_port}",
        admin_key_required=bool(settings.admin_api_key),
    )
    await server.serve()
