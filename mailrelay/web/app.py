"""
FastAPI Application Factory

Creates the management API and wires the monitoring engine into its
lifespan: components are built on startup and every schedule is cancelled
on shutdown (uvicorn triggers this on SIGINT/SIGTERM).
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
import uvicorn

from ..core.config import ConfigManager, get_config
from ..core.logging_config import setup_logging
from ..mailbox.client import MailboxClient
from ..monitor import CredentialStore, InboxPoller, MonitorScheduler
from ..notify.telegram import TelegramNotifier


logger = logging.getLogger(__name__)

# Rate limiter instance (shared across routes)
limiter = Limiter(key_func=get_remote_address)


def create_app(
    config: Optional[ConfigManager] = None,
    mailbox_client: Optional[MailboxClient] = None,
    notifier: Optional[TelegramNotifier] = None,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        config: ConfigManager (global config if None)
        mailbox_client: mail.tm client (built from config if None)
        notifier: Telegram sink (built from config if None)

    Returns:
        Configured FastAPI app
    """
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = mailbox_client or MailboxClient(config.mailbox)
        sink = notifier or TelegramNotifier(config.telegram)

        store = CredentialStore()
        poller = InboxPoller(client, sink, store, excerpt_limit=config.app.body_excerpt_limit)
        scheduler = MonitorScheduler(
            poller,
            store,
            poll_interval=config.app.poll_interval_seconds,
            retry_delay=config.app.token_retry_delay_seconds,
            shutdown_grace=config.app.shutdown_grace_seconds,
        )

        app.state.scheduler = scheduler
        app.state.started_at = time.monotonic()

        logger.info("🔄 Real-time inbox monitoring active")

        try:
            yield
        finally:
            logger.info("Shutting down, stopping all monitors")
            await scheduler.shutdown()
            await client.close()
            await sink.close()

    app = FastAPI(
        title="Mail Relay",
        description="Relays new mail.tm messages to Telegram chats",
        version="1.0.0",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Configure rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.state.config = config

    # Register routers (imported here to avoid circular imports)
    from .dependencies import use_rate_limit_config
    from .routers import health, monitoring

    use_rate_limit_config(config)

    app.include_router(monitoring.router, tags=["Monitoring"])
    app.include_router(health.router, tags=["Health"])

    logger.info("FastAPI application created successfully")

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None):
    """
    Run the FastAPI server using uvicorn.

    Args:
        host: Host to bind to (config default if None)
        port: Port to bind to (config default if None)
    """
    config = get_config()
    host = host or config.server.host
    port = port or config.server.port

    logger.info(f"🚀 Mail Relay running on {host}:{port}")
    logger.info("📡 Webhook endpoint: /register-user")

    uvicorn.run(create_app(config), host=host, port=port, log_level="info")


if __name__ == "__main__":
    config = get_config()
    setup_logging(log_level=config.app.log_level, log_file=config.app.log_file)
    run_server()
