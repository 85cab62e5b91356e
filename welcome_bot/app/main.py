"""
Welcome Bot Service - FastAPI application.

Hosts the Bot Framework messaging endpoint and wires the conversationUpdate
handler to the Bot Connector client and the membership recorder.
"""
import logging
from contextlib import asynccontextmanager
from functools import partial
from typing import Optional

from fastapi import FastAPI

from welcome_bot import __version__
from welcome_bot.app.api.teams.adaptive_cards import create_welcome_card
from welcome_bot.app.api.teams.routes import router as teams_router
from welcome_bot.app.config import BotSettings, load_settings
from welcome_bot.app.services.connector import BotConnectorClient
from welcome_bot.app.services.dispatcher import ConversationUpdateHandler
from welcome_bot.app.services.proactive_messaging import ProactiveMessagingService
from welcome_bot.app.services.recorder import (
    LoggingMembershipRecorder,
    MembershipStateRecorder,
    PostgresMembershipRecorder,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def build_handler(
    settings: BotSettings,
    connector: BotConnectorClient,
    recorder: MembershipStateRecorder
) -> ConversationUpdateHandler:
    """Assemble the conversationUpdate handler from resolved settings."""
    messaging = ProactiveMessagingService(
        connector,
        partial(
            create_welcome_card,
            settings.base_uri,
            settings.bot_name,
            settings.email_notifications_url
        ),
        max_concurrent_deliveries=settings.max_concurrent_deliveries
    )
    return ConversationUpdateHandler(
        recorder,
        messaging,
        processing_timeout=settings.processing_timeout_seconds
    )


def create_app(
    settings: Optional[BotSettings] = None,
    handler: Optional[ConversationUpdateHandler] = None
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        settings: Resolved settings (read from the environment at startup when omitted)
        handler: Prebuilt handler; skips building connector and recorder
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager - startup and shutdown."""
        logger.info("Welcome Bot service starting up...")

        if handler is not None:
            app.state.conversation_handler = handler
            yield
            logger.info("Welcome Bot service shutting down...")
            return

        # ConfigurationError here aborts startup
        resolved = settings or load_settings()
        logging.getLogger().setLevel(resolved.log_level)

        recorder = None
        if resolved.database_url:
            recorder = await PostgresMembershipRecorder.create(resolved.database_url)
        else:
            logger.warning("DATABASE_URL not set, membership changes will only be logged")

        connector = BotConnectorClient(
            resolved.app_id,
            resolved.app_password,
            enumeration_attempts=resolved.enumeration_attempts
        )
        app.state.conversation_handler = build_handler(
            resolved,
            connector,
            recorder or LoggingMembershipRecorder()
        )
        try:
            yield
        finally:
            await connector.close()
            if recorder is not None:
                await recorder.close()
            logger.info("Welcome Bot service shutting down...")

    app = FastAPI(
        title="Welcome Bot Service",
        description="Welcomes Microsoft Teams members when they or the bot join a conversation",
        version=__version__,
        lifespan=lifespan
    )

    # Bot Framework posts to /api/messages
    app.include_router(teams_router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint for container liveness checks."""
        return {
            "status": "healthy",
            "service": "welcome-bot",
            "version": __version__
        }

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "service": "welcome-bot",
            "status": "running",
            "endpoints": {
                "health": "/health",
                "messages": "/api/messages"
            }
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=3978)
