"""Lifecycle management for the application."""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from chat_stream.core.config import settings
from chat_stream.core.container import ServiceContainer, set_container
from chat_stream.core.logging import get_logger

logger = get_logger(__name__)


def build_lifespan(container: Optional[ServiceContainer] = None):
    """Create a lifespan handler, optionally around a pre-populated container."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifecycle."""
        logger.info("Starting chat stream service...")

        service_container = container or ServiceContainer()

        try:
            await service_container.initialize(settings)
            set_container(service_container)
            app.state.container = service_container
            logger.info("Chat stream service started successfully")
        except Exception as e:
            logger.error(f"Failed to initialize services: {e}")
            raise

        yield

        logger.info("Shutting down chat stream service...")
        await service_container.shutdown()
        set_container(None)
        logger.info("Chat stream service shut down")

    return lifespan


lifespan = build_lifespan()
