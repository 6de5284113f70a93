"""
Platform API service for the developer platform.
"""

import sys
from typing import Optional

from fastapi import APIRouter

from shared.base_service import BaseService
from shared.config import Config, ConfigurationError, load_config
from shared.logging import get_logger

from service_platform_api.app import __version__

SERVICE_NAME = "platform-api"


class PlatformAPIService(BaseService):
    """Platform API service implementation."""

    def __init__(self, config: Optional[Config] = None):
        super().__init__(SERVICE_NAME, __version__, config=config)
        self._setup_api_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.platform_service = self

    def _setup_api_routes(self):
        """Set up versioned API routes."""
        v1 = APIRouter(prefix="/api/v1")

        @v1.get("/status")
        async def api_status():
            """API status endpoint."""
            return {
                "version": self.version,
                "service": self.service_name,
            }

        self.app.include_router(v1)


def create_app(config: Optional[Config] = None):
    """Create FastAPI application."""
    service = PlatformAPIService(config)
    return service.app


def main() -> int:
    """Validate configuration and serve until a shutdown signal arrives."""
    logger = get_logger(SERVICE_NAME)
    config = load_config()
    try:
        config.validate_settings()
    except ConfigurationError as exc:
        logger.error("Invalid configuration", error=str(exc))
        return 1

    service = PlatformAPIService(config)
    service.logger.info("Starting platform-api", version=__version__)
    service.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
