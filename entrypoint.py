import uvicorn

from constants import load_settings
from logging_config import setup_logging

# Setup logging before importing app
settings = load_settings()
setup_logging(log_level=settings.log_level, log_file=settings.log_file)

from app import app
from logging_config import get_logger

logger = get_logger(__name__)


class RelayServer(uvicorn.Server):
    """uvicorn server that says goodbye to peers before dropping connections.

    uvicorn closes open WebSockets with 1012 before the lifespan shutdown runs,
    so peers are closed with 1001 here, ahead of that.
    """

    def __init__(self, config: uvicorn.Config, gateway):
        super().__init__(config)
        self.gateway = gateway

    async def shutdown(self, sockets=None):
        logger.info("Server stopping, closing peer connections")
        await self.gateway.shutdown()
        await super().shutdown(sockets=sockets)


def build_server(application=app) -> RelayServer:
    config = uvicorn.Config(
        application,
        host=settings.host,
        port=settings.port,
        ws_max_size=settings.max_payload * 4,
        log_config=None,
    )
    return RelayServer(config, application.state.gateway)


if __name__ == "__main__":
    logger.info(f"Starting relay server on {settings.host}:{settings.port} ({settings.env})")
    build_server().run()
