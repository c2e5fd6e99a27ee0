"""
Main entrypoint: FastAPI server for Anchor Recon.

Creates tables, then serves the API in the main thread. On SIGINT/SIGTERM the server
shuts down and the process exits.

Env: RECON_DB_URL or RECON_DB_PATH, RPC_URL, TOKEN_REGISTRY, API_HOST, API_PORT, LOG_LEVEL.

Equivalent: uvicorn anchor_recon.api_server.server:app --host 0.0.0.0 --port 8000
"""

import os

# Configure structured logging before other imports that may log
from anchor_recon.recon_logging import get_logger

logger = get_logger("main")


def main() -> None:
    """Load settings, then run the FastAPI server."""
    from anchor_recon.config.settings import get_settings
    from anchor_recon.database import init_db

    settings = get_settings()
    init_db()

    from anchor_recon.api_server.server import app
    import uvicorn

    logger.info("main_server_starting", host=settings.api_host, port=settings.api_port)
    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


if __name__ == "__main__":
    main()
