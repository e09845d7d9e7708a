"""
Main entrypoint: FastAPI server with the monitoring service in its lifespan.

The app lifespan cold-starts the registry (durable store, then backup file),
starts the event broadcaster and the periodic aggregation job, and writes a
final snapshot on shutdown.

Env: ETHERSCAN_API_KEY, ANTHROPIC_API_KEY (optional), DATABASE_URL, API_HOST, API_PORT, etc.

Equivalent: uvicorn backend_chainsage.api_server.app:app --host 0.0.0.0 --port 3001
"""

import os

# Configure structured JSON logging before other imports that may log
from backend_chainsage.chainsage_logging import configure_logging, get_logger

logger = get_logger("main")


def main() -> None:
    """Run the FastAPI server in the main thread."""
    from backend_chainsage.config import get_settings
    from backend_chainsage.config.env import mask_secret

    settings = get_settings()
    # .env is loaded by now; pick up LOG_LEVEL / LOG_FORMAT from it
    configure_logging()
    logger.info(
        "main_config_loaded",
        chain_id=settings.etherscan_chain_id,
        etherscan_api_key=mask_secret(settings.etherscan_api_key),
        ai_enabled=settings.ai_enabled,
        interval_sec=settings.aggregation_interval_sec,
    )

    from backend_chainsage.api_server.app import app
    import uvicorn

    logger.info("main_server_starting", host=settings.api_host, port=settings.api_port)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_level=os.getenv("LOG_LEVEL", "info").lower())


if __name__ == "__main__":
    main()
