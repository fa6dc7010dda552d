"""
Engram gateway - shared team memory over HTTP.
FastAPI app served by uvicorn with a PostgreSQL or MongoDB backend.
"""

import sys

import uvicorn

import core.config as config
from app.main import create_app

logger = config.logger


def main() -> None:
    try:
        config.validate_and_prepare_config(gateway=True)
    except RuntimeError as exc:
        logger.error("gateway_config_invalid", extra={"detail": str(exc)})
        sys.exit(1)

    logger.info(
        "gateway_starting",
        extra={"host": config.API_HOST, "port": config.API_PORT, "driver": config.STORAGE_DRIVER},
    )
    uvicorn.run(
        create_app(),
        host=config.API_HOST,
        port=config.API_PORT,
        timeout_graceful_shutdown=config.SHUTDOWN_GRACE_SECONDS,
    )


if __name__ == "__main__":
    main()
