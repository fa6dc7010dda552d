"""
Engram shim - stdio MCP server that forwards every tool call to a gateway.
"""

import logging
import sys

import core.config as config
from core.gitinfo import get_git_info
from core.mcp import create_mcp_server
from core.services.gateway_client import GatewayClient

logger = config.logger


def main() -> None:
    if config.EC_DEBUG:
        logger.setLevel(logging.DEBUG)

    if not config.EC_API_URL:
        logger.error("shim_config_invalid", extra={"detail": "EC_API_URL environment variable is required"})
        sys.exit(1)

    git_info = get_git_info()
    logger.debug(
        "shim_git_context",
        extra={
            "author_name": git_info.author_name,
            "author_email": git_info.author_email,
            "repo": git_info.repo,
        },
    )

    client = GatewayClient(config.EC_API_URL, git_info)
    logger.info("shim_started", extra={"api_url": config.EC_API_URL})
    try:
        create_mcp_server(client).run(transport="stdio")
    finally:
        client.close()


if __name__ == "__main__":
    main()
