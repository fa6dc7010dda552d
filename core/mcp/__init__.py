from core.mcp.server import (
    create_mcp_server,
    tool_inventory_status,
    TOOL_NAMES,
)

__all__ = [
    "create_mcp_server",
    "tool_inventory_status",
    "TOOL_NAMES",
]
