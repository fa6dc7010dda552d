"""
MCP server wiring and tool registration.
"""

from __future__ import annotations

from typing import Optional

from fastmcp import FastMCP

import core.config as config
from core.services import memory_tools
from core.services.memory_tools import MemoryBackend

READ_ONLY_TOOL_ANNOTATIONS = {"readOnlyHint": True}
WRITE_TOOL_ANNOTATIONS = {"readOnlyHint": False, "destructiveHint": False}
DESTRUCTIVE_TOOL_ANNOTATIONS = {"destructiveHint": True, "idempotentHint": True}

TOOL_NAMES = ("ec_add", "ec_search", "ec_list", "ec_invalidate")


def create_mcp_server(backend: MemoryBackend, name: str = config.SERVICE_NAME) -> FastMCP:
    """Build a FastMCP server whose tools delegate to ``backend``.

    The same tool surface is served by the local server (backend is a
    ``MemoryService``) and by the shim (backend is a ``GatewayClient``).
    """
    mcp = FastMCP(name)

    @mcp.tool(
        name="ec_add",
        description="Add a new memory entry (decision, learning, or pattern)",
        annotations=WRITE_TOOL_ANNOTATIONS,
    )
    def ec_add(
        type: str,
        area: str,
        content: str,
        rationale: Optional[str] = None,
    ) -> dict:
        return memory_tools.ec_add(backend, type=type, area=area, content=content, rationale=rationale)

    @mcp.tool(
        name="ec_search",
        description="Search memories by semantic similarity",
        annotations=READ_ONLY_TOOL_ANNOTATIONS,
    )
    def ec_search(
        query: str,
        limit: int = config.DEFAULT_SEARCH_LIMIT,
        type: Optional[str] = None,
        area: Optional[str] = None,
    ) -> dict:
        return memory_tools.ec_search(backend, query=query, limit=limit, type=type, area=area)

    @mcp.tool(
        name="ec_list",
        description="List recent memory entries",
        annotations=READ_ONLY_TOOL_ANNOTATIONS,
    )
    def ec_list(
        limit: int = config.DEFAULT_LIST_LIMIT,
        type: Optional[str] = None,
        area: Optional[str] = None,
        include_invalid: bool = False,
    ) -> dict:
        return memory_tools.ec_list(
            backend,
            limit=limit,
            type=type,
            area=area,
            include_invalid=include_invalid,
        )

    @mcp.tool(
        name="ec_invalidate",
        description="Invalidate a memory entry (soft delete)",
        annotations=DESTRUCTIVE_TOOL_ANNOTATIONS,
    )
    def ec_invalidate(id: int, superseded_by: Optional[int] = None) -> dict:
        return memory_tools.ec_invalidate(backend, id=id, superseded_by=superseded_by)

    return mcp


async def tool_inventory_status(mcp: FastMCP) -> dict:
    """Return the registered tool names; logs a warning when any are missing."""
    tools = await mcp.get_tools()
    tool_names = sorted(tools.keys())
    missing = sorted(set(TOOL_NAMES) - set(tool_names))
    if missing:
        config.logger.warning("tool_inventory_incomplete", extra={"missing": missing})
    return {
        "tool_count": len(tool_names),
        "tools": tool_names,
        "missing": missing,
    }
