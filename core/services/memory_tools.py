"""
Tool implementations shared by the local MCP server and the shim.

Each tool takes a backend exposing ``add``, ``search``, ``list`` and
``invalidate`` (a ``MemoryService`` or a ``GatewayClient``) and returns a
JSON-serializable dict. Failures become error payloads instead of raising.
"""

from __future__ import annotations

from functools import wraps
from typing import Any, Callable, Optional, Protocol

import core.config as config
from core.errors import (
    EmbeddingDimensionError,
    EmbeddingProviderError,
    GatewayError,
    NotFoundError,
    StorageError,
    ValidationIssue,
)
from core.models import MemoryType
from core.services.memory_service import invalidation_message
from core.validators import (
    validate_limit as _validate_limit,
    validate_memory_id as _validate_memory_id,
    validate_optional_text as _validate_optional_text,
    validate_required_text as _validate_required_text,
)

logger = config.logger


class MemoryBackend(Protocol):
    def add(self, memory_type, area: str, content: str, rationale: Optional[str] = None) -> Any:
        ...

    def search(self, query: str, limit: int = 5, memory_type=None, area: Optional[str] = None) -> list:
        ...

    def list(
        self,
        limit: int = 10,
        memory_type=None,
        area: Optional[str] = None,
        include_invalid: bool = False,
        offset: int = 0,
    ) -> list:
        ...

    def invalidate(self, memory_id: int, superseded_by: Optional[int] = None) -> None:
        ...


# =============================================================================
# Error handling
# =============================================================================

def _tool_error_payload(tool_name: str, error_type: str, message: str, field: Optional[str] = None) -> dict:
    payload = {
        "status": "error",
        "error_type": error_type,
        "tool": tool_name,
        "message": message,
    }
    if field is not None:
        payload["field"] = field
    return payload


def _log_validation_issue(tool_name: str, exc: ValidationIssue, warn: bool = False) -> None:
    payload = {
        "tool": tool_name,
        "field": exc.field,
        "error_type": exc.error_type,
        "detail": str(exc),
    }
    if warn:
        logger.warning("tool_validation_error", extra=payload)
    else:
        logger.info("tool_validation_error", extra=payload)


def _tool_error_handler(fn: Callable[..., dict]) -> Callable[..., dict]:
    @wraps(fn)
    def wrapper(*args, **kwargs):
        tool_name = fn.__name__
        try:
            return fn(*args, **kwargs)
        except ValidationIssue as exc:
            _log_validation_issue(tool_name, exc, warn=False)
            return _tool_error_payload(tool_name, "validation_error", str(exc), field=exc.field)
        except EmbeddingDimensionError as exc:
            logger.warning("tool_embedding_dimension_error", extra={"tool": tool_name, "detail": str(exc)})
            return _tool_error_payload(tool_name, "embedding_dimension_error", str(exc))
        except NotFoundError as exc:
            return _tool_error_payload(tool_name, "not_found", str(exc), field="id")
        except EmbeddingProviderError as exc:
            return _tool_error_payload(tool_name, "embedding_unavailable", str(exc))
        except GatewayError as exc:
            logger.warning("tool_gateway_error", extra={"tool": tool_name, "detail": str(exc)})
            return _tool_error_payload(tool_name, "gateway_error", str(exc))
        except StorageError as exc:
            logger.error("tool_storage_error", extra={"tool": tool_name, "detail": str(exc)})
            return _tool_error_payload(tool_name, "storage_error", str(exc))
        except ValueError as exc:
            issue = ValidationIssue(str(exc), field="unknown", error_type="value_error")
            _log_validation_issue(tool_name, issue, warn=True)
            return _tool_error_payload(tool_name, "validation_error", str(exc), field=issue.field)
    return wrapper


def service_tool(fn: Callable[..., dict]) -> Callable[..., dict]:
    return _tool_error_handler(fn)


def _memory_dicts(memories) -> list[dict]:
    return [memory.to_dict() for memory in memories]


# =============================================================================
# Tools
# =============================================================================

@service_tool
def ec_add(
    backend: MemoryBackend,
    type: str,
    area: str,
    content: str,
    rationale: Optional[str] = None,
) -> dict:
    """Store a decision, learning or pattern."""
    memory_type = MemoryType.parse(type)
    _validate_required_text(area, "area", config.MAX_AREA_LENGTH)
    _validate_required_text(content, "content", config.MAX_TEXT_LENGTH)
    _validate_optional_text(rationale, "rationale", config.MAX_TEXT_LENGTH)

    memory = backend.add(memory_type, area, content, rationale or None)
    return {"status": "stored", "memory": memory.to_dict()}


@service_tool
def ec_search(
    backend: MemoryBackend,
    query: str,
    limit: int = config.DEFAULT_SEARCH_LIMIT,
    type: Optional[str] = None,
    area: Optional[str] = None,
) -> dict:
    """Semantic search over valid memories."""
    _validate_required_text(query, "query", config.MAX_QUERY_LENGTH)
    if not limit or limit <= 0:
        limit = config.DEFAULT_SEARCH_LIMIT
    _validate_limit(limit, "limit", config.MAX_RESULT_LIMIT)
    _validate_optional_text(area, "area", config.MAX_AREA_LENGTH)

    memory_type = MemoryType.parse(type) if type else None
    memories = backend.search(query, limit, memory_type, area or None)
    return {"query": query, "count": len(memories), "memories": _memory_dicts(memories)}


@service_tool
def ec_list(
    backend: MemoryBackend,
    limit: int = config.DEFAULT_LIST_LIMIT,
    type: Optional[str] = None,
    area: Optional[str] = None,
    include_invalid: bool = False,
) -> dict:
    """Most recent memories first."""
    if not limit or limit <= 0:
        limit = config.DEFAULT_LIST_LIMIT
    _validate_limit(limit, "limit", config.MAX_RESULT_LIMIT)
    _validate_optional_text(area, "area", config.MAX_AREA_LENGTH)
    if not isinstance(include_invalid, bool):
        raise ValidationIssue(
            "include_invalid must be a boolean",
            field="include_invalid",
            error_type="invalid_type",
        )

    memory_type = MemoryType.parse(type) if type else None
    memories = backend.list(limit, memory_type, area or None, include_invalid)
    return {"count": len(memories), "memories": _memory_dicts(memories)}


@service_tool
def ec_invalidate(
    backend: MemoryBackend,
    id: int,
    superseded_by: Optional[int] = None,
) -> dict:
    """Soft-invalidate a memory, optionally pointing at its replacement."""
    memory_id = _validate_memory_id(id, "id")
    if superseded_by == 0:
        superseded_by = None
    if superseded_by is not None:
        superseded_by = _validate_memory_id(superseded_by, "superseded_by")

    backend.invalidate(memory_id, superseded_by)
    return {
        "status": "invalidated",
        "id": memory_id,
        "superseded_by": superseded_by,
        "message": invalidation_message(memory_id, superseded_by),
    }


__all__ = [
    "MemoryBackend",
    "service_tool",
    "ec_add",
    "ec_search",
    "ec_list",
    "ec_invalidate",
]
