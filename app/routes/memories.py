"""
Memory endpoints: add, search, list and invalidate.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, Query

import core.config as config
from core.context import IdentityContext
from core.services.memory_service import MemoryService, invalidation_message
from core.validators import validate_limit, validate_memory_id, validate_project_scope
from core.errors import ValidationIssue
from app.deps import get_identity, get_memory_service
from app.schemas import (
    AddMemoryRequest,
    AddMemoryResponse,
    InvalidateMemoryRequest,
    InvalidateMemoryResponse,
    ListMemoriesResponse,
    SearchMemoriesRequest,
    SearchMemoriesResponse,
)


router = APIRouter(tags=["memories"])


@router.post("/memories", status_code=201, response_model=AddMemoryResponse)
def add_memory(
    payload: AddMemoryRequest,
    service: MemoryService = Depends(get_memory_service),
    identity: IdentityContext = Depends(get_identity),
):
    memory = service.add(
        payload.type,
        payload.area,
        payload.content,
        payload.rationale,
        author_name=identity.author_name,
        author_email=identity.author_email,
        project_scope=identity.project_scope,
    )
    return {"memory": memory.to_dict()}


@router.post("/memories/search", response_model=SearchMemoriesResponse)
def search_memories(
    payload: SearchMemoriesRequest,
    service: MemoryService = Depends(get_memory_service),
):
    limit = payload.limit if payload.limit > 0 else config.DEFAULT_SEARCH_LIMIT
    validate_limit(limit, "limit", config.MAX_RESULT_LIMIT)
    validate_project_scope(payload.project_scope)
    memories = service.search_scoped(
        payload.query,
        limit=limit,
        memory_type=payload.type,
        area=payload.area,
        project_scope=payload.project_scope,
    )
    return {"memories": [memory.to_dict() for memory in memories]}


@router.get("/memories", response_model=ListMemoriesResponse)
def list_memories(
    limit: int = Query(config.DEFAULT_LIST_LIMIT),
    offset: int = Query(0),
    type: Optional[str] = Query(None),
    area: Optional[str] = Query(None),
    project_scope: Optional[str] = Query(None),
    repo: Optional[str] = Query(None, include_in_schema=False),
    include_invalid: bool = Query(False),
    service: MemoryService = Depends(get_memory_service),
):
    validate_limit(limit, "limit", config.MAX_RESULT_LIMIT)
    if offset < 0:
        raise ValidationIssue("offset must be >= 0", field="offset", error_type="out_of_range")
    scope = project_scope or repo
    validate_project_scope(scope)

    # One extra row tells us whether another page exists.
    memories = service.list_scoped(
        limit=limit + 1,
        memory_type=type,
        area=area,
        include_invalid=include_invalid,
        offset=offset,
        project_scope=scope,
    )
    has_more = len(memories) > limit
    return {
        "memories": [memory.to_dict() for memory in memories[:limit]],
        "pagination": {"limit": limit, "offset": offset, "has_more": has_more},
    }


@router.put("/memories/{memory_id}/invalidate", response_model=InvalidateMemoryResponse)
def invalidate_memory(
    memory_id: int,
    payload: Optional[InvalidateMemoryRequest] = Body(None),
    service: MemoryService = Depends(get_memory_service),
):
    superseded_by = payload.superseded_by if payload else None
    if superseded_by == 0:
        superseded_by = None
    validate_memory_id(memory_id, "id")
    if superseded_by is not None:
        validate_memory_id(superseded_by, "superseded_by")
    service.invalidate(memory_id, superseded_by)
    return {"message": invalidation_message(memory_id, superseded_by)}
