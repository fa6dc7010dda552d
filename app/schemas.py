"""
Request and response bodies for the memories API.
"""

from __future__ import annotations

from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class AddMemoryRequest(BaseModel):
    type: str
    area: str
    content: str
    rationale: Optional[str] = None


class SearchMemoriesRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str
    limit: int = 0
    type: Optional[str] = None
    area: Optional[str] = None
    project_scope: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("project_scope", "repo"),
    )


class InvalidateMemoryRequest(BaseModel):
    superseded_by: Optional[int] = None


class MemoryOut(BaseModel):
    id: int
    type: str
    area: str
    content: str
    rationale: Optional[str] = None
    is_valid: bool
    superseded_by: Optional[int] = None
    created_at: Optional[str] = None
    author_name: str = ""
    author_email: str = ""
    project_scope: str = ""


class AddMemoryResponse(BaseModel):
    memory: MemoryOut


class SearchMemoriesResponse(BaseModel):
    memories: list[MemoryOut]


class Pagination(BaseModel):
    limit: int
    offset: int
    has_more: bool


class ListMemoriesResponse(BaseModel):
    memories: list[MemoryOut]
    pagination: Pagination


class InvalidateMemoryResponse(BaseModel):
    message: str


class ErrorResponse(BaseModel):
    error: str
