"""
Engram data model: memories and the option sets used to query them.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Any, Optional

from core.errors import ValidationIssue


# =============================================================================
# Enums
# =============================================================================

class MemoryType(str, PyEnum):
    decision = "decision"
    learning = "learning"
    pattern = "pattern"

    @classmethod
    def parse(cls, value: Any) -> "MemoryType":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value)
            except ValueError:
                pass
        raise ValidationIssue(
            f"invalid memory type {value!r}: must be decision, learning, or pattern",
            field="type",
            error_type="invalid_value",
        )


MEMORY_TYPES = tuple(member.value for member in MemoryType)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive timestamps read back from a backend."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =============================================================================
# Memory
# =============================================================================

@dataclass
class Memory:
    type: MemoryType
    area: str
    content: str
    rationale: Optional[str] = None
    id: Optional[int] = None
    is_valid: bool = True
    superseded_by: Optional[int] = None
    created_at: Optional[datetime] = None
    # Team mode attribution, empty in single-user mode
    author_name: str = ""
    author_email: str = ""
    project_scope: str = ""

    def stored(self, memory_id: int, created_at: datetime) -> "Memory":
        """Return the copy a store hands back after inserting this memory."""
        return replace(
            self,
            id=memory_id,
            created_at=created_at,
            is_valid=True,
            superseded_by=None,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": MemoryType.parse(self.type).value,
            "area": self.area,
            "content": self.content,
            "rationale": self.rationale,
            "is_valid": self.is_valid,
            "superseded_by": self.superseded_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "author_name": self.author_name,
            "author_email": self.author_email,
            "project_scope": self.project_scope,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Memory":
        created_at = data.get("created_at")
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
        return cls(
            id=data.get("id"),
            type=MemoryType.parse(data.get("type")),
            area=data.get("area", ""),
            content=data.get("content", ""),
            rationale=data.get("rationale") or None,
            is_valid=bool(data.get("is_valid", True)),
            superseded_by=data.get("superseded_by"),
            created_at=created_at,
            author_name=data.get("author_name") or "",
            author_email=data.get("author_email") or "",
            project_scope=data.get("project_scope") or data.get("repo") or "",
        )


# =============================================================================
# Query options
# =============================================================================

@dataclass(frozen=True)
class SearchOptions:
    limit: int = 5
    memory_type: Optional[MemoryType] = None
    area: Optional[str] = None
    project_scope: Optional[str] = None


@dataclass(frozen=True)
class ListOptions:
    limit: int = 10
    offset: int = 0
    memory_type: Optional[MemoryType] = None
    area: Optional[str] = None
    project_scope: Optional[str] = None
    include_invalid: bool = False


@dataclass(frozen=True)
class FilterSet:
    """Conjunctive equality filters shared by search and list."""

    memory_type: Optional[str] = None
    area: Optional[str] = None
    project_scope: Optional[str] = None

    @classmethod
    def from_options(cls, opts) -> "FilterSet":
        memory_type = MemoryType.parse(opts.memory_type).value if opts.memory_type else None
        return cls(
            memory_type=memory_type,
            area=opts.area or None,
            project_scope=opts.project_scope or None,
        )


__all__ = [
    "MemoryType",
    "MEMORY_TYPES",
    "Memory",
    "SearchOptions",
    "ListOptions",
    "FilterSet",
    "utcnow",
    "ensure_utc",
]
