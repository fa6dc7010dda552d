"""
Request-scoped identity context for team mode.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional
import contextvars

import core.config as config
from core.validators import is_valid_project_scope


@dataclass(frozen=True)
class IdentityContext:
    author_name: str = ""
    author_email: str = ""
    project_scope: str = ""

    @staticmethod
    def from_headers(headers: Mapping[str, str]) -> "IdentityContext":
        """Build identity from the three optional headers.

        Each header is read independently. A project scope that is not of the
        form owner/name is dropped rather than rejected.
        """
        lowered = {key.lower(): value for key, value in headers.items()}
        author_name = lowered.get(config.AUTHOR_NAME_HEADER.lower(), "").strip()
        author_email = lowered.get(config.AUTHOR_EMAIL_HEADER.lower(), "").strip()
        project_scope = lowered.get(config.PROJECT_SCOPE_HEADER.lower(), "").strip()
        if project_scope and not is_valid_project_scope(project_scope):
            config.logger.debug(
                "project_scope_header_dropped",
                extra={"project_scope": project_scope[:200]},
            )
            project_scope = ""
        return IdentityContext(
            author_name=author_name,
            author_email=author_email,
            project_scope=project_scope,
        )


@dataclass(frozen=True)
class RequestContext:
    identity: IdentityContext
    request_id: Optional[str] = None
    source: Optional[str] = None


_CURRENT_REQUEST_CONTEXT: contextvars.ContextVar[Optional["RequestContext"]] = contextvars.ContextVar(
    "engram_request_context",
    default=None,
)


def get_current_request_context() -> Optional["RequestContext"]:
    return _CURRENT_REQUEST_CONTEXT.get()


def set_current_request_context(context: Optional["RequestContext"]) -> contextvars.Token:
    return _CURRENT_REQUEST_CONTEXT.set(context)


def reset_current_request_context(token: contextvars.Token) -> None:
    _CURRENT_REQUEST_CONTEXT.reset(token)


def current_identity() -> IdentityContext:
    context = get_current_request_context()
    if context is None:
        return IdentityContext()
    return context.identity


__all__ = [
    "IdentityContext",
    "RequestContext",
    "get_current_request_context",
    "set_current_request_context",
    "reset_current_request_context",
    "current_identity",
]
