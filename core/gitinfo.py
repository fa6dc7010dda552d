"""
Git metadata used to attribute memories in team mode.
"""

from __future__ import annotations

import re
import subprocess
from dataclasses import dataclass
from typing import Optional

_SCP_REMOTE = re.compile(r"^[^@/]+@[^:/]+:(?P<path>.+)$")


@dataclass(frozen=True)
class GitInfo:
    author_name: str = ""
    author_email: str = ""
    repo: str = ""


def _git_config(*args: str, cwd: Optional[str] = None) -> str:
    try:
        result = subprocess.run(
            ["git", "config", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (OSError, subprocess.SubprocessError):
        return ""
    if result.returncode != 0:
        return ""
    return result.stdout.strip()


def normalize_remote_url(url: str) -> str:
    """Reduce a git remote URL to ``owner/name``.

    Handles scp-like SSH remotes, ``ssh://`` URLs and HTTP(S) URLs with or
    without embedded credentials. Unrecognized values come back trimmed.
    """
    value = (url or "").strip()
    if value.endswith(".git"):
        value = value[: -len(".git")]

    match = _SCP_REMOTE.match(value)
    if match and "://" not in value:
        return match.group("path").strip("/")

    for scheme in ("ssh://", "https://", "http://", "git://"):
        if value.startswith(scheme):
            remainder = value[len(scheme):]
            host, _, path = remainder.partition("/")
            return path.strip("/")

    return value


def get_git_info(cwd: Optional[str] = None) -> GitInfo:
    """Read author and remote from git config; missing values stay empty."""
    remote = _git_config("--get", "remote.origin.url", cwd=cwd)
    return GitInfo(
        author_name=_git_config("user.name", cwd=cwd),
        author_email=_git_config("user.email", cwd=cwd),
        repo=normalize_remote_url(remote) if remote else "",
    )


__all__ = ["GitInfo", "get_git_info", "normalize_remote_url"]
