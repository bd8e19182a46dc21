"""Map frontend access/approval knobs onto agent query options."""

from __future__ import annotations

from typing import Any

from .models import PermissionMode

READ_ONLY_TOOLS = ("Read", "Glob", "Grep", "WebSearch", "WebFetch")
DEFAULT_TOOLS = ("Read", "Write", "Edit", "Bash", "Glob", "Grep", "WebSearch", "WebFetch")


def allowed_tools_for(access_mode: Any) -> list[str] | None:
    """Return the tool allowlist for an access mode, or None for no restriction.

    Unknown or missing modes fall back to the ``current`` allowlist.
    """
    if access_mode == "full-access":
        return None
    if access_mode == "read-only":
        return list(READ_ONLY_TOOLS)
    return list(DEFAULT_TOOLS)


def permission_mode_for(approval_policy: Any) -> PermissionMode:
    """Return the agent permission mode for an approval policy."""
    if approval_policy == "never":
        return "bypassPermissions"
    return "default"
