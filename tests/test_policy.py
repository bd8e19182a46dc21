import pytest

from claude_app_server_bridge.policy import (
    DEFAULT_TOOLS,
    READ_ONLY_TOOLS,
    allowed_tools_for,
    permission_mode_for,
)


def test_full_access_is_unrestricted() -> None:
    assert allowed_tools_for("full-access") is None


def test_read_only_tools() -> None:
    assert allowed_tools_for("read-only") == ["Read", "Glob", "Grep", "WebSearch", "WebFetch"]


@pytest.mark.parametrize("mode", ["current", "", None, "garbage", 42])
def test_other_access_modes_fall_back_to_default_tools(mode: object) -> None:
    assert allowed_tools_for(mode) == list(DEFAULT_TOOLS)


def test_allowlists_are_fresh_copies() -> None:
    tools = allowed_tools_for("read-only")
    assert tools is not None
    tools.append("Bash")
    assert allowed_tools_for("read-only") == list(READ_ONLY_TOOLS)


def test_never_approval_bypasses_permissions() -> None:
    assert permission_mode_for("never") == "bypassPermissions"


@pytest.mark.parametrize("policy", ["on-request", "untrusted", "", None, "garbage"])
def test_other_approval_policies_ask_as_needed(policy: object) -> None:
    assert permission_mode_for(policy) == "default"
