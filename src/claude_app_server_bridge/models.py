from __future__ import annotations

from typing import Any, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base model serialized with the camelCase keys the frontend expects."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Dump as a JSON-ready dict using wire (camelCase) keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Thread(WireModel):
    """A resumable conversation tracked by the bridge.

    Attributes:
        id: Process-unique thread identifier (``thread-N``).
        name: Display name shown by the frontend.
        session_id: Agent session handle used to resume context, once known.
        cwd: Working directory turns run in by default.
        created_at: Creation time in epoch milliseconds.
        updated_at: Last activity time in epoch milliseconds.
        archived: Soft-delete flag; archived threads are hidden from listings.
    """

    id: str
    name: str
    session_id: str | None = None
    cwd: str
    created_at: int
    updated_at: int
    archived: bool = False

    def summary(self) -> dict[str, Any]:
        """Short form used in thread notifications and listings."""
        return {"id": self.id, "name": self.name, "updatedAt": self.updated_at}

    def to_record(self) -> dict[str, Any]:
        """Full form written to the session store (keeps null session ids)."""
        return self.model_dump(mode="json", by_alias=True)


class ReasoningEffortOption(WireModel):
    reasoning_effort: str
    description: str


class ModelInfo(WireModel):
    """One entry of the static `model/list` catalog."""

    id: str
    model: str
    display_name: str
    description: str
    supported_reasoning_efforts: list[ReasoningEffortOption] = Field(default_factory=list)
    default_reasoning_effort: str | None = None
    is_default: bool = False

    def to_wire(self) -> dict[str, Any]:
        # defaultReasoningEffort is sent as an explicit null.
        return self.model_dump(mode="json", by_alias=True)


#: MCP server transport kinds recognized in the Claude config file.
McpTransportType: TypeAlias = Literal["stdio", "http", "sse"]


class McpServerStatus(WireModel):
    """Normalized status for one configured MCP server.

    Only environment variable names are exposed, never their values.
    """

    name: str
    transport: McpTransportType
    command: str | None = None
    url: str | None = None
    env_keys: list[str] = Field(default_factory=list)
    status: Literal["configured"] = "configured"


#: Frontend access mode selector mapped onto the agent tool allowlist.
#:
#: Values:
#: - ``"full-access"``: no tool restriction.
#: - ``"read-only"``: read/search tools only.
#: - ``"current"``: read, write and shell tools (default).
AccessMode: TypeAlias = Literal["full-access", "read-only", "current"]

#: Approval policy accepted on `turn/start`.
#:
#: Only ``"never"`` changes behaviour (bypass all permission prompts); every
#: other value asks as needed.
ApprovalPolicy: TypeAlias = Literal["untrusted", "on-failure", "on-request", "never"]

#: Permission mode accepted by the agent query service.
PermissionMode: TypeAlias = Literal["default", "acceptEdits", "plan", "bypassPermissions"]
