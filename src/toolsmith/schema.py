"""
Schema definitions for Toolsmith.

This module defines the Pydantic models shared across Toolsmith:
- Capability/CapabilityStatus: Catalog entries and their lifecycle
- RelayMessage: Envelopes exchanged between the session and a builder
- CapabilityManifest/RequiredSecret: Metadata persisted beside capability code
- ToolSpec/ToolCallRecord: Tools as exposed to the model, and per-turn records
- Memory: Facts the assistant has been asked to remember

Design Decisions:
    - Persisted records are validated on the way out of SQLite
    - Enums are str-valued so they serialize directly to JSON and SQL
    - Runtime-only records are frozen
"""

import re
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Prefix that routes a tool name to a catalog capability
CAPABILITY_TOOL_PREFIX = "cap_"

CAPABILITY_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]{0,63}$")


# =============================================================================
# Enums
# =============================================================================


class CapabilityStatus(str, Enum):
    """Lifecycle state of a capability."""

    BUILDING = "building"
    ACTIVE = "active"
    FAILED = "failed"
    DISABLED = "disabled"


# Allowed lifecycle transitions. Nothing leaves ACTIVE except an explicit
# disable, or a re-registration which keeps it ACTIVE.
ALLOWED_TRANSITIONS: dict[CapabilityStatus, frozenset[CapabilityStatus]] = {
    CapabilityStatus.BUILDING: frozenset({
        CapabilityStatus.ACTIVE,
        CapabilityStatus.FAILED,
        CapabilityStatus.DISABLED,
    }),
    CapabilityStatus.ACTIVE: frozenset({
        CapabilityStatus.ACTIVE,
        CapabilityStatus.DISABLED,
    }),
    CapabilityStatus.FAILED: frozenset({
        CapabilityStatus.BUILDING,
        CapabilityStatus.ACTIVE,
        CapabilityStatus.DISABLED,
    }),
    CapabilityStatus.DISABLED: frozenset({
        CapabilityStatus.ACTIVE,
    }),
}


class RelayDirection(str, Enum):
    """Which side of the relay a message is addressed to."""

    TO_USER = "to_user"
    TO_BUILDER = "to_builder"


class RelayKind(str, Enum):
    """Kind of relay message."""

    QUESTION = "question"
    ANSWER = "answer"
    PROGRESS = "progress"
    COMPLETE = "complete"
    ERROR = "error"
    SECRET_REQUEST = "secret_request"
    SECRET_RESPONSE = "secret_response"


class MemoryTier(str, Enum):
    """Retention tier of a memory."""

    SHORT_TERM = "short_term"
    LONG_TERM = "long_term"


# =============================================================================
# Catalog Models
# =============================================================================


def validate_capability_name(name: str) -> str:
    """Return name if it is lowercase snake_case, otherwise raise ValueError."""
    if not CAPABILITY_NAME_PATTERN.match(name):
        msg = f"Invalid capability name format: {name!r}"
        raise ValueError(msg)
    return name


class Capability(BaseModel):
    """
    A synthesized tool registered in the catalog.

    Attributes:
        id: Unique identifier
        name: Unique snake_case name
        description: What the capability does
        version: Incremented on every re-registration
        status: Lifecycle state
        input_schema: JSON schema of the arguments
        output_schema: JSON schema of the result (informational)
        tags: Free-form discoverability tags
        path: Directory holding main.py, requirements.txt, manifest.json, RUN.md
        created_at: When the catalog row was created
        updated_at: Last metadata or status change
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., description="Unique identifier")
    name: str = Field(..., description="Unique snake_case name")
    description: str = Field(..., description="What the capability does")
    version: int = Field(default=1, ge=1)
    status: CapabilityStatus = Field(default=CapabilityStatus.BUILDING)
    input_schema: dict[str, Any] = Field(default_factory=dict)
    output_schema: dict[str, Any] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)
    path: str = Field(..., description="Directory holding the capability files")
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def tool_name(self) -> str:
        """Name under which this capability is exposed to the model."""
        return f"{CAPABILITY_TOOL_PREFIX}{self.name}"

    @property
    def is_active(self) -> bool:
        """Whether the capability may be executed."""
        return self.status == CapabilityStatus.ACTIVE


class RequiredSecret(BaseModel):
    """A credential a capability expects in context["secrets"]."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""


class CapabilityManifest(BaseModel):
    """
    Manifest persisted next to the capability code as manifest.json.

    This is the contract between the builder that produced the code and the
    executor that later runs it.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    version: int
    input_schema: dict[str, Any] = Field(default_factory=dict)
    required_secrets: list[RequiredSecret] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class CapabilityFiles(BaseModel):
    """Source files that make up a capability."""

    model_config = ConfigDict(frozen=True)

    main_py: str
    requirements_txt: str = ""
    manifest_json: str | None = None
    run_md: str | None = None


# =============================================================================
# Relay Models
# =============================================================================


class RelayMessage(BaseModel):
    """
    One message in the durable relay between a session and a builder.

    Messages are immutable once written, except for the consumed flag.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    build_id: str
    direction: RelayDirection
    kind: RelayKind
    payload: dict[str, Any] = Field(default_factory=dict)
    consumed: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def envelope(self) -> dict[str, Any]:
        """Public wire envelope (without the consumed flag)."""
        return {
            "id": self.id,
            "build_id": self.build_id,
            "direction": self.direction.value,
            "kind": self.kind.value,
            "payload": self.payload,
            "created_at": self.created_at.isoformat(),
        }


# =============================================================================
# Tool Models
# =============================================================================


class ToolSpec(BaseModel):
    """A tool as exposed to the model: name, description and input schema."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    @field_validator("name")
    @classmethod
    def validate_tool_name(cls, v: str) -> str:
        """Tool names are identifiers the model can echo back verbatim."""
        if not v.replace("_", "").isalnum():
            msg = f"Invalid tool name format: {v}"
            raise ValueError(msg)
        return v


class ToolCallRecord(BaseModel):
    """Observability record of one tool call within a turn. Never persisted."""

    model_config = ConfigDict(frozen=True)

    name: str
    input: dict[str, Any] = Field(default_factory=dict)
    result: str
    is_error: bool = False


# =============================================================================
# Memory Models
# =============================================================================


class Memory(BaseModel):
    """A remembered fact about the user."""

    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    tier: MemoryTier
    tags: list[str] = Field(default_factory=list)
    priority: float = 0.5
    decay_rate: float = 0.01
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_accessed: datetime = Field(default_factory=lambda: datetime.now(UTC))
