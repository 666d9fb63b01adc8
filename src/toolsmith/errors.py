"""
Exception hierarchy for Toolsmith.

All Toolsmith exceptions inherit from ToolsmithError, allowing callers to catch
all Toolsmith-specific exceptions with a single except clause.

Exception Categories:
    - ModelError: Chat model backend unreachable or misbehaving
    - ToolError: Tool lookup or execution failed
    - CapabilityError: Catalog lookups and lifecycle violations
    - BuilderError: Capability builder could not complete
    - StorageError: Database operation failed
    - SandboxError: Isolated execution environment failed
    - SecretError / ConfigError: Encryption and configuration problems

Design Principles:
    - All errors have error codes for programmatic handling
    - All errors include context (tool, capability, build where applicable)
    - All errors provide actionable suggestions where possible
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Model errors: 1xxx
ERROR_MODEL_CONNECTION = 1001
ERROR_MODEL_TIMEOUT = 1002
ERROR_MODEL_RESPONSE = 1003
ERROR_MODEL_NOT_FOUND = 1004

# Tool errors: 2xxx
ERROR_TOOL_NOT_FOUND = 2001
ERROR_TOOL_INVALID_ARGS = 2002
ERROR_TOOL_EXECUTION_FAILED = 2003

# Capability errors: 3xxx
ERROR_CAPABILITY_NOT_FOUND = 3001
ERROR_CAPABILITY_NOT_ACTIVE = 3002
ERROR_CAPABILITY_EXISTS = 3003
ERROR_CAPABILITY_INVALID_TRANSITION = 3004
ERROR_CAPABILITY_INVALID_NAME = 3005

# Relay / builder errors: 4xxx
ERROR_BUILDER_FAILED = 4001
ERROR_RELAY_INVALID_MESSAGE = 4002

# Storage errors: 5xxx
ERROR_STORAGE_CONNECTION = 5001
ERROR_STORAGE_WRITE = 5002
ERROR_STORAGE_READ = 5003

# Sandbox errors: 6xxx
ERROR_SANDBOX_CREATE = 6001
ERROR_SANDBOX_EXECUTION = 6002

# Secret / config errors: 7xxx
ERROR_SECRET_DECRYPTION = 7001
ERROR_SECRET_KEY = 7002
ERROR_CONFIG_INVALID = 7003


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class ToolsmithError(Exception):
    """
    Base exception for all Toolsmith errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Model Errors
# =============================================================================


@dataclass
class ModelError(ToolsmithError):
    """
    Base class for chat model backend errors.

    Attributes:
        backend: Name of the backend (e.g. "ollama")
        model: Model identifier
    """

    backend: str = ""
    model: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context.update({
            "backend": self.backend,
            "model": self.model,
        })


@dataclass
class ModelConnectionError(ModelError):
    """Raised when the model backend cannot be reached."""

    url: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Cannot connect to {self.backend} at {self.url}"
            if self.underlying_error:
                self.message += f": {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_MODEL_CONNECTION
        if not self.suggestion:
            self.suggestion = "Check that the model server is running and reachable"
        super().__post_init__()
        self.context["url"] = self.url


@dataclass
class ModelTimeoutError(ModelError):
    """Raised when the model backend takes too long to answer."""

    timeout_seconds: float = 0.0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"{self.backend} timed out after {self.timeout_seconds}s"
        if self.code == 0:
            self.code = ERROR_MODEL_TIMEOUT
        super().__post_init__()
        self.context["timeout_seconds"] = self.timeout_seconds


@dataclass
class ModelResponseError(ModelError):
    """Raised when the model backend returns something unusable."""

    raw_response: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Unusable response from {self.backend}"
        if self.code == 0:
            self.code = ERROR_MODEL_RESPONSE
        super().__post_init__()
        self.context["raw_response"] = self.raw_response[:500]


@dataclass
class ModelNotFoundError(ModelError):
    """Raised when the requested model is not available on the backend."""

    available_models: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Model not found: {self.model}"
        if self.code == 0:
            self.code = ERROR_MODEL_NOT_FOUND
        if not self.suggestion:
            self.suggestion = f"Pull the model first: ollama pull {self.model}"
        super().__post_init__()
        self.context["available_models"] = self.available_models


# =============================================================================
# Tool Errors
# =============================================================================


@dataclass
class ToolError(ToolsmithError):
    """
    Base class for tool errors.

    Attributes:
        tool: Name of the tool involved
    """

    tool: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["tool"] = self.tool


@dataclass
class ToolNotFoundError(ToolError):
    """Raised when a tool name resolves to nothing."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Unknown tool: {self.tool}"
        if self.code == 0:
            self.code = ERROR_TOOL_NOT_FOUND
        if not self.suggestion:
            self.suggestion = "Use lookup_capability or request_capability for missing tools"
        super().__post_init__()


@dataclass
class ToolInvalidArgsError(ToolError):
    """Raised when tool arguments are invalid."""

    validation_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid arguments for {self.tool}: {self.validation_error}"
        if self.code == 0:
            self.code = ERROR_TOOL_INVALID_ARGS
        super().__post_init__()
        self.context["validation_error"] = self.validation_error


@dataclass
class ToolExecutionError(ToolError):
    """Raised when a tool fails during execution."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = self.underlying_error or f"Tool {self.tool} failed"
        if self.code == 0:
            self.code = ERROR_TOOL_EXECUTION_FAILED
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


# =============================================================================
# Capability Errors
# =============================================================================


@dataclass
class CapabilityError(ToolsmithError):
    """
    Base class for capability catalog errors.

    Attributes:
        capability: Name or id of the capability involved
    """

    capability: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["capability"] = self.capability


@dataclass
class CapabilityNotFoundError(CapabilityError):
    """Raised when a capability does not exist in the catalog."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f'Capability "{self.capability}" not found in catalog.'
        if self.code == 0:
            self.code = ERROR_CAPABILITY_NOT_FOUND
        if not self.suggestion:
            self.suggestion = "Call request_capability first to create the catalog entry"
        super().__post_init__()


@dataclass
class CapabilityNotActiveError(CapabilityError):
    """Raised when a non-active capability is asked to execute."""

    status: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f'Capability "{self.capability}" is not active (status: {self.status}).'
            )
        if self.code == 0:
            self.code = ERROR_CAPABILITY_NOT_ACTIVE
        super().__post_init__()
        self.context["status"] = self.status


@dataclass
class CapabilityExistsError(CapabilityError):
    """Raised when creating a capability whose name is already taken."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f'Capability "{self.capability}" already exists.'
        if self.code == 0:
            self.code = ERROR_CAPABILITY_EXISTS
        super().__post_init__()


@dataclass
class InvalidTransitionError(CapabilityError):
    """Raised when a lifecycle transition is not allowed."""

    from_status: str = ""
    to_status: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Cannot move capability {self.capability} "
                f"from {self.from_status} to {self.to_status}"
            )
        if self.code == 0:
            self.code = ERROR_CAPABILITY_INVALID_TRANSITION
        if not self.suggestion and self.from_status == "active":
            self.suggestion = "Disable the capability first"
        super().__post_init__()
        self.context.update({
            "from_status": self.from_status,
            "to_status": self.to_status,
        })


@dataclass
class InvalidCapabilityNameError(CapabilityError):
    """Raised when a capability name is not snake_case."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid capability name: {self.capability!r}"
        if self.code == 0:
            self.code = ERROR_CAPABILITY_INVALID_NAME
        if not self.suggestion:
            self.suggestion = "Use lowercase snake_case, e.g. weather_lookup"
        super().__post_init__()


# =============================================================================
# Builder / Relay Errors
# =============================================================================


@dataclass
class BuilderError(ToolsmithError):
    """
    Raised when the capability builder cannot complete.

    Attributes:
        build_id: The build that failed
    """

    build_id: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Build {self.build_id} failed"
        if self.code == 0:
            self.code = ERROR_BUILDER_FAILED
        self.context["build_id"] = self.build_id


@dataclass
class RelayMessageError(ToolsmithError):
    """Raised when a relay message has an unknown direction or kind."""

    field_name: str = ""
    value: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid relay {self.field_name}: {self.value!r}"
        if self.code == 0:
            self.code = ERROR_RELAY_INVALID_MESSAGE
        self.context.update({"field": self.field_name, "value": self.value})


# =============================================================================
# Storage Errors
# =============================================================================


@dataclass
class StorageError(ToolsmithError):
    """
    Base class for storage/database errors.

    Attributes:
        operation: The operation that failed (e.g., "insert", "query")
    """

    operation: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["operation"] = self.operation


@dataclass
class StorageConnectionError(StorageError):
    """Raised when database connection fails."""

    db_path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to connect to database: {self.db_path}"
        if self.code == 0:
            self.code = ERROR_STORAGE_CONNECTION
        if not self.suggestion:
            self.suggestion = "Check that the database path is valid and writable"
        super().__post_init__()
        self.context["db_path"] = self.db_path


@dataclass
class StorageWriteError(StorageError):
    """Raised when a write operation fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database write failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_WRITE
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class StorageReadError(StorageError):
    """Raised when a read operation fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database read failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_READ
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


# =============================================================================
# Sandbox Errors
# =============================================================================


@dataclass
class SandboxError(ToolsmithError):
    """
    Base class for sandbox errors.

    Attributes:
        sandbox_id: Identifier of the sandbox involved
    """

    sandbox_id: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["sandbox_id"] = self.sandbox_id


@dataclass
class SandboxCreateError(SandboxError):
    """Raised when a sandbox cannot be provisioned."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to create sandbox: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_SANDBOX_CREATE
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class SandboxExecutionError(SandboxError):
    """Raised when a sandbox operation cannot be carried out at all."""

    operation: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Sandbox {self.operation} failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_SANDBOX_EXECUTION
        super().__post_init__()
        self.context.update({
            "operation": self.operation,
            "underlying_error": self.underlying_error,
        })


# =============================================================================
# Secret / Config Errors
# =============================================================================


@dataclass
class SecretDecryptionError(ToolsmithError):
    """Raised when an encrypted secret cannot be decrypted."""

    reason: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to decrypt secret: {self.reason}"
        if self.code == 0:
            self.code = ERROR_SECRET_DECRYPTION
        self.context["reason"] = self.reason


@dataclass
class SecretKeyError(ToolsmithError):
    """Raised when the encryption key cannot be loaded or created."""

    key_path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Cannot load secret key from {self.key_path}"
        if self.code == 0:
            self.code = ERROR_SECRET_KEY
        if not self.suggestion:
            self.suggestion = "Set TOOLSMITH_SECRET_KEY or make the data directory writable"
        self.context["key_path"] = self.key_path


@dataclass
class ConfigError(ToolsmithError):
    """Raised when the configuration file is invalid."""

    path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid configuration: {self.path}"
        if self.code == 0:
            self.code = ERROR_CONFIG_INVALID
        self.context["path"] = self.path
