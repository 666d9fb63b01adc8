"""
Capability builder.

Runs one build end to end in the background:

1. Create a sandbox sized for the whole build
2. Tell the user the build started (progress on the relay)
3. Drive a tool-calling conversation with the builder tools until
   register_capability succeeds, the model stops, or the round budget runs out
4. Destroy the sandbox
5. On failure, push exactly one error message and mark the catalog entry failed

Design Principles:
    - A build never raises: every outcome becomes a BuildResult
    - The sandbox is destroyed exactly once, before any error is reported
    - Builder tools run one at a time, in request order; they share a sandbox
    - Tool failures of any kind are fed back to the model, not treated as
      build failures
"""

from dataclasses import dataclass
from typing import Any

import structlog

from toolsmith.builder.prompts import BUILDER_SYSTEM_PROMPT, build_request_message
from toolsmith.builder.tools import BUILDER_TOOLS, BuilderToolContext, handle_builder_tool
from toolsmith.capabilities.catalog import CapabilityCatalog
from toolsmith.config import BuilderConfig, SandboxConfig
from toolsmith.errors import BuilderError, ToolsmithError
from toolsmith.model.base import (
    ChatModel,
    ToolResultBlock,
    assistant_message,
    tool_results_message,
)
from toolsmith.relay.queue import MessageRelay
from toolsmith.sandbox.base import Sandbox, SandboxFactory
from toolsmith.schema import CapabilityStatus, RelayDirection, RelayKind

logger = structlog.get_logger(__name__)

NOT_REGISTERED_TEXT = "Builder finished without registering a capability."
EXHAUSTED_TEXT = "Builder exceeded maximum iterations."


@dataclass(frozen=True)
class BuildRequest:
    """
    One build to run.

    Attributes:
        build_id: Relay key; equal to the catalog entry's id
        description: What the capability should do
        capability_id: Catalog entry created by request_capability
        capability_name: Name the builder must register under
    """

    build_id: str
    description: str
    capability_id: str | None = None
    capability_name: str | None = None


@dataclass(frozen=True)
class BuildResult:
    """Outcome of a build."""

    success: bool
    capability_id: str | None = None
    error: str | None = None


class CapabilityBuilder:
    """
    Builds capabilities with a dedicated builder model and a sandbox.

    Usage:
        builder = CapabilityBuilder(model, catalog, relay, local_sandbox_factory(cfg))
        result = builder.run(BuildRequest(build_id=cap.id, description=cap.description,
                                          capability_id=cap.id, capability_name=cap.name))
    """

    def __init__(
        self,
        model: ChatModel,
        catalog: CapabilityCatalog,
        relay: MessageRelay,
        sandbox_factory: SandboxFactory,
        config: BuilderConfig | None = None,
        sandbox_config: SandboxConfig | None = None,
    ):
        self.model = model
        self.catalog = catalog
        self.relay = relay
        self.sandbox_factory = sandbox_factory
        self.config = config or BuilderConfig()
        self.sandbox_config = sandbox_config or SandboxConfig()

    def run(self, request: BuildRequest) -> BuildResult:
        """
        Run a build to completion.

        Returns:
            BuildResult; success carries the registered capability id
        """
        log = logger.bind(build_id=request.build_id)
        log.info("builder.started", capability=request.capability_name)
        sandbox: Sandbox | None = None
        capability_id: str | None = None
        error: str | None = None
        try:
            sandbox = self.sandbox_factory(self.sandbox_config.build_lifetime_seconds)
            self.relay.push(
                request.build_id,
                RelayDirection.TO_USER,
                RelayKind.PROGRESS,
                {"step": "Starting build", "detail": "Sandbox created, builder agent starting..."},
            )
            ctx = BuilderToolContext(
                sandbox=sandbox,
                build_id=request.build_id,
                relay=self.relay,
                catalog=self.catalog,
                config=self.config,
                sandbox_config=self.sandbox_config,
                catalog_capability_id=request.capability_id,
            )
            capability_id = self._converse(request, ctx)
        except ToolsmithError as e:
            error = e.message
            log.warning("builder.failed", code=e.code, error=e.message)
        except Exception as e:  # noqa: BLE001
            error = str(e) or type(e).__name__
            log.exception("builder.crashed")
        finally:
            if sandbox is not None:
                self._destroy(sandbox, log)

        if error is None:
            log.info("builder.completed", capability_id=capability_id)
            return BuildResult(success=True, capability_id=capability_id)

        self.relay.push(
            request.build_id,
            RelayDirection.TO_USER,
            RelayKind.ERROR,
            {"error": error, "recoverable": False},
        )
        self._mark_failed(request, log)
        return BuildResult(success=False, error=error)

    def _converse(self, request: BuildRequest, ctx: BuilderToolContext) -> str:
        """
        Drive the builder conversation.

        Returns:
            The registered capability id

        Raises:
            BuilderError: Model stopped without registering, or budget exhausted
            ModelError: Builder model failed
        """
        messages: list[dict[str, Any]] = [
            {
                "role": "user",
                "content": build_request_message(request.description, request.capability_name),
            }
        ]

        for round_index in range(self.config.max_rounds):
            logger.debug("builder.round", build_id=request.build_id, round=round_index + 1)
            response = self.model.complete(
                BUILDER_SYSTEM_PROMPT, messages, BUILDER_TOOLS, max_tokens=self.config.max_tokens
            )
            messages.append(assistant_message(response))

            if not response.has_tool_calls:
                if ctx.capability_id:
                    return ctx.capability_id
                raise BuilderError(build_id=request.build_id, message=NOT_REGISTERED_TEXT)

            results: list[ToolResultBlock] = []
            for call in response.tool_calls:
                try:
                    content = handle_builder_tool(call.name, call.input, ctx)
                    results.append(ToolResultBlock(call.id, call.name, content))
                except ToolsmithError as e:
                    logger.info(
                        "builder.tool_error", build_id=request.build_id, tool=call.name,
                        error=e.message,
                    )
                    results.append(
                        ToolResultBlock(call.id, call.name, f"Tool error: {e.message}", True)
                    )
                except Exception as e:  # noqa: BLE001
                    logger.warning(
                        "builder.tool_crashed", build_id=request.build_id, tool=call.name,
                        error=str(e), exc_info=True,
                    )
                    message = str(e) or type(e).__name__
                    results.append(
                        ToolResultBlock(call.id, call.name, f"Tool error: {message}", True)
                    )
            messages.append(tool_results_message(results))

            if ctx.capability_id:
                return ctx.capability_id

        raise BuilderError(build_id=request.build_id, message=EXHAUSTED_TEXT)

    def _destroy(self, sandbox: Sandbox, log: Any) -> None:
        try:
            sandbox.destroy()
        except (ToolsmithError, OSError) as e:
            log.warning("builder.sandbox_destroy_failed", sandbox_id=sandbox.sandbox_id, error=str(e))

    def _mark_failed(self, request: BuildRequest, log: Any) -> None:
        """Move the catalog entry to failed if it is still building."""
        cap = None
        if request.capability_id:
            cap = self.catalog.get(request.capability_id)
        elif request.capability_name:
            cap = self.catalog.get_by_name(request.capability_name)
        if cap is None or cap.status != CapabilityStatus.BUILDING:
            return
        try:
            self.catalog.mark_failed(cap.id)
        except ToolsmithError as e:
            log.warning("builder.mark_failed_error", capability_id=cap.id, error=e.message)
