"""
Builder tools.

The tools the builder model uses to write, test and register a capability.
Every handler takes the parsed arguments and a BuilderToolContext and
returns the text fed back to the model. Handlers raise ToolsmithError
subclasses on failure; the builder loop reports those as error results.

Talking to the user goes through the relay only:
    - ask_user pushes a question and waits for an answer on to_builder
    - request_secret pushes a secret_request and waits for confirmation;
      the secret value itself is stored by the session and never enters
      the builder conversation
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog
from pydantic import ValidationError

from toolsmith.capabilities.catalog import CapabilityCatalog
from toolsmith.config import BuilderConfig, SandboxConfig
from toolsmith.errors import ToolInvalidArgsError, ToolNotFoundError
from toolsmith.relay.queue import MessageRelay
from toolsmith.sandbox.base import Sandbox
from toolsmith.schema import RelayDirection, RelayKind, RequiredSecret, ToolSpec
from toolsmith.tools.base import schema_errors

logger = structlog.get_logger(__name__)

ANSWER_TIMEOUT_TEXT = "No answer received from user (timed out)."


@dataclass
class BuilderToolContext:
    """
    Everything a builder tool handler needs.

    Attributes:
        sandbox: The build's sandbox (owned by the builder loop)
        build_id: Relay key of this build
        relay: Message relay to the session
        catalog: Capability catalog
        config: Builder timeouts
        sandbox_config: Per-call sandbox timeouts
        catalog_capability_id: Catalog entry created by request_capability
        capability_id: Set by register_capability; ends the build successfully
    """

    sandbox: Sandbox
    build_id: str
    relay: MessageRelay
    catalog: CapabilityCatalog
    config: BuilderConfig
    sandbox_config: SandboxConfig
    catalog_capability_id: str | None = None
    capability_id: str | None = None


BuilderHandler = Callable[[dict[str, Any], BuilderToolContext], str]


BUILDER_TOOLS: tuple[ToolSpec, ...] = (
    ToolSpec(
        name="write_file",
        description=(
            "Write a file to the sandbox filesystem. Use this to create main.py, "
            "requirements.txt, or any helper files."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path in the sandbox (e.g. main.py)"},
                "content": {"type": "string", "description": "File content"},
            },
            "required": ["path", "content"],
        },
    ),
    ToolSpec(
        name="run_code",
        description="Execute Python code in the sandbox. Use this to test your code.",
        input_schema={
            "type": "object",
            "properties": {"code": {"type": "string", "description": "Python code to execute"}},
            "required": ["code"],
        },
    ),
    ToolSpec(
        name="run_command",
        description="Execute a command in the sandbox. Use this for pip install, ls, etc.",
        input_schema={
            "type": "object",
            "properties": {"command": {"type": "string", "description": "Command to run"}},
            "required": ["command"],
        },
    ),
    ToolSpec(
        name="ask_user",
        description=(
            "Ask the user a clarifying question. The question is relayed through the "
            "assistant. Use sparingly."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "question": {"type": "string", "description": "The question to ask the user"},
            },
            "required": ["question"],
        },
    ),
    ToolSpec(
        name="request_secret",
        description=(
            "Request a secret or API key from the user through a secure input. Use this for "
            "API keys, tokens, passwords or any sensitive credentials."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "name": {
                    "type": "string",
                    "description": 'Secret name in UPPER_SNAKE_CASE (e.g. "OPENWEATHER_API_KEY")',
                },
                "description": {
                    "type": "string",
                    "description": "What this secret is for, so the user knows what to paste",
                },
            },
            "required": ["name", "description"],
        },
    ),
    ToolSpec(
        name="report_progress",
        description="Report build progress to the user. Call this at key milestones.",
        input_schema={
            "type": "object",
            "properties": {
                "step": {
                    "type": "string",
                    "description": 'Current step (e.g. "Writing code", "Testing")',
                },
                "detail": {"type": "string", "description": "Optional detail"},
            },
            "required": ["step"],
        },
    ),
    ToolSpec(
        name="register_capability",
        description=(
            "Finalize and register the capability. Call this only after testing succeeds. "
            "Provide the final versions of all files."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "Capability name (snake_case)"},
                "description": {
                    "type": "string",
                    "description": "What this capability does (1-2 sentences)",
                },
                "main_py": {"type": "string", "description": "Final main.py content"},
                "requirements_txt": {
                    "type": "string",
                    "description": "Final requirements.txt content (empty string if none)",
                },
                "input_schema": {"type": "object", "description": "JSON schema for the input args"},
                "tags": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Tags for discoverability",
                },
                "required_secrets": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "name": {"type": "string"},
                            "description": {"type": "string"},
                        },
                        "required": ["name", "description"],
                    },
                    "description": "Secrets this capability reads from context['secrets']",
                },
            },
            "required": ["name", "description", "main_py", "requirements_txt", "input_schema"],
        },
    ),
)

BUILDER_SPECS: dict[str, ToolSpec] = {spec.name: spec for spec in BUILDER_TOOLS}


def write_file(args: dict[str, Any], ctx: BuilderToolContext) -> str:
    ctx.sandbox.write_file(args["path"], args["content"])
    return f"File written to {args['path']}"


def run_code(args: dict[str, Any], ctx: BuilderToolContext) -> str:
    result = ctx.sandbox.run_code(args["code"], timeout=ctx.sandbox_config.code_timeout_seconds)
    if result.error is not None:
        return f"Error: {result.error.name}: {result.error.value}\n{result.error.traceback}"
    text = f"Output: {result.output or ''}\nStdout: {result.stdout}"
    if result.stderr:
        text += f"\nStderr: {result.stderr}"
    return text


def run_command(args: dict[str, Any], ctx: BuilderToolContext) -> str:
    result = ctx.sandbox.run_command(
        args["command"], timeout=ctx.sandbox_config.command_timeout_seconds
    )
    return f"Exit code: {result.exit_code}\nStdout: {result.stdout}\nStderr: {result.stderr}"


def ask_user(args: dict[str, Any], ctx: BuilderToolContext) -> str:
    ctx.relay.push(
        ctx.build_id, RelayDirection.TO_USER, RelayKind.QUESTION, {"question": args["question"]}
    )
    reply = ctx.relay.wait_for(
        ctx.build_id,
        RelayDirection.TO_BUILDER,
        [RelayKind.ANSWER],
        timeout=ctx.config.ask_timeout_seconds,
        interval=ctx.config.poll_interval_seconds,
    )
    if reply is None:
        return ANSWER_TIMEOUT_TEXT
    return str(reply.payload.get("answer", ""))


def request_secret(args: dict[str, Any], ctx: BuilderToolContext) -> str:
    name = args["name"]
    payload: dict[str, Any] = {"name": name, "description": args["description"]}
    if ctx.catalog_capability_id:
        payload["capability_id"] = ctx.catalog_capability_id
    ctx.relay.push(ctx.build_id, RelayDirection.TO_USER, RelayKind.SECRET_REQUEST, payload)
    reply = ctx.relay.wait_for(
        ctx.build_id,
        RelayDirection.TO_BUILDER,
        [RelayKind.ANSWER, RelayKind.SECRET_RESPONSE],
        timeout=ctx.config.secret_timeout_seconds,
        interval=ctx.config.poll_interval_seconds,
    )
    if reply is None:
        return f'User did not provide the secret "{name}" within the timeout.'
    if reply.kind == RelayKind.SECRET_RESPONSE and not reply.payload.get("saved", True):
        return f'User declined to provide the secret "{name}".'
    return (
        f'Secret "{name}" has been saved by the user. '
        f"Access it in your code via context['secrets']['{name}']."
    )


def report_progress(args: dict[str, Any], ctx: BuilderToolContext) -> str:
    ctx.relay.push(
        ctx.build_id,
        RelayDirection.TO_USER,
        RelayKind.PROGRESS,
        {"step": args["step"], "detail": args.get("detail") or ""},
    )
    return "Progress reported."


def register_capability(args: dict[str, Any], ctx: BuilderToolContext) -> str:
    try:
        required_secrets = [
            RequiredSecret.model_validate(item) for item in args.get("required_secrets") or []
        ]
    except ValidationError as e:
        raise ToolInvalidArgsError(tool="register_capability", validation_error=str(e)) from e

    name = args["name"]
    cap = ctx.catalog.register(
        name=name,
        description=args["description"],
        main_py=args["main_py"],
        requirements_txt=args["requirements_txt"],
        input_schema=args["input_schema"],
        tags=args.get("tags"),
        required_secrets=required_secrets,
    )
    ctx.capability_id = cap.id
    ctx.relay.push(
        ctx.build_id,
        RelayDirection.TO_USER,
        RelayKind.COMPLETE,
        {"capability_id": cap.id, "capability_name": name, "summary": args["description"]},
    )
    logger.info("builder.registered", build_id=ctx.build_id, capability=name, version=cap.version)
    return f'Capability "{name}" registered successfully with id {cap.id}.'


BUILDER_HANDLERS: dict[str, BuilderHandler] = {
    "write_file": write_file,
    "run_code": run_code,
    "run_command": run_command,
    "ask_user": ask_user,
    "request_secret": request_secret,
    "report_progress": report_progress,
    "register_capability": register_capability,
}


def handle_builder_tool(name: str, args: dict[str, Any], ctx: BuilderToolContext) -> str:
    """
    Run one builder tool.

    Arguments are checked against the tool's input schema before the
    handler runs.

    Raises:
        ToolNotFoundError: Unknown tool name
        ToolInvalidArgsError: Missing or mistyped arguments
        ToolsmithError: Whatever the handler raises
    """
    handler = BUILDER_HANDLERS.get(name)
    if handler is None:
        raise ToolNotFoundError(tool=name)
    errors = schema_errors(BUILDER_SPECS[name].input_schema, args)
    if errors:
        raise ToolInvalidArgsError(tool=name, validation_error=", ".join(errors))
    return handler(args, ctx)
