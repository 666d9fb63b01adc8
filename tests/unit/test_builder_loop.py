"""
Unit tests for the capability builder.

The builder model is scripted and the sandbox is faked, so every test
drives a complete build synchronously.

Tests cover:
- Successful builds ending in register_capability
- Tool errors, crashes and mistyped arguments fed back to the model
- Builds that stop without registering or exhaust their round budget
- Model, sandbox and unexpected failures
- Sandbox teardown and the single error message on failure
"""

from typing import Any

import pytest

from toolsmith.builder.loop import (
    EXHAUSTED_TEXT,
    NOT_REGISTERED_TEXT,
    BuildRequest,
    CapabilityBuilder,
)
from toolsmith.config import BuilderConfig
from toolsmith.errors import ModelTimeoutError, SandboxExecutionError
from toolsmith.model.base import ModelResponse, ScriptedChatModel, ToolUse
from toolsmith.schema import CapabilityStatus, RelayDirection, RelayKind

CODE = "def run(args, context):\n    return f\"Sunny in {args['city']}\"\n"


def step(call_id: str, name: str, args: dict[str, Any]) -> ModelResponse:
    return ModelResponse(tool_calls=(ToolUse(call_id, name, args),))


def register_args(**overrides: Any) -> dict[str, Any]:
    args = {
        "name": "weather_lookup",
        "description": "Current weather for a city",
        "main_py": CODE,
        "requirements_txt": "",
        "input_schema": {"type": "object", "properties": {"city": {"type": "string"}}},
    }
    args.update(overrides)
    return args


@pytest.fixture
def building(catalog):
    return catalog.create("weather_lookup", "Current weather for a city")


@pytest.fixture
def request_for(building) -> BuildRequest:
    return BuildRequest(
        build_id=building.id,
        description=building.description,
        capability_id=building.id,
        capability_name=building.name,
    )


@pytest.fixture
def make_builder(catalog, relay, sandbox_factory, builder_config, sandbox_config):
    def factory(script, factory=None, config: BuilderConfig | None = None):
        model = ScriptedChatModel(script)
        builder = CapabilityBuilder(
            model,
            catalog,
            relay,
            factory or sandbox_factory,
            config or builder_config,
            sandbox_config,
        )
        return builder, model

    return factory


class TestSuccessfulBuild:
    """Tests for builds that register a capability."""

    def test_write_test_register(self, make_builder, request_for, catalog, relay, sandbox_factory):
        builder, model = make_builder([
            step("b1", "write_file", {"path": "main.py", "content": CODE}),
            step("b2", "run_code", {"code": "from main import run\nrun({'city': 'Oslo'}, {})"}),
            step("b3", "register_capability", register_args()),
        ])
        result = builder.run(request_for)

        assert result.success
        assert result.capability_id == request_for.capability_id
        assert catalog.get(result.capability_id).status == CapabilityStatus.ACTIVE
        assert len(model.calls) == 3

        (sandbox,) = sandbox_factory.created
        assert sandbox.files["main.py"] == CODE
        assert sandbox.destroy_calls == 1
        assert sandbox.lifetime_seconds == 600

        kinds = [m.kind for m in relay.history(request_for.build_id)]
        assert kinds == [RelayKind.PROGRESS, RelayKind.COMPLETE]

    def test_first_message_names_capability(self, make_builder, request_for):
        builder, model = make_builder([step("b1", "register_capability", register_args())])
        builder.run(request_for)
        first = model.calls[0]
        assert "Current weather for a city" in first["messages"][0]["content"]
        assert "`weather_lookup`" in first["messages"][0]["content"]
        assert "register_capability" in first["tools"]
        assert first["max_tokens"] == BuilderConfig().max_tokens

    def test_tool_error_fed_back(self, make_builder, request_for):
        incomplete = register_args()
        del incomplete["main_py"]
        builder, model = make_builder([
            step("b1", "register_capability", incomplete),
            step("b2", "register_capability", register_args()),
        ])
        result = builder.run(request_for)
        assert result.success
        feedback = model.calls[1]["messages"][-1]
        assert feedback["role"] == "tool_results"
        (block,) = feedback["results"]
        assert block["is_error"] is True
        assert block["content"].startswith("Tool error: ")
        assert "'main_py' is required" in block["content"]

    def test_unknown_tool_fed_back(self, make_builder, request_for):
        builder, model = make_builder([
            step("b1", "deploy", {}),
            step("b2", "register_capability", register_args()),
        ])
        assert builder.run(request_for).success
        (block,) = model.calls[1]["messages"][-1]["results"]
        assert block["content"] == "Tool error: Unknown tool: deploy"

    def test_tools_run_in_order(self, make_builder, request_for, sandbox_factory):
        builder, _model = make_builder([
            ModelResponse(tool_calls=(
                ToolUse("b1", "write_file", {"path": "main.py", "content": "v1"}),
                ToolUse("b2", "write_file", {"path": "main.py", "content": "v2"}),
            )),
            step("b3", "register_capability", register_args()),
        ])
        builder.run(request_for)
        assert sandbox_factory.created[0].files["main.py"] == "v2"

    def test_first_registration_is_version_2(self, make_builder, request_for, catalog):
        builder, _ = make_builder([step("b1", "register_capability", register_args())])
        builder.run(request_for)
        assert catalog.get(request_for.capability_id).version == 2


class TestRecoverableToolFailures:
    """Tests for bad tool calls that the builder model gets to correct."""

    def _feedback(self, model) -> dict[str, Any]:
        (block,) = model.calls[1]["messages"][-1]["results"]
        return block

    def test_sandbox_crash_fed_back(
        self, make_builder, make_sandbox_factory, request_for, catalog, relay
    ):
        def crash(sandbox, code):
            raise RuntimeError("interpreter vanished")

        factory = make_sandbox_factory(code_handler=crash)
        builder, model = make_builder(
            [
                step("b1", "run_code", {"code": "1"}),
                step("b2", "register_capability", register_args()),
            ],
            factory=factory,
        )
        result = builder.run(request_for)
        assert result.success
        block = self._feedback(model)
        assert block["is_error"] is True
        assert block["content"] == "Tool error: interpreter vanished"
        assert factory.created[0].destroy_calls == 1
        kinds = [m.kind for m in relay.history(request_for.build_id)]
        assert kinds == [RelayKind.PROGRESS, RelayKind.COMPLETE]

    @pytest.mark.parametrize(
        ("tool", "args", "error"),
        [
            ("register_capability", register_args(tags="weather"), "'tags' must be a array"),
            (
                "register_capability",
                register_args(input_schema='{"type": "object"}'),
                "'input_schema' must be a object",
            ),
            ("register_capability", register_args(tags=["weather", 7]), "'tags[1]' must be a string"),
            ("write_file", {"path": "main.py", "content": {"a": 1}}, "'content' must be a string"),
        ],
    )
    def test_mistyped_arguments_fed_back(
        self, make_builder, request_for, catalog, sandbox_factory, tool, args, error
    ):
        builder, model = make_builder([
            step("b1", tool, args),
            step("b2", "register_capability", register_args()),
        ])
        result = builder.run(request_for)
        assert result.success
        block = self._feedback(model)
        assert block["is_error"] is True
        assert error in block["content"]
        assert "main.py" not in sandbox_factory.created[0].files
        cap = catalog.get(request_for.capability_id)
        assert cap.status == CapabilityStatus.ACTIVE
        assert cap.version == 2


class TestFailedBuild:
    """Tests for builds that do not register anything."""

    def _assert_failed(self, relay, catalog, request: BuildRequest, error: str) -> None:
        errors = [
            m for m in relay.history(request.build_id) if m.kind == RelayKind.ERROR
        ]
        assert len(errors) == 1
        assert errors[0].direction == RelayDirection.TO_USER
        assert errors[0].payload == {"error": error, "recoverable": False}
        assert catalog.get(request.capability_id).status == CapabilityStatus.FAILED

    def test_stops_without_registering(
        self, make_builder, request_for, catalog, relay, sandbox_factory
    ):
        builder, _ = make_builder([
            step("b1", "write_file", {"path": "main.py", "content": CODE}),
            ModelResponse(text="I think we're done here."),
        ])
        result = builder.run(request_for)
        assert not result.success
        assert result.error == NOT_REGISTERED_TEXT
        assert sandbox_factory.created[0].destroy_calls == 1
        self._assert_failed(relay, catalog, request_for, NOT_REGISTERED_TEXT)

    def test_round_budget_exhausted(
        self, make_builder, request_for, catalog, relay, sandbox_factory
    ):
        script = [step(f"b{i}", "report_progress", {"step": f"Attempt {i}"}) for i in range(3)]
        builder, model = make_builder(script, config=BuilderConfig(max_rounds=3))
        result = builder.run(request_for)
        assert result.error == EXHAUSTED_TEXT
        assert len(model.calls) == 3
        assert sandbox_factory.created[0].destroy_calls == 1
        self._assert_failed(relay, catalog, request_for, EXHAUSTED_TEXT)

    def test_model_error(self, make_builder, request_for, catalog, relay, sandbox_factory):
        builder, _ = make_builder([ModelTimeoutError(backend="ollama", timeout_seconds=60)])
        result = builder.run(request_for)
        assert not result.success
        assert sandbox_factory.created[0].destroy_calls == 1
        self._assert_failed(relay, catalog, request_for, result.error)

    def test_sandbox_creation_fails(self, make_builder, request_for, catalog, relay):
        def broken_factory(lifetime_seconds: float):
            raise SandboxExecutionError(operation="create", underlying_error="no capacity")

        builder, model = make_builder([], factory=broken_factory)
        result = builder.run(request_for)
        assert result.error == "Sandbox create failed: no capacity"
        assert model.calls == []
        self._assert_failed(relay, catalog, request_for, result.error)

    def test_unexpected_exception(
        self, make_builder, request_for, catalog, relay, sandbox_factory
    ):
        builder, _ = make_builder([RuntimeError("connection reset")])
        result = builder.run(request_for)
        assert result.error == "connection reset"
        assert sandbox_factory.created[0].destroy_calls == 1
        self._assert_failed(relay, catalog, request_for, "connection reset")

    def test_failed_by_name(self, make_builder, building, catalog, relay):
        request = BuildRequest(
            build_id="build-xyz", description="weather", capability_name="weather_lookup"
        )
        builder, _ = make_builder([ModelResponse(text="nope")])
        assert not builder.run(request).success
        assert catalog.get(building.id).status == CapabilityStatus.FAILED

    def test_active_entry_left_alone(self, make_builder, catalog, relay):
        catalog.create("weather_lookup", "w")
        cap = catalog.register("weather_lookup", "w", CODE)
        request = BuildRequest(build_id=cap.id, description="w", capability_id=cap.id)
        builder, _ = make_builder([ModelResponse(text="nope")])
        assert not builder.run(request).success
        assert catalog.get(cap.id).status == CapabilityStatus.ACTIVE
