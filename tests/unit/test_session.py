"""
Unit tests for the interactive session.

Models are scripted, sandboxes are faked and builds either run inline
(SynchronousBuildQueue) or are held so the relay can be driven by hand.
"""

from concurrent.futures import Future
from pathlib import Path

import pytest

from toolsmith.builder.jobs import BuildQueue, SynchronousBuildQueue
from toolsmith.builder.loop import BuildRequest, BuildResult, CapabilityBuilder
from toolsmith.config import LoopConfig, ToolsmithConfig
from toolsmith.errors import CapabilityNotFoundError
from toolsmith.model.base import ModelResponse, ScriptedChatModel, ToolUse
from toolsmith.schema import CapabilityStatus, RelayDirection, RelayKind
from toolsmith.session import ASSISTANT_SYSTEM_PROMPT, SecretRequest, Session

CODE = "def run(args, context):\n    return 'Sunny'\n"


class HeldBuildQueue(BuildQueue):
    """Accepts builds but never runs them."""

    def __init__(self, builder: CapabilityBuilder) -> None:
        self.builder = builder
        self.requests: list[BuildRequest] = []
        self.shut_down = False

    def submit(self, request: BuildRequest) -> Future[BuildResult]:
        self.requests.append(request)
        return Future()

    def shutdown(self, wait: bool = True) -> None:
        self.shut_down = True


def request_capability(call_id: str = "t1") -> ModelResponse:
    return ModelResponse(tool_calls=(ToolUse(
        call_id,
        "request_capability",
        {"name": "weather_lookup", "description": "Current weather for a city"},
    ),))


@pytest.fixture
def config(temp_dir: Path) -> ToolsmithConfig:
    return ToolsmithConfig(data_dir=temp_dir)


@pytest.fixture
def make_session(config, db, cipher, sandbox_factory):
    sessions: list[Session] = []

    def factory(script, builder_script=(), queue=SynchronousBuildQueue):
        session = Session(
            config,
            db,
            ScriptedChatModel(script),
            builder_model=ScriptedChatModel(builder_script),
            sandbox_factory=sandbox_factory,
            build_queue_factory=queue,
            cipher=cipher,
        )
        sessions.append(session)
        return session

    yield factory
    for session in sessions:
        session.close()


class TestTurns:
    """Tests for Session.send."""

    def test_plain_turn(self, make_session):
        session = make_session([ModelResponse(text="Hello!")])
        result = session.send("Hi")
        assert result.text == "Hello!"
        assert session.history == [
            {"role": "user", "content": "Hi"},
            {"role": "assistant", "content": "Hello!"},
        ]
        assert session.model.calls[0]["system"] == ASSISTANT_SYSTEM_PROMPT

    def test_history_carried_between_turns(self, make_session):
        session = make_session([ModelResponse(text="Hello!"), ModelResponse(text="Fine.")])
        session.send("Hi")
        session.send("How are you?")
        contents = [m["content"] for m in session.model.calls[1]["messages"]]
        assert contents == ["Hi", "Hello!", "How are you?"]

    def test_pending_question_is_reply(self, make_session):
        session = make_session([
            ModelResponse(tool_calls=(ToolUse("t1", "ask_user", {"question": "Which city?"}),)),
        ])
        result = session.send("What's the weather?")
        assert result.status == "pending_question"
        assert session.history[-1] == {"role": "assistant", "content": "Which city?"}


class TestBuilds:
    """Tests for build hand-off and relay draining."""

    def test_turn_starts_build(self, make_session):
        session = make_session(
            [request_capability(), ModelResponse(text="I'm building that now.")],
            queue=HeldBuildQueue,
        )
        result = session.send("What's the weather in Oslo?")
        cap = session.catalog.get_by_name("weather_lookup")
        assert result.build_id == cap.id
        (request,) = session.build_queue.requests
        assert request == BuildRequest(
            build_id=cap.id,
            description="Current weather for a city",
            capability_id=cap.id,
            capability_name="weather_lookup",
        )
        assert session.active_builds == [cap.id]

    def test_exhausted_turn_still_starts_build(self, make_session):
        session = make_session(
            [request_capability(), request_capability("t2")],
            queue=HeldBuildQueue,
        )
        session.loop.config = LoopConfig(max_rounds=2)
        result = session.send("What's the weather in Oslo?")
        cap = session.catalog.get_by_name("weather_lookup")
        assert result.status == "max_rounds"
        assert cap.status == CapabilityStatus.BUILDING
        assert [r.build_id for r in session.build_queue.requests] == [cap.id]
        assert session.active_builds == [cap.id]

    def test_inline_build_completes(self, make_session):
        builder_script = [
            ModelResponse(tool_calls=(ToolUse("b1", "register_capability", {
                "name": "weather_lookup",
                "description": "Current weather for a city",
                "main_py": CODE,
                "requirements_txt": "",
                "input_schema": {"type": "object", "properties": {}},
            }),)),
        ]
        session = make_session(
            [request_capability(), ModelResponse(text="Building.")], builder_script
        )
        session.send("What's the weather?")
        cap = session.catalog.get_by_name("weather_lookup")
        assert cap.status == CapabilityStatus.ACTIVE
        assert session.builds[cap.id].result().success

        updates = session.drain_updates()
        assert [m.kind for m in updates] == [RelayKind.PROGRESS, RelayKind.COMPLETE]
        assert session.active_builds == []
        assert session.drain_updates() == []

    def test_failed_build_reported(self, make_session):
        session = make_session(
            [request_capability(), ModelResponse(text="Building.")],
            [ModelResponse(text="I give up.")],
        )
        session.send("What's the weather?")
        updates = session.drain_updates()
        assert updates[-1].kind == RelayKind.ERROR
        assert updates[-1].payload["recoverable"] is False
        assert session.catalog.get_by_name("weather_lookup").status == CapabilityStatus.FAILED
        assert session.active_builds == []

    def test_build_tracked_until_terminal(self, make_session):
        session = make_session([], queue=HeldBuildQueue)
        cap = session.catalog.create("weather_lookup", "w")
        session.start_build(cap.id)

        session.relay.push(cap.id, RelayDirection.TO_USER, RelayKind.PROGRESS, {"step": "Testing"})
        assert [m.kind for m in session.drain_updates()] == [RelayKind.PROGRESS]
        assert session.active_builds == [cap.id]

        session.relay.push(cap.id, RelayDirection.TO_USER, RelayKind.COMPLETE, {})
        assert [m.kind for m in session.drain_updates()] == [RelayKind.COMPLETE]
        assert session.active_builds == []

    def test_start_build_description_override(self, make_session):
        session = make_session([], queue=HeldBuildQueue)
        cap = session.catalog.create("weather_lookup", "w")
        session.start_build(cap.id, description="Weather with a 3 day forecast")
        assert session.build_queue.requests[0].description == "Weather with a 3 day forecast"

    def test_start_build_unknown(self, make_session):
        session = make_session([], queue=HeldBuildQueue)
        with pytest.raises(CapabilityNotFoundError):
            session.start_build("missing")


class TestBuilderReplies:
    """Tests for answers and secrets sent back to builds."""

    def test_answer_builder(self, make_session):
        session = make_session([], queue=HeldBuildQueue)
        message = session.answer_builder("build-1", "Celsius")
        assert message.direction == RelayDirection.TO_BUILDER
        assert message.kind == RelayKind.ANSWER
        assert message.payload == {"answer": "Celsius"}

    def test_submit_secret(self, make_session):
        session = make_session([], queue=HeldBuildQueue)
        cap = session.catalog.create("weather_lookup", "w")
        message = session.submit_secret(cap.id, "WEATHER_API_KEY", "sk-live-123")
        assert session.secrets.get_secrets(cap.id) == {"WEATHER_API_KEY": "sk-live-123"}
        assert message.kind == RelayKind.SECRET_RESPONSE
        assert message.payload == {"name": "WEATHER_API_KEY", "saved": True}

    def test_submit_secret_for_other_capability(self, make_session):
        session = make_session([], queue=HeldBuildQueue)
        cap = session.catalog.create("weather_lookup", "w")
        session.submit_secret("build-1", "WEATHER_API_KEY", "sk-live-123", capability_id=cap.id)
        assert session.secrets.list_keys(cap.id) == ["WEATHER_API_KEY"]
        (pending,) = session.relay.peek("build-1", RelayDirection.TO_BUILDER)
        assert "sk-live-123" not in pending.model_dump_json()

    def test_decline_secret(self, make_session):
        session = make_session([], queue=HeldBuildQueue)
        message = session.decline_secret("build-1", "WEATHER_API_KEY")
        assert message.payload == {"name": "WEATHER_API_KEY", "saved": False}

    def test_secret_request_from_message(self, make_session):
        session = make_session([], queue=HeldBuildQueue)
        message = session.relay.push(
            "build-1",
            RelayDirection.TO_USER,
            RelayKind.SECRET_REQUEST,
            {"name": "WEATHER_API_KEY", "description": "OpenWeather key", "capability_id": "c1"},
        )
        assert SecretRequest.from_message(message) == SecretRequest(
            build_id="build-1",
            name="WEATHER_API_KEY",
            description="OpenWeather key",
            capability_id="c1",
        )


class TestLifecycle:
    """Tests for close."""

    def test_close_leaves_borrowed_db_open(self, make_session, db):
        session = make_session([], queue=HeldBuildQueue)
        session.close()
        assert session.build_queue.shut_down
        assert db.query("SELECT 1 AS one")[0]["one"] == 1
