"""
Interactive session for Toolsmith.

The Session is the orchestration layer a front end (the CLI REPL) talks
to. It wires together:
- Catalog, secrets, storage and memory over one database
- The agentic loop that answers each user turn
- The build queue that runs capability builds in the background
- The relay that carries builder questions, progress and secret requests

Turn Flow:
    1. Append the user message to the history
    2. Run the agentic loop over the live tool table
    3. Append the reply to the history
    4. If request_capability started a build, hand it to the build queue
    5. The caller drains relay updates between turns and answers questions

Design Principles:
    - The session never blocks on a build; builds report through the relay
    - Secret values go straight to the encrypted store, never into a
      conversation
"""

from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from toolsmith.agent.loop import AgenticLoop, LoopResult, ToolEvent
from toolsmith.builder.jobs import BuildQueue
from toolsmith.builder.loop import BuildRequest, BuildResult, CapabilityBuilder
from toolsmith.capabilities.catalog import CapabilityCatalog
from toolsmith.capabilities.crypto import SecretCipher, load_or_create_key
from toolsmith.capabilities.executor import CapabilityExecutor
from toolsmith.capabilities.secrets import SecretStore
from toolsmith.capabilities.storage import CapabilityStorage
from toolsmith.config import ToolsmithConfig
from toolsmith.errors import CapabilityNotFoundError
from toolsmith.model.base import ChatModel
from toolsmith.model.ollama import OllamaChatModel
from toolsmith.relay.queue import MessageRelay
from toolsmith.sandbox.base import SandboxFactory
from toolsmith.sandbox.local import local_sandbox_factory
from toolsmith.schema import RelayDirection, RelayKind, RelayMessage
from toolsmith.store.db import ToolsmithDB
from toolsmith.store.memory import MemoryStore
from toolsmith.tools.base import ToolContext

logger = structlog.get_logger(__name__)

ASSISTANT_SYSTEM_PROMPT = """You are a friendly, capable personal assistant. Keep replies concise and conversational.

You can call tools. Besides your built-in tools, every capability you have built before is available as a tool whose name starts with "cap_".

When the user asks for something you cannot do with your current tools:
1. Call lookup_capability to check whether a matching capability already exists
2. If one exists and is active, call it (or use execute_capability)
3. If none exists, call request_capability with a snake_case name and a clear description. A builder will create it in the background; tell the user it is being built
4. If a capability is still building, tell the user and offer to help with something else

Use ask_user when you need more information from the user before acting.
Use store_memory for facts worth remembering and recall_memory to look them up; use deep_memory for broader questions about the user.
Use web_search for current information and browser_use to read a page."""

TERMINAL_KINDS = frozenset({RelayKind.COMPLETE, RelayKind.ERROR})

BuildQueueFactory = Callable[[CapabilityBuilder], BuildQueue]


@dataclass(frozen=True)
class SecretRequest:
    """A pending secret_request from a build, as shown to the user."""

    build_id: str
    name: str
    description: str
    capability_id: str | None = None

    @classmethod
    def from_message(cls, message: RelayMessage) -> "SecretRequest":
        return cls(
            build_id=message.build_id,
            name=str(message.payload.get("name", "")),
            description=str(message.payload.get("description", "")),
            capability_id=message.payload.get("capability_id"),
        )


class Session:
    """
    One interactive conversation with background builds.

    Usage:
        with Session.from_config(config) as session:
            result = session.send("What's the weather in Paris?")
            for message in session.drain_updates():
                ...

    Attributes:
        catalog: Capability catalog
        secrets: Encrypted secret store
        storage: Per-capability storage
        relay: Builder relay
        memory: Memory store
        executor: Capability executor
        loop: Agentic loop for user turns
        build_queue: Background build runner
        history: Conversation transcript ({role, content} messages)
    """

    def __init__(
        self,
        config: ToolsmithConfig,
        db: ToolsmithDB,
        model: ChatModel,
        builder_model: ChatModel | None = None,
        sandbox_factory: SandboxFactory | None = None,
        build_queue_factory: BuildQueueFactory | None = None,
        on_event: Callable[[ToolEvent], None] | None = None,
        http_client: httpx.Client | None = None,
        cipher: SecretCipher | None = None,
    ) -> None:
        """
        Wire up a session.

        Args:
            config: Loaded configuration
            db: Open database (not closed by the session unless from_config made it)
            model: Chat model for user turns
            builder_model: Chat model for builds (defaults to model)
            sandbox_factory: Sandbox provider (defaults to local subprocess sandboxes)
            build_queue_factory: Creates the build queue from the builder
            on_event: ToolEvent callback for the loop
            http_client: Shared HTTP client for network tools
            cipher: Secret cipher (defaults to the configured or generated key)
        """
        self.config = config
        self.db = db
        self.model = model
        self._owns_db = False
        self._owned_models: list[ChatModel] = []

        sandbox_factory = sandbox_factory or local_sandbox_factory(config.sandbox)
        cipher = cipher or SecretCipher(load_or_create_key(config.key_path, config.secret_key))

        self.catalog = CapabilityCatalog(db, config.capabilities_dir)
        self.secrets = SecretStore(db, cipher)
        self.storage = CapabilityStorage(db)
        self.relay = MessageRelay(db)
        self.memory = MemoryStore(db)
        self.executor = CapabilityExecutor(
            self.catalog, self.secrets, self.storage, sandbox_factory, config.sandbox
        )
        self.context = ToolContext(
            catalog=self.catalog,
            executor=self.executor,
            memory=self.memory,
            model=model,
            tavily_api_key=config.tavily_api_key,
            http_client=http_client,
        )
        self.loop = AgenticLoop(model, self.context, config.loop, on_event=on_event)

        builder = CapabilityBuilder(
            builder_model or model,
            self.catalog,
            self.relay,
            sandbox_factory,
            config.builder,
            config.sandbox,
        )
        if build_queue_factory is None:
            self.build_queue = BuildQueue(builder, workers=config.builder.workers)
        else:
            self.build_queue = build_queue_factory(builder)

        self.history: list[dict[str, Any]] = []
        self.builds: dict[str, Future[BuildResult]] = {}

    @classmethod
    def from_config(
        cls,
        config: ToolsmithConfig,
        on_event: Callable[[ToolEvent], None] | None = None,
    ) -> "Session":
        """Open the configured database and Ollama model, owned by the session."""
        config.data_dir.mkdir(parents=True, exist_ok=True)
        db = ToolsmithDB(config.database_path)
        model = OllamaChatModel(config.model)
        session = cls(config, db, model, on_event=on_event)
        session._owns_db = True
        session._owned_models.append(model)
        return session

    # -------------------------------------------------------------------------
    # Turns
    # -------------------------------------------------------------------------

    def send(self, text: str) -> LoopResult:
        """
        Run one user turn.

        Starts a background build when the turn requested a new capability.
        """
        self.history.append({"role": "user", "content": text})
        result = self.loop.run(ASSISTANT_SYSTEM_PROMPT, self.history)
        self.history.append({"role": "assistant", "content": result.text})
        logger.info(
            "session.turn",
            status=result.status,
            rounds=result.rounds,
            tool_calls=len(result.tool_calls),
        )
        if result.build_id:
            self.start_build(result.build_id)
        return result

    # -------------------------------------------------------------------------
    # Builds
    # -------------------------------------------------------------------------

    def start_build(self, capability_id: str, description: str | None = None) -> Future[BuildResult]:
        """
        Hand a build for a catalog entry to the build queue.

        Raises:
            CapabilityNotFoundError: No catalog entry with that id
        """
        cap = self.catalog.get(capability_id)
        if cap is None:
            raise CapabilityNotFoundError(capability=capability_id)
        request = BuildRequest(
            build_id=cap.id,
            description=description or cap.description,
            capability_id=cap.id,
            capability_name=cap.name,
        )
        future = self.build_queue.submit(request)
        self.builds[cap.id] = future
        logger.info("session.build_started", build_id=cap.id, capability=cap.name)
        return future

    @property
    def active_builds(self) -> list[str]:
        """Build ids still being tracked (no complete/error drained yet)."""
        return list(self.builds)

    def drain_updates(self) -> list[RelayMessage]:
        """
        Consume to_user messages of every tracked build, in order.

        A build stops being tracked once its complete or error message has
        been drained.
        """
        updates: list[RelayMessage] = []
        for build_id in list(self.builds):
            messages = self.relay.poll(build_id, RelayDirection.TO_USER)
            updates.extend(messages)
            if any(message.kind in TERMINAL_KINDS for message in messages):
                self.builds.pop(build_id, None)
        return updates

    def answer_builder(self, build_id: str, answer: str) -> RelayMessage:
        """Answer a builder question."""
        return self.relay.push(
            build_id, RelayDirection.TO_BUILDER, RelayKind.ANSWER, {"answer": answer}
        )

    def submit_secret(
        self, build_id: str, name: str, value: str, capability_id: str | None = None
    ) -> RelayMessage:
        """
        Store a secret requested by a build and tell the builder it was saved.

        The value is encrypted under the capability; only the name reaches
        the builder.
        """
        self.secrets.set_secret(capability_id or build_id, name, value)
        return self.relay.push(
            build_id,
            RelayDirection.TO_BUILDER,
            RelayKind.SECRET_RESPONSE,
            {"name": name, "saved": True},
        )

    def decline_secret(self, build_id: str, name: str) -> RelayMessage:
        """Tell the builder the user will not provide a secret."""
        return self.relay.push(
            build_id,
            RelayDirection.TO_BUILDER,
            RelayKind.SECRET_RESPONSE,
            {"name": name, "saved": False},
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self, wait: bool = True) -> None:
        """Stop the build queue and release owned resources."""
        self.build_queue.shutdown(wait=wait)
        for model in self._owned_models:
            model.close()
        if self._owns_db:
            self.db.close()

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
