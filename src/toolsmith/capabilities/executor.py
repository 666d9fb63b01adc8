"""
Capability executor.

Runs a registered capability inside a fresh sandbox:

    1. Check the capability exists and is active (no sandbox otherwise)
    2. Provision a sandbox and copy in main.py / requirements.txt
    3. pip install the requirements, if any
    4. Hand run() its args plus {"secrets", "storage"} via a small harness
    5. Normalize the return value and merge any storage updates
    6. Destroy the sandbox, whatever happened

The harness supports both entry point conventions. ``run(args)`` is the
legacy one-parameter form; anything else is called as ``run(args, context)``.
The choice is made once from inspect.signature when the harness loads.
"""

import json
from dataclasses import dataclass
from typing import Any

import structlog

from toolsmith.capabilities.catalog import MAIN_FILE, REQUIREMENTS_FILE, CapabilityCatalog
from toolsmith.capabilities.secrets import SecretStore
from toolsmith.capabilities.storage import CapabilityStorage
from toolsmith.config import SandboxConfig
from toolsmith.errors import ToolsmithError
from toolsmith.sandbox.base import Sandbox, SandboxFactory

logger = structlog.get_logger(__name__)

RESULT_MARKER = "__RESULT__"
INVOCATION_FILE = ".invocation.json"

HARNESS = f"""
import inspect, json, sys
sys.path.insert(0, ".")
from main import run

with open({INVOCATION_FILE!r}, encoding="utf-8") as _f:
    _invocation = json.load(_f)
_positional = [
    p for p in inspect.signature(run).parameters.values()
    if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
]
if len(_positional) == 1:
    _value = run(_invocation["args"])
else:
    _value = run(_invocation["args"], _invocation["context"])
print({RESULT_MARKER!r})
print(json.dumps(_value, default=str))
"""


@dataclass(frozen=True)
class ExecutionOutput:
    """
    Result of one capability execution.

    Attributes:
        success: Whether run() returned normally
        result: Normalized response text (on success)
        error: What went wrong (on failure)
        stdout: Captured standard output of the run
        stderr: Captured standard error, including tracebacks
    """

    success: bool
    result: str | None = None
    error: str | None = None
    stdout: str = ""
    stderr: str = ""

    @classmethod
    def ok(cls, result: str, stdout: str = "", stderr: str = "") -> "ExecutionOutput":
        return cls(success=True, result=result, stdout=stdout, stderr=stderr)

    @classmethod
    def fail(cls, error: str, stdout: str = "", stderr: str = "") -> "ExecutionOutput":
        return cls(success=False, error=error, stdout=stdout, stderr=stderr)


def normalize_result(value: Any) -> tuple[str, dict[str, Any]]:
    """
    Split a run() return value into (response text, storage updates).

    - str: the response itself
    - {"response": ..., "storage": {...}}: response (JSON-encoded if not a
      str) and storage updates
    - anything else: its string form
    """
    if isinstance(value, str):
        return value, {}
    if isinstance(value, dict) and ("response" in value or "storage" in value):
        response = value.get("response", "")
        if not isinstance(response, str):
            response = json.dumps(response, default=str)
        storage = value.get("storage")
        return response, storage if isinstance(storage, dict) else {}
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str), {}
    return str(value), {}


def parse_harness_stdout(stdout: str) -> tuple[Any, str] | None:
    """
    Extract the JSON value printed after the result marker.

    Returns (value, stdout before the marker), or None if the marker is
    missing.
    """
    before, marker, after = stdout.rpartition(RESULT_MARKER)
    if not marker:
        return None
    payload = after.strip()
    try:
        return json.loads(payload), before
    except json.JSONDecodeError:
        return payload, before


class CapabilityExecutor:
    """
    Executes active capabilities in disposable sandboxes.

    Usage:
        executor = CapabilityExecutor(catalog, secrets, storage, factory, config.sandbox)
        output = executor.execute(cap.id, {"city": "Paris"})
        if output.success:
            print(output.result)
    """

    def __init__(
        self,
        catalog: CapabilityCatalog,
        secrets: SecretStore,
        storage: CapabilityStorage,
        sandbox_factory: SandboxFactory,
        config: SandboxConfig | None = None,
    ) -> None:
        self.catalog = catalog
        self.secrets = secrets
        self.storage = storage
        self.sandbox_factory = sandbox_factory
        self.config = config or SandboxConfig()

    def execute(self, capability_id: str, args: dict[str, Any] | None = None) -> ExecutionOutput:
        """
        Run a capability with the given arguments.

        Failures are returned as ExecutionOutput(success=False); storage
        updates are only applied when run() succeeds.
        """
        cap = self.catalog.get(capability_id)
        if cap is None:
            return ExecutionOutput.fail(f"Capability {capability_id} not found")
        if not cap.is_active:
            return ExecutionOutput.fail(
                f"Capability {cap.name} is not active (status: {cap.status.value})"
            )

        log = logger.bind(capability_id=cap.id, capability=cap.name)
        sandbox: Sandbox | None = None
        try:
            sandbox = self.sandbox_factory(self.config.execute_lifetime_seconds)
            files = self.catalog.load_files(cap.id)
            sandbox.write_file(MAIN_FILE, files.main_py)
            sandbox.write_file(REQUIREMENTS_FILE, files.requirements_txt)

            if files.requirements_txt.strip():
                install = sandbox.run_command(
                    f"pip install -r {REQUIREMENTS_FILE}",
                    timeout=self.config.install_timeout_seconds,
                )
                if not install.success:
                    log.warning("executor.install_failed", exit_code=install.exit_code)
                    return ExecutionOutput.fail(
                        f"Failed to install requirements: {install.stderr}",
                        stdout=install.stdout,
                        stderr=install.stderr,
                    )

            invocation = {
                "args": args or {},
                "context": {
                    "secrets": self.secrets.get_secrets(cap.id),
                    "storage": self.storage.get_storage(cap.id),
                },
            }
            sandbox.write_file(INVOCATION_FILE, json.dumps(invocation, default=str))
            run = sandbox.run_code(HARNESS, timeout=self.config.run_timeout_seconds)

            if run.error is not None:
                log.info("executor.run_failed", error=run.error.name)
                stderr = "\n".join(part for part in (run.stderr, run.error.traceback) if part)
                return ExecutionOutput.fail(
                    f"{run.error.name}: {run.error.value}", stdout=run.stdout, stderr=stderr
                )

            parsed = parse_harness_stdout(run.stdout)
            if parsed is None:
                response, updates, stdout = run.output or run.stdout.strip(), {}, run.stdout
            else:
                value, stdout = parsed
                response, updates = normalize_result(value)

            if updates:
                self.storage.set_storage(cap.id, updates)
            log.info("executor.completed", storage_keys=sorted(updates))
            return ExecutionOutput.ok(response, stdout=stdout, stderr=run.stderr)

        except (ToolsmithError, OSError) as e:
            log.warning("executor.failed", error=str(e))
            return ExecutionOutput.fail(getattr(e, "message", None) or str(e))
        finally:
            if sandbox is not None:
                _destroy(sandbox, log)


def _destroy(sandbox: Sandbox, log: Any) -> None:
    try:
        sandbox.destroy()
    except (ToolsmithError, OSError) as e:
        log.warning("executor.sandbox_destroy_failed", sandbox_id=sandbox.sandbox_id, error=str(e))
