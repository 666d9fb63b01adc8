"""
Local subprocess sandbox.

Each LocalSandbox is a private temporary directory plus child processes of
the configured Python interpreter:

    - Commands are split with shlex and run WITHOUT a shell
    - ``python``/``pip`` resolve to the configured interpreter
    - pip installs land in the sandbox's own package directory (PIP_TARGET),
      which is put on PYTHONPATH, so nothing leaks into the host environment
    - Every call is bounded by its own timeout and by the sandbox lifetime
    - Output is truncated to a fixed size

This is process-level isolation only. It keeps builds and executions apart
from each other, it does not defend against hostile code.
"""

import json
import os
import shlex
import shutil
import subprocess
import sys
import tempfile
import time
import uuid
from pathlib import Path

import structlog

from toolsmith.config import SandboxConfig
from toolsmith.errors import SandboxCreateError, SandboxExecutionError
from toolsmith.sandbox.base import CodeError, CodeResult, CommandResult, Sandbox, SandboxFactory

logger = structlog.get_logger(__name__)

PACKAGES_DIR = ".packages"

# Executes a cell file, evaluating a trailing expression like a REPL, and
# writes {"output", "error"} as JSON to the report path.
CELL_RUNNER = r"""
import ast, json, sys, traceback
cell_path, report_path = sys.argv[1], sys.argv[2]
report = {"output": None, "error": None}
namespace = {"__name__": "__main__"}
try:
    with open(cell_path, encoding="utf-8") as f:
        tree = ast.parse(f.read(), cell_path)
    last = None
    if tree.body and isinstance(tree.body[-1], ast.Expr):
        last = ast.Expression(tree.body.pop().value)
    exec(compile(tree, cell_path, "exec"), namespace)
    if last is not None:
        value = eval(compile(last, cell_path, "eval"), namespace)
        if value is not None:
            report["output"] = repr(value)
except BaseException as e:
    report["error"] = {
        "name": type(e).__name__,
        "value": str(e),
        "traceback": traceback.format_exc(),
    }
with open(report_path, "w", encoding="utf-8") as f:
    json.dump(report, f)
"""


class LocalSandbox(Sandbox):
    """
    Sandbox backed by a temporary directory and subprocesses.

    Args:
        lifetime_seconds: Hard upper bound on the sandbox's useful life
        python: Interpreter used for code, commands and pip
        max_output_bytes: Per-stream output cap
    """

    def __init__(
        self,
        lifetime_seconds: float,
        python: str = sys.executable,
        max_output_bytes: int = 1024 * 1024,
    ) -> None:
        self.sandbox_id = f"local-{uuid.uuid4().hex[:12]}"
        self.python = python
        self.max_output_bytes = max_output_bytes
        self.deadline = time.monotonic() + lifetime_seconds
        self.destroyed = False
        self._cells = 0
        try:
            self.root = Path(tempfile.mkdtemp(prefix="toolsmith-sandbox-"))
            (self.root / PACKAGES_DIR).mkdir()
        except OSError as e:
            raise SandboxCreateError(sandbox_id=self.sandbox_id, underlying_error=str(e)) from e
        logger.debug("sandbox.created", sandbox_id=self.sandbox_id, root=str(self.root))

    # -------------------------------------------------------------------------
    # Sandbox interface
    # -------------------------------------------------------------------------

    def write_file(self, path: str, content: str) -> None:
        target = self.resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        except OSError as e:
            raise SandboxExecutionError(
                sandbox_id=self.sandbox_id, operation="write_file", underlying_error=str(e)
            ) from e

    def run_code(self, code: str, timeout: float) -> CodeResult:
        self._cells += 1
        cell = self.root / f".cell_{self._cells}.py"
        report = self.root / f".cell_{self._cells}.json"
        self.write_file(cell.name, code)

        completed = self._run(
            [self.python, "-c", CELL_RUNNER, str(cell), str(report)], timeout, "run_code"
        )
        if completed is None:
            return CodeResult(
                error=CodeError(name="TimeoutError", value=f"Execution timed out after {timeout}s")
            )
        stdout, stderr = self._decode(completed.stdout), self._decode(completed.stderr)
        try:
            data = json.loads(report.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return CodeResult(
                stdout=stdout,
                stderr=stderr,
                error=CodeError(
                    name="ProcessError",
                    value=f"Interpreter exited with code {completed.returncode}",
                ),
            )
        error = data.get("error")
        return CodeResult(
            stdout=stdout,
            stderr=stderr,
            output=data.get("output"),
            error=CodeError(**error) if error else None,
        )

    def run_command(self, command: str, timeout: float) -> CommandResult:
        try:
            argv = self._argv(command)
        except ValueError as e:
            return CommandResult(exit_code=2, stderr=f"Cannot parse command: {e}")
        if not argv:
            return CommandResult(exit_code=2, stderr="Empty command")

        try:
            completed = self._run(argv, timeout, "run_command")
        except SandboxExecutionError as e:
            if isinstance(e.__cause__, FileNotFoundError):
                return CommandResult(exit_code=127, stderr=f"Executable not found: {argv[0]}")
            raise
        if completed is None:
            return CommandResult(exit_code=124, stderr=f"Command timed out after {timeout}s")
        return CommandResult(
            exit_code=completed.returncode,
            stdout=self._decode(completed.stdout),
            stderr=self._decode(completed.stderr),
        )

    def destroy(self) -> None:
        if self.destroyed:
            return
        self.destroyed = True
        shutil.rmtree(self.root, ignore_errors=True)
        logger.debug("sandbox.destroyed", sandbox_id=self.sandbox_id)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def resolve(self, path: str) -> Path:
        """Map a sandbox path onto the sandbox root, refusing escapes."""
        target = (self.root / path.lstrip("/")).resolve()
        if not target.is_relative_to(self.root.resolve()):
            raise SandboxExecutionError(
                sandbox_id=self.sandbox_id,
                operation="resolve",
                underlying_error=f"Path escapes sandbox: {path}",
            )
        return target

    def _argv(self, command: str) -> list[str]:
        argv = shlex.split(command)
        if argv and argv[0] in ("python", "python3"):
            argv[0] = self.python
        elif argv and argv[0] in ("pip", "pip3"):
            argv = [self.python, "-m", "pip", *argv[1:]]
        return argv

    def _env(self) -> dict[str, str]:
        packages = str(self.root / PACKAGES_DIR)
        env = os.environ.copy()
        env["PYTHONPATH"] = os.pathsep.join([packages, str(self.root)])
        env["PIP_TARGET"] = packages
        env["PIP_DISABLE_PIP_VERSION_CHECK"] = "1"
        env["PYTHONDONTWRITEBYTECODE"] = "1"
        return env

    def _run(
        self, argv: list[str], timeout: float, operation: str
    ) -> subprocess.CompletedProcess[bytes] | None:
        """Run a child process. Returns None on timeout."""
        if self.destroyed:
            raise SandboxExecutionError(
                sandbox_id=self.sandbox_id, operation=operation, underlying_error="sandbox destroyed"
            )
        remaining = self.deadline - time.monotonic()
        if remaining <= 0:
            raise SandboxExecutionError(
                sandbox_id=self.sandbox_id, operation=operation, underlying_error="sandbox expired"
            )
        try:
            return subprocess.run(
                argv,
                cwd=str(self.root),
                env=self._env(),
                capture_output=True,
                timeout=min(timeout, remaining),
                shell=False,
            )
        except subprocess.TimeoutExpired:
            logger.info("sandbox.timeout", sandbox_id=self.sandbox_id, operation=operation)
            return None
        except OSError as e:
            raise SandboxExecutionError(
                sandbox_id=self.sandbox_id, operation=operation, underlying_error=str(e)
            ) from e

    def _decode(self, data: bytes) -> str:
        if len(data) > self.max_output_bytes:
            marker = f"\n... [truncated, exceeded {self.max_output_bytes} bytes]".encode()
            data = data[: self.max_output_bytes - len(marker)] + marker
        return data.decode("utf-8", errors="replace")


def local_sandbox_factory(config: SandboxConfig) -> SandboxFactory:
    """Build a SandboxFactory producing LocalSandboxes for this config."""

    def create(lifetime_seconds: float) -> Sandbox:
        return LocalSandbox(
            lifetime_seconds=lifetime_seconds,
            python=config.python,
            max_output_bytes=config.max_output_bytes,
        )

    return create
