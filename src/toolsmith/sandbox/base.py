"""
Base classes for isolated execution sandboxes.

A sandbox is a disposable environment owned by exactly one build or one
capability execution. It offers three operations (write a file, run a
Python snippet, run a command) and is destroyed when its owner finishes.

Design Principles:
    - Expected failures (non-zero exit, exceptions in user code, timeouts)
      are results, not exceptions
    - SandboxError is raised only when the sandbox itself is unusable
    - destroy() is idempotent
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable


@dataclass(frozen=True)
class CodeError:
    """An exception raised by code running inside the sandbox."""

    name: str
    value: str
    traceback: str = ""


@dataclass(frozen=True)
class CodeResult:
    """
    Outcome of run_code.

    Attributes:
        stdout: Captured standard output
        stderr: Captured standard error
        output: repr() of the snippet's trailing expression, if any
        error: Set when the snippet raised
    """

    stdout: str = ""
    stderr: str = ""
    output: str | None = None
    error: CodeError | None = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class CommandResult:
    """Outcome of run_command."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class Sandbox(ABC):
    """
    Abstract isolated execution environment.

    Subclasses must implement write_file, run_code, run_command and destroy.

    Example:
        with factory(600) as sandbox:
            sandbox.write_file("main.py", code)
            result = sandbox.run_command("python main.py", timeout=60)
    """

    sandbox_id: str = ""

    @abstractmethod
    def write_file(self, path: str, content: str) -> None:
        """Write a text file, creating parent directories."""
        ...

    @abstractmethod
    def run_code(self, code: str, timeout: float) -> CodeResult:
        """Run a Python snippet in the sandbox interpreter."""
        ...

    @abstractmethod
    def run_command(self, command: str, timeout: float) -> CommandResult:
        """Run a command line in the sandbox working directory."""
        ...

    @abstractmethod
    def destroy(self) -> None:
        """Release every resource held by the sandbox."""
        ...

    def __enter__(self) -> "Sandbox":
        return self

    def __exit__(self, *args: Any) -> None:
        self.destroy()


# Creates a sandbox that lives at most the given number of seconds
SandboxFactory = Callable[[float], Sandbox]
