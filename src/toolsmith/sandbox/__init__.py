"""
Sandbox module for Toolsmith.

Isolated environments in which the builder tests generated code and the
executor runs registered capabilities.
"""

from toolsmith.sandbox.base import CodeError, CodeResult, CommandResult, Sandbox, SandboxFactory
from toolsmith.sandbox.local import LocalSandbox, local_sandbox_factory

__all__ = [
    "CodeError",
    "CodeResult",
    "CommandResult",
    "LocalSandbox",
    "Sandbox",
    "SandboxFactory",
    "local_sandbox_factory",
]
