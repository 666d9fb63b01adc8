"""
Builder module for Toolsmith.

Background construction of new capabilities: a builder model writes and
tests code in a sandbox, talks to the user through the relay, and
registers the result in the catalog.
"""

from toolsmith.builder.jobs import BuildQueue, SynchronousBuildQueue
from toolsmith.builder.loop import BuildRequest, BuildResult, CapabilityBuilder
from toolsmith.builder.prompts import BUILDER_SYSTEM_PROMPT
from toolsmith.builder.tools import BUILDER_TOOLS, BuilderToolContext, handle_builder_tool

__all__ = [
    "BUILDER_SYSTEM_PROMPT",
    "BUILDER_TOOLS",
    "BuildQueue",
    "BuildRequest",
    "BuildResult",
    "BuilderToolContext",
    "CapabilityBuilder",
    "SynchronousBuildQueue",
    "handle_builder_tool",
]
