"""
Capabilities module for Toolsmith.

A capability is a tool the assistant synthesized for itself: generated
Python code with a manifest, registered in the catalog, executed in a
sandbox with its own encrypted secrets and durable storage.
"""

from toolsmith.capabilities.catalog import CapabilityCatalog, CatalogSnapshot, to_tool_spec
from toolsmith.capabilities.crypto import SecretCipher, load_or_create_key
from toolsmith.capabilities.executor import CapabilityExecutor, ExecutionOutput
from toolsmith.capabilities.secrets import SecretStore
from toolsmith.capabilities.storage import CapabilityStorage

__all__ = [
    "CapabilityCatalog",
    "CapabilityExecutor",
    "CapabilityStorage",
    "CatalogSnapshot",
    "ExecutionOutput",
    "SecretCipher",
    "SecretStore",
    "load_or_create_key",
    "to_tool_spec",
]
