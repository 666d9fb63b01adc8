"""
Relay module for Toolsmith.

The durable mailbox through which a background builder and the interactive
session talk to each other.
"""

from toolsmith.relay.queue import MessageRelay

__all__ = ["MessageRelay"]
