"""
Toolsmith - A conversational agent runtime that builds its own tools.

Toolsmith lets a chat agent call tools, and when no suitable tool exists,
synthesize one: a background builder writes Python code, tests it inside an
isolated sandbox, and registers it in a durable capability catalog.
It provides:
- A bounded multi-round tool-calling loop
- A detached capability builder that talks to the session through a relay
- Encrypted per-capability secrets and durable scratch storage
- Sandboxed execution of registered capabilities

Example usage:
    $ toolsmith chat
    $ toolsmith capabilities list
    $ toolsmith run weather_lookup --args '{"city": "Oslo"}'
"""

__version__ = "0.1.0"
__author__ = "Toolsmith Contributors"

__all__ = [
    "__version__",
    "__author__",
]
