"""HTTP endpoint module for shellrelay.

Exposes the terminal operations (create, execute, list, close, status,
reset) as tool calls over HTTP, backed by a session registry.
"""
