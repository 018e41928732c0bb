"""shellrelay -- persistent shell sessions for remote callers.

This package lets a remote caller run commands against long-lived shell
processes so that directory changes, environment mutations and other
shell state persist across successive calls. Sessions are addressed by
id and kept in a registry that evicts idle ones in the background.
"""

__version__ = "0.1.0"
