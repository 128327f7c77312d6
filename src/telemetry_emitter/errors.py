"""Exceptions raised to the embedding application."""


class EmitterError(Exception):
    """Base class for telemetry emitter errors."""


class CollectorNotConfiguredError(EmitterError):
    """Raised when a queue must send but no collector URL is known."""
