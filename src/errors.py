"""Exception taxonomy for the tiled rendering engine.

User-driven pause and stop are not errors and never appear here: they
surface as job reports and outcomes instead.
"""

from __future__ import annotations


class SeamtileError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(SeamtileError, ValueError):
    """Invalid tile/scale/offset combination or render parameter.

    Raised before any job state is created.
    """


class InferenceError(SeamtileError, RuntimeError):
    """A model or utility transform call failed or returned a bad shape."""

    def __init__(self, message: str, model_id: str | None = None) -> None:
        super().__init__(message)
        self.model_id = model_id


class TileStateError(SeamtileError, RuntimeError):
    """A tile was moved between dispatcher states illegally."""
