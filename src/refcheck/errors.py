"""Configuration-tier exceptions for refcheck.

Only setup defects are raised as exceptions: a descriptor that cannot be
honored, a parameter type with no generator, or a class with no usable
construction path. Behavioral divergences between the reference and the
submission are never raised; they are recorded as verdicts in a
``RunResult``.
"""

from __future__ import annotations

from typing import Any


class ConfigurationError(Exception):
    """A run could not start because its setup is defective.

    Raised before any trial executes. The ``diagnostics`` dict carries
    structured context (offending class, method, types) for the caller.

    Attributes:
        diagnostics: Structured information about the defect.
    """

    def __init__(self, message: str, *, diagnostics: dict[str, Any] | None = None) -> None:
        """Initialize with a message and optional structured diagnostics.

        Args:
            message: Human-readable description of the defect.
            diagnostics: Structured context for debugging.
        """
        super().__init__(message)
        self.diagnostics = diagnostics or {}


class DescriptorError(ConfigurationError):
    """The entry-point descriptor is malformed or does not match the classes."""


class GeneratorResolutionError(ConfigurationError):
    """One or more required parameter types have no resolvable generator."""


class ConstructionError(ConfigurationError):
    """A class under test has no valid construction path."""
