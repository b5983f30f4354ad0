"""
errors.py — Exception hierarchy for the icon evolution pipeline.

  InputValidationError  — user-supplied data rejected before any service call
  ExternalServiceError  — network / status / unparseable body from a collaborator
  ResponseSchemaError   — collaborator returned well-formed but schema-invalid data
  InvalidTransitionError — action not allowed from the current pipeline state
"""

from __future__ import annotations

from typing import Optional


class IconEvolverError(Exception):
    """Base exception for all icon evolver errors."""

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.cause = cause

    def __str__(self):
        parts = [self.message]
        if self.stage:
            parts.insert(0, f"[{self.stage}] ")
        if self.cause:
            parts.append(f" (caused by: {type(self.cause).__name__}: {self.cause})")
        return "".join(parts)


class ConfigurationError(IconEvolverError):
    """Required configuration (API key, etc.) is missing"""
    pass


class InputValidationError(IconEvolverError):
    """Malformed or missing field in user-supplied data"""
    pass


class ExternalServiceError(IconEvolverError):
    """A collaborator call failed: network error, bad status, or unparseable body"""
    pass


class ResponseSchemaError(IconEvolverError):
    """A collaborator returned data that does not match the declared shape"""
    pass


class InvalidTransitionError(IconEvolverError):
    """The requested action is not permitted from the current pipeline state"""
    pass
