"""
Engine error taxonomy.

* ``ValidationError``       -- malformed / out-of-bounds input, raised before
  any computation or store access.
* ``NotFoundError``         -- an employee or subproject has no resolvable
  location or rate.
* ``StoreUnavailableError`` -- cache or audit store unreachable / timed out.
* ``ComputationError``      -- internal failure in distance / allowance math.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for every error raised by the calculation engine."""

    code = "ENGINE_ERROR"


class ValidationError(EngineError):
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, fields: list[str] | None = None):
        super().__init__(message)
        self.fields = fields or []


class NotFoundError(EngineError):
    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: str | None = None):
        detail = f"{resource} not found"
        if identifier is not None:
            detail = f"{resource} {identifier!r} not found"
        super().__init__(detail)
        self.resource = resource
        self.identifier = identifier


class StoreUnavailableError(EngineError):
    code = "STORE_UNAVAILABLE"

    def __init__(self, store: str, reason: str = ""):
        message = f"{store} store unavailable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.store = store


class ComputationError(EngineError):
    code = "COMPUTATION_ERROR"
