from __future__ import annotations

from typing import Any, Dict, Optional


class ResidualsError(Exception):
    """Base class for domain errors raised by the services layer."""


class ValidationError(ResidualsError, ValueError):
    """
    Caller-supplied data breaks an invariant.
    `details` carries structured context (e.g. offending MIDs) for the API layer.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(ResidualsError, LookupError):
    pass


class ExternalServiceError(ResidualsError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PersistenceError(ResidualsError):
    pass
