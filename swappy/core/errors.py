"""Error taxonomy shared by the services and translated to HTTP by the API."""

from __future__ import annotations


class SwappyError(Exception):
    code = "swappy_error"

    def __init__(self, message: str | None = None, *, code: str | None = None):
        self.code = code or self.code
        self.message = message or self.code
        super().__init__(self.message)


class NotFoundError(SwappyError, LookupError):
    code = "not_found"


class InvalidInputError(SwappyError, ValueError):
    code = "invalid_input"


class StorageError(SwappyError):
    code = "storage_error"


class AnalysisError(SwappyError):
    code = "analysis_failed"


class ConflictError(SwappyError):
    code = "conflict"


class QueueFullError(SwappyError):
    code = "queue_full"


__all__ = [
    "SwappyError",
    "NotFoundError",
    "InvalidInputError",
    "StorageError",
    "AnalysisError",
    "ConflictError",
    "QueueFullError",
]
