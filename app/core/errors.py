"""Error taxonomy shared by the services and the HTTP layer.

Every error carries the HTTP status it maps to and a short snake_case ``code``
which the routers return as the response ``detail``.
"""

from __future__ import annotations

import enum


class ReelhouseError(Exception):
    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, code: str | None = None, *, message: str | None = None):
        if code:
            self.code = code
        self.message = message or self.code
        super().__init__(self.message)


class BadRequestError(ReelhouseError):
    status_code = 400
    code = "bad_request"


class UnauthorizedError(ReelhouseError):
    status_code = 401
    code = "unauthorized"


class ForbiddenError(ReelhouseError):
    status_code = 403
    code = "forbidden"


class NotFoundError(ReelhouseError):
    status_code = 404
    code = "not_found"


class ToolFailure(ReelhouseError):
    """ffprobe/ffmpeg exited non-zero or produced output we could not use."""

    status_code = 500
    code = "tool_failure"


class StorageFailure(ReelhouseError):
    """Object store, record store or local scratch storage call failed."""

    status_code = 500
    code = "storage_failure"


class IngestStep(str, enum.Enum):
    staging = "staging"
    probe = "probe"
    rewrite = "rewrite"
    upload = "upload"
    commit = "commit"


class IngestFailed(ReelhouseError):
    """Terminal ``Failed(step, cause)`` state of a video ingestion."""

    def __init__(self, step: IngestStep, cause: Exception):
        self.step = step
        self.cause = cause
        if isinstance(cause, ReelhouseError) and cause.status_code < 500:
            self.status_code = cause.status_code
            code = cause.code
        else:
            code = f"{step.value}_failed"
        super().__init__(code, message=f"{step.value}: {cause}")


__all__ = [
    "ReelhouseError",
    "BadRequestError",
    "UnauthorizedError",
    "ForbiddenError",
    "NotFoundError",
    "ToolFailure",
    "StorageFailure",
    "IngestStep",
    "IngestFailed",
]
