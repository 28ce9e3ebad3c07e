from __future__ import annotations


class TaskServiceError(Exception):
    """Base for errors surfaced to API callers as `{success: false, error}`."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(TaskServiceError):
    status_code = 404


class TaskValidationError(TaskServiceError):
    status_code = 400


class TaskDisabledError(TaskServiceError):
    status_code = 400


class ConflictError(TaskServiceError):
    status_code = 409


class UpstreamError(TaskServiceError):
    """The external job dispatcher rejected or never received a request."""

    status_code = 500


class PersistenceError(TaskServiceError):
    status_code = 500
