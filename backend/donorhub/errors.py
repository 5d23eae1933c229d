from __future__ import annotations

from fastapi import status


class WorkflowError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationFailed(WorkflowError):
    status_code = status.HTTP_400_BAD_REQUEST


class RecordNotFound(WorkflowError):
    status_code = status.HTTP_404_NOT_FOUND


class TransitionNotAllowed(WorkflowError):
    status_code = status.HTTP_409_CONFLICT


class ConcurrentModification(WorkflowError):
    status_code = status.HTTP_409_CONFLICT


class InsufficientStock(WorkflowError):
    status_code = status.HTTP_409_CONFLICT
