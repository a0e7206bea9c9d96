"""
Typed workflow errors.

Every error the core raises derives from :class:`WorkflowError`, which
is a DRF ``APIException`` so the project exception handler can render
it with a stable machine ``code`` and the matching HTTP status without
any per-view ``try/except`` ladder.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.exceptions import APIException


class WorkflowError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = 'workflow_error'
    default_detail = 'Workflow error.'
    retryable = False


class NotFoundError(WorkflowError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = 'not_found'
    default_detail = 'Referenced entity does not exist.'

    @classmethod
    def of(cls, entity: str, pk) -> 'NotFoundError':
        return cls(f'{entity} {pk} not found')


class ConflictError(WorkflowError):
    status_code = status.HTTP_409_CONFLICT
    default_code = 'conflict'
    default_detail = 'A pending or approved submission already exists.'


class AlreadyReviewedError(WorkflowError):
    status_code = status.HTTP_409_CONFLICT
    default_code = 'already_reviewed'
    default_detail = 'This submission has already been reviewed.'


class LockedError(WorkflowError):
    status_code = status.HTTP_423_LOCKED
    default_code = 'locked'
    default_detail = 'Maximum number of attempts reached.'


class InvalidTransitionError(WorkflowError):
    status_code = status.HTTP_409_CONFLICT
    default_code = 'invalid_transition'
    default_detail = 'Invalid state transition.'

    def __init__(self, from_state, to_state, detail: str | None = None):
        self.from_state = str(from_state)
        self.to_state = str(to_state)
        message = f'cannot transition from {self.from_state} to {self.to_state}'
        if detail:
            message = f'{message}: {detail}'
        super().__init__(message)


class NoCapacityError(WorkflowError):
    status_code = status.HTTP_409_CONFLICT
    default_code = 'no_capacity'
    default_detail = 'Slot no longer available, pick another schedule.'


class AlreadyBookedError(WorkflowError):
    status_code = status.HTTP_409_CONFLICT
    default_code = 'already_booked'
    default_detail = 'This application already has an active orientation booking.'


class AuthorizationError(WorkflowError):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = 'forbidden'
    default_detail = 'You do not have the role required for this operation.'


class BusyError(WorkflowError):
    """The store could not complete the transaction in time; retry later."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_code = 'busy'
    default_detail = 'The system is busy, please retry.'
    retryable = True
