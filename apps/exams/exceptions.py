"""
Failure taxonomy for the portal.

All errors derive from DRF's APIException so views can let them propagate
and DRF renders the matching status code.
"""
from rest_framework import status
from rest_framework.exceptions import APIException, ValidationError


class NotFound(APIException):
    """A referenced exam, question, submission or attempt does not exist."""
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Not found.'
    default_code = 'not_found'


class ValidationFailure(ValidationError):
    """Input or stored document rejected before any write was attempted."""
    default_code = 'validation_failure'


class AlreadySubmitted(ValidationFailure):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'You have already submitted this exam.'
    default_code = 'already_submitted'


class TransientIOFailure(APIException):
    """
    The backing store failed mid-call. Nothing was changed, so the same
    action may be retried.
    """
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = 'The exam store is temporarily unavailable. Please try again.'
    default_code = 'transient_io_failure'


class SessionClosed(ValidationFailure):
    """The exam session no longer accepts this action."""
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'This exam session is no longer accepting answers.'
    default_code = 'session_closed'
