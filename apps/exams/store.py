"""
Document store boundary.

Generic create/read/update/delete/list over the portal's collections,
addressed by collection name. Documents are validated with full_clean()
before every write, so a record that does not fit its model fails loudly
instead of being stored as-is. Database errors surface as
TransientIOFailure; integrity violations are re-raised untouched so callers
can resolve races themselves.
"""
import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DatabaseError, IntegrityError

from .exceptions import NotFound, TransientIOFailure, ValidationFailure
from .models import Exam, ExamAttempt, Question, Submission, User

logger = logging.getLogger(__name__)

USERS = 'users'
EXAMS = 'exams'
QUESTIONS = 'questions'
SUBMISSIONS = 'submissions'
ATTEMPTS = 'attempts'

COLLECTIONS = {
    USERS: User,
    EXAMS: Exam,
    QUESTIONS: Question,
    SUBMISSIONS: Submission,
    ATTEMPTS: ExamAttempt,
}

# Field that records the owning identity when a document is created for one
OWNER_FIELDS = {
    EXAMS: 'created_by',
    ATTEMPTS: 'student',
}


def _model_for(collection):
    try:
        return COLLECTIONS[collection]
    except KeyError:
        raise ValueError(f"Unknown collection: {collection}") from None


def _validate(document):
    try:
        document.full_clean()
    except DjangoValidationError as exc:
        detail = exc.message_dict if hasattr(exc, 'error_dict') else exc.messages
        raise ValidationFailure(detail) from exc


def _save(collection, document):
    _validate(document)
    try:
        document.save()
    except IntegrityError:
        raise
    except DatabaseError as exc:
        logger.error("Write to %s failed: %s", collection, exc)
        raise TransientIOFailure() from exc
    return document


def list_documents(collection, filters=None, ordering=None, annotations=None):
    """Return every document matching ``filters``, optionally ordered and annotated."""
    queryset = _model_for(collection).objects.filter(**(filters or {}))
    if annotations:
        queryset = queryset.annotate(**annotations)
    if ordering:
        queryset = queryset.order_by(*ordering)
    try:
        return list(queryset)
    except DatabaseError as exc:
        logger.error("Listing %s failed: %s", collection, exc)
        raise TransientIOFailure() from exc


def get_document(collection, document_id, for_update=False):
    model = _model_for(collection)
    try:
        queryset = model.objects.select_for_update() if for_update else model.objects
        return queryset.get(pk=document_id)
    except (model.DoesNotExist, DjangoValidationError, ValueError):
        # Malformed ids cannot resolve either
        raise NotFound(f"No {model._meta.verbose_name} with id {document_id}.")
    except DatabaseError as exc:
        logger.error("Fetching %s %s failed: %s", collection, document_id, exc)
        raise TransientIOFailure() from exc


def create_document(collection, data, owner=None):
    """
    Create a document from ``data``.

    ``owner`` grants the identity ownership of the new document; without it
    the document is readable by every authenticated identity.
    """
    document = _model_for(collection)(**data)
    if owner is not None:
        setattr(document, OWNER_FIELDS[collection], owner)
    return _save(collection, document)


def update_document(collection, document_id, partial_data):
    document = get_document(collection, document_id)
    for field, value in partial_data.items():
        setattr(document, field, value)
    return _save(collection, document)


def delete_document(collection, document_id):
    document = get_document(collection, document_id)
    try:
        document.delete()
    except DatabaseError as exc:
        logger.error("Deleting %s %s failed: %s", collection, document_id, exc)
        raise TransientIOFailure() from exc
