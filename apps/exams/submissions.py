"""
Submission store: records one submission per exam attempt and lets tutors
grade it afterwards.
"""
import logging

from django.db import IntegrityError, transaction

from . import store
from .exceptions import AlreadySubmitted, ValidationFailure
from .grading_service import GradingService

logger = logging.getLogger(__name__)


def _by_attempt(attempt_id):
    matches = store.list_documents(store.SUBMISSIONS, {'attempt_id': attempt_id})
    return matches[0] if matches else None


def record_submission(payload):
    """
    Write the submission for an attempt.

    Submitting the same attempt again returns the stored submission
    instead of writing a second one. A student who already submitted the
    exam under another attempt is refused, one attempt per exam being the
    rule. The score is filled in when the exam can be graded automatically.
    """
    existing = _by_attempt(payload['attempt_id'])
    if existing is not None:
        logger.info("Attempt %s already submitted, returning %s", payload['attempt_id'], existing.id)
        return existing

    if store.list_documents(store.SUBMISSIONS, {
        'exam_id': payload['exam_id'],
        'student_id': payload['student_id'],
    }):
        raise AlreadySubmitted()

    questions = store.list_documents(store.QUESTIONS, {'exam_id': payload['exam_id']}, ordering=['order'])
    score = GradingService().score_submission(questions, payload['answers'])

    try:
        with transaction.atomic():
            submission = store.create_document(store.SUBMISSIONS, {**payload, 'score': score})
    except (IntegrityError, ValidationFailure):
        # A concurrent trigger may have written the submission since the reads above
        existing = _by_attempt(payload['attempt_id'])
        if existing is not None:
            logger.info("Attempt %s was submitted concurrently, returning %s", payload['attempt_id'], existing.id)
            return existing
        if store.list_documents(store.SUBMISSIONS, {
            'exam_id': payload['exam_id'],
            'student_id': payload['student_id'],
        }):
            raise AlreadySubmitted()
        raise

    logger.info(
        "Submission %s recorded for exam %s by %s (score %s)",
        submission.id, submission.exam_id, submission.student_id, score,
    )
    return submission


def get_submission(submission_id):
    return store.get_document(store.SUBMISSIONS, submission_id)


def exam_submissions(exam_id):
    return store.list_documents(store.SUBMISSIONS, {'exam_id': exam_id}, ordering=['-submitted_at'])


def student_submissions(student_id):
    return store.list_documents(
        store.SUBMISSIONS, {'student_id': student_id}, ordering=['-submitted_at']
    )


def tutor_submissions(tutor):
    """Every submission to an exam the tutor authored."""
    return store.list_documents(
        store.SUBMISSIONS, {'exam__created_by': tutor}, ordering=['-submitted_at']
    )


def grade_submission(submission_id, score):
    if isinstance(score, bool) or not isinstance(score, int) or not 0 <= score <= 100:
        raise ValidationFailure({'score': 'Score must be a whole number between 0 and 100.'})
    submission = store.update_document(store.SUBMISSIONS, submission_id, {'score': score})
    logger.info("Submission %s graded: %d", submission_id, score)
    return submission
