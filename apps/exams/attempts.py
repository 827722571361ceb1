"""
Persistence and clock for exam sessions.

Each in-progress session is stored as an ExamAttempt row. The server keeps
the time: every access advances the countdown by the whole seconds elapsed
since the row was last synced, so an attempt whose time ran out is
submitted automatically on its next access even if the student is gone.
"""
import logging
from datetime import timedelta

from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import APIException

from . import catalog, store
from .exceptions import AlreadySubmitted, NotFound, TransientIOFailure, ValidationFailure
from .models import ExamAttempt
from .session import COMPLETED, ExamSession
from .submissions import record_submission

logger = logging.getLogger(__name__)

NAVIGATION_ACTIONS = ('next', 'previous', 'jump')


def _save(attempt, session):
    state = ExamAttempt.STATE_COMPLETED if session.state == COMPLETED else ExamAttempt.STATE_IN_PROGRESS
    return store.update_document(store.ATTEMPTS, attempt.id, {
        'state': state,
        'answers': session.answers,
        'current_index': session.current_index,
        'remaining_seconds': session.remaining_seconds,
        'clock_synced_at': attempt.clock_synced_at,
        'last_error': session.last_error,
    })


def _restore(context, attempt):
    session = ExamSession(context.identity, record_submission, attempt_id=attempt.id)
    try:
        exam, questions = catalog.get_exam_with_questions(attempt.exam_id)
    except TransientIOFailure as exc:
        session.fail(exc)
        logger.warning("Could not load exam for attempt %s: %s", attempt.id, exc)
        raise
    session.load(
        exam,
        questions,
        answers=attempt.answers,
        current_index=attempt.current_index,
        remaining_seconds=attempt.remaining_seconds,
    )
    if attempt.state == ExamAttempt.STATE_COMPLETED:
        matches = store.list_documents(store.SUBMISSIONS, {'attempt_id': attempt.id})
        session.attach_submission(matches[0] if matches else None)
    return session


def _sync_clock(attempt, session, now):
    elapsed = int((now - attempt.clock_synced_at).total_seconds())
    if elapsed <= 0:
        return
    attempt.clock_synced_at += timedelta(seconds=elapsed)
    session.tick(elapsed)


def _run(context, attempt_id, now, action=None):
    """
    Open the attempt, bring its clock up to date, apply ``action`` to the
    session and write the session back.

    The attempt row stays locked until the write commits, so concurrent
    requests on one attempt apply one after the other. A portal error from
    the clock or the action is raised after the write, keeping the synced
    clock and ``last_error`` on the row.
    """
    failure = None
    with transaction.atomic():
        attempt = store.get_document(store.ATTEMPTS, attempt_id, for_update=True)
        if attempt.student_id != context.user.id:
            raise NotFound(f"No exam attempt with id {attempt_id}.")
        session = _restore(context, attempt)
        try:
            _sync_clock(attempt, session, now or timezone.now())
            if action is not None:
                action(session)
        except APIException as exc:
            failure = exc
        attempt = _save(attempt, session)
    if failure is not None:
        raise failure
    return attempt, session


def start_attempt(context, exam_id, now=None):
    """
    Start the student's attempt at an exam, or resume the open one.

    Returns ``(attempt, session, created)``.
    """
    exam, questions = catalog.get_exam_with_questions(exam_id)
    if store.list_documents(store.SUBMISSIONS, {'exam': exam, 'student_id': context.identity.student_id}):
        raise AlreadySubmitted()

    existing = store.list_documents(store.ATTEMPTS, {'exam': exam, 'student': context.user})
    if existing:
        attempt, session = _run(context, existing[0].id, now)
        return attempt, session, False

    session = ExamSession(context.identity, record_submission)
    session.load(exam, questions)
    attempt = store.create_document(store.ATTEMPTS, {
        'id': session.attempt_id,
        'exam': exam,
        'remaining_seconds': session.remaining_seconds,
        'clock_synced_at': now or timezone.now(),
    }, owner=context.user)
    logger.info(
        "Attempt %s started on exam %s by %s (%ds)",
        attempt.id, exam.id, context.identity.student_id, session.remaining_seconds,
    )
    return attempt, session, True


def load_attempt(context, attempt_id, now=None):
    return _run(context, attempt_id, now)


def answer_question(context, attempt_id, question_id, value, now=None):
    return _run(context, attempt_id, now, lambda session: session.set_answer(question_id, value))


def navigate(context, attempt_id, action, index=None, now=None):
    if action not in NAVIGATION_ACTIONS:
        raise ValidationFailure({'action': f'Action must be one of {", ".join(NAVIGATION_ACTIONS)}.'})
    if action == 'jump' and index is None:
        raise ValidationFailure({'index': 'Jumping needs a question index.'})

    def move(session):
        if action == 'next':
            session.next()
        elif action == 'previous':
            session.previous()
        else:
            session.jump(index)

    return _run(context, attempt_id, now, move)


def submit_attempt(context, attempt_id, now=None):
    """
    Submit the attempt. Works for an expired attempt whose automatic
    submission failed, and is a no-op for one that is already submitted.
    """
    return _run(context, attempt_id, now, lambda session: session.submit())
