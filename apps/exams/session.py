"""
Exam-taking session.

States::

    loading -> in_progress -> submitting -> completed
                    ^              |
                    +--------------+   submit failed, retry allowed

A load failure ends in ``error``. The session does no I/O itself: the
submission is written by the ``submitter`` callable it is built with, which
receives the packaged payload and returns the stored submission.
"""
import logging
import uuid

from .exceptions import SessionClosed, ValidationFailure

logger = logging.getLogger(__name__)

LOADING = 'loading'
IN_PROGRESS = 'in_progress'
SUBMITTING = 'submitting'
COMPLETED = 'completed'
ERROR = 'error'

TRIGGER_MANUAL = 'manual'
TRIGGER_TIMEOUT = 'timeout'


class ExamSession:

    def __init__(self, student, submitter, attempt_id=None):
        self.student = student
        self.submitter = submitter
        self.attempt_id = attempt_id or uuid.uuid4()
        self.state = LOADING
        self.exam = None
        self.questions = []
        self.answers = {}
        self.current_index = 0
        self.remaining_seconds = 0
        self.submission = None
        self.trigger = None
        self.last_error = ''

    def load(self, exam, questions, answers=None, current_index=0, remaining_seconds=None):
        """
        Enter ``in_progress`` with the exam's ordered questions.

        A fresh session starts its countdown at the full duration; the
        optional arguments resume one that was already running.
        """
        if self.state != LOADING:
            raise SessionClosed('The exam is already loaded.')
        self.exam = exam
        self.questions = list(questions)
        self.answers = dict(answers or {})
        self.current_index = self._clamp(current_index)
        if remaining_seconds is None:
            remaining_seconds = exam.duration_minutes * 60
        self.remaining_seconds = max(remaining_seconds, 0)
        self.state = IN_PROGRESS

    def fail(self, reason):
        self.last_error = str(reason)
        self.state = ERROR

    def attach_submission(self, submission):
        """Resume a session whose submission was already recorded."""
        self.submission = submission
        self.state = COMPLETED

    @property
    def current_question(self):
        if not self.questions:
            return None
        return self.questions[self.current_index]

    @property
    def expired(self):
        return self.state != LOADING and self.remaining_seconds == 0

    # Countdown

    def tick(self, seconds=1):
        """
        Let ``seconds`` elapse on the countdown.

        Reaching zero submits the captured answers once. Ticks outside
        ``in_progress`` or after expiry change nothing.
        """
        if seconds < 0:
            raise ValueError("Time cannot run backwards")
        if self.state != IN_PROGRESS or self.remaining_seconds == 0:
            return None

        self.remaining_seconds = max(self.remaining_seconds - seconds, 0)
        if self.remaining_seconds == 0:
            logger.info("Time is up on attempt %s, submitting automatically", self.attempt_id)
            return self.submit(trigger=TRIGGER_TIMEOUT)
        return None

    # Navigation

    def _clamp(self, index):
        return max(min(index, len(self.questions) - 1), 0)

    def _require_state(self, *states):
        if self.state not in states:
            raise SessionClosed(f'Not allowed while the session is {self.state}.')

    def next(self):
        self._require_state(IN_PROGRESS)
        self.current_index = self._clamp(self.current_index + 1)
        return self.current_index

    def previous(self):
        self._require_state(IN_PROGRESS)
        self.current_index = self._clamp(self.current_index - 1)
        return self.current_index

    def jump(self, index):
        self._require_state(IN_PROGRESS)
        if not 0 <= index < len(self.questions):
            raise ValidationFailure({'index': f'Question index must be between 0 and {len(self.questions) - 1}.'})
        self.current_index = index
        return self.current_index

    # Answers

    def _find_question(self, question_id):
        for question in self.questions:
            if str(question.id) == str(question_id):
                return question
        raise ValidationFailure({'question_id': f'Question {question_id} is not part of this exam.'})

    def set_answer(self, question_id, value):
        """
        Record the answer for one question, replacing any earlier one.

        A blank value clears the answer so the question counts as unanswered.
        """
        self._require_state(IN_PROGRESS)
        if self.remaining_seconds == 0:
            raise SessionClosed('Time is up.')

        question = self._find_question(question_id)
        key = str(question.id)
        value = '' if value is None else str(value)

        if not value.strip():
            self.answers.pop(key, None)
            return
        if question.is_multiple_choice and value not in question.options:
            raise ValidationFailure({'answer': f'"{value}" is not one of the options.'})
        self.answers[key] = value

    # Submission

    def payload(self):
        return {
            'exam_id': self.exam.id,
            'attempt_id': self.attempt_id,
            'user_id': self.student.id,
            'student_id': self.student.student_id,
            'student_name': self.student.name,
            'student_email': self.student.email,
            'answers': dict(self.answers),
        }

    def submit(self, trigger=TRIGGER_MANUAL):
        """
        Write the submission through the submitter.

        Repeated calls while submitting or after completion return the
        existing submission instead of writing another one. If the write
        fails the session goes back to ``in_progress`` so it can be retried,
        whichever trigger started it.
        """
        if self.state in (SUBMITTING, COMPLETED):
            return self.submission
        self._require_state(IN_PROGRESS)

        self.state = SUBMITTING
        self.trigger = trigger
        try:
            submission = self.submitter(self.payload())
        except Exception as exc:
            self.state = IN_PROGRESS
            self.last_error = str(exc)
            logger.warning("Submitting attempt %s (%s) failed: %s", self.attempt_id, trigger, exc)
            raise

        self.submission = submission
        self.last_error = ''
        self.state = COMPLETED
        logger.info("Attempt %s submitted (%s) with %d answers", self.attempt_id, trigger, len(self.answers))
        return submission

    def snapshot(self):
        return {
            'attempt_id': self.attempt_id,
            'exam_id': self.exam.id if self.exam else None,
            'state': self.state,
            'current_index': self.current_index,
            'question_count': len(self.questions),
            'remaining_seconds': self.remaining_seconds,
            'answers': dict(self.answers),
            'answered_count': len(self.answers),
            'last_error': self.last_error,
            'submission_id': self.submission.id if self.submission else None,
        }
