"""
Exam catalog: listing, fetching and authoring exams with their questions.

Question counts come from a COUNT aggregate at read time rather than a
counter stored on the exam, so there is a single source for the number.
"""
import logging

from django.db import transaction
from django.db.models import Count, F

from . import store
from .exceptions import ValidationFailure
from .models import Question

logger = logging.getLogger(__name__)


def list_exams(created_by=None):
    """All exams, newest first, each annotated with ``question_count``."""
    filters = {'created_by': created_by} if created_by is not None else None
    return store.list_documents(
        store.EXAMS,
        filters,
        ordering=['-created_at'],
        annotations={'question_count': Count('questions')},
    )


def get_exam_with_questions(exam_id):
    """Return ``(exam, questions)`` with questions in display order."""
    exam = store.get_document(store.EXAMS, exam_id)
    questions = store.list_documents(store.QUESTIONS, {'exam': exam}, ordering=['order'])
    return exam, questions


def available_exams(student_id):
    """Exams the student has not submitted yet."""
    taken = {
        submission.exam_id
        for submission in store.list_documents(store.SUBMISSIONS, {'student_id': student_id})
    }
    return [exam for exam in list_exams() if exam.id not in taken]


def validate_exam(title, duration_minutes, questions):
    """
    Reject an authoring payload before anything is written.

    Messages number questions from 1, the way the tutor sees them.
    """
    if not title or not title.strip():
        raise ValidationFailure({'title': 'Please provide a title for the exam.'})
    if duration_minutes is None or duration_minutes <= 0:
        raise ValidationFailure({'duration_minutes': 'Duration must be a positive number.'})
    if not questions:
        raise ValidationFailure({'questions': 'An exam must have at least one question.'})

    for number, question in enumerate(questions, start=1):
        if not (question.get('text') or '').strip():
            raise ValidationFailure({'questions': f'Question {number} is missing text.'})

        if question.get('question_type') != Question.MULTIPLE_CHOICE:
            continue

        options = question.get('options') or []
        if not options or not all(option.strip() for option in options):
            raise ValidationFailure({'questions': f'Question {number} has empty options.'})
        correct_answer = question.get('correct_answer')
        if not correct_answer:
            raise ValidationFailure({'questions': f'Question {number} is missing the correct answer.'})
        if correct_answer not in options:
            raise ValidationFailure(
                {'questions': f'Question {number} has a correct answer that is not one of its options.'}
            )


def _question_fields(question, order):
    if question['question_type'] == Question.MULTIPLE_CHOICE:
        options = list(question['options'])
        correct_answer = question['correct_answer']
    else:
        options, correct_answer = [], ''
    return {
        'text': question['text'],
        'question_type': question['question_type'],
        'options': options,
        'correct_answer': correct_answer,
        'order': order,
    }


@transaction.atomic
def create_exam(tutor, title, duration_minutes, questions):
    """Create an exam and its questions, numbered in payload order."""
    validate_exam(title, duration_minutes, questions)

    exam = store.create_document(
        store.EXAMS,
        {'title': title.strip(), 'duration_minutes': duration_minutes},
        owner=tutor,
    )
    created = [
        store.create_document(store.QUESTIONS, {'exam': exam, **_question_fields(question, index)})
        for index, question in enumerate(questions)
    ]
    logger.info("Exam %s created by %s with %d questions", exam.id, tutor.username, len(created))
    return exam, created


@transaction.atomic
def edit_exam(exam, title, duration_minutes, questions):
    """
    Update an exam and replace its question batch.

    Questions carrying the id of one of the exam's questions are updated,
    questions without an id are created, and the exam's questions missing
    from the payload are deleted. Order follows payload position.
    """
    validate_exam(title, duration_minutes, questions)

    exam = store.update_document(
        store.EXAMS,
        exam.id,
        {'title': title.strip(), 'duration_minutes': duration_minutes},
    )

    existing_ids = {
        str(question.id) for question in store.list_documents(store.QUESTIONS, {'exam': exam})
    }
    kept_ids = {str(question['id']) for question in questions if question.get('id')}
    unknown = kept_ids - existing_ids
    if unknown:
        raise ValidationFailure({'questions': f'Questions do not belong to this exam: {sorted(unknown)}'})

    for question_id in existing_ids - kept_ids:
        store.delete_document(store.QUESTIONS, question_id)

    # Park surviving questions on negative orders so renumbering never collides
    Question.objects.filter(exam=exam).update(order=F('order') * -1 - 1)

    result = []
    for index, question in enumerate(questions):
        fields = _question_fields(question, index)
        if question.get('id'):
            result.append(store.update_document(store.QUESTIONS, question['id'], fields))
        else:
            result.append(store.create_document(store.QUESTIONS, {'exam': exam, **fields}))

    logger.info(
        "Exam %s edited: %d questions kept, %d added, %d removed",
        exam.id,
        len(kept_ids),
        len(questions) - len(kept_ids),
        len(existing_ids - kept_ids),
    )
    return exam, result
