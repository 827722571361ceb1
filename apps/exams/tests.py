"""
Tests covering exam taking, grading, analytics and the HTTP API.

Tests On:
- Countdown and navigation of the exam-taking session
- Idempotent, single-attempt submission
- Score aggregates, distribution and per-question correctness
- Exam authoring validation and batch editing
- Authentication, permissions and the end-to-end API flow
"""
import uuid
from datetime import timedelta
from unittest import mock

from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from . import analytics, attempts, catalog, store, submissions
from .exceptions import (
    AlreadySubmitted,
    NotFound,
    SessionClosed,
    TransientIOFailure,
    ValidationFailure,
)
from .grading_service import GradingService
from .identity import Identity, SessionContext
from .models import Exam, ExamAttempt, Question, Submission
from .session import COMPLETED, ERROR, IN_PROGRESS, LOADING, ExamSession

User = get_user_model()

MIXED_QUESTIONS = [
    {'text': 'What is 2 + 2?', 'question_type': 'multiple_choice',
     'options': ['3', '4', '5', '6'], 'correct_answer': '4'},
    {'text': 'Capital of France?', 'question_type': 'multiple_choice',
     'options': ['London', 'Berlin', 'Paris'], 'correct_answer': 'Paris'},
    {'text': 'Explain variables.', 'question_type': 'text'},
    {'text': 'Pi to 2 decimals?', 'question_type': 'multiple_choice',
     'options': ['3.14', '3.15'], 'correct_answer': '3.14'},
    {'text': 'Largest planet?', 'question_type': 'multiple_choice',
     'options': ['Mars', 'Jupiter'], 'correct_answer': 'Jupiter'},
]

CHOICE_QUESTIONS = [q for q in MIXED_QUESTIONS if q['question_type'] == 'multiple_choice']


def make_tutor(username='tutor1'):
    return User.objects.create_user(
        username=username,
        email=f'{username}@test.com',
        password='tutorpass123',
        role=User.ROLE_TUTOR,
    )


def make_student(student_id='STU001', name='Alice'):
    return User.objects.create_user(
        username=f'student-{student_id}',
        email=f'{student_id.lower()}@test.com',
        first_name=name,
        role=User.ROLE_STUDENT,
        student_id=student_id,
    )


def make_exam(tutor, questions=MIXED_QUESTIONS, duration=10, title='Sample Exam'):
    return catalog.create_exam(tutor, title, duration, questions)


def context_for(user):
    return SessionContext(user=user, identity=Identity.from_user(user))


def build_questions(questions=MIXED_QUESTIONS):
    return [
        Question(
            text=data['text'],
            question_type=data['question_type'],
            options=data.get('options', []),
            correct_answer=data.get('correct_answer', ''),
            order=index,
        )
        for index, data in enumerate(questions)
    ]


class RecordingSubmitter:
    """Stands in for the submission store, optionally failing first."""

    def __init__(self, failures=0):
        self.payloads = []
        self.failures = failures

    def __call__(self, payload):
        if self.failures:
            self.failures -= 1
            raise TransientIOFailure()
        self.payloads.append(payload)
        return mock.Mock(id=uuid.uuid4(), answers=payload['answers'])


class ExamSessionTestCase(SimpleTestCase):
    """Countdown, navigation and submission of a single session."""

    def setUp(self):
        self.student = Identity(id=1, name='Alice', email='alice@test.com',
                                role='student', student_id='STU001')
        self.submitter = RecordingSubmitter()
        self.questions = build_questions()
        self.exam = Exam(title='Quiz', duration_minutes=10)

    def start(self, duration=10, submitter=None):
        self.exam.duration_minutes = duration
        session = ExamSession(self.student, submitter or self.submitter)
        session.load(self.exam, self.questions)
        return session

    def test_countdown_starts_at_duration_in_seconds(self):
        for duration in (1, 10, 45, 180):
            session = self.start(duration)
            self.assertEqual(session.remaining_seconds, duration * 60)
            self.assertEqual(session.state, IN_PROGRESS)

    def test_new_session_is_loading(self):
        session = ExamSession(self.student, self.submitter)
        self.assertEqual(session.state, LOADING)
        self.assertIsNone(session.current_question)

    def test_failed_load_ends_in_error(self):
        session = ExamSession(self.student, self.submitter)
        session.fail('store unavailable')
        self.assertEqual(session.state, ERROR)
        self.assertEqual(session.last_error, 'store unavailable')
        with self.assertRaises(SessionClosed):
            session.submit()

    def test_tick_decrements_one_second(self):
        session = self.start()
        session.tick()
        session.tick()
        self.assertEqual(session.remaining_seconds, 598)
        self.assertEqual(self.submitter.payloads, [])

    def test_timeout_submits_exactly_once(self):
        session = self.start(duration=1)
        for _ in range(59):
            session.tick()
        self.assertEqual(session.remaining_seconds, 1)
        self.assertEqual(len(self.submitter.payloads), 0)

        session.tick()
        self.assertEqual(session.remaining_seconds, 0)
        self.assertEqual(session.state, COMPLETED)
        self.assertEqual(session.trigger, 'timeout')

        for _ in range(5):
            session.tick()
        self.assertEqual(session.remaining_seconds, 0)
        self.assertEqual(len(self.submitter.payloads), 1)

    def test_countdown_never_goes_negative(self):
        session = self.start(duration=1)
        session.tick(1000)
        self.assertEqual(session.remaining_seconds, 0)
        self.assertEqual(len(self.submitter.payloads), 1)

    def test_navigation_is_clamped(self):
        session = self.start()
        session.previous()
        self.assertEqual(session.current_index, 0)

        for _ in range(10):
            session.next()
        self.assertEqual(session.current_index, len(self.questions) - 1)

        session.jump(2)
        self.assertEqual(session.current_question, self.questions[2])

        with self.assertRaises(ValidationFailure):
            session.jump(len(self.questions))

    def test_navigation_keeps_answers(self):
        session = self.start()
        session.set_answer(self.questions[0].id, '4')
        session.next()
        session.set_answer(self.questions[1].id, 'Paris')
        session.previous()
        session.jump(4)
        self.assertEqual(session.answers, {
            str(self.questions[0].id): '4',
            str(self.questions[1].id): 'Paris',
        })

    def test_answer_replaces_previous_answer(self):
        session = self.start()
        session.set_answer(self.questions[0].id, '3')
        session.set_answer(self.questions[0].id, '4')
        session.set_answer(self.questions[2].id, 'A name for a value')
        session.set_answer(self.questions[2].id, 'A named storage location')
        self.assertEqual(session.answers[str(self.questions[0].id)], '4')
        self.assertEqual(session.answers[str(self.questions[2].id)], 'A named storage location')

    def test_blank_answer_clears_question(self):
        session = self.start()
        session.set_answer(self.questions[2].id, 'Something')
        session.set_answer(self.questions[2].id, '   ')
        self.assertNotIn(str(self.questions[2].id), session.answers)

    def test_rejects_foreign_question_and_unknown_option(self):
        session = self.start()
        with self.assertRaises(ValidationFailure):
            session.set_answer(uuid.uuid4(), '4')
        with self.assertRaises(ValidationFailure):
            session.set_answer(self.questions[0].id, '42')

    def test_submission_holds_only_captured_answers(self):
        session = self.start()
        session.set_answer(self.questions[0].id, '4')
        session.set_answer(self.questions[3].id, '3.14')
        session.submit()

        payload = self.submitter.payloads[0]
        self.assertEqual(payload['answers'], {
            str(self.questions[0].id): '4',
            str(self.questions[3].id): '3.14',
        })
        self.assertEqual(payload['student_id'], 'STU001')
        self.assertEqual(payload['attempt_id'], session.attempt_id)
        self.assertEqual(session.state, COMPLETED)

    def test_repeated_submit_is_a_no_op(self):
        session = self.start()
        first = session.submit()
        second = session.submit()
        session.tick(10_000)
        self.assertIs(first, second)
        self.assertEqual(len(self.submitter.payloads), 1)

    def test_failed_submit_can_be_retried(self):
        submitter = RecordingSubmitter(failures=1)
        session = self.start(submitter=submitter)

        with self.assertRaises(TransientIOFailure):
            session.submit()
        self.assertEqual(session.state, IN_PROGRESS)
        self.assertTrue(session.last_error)

        session.submit()
        self.assertEqual(session.state, COMPLETED)
        self.assertEqual(session.last_error, '')
        self.assertEqual(len(submitter.payloads), 1)

    def test_failed_auto_submit_keeps_retry_open(self):
        submitter = RecordingSubmitter(failures=1)
        session = self.start(duration=1, submitter=submitter)

        with self.assertRaises(TransientIOFailure):
            session.tick(60)
        self.assertEqual(session.state, IN_PROGRESS)
        self.assertTrue(session.expired)

        # The timer does not fire again; the student retries by hand
        session.tick()
        self.assertEqual(len(submitter.payloads), 0)
        with self.assertRaises(SessionClosed):
            session.set_answer(self.questions[0].id, '4')

        session.submit()
        self.assertEqual(session.state, COMPLETED)
        self.assertEqual(len(submitter.payloads), 1)

    def test_timeout_mid_exam_submits_what_was_answered(self):
        session = self.start(duration=10)
        session.set_answer(self.questions[0].id, '4')
        session.next()
        session.next()
        self.assertEqual(session.current_index, 2)

        session.tick(600)
        self.assertEqual(len(self.submitter.payloads), 1)
        self.assertEqual(len(self.submitter.payloads[0]['answers']), 1)

    def test_completed_session_rejects_changes(self):
        session = self.start()
        session.submit()
        with self.assertRaises(SessionClosed):
            session.set_answer(self.questions[0].id, '4')
        with self.assertRaises(SessionClosed):
            session.next()


class GradingServiceTestCase(SimpleTestCase):
    """Automatic scoring of multiple-choice exams."""

    def test_multiple_choice_only_exam_is_scored(self):
        questions = build_questions(CHOICE_QUESTIONS)
        answers = {str(questions[0].id): '4', str(questions[1].id): 'Paris', str(questions[2].id): '3.15'}
        # 2 of 4 correct, the fourth unanswered
        self.assertEqual(GradingService('auto').score_submission(questions, answers), 50)

    def test_exam_with_text_question_stays_ungraded(self):
        questions = build_questions(MIXED_QUESTIONS)
        answers = {str(q.id): q.correct_answer for q in questions if q.is_multiple_choice}
        self.assertIsNone(GradingService('auto').score_submission(questions, answers))

    def test_manual_grader_never_scores(self):
        questions = build_questions(CHOICE_QUESTIONS)
        answers = {str(q.id): q.correct_answer for q in questions}
        self.assertIsNone(GradingService('manual').score_submission(questions, answers))

    def test_empty_exam_is_not_scored(self):
        self.assertIsNone(GradingService('auto').score_submission([], {}))


class AnalyticsTestCase(SimpleTestCase):
    """Aggregates over in-memory submissions."""

    def setUp(self):
        self.exam = Exam(title='Quiz', duration_minutes=10)

    def submission(self, score, student_id='STU001', name='Alice', answers=None, exam=None, days_ago=0):
        return Submission(
            exam_id=(exam or self.exam).id,
            student_id=student_id,
            student_name=name,
            student_email=f'{student_id.lower()}@test.com',
            answers=answers or {},
            score=score,
            submitted_at=timezone.now() - timedelta(days=days_ago),
        )

    def test_empty_summary_defaults_to_zero(self):
        self.assertEqual(analytics.score_summary([]), {
            'count': 0, 'average': 0.0, 'highest': 0, 'lowest': 0, 'passing_rate': 0.0,
        })
        self.assertEqual(analytics.overall_statistics([], [])['average_score'], 0.0)

    def test_two_submissions_summary_and_distribution(self):
        subs = [self.submission(55), self.submission(85, student_id='STU002')]

        summary = analytics.score_summary(subs)
        self.assertEqual(summary['average'], 70.0)
        self.assertEqual(summary['passing_rate'], 50.0)
        self.assertEqual(summary['highest'], 85)
        self.assertEqual(summary['lowest'], 55)

        distribution = {row['range']: row['count'] for row in analytics.score_distribution(subs)}
        self.assertEqual(distribution, {'0-20': 0, '21-40': 0, '41-60': 1, '61-80': 0, '81-100': 1})

    def test_every_score_lands_in_exactly_one_bucket(self):
        subs = [self.submission(score) for score in range(0, 101)]
        distribution = analytics.score_distribution(subs)
        self.assertEqual(sum(row['count'] for row in distribution), 101)
        self.assertEqual([row['count'] for row in distribution], [21, 20, 20, 20, 20])

    def test_ungraded_submission_counts_as_zero(self):
        subs = [self.submission(None)]
        distribution = analytics.score_distribution(subs)
        self.assertEqual(distribution[0], {'range': '0-20', 'count': 1})
        self.assertEqual(analytics.score_summary(subs)['passing_rate'], 0.0)

    def test_question_performance(self):
        questions = build_questions(MIXED_QUESTIONS)
        q1, q2, text_question = (str(q.id) for q in questions[:3])
        subs = [
            self.submission(None, answers={q1: '4', q2: 'Paris', text_question: 'words'}),
            self.submission(None, answers={q1: '4'}),
            self.submission(None, answers={q1: '3'}),
        ]

        rows = analytics.question_performance(questions, subs)

        self.assertEqual(rows[0]['answered'], 3)
        self.assertEqual(rows[0]['correct'], 2)
        self.assertEqual(rows[0]['correct_pct'], 66.7)
        self.assertAlmostEqual(rows[0]['correct_pct'] + rows[0]['incorrect_pct'], 100.0)
        self.assertEqual(rows[1]['correct_pct'], 100.0)
        self.assertEqual(rows[1]['incorrect_pct'], 0.0)

        self.assertFalse(rows[2]['scored'])
        self.assertIsNone(rows[2]['correct_pct'])
        self.assertEqual(rows[2]['answered'], 1)

        # Never answered
        self.assertEqual(rows[3]['answered'], 0)
        self.assertEqual(rows[3]['correct_pct'], 0.0)

    def test_student_rollup_and_leaderboard(self):
        other = Exam(title='Other', duration_minutes=5)
        subs = [
            self.submission(40, 'STU001', 'Alice'),
            self.submission(80, 'STU001', 'Alice', exam=other),
            self.submission(90, 'STU002', 'Bob'),
            self.submission(None, 'STU003', 'Carol'),
        ]

        rollup = {entry['student_id']: entry for entry in analytics.student_rollup(subs)}
        self.assertEqual(rollup['STU001']['submission_count'], 2)
        self.assertEqual(rollup['STU001']['average_score'], 60.0)
        self.assertEqual(rollup['STU003']['graded_count'], 0)

        board = analytics.leaderboard(subs, size=2)
        self.assertEqual([entry['student_id'] for entry in board], ['STU002', 'STU001'])

    def test_timeline_has_one_entry_per_day(self):
        today = timezone.localdate()
        subs = [
            self.submission(50),
            self.submission(60),
            self.submission(70, days_ago=29),
            self.submission(80, days_ago=30),
        ]

        timeline = analytics.submission_timeline(subs, days=30, today=today)

        self.assertEqual(len(timeline), 30)
        self.assertEqual(timeline[-1], {'date': today.isoformat(), 'count': 2})
        self.assertEqual(timeline[0]['count'], 1)
        self.assertEqual(sum(entry['count'] for entry in timeline), 3)

    def test_exam_comparison_flags_unavailable_metrics(self):
        exams = [Exam(title=f'Exam {n}', duration_minutes=5) for n in range(4)]
        subs = []
        for n, exam in enumerate(exams):
            subs.extend(self.submission(50 + n, student_id=f'S{n}{k}', exam=exam) for k in range(n + 1))

        comparison = analytics.exam_comparison(exams, subs, top=3)

        self.assertEqual([row['title'] for row in comparison['exams']], ['Exam 3', 'Exam 2', 'Exam 1'])
        self.assertEqual(comparison['exams'][0]['submission_count'], 4)
        self.assertEqual(comparison['exams'][0]['average_score'], 53.0)
        for row in comparison['exams']:
            for metric in comparison['unavailable']:
                self.assertIsNone(row[metric])

    def test_overall_statistics(self):
        subs = [self.submission(50, 'STU001'), self.submission(70, 'STU001'), self.submission(90, 'STU002')]
        stats = analytics.overall_statistics([self.exam], subs)
        self.assertEqual(stats, {
            'total_exams': 1, 'total_submissions': 3, 'total_students': 2, 'average_score': 70.0,
        })


class StoreTestCase(TestCase):
    """Validation and error translation at the store boundary."""

    def setUp(self):
        self.tutor = make_tutor()

    def test_missing_document_is_not_found(self):
        with self.assertRaises(NotFound):
            store.get_document(store.EXAMS, uuid.uuid4())
        with self.assertRaises(NotFound):
            store.get_document(store.EXAMS, 'not-a-uuid')

    def test_invalid_document_is_rejected(self):
        with self.assertRaises(ValidationFailure):
            store.create_document(store.EXAMS, {'title': 'Bad', 'duration_minutes': 0}, owner=self.tutor)
        self.assertFalse(Exam.objects.exists())

    def test_unknown_collection(self):
        with self.assertRaises(ValueError):
            store.list_documents('grades')

    def test_database_error_is_transient(self):
        with mock.patch.object(Exam, 'save', side_effect=DatabaseError('connection lost')):
            with self.assertRaises(TransientIOFailure):
                store.create_document(store.EXAMS, {'title': 'T', 'duration_minutes': 5}, owner=self.tutor)


class CatalogTestCase(TestCase):
    """Exam listing, fetching and authoring."""

    def setUp(self):
        self.tutor = make_tutor()

    def test_list_exams_newest_first_with_question_count(self):
        older, _ = make_exam(self.tutor, title='Older')
        Exam.objects.filter(pk=older.pk).update(created_at=timezone.now() - timedelta(days=1))
        make_exam(self.tutor, questions=CHOICE_QUESTIONS, title='Newer')

        exams = catalog.list_exams()

        self.assertEqual([exam.title for exam in exams], ['Newer', 'Older'])
        self.assertEqual([exam.question_count for exam in exams], [4, 5])

    def test_get_exam_with_questions_in_order(self):
        exam, _ = make_exam(self.tutor)
        fetched, questions = catalog.get_exam_with_questions(exam.id)
        self.assertEqual(fetched, exam)
        self.assertEqual([q.order for q in questions], [0, 1, 2, 3, 4])
        self.assertEqual(questions[2].options, [])

    def test_unknown_exam_is_not_found(self):
        with self.assertRaises(NotFound):
            catalog.get_exam_with_questions(uuid.uuid4())

    def test_authoring_validation(self):
        cases = [
            ('', 10, MIXED_QUESTIONS),
            ('Exam', 0, MIXED_QUESTIONS),
            ('Exam', 10, []),
            ('Exam', 10, [{'text': '', 'question_type': 'text'}]),
            ('Exam', 10, [{'text': 'Q', 'question_type': 'multiple_choice',
                           'options': ['a', ' '], 'correct_answer': 'a'}]),
            ('Exam', 10, [{'text': 'Q', 'question_type': 'multiple_choice',
                           'options': ['a', 'b'], 'correct_answer': ''}]),
            ('Exam', 10, [{'text': 'Q', 'question_type': 'multiple_choice',
                           'options': ['a', 'b'], 'correct_answer': 'c'}]),
        ]
        for title, duration, questions in cases:
            with self.subTest(title=title, duration=duration, questions=questions):
                with self.assertRaises(ValidationFailure):
                    catalog.create_exam(self.tutor, title, duration, questions)
        self.assertFalse(Exam.objects.exists())
        self.assertFalse(Question.objects.exists())

    def test_edit_exam_updates_creates_and_deletes(self):
        exam, questions = make_exam(self.tutor)
        keep_last, keep_first = questions[4], questions[0]

        payload = [
            {'id': keep_last.id, 'text': 'Largest planet in the solar system?',
             'question_type': 'multiple_choice', 'options': ['Mars', 'Jupiter'],
             'correct_answer': 'Jupiter'},
            {'text': 'Name a noble gas.', 'question_type': 'text'},
            {'id': keep_first.id, 'text': keep_first.text, 'question_type': 'multiple_choice',
             'options': keep_first.options, 'correct_answer': keep_first.correct_answer},
        ]
        exam, edited = catalog.edit_exam(exam, 'Renamed', 20, payload)

        self.assertEqual(exam.title, 'Renamed')
        self.assertEqual(exam.duration_minutes, 20)
        _, stored = catalog.get_exam_with_questions(exam.id)
        self.assertEqual([q.order for q in stored], [0, 1, 2])
        self.assertEqual(stored[0].id, keep_last.id)
        self.assertEqual(stored[0].text, 'Largest planet in the solar system?')
        self.assertEqual(stored[1].text, 'Name a noble gas.')
        self.assertEqual(stored[2].id, keep_first.id)
        self.assertEqual(Question.objects.filter(exam=exam).count(), 3)

    def test_edit_rejects_foreign_question(self):
        exam, _ = make_exam(self.tutor)
        other, other_questions = make_exam(self.tutor, title='Other')
        payload = [{'id': other_questions[2].id, 'text': 'Stolen', 'question_type': 'text'}]
        with self.assertRaises(ValidationFailure):
            catalog.edit_exam(exam, 'Exam', 10, payload)

    def test_available_exams_skip_submitted(self):
        taken, _ = make_exam(self.tutor, title='Taken')
        open_exam, _ = make_exam(self.tutor, title='Open')
        student = make_student()
        Submission.objects.create(exam=taken, user=student, student_id='STU001', student_name='Alice')

        self.assertEqual([exam.title for exam in catalog.available_exams('STU001')], ['Open'])
        self.assertEqual(len(catalog.available_exams('STU999')), 2)


class SubmissionStoreTestCase(TestCase):
    """Recording and grading submissions."""

    def setUp(self):
        self.tutor = make_tutor()
        self.student = make_student()

    def payload(self, exam, answers, attempt_id=None):
        return {
            'exam_id': exam.id,
            'attempt_id': attempt_id or uuid.uuid4(),
            'user_id': self.student.id,
            'student_id': 'STU001',
            'student_name': 'Alice',
            'student_email': 'stu001@test.com',
            'answers': answers,
        }

    def test_mixed_exam_submission_is_ungraded(self):
        exam, questions = make_exam(self.tutor, duration=10)
        answers = {str(q.id): q.correct_answer for q in questions if q.is_multiple_choice}

        submission = submissions.record_submission(self.payload(exam, answers))

        self.assertEqual(len(submission.answers), 4)
        self.assertIsNone(submission.score)

    def test_choice_only_exam_is_scored_on_submit(self):
        exam, questions = make_exam(self.tutor, questions=CHOICE_QUESTIONS)
        answers = {str(q.id): q.correct_answer for q in questions[:3]}
        submission = submissions.record_submission(self.payload(exam, answers))
        self.assertEqual(submission.score, 75)

    @override_settings(GRADER_TYPE='manual')
    def test_manual_grading_leaves_score_empty(self):
        exam, questions = make_exam(self.tutor, questions=CHOICE_QUESTIONS)
        answers = {str(q.id): q.correct_answer for q in questions}
        self.assertIsNone(submissions.record_submission(self.payload(exam, answers)).score)

    def test_same_attempt_is_recorded_once(self):
        exam, _ = make_exam(self.tutor)
        attempt_id = uuid.uuid4()
        first = submissions.record_submission(self.payload(exam, {}, attempt_id))
        second = submissions.record_submission(self.payload(exam, {}, attempt_id))
        self.assertEqual(first.id, second.id)
        self.assertEqual(Submission.objects.count(), 1)

    def test_second_attempt_is_refused(self):
        exam, _ = make_exam(self.tutor)
        submissions.record_submission(self.payload(exam, {}))
        with self.assertRaises(AlreadySubmitted):
            submissions.record_submission(self.payload(exam, {}))

    def stale_submission_reads(self, reads=2):
        """Hide existing submissions from the first ``reads`` lookups."""
        list_documents = store.list_documents
        remaining = {'reads': reads}

        def stale(collection, *args, **kwargs):
            if collection == store.SUBMISSIONS and remaining['reads']:
                remaining['reads'] -= 1
                return []
            return list_documents(collection, *args, **kwargs)

        return mock.patch.object(store, 'list_documents', side_effect=stale)

    def test_concurrent_trigger_returns_stored_submission(self):
        exam, _ = make_exam(self.tutor)
        payload = self.payload(exam, {})
        first = submissions.record_submission(payload)

        with self.stale_submission_reads():
            second = submissions.record_submission(payload)

        self.assertEqual(second.id, first.id)
        self.assertEqual(Submission.objects.count(), 1)

    def test_concurrent_second_attempt_is_refused(self):
        exam, _ = make_exam(self.tutor)
        submissions.record_submission(self.payload(exam, {}))

        with self.stale_submission_reads():
            with self.assertRaises(AlreadySubmitted):
                submissions.record_submission(self.payload(exam, {}))
        self.assertEqual(Submission.objects.count(), 1)

    def test_grade_submission(self):
        exam, _ = make_exam(self.tutor)
        submission = submissions.record_submission(self.payload(exam, {}))

        graded = submissions.grade_submission(submission.id, 88)
        self.assertEqual(graded.score, 88)

        for bad in (-1, 101, 50.5, True):
            with self.assertRaises(ValidationFailure):
                submissions.grade_submission(submission.id, bad)


class AttemptTestCase(TestCase):
    """Server-side countdown and persistence of exam sessions."""

    def setUp(self):
        self.tutor = make_tutor()
        self.student = make_student()
        self.context = context_for(self.student)
        self.exam, self.questions = make_exam(self.tutor, duration=10)
        self.started = timezone.now()

    def test_start_sets_full_countdown(self):
        attempt, session, created = attempts.start_attempt(self.context, self.exam.id, now=self.started)
        self.assertEqual(attempt.remaining_seconds, 600)
        self.assertEqual(session.state, 'in_progress')
        self.assertEqual(attempt.id, session.attempt_id)
        self.assertTrue(created)

    def test_clock_advances_with_elapsed_time(self):
        attempt, _, _ = attempts.start_attempt(self.context, self.exam.id, now=self.started)
        attempt, session = attempts.load_attempt(
            self.context, attempt.id, now=self.started + timedelta(seconds=90)
        )
        self.assertEqual(session.remaining_seconds, 510)
        self.assertEqual(attempt.remaining_seconds, 510)

    def test_start_resumes_open_attempt(self):
        first, _, _ = attempts.start_attempt(self.context, self.exam.id, now=self.started)
        attempts.answer_question(self.context, first.id, self.questions[0].id, '4', now=self.started)
        again, session, created = attempts.start_attempt(
            self.context, self.exam.id, now=self.started + timedelta(seconds=30)
        )
        self.assertEqual(first.id, again.id)
        self.assertFalse(created)
        self.assertEqual(session.answers, {str(self.questions[0].id): '4'})
        self.assertEqual(ExamAttempt.objects.count(), 1)

    def test_expired_attempt_is_submitted_on_next_access(self):
        attempt, _, _ = attempts.start_attempt(self.context, self.exam.id, now=self.started)
        attempts.answer_question(self.context, attempt.id, self.questions[0].id, '4', now=self.started)
        attempts.navigate(self.context, attempt.id, 'jump', 2, now=self.started)

        attempt, session = attempts.load_attempt(
            self.context, attempt.id, now=self.started + timedelta(minutes=11)
        )

        self.assertEqual(attempt.state, ExamAttempt.STATE_COMPLETED)
        self.assertEqual(session.remaining_seconds, 0)
        submission = Submission.objects.get(attempt_id=attempt.id)
        self.assertEqual(submission.answers, {str(self.questions[0].id): '4'})

    def test_failed_auto_submit_can_be_retried(self):
        attempt, _, _ = attempts.start_attempt(self.context, self.exam.id, now=self.started)
        later = self.started + timedelta(minutes=10)

        with mock.patch('apps.exams.attempts.record_submission', side_effect=TransientIOFailure()):
            with self.assertRaises(TransientIOFailure):
                attempts.load_attempt(self.context, attempt.id, now=later)

        attempt.refresh_from_db()
        self.assertEqual(attempt.state, ExamAttempt.STATE_IN_PROGRESS)
        self.assertEqual(attempt.remaining_seconds, 0)
        self.assertTrue(attempt.last_error)
        self.assertFalse(Submission.objects.exists())

        attempt, session = attempts.submit_attempt(self.context, attempt.id, now=later)
        self.assertEqual(attempt.state, ExamAttempt.STATE_COMPLETED)
        self.assertEqual(Submission.objects.count(), 1)

    def test_store_outage_while_loading(self):
        attempt, _, _ = attempts.start_attempt(self.context, self.exam.id, now=self.started)
        with mock.patch('apps.exams.catalog.get_exam_with_questions', side_effect=TransientIOFailure()):
            with self.assertRaises(TransientIOFailure):
                attempts.load_attempt(self.context, attempt.id, now=self.started)
        attempt.refresh_from_db()
        self.assertEqual(attempt.remaining_seconds, 600)

    def test_attempt_row_is_locked_while_answering(self):
        attempt, _, _ = attempts.start_attempt(self.context, self.exam.id, now=self.started)

        with mock.patch.object(store, 'get_document', wraps=store.get_document) as get_document:
            attempts.answer_question(self.context, attempt.id, self.questions[0].id, '4', now=self.started)
            attempts.answer_question(self.context, attempt.id, self.questions[1].id, 'Paris', now=self.started)

        get_document.assert_any_call(store.ATTEMPTS, attempt.id, for_update=True)
        attempt.refresh_from_db()
        self.assertEqual(attempt.answers, {
            str(self.questions[0].id): '4',
            str(self.questions[1].id): 'Paris',
        })

    def test_rejected_answer_still_syncs_clock(self):
        attempt, _, _ = attempts.start_attempt(self.context, self.exam.id, now=self.started)
        with self.assertRaises(ValidationFailure):
            attempts.answer_question(
                self.context, attempt.id, self.questions[0].id, '42',
                now=self.started + timedelta(seconds=20),
            )
        attempt.refresh_from_db()
        self.assertEqual(attempt.remaining_seconds, 580)
        self.assertEqual(attempt.answers, {})

    def test_submit_twice_returns_same_submission(self):
        attempt, _, _ = attempts.start_attempt(self.context, self.exam.id, now=self.started)
        _, first = attempts.submit_attempt(self.context, attempt.id, now=self.started)
        _, second = attempts.submit_attempt(self.context, attempt.id, now=self.started)
        self.assertEqual(first.submission.id, second.submission.id)
        self.assertEqual(Submission.objects.count(), 1)

    def test_cannot_start_after_submitting(self):
        attempt, _, _ = attempts.start_attempt(self.context, self.exam.id, now=self.started)
        attempts.submit_attempt(self.context, attempt.id, now=self.started)
        with self.assertRaises(AlreadySubmitted):
            attempts.start_attempt(self.context, self.exam.id)

    def test_other_students_attempt_is_hidden(self):
        attempt, _, _ = attempts.start_attempt(self.context, self.exam.id, now=self.started)
        intruder = context_for(make_student('STU002', 'Bob'))
        with self.assertRaises(NotFound):
            attempts.load_attempt(intruder, attempt.id)


class AuthenticationTestCase(APITestCase):
    """Tutor and student session flows."""

    def test_tutor_registration_and_login(self):
        data = {
            'username': 'newtutor',
            'email': 'tutor@example.com',
            'password': 'securepass123',
            'first_name': 'Ada',
            'last_name': 'Lovelace',
        }
        response = self.client.post('/api/auth/register/', data)
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['user']['role'], 'tutor')
        self.assertIn('token', response.data)

        response = self.client.post('/api/auth/login/', {'username': 'newtutor', 'password': 'securepass123'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('token', response.data)

    def test_tutor_registration_without_email(self):
        response = self.client.post('/api/auth/register/', {
            'username': 'quiettutor',
            'password': 'longpassword1',
        })
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['user']['email'], '')
        self.assertTrue(User.objects.get(username='quiettutor').is_tutor)

    def test_login_rejects_bad_credentials(self):
        make_tutor()
        response = self.client.post('/api/auth/login/', {'username': 'tutor1', 'password': 'wrong-pass'})
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_student_login_matches_by_student_id(self):
        data = {'name': 'Alice Johnson', 'email': 'alice@example.com', 'student_id': 'STU100'}
        first = self.client.post('/api/auth/student-login/', data)
        self.assertEqual(first.status_code, status.HTTP_200_OK)
        self.assertEqual(first.data['user']['role'], 'student')

        second = self.client.post('/api/auth/student-login/', {**data, 'name': 'Alice J.'})
        self.assertEqual(second.data['user']['id'], first.data['user']['id'])
        self.assertEqual(User.objects.filter(student_id='STU100').count(), 1)

    def test_logout_ends_session(self):
        response = self.client.post('/api/auth/student-login/', {'name': 'Bob', 'student_id': 'STU200'})
        self.client.credentials(HTTP_AUTHORIZATION=f"Token {response.data['token']}")
        self.assertEqual(self.client.get('/api/auth/me/').status_code, status.HTTP_200_OK)

        self.assertEqual(self.client.post('/api/auth/logout/').status_code, status.HTTP_204_NO_CONTENT)
        self.assertEqual(self.client.get('/api/auth/me/').status_code, status.HTTP_401_UNAUTHORIZED)

    def test_anonymous_requests_are_rejected(self):
        self.assertEqual(self.client.get('/api/exams/').status_code, status.HTTP_401_UNAUTHORIZED)


class ExamApiTestCase(APITestCase):
    """Authoring and browsing exams over HTTP."""

    def setUp(self):
        self.tutor = make_tutor()
        self.student = make_student()

    def test_tutor_creates_exam(self):
        self.client.force_authenticate(user=self.tutor)
        response = self.client.post('/api/exams/', {
            'title': 'Biology Quiz',
            'duration_minutes': 15,
            'questions': MIXED_QUESTIONS,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(len(response.data['questions']), 5)
        self.assertEqual(response.data['questions'][0]['correct_answer'], '4')

    def test_invalid_exam_is_rejected(self):
        self.client.force_authenticate(user=self.tutor)
        response = self.client.post('/api/exams/', {
            'title': '',
            'duration_minutes': 15,
            'questions': MIXED_QUESTIONS,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('title', response.data)
        self.assertFalse(Exam.objects.exists())

    def test_student_cannot_create_exam(self):
        self.client.force_authenticate(user=self.student)
        response = self.client.post('/api/exams/', {
            'title': 'Mine', 'duration_minutes': 5, 'questions': MIXED_QUESTIONS,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_student_sees_exam_without_answers(self):
        exam, _ = make_exam(self.tutor)
        self.client.force_authenticate(user=self.student)

        listing = self.client.get('/api/exams/')
        self.assertEqual(listing.data['results'][0]['question_count'], 5)

        response = self.client.get(f'/api/exams/{exam.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        for question in response.data['questions']:
            self.assertNotIn('correct_answer', question)

    def test_unknown_exam_returns_404(self):
        self.client.force_authenticate(user=self.student)
        response = self.client.get(f'/api/exams/{uuid.uuid4()}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_tutor_edits_only_own_exam(self):
        exam, questions = make_exam(self.tutor)
        payload = {
            'title': 'Edited',
            'duration_minutes': 30,
            'questions': [{'id': str(questions[2].id), 'text': 'Explain loops.', 'question_type': 'text'}],
        }

        self.client.force_authenticate(user=make_tutor('tutor2'))
        response = self.client.put(f'/api/exams/{exam.id}/', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(user=self.tutor)
        response = self.client.put(f'/api/exams/{exam.id}/', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['title'], 'Edited')
        self.assertEqual(len(response.data['questions']), 1)


class ExamFlowApiTestCase(APITestCase):
    """A student takes an exam end to end; the tutor reviews it."""

    def setUp(self):
        self.tutor = make_tutor()
        self.student = make_student()
        self.exam, self.questions = make_exam(self.tutor, questions=CHOICE_QUESTIONS)

    def take_exam(self, student, answers):
        self.client.force_authenticate(user=student)
        response = self.client.post('/api/attempts/', {'exam_id': str(self.exam.id)}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        attempt_id = response.data['attempt_id']

        for question, answer in zip(self.questions, answers):
            response = self.client.post(f'/api/attempts/{attempt_id}/answer/', {
                'question_id': str(question.id), 'answer': answer,
            }, format='json')
            self.assertEqual(response.status_code, status.HTTP_200_OK)
        return attempt_id

    def test_take_and_submit_exam(self):
        attempt_id = self.take_exam(self.student, ['4', 'Paris', '3.15'])

        response = self.client.post(f'/api/attempts/{attempt_id}/navigate/', {'action': 'next'}, format='json')
        self.assertEqual(response.data['current_index'], 1)
        self.assertEqual(response.data['answered_count'], 3)
        self.assertLessEqual(response.data['remaining_seconds'], 600)
        self.assertNotIn('correct_answer', response.data['questions'][0])

        response = self.client.post(f'/api/attempts/{attempt_id}/submit/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['state'], 'completed')
        self.assertEqual(response.data['submission']['score'], 50)
        self.assertEqual(len(response.data['submission']['answers']), 3)

        again = self.client.post(f'/api/attempts/{attempt_id}/submit/')
        self.assertEqual(again.data['submission']['id'], response.data['submission']['id'])
        self.assertEqual(Submission.objects.count(), 1)

        answer_after = self.client.post(f'/api/attempts/{attempt_id}/answer/', {
            'question_id': str(self.questions[3].id), 'answer': 'Jupiter',
        }, format='json')
        self.assertEqual(answer_after.status_code, status.HTTP_409_CONFLICT)

        second_attempt = self.client.post('/api/attempts/', {'exam_id': str(self.exam.id)}, format='json')
        self.assertEqual(second_attempt.status_code, status.HTTP_409_CONFLICT)

    def test_invalid_option_is_rejected(self):
        self.client.force_authenticate(user=self.student)
        attempt_id = self.client.post('/api/attempts/', {'exam_id': str(self.exam.id)}, format='json').data['attempt_id']
        response = self.client.post(f'/api/attempts/{attempt_id}/answer/', {
            'question_id': str(self.questions[0].id), 'answer': 'seven',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_start_again_resumes_attempt(self):
        self.client.force_authenticate(user=self.student)
        first = self.client.post('/api/attempts/', {'exam_id': str(self.exam.id)}, format='json')
        again = self.client.post('/api/attempts/', {'exam_id': str(self.exam.id)}, format='json')

        self.assertEqual(first.status_code, status.HTTP_201_CREATED)
        self.assertEqual(again.status_code, status.HTTP_200_OK)
        self.assertEqual(again.data['attempt_id'], first.data['attempt_id'])

    def test_student_role_without_student_id_cannot_take_exam(self):
        user = User.objects.create_user(username='admin', password='adminpass123')
        self.assertTrue(user.is_student)
        self.client.force_authenticate(user=user)
        response = self.client.post('/api/attempts/', {'exam_id': str(self.exam.id)}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(ExamAttempt.objects.exists())

    def test_tutor_cannot_take_exam(self):
        self.client.force_authenticate(user=self.tutor)
        response = self.client.post('/api/attempts/', {'exam_id': str(self.exam.id)}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_tutor_reviews_grades_and_reads_analytics(self):
        attempt_id = self.take_exam(self.student, ['4', 'Berlin', '3.14', 'Mars'])
        self.client.post(f'/api/attempts/{attempt_id}/submit/')
        bob = make_student('STU002', 'Bob')
        attempt_id = self.take_exam(bob, ['4', 'Paris', '3.14', 'Jupiter'])
        self.client.post(f'/api/attempts/{attempt_id}/submit/')

        self.client.force_authenticate(user=self.tutor)
        listing = self.client.get(f'/api/exams/{self.exam.id}/submissions/')
        self.assertEqual(len(listing.data), 2)

        report = self.client.get(f'/api/exams/{self.exam.id}/analytics/').data
        self.assertEqual(report['summary']['average'], 75.0)
        self.assertEqual(report['summary']['passing_rate'], 50.0)
        self.assertEqual(report['questions'][0]['correct_pct'], 100.0)
        self.assertEqual(report['questions'][1]['correct_pct'], 50.0)

        alice_submission = Submission.objects.get(student_id='STU001')
        response = self.client.post(f'/api/submissions/{alice_submission.id}/grade/', {'score': 65}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['score'], 65)

        response = self.client.post(f'/api/submissions/{alice_submission.id}/grade/', {'score': 120}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        dashboard = self.client.get('/api/analytics/').data
        self.assertEqual(dashboard['overall']['total_submissions'], 2)
        self.assertEqual(dashboard['overall']['total_students'], 2)
        self.assertEqual(len(dashboard['timeline']), 30)
        self.assertEqual(dashboard['leaderboard'][0]['student_id'], 'STU002')
        self.assertIn('completion_rate', dashboard['comparison']['unavailable'])

        roster = self.client.get('/api/students/').data
        self.assertEqual({entry['student_id'] for entry in roster}, {'STU001', 'STU002'})

        detail = self.client.get('/api/students/STU001/').data
        self.assertEqual(detail['summary']['exams_taken'], 1)
        self.assertEqual(detail['summary']['average_score'], 65.0)

        self.assertEqual(self.client.get('/api/students/STU999/').status_code, status.HTTP_404_NOT_FOUND)

    def test_submission_visibility(self):
        attempt_id = self.take_exam(self.student, ['4'])
        self.client.post(f'/api/attempts/{attempt_id}/submit/')
        submission = Submission.objects.get()

        self.client.force_authenticate(user=make_student('STU002', 'Bob'))
        response = self.client.get(f'/api/submissions/{submission.id}/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(user=make_tutor('tutor2'))
        response = self.client.get(f'/api/submissions/{submission.id}/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(user=self.student)
        response = self.client.get(f'/api/submissions/{submission.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_student_dashboard(self):
        other_exam, _ = make_exam(self.tutor, title='Second Exam')
        attempt_id = self.take_exam(self.student, ['4', 'Paris', '3.14', 'Jupiter'])
        self.client.post(f'/api/attempts/{attempt_id}/submit/')

        dashboard = self.client.get('/api/student/dashboard/').data
        self.assertEqual(dashboard['summary']['average_score'], 100.0)
        self.assertEqual(len(dashboard['submissions']), 1)
        self.assertEqual([exam['id'] for exam in dashboard['available_exams']], [str(other_exam.id)])

        available = self.client.get('/api/exams/?available=true').data['results']
        self.assertEqual([exam['title'] for exam in available], ['Second Exam'])

        mine = self.client.get('/api/submissions/mine/').data['results']
        self.assertEqual(len(mine), 1)
