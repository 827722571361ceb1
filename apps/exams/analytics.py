"""
Grading and analytics aggregation.

Everything here is a pure function over exams, questions and submissions
already fetched from the store; nothing is persisted. Ungraded submissions
take part in the arithmetic with an effective score of 0.
"""
from datetime import timedelta

from django.utils import timezone

# Inclusive score ranges; together they cover every integer from 0 to 100 once
SCORE_BUCKETS = [
    ('0-20', 0, 20),
    ('21-40', 21, 40),
    ('41-60', 41, 60),
    ('61-80', 61, 80),
    ('81-100', 81, 100),
]

# Comparison metrics the stored data cannot support
UNAVAILABLE_COMPARISON_METRICS = ['completion_rate', 'time_efficiency', 'question_difficulty']


def effective_score(submission):
    return submission.score if submission.score is not None else 0


def _mean(values):
    values = list(values)
    if not values:
        return 0.0
    return round(sum(values) / len(values), 1)


def score_summary(submissions, passing_score=60):
    scores = [effective_score(s) for s in submissions]
    if not scores:
        return {'count': 0, 'average': 0.0, 'highest': 0, 'lowest': 0, 'passing_rate': 0.0}

    passed = sum(1 for score in scores if score >= passing_score)
    return {
        'count': len(scores),
        'average': _mean(scores),
        'highest': max(scores),
        'lowest': min(scores),
        'passing_rate': round(passed / len(scores) * 100, 1),
    }


def score_distribution(submissions):
    counts = {label: 0 for label, _, _ in SCORE_BUCKETS}
    for submission in submissions:
        score = effective_score(submission)
        for label, low, high in SCORE_BUCKETS:
            if low <= score <= high:
                counts[label] += 1
                break
    return [{'range': label, 'count': counts[label]} for label, _, _ in SCORE_BUCKETS]


def question_performance(questions, submissions):
    """
    Correctness per question, in question order.

    Only submissions that answered a question count towards it. Text
    questions have no correct answer and come back unscored.
    """
    submissions = list(submissions)
    rows = []
    for question in questions:
        key = str(question.id)
        answers = [s.answers[key] for s in submissions if key in s.answers]
        row = {
            'question_id': question.id,
            'text': question.text,
            'question_type': question.question_type,
            'answered': len(answers),
        }
        if question.is_multiple_choice:
            correct = sum(1 for answer in answers if answer == question.correct_answer)
            correct_pct = round(correct / len(answers) * 100, 1) if answers else 0.0
            row.update({
                'scored': True,
                'correct': correct,
                'correct_pct': correct_pct,
                'incorrect_pct': round(100 - correct_pct, 1),
            })
        else:
            row.update({'scored': False, 'correct': None, 'correct_pct': None, 'incorrect_pct': None})
        rows.append(row)
    return rows


def student_rollup(submissions):
    """One entry per student_id, in order of first appearance."""
    students = {}
    for submission in submissions:
        entry = students.setdefault(submission.student_id, {
            'student_id': submission.student_id,
            'student_name': submission.student_name,
            'student_email': submission.student_email,
            'scores': [],
            'graded_count': 0,
        })
        entry['scores'].append(effective_score(submission))
        if submission.is_graded:
            entry['graded_count'] += 1

    rollup = []
    for entry in students.values():
        scores = entry.pop('scores')
        entry['submission_count'] = len(scores)
        entry['average_score'] = _mean(scores)
        rollup.append(entry)
    return rollup


def leaderboard(submissions, size=10):
    ranked = sorted(
        student_rollup(submissions),
        key=lambda entry: (-entry['average_score'], entry['student_name']),
    )
    return ranked[:size]


def submission_timeline(submissions, days=30, today=None):
    """
    Submissions per calendar day over the trailing ``days`` days, today
    included. Days without submissions are reported with a zero count.
    """
    today = today or timezone.localdate()
    start = today - timedelta(days=days - 1)
    counts = {start + timedelta(days=offset): 0 for offset in range(days)}

    for submission in submissions:
        day = timezone.localdate(submission.submitted_at)
        if day in counts:
            counts[day] += 1

    return [{'date': day.isoformat(), 'count': count} for day, count in counts.items()]


def _by_exam(submissions):
    grouped = {}
    for submission in submissions:
        grouped.setdefault(submission.exam_id, []).append(submission)
    return grouped


def exam_performance(exams, submissions):
    grouped = _by_exam(submissions)
    return [
        {
            'exam_id': exam.id,
            'title': exam.title,
            'average_score': _mean(effective_score(s) for s in grouped.get(exam.id, [])),
            'submission_count': len(grouped.get(exam.id, [])),
        }
        for exam in exams
    ]


def exam_comparison(exams, submissions, top=3):
    """
    Compare the ``top`` exams with the most submissions.

    Metrics that cannot be derived from stored submissions are reported as
    None and listed under ``unavailable``.
    """
    ranked = sorted(exam_performance(exams, submissions), key=lambda row: -row['submission_count'])
    rows = []
    for row in ranked[:top]:
        row.update({metric: None for metric in UNAVAILABLE_COMPARISON_METRICS})
        rows.append(row)
    return {'exams': rows, 'unavailable': list(UNAVAILABLE_COMPARISON_METRICS)}


def overall_statistics(exams, submissions):
    submissions = list(submissions)
    return {
        'total_exams': len(list(exams)),
        'total_submissions': len(submissions),
        'total_students': len({s.student_id for s in submissions}),
        'average_score': _mean(effective_score(s) for s in submissions),
    }


def student_summary(submissions):
    summary = score_summary(submissions)
    return {
        'exams_taken': summary['count'],
        'average_score': summary['average'],
        'highest_score': summary['highest'],
        'lowest_score': summary['lowest'],
    }


def exam_report(exam, questions, submissions, passing_score=60):
    submissions = list(submissions)
    return {
        'exam_id': exam.id,
        'title': exam.title,
        'duration_minutes': exam.duration_minutes,
        'question_count': len(questions),
        'summary': score_summary(submissions, passing_score),
        'distribution': score_distribution(submissions),
        'questions': question_performance(questions, submissions),
    }


def tutor_dashboard(exams, submissions, passing_score=60, timeline_days=30,
                    leaderboard_size=10, comparison_count=3, today=None):
    exams = list(exams)
    submissions = list(submissions)
    return {
        'overall': overall_statistics(exams, submissions),
        'summary': score_summary(submissions, passing_score),
        'exam_performance': exam_performance(exams, submissions),
        'leaderboard': leaderboard(submissions, leaderboard_size),
        'timeline': submission_timeline(submissions, timeline_days, today),
        'comparison': exam_comparison(exams, submissions, comparison_count),
    }
