from datetime import timedelta

from django.core.management.base import BaseCommand
from django.contrib.auth import get_user_model
from django.utils import timezone

from apps.exams import catalog
from apps.exams.models import Submission
from apps.exams.grading_service import GradingService

User = get_user_model()

SAMPLE_EXAMS = [
    {
        'title': 'Mathematics Midterm',
        'duration_minutes': 10,
        'questions': [
            {
                'text': 'What is 2 + 2?',
                'question_type': 'multiple_choice',
                'options': ['3', '4', '5', '6'],
                'correct_answer': '4',
            },
            {
                'text': 'What is the value of pi to 2 decimal places?',
                'question_type': 'multiple_choice',
                'options': ['3.14', '3.15', '3.16', '3.17'],
                'correct_answer': '3.14',
            },
            {
                'text': 'What is 7 x 8?',
                'question_type': 'multiple_choice',
                'options': ['54', '56', '58', '64'],
                'correct_answer': '56',
            },
        ],
    },
    {
        'title': 'Physics Quiz',
        'duration_minutes': 15,
        'questions': [
            {
                'text': 'What is the SI unit of force?',
                'question_type': 'multiple_choice',
                'options': ['Joule', 'Newton', 'Watt', 'Pascal'],
                'correct_answer': 'Newton',
            },
            {
                'text': "Describe Newton's First Law of Motion.",
                'question_type': 'text',
            },
        ],
    },
]

SAMPLE_STUDENTS = [
    ('STU001', 'Alice Johnson', 'alice@example.com'),
    ('STU002', 'Bob Smith', 'bob@example.com'),
    ('STU003', 'Carol White', 'carol@example.com'),
]


class Command(BaseCommand):
    help = 'Creates sample tutor, students, exams and submissions for trying the API'

    def handle(self, *args, **kwargs):
        self.stdout.write('Creating sample data...')

        tutor = User.objects.filter(username='tutor1').first()
        if tutor is None:
            tutor = User.objects.create_user(
                username='tutor1',
                email='tutor1@example.com',
                password='testpass123',
                first_name='Grace',
                last_name='Hopper',
                role=User.ROLE_TUTOR,
            )
            self.stdout.write(self.style.SUCCESS('Created tutor: tutor1'))

        students = []
        for student_id, name, email in SAMPLE_STUDENTS:
            student, created = User.objects.get_or_create(
                student_id=student_id,
                defaults={
                    'username': f'student-{student_id}',
                    'first_name': name,
                    'email': email,
                    'role': User.ROLE_STUDENT,
                },
            )
            if created:
                student.set_unusable_password()
                student.save()
                self.stdout.write(self.style.SUCCESS(f'Created student: {student_id}'))
            students.append(student)

        grader = GradingService()
        now = timezone.now()
        for sample in SAMPLE_EXAMS:
            if tutor.authored_exams.filter(title=sample['title']).exists():
                self.stdout.write(f"Exam already exists: {sample['title']}")
                continue

            exam, questions = catalog.create_exam(
                tutor, sample['title'], sample['duration_minutes'], sample['questions']
            )
            self.stdout.write(self.style.SUCCESS(f'Created exam: {exam.title}'))

            # Student n answers the first n+1 questions with the correct option
            for offset, student in enumerate(students):
                answers = {
                    str(question.id): question.correct_answer or 'See lecture notes.'
                    for question in questions[:offset + 1]
                }
                Submission.objects.create(
                    exam=exam,
                    user=student,
                    student_id=student.student_id,
                    student_name=student.name,
                    student_email=student.email,
                    answers=answers,
                    score=grader.score_submission(questions, answers),
                    submitted_at=now - timedelta(days=offset * 3),
                )

        self.stdout.write(self.style.SUCCESS('Sample data created successfully!'))
