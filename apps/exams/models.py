import uuid
from django.db import models
from django.contrib.auth.models import AbstractUser
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.utils import timezone


class User(AbstractUser):
    """
    Portal identity.

    Tutors sign in with a password. Students are created ad hoc on first
    login and matched afterwards by their student_id, so they never get a
    usable password.
    """
    ROLE_TUTOR = 'tutor'
    ROLE_STUDENT = 'student'
    ROLE_CHOICES = [
        (ROLE_TUTOR, 'Tutor'),
        (ROLE_STUDENT, 'Student'),
    ]

    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default=ROLE_STUDENT)
    student_id = models.CharField(max_length=64, unique=True, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'users'
        indexes = [
            models.Index(fields=['email'], name='users_email_idx'),
        ]

    @property
    def name(self):
        return self.get_full_name() or self.username

    @property
    def is_tutor(self):
        return self.role == self.ROLE_TUTOR

    @property
    def is_student(self):
        return self.role == self.ROLE_STUDENT


class Exam(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    title = models.CharField(max_length=255)
    duration_minutes = models.IntegerField(validators=[MinValueValidator(1)])
    created_by = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='authored_exams'
    )
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'exams'
        ordering = ['-created_at']

    def __str__(self):
        return self.title


class Question(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    MULTIPLE_CHOICE = 'multiple_choice'
    TEXT = 'text'
    QUESTION_TYPES = [
        (MULTIPLE_CHOICE, 'Multiple Choice'),
        (TEXT, 'Text'),
    ]

    exam = models.ForeignKey(
        Exam,
        on_delete=models.CASCADE,
        related_name='questions'
    )
    text = models.TextField()
    question_type = models.CharField(max_length=20, choices=QUESTION_TYPES)
    options = models.JSONField(default=list, blank=True)
    correct_answer = models.CharField(max_length=500, blank=True)
    order = models.IntegerField(default=0)

    class Meta:
        db_table = 'questions'
        ordering = ['exam', 'order']
        constraints = [
            models.UniqueConstraint(
                fields=['exam', 'order'],
                name='unique_exam_question_order'
            )
        ]
        indexes = [
            models.Index(fields=['exam', 'order'], name='questions_exam_order_idx'),
        ]

    def __str__(self):
        return f"Q{self.order}: {self.text[:50]}"

    @property
    def is_multiple_choice(self):
        return self.question_type == self.MULTIPLE_CHOICE

    def clean(self):
        # Options and a correct answer exist iff the question is multiple choice
        if self.is_multiple_choice:
            if not self.options:
                raise ValidationError({'options': 'Multiple-choice questions need options.'})
            if self.correct_answer not in self.options:
                raise ValidationError({'correct_answer': 'Correct answer must be one of the options.'})
        elif self.options or self.correct_answer:
            raise ValidationError('Text questions carry no options or correct answer.')


class ExamAttempt(models.Model):
    """
    Persisted state of a student's exam-taking session.

    The countdown lives on the server: remaining_seconds is only valid as of
    clock_synced_at, and each access advances it by the elapsed time.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    STATE_IN_PROGRESS = 'in_progress'
    STATE_COMPLETED = 'completed'
    STATE_CHOICES = [
        (STATE_IN_PROGRESS, 'In Progress'),
        (STATE_COMPLETED, 'Completed'),
    ]

    exam = models.ForeignKey(
        Exam,
        on_delete=models.CASCADE,
        related_name='attempts'
    )
    student = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='attempts'
    )
    state = models.CharField(max_length=20, choices=STATE_CHOICES, default=STATE_IN_PROGRESS)
    answers = models.JSONField(default=dict, blank=True)
    current_index = models.IntegerField(default=0)
    remaining_seconds = models.IntegerField(validators=[MinValueValidator(0)])
    clock_synced_at = models.DateTimeField(default=timezone.now)
    last_error = models.TextField(blank=True)
    started_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'exam_attempts'
        ordering = ['-started_at']
        constraints = [
            models.UniqueConstraint(
                fields=['exam', 'student'],
                name='unique_exam_student_attempt'
            )
        ]

    def __str__(self):
        return f"{self.student.username} - {self.exam.title} ({self.state})"


class Submission(models.Model):
    """
    A student's recorded answers for one exam attempt.

    answers maps question id (as a string) to the answer given; unanswered
    questions are absent. score stays null until graded. attempt_id makes
    re-submitting the same attempt a no-op, and the (exam, student_id)
    constraint enforces a single attempt per exam.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    exam = models.ForeignKey(
        Exam,
        on_delete=models.CASCADE,
        related_name='submissions'
    )
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='submissions'
    )
    attempt_id = models.UUIDField(unique=True, default=uuid.uuid4)
    student_name = models.CharField(max_length=255)
    student_email = models.EmailField(blank=True)
    student_id = models.CharField(max_length=64)
    answers = models.JSONField(default=dict, blank=True)
    score = models.IntegerField(
        null=True,
        blank=True,
        validators=[MinValueValidator(0), MaxValueValidator(100)]
    )
    submitted_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'submissions'
        ordering = ['-submitted_at']
        constraints = [
            models.UniqueConstraint(
                fields=['exam', 'student_id'],
                name='unique_exam_student_submission'
            )
        ]
        indexes = [
            models.Index(fields=['student_id', '-submitted_at'], name='submissions_student_idx'),
            models.Index(fields=['exam', '-submitted_at'], name='submissions_exam_idx'),
        ]

    def __str__(self):
        return f"{self.student_name} - {self.exam.title}"

    @property
    def is_graded(self):
        return self.score is not None
