"""
Grading service with Strategy Pattern implementation.

Architecture:
- BaseGrader: interface for grading strategies
- MultipleChoiceGrader: exact-match scoring of multiple-choice answers
- ManualGrader: leaves every submission for the tutor to score
- GradingService: picks the strategy from settings and scores a submission

A submission is only scored automatically when every question in the exam
can be graded by the strategy; otherwise it stays ungraded until a tutor
assigns the score.
"""
import logging
from abc import ABC, abstractmethod
from django.conf import settings

logger = logging.getLogger(__name__)


class BaseGrader(ABC):
    """Strategy interface for grading implementations."""

    @abstractmethod
    def can_grade(self, question):
        pass

    @abstractmethod
    def is_correct(self, question, student_answer):
        pass


class MultipleChoiceGrader(BaseGrader):
    """
    Exact string match against the stored correct answer.

    Free-text questions have nothing to compare against, so they are
    left for manual grading.
    """

    def can_grade(self, question):
        return question.is_multiple_choice

    def is_correct(self, question, student_answer):
        return student_answer is not None and student_answer == question.correct_answer


class ManualGrader(BaseGrader):

    def can_grade(self, question):
        return False

    def is_correct(self, question, student_answer):
        return False


class GradingService:
    """
    Scores submissions with the configured strategy.
    Configurable via settings to switch between graders.
    """

    def __init__(self, grader_type=None):
        grader_type = grader_type or getattr(settings, 'GRADER_TYPE', 'auto')

        if grader_type == 'manual':
            self.grader = ManualGrader()
        else:
            self.grader = MultipleChoiceGrader()

    def score_submission(self, questions, answers):
        """
        Percentage of questions answered correctly, rounded to an integer.

        Returns None (ungraded) for an exam without questions or with any
        question the grader cannot score. Unanswered questions count as
        incorrect.
        """
        questions = list(questions)
        if not questions or not all(self.grader.can_grade(q) for q in questions):
            return None

        correct = sum(
            1 for question in questions
            if self.grader.is_correct(question, answers.get(str(question.id)))
        )
        score = round(correct / len(questions) * 100)
        logger.debug("Scored %d/%d correct as %d", correct, len(questions), score)
        return score
