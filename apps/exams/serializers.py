from rest_framework import serializers
from django.contrib.auth import get_user_model
from .models import Exam, Question, Submission

User = get_user_model()


class TutorRegistrationSerializer(serializers.ModelSerializer):
    """Registration with password hashing via set_password."""
    password = serializers.CharField(write_only=True, min_length=8)

    class Meta:
        model = User
        fields = ['id', 'username', 'email', 'first_name', 'last_name', 'password']

    def create(self, validated_data):
        user = User(
            username=validated_data['username'],
            email=validated_data.get('email', ''),
            first_name=validated_data.get('first_name', ''),
            last_name=validated_data.get('last_name', ''),
            role=User.ROLE_TUTOR,
        )
        user.set_password(validated_data['password'])
        user.save()
        return user


class StudentLoginSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=150)
    email = serializers.EmailField(required=False, allow_blank=True, default='')
    student_id = serializers.RegexField(
        r'^[\w.@+-]+$',
        max_length=64,
        error_messages={'invalid': 'Student ID may only contain letters, digits and @/./+/-/_.'},
    )


class IdentitySerializer(serializers.ModelSerializer):
    name = serializers.CharField(read_only=True)

    class Meta:
        model = User
        fields = ['id', 'username', 'name', 'email', 'role', 'student_id']


class QuestionSerializer(serializers.ModelSerializer):
    """
    Question as a student sees it while taking the exam - the correct
    answer is never included.
    """
    class Meta:
        model = Question
        fields = ['id', 'text', 'question_type', 'options', 'order']


class QuestionDetailSerializer(serializers.ModelSerializer):
    """Tutor view, including the correct answer."""
    class Meta:
        model = Question
        fields = ['id', 'text', 'question_type', 'options', 'correct_answer', 'order']


class QuestionWriteSerializer(serializers.Serializer):
    """
    Shape of one authored question. Content rules (non-empty text, options,
    correct answer) are checked by the catalog so every authoring path
    reports them the same way.
    """
    id = serializers.UUIDField(required=False, allow_null=True)
    text = serializers.CharField(allow_blank=True)
    question_type = serializers.ChoiceField(choices=Question.QUESTION_TYPES)
    options = serializers.ListField(
        child=serializers.CharField(allow_blank=True, max_length=500),
        required=False,
        default=list,
    )
    correct_answer = serializers.CharField(required=False, allow_blank=True, default='', max_length=500)


class ExamWriteSerializer(serializers.Serializer):
    title = serializers.CharField(allow_blank=True, max_length=255)
    duration_minutes = serializers.IntegerField()
    questions = QuestionWriteSerializer(many=True)


class ExamListSerializer(serializers.ModelSerializer):
    """Lightweight exam listing for browse view."""
    question_count = serializers.SerializerMethodField()
    created_by = serializers.CharField(source='created_by.name', read_only=True)

    class Meta:
        model = Exam
        fields = ['id', 'title', 'duration_minutes', 'question_count', 'created_by', 'created_at']

    def get_question_count(self, obj):
        count = getattr(obj, 'question_count', None)
        return obj.questions.count() if count is None else count


class ExamDetailSerializer(serializers.ModelSerializer):
    """
    Exam with its ordered questions. Pass ``questions`` in the context;
    ``include_answers`` switches to the tutor view of each question.
    """
    questions = serializers.SerializerMethodField()

    class Meta:
        model = Exam
        fields = ['id', 'title', 'duration_minutes', 'questions', 'created_at', 'updated_at']

    def get_questions(self, obj):
        questions = self.context.get('questions')
        if questions is None:
            questions = obj.questions.all()
        serializer_class = (
            QuestionDetailSerializer if self.context.get('include_answers') else QuestionSerializer
        )
        return serializer_class(questions, many=True).data


class SubmissionListSerializer(serializers.ModelSerializer):
    """Lightweight submission listing."""
    exam_title = serializers.CharField(source='exam.title', read_only=True)
    answered_count = serializers.SerializerMethodField()

    class Meta:
        model = Submission
        fields = ['id', 'exam', 'exam_title', 'student_id', 'student_name',
                  'score', 'answered_count', 'submitted_at']

    def get_answered_count(self, obj):
        return len(obj.answers)


class SubmissionDetailSerializer(serializers.ModelSerializer):
    exam_title = serializers.CharField(source='exam.title', read_only=True)

    class Meta:
        model = Submission
        fields = ['id', 'exam', 'exam_title', 'attempt_id', 'student_id', 'student_name',
                  'student_email', 'answers', 'score', 'submitted_at']


class GradeSerializer(serializers.Serializer):
    score = serializers.IntegerField(min_value=0, max_value=100)


class StartAttemptSerializer(serializers.Serializer):
    exam_id = serializers.UUIDField()


class AnswerSerializer(serializers.Serializer):
    question_id = serializers.UUIDField()
    answer = serializers.CharField(allow_blank=True, allow_null=True, trim_whitespace=False)


class NavigateSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=['next', 'previous', 'jump'])
    index = serializers.IntegerField(required=False, min_value=0)
