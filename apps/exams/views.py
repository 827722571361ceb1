from django.conf import settings
from drf_spectacular.utils import extend_schema
from rest_framework import generics, status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from . import analytics, attempts, catalog, identity, submissions
from .exceptions import NotFound
from .identity import SessionContext
from .permissions import CanViewSubmission, IsExamOwner, IsStudent, IsTutor
from .serializers import (
    AnswerSerializer,
    ExamDetailSerializer,
    ExamListSerializer,
    ExamWriteSerializer,
    GradeSerializer,
    IdentitySerializer,
    NavigateSerializer,
    QuestionSerializer,
    StartAttemptSerializer,
    StudentLoginSerializer,
    SubmissionDetailSerializer,
    SubmissionListSerializer,
    TutorRegistrationSerializer,
)


def _session_payload(session):
    payload = session.snapshot()
    payload['exam_title'] = session.exam.title
    payload['questions'] = QuestionSerializer(session.questions, many=True).data
    return payload


# ==============================================
# AUTHENTICATION
# ==============================================

@extend_schema(tags=['Authentication'])
class RegisterView(APIView):
    permission_classes = [AllowAny]

    def post(self, request):
        serializer = TutorRegistrationSerializer(data=request.data)
        if serializer.is_valid():
            user = serializer.save()
            token = identity.issue_token(user)
            return Response({
                'user': IdentitySerializer(user).data,
                'token': token.key
            }, status=status.HTTP_201_CREATED)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@extend_schema(tags=['Authentication'])
class LoginView(APIView):
    permission_classes = [AllowAny]

    def post(self, request):
        username = request.data.get('username')
        password = request.data.get('password')

        if not username or not password:
            return Response(
                {'error': 'Username and password required'},
                status=status.HTTP_400_BAD_REQUEST
            )

        result = identity.tutor_login(username, password)
        if result is None:
            return Response(
                {'error': 'Invalid credentials'},
                status=status.HTTP_401_UNAUTHORIZED
            )

        user, token = result
        return Response({'user': IdentitySerializer(user).data, 'token': token.key})


@extend_schema(tags=['Authentication'])
class StudentLoginView(APIView):
    """Students sign in with name and student ID, no password."""
    permission_classes = [AllowAny]

    def post(self, request):
        serializer = StudentLoginSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user, token = identity.student_login(**serializer.validated_data)
        return Response({'user': IdentitySerializer(user).data, 'token': token.key})


@extend_schema(tags=['Authentication'])
class LogoutView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        identity.logout(request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema(tags=['Authentication'])
class MeView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response(IdentitySerializer(request.user).data)


# ==============================================
# EXAMS
# ==============================================

@extend_schema(tags=['Exams'])
class ExamListView(generics.ListAPIView):
    """
    Tutors see the exams they authored. Students see every exam, or with
    ``?available=true`` only those they have not submitted yet.
    """
    serializer_class = ExamListSerializer

    def get_permissions(self):
        if self.request.method == 'POST':
            return [IsTutor()]
        return [IsAuthenticated()]

    def get_queryset(self):
        user = self.request.user
        if user.is_tutor:
            return catalog.list_exams(created_by=user)
        if self.request.query_params.get('available') == 'true':
            return catalog.available_exams(user.student_id)
        return catalog.list_exams()

    @extend_schema(request=ExamWriteSerializer, responses=ExamDetailSerializer)
    def post(self, request):
        serializer = ExamWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        exam, questions = catalog.create_exam(request.user, **serializer.validated_data)
        data = ExamDetailSerializer(exam, context={'questions': questions, 'include_answers': True}).data
        return Response(data, status=status.HTTP_201_CREATED)


class _OwnedExamMixin:
    permission_classes = [IsTutor]

    def get_owned_exam(self, request, pk):
        exam, questions = catalog.get_exam_with_questions(pk)
        if not IsExamOwner().has_object_permission(request, self, exam):
            self.permission_denied(request, message=IsExamOwner.message)
        return exam, questions


@extend_schema(tags=['Exams'])
class ExamDetailView(_OwnedExamMixin, APIView):

    def get_permissions(self):
        if self.request.method == 'PUT':
            return [IsTutor()]
        return [IsAuthenticated()]

    def get(self, request, pk):
        if request.user.is_tutor:
            exam, questions = self.get_owned_exam(request, pk)
        else:
            exam, questions = catalog.get_exam_with_questions(pk)
        return Response(ExamDetailSerializer(
            exam, context={'questions': questions, 'include_answers': request.user.is_tutor}
        ).data)

    @extend_schema(request=ExamWriteSerializer, responses=ExamDetailSerializer)
    def put(self, request, pk):
        exam, _ = self.get_owned_exam(request, pk)

        serializer = ExamWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        exam, questions = catalog.edit_exam(exam, **serializer.validated_data)
        return Response(ExamDetailSerializer(
            exam, context={'questions': questions, 'include_answers': True}
        ).data)


@extend_schema(tags=['Submissions'])
class ExamSubmissionsView(_OwnedExamMixin, APIView):

    def get(self, request, pk):
        exam, _ = self.get_owned_exam(request, pk)
        return Response(SubmissionListSerializer(submissions.exam_submissions(exam.id), many=True).data)


@extend_schema(tags=['Analytics'])
class ExamAnalyticsView(_OwnedExamMixin, APIView):

    def get(self, request, pk):
        exam, questions = self.get_owned_exam(request, pk)
        report = analytics.exam_report(
            exam,
            questions,
            submissions.exam_submissions(exam.id),
            passing_score=settings.PASSING_SCORE,
        )
        return Response(report)


# ==============================================
# ATTEMPTS (taking an exam)
# ==============================================

@extend_schema(tags=['Attempts'])
class AttemptStartView(APIView):
    """Start the countdown on an exam, or resume the attempt already running."""
    permission_classes = [IsStudent]

    def post(self, request):
        serializer = StartAttemptSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        _, session, created = attempts.start_attempt(
            SessionContext.from_request(request), serializer.validated_data['exam_id']
        )
        return Response(
            _session_payload(session),
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )


@extend_schema(tags=['Attempts'])
class AttemptDetailView(APIView):
    permission_classes = [IsStudent]

    def get(self, request, pk):
        _, session = attempts.load_attempt(SessionContext.from_request(request), pk)
        return Response(_session_payload(session))


@extend_schema(tags=['Attempts'])
class AttemptAnswerView(APIView):
    permission_classes = [IsStudent]

    def post(self, request, pk):
        serializer = AnswerSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        _, session = attempts.answer_question(
            SessionContext.from_request(request),
            pk,
            serializer.validated_data['question_id'],
            serializer.validated_data['answer'],
        )
        return Response(_session_payload(session))


@extend_schema(tags=['Attempts'])
class AttemptNavigateView(APIView):
    permission_classes = [IsStudent]

    def post(self, request, pk):
        serializer = NavigateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        _, session = attempts.navigate(
            SessionContext.from_request(request),
            pk,
            serializer.validated_data['action'],
            serializer.validated_data.get('index'),
        )
        return Response(_session_payload(session))


@extend_schema(tags=['Attempts'])
class AttemptSubmitView(APIView):
    """
    Submit the attempt. Safe to repeat: a submitted attempt returns its
    existing submission.
    """
    permission_classes = [IsStudent]

    def post(self, request, pk):
        _, session = attempts.submit_attempt(SessionContext.from_request(request), pk)
        payload = _session_payload(session)
        payload['submission'] = SubmissionDetailSerializer(session.submission).data
        return Response(payload)


# ==============================================
# SUBMISSIONS
# ==============================================

@extend_schema(tags=['Submissions'])
class SubmissionListView(generics.ListAPIView):
    """The signed-in student's own submissions, newest first."""
    permission_classes = [IsStudent]
    serializer_class = SubmissionListSerializer

    def get_queryset(self):
        return submissions.student_submissions(self.request.user.student_id)


@extend_schema(tags=['Submissions'])
class SubmissionDetailView(APIView):
    permission_classes = [IsAuthenticated, CanViewSubmission]

    def get(self, request, pk):
        submission = submissions.get_submission(pk)
        self.check_object_permissions(request, submission)
        return Response(SubmissionDetailSerializer(submission).data)


@extend_schema(tags=['Submissions'])
class SubmissionGradeView(APIView):
    permission_classes = [IsTutor]

    @extend_schema(request=GradeSerializer, responses=SubmissionDetailSerializer)
    def post(self, request, pk):
        submission = submissions.get_submission(pk)
        if not CanViewSubmission().has_object_permission(request, self, submission):
            self.permission_denied(request, message=IsExamOwner.message)

        serializer = GradeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        submission = submissions.grade_submission(pk, serializer.validated_data['score'])
        return Response(SubmissionDetailSerializer(submission).data)


# ==============================================
# DASHBOARDS
# ==============================================

@extend_schema(tags=['Analytics'])
class TutorDashboardView(APIView):
    permission_classes = [IsTutor]

    def get(self, request):
        dashboard = analytics.tutor_dashboard(
            catalog.list_exams(created_by=request.user),
            submissions.tutor_submissions(request.user),
            passing_score=settings.PASSING_SCORE,
            timeline_days=settings.TIMELINE_DAYS,
            leaderboard_size=settings.LEADERBOARD_SIZE,
            comparison_count=settings.COMPARISON_EXAM_COUNT,
        )
        return Response(dashboard)


@extend_schema(tags=['Analytics'])
class StudentRosterView(APIView):
    """Every student who submitted one of the tutor's exams."""
    permission_classes = [IsTutor]

    def get(self, request):
        return Response(analytics.student_rollup(submissions.tutor_submissions(request.user)))


@extend_schema(tags=['Analytics'])
class StudentDetailView(APIView):
    permission_classes = [IsTutor]

    def get(self, request, student_id):
        history = [
            submission for submission in submissions.tutor_submissions(request.user)
            if submission.student_id == student_id
        ]
        if not history:
            raise NotFound(f"No submissions from student {student_id}.")

        history.sort(key=lambda submission: submission.submitted_at)
        return Response({
            'student_id': student_id,
            'student_name': history[-1].student_name,
            'student_email': history[-1].student_email,
            'summary': analytics.student_summary(history),
            'submissions': SubmissionListSerializer(history, many=True).data,
        })


@extend_schema(tags=['Analytics'])
class StudentDashboardView(APIView):
    permission_classes = [IsStudent]

    def get(self, request):
        history = submissions.student_submissions(request.user.student_id)
        return Response({
            'summary': analytics.student_summary(history),
            'submissions': SubmissionListSerializer(history, many=True).data,
            'available_exams': ExamListSerializer(
                catalog.available_exams(request.user.student_id), many=True
            ).data,
        })
