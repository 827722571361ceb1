from django.urls import path
from .views import (
    RegisterView,
    LoginView,
    StudentLoginView,
    LogoutView,
    MeView,
    ExamListView,
    ExamDetailView,
    ExamSubmissionsView,
    ExamAnalyticsView,
    AttemptStartView,
    AttemptDetailView,
    AttemptAnswerView,
    AttemptNavigateView,
    AttemptSubmitView,
    SubmissionListView,
    SubmissionDetailView,
    SubmissionGradeView,
    TutorDashboardView,
    StudentRosterView,
    StudentDetailView,
    StudentDashboardView,
)

urlpatterns = [
    # Authentication
    path('auth/register/', RegisterView.as_view(), name='register'),
    path('auth/login/', LoginView.as_view(), name='login'),
    path('auth/student-login/', StudentLoginView.as_view(), name='student-login'),
    path('auth/logout/', LogoutView.as_view(), name='logout'),
    path('auth/me/', MeView.as_view(), name='me'),

    # Exams
    path('exams/', ExamListView.as_view(), name='exam-list'),
    path('exams/<uuid:pk>/', ExamDetailView.as_view(), name='exam-detail'),
    path('exams/<uuid:pk>/submissions/', ExamSubmissionsView.as_view(), name='exam-submissions'),
    path('exams/<uuid:pk>/analytics/', ExamAnalyticsView.as_view(), name='exam-analytics'),

    # Attempts
    path('attempts/', AttemptStartView.as_view(), name='attempt-start'),
    path('attempts/<uuid:pk>/', AttemptDetailView.as_view(), name='attempt-detail'),
    path('attempts/<uuid:pk>/answer/', AttemptAnswerView.as_view(), name='attempt-answer'),
    path('attempts/<uuid:pk>/navigate/', AttemptNavigateView.as_view(), name='attempt-navigate'),
    path('attempts/<uuid:pk>/submit/', AttemptSubmitView.as_view(), name='attempt-submit'),

    # Submissions
    path('submissions/mine/', SubmissionListView.as_view(), name='submission-list'),
    path('submissions/<uuid:pk>/', SubmissionDetailView.as_view(), name='submission-detail'),
    path('submissions/<uuid:pk>/grade/', SubmissionGradeView.as_view(), name='submission-grade'),

    # Dashboards
    path('analytics/', TutorDashboardView.as_view(), name='tutor-dashboard'),
    path('students/', StudentRosterView.as_view(), name='student-roster'),
    path('students/<str:student_id>/', StudentDetailView.as_view(), name='student-detail'),
    path('student/dashboard/', StudentDashboardView.as_view(), name='student-dashboard'),
]
