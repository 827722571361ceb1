from rest_framework import permissions


class IsTutor(permissions.BasePermission):
    message = 'Only tutors can do this.'

    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated and request.user.is_tutor)


class IsStudent(permissions.BasePermission):
    """Students signed in with a student ID."""
    message = 'Only students can take exams.'

    def has_permission(self, request, view):
        user = request.user
        return bool(user and user.is_authenticated and user.is_student and user.student_id)


class IsExamOwner(permissions.BasePermission):
    """Tutors may only change and inspect the exams they authored."""
    message = 'You can only manage exams you authored.'

    def has_object_permission(self, request, view, obj):
        return obj.created_by_id == request.user.id


class CanViewSubmission(permissions.BasePermission):
    """
    A submission is visible to the student who made it and to the tutor
    who authored the exam.
    """
    message = 'You cannot access this submission.'

    def has_object_permission(self, request, view, obj):
        if request.user.is_tutor:
            return obj.exam.created_by_id == request.user.id
        return obj.user_id == request.user.id
