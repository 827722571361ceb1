"""
Identities and per-request session context.

Login issues a token (session start), logout deletes it (session end).
Views build a SessionContext from the authenticated request and hand it to
the services that need to know who is acting.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from django.contrib.auth import authenticate
from django.contrib.auth.hashers import make_password
from rest_framework.authtoken.models import Token

from . import store
from .exceptions import ValidationFailure
from .models import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    id: int
    name: str
    email: str
    role: str
    student_id: Optional[str] = None

    @classmethod
    def from_user(cls, user):
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role,
            student_id=user.student_id,
        )


@dataclass(frozen=True)
class SessionContext:
    user: User
    identity: Identity

    @classmethod
    def from_request(cls, request):
        return cls(user=request.user, identity=Identity.from_user(request.user))


def issue_token(user):
    token, _ = Token.objects.get_or_create(user=user)
    return token


def tutor_login(username, password):
    """Return ``(user, token)`` for valid tutor credentials, else None."""
    user = authenticate(username=username, password=password)
    if user is None or not user.is_tutor:
        logger.info("Rejected tutor login for %s", username)
        return None
    return user, issue_token(user)


def student_login(name, email, student_id):
    """
    Password-less student login.

    The student is matched by student_id; an unknown id creates a new
    student identity with the given name and email.
    """
    matches = store.list_documents(store.USERS, {'student_id': student_id})
    if matches:
        user = matches[0]
        if not user.is_student:
            raise ValidationFailure({'student_id': 'This ID does not belong to a student.'})
    else:
        user = store.create_document(store.USERS, {
            'username': f'student-{student_id}',
            'first_name': name,
            'email': email,
            'role': User.ROLE_STUDENT,
            'student_id': student_id,
            'password': make_password(None),
        })
        logger.info("Created student identity for %s", student_id)
    return user, issue_token(user)


def logout(user):
    deleted, _ = Token.objects.filter(user=user).delete()
    logger.info("Session ended for %s (%d tokens revoked)", user.username, deleted)
