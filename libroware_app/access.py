"""
Role model and per-operation authorization checks.

Handlers receive a ``RequestContext`` built for the current request (see
``accounts.context_from_token``) and pass it to every service call; nothing
here caches the current user between requests.
"""

from .exceptions import Forbidden, PasswordChangeRequired, ValidationError
from .models import UserRole

# User < Librarian < Admin
ROLE_RANK = {
    UserRole.USER: 0,
    UserRole.LIBRARIAN: 1,
    UserRole.ADMIN: 2,
}

# subject role -> target roles it may manage
MANAGEABLE_ROLES = {
    UserRole.ADMIN: {UserRole.USER, UserRole.LIBRARIAN, UserRole.ADMIN},
    UserRole.LIBRARIAN: {UserRole.USER},
    UserRole.USER: set(),
}

STAFF_ROLES = {UserRole.LIBRARIAN, UserRole.ADMIN}


def coerce_id(value, label='id'):
    """Primary keys arrive from the API layer as ints or numeric strings."""
    if isinstance(value, bool):
        raise ValidationError(f'Invalid {label}: {value!r}')
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'Invalid {label}: {value!r}')


def rank(role):
    return ROLE_RANK[UserRole(role)]


def can_manage(subject_role, target_role):
    return UserRole(target_role) in MANAGEABLE_ROLES[UserRole(subject_role)]


def is_admin(user):
    return user is not None and user.Role == UserRole.ADMIN


def is_librarian(user):
    return user is not None and user.Role == UserRole.LIBRARIAN


def is_user(user):
    return user is not None and user.Role == UserRole.USER


def is_staff(user):
    return user is not None and user.Role in STAFF_ROLES


class RequestContext:
    """The acting subject of a single request."""

    def __init__(self, user=None):
        self.user = user

    @property
    def is_authenticated(self):
        return self.user is not None

    @property
    def user_id(self):
        return self.user.pk if self.user is not None else None

    @property
    def role(self):
        return self.user.Role if self.user is not None else None

    def is_self(self, user_id):
        return self.user is not None and self.user.pk == coerce_id(user_id, 'user id')

    def __repr__(self):
        return f'<RequestContext user={self.user_id} role={self.role}>'


ANONYMOUS = RequestContext()


def require_authenticated(ctx):
    if ctx is None or not ctx.is_authenticated:
        raise Forbidden('Authentication required')
    return ctx.user


def require_active(ctx):
    """Authenticated and not waiting on a forced password change."""
    user = require_authenticated(ctx)
    if user.RequiresPasswordChange:
        raise PasswordChangeRequired()
    return user


def require_staff(ctx):
    user = require_active(ctx)
    if not is_staff(user):
        raise Forbidden('Librarian or administrator role required')
    return user


def require_self_or_staff(ctx, user_id):
    user = require_active(ctx)
    if not (ctx.is_self(user_id) or is_staff(user)):
        raise Forbidden('You can only access your own records')
    return user


def require_can_manage(ctx, target):
    user = require_active(ctx)
    if not can_manage(user.Role, target.Role):
        raise Forbidden(f'{user.Role} cannot manage {target.Role} accounts')
    return user
