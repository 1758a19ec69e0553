"""
Accounts: login tokens, self-registration, user management and the
force-delete cascade.

Tokens are signed with ``django.core.signing`` and carry the user's session
auth hash, so changing a password revokes every token issued before it.
"""

import logging

from django.conf import settings
from django.contrib.auth import password_validation
from django.contrib.auth.hashers import make_password
from django.core import signing
from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import validate_email
from django.db import IntegrityError, transaction
from django.db.models import F, ProtectedError
from django.utils import timezone
from django.utils.crypto import constant_time_compare

from . import access
from .access import RequestContext
from .exceptions import (
    CannotDeleteSelf,
    DependencyExists,
    DuplicateEmail,
    Forbidden,
    InvalidCredentials,
    NotFound,
    ValidationError,
)
from .models import Book, User, UserRole
from .paging import paginate

logger = logging.getLogger(__name__)
audit = logging.getLogger('libroware_app.audit')

TOKEN_SALT = 'libroware_app.accounts.session'
FORCE_DELETE_SALT = 'libroware_app.accounts.force-delete'

PROFILE_FIELDS = {
    'first_name': 'first_name',
    'last_name': 'last_name',
    'profile_picture': 'ProfilePicture',
}


# --- helpers ---

def _get_user(user_id, lock=False):
    queryset = User.objects.select_for_update() if lock else User.objects.all()
    try:
        return queryset.get(pk=access.coerce_id(user_id, 'user id'))
    except User.DoesNotExist:
        raise NotFound('User not found')


def _clean_email(email):
    email = (email or '').strip().lower()
    try:
        validate_email(email)
    except DjangoValidationError:
        raise ValidationError(f'Invalid email address: {email!r}')
    return email


def _ensure_unique_email(email, exclude_pk=None):
    clash = User.objects.filter(email__iexact=email)
    if exclude_pk is not None:
        clash = clash.exclude(pk=exclude_pk)
    if clash.exists():
        raise DuplicateEmail()


def _validate_password(password, user=None):
    try:
        password_validation.validate_password(password or '', user)
    except DjangoValidationError as e:
        raise ValidationError(' '.join(e.messages))


def _role(value):
    try:
        return UserRole(value)
    except ValueError:
        raise ValidationError(f'Unknown role: {value!r}')


# --- Tokens / request context ---

def issue_token(user):
    return signing.dumps({'uid': user.pk, 'auth': user.get_session_auth_hash()}, salt=TOKEN_SALT, compress=True)


def context_from_token(token):
    """
    Build the RequestContext for one request. No token means an anonymous
    context; a bad, expired or revoked token is rejected outright.
    """
    if not token:
        return RequestContext()
    if token.startswith('Bearer '):
        token = token[len('Bearer '):]
    try:
        payload = signing.loads(token, salt=TOKEN_SALT, max_age=settings.LIBROWARE_TOKEN_MAX_AGE)
    except signing.SignatureExpired:
        raise Forbidden('Session expired, please log in again')
    except signing.BadSignature:
        raise Forbidden('Invalid session token')

    user = User.objects.filter(pk=payload.get('uid'), is_active=True).first()
    if user is None or not constant_time_compare(payload.get('auth', ''), user.get_session_auth_hash()):
        raise Forbidden('Invalid session token')
    return RequestContext(user)


def authenticate(email, password):
    email = (email or '').strip().lower()
    user = User.objects.filter(email__iexact=email).first()

    if user is None or not user.is_active:
        # hash anyway so unknown accounts take as long as wrong passwords
        make_password(password)
        audit.warning('Failed login for %s: no active account', email)
        raise InvalidCredentials()
    if not user.check_password(password):
        audit.warning('Failed login for %s: wrong password', email)
        raise InvalidCredentials()

    user.last_login = timezone.now()
    user.save(update_fields=['last_login'])
    logger.info('Login successful for %s', email)
    return {'token': issue_token(user), 'user': user}


# --- Registration / creation ---

def register(email, password, first_name='', last_name=''):
    """Self-registration of a patron account."""
    email = _clean_email(email)
    _ensure_unique_email(email)
    _validate_password(password)
    try:
        user = User.objects.create_user(
            email=email,
            password=password,
            first_name=first_name or '',
            last_name=last_name or '',
            Role=UserRole.USER,
            RequiresPasswordChange=False,  # they just chose it
        )
    except IntegrityError:
        raise DuplicateEmail()
    logger.info('User %s registered as %s', user.pk, user.email)
    return {'token': issue_token(user), 'user': user}


def create_user(ctx, email, password, first_name='', last_name='', role=UserRole.USER,
                profile_picture='', requires_password_change=True):
    manager = access.require_active(ctx)
    role = _role(role)
    if not access.can_manage(manager.Role, role):
        raise Forbidden(f'{manager.Role} cannot create {role} accounts')

    email = _clean_email(email)
    _ensure_unique_email(email)
    _validate_password(password)
    try:
        user = User.objects.create_user(
            email=email,
            password=password,
            first_name=first_name or '',
            last_name=last_name or '',
            Role=role,
            ProfilePicture=profile_picture or '',
            RequiresPasswordChange=requires_password_change,
        )
    except IntegrityError:
        raise DuplicateEmail()

    audit.info('User %s (%s, %s) created by %s', user.pk, user.email, user.Role, manager.pk)
    return user


# --- Reading ---

def me(ctx):
    # allowed while a password change is pending so the client can show the form
    return access.require_authenticated(ctx)


def get_user(ctx, user_id):
    access.require_self_or_staff(ctx, user_id)
    return _get_user(user_id)


def list_users(ctx, skip=0, take=None):
    access.require_staff(ctx)
    return paginate(User.objects.order_by('-date_joined'), skip, take)


# --- Updating ---

def update_user(ctx, user_id, **changes):
    actor = access.require_active(ctx)
    target = _get_user(user_id)
    is_self = actor.pk == target.pk
    if not is_self:
        access.require_can_manage(ctx, target)

    unknown = set(changes) - set(PROFILE_FIELDS) - {'email', 'role'}
    if unknown:
        raise ValidationError(f'Cannot update user fields: {", ".join(sorted(unknown))}')

    for key, field in PROFILE_FIELDS.items():
        if key in changes:
            setattr(target, field, changes[key] or '')

    if 'email' in changes:
        email = _clean_email(changes['email'])
        if email != target.email:
            _ensure_unique_email(email, exclude_pk=target.pk)
            target.email = email

    if 'role' in changes:
        new_role = _role(changes['role'])
        if new_role != target.Role:
            if is_self:
                raise Forbidden('You cannot change your own role')
            if not access.can_manage(actor.Role, new_role):
                raise Forbidden(f'{actor.Role} cannot grant the {new_role} role')
            audit.info('User %s role changed %s -> %s by %s', target.pk, target.Role, new_role, actor.pk)
            target.Role = new_role

    try:
        target.save()
    except IntegrityError:
        raise DuplicateEmail('Email already in use')
    return target


def change_password(ctx, current_password, new_password):
    """The caller's own password; also completes a forced password change."""
    user = access.require_authenticated(ctx)
    if not user.check_password(current_password):
        raise InvalidCredentials('Current password is incorrect')
    _validate_password(new_password, user)

    user.set_password(new_password)
    user.RequiresPasswordChange = False
    user.save(update_fields=['password', 'RequiresPasswordChange'])
    logger.info('User %s changed their password', user.pk)
    return {'token': issue_token(user), 'user': user}


def set_password(ctx, user_id, new_password):
    """Reset someone else's password; they must pick a new one at next login."""
    actor = access.require_active(ctx)
    if ctx.is_self(user_id):
        raise Forbidden('Use change_password for your own account')
    target = _get_user(user_id)
    access.require_can_manage(ctx, target)
    _validate_password(new_password, target)

    target.set_password(new_password)
    target.RequiresPasswordChange = True
    target.save(update_fields=['password', 'RequiresPasswordChange'])
    audit.info('Password of user %s reset by %s', target.pk, actor.pk)
    return target


# --- Deleting ---

def delete_user(ctx, user_id):
    actor = access.require_active(ctx)
    if ctx.is_self(user_id):
        raise CannotDeleteSelf()
    target = _get_user(user_id)
    access.require_can_manage(ctx, target)

    email = target.email
    try:
        with transaction.atomic():
            target.delete()
    except ProtectedError:
        raise DependencyExists(
            'Cannot delete user because of a foreign key constraint: '
            'they still have borrow or review records'
        )

    audit.info('User %s (%s) deleted by %s', user_id, email, actor.pk)
    return target


def prepare_force_delete(ctx, user_id):
    """
    First step of a force delete: report what would be removed and hand out
    a short-lived confirmation bound to this actor and this target.
    """
    actor = access.require_active(ctx)
    if ctx.is_self(user_id):
        raise CannotDeleteSelf()
    target = _get_user(user_id)
    access.require_can_manage(ctx, target)

    return {
        'user': target,
        'borrows': target.borrows.count(),
        'active_borrows': target.borrows.outstanding().count(),
        'reviews': target.reviews.count(),
        'confirmation': signing.dumps({'actor': actor.pk, 'target': target.pk}, salt=FORCE_DELETE_SALT),
    }


def force_delete_user(ctx, user_id, confirmation):
    actor = access.require_active(ctx)
    if ctx.is_self(user_id):
        raise CannotDeleteSelf()
    if not confirmation:
        raise Forbidden('Force delete must be confirmed')
    try:
        payload = signing.loads(confirmation, salt=FORCE_DELETE_SALT,
                                max_age=settings.LIBROWARE_FORCE_DELETE_MAX_AGE)
    except signing.BadSignature:
        raise Forbidden('Force delete confirmation is invalid or expired')
    if payload != {'actor': actor.pk, 'target': access.coerce_id(user_id, 'user id')}:
        raise Forbidden('Force delete confirmation does not match this request')

    with transaction.atomic():
        target = _get_user(user_id, lock=True)
        access.require_can_manage(ctx, target)
        email = target.email

        # 1. Copies still out with this user go back on the shelf
        outstanding = list(target.borrows.outstanding().exclude(BookID=None).values_list('BookID', flat=True))
        for book_id in outstanding:
            Book.objects.filter(pk=book_id, Available__lt=F('Quantity')).update(Available=F('Available') + 1)

        # 2. Dependent rows, then the user
        reviews, _ = target.reviews.all().delete()
        borrows, _ = target.borrows.all().delete()
        target.delete()

    audit.warning(
        'Force deleted user %s (%s) by %s: %s borrow(s) (%s outstanding), %s review(s)',
        user_id, email, actor.pk, borrows, len(outstanding), reviews,
    )
    return target
