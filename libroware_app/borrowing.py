"""
Borrow lifecycle: lending a copy, taking it back, and reading loan history.

Book.Available is only ever changed here, always in the same transaction as
the Borrow row it accounts for. The decrement and the increment are guarded
conditional UPDATEs, so the database (not a Python lock) decides who gets
the last copy when several requests race for it. An attempt that runs into
a database lock is rolled back and retried, and callers only ever see the
domain errors from .exceptions.
"""

import logging
import random
from datetime import date, datetime, time, timedelta
from time import sleep

from django.conf import settings
from django.db import OperationalError, transaction
from django.db.models import F
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from . import access
from .exceptions import AlreadyReturned, Conflict, InvalidDueDate, NotFound, Unavailable, ValidationError
from .models import Book, Borrow, BorrowStatus, User
from .paging import paginate

logger = logging.getLogger(__name__)


# --- Due dates ---

def _to_aware(value):
    if timezone.is_naive(value):
        return timezone.make_aware(value)
    return value


def coerce_due_date(value):
    """Accept a datetime, a date (end of that day) or an ISO-8601 string."""
    if isinstance(value, str):
        try:
            parsed = parse_datetime(value) or parse_date(value)
        except ValueError:
            parsed = None
        if parsed is None:
            raise InvalidDueDate(f'Invalid due date: {value!r}')
        value = parsed
    if isinstance(value, datetime):
        return _to_aware(value)
    if isinstance(value, date):
        return _to_aware(datetime.combine(value, time(23, 59, 59)))
    raise InvalidDueDate('Due date is required')


def validate_due_date(due_date, now=None):
    """
    A loan is due tomorrow at the earliest and LIBROWARE_MAX_LOAN_DAYS days
    from today at the latest (calendar days in the current time zone).
    """
    now = now or timezone.now()
    due = coerce_due_date(due_date)

    today = timezone.localdate(now)
    earliest = today + timedelta(days=1)
    latest = today + timedelta(days=settings.LIBROWARE_MAX_LOAN_DAYS)
    due_day = timezone.localdate(due)

    if due <= now or due_day < earliest:
        raise InvalidDueDate(f'Due date must be on or after {earliest.isoformat()}')
    if due_day > latest:
        raise InvalidDueDate(
            f'Due date cannot be more than {settings.LIBROWARE_MAX_LOAN_DAYS} days ahead ({latest.isoformat()})'
        )
    return due


def _filter_status(queryset, status, now):
    if status not in BorrowStatus.values:
        raise ValidationError(f'Unknown borrow status: {status!r}')
    return queryset.with_status(status, now)


def _get_borrow(borrow_id, lock=False):
    queryset = Borrow.objects.select_for_update() if lock else Borrow.objects.select_related('UserID', 'BookID')
    try:
        return queryset.get(pk=access.coerce_id(borrow_id, 'borrow id'))
    except Borrow.DoesNotExist:
        raise NotFound('Borrow record not found')


def _atomic_with_retry(work, exhausted):
    """
    Run ``work()`` in its own transaction. A database lock conflict rolls the
    whole attempt back and runs it again after a short jittered pause; once
    LIBROWARE_DB_RETRY_ATTEMPTS are used up ``exhausted`` is raised instead.
    Domain errors raised by ``work()`` are never retried.
    """
    attempts = settings.LIBROWARE_DB_RETRY_ATTEMPTS
    for attempt in range(1, attempts + 1):
        try:
            with transaction.atomic():
                return work()
        except OperationalError as e:
            logger.debug('Attempt %s/%s hit a database lock: %s', attempt, attempts, e)
            if attempt < attempts:
                sleep(random.uniform(0, settings.LIBROWARE_DB_RETRY_DELAY * attempt))
    logger.warning('Gave up after %s locked attempts: %s', attempts, exhausted.message)
    raise exhausted


# --- Lending ---

def create_borrow(ctx, user_id, book_id, due_date, note=None, now=None):
    now = now or timezone.now()
    access.require_self_or_staff(ctx, user_id)
    user_id = access.coerce_id(user_id, 'user id')
    book_id = access.coerce_id(book_id, 'book id')

    def lend():
        # 1. Both ends of the loan must exist
        try:
            borrower = User.objects.get(pk=user_id)
        except User.DoesNotExist:
            raise NotFound('User not found')
        try:
            book = Book.objects.get(pk=book_id)
        except Book.DoesNotExist:
            raise NotFound('Book not found')

        due = validate_due_date(due_date, now)

        # 2. Take a copy off the shelf; check and decrement are one statement
        taken = Book.objects.filter(pk=book.pk, Available__gt=0).update(Available=F('Available') - 1)
        if not taken:
            raise Unavailable(f'"{book.Title}" is not available for borrowing')

        # 3. Record the loan
        borrow = Borrow.objects.create(
            UserID=borrower,
            BookID=book,
            BookTitle=book.Title,
            BorrowDate=now,
            DueDate=due,
            Status=BorrowStatus.BORROWED,
            Note=note or '',
        )
        left = Book.objects.values_list('Available', flat=True).get(pk=book.pk)
        return borrow, left

    borrow, left = _atomic_with_retry(lend, Unavailable('The book is busy, no copy could be reserved'))
    logger.info('Borrow %s: user %s took "%s" (due %s, %s left)',
                borrow.pk, user_id, borrow.BookTitle, borrow.DueDate.isoformat(), left)
    return borrow


def return_borrow(ctx, borrow_id, now=None):
    now = now or timezone.now()
    access.require_active(ctx)

    def take_back():
        borrow = _get_borrow(borrow_id, lock=True)
        access.require_self_or_staff(ctx, borrow.UserID_id)

        # 1. Close the loan; only one caller can flip ReturnDate from NULL
        closed = Borrow.objects.filter(pk=borrow.pk, ReturnDate__isnull=True).update(
            ReturnDate=now, Status=BorrowStatus.RETURNED
        )
        if not closed:
            raise AlreadyReturned()
        borrow.ReturnDate = now
        borrow.Status = BorrowStatus.RETURNED

        # 2. Put the copy back, never above Quantity
        if borrow.BookID_id is not None:
            Book.objects.filter(pk=borrow.BookID_id, Available__lt=F('Quantity')).update(
                Available=F('Available') + 1
            )
        return borrow

    borrow = _atomic_with_retry(take_back, Conflict('The borrow record is busy, try the return again'))
    logger.info('Borrow %s returned by user %s', borrow.pk, borrow.UserID_id)
    return borrow


def update_borrow(ctx, borrow_id, due_date=None, note=None, now=None):
    """Extend/shorten a running loan or edit its note."""
    now = now or timezone.now()
    access.require_staff(ctx)

    with transaction.atomic():
        borrow = _get_borrow(borrow_id, lock=True)
        if borrow.ReturnDate is not None:
            raise AlreadyReturned('Returned borrows cannot be changed')

        fields = []
        if due_date is not None:
            borrow.DueDate = validate_due_date(due_date, now)
            # a swept Overdue no longer holds once the due date moves
            borrow.Status = BorrowStatus.BORROWED
            fields += ['DueDate', 'Status']
        if note is not None:
            borrow.Note = note
            fields.append('Note')
        if fields:
            borrow.save(update_fields=fields)

    return borrow


# --- Reading ---

def get_borrow(ctx, borrow_id):
    access.require_active(ctx)
    borrow = _get_borrow(borrow_id)
    access.require_self_or_staff(ctx, borrow.UserID_id)
    return borrow


def list_borrows(ctx, status=None, skip=0, take=None, now=None):
    access.require_staff(ctx)
    now = now or timezone.now()
    borrows = Borrow.objects.select_related('UserID', 'BookID').order_by('-BorrowDate')
    if status:
        borrows = _filter_status(borrows, status, now)
    return paginate(borrows, skip, take)


def list_user_borrows(ctx, user_id, status=None, now=None):
    access.require_self_or_staff(ctx, user_id)
    user_id = access.coerce_id(user_id, 'user id')
    now = now or timezone.now()
    if not User.objects.filter(pk=user_id).exists():
        raise NotFound('User not found')
    borrows = Borrow.objects.filter(UserID_id=user_id).select_related('BookID').order_by('-BorrowDate')
    if status:
        borrows = _filter_status(borrows, status, now)
    return list(borrows)


def overdue_borrows(ctx, now=None):
    access.require_staff(ctx)
    return list(Borrow.objects.overdue(now).select_related('UserID', 'BookID').order_by('DueDate'))


# --- Reconciliation ---

def sweep_overdue(now=None):
    """
    Stamp Status=Overdue on outstanding past-due borrows so the column can be
    indexed. Readers never depend on it; Borrow.status_at() is authoritative.
    """
    now = now or timezone.now()
    count = Borrow.objects.overdue(now).filter(Status=BorrowStatus.BORROWED).update(Status=BorrowStatus.OVERDUE)
    if count:
        logger.info('Marked %s borrow(s) as overdue', count)
    return count
