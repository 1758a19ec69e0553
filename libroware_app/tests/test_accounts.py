"""
Account tests: logging in, managing people and the force-delete flow.

Story: Ava (Admin) runs the library, Sarah (Librarian) manages patrons at
the desk, Alex is a patron with books out.
"""

from django.test import override_settings

from libroware_app import accounts, borrowing, catalog
from libroware_app.access import RequestContext
from libroware_app.exceptions import (
    CannotDeleteSelf,
    DependencyExists,
    DuplicateEmail,
    Forbidden,
    InvalidCredentials,
    NotFound,
    PasswordChangeRequired,
    ValidationError,
)
from libroware_app.models import Book, Borrow, Review, User, UserRole

from .base import LibraryTestBase


# =============================================================================
# LOGIN / TOKENS
# =============================================================================

class AuthenticationTest(LibraryTestBase):

    def test_login_returns_token_for_the_user(self):
        result = accounts.authenticate('alex@libroware.test', 'password123')
        self.assertEqual(result['user'], self.alex)

        ctx = accounts.context_from_token(result['token'])
        self.assertEqual(ctx.user, self.alex)
        self.assertTrue(ctx.is_authenticated)

    def test_email_is_case_insensitive(self):
        result = accounts.authenticate('  Alex@LibroWare.test ', 'password123')
        self.assertEqual(result['user'], self.alex)

    def test_bad_credentials_are_audited(self):
        with self.assertLogs('libroware_app.audit', level='WARNING') as logs:
            with self.assertRaises(InvalidCredentials):
                accounts.authenticate('alex@libroware.test', 'wrong-password')
            with self.assertRaises(InvalidCredentials):
                accounts.authenticate('nobody@libroware.test', 'password123')
        self.assertEqual(len(logs.output), 2)

    def test_missing_token_is_anonymous(self):
        ctx = accounts.context_from_token(None)
        self.assertFalse(ctx.is_authenticated)
        self.assertIsNone(ctx.user)

    def test_bearer_prefix_is_accepted(self):
        token = accounts.issue_token(self.sarah)
        self.assertEqual(accounts.context_from_token(f'Bearer {token}').user, self.sarah)

    def test_tampered_token_is_rejected(self):
        with self.assertRaises(Forbidden):
            accounts.context_from_token('not-a-token')
        with self.assertRaises(Forbidden):
            accounts.context_from_token(accounts.issue_token(self.alex) + 'x')

    @override_settings(LIBROWARE_TOKEN_MAX_AGE=-1)
    def test_expired_token_is_rejected(self):
        with self.assertRaises(Forbidden):
            accounts.context_from_token(accounts.issue_token(self.alex))

    def test_password_change_revokes_old_tokens(self):
        old_token = accounts.issue_token(self.alex)
        result = accounts.change_password(self.alex_ctx, 'password123', 'a-brand-new-secret')

        with self.assertRaises(Forbidden):
            accounts.context_from_token(old_token)
        self.assertEqual(accounts.context_from_token(result['token']).user, self.alex)

    def test_deactivated_user_cannot_log_in(self):
        User.objects.filter(pk=self.intruder.pk).update(is_active=False)
        with self.assertRaises(InvalidCredentials):
            accounts.authenticate('intruder@libroware.test', 'password123')


# =============================================================================
# REGISTRATION / CREATION / PASSWORDS
# =============================================================================

class UserCreationTest(LibraryTestBase):

    def test_register_creates_an_active_patron(self):
        result = accounts.register('New.Reader@Libroware.test', 'password123', 'New', 'Reader')
        user = result['user']

        self.assertEqual(user.email, 'new.reader@libroware.test')
        self.assertEqual(user.Role, UserRole.USER)
        self.assertFalse(user.RequiresPasswordChange)
        self.assertEqual(accounts.context_from_token(result['token']).user, user)

    def test_register_validation(self):
        with self.assertRaises(DuplicateEmail):
            accounts.register('ALEX@libroware.test', 'password123')
        with self.assertRaises(ValidationError):
            accounts.register('not-an-email', 'password123')
        with self.assertRaises(ValidationError):
            accounts.register('short@libroware.test', 'short')

    def test_librarian_creates_patrons_only(self):
        patron = accounts.create_user(self.sarah_ctx, 'patron@libroware.test', 'password123', 'Pat', 'Ron')
        self.assertEqual(patron.Role, UserRole.USER)
        self.assertTrue(patron.RequiresPasswordChange)

        for role in (UserRole.LIBRARIAN, UserRole.ADMIN):
            with self.subTest(role=role):
                with self.assertRaises(Forbidden):
                    accounts.create_user(self.sarah_ctx, f'{role.lower()}@libroware.test', 'password123', role=role)

    def test_admin_creates_staff(self):
        librarian = accounts.create_user(self.ava_ctx, 'desk@libroware.test', 'password123', role=UserRole.LIBRARIAN)
        self.assertEqual(librarian.Role, UserRole.LIBRARIAN)
        with self.assertRaises(ValidationError):
            accounts.create_user(self.ava_ctx, 'odd@libroware.test', 'password123', role='Janitor')

    def test_patron_cannot_create_accounts(self):
        with self.assertRaises(Forbidden):
            accounts.create_user(self.alex_ctx, 'friend@libroware.test', 'password123')

    def test_forced_password_change_flow(self):
        patron = accounts.create_user(self.sarah_ctx, 'patron@libroware.test', 'password123')
        ctx = accounts.context_from_token(accounts.authenticate('patron@libroware.test', 'password123')['token'])

        # can see their profile, nothing else
        self.assertEqual(accounts.me(ctx), patron)
        with self.assertRaises(PasswordChangeRequired):
            borrowing.create_borrow(ctx, patron.pk, self.book.pk, self.due())

        with self.assertRaises(InvalidCredentials):
            accounts.change_password(ctx, 'not-my-password', 'my-own-secret')
        result = accounts.change_password(ctx, 'password123', 'my-own-secret')

        ctx = accounts.context_from_token(result['token'])
        self.assertFalse(ctx.user.RequiresPasswordChange)
        borrowing.create_borrow(ctx, patron.pk, self.book.pk, self.due())

    def test_reset_password_forces_a_change(self):
        with self.assertLogs('libroware_app.audit', level='INFO'):
            accounts.set_password(self.sarah_ctx, self.alex.pk, 'temporary-pass')

        self.alex.refresh_from_db()
        self.assertTrue(self.alex.RequiresPasswordChange)
        self.assertTrue(self.alex.check_password('temporary-pass'))

    def test_reset_password_rules(self):
        with self.assertRaises(Forbidden):
            accounts.set_password(self.sarah_ctx, self.sarah.pk, 'temporary-pass')
        with self.assertRaises(Forbidden):
            accounts.set_password(self.sarah_ctx, self.ava.pk, 'temporary-pass')
        with self.assertRaises(Forbidden):
            accounts.set_password(self.alex_ctx, self.intruder.pk, 'temporary-pass')


# =============================================================================
# READING / UPDATING
# =============================================================================

class UserUpdateTest(LibraryTestBase):

    def test_me_and_get_user(self):
        self.assertEqual(accounts.me(self.alex_ctx), self.alex)
        self.assertEqual(accounts.get_user(self.alex_ctx, self.alex.pk), self.alex)
        self.assertEqual(accounts.get_user(self.sarah_ctx, self.alex.pk), self.alex)
        with self.assertRaises(Forbidden):
            accounts.get_user(self.intruder_ctx, self.alex.pk)
        with self.assertRaises(NotFound):
            accounts.get_user(self.sarah_ctx, 999999)
        with self.assertRaises(Forbidden):
            accounts.me(RequestContext())

    def test_list_users_is_staff_only(self):
        self.assertEqual(len(accounts.list_users(self.sarah_ctx, take=100)), 4)
        with self.assertRaises(Forbidden):
            accounts.list_users(self.alex_ctx)

    def test_patron_updates_own_profile(self):
        user = accounts.update_user(self.alex_ctx, self.alex.pk, first_name='Alexander', email='AlexM@libroware.test')
        self.assertEqual(user.first_name, 'Alexander')
        self.assertEqual(user.email, 'alexm@libroware.test')
        self.assertEqual(user.full_name, 'Alexander Murphy')

    def test_patron_cannot_promote_themselves(self):
        with self.assertRaises(Forbidden):
            accounts.update_user(self.alex_ctx, self.alex.pk, role=UserRole.ADMIN)
        self.alex.refresh_from_db()
        self.assertEqual(self.alex.Role, UserRole.USER)

    def test_patron_cannot_edit_someone_else(self):
        with self.assertRaises(Forbidden):
            accounts.update_user(self.intruder_ctx, self.alex.pk, first_name='Hacked')

    def test_role_changes_follow_the_management_table(self):
        with self.assertRaises(Forbidden):
            accounts.update_user(self.sarah_ctx, self.alex.pk, role=UserRole.LIBRARIAN)
        with self.assertRaises(Forbidden):
            accounts.update_user(self.sarah_ctx, self.ava.pk, first_name='Demoted')

        user = accounts.update_user(self.ava_ctx, self.alex.pk, role=UserRole.LIBRARIAN)
        self.assertEqual(user.Role, UserRole.LIBRARIAN)

    def test_update_validation(self):
        with self.assertRaises(DuplicateEmail):
            accounts.update_user(self.sarah_ctx, self.alex.pk, email='intruder@libroware.test')
        with self.assertRaises(ValidationError):
            accounts.update_user(self.sarah_ctx, self.alex.pk, password='sneaky')


# =============================================================================
# DELETING
# =============================================================================

class UserDeletionTest(LibraryTestBase):

    def test_librarian_cannot_delete_an_admin(self):
        with self.assertRaises(Forbidden):
            accounts.delete_user(self.sarah_ctx, self.ava.pk)
        self.assertTrue(User.objects.filter(pk=self.ava.pk).exists())

    def test_librarian_deletes_patron_without_history(self):
        with self.assertLogs('libroware_app.audit', level='INFO'):
            accounts.delete_user(self.sarah_ctx, self.intruder.pk)
        self.assertFalse(User.objects.filter(pk=self.intruder.pk).exists())

    def test_patron_with_a_loan_needs_force_delete(self):
        borrowing.create_borrow(self.sarah_ctx, self.alex.pk, self.book.pk, self.due())
        catalog.create_review(self.alex_ctx, self.book.pk, 4)

        with self.assertRaises(DependencyExists):
            accounts.delete_user(self.sarah_ctx, self.alex.pk)

        summary = accounts.prepare_force_delete(self.sarah_ctx, self.alex.pk)
        self.assertEqual((summary['borrows'], summary['active_borrows'], summary['reviews']), (1, 1, 1))

        with self.assertLogs('libroware_app.audit', level='WARNING'):
            accounts.force_delete_user(self.sarah_ctx, self.alex.pk, summary['confirmation'])

        self.assertFalse(User.objects.filter(pk=self.alex.pk).exists())
        self.assertFalse(Borrow.objects.exists())
        self.assertFalse(Review.objects.exists())
        self.assertEqual(Book.objects.get(pk=self.book.pk).Available, 3)

    def test_returned_loans_do_not_touch_availability_on_force_delete(self):
        borrow = borrowing.create_borrow(self.sarah_ctx, self.alex.pk, self.book.pk, self.due())
        borrowing.return_borrow(self.sarah_ctx, borrow.pk)
        borrowing.create_borrow(self.sarah_ctx, self.intruder.pk, self.book.pk, self.due())

        summary = accounts.prepare_force_delete(self.ava_ctx, self.alex.pk)
        self.assertEqual(summary['active_borrows'], 0)
        accounts.force_delete_user(self.ava_ctx, self.alex.pk, summary['confirmation'])

        self.assertEqual(Book.objects.get(pk=self.book.pk).Available, 2)

    def test_nobody_deletes_themselves(self):
        with self.assertRaises(CannotDeleteSelf):
            accounts.delete_user(self.ava_ctx, self.ava.pk)
        with self.assertRaises(CannotDeleteSelf):
            accounts.prepare_force_delete(self.ava_ctx, self.ava.pk)
        with self.assertRaises(CannotDeleteSelf):
            accounts.force_delete_user(self.ava_ctx, str(self.ava.pk), 'anything')

    def test_force_delete_needs_a_matching_confirmation(self):
        borrowing.create_borrow(self.sarah_ctx, self.alex.pk, self.book.pk, self.due())

        with self.assertRaises(Forbidden):
            accounts.force_delete_user(self.sarah_ctx, self.alex.pk, None)
        with self.assertRaises(Forbidden):
            accounts.force_delete_user(self.sarah_ctx, self.alex.pk, 'forged')

        # issued for another target or another actor
        other_target = accounts.prepare_force_delete(self.sarah_ctx, self.intruder.pk)['confirmation']
        with self.assertRaises(Forbidden):
            accounts.force_delete_user(self.sarah_ctx, self.alex.pk, other_target)
        other_actor = accounts.prepare_force_delete(self.ava_ctx, self.alex.pk)['confirmation']
        with self.assertRaises(Forbidden):
            accounts.force_delete_user(self.sarah_ctx, self.alex.pk, other_actor)

        self.assertTrue(User.objects.filter(pk=self.alex.pk).exists())
        self.assertEqual(Book.objects.get(pk=self.book.pk).Available, 2)

    @override_settings(LIBROWARE_FORCE_DELETE_MAX_AGE=-1)
    def test_force_delete_confirmation_expires(self):
        confirmation = accounts.prepare_force_delete(self.sarah_ctx, self.alex.pk)['confirmation']
        with self.assertRaises(Forbidden):
            accounts.force_delete_user(self.sarah_ctx, self.alex.pk, confirmation)

    def test_librarian_cannot_force_delete_staff(self):
        with self.assertRaises(Forbidden):
            accounts.prepare_force_delete(self.sarah_ctx, self.ava.pk)

    def test_malformed_user_ids_are_validation_errors(self):
        with self.assertRaises(ValidationError):
            accounts.get_user(self.sarah_ctx, 'abc')
        with self.assertRaises(ValidationError):
            accounts.delete_user(self.sarah_ctx, 'abc')
        with self.assertRaises(ValidationError):
            accounts.force_delete_user(self.sarah_ctx, 'abc', 'anything')
        self.assertEqual(User.objects.count(), 4)

    def test_force_delete_accepts_a_numeric_string_id(self):
        confirmation = accounts.prepare_force_delete(self.sarah_ctx, self.intruder.pk)['confirmation']
        accounts.force_delete_user(self.sarah_ctx, str(self.intruder.pk), confirmation)
        self.assertFalse(User.objects.filter(pk=self.intruder.pk).exists())
