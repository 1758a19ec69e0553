from datetime import timedelta

from django.test import TestCase
from django.utils import timezone

from libroware_app import accounts, borrowing, catalog, serializers
from libroware_app.exceptions import DependencyExists, Forbidden, Unavailable
from libroware_app.models import Book, BorrowStatus, User, UserRole


class TypicalDaySystemTest(TestCase):
    def setUp(self):
        # 1. The library's administrator already exists
        self.ava = User.objects.create_superuser(email='ava@libroware.test', password='password123')
        self.now = timezone.now()

    def login(self, email, password='password123'):
        return accounts.authenticate(email, password)['token']

    def request(self, token):
        """Every call builds a fresh context from the bearer token."""
        return accounts.context_from_token(f'Bearer {token}')

    def test_a_typical_day(self):
        """
        Integration test following one day at the desk, from opening the
        catalog to closing a patron's account.
        """
        ava_token = self.login('ava@libroware.test')

        # ==========================================
        # SCENE 1: Ava hires Sarah, who picks a new password
        # ==========================================
        accounts.create_user(self.request(ava_token), 'sarah@libroware.test', 'password123',
                             'Sarah', 'Connor', role=UserRole.LIBRARIAN)
        sarah_token = self.login('sarah@libroware.test')
        sarah_token = accounts.change_password(self.request(sarah_token), 'password123', 'desk-secret-1')['token']

        # ==========================================
        # SCENE 2: Sarah stocks the shelves
        # ==========================================
        ctx = self.request(sarah_token)
        tech = catalog.create_category(ctx, 'Technology')
        doe = catalog.create_author(ctx, 'John Doe')
        book = catalog.create_book(ctx, 'Python for Beginners', '123456789', 2,
                                   author_ids=[doe.pk], category_ids=[tech.pk])
        self.assertEqual(serializers.book_to_dict(book)['available'], 2)

        # ==========================================
        # SCENE 3: Alex signs up, searches and borrows
        # ==========================================
        alex_token = accounts.register('alex@libroware.test', 'password123', 'Alex', 'Murphy')['token']
        ctx = self.request(alex_token)
        alex = ctx.user
        self.assertEqual(serializers.user_to_dict(alex)['role'], UserRole.USER)

        found = catalog.search_books('python')
        self.assertEqual([b.Title for b in found], ['Python for Beginners'])

        borrow = borrowing.create_borrow(ctx, alex.pk, book.pk, self.now + timedelta(days=7))
        self.assertEqual(Book.objects.get(pk=book.pk).Available, 1)

        # Alex cannot see the desk's full borrow list
        with self.assertRaises(Forbidden):
            borrowing.list_borrows(self.request(alex_token))

        # ==========================================
        # SCENE 4: Sarah lends the last copy; the shelf is empty
        # ==========================================
        ctx = self.request(sarah_token)
        borrowing.create_borrow(ctx, alex.pk, book.pk, self.now + timedelta(days=3))
        with self.assertRaises(Unavailable):
            borrowing.create_borrow(ctx, alex.pk, book.pk, self.now + timedelta(days=3))

        # ==========================================
        # SCENE 5: Five days later, one loan is overdue
        # ==========================================
        later = self.now + timedelta(days=5)
        overdue = borrowing.overdue_borrows(self.request(sarah_token), now=later)
        self.assertEqual(len(overdue), 1)
        self.assertEqual(serializers.borrow_to_dict(overdue[0], now=later)['status'], BorrowStatus.OVERDUE)

        # Alex returns the first loan
        returned = borrowing.return_borrow(self.request(alex_token), borrow.pk, now=later)
        self.assertEqual(returned.Status, BorrowStatus.RETURNED)
        review = catalog.create_review(self.request(alex_token), book.pk, 5, 'Clear and friendly')
        self.assertEqual(serializers.review_to_dict(review)['rating'], 5)
        self.assertEqual(Book.objects.get(pk=book.pk).Available, 1)

        # ==========================================
        # SCENE 6: Alex leaves; Sarah closes the account
        # ==========================================
        ctx = self.request(sarah_token)
        with self.assertRaises(DependencyExists):
            accounts.delete_user(ctx, alex.pk)

        summary = accounts.prepare_force_delete(ctx, alex.pk)
        self.assertEqual(summary['active_borrows'], 1)
        accounts.force_delete_user(self.request(sarah_token), alex.pk, summary['confirmation'])

        self.assertFalse(User.objects.filter(pk=alex.pk).exists())
        self.assertEqual(Book.objects.get(pk=book.pk).Available, 2)

        # Alex's old token no longer opens anything
        with self.assertRaises(Forbidden):
            self.request(alex_token)
