from django.conf import settings
from django.contrib.auth.models import AbstractUser, BaseUserManager
from django.db import models
from django.db.models import F, Q
from django.utils import timezone


class UserRole(models.TextChoices):
    USER = 'User', 'User'
    LIBRARIAN = 'Librarian', 'Librarian'
    ADMIN = 'Admin', 'Admin'


class UserManager(BaseUserManager):
    use_in_migrations = True

    def _create_user(self, email, password, **extra_fields):
        if not email:
            raise ValueError('The email address must be set')
        user = self.model(email=self.normalize_email(email).lower(), **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_user(self, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', False)
        extra_fields.setdefault('is_superuser', False)
        return self._create_user(email, password, **extra_fields)

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('Role', UserRole.ADMIN)
        extra_fields.setdefault('RequiresPasswordChange', False)
        return self._create_user(email, password, **extra_fields)


class User(AbstractUser):
    # email is the login identity
    username = None
    email = models.EmailField('email address', unique=True)
    Role = models.CharField(max_length=20, choices=UserRole.choices, default=UserRole.USER)
    ProfilePicture = models.CharField(max_length=500, blank=True, default='')
    RequiresPasswordChange = models.BooleanField(default=True)

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = UserManager()

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    def __str__(self): return self.email


class Author(models.Model):
    AuthorName = models.CharField(max_length=255)

    class Meta:
        ordering = ['AuthorName']

    def __str__(self): return self.AuthorName


class Category(models.Model):
    CategoryName = models.CharField(max_length=100, unique=True)
    Description = models.TextField(blank=True, default='')

    class Meta:
        ordering = ['CategoryName']
        verbose_name_plural = 'categories'

    def __str__(self): return self.CategoryName


class Book(models.Model):
    Title = models.CharField(max_length=255)
    ISBN = models.CharField(max_length=20, unique=True)
    Description = models.TextField(blank=True, default='')
    PublishedAt = models.DateField(null=True, blank=True)
    CoverImage = models.CharField(max_length=500, blank=True, default='')
    PageCount = models.PositiveIntegerField(null=True, blank=True)

    # Quantity = copies owned, Available = copies not on loan.
    # Available is only moved by the borrowing service.
    Quantity = models.PositiveIntegerField(default=1)
    Available = models.PositiveIntegerField(default=1)

    Authors = models.ManyToManyField(Author, related_name='books', blank=True)
    Categories = models.ManyToManyField(Category, related_name='books', blank=True)

    class Meta:
        ordering = ['Title']
        constraints = [
            models.CheckConstraint(
                condition=Q(Available__gte=0) & Q(Available__lte=F('Quantity')),
                name='book_available_within_quantity',
            ),
        ]

    @property
    def on_loan(self):
        return self.Quantity - self.Available

    def __str__(self): return self.Title


class BorrowStatus(models.TextChoices):
    BORROWED = 'Borrowed', 'Borrowed'
    RETURNED = 'Returned', 'Returned'
    # only ever stored by the overdue sweep; readers derive it with status_at()
    OVERDUE = 'Overdue', 'Overdue'


class BorrowQuerySet(models.QuerySet):
    def outstanding(self):
        return self.filter(ReturnDate__isnull=True)

    def returned(self):
        return self.filter(ReturnDate__isnull=False)

    def overdue(self, now=None):
        return self.outstanding().filter(DueDate__lt=now or timezone.now())

    def with_status(self, status, now=None):
        """Filter on the derived status rather than the stored column."""
        now = now or timezone.now()
        if status == BorrowStatus.RETURNED:
            return self.returned()
        if status == BorrowStatus.OVERDUE:
            return self.overdue(now)
        if status == BorrowStatus.BORROWED:
            return self.outstanding().filter(DueDate__gte=now)
        raise ValueError(f'Unknown borrow status: {status!r}')


class Borrow(models.Model):
    UserID = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='borrows')
    # history outlives the book; the title snapshot keeps it readable
    BookID = models.ForeignKey(Book, on_delete=models.SET_NULL, null=True, blank=True, related_name='borrows')
    BookTitle = models.CharField(max_length=255, blank=True, default='')

    BorrowDate = models.DateTimeField(default=timezone.now)
    DueDate = models.DateTimeField()
    ReturnDate = models.DateTimeField(null=True, blank=True)
    Status = models.CharField(max_length=20, choices=BorrowStatus.choices, default=BorrowStatus.BORROWED)
    Note = models.TextField(blank=True, default='')

    objects = BorrowQuerySet.as_manager()

    class Meta:
        ordering = ['-BorrowDate']
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(ReturnDate__isnull=False, Status='Returned')
                    | (Q(ReturnDate__isnull=True) & ~Q(Status='Returned'))
                ),
                name='borrow_returned_iff_return_date',
            ),
        ]

    def status_at(self, now=None):
        if self.ReturnDate is not None:
            return BorrowStatus.RETURNED
        if (now or timezone.now()) > self.DueDate:
            return BorrowStatus.OVERDUE
        return BorrowStatus.BORROWED

    @property
    def current_status(self):
        return self.status_at()

    def is_overdue(self, now=None):
        return self.status_at(now) == BorrowStatus.OVERDUE

    def __str__(self):
        return f"{self.UserID.email} borrowed {self.BookTitle} ({self.current_status})"


class Review(models.Model):
    BookID = models.ForeignKey(Book, on_delete=models.CASCADE, related_name='reviews')
    UserID = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='reviews')
    Rating = models.PositiveSmallIntegerField()
    Comment = models.TextField(blank=True, default='')
    CreatedAt = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-CreatedAt']
        constraints = [
            models.UniqueConstraint(fields=['BookID', 'UserID'], name='one_review_per_user_per_book'),
            models.CheckConstraint(
                condition=Q(Rating__gte=1) & Q(Rating__lte=5),
                name='review_rating_between_1_and_5',
            ),
        ]

    def __str__(self):
        return f"{self.UserID.email} rated {self.BookID.Title} {self.Rating}/5"
