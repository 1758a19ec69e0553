"""
Catalog management: books, authors, categories and reader reviews.

Mutations need a librarian or an administrator (reviews need any active
account); lookups and searches are open to everyone browsing the catalog.
"""

import logging
from datetime import date

from django.db import IntegrityError, transaction
from django.utils.dateparse import parse_date

from . import access
from .exceptions import Conflict, DependencyExists, Forbidden, HasActiveBorrows, InvalidQuantity, NotFound, ValidationError
from .models import Author, Book, Category, Review
from .paging import paginate

logger = logging.getLogger(__name__)

BOOK_FIELDS = {
    'title': 'Title',
    'isbn': 'ISBN',
    'description': 'Description',
    'published_at': 'PublishedAt',
    'cover_image': 'CoverImage',
    'page_count': 'PageCount',
}


def _get(model, pk, lock=False):
    queryset = model.objects.select_for_update() if lock else model.objects.all()
    try:
        return queryset.get(pk=access.coerce_id(pk))
    except model.DoesNotExist:
        raise NotFound(f'{model._meta.verbose_name.capitalize()} not found')


def _resolve_many(model, ids):
    ids = {access.coerce_id(i) for i in ids or ()}
    found = list(model.objects.filter(pk__in=ids))
    missing = ids - {obj.pk for obj in found}
    if missing:
        raise NotFound(f'{model._meta.verbose_name.capitalize()} not found: {sorted(missing)}')
    return found


def _required_text(value, label):
    value = (value or '').strip()
    if not value:
        raise ValidationError(f'{label} is required')
    return value


def _count(value, label, allow_none=False):
    if value is None and allow_none:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f'{label} must be a non-negative integer')
    return value


def _published_at(value):
    if value in (None, ''):
        return None
    if isinstance(value, date):
        return value
    try:
        parsed = parse_date(str(value)[:10])
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError(f'Invalid date format for publishedAt: {value!r}')
    return parsed


# --- Books ---

def get_book(book_id):
    return _get(Book, book_id)


def search_books(search_title=None, skip=0, take=None):
    books = Book.objects.prefetch_related('Authors', 'Categories').order_by('Title')
    if search_title:
        books = books.filter(Title__icontains=str(search_title).strip())
    return paginate(books, skip, take)


def books_by_author(author_id, skip=0, take=None):
    author = _get(Author, author_id)
    return paginate(author.books.order_by('Title'), skip, take)


def books_by_category(category_id, skip=0, take=None):
    category = _get(Category, category_id)
    return paginate(category.books.order_by('Title'), skip, take)


def create_book(ctx, title, isbn, quantity, description='', published_at=None, cover_image='',
                page_count=None, author_ids=(), category_ids=()):
    access.require_staff(ctx)

    title = _required_text(title, 'Title')
    isbn = _required_text(isbn, 'ISBN')
    quantity = _count(quantity, 'Quantity')
    if Book.objects.filter(ISBN=isbn).exists():
        raise Conflict('Book with this ISBN already exists')
    authors = _resolve_many(Author, author_ids)
    categories = _resolve_many(Category, category_ids)

    try:
        with transaction.atomic():
            book = Book.objects.create(
                Title=title,
                ISBN=isbn,
                Description=description or '',
                PublishedAt=_published_at(published_at),
                CoverImage=cover_image or '',
                PageCount=_count(page_count, 'Page count', allow_none=True),
                Quantity=quantity,
                Available=quantity,  # nothing is on loan yet
            )
            book.Authors.set(authors)
            book.Categories.set(categories)
    except IntegrityError:
        raise Conflict('Book with this ISBN already exists')

    logger.info('Book %s "%s" added with %s copies', book.pk, book.Title, book.Quantity)
    return book


def update_book(ctx, book_id, **changes):
    access.require_staff(ctx)

    unknown = set(changes) - set(BOOK_FIELDS) - {'quantity', 'author_ids', 'category_ids'}
    if unknown:
        raise ValidationError(f'Cannot update book fields: {", ".join(sorted(unknown))}')

    try:
        with transaction.atomic():
            book = _get(Book, book_id, lock=True)

            for key, field in BOOK_FIELDS.items():
                if key not in changes:
                    continue
                value = changes[key]
                if key in ('title', 'isbn'):
                    value = _required_text(value, field)
                elif key == 'published_at':
                    value = _published_at(value)
                elif key == 'page_count':
                    value = _count(value, 'Page count', allow_none=True)
                else:
                    value = value or ''
                setattr(book, field, value)

            if 'isbn' in changes and Book.objects.exclude(pk=book.pk).filter(ISBN=book.ISBN).exists():
                raise Conflict('Book with this ISBN already exists')

            if 'quantity' in changes:
                quantity = _count(changes['quantity'], 'Quantity')
                on_loan = book.on_loan
                if quantity < on_loan:
                    raise InvalidQuantity(
                        f'Quantity {quantity} is lower than the {on_loan} copies currently on loan'
                    )
                book.Quantity = quantity
                book.Available = quantity - on_loan

            book.save()

            if changes.get('author_ids') is not None:
                book.Authors.set(_resolve_many(Author, changes['author_ids']))
            if changes.get('category_ids') is not None:
                book.Categories.set(_resolve_many(Category, changes['category_ids']))
    except IntegrityError:
        raise Conflict('Book with this ISBN already exists')

    return book


def delete_book(ctx, book_id):
    access.require_staff(ctx)

    with transaction.atomic():
        book = _get(Book, book_id, lock=True)
        if book.borrows.outstanding().exists():
            raise HasActiveBorrows()
        title = book.Title
        # join rows and reviews go with the book; returned borrows keep BookTitle
        book.delete()

    logger.info('Book %s "%s" deleted', book_id, title)
    return book


# --- Authors ---

def get_author(author_id):
    return _get(Author, author_id)


def search_authors(search_name=None, skip=0, take=None):
    authors = Author.objects.order_by('AuthorName')
    if search_name:
        authors = authors.filter(AuthorName__icontains=str(search_name).strip())
    return paginate(authors, skip, take)


def create_author(ctx, name):
    access.require_staff(ctx)
    return Author.objects.create(AuthorName=_required_text(name, 'Author name'))


def update_author(ctx, author_id, name):
    access.require_staff(ctx)
    author = _get(Author, author_id)
    author.AuthorName = _required_text(name, 'Author name')
    author.save(update_fields=['AuthorName'])
    return author


def delete_author(ctx, author_id):
    access.require_staff(ctx)
    author = _get(Author, author_id)
    if author.books.exists():
        raise DependencyExists('Cannot delete author because they have associated books')
    author.delete()
    return author


# --- Categories ---

def get_category(category_id):
    return _get(Category, category_id)


def list_categories(skip=0, take=None):
    return paginate(Category.objects.order_by('CategoryName'), skip, take)


def _ensure_unique_category(name, exclude_pk=None):
    clash = Category.objects.filter(CategoryName__iexact=name)
    if exclude_pk is not None:
        clash = clash.exclude(pk=exclude_pk)
    if clash.exists():
        raise Conflict('Category with this name already exists')


def create_category(ctx, name, description=''):
    access.require_staff(ctx)
    name = _required_text(name, 'Category name')
    _ensure_unique_category(name)
    return Category.objects.create(CategoryName=name, Description=description or '')


def update_category(ctx, category_id, name=None, description=None):
    access.require_staff(ctx)
    category = _get(Category, category_id)
    if name is not None:
        name = _required_text(name, 'Category name')
        _ensure_unique_category(name, exclude_pk=category.pk)
        category.CategoryName = name
    if description is not None:
        category.Description = description
    category.save()
    return category


def delete_category(ctx, category_id):
    """Remove a category; its books stay in the catalog, just untagged."""
    access.require_staff(ctx)
    category = _get(Category, category_id)
    detached = category.books.count()
    category.delete()
    logger.info('Category "%s" deleted, detached from %s book(s)', category.CategoryName, detached)
    return category


# --- Reviews ---

def book_reviews(book_id, skip=0, take=None):
    book = _get(Book, book_id)
    return paginate(book.reviews.select_related('UserID').order_by('-CreatedAt'), skip, take)


def _rating(value):
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 5:
        raise ValidationError('Rating must be between 1 and 5')
    return value


def _owned_review(ctx, review_id):
    user = access.require_active(ctx)
    review = _get(Review, review_id)
    if review.UserID_id != user.pk and not access.is_staff(user):
        raise Forbidden('You can only change your own reviews')
    return review


def create_review(ctx, book_id, rating, comment=''):
    user = access.require_active(ctx)
    book = _get(Book, book_id)
    rating = _rating(rating)
    if Review.objects.filter(BookID=book, UserID=user).exists():
        raise Conflict('You have already reviewed this book')
    try:
        with transaction.atomic():
            return Review.objects.create(BookID=book, UserID=user, Rating=rating, Comment=comment or '')
    except IntegrityError:
        raise Conflict('You have already reviewed this book')


def update_review(ctx, review_id, rating=None, comment=None):
    review = _owned_review(ctx, review_id)
    if rating is not None:
        review.Rating = _rating(rating)
    if comment is not None:
        review.Comment = comment
    review.save(update_fields=['Rating', 'Comment'])
    return review


def delete_review(ctx, review_id):
    review = _owned_review(ctx, review_id)
    review.delete()
    return review
