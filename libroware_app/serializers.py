"""Plain-dict views of the models for whatever API layer sits in front."""

from django.utils import timezone


def _iso(value):
    return value.isoformat() if value else None


def user_to_dict(user):
    return {
        'id': user.pk,
        'email': user.email,
        'firstName': user.first_name,
        'lastName': user.last_name,
        'role': user.Role,
        'profilePicture': user.ProfilePicture or None,
        'requiresPasswordChange': bool(user.RequiresPasswordChange),
        'createdAt': _iso(user.date_joined),
    }


def author_to_dict(author):
    return {'id': author.pk, 'name': author.AuthorName}


def category_to_dict(category):
    return {'id': category.pk, 'name': category.CategoryName, 'description': category.Description or None}


def book_to_dict(book):
    return {
        'id': book.pk,
        'title': book.Title,
        'isbn': book.ISBN,
        'description': book.Description or None,
        'publishedAt': _iso(book.PublishedAt),
        'coverImage': book.CoverImage or None,
        'pageCount': book.PageCount,
        'quantity': book.Quantity,
        'available': book.Available,
        'authors': [author_to_dict(a) for a in book.Authors.all()],
        'categories': [category_to_dict(c) for c in book.Categories.all()],
    }


def borrow_to_dict(borrow, now=None):
    now = now or timezone.now()
    return {
        'id': borrow.pk,
        'userId': borrow.UserID_id,
        'bookId': borrow.BookID_id,
        'bookTitle': borrow.BookTitle,
        'borrowedAt': _iso(borrow.BorrowDate),
        'dueDate': _iso(borrow.DueDate),
        'returnedAt': _iso(borrow.ReturnDate),
        'status': borrow.status_at(now),
        'note': borrow.Note or None,
    }


def review_to_dict(review):
    return {
        'id': review.pk,
        'bookId': review.BookID_id,
        'userId': review.UserID_id,
        'rating': review.Rating,
        'comment': review.Comment or None,
        'createdAt': _iso(review.CreatedAt),
    }
