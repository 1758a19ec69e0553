"""
Domain errors raised by the catalog, borrowing and account services.

Services never let ORM exceptions escape; the API layer only has to map
``LibraryError.code`` to its own status codes and show ``message``.
"""


class LibraryError(Exception):
    code = 'LIBRARY_ERROR'
    default_message = 'Library operation failed'

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def as_dict(self):
        return {'code': self.code, 'message': self.message}


class NotFound(LibraryError):
    code = 'NOT_FOUND'
    default_message = 'Record not found'


class ValidationError(LibraryError):
    code = 'VALIDATION_ERROR'
    default_message = 'Invalid input'


class InvalidDueDate(ValidationError):
    code = 'INVALID_DUE_DATE'
    default_message = 'Due date is outside the allowed loan window'


class InvalidQuantity(ValidationError):
    code = 'INVALID_QUANTITY'
    default_message = 'Quantity cannot be lower than the number of copies on loan'


class Conflict(LibraryError):
    code = 'CONFLICT'
    default_message = 'Conflicting state'


class Unavailable(Conflict):
    code = 'UNAVAILABLE'
    default_message = 'Book is not available for borrowing'


class AlreadyReturned(Conflict):
    code = 'ALREADY_RETURNED'
    default_message = 'Book is already returned'


class DuplicateEmail(Conflict):
    code = 'DUPLICATE_EMAIL'
    default_message = 'User with this email already exists'


class Forbidden(LibraryError):
    code = 'FORBIDDEN'
    default_message = 'Not authorized'


class PasswordChangeRequired(Forbidden):
    code = 'PASSWORD_CHANGE_REQUIRED'
    default_message = 'Password must be changed before continuing'


class DependencyExists(LibraryError):
    code = 'DEPENDENCY_EXISTS'
    default_message = 'Record is still referenced by other records'


class HasActiveBorrows(DependencyExists):
    code = 'HAS_ACTIVE_BORROWS'
    default_message = 'Cannot delete book because it is currently borrowed'


class CannotDeleteSelf(LibraryError):
    code = 'CANNOT_DELETE_SELF'
    default_message = 'You cannot delete your own account'


class InvalidCredentials(LibraryError):
    code = 'INVALID_CREDENTIALS'
    default_message = 'Invalid email or password'
