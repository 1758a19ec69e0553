from django.conf import settings

from .exceptions import ValidationError


def paginate(queryset, skip=0, take=None):
    """Apply skip/take to a queryset, validating both against the page limits."""
    if take is None:
        take = settings.LIBROWARE_DEFAULT_PAGE_SIZE
    if skip < 0:
        raise ValidationError('skip must not be negative')
    if not 1 <= take <= settings.LIBROWARE_MAX_PAGE_SIZE:
        raise ValidationError(f'take must be between 1 and {settings.LIBROWARE_MAX_PAGE_SIZE}')
    return list(queryset[skip:skip + take])
