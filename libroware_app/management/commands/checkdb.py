from django.core.management.base import BaseCommand
from django.db import connection
from django.db.models import Count, F, Q

from libroware_app.models import Book, Borrow, User


class Command(BaseCommand):
    help = 'Check current database connection and that book availability matches outstanding loans'

    def handle(self, *args, **kwargs):
        db_engine = connection.settings_dict['ENGINE']
        db_name = connection.settings_dict['NAME']
        self.stdout.write(self.style.SUCCESS('--- Database Connection Info ---'))
        self.stdout.write(f'Current Engine: {db_engine}')
        self.stdout.write(f'Current DB Name: {db_name}')
        self.stdout.write(f'Users: {User.objects.count()}  Books: {Book.objects.count()}  Borrows: {Borrow.objects.count()}')

        drifted = (
            Book.objects
            .annotate(outstanding=Count('borrows', filter=Q(borrows__ReturnDate__isnull=True)))
            .exclude(Available=F('Quantity') - F('outstanding'))
            .order_by('pk')
        )
        for book in drifted:
            self.stdout.write(self.style.WARNING(
                f'Book {book.pk} "{book.Title}": Available={book.Available}, '
                f'expected {book.Quantity - book.outstanding}'
            ))
        if not drifted:
            self.stdout.write('Availability matches outstanding loans')
        self.stdout.write(self.style.SUCCESS('-------------------------------'))
