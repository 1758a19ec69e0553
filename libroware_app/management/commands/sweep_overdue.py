from django.core.management.base import BaseCommand

from libroware_app.borrowing import sweep_overdue


class Command(BaseCommand):
    help = 'Mark outstanding past-due borrows as Overdue (index optimisation only)'

    def handle(self, *args, **kwargs):
        count = sweep_overdue()
        self.stdout.write(self.style.SUCCESS('--- Overdue sweep finished ---'))
        self.stdout.write(f'Borrows marked overdue: {count}')
