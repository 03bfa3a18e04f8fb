from django.core.management.base import BaseCommand

from expenses.services import seed_default_types


class Command(BaseCommand):
    help = "Create the restricted expense types (Salary) used by the back office."

    def handle(self, *args, **options):
        for expense_type in seed_default_types():
            self.stdout.write(self.style.SUCCESS(f"Expense type '{expense_type.name}' is restricted."))
