from django.contrib.auth.models import Group
from django.core.management.base import BaseCommand

from accounts.roles import Role


class Command(BaseCommand):
    help = "Create the 'Boss' and 'Manager' groups used for back-office roles."

    def handle(self, *args, **options):
        for role in Role:
            group, created = Group.objects.get_or_create(name=role.value)
            state = "created" if created else "already present"
            self.stdout.write(self.style.SUCCESS(f"Group '{group.name}' {state}."))
