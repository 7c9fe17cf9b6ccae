"""
Management command to expire passes whose validity window has closed.

This command should be run periodically (e.g., every few minutes via cron).
"""

from django.core.management.base import BaseCommand
from passes import services


class Command(BaseCommand):
    help = 'Mark active and pending passes past their valid_until as expired'

    def handle(self, *args, **options):
        expired = services.expire_passes()

        self.stdout.write(
            self.style.SUCCESS(f'Expired {expired} pass(es)')
        )
