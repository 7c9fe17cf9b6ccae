"""
Management command maintaining the backup code pool of every active lock.

Run daily shortly after midnight (e.g., 00:05 site time via cron).
"""

from django.core.management.base import BaseCommand
from passes import services


class Command(BaseCommand):
    help = 'Retire expired backup codes and top each lock up to its reserve goals'

    def handle(self, *args, **options):
        result = services.replenish_backup_codes()

        self.stdout.write(f'Marked {result.cleaned} expired code(s) for removal')
        for error in result.errors:
            self.stdout.write(self.style.ERROR(f'  {error}'))

        self.stdout.write(
            self.style.SUCCESS(f'Created {result.created} backup code(s)')
        )
