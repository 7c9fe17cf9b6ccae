"""
Management command checking profile-driven access windows against the
legacy hard-coded rules for day and camping passes.

Run manually or in CI; it exits with an error when any timestamp differs.
"""

from django.core.management.base import BaseCommand, CommandError

from passes.verification import verify_windows


class Command(BaseCommand):
    help = 'Verify profile-driven access windows match the legacy calculation'

    def handle(self, *args, **options):
        self.stdout.write('=== Profile-driven Access Window Verification ===\n')

        comparisons = verify_windows()
        for comparison in comparisons:
            self._report(comparison)

        failed = [c.fixture.name for c in comparisons if not c.passed]
        if failed:
            raise CommandError(f"Window mismatch for: {', '.join(failed)}")

        self.stdout.write(self.style.SUCCESS('ALL TESTS PASSED'))

    def _report(self, comparison):
        fixture = comparison.fixture
        self.stdout.write(f'Test: {fixture.name}')
        self.stdout.write(f'  Pass Type: {fixture.pass_type_name}')
        self.stdout.write(f'  Start: {fixture.start.isoformat()}')
        self.stdout.write(f'  Nights: {fixture.nights or "N/A"}')
        self.stdout.write(f'  Profile: {fixture.rules.code}')
        self.stdout.write(f'  Legacy:        {comparison.legacy.valid_from.isoformat()} -> '
                          f'{comparison.legacy.valid_until.isoformat()}')
        self.stdout.write(f'  Profile-based: {comparison.profile.valid_from.isoformat()} -> '
                          f'{comparison.profile.valid_until.isoformat()}')

        if comparison.passed:
            self.stdout.write(self.style.SUCCESS('  Result: PASS'))
            return

        self.stdout.write(self.style.ERROR('  Result: FAIL'))
        if not comparison.valid_from_matches:
            self.stdout.write('    - valid_from mismatch')
        if not comparison.valid_until_matches:
            self.stdout.write('    - valid_until mismatch')
