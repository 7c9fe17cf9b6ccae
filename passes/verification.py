"""
Cross-check of profile-driven windows against the legacy name-based rules.

Day and camping passes were migrated from hard-coded rules to profiles.
For those categories both calculations must agree to the microsecond.
"""

from dataclasses import dataclass
from datetime import datetime, timezone as dt_timezone
from typing import List, Optional

from .access_windows import compute_access_window, legacy_access_window
from .types import AccessWindow, ProfileRules, ProfileType


@dataclass(frozen=True)
class WindowFixture:
    name: str
    pass_type_name: str
    start: datetime
    duration_hours: int
    nights: Optional[int]
    rules: ProfileRules


@dataclass(frozen=True)
class WindowComparison:
    fixture: WindowFixture
    legacy: AccessWindow
    profile: AccessWindow

    @property
    def valid_from_matches(self) -> bool:
        return self.legacy.valid_from == self.profile.valid_from

    @property
    def valid_until_matches(self) -> bool:
        return self.legacy.valid_until == self.profile.valid_until

    @property
    def passed(self) -> bool:
        return self.valid_from_matches and self.valid_until_matches


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=dt_timezone.utc)


_DAY_RULES = ProfileRules(
    code='end_of_day',
    profile_type=ProfileType.DATE_SELECT.value,
    checkout_time='23:59:00',
)

_CAMPING_RULES = ProfileRules(
    code='nights_checkout',
    profile_type=ProfileType.DATE_SELECT.value,
    checkout_time='10:00:00',
)

MIGRATED_FIXTURES = [
    WindowFixture('Day Pass - Morning', 'Day Pass', _utc(2025, 2, 3, 9, 0), 24, None, _DAY_RULES),
    WindowFixture('Day Pass - Afternoon', 'Day Pass', _utc(2025, 2, 3, 14, 30), 24, None, _DAY_RULES),
    WindowFixture('Camping Pass - 1 Night', 'Camping Pass', _utc(2025, 2, 3, 12, 0), 24, 1, _CAMPING_RULES),
    WindowFixture('Camping Pass - 3 Nights', 'Overnight Stay', _utc(2025, 2, 3, 15, 0), 72, 3, _CAMPING_RULES),
]


def compare(fixture: WindowFixture) -> WindowComparison:
    """Run both calculations for one fixture."""
    legacy = legacy_access_window(
        fixture.pass_type_name,
        start=fixture.start,
        duration_hours=fixture.duration_hours,
        nights=fixture.nights,
    )
    profile = compute_access_window(
        booked_from=fixture.start,
        nights=fixture.nights,
        duration_hours=fixture.duration_hours,
        rules=fixture.rules,
        clock=lambda: fixture.start,
    )
    return WindowComparison(fixture=fixture, legacy=legacy, profile=profile)


def verify_windows(fixtures: Optional[List[WindowFixture]] = None) -> List[WindowComparison]:
    return [compare(fixture) for fixture in (fixtures or MIGRATED_FIXTURES)]
