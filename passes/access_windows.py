"""
Access window calculation.

Given a pass type's profile rules and the booking inputs of a purchase, work
out the concrete ``valid_from`` / ``valid_until`` instants of the pass.
Nothing in here touches the database; the current time comes from an
injected clock so results are deterministic under test.

Each profile code maps onto one strategy class. Checkout-anchored
strategies (end of day, nights with checkout) pin ``valid_until`` to a
wall-clock time on a UTC calendar date and never apply the exit buffer.
"""

import re
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Callable, Optional

from django.utils import timezone

from .types import (
    DEFAULT_NIGHTS,
    AccessWindow,
    ProfileCode,
    ProfileRules,
    ProfileType,
)

Clock = Callable[[], datetime]

LEGACY_DAY_PATTERN = re.compile(r'day', re.IGNORECASE)
LEGACY_CAMPING_PATTERN = re.compile(r'camp|overnight|night', re.IGNORECASE)
LEGACY_CAMPING_CHECKOUT = (10, 0)
LEGACY_DAY_CHECKOUT = (23, 59)


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise a datetime to aware UTC; naive values are read as UTC."""
    if value is None:
        return None
    if timezone.is_naive(value):
        return timezone.make_aware(value, dt_timezone.utc)
    return value.astimezone(dt_timezone.utc)


def set_time_on_date(moment: datetime, hour: int, minute: int) -> datetime:
    """Replace the UTC time of day, keeping the UTC calendar date."""
    return to_utc(moment).replace(hour=hour, minute=minute, second=0, microsecond=0)


def add_days(moment: datetime, days: int) -> datetime:
    return moment + timedelta(days=days)


class WindowStrategy:
    """Base strategy: nominal window plus entry/exit buffers."""

    applies_exit_buffer = True

    def __init__(self, rules: ProfileRules):
        self.rules = rules

    def compute(
        self,
        now: datetime,
        booked_from: Optional[datetime],
        booked_to: Optional[datetime],
        nights: Optional[int],
        duration_hours: float,
    ) -> AccessWindow:
        nominal = self.nominal_window(now, booked_from, booked_to, nights, duration_hours)
        return self.apply_buffers(nominal)

    def nominal_window(self, now, booked_from, booked_to, nights, duration_hours) -> AccessWindow:
        raise NotImplementedError

    def apply_buffers(self, window: AccessWindow) -> AccessWindow:
        valid_from = window.valid_from - timedelta(minutes=self.rules.entry_buffer_minutes)
        valid_until = window.valid_until
        if self.applies_exit_buffer:
            valid_until = valid_until + timedelta(minutes=self.rules.exit_buffer_minutes)
        return AccessWindow(valid_from=valid_from, valid_until=valid_until)

    def fallback_minutes(self, duration_hours: float) -> float:
        """Profile duration, or the pass type's hours when unset or zero."""
        return self.rules.duration_minutes or duration_hours * 60

    def __repr__(self):
        return f"{type(self).__name__}({self.rules.code!r})"


class CheckoutAnchored(WindowStrategy):
    # Checkout is a published deadline; only early entry is allowed.
    applies_exit_buffer = False

    def checkout_on(self, moment: datetime) -> datetime:
        checkout = self.rules.checkout_time
        return set_time_on_date(moment, checkout.hour, checkout.minute)


class EndOfDay(CheckoutAnchored):
    """Valid until checkout time on the start date."""

    def nominal_window(self, now, booked_from, booked_to, nights, duration_hours):
        valid_from = booked_from or now
        return AccessWindow(valid_from=valid_from, valid_until=self.checkout_on(valid_from))


class NightsCheckout(CheckoutAnchored):
    """Valid until checkout time after N nights; zero or unset nights means one."""

    def nominal_window(self, now, booked_from, booked_to, nights, duration_hours):
        valid_from = booked_from or now
        checkout_date = add_days(valid_from, nights or DEFAULT_NIGHTS)
        return AccessWindow(valid_from=valid_from, valid_until=self.checkout_on(checkout_date))


class InstantAccess(WindowStrategy):
    """Starts now, whatever booking times were supplied."""

    def nominal_window(self, now, booked_from, booked_to, nights, duration_hours):
        minutes = self.fallback_minutes(duration_hours)
        return AccessWindow(valid_from=now, valid_until=now + timedelta(minutes=minutes))


class GenericBuffered(WindowStrategy):
    """
    Booking-driven window for profiles without a dedicated code.

    With both booking bounds the buffers wrap the booked interval directly;
    otherwise the pass starts now and lasts the fallback duration.
    """

    profile_type = None

    def compute(self, now, booked_from, booked_to, nights, duration_hours):
        if booked_from and booked_to:
            return AccessWindow(
                valid_from=booked_from - timedelta(minutes=self.rules.entry_buffer_minutes),
                valid_until=booked_to + timedelta(minutes=self.rules.exit_buffer_minutes),
            )
        return super().compute(now, booked_from, booked_to, nights, duration_hours)

    def nominal_window(self, now, booked_from, booked_to, nights, duration_hours):
        minutes = self.fallback_minutes(duration_hours)
        return AccessWindow(valid_from=now, valid_until=now + timedelta(minutes=minutes))


class DateSelect(GenericBuffered):
    profile_type = ProfileType.DATE_SELECT


class DatetimeSelect(GenericBuffered):
    profile_type = ProfileType.DATETIME_SELECT


class DurationSelect(GenericBuffered):
    profile_type = ProfileType.DURATION_SELECT


STRATEGIES_BY_CODE = {
    ProfileCode.END_OF_DAY: EndOfDay,
    ProfileCode.NIGHTS_CHECKOUT: NightsCheckout,
    ProfileCode.INSTANT_ACCESS: InstantAccess,
}

GENERIC_STRATEGIES_BY_TYPE = {
    strategy.profile_type: strategy
    for strategy in (DateSelect, DatetimeSelect, DurationSelect)
}


def strategy_for(rules: ProfileRules) -> WindowStrategy:
    """Pick the strategy for a profile: by code first, then by profile type."""
    code = ProfileCode.lookup(rules.code)
    if code is not None:
        return STRATEGIES_BY_CODE[code](rules)

    try:
        profile_type = ProfileType(rules.profile_type)
    except ValueError:
        profile_type = None
    strategy_class = GENERIC_STRATEGIES_BY_TYPE.get(profile_type, GenericBuffered)
    return strategy_class(rules)


def compute_access_window(
    booked_from: Optional[datetime] = None,
    booked_to: Optional[datetime] = None,
    nights: Optional[int] = None,
    duration_hours: float = 24,
    rules: Optional[ProfileRules] = None,
    clock: Clock = timezone.now,
) -> AccessWindow:
    """
    Compute the validity window of a pass.

    Args:
        booked_from: Booking start, or None for an enter-now purchase
        booked_to: Booking end, or None
        nights: Number of nights (nights-checkout profiles only)
        duration_hours: Pass type duration, used when no profile applies
        rules: Profile rules, or None for pass types without a profile
        clock: Zero-argument callable returning the current time

    Returns:
        AccessWindow with UTC bounds

    Whether booking times should be honoured at all is decided by the
    caller; whatever is passed in here is used as-is.
    """
    now = to_utc(clock())
    booked_from = to_utc(booked_from)
    booked_to = to_utc(booked_to)

    if rules is None:
        return AccessWindow(valid_from=now, valid_until=now + timedelta(hours=duration_hours))

    return strategy_for(rules).compute(now, booked_from, booked_to, nights, duration_hours)


def legacy_access_window(
    pass_type_name: str,
    start: Optional[datetime] = None,
    duration_hours: float = 24,
    nights: Optional[int] = None,
    clock: Clock = timezone.now,
) -> AccessWindow:
    """
    Window rules used before profiles existed, keyed off the pass type name.

    Kept only so profile-driven results can be checked against it.
    """
    now = to_utc(start) or to_utc(clock())

    if LEGACY_DAY_PATTERN.search(pass_type_name):
        return AccessWindow(valid_from=now, valid_until=set_time_on_date(now, *LEGACY_DAY_CHECKOUT))

    if LEGACY_CAMPING_PATTERN.search(pass_type_name):
        checkout_date = add_days(now, nights or DEFAULT_NIGHTS)
        return AccessWindow(
            valid_from=now,
            valid_until=set_time_on_date(checkout_date, *LEGACY_CAMPING_CHECKOUT),
        )

    return AccessWindow(valid_from=now, valid_until=now + timedelta(hours=duration_hours))
