"""
Tests for the pass system.

Tests cover:
- Access window calculation for every profile strategy
- Legacy equivalence for migrated day and camping passes
- Pass querysets (overlap, blocking, expiry)
- Service layer (availability, pass creation, PIN lifecycle, expiry, profiles)
- Backup code pool maintenance and assignment
- API endpoints
- Management commands
"""

import uuid
from datetime import datetime, time, timedelta, timezone as dt_timezone
from io import StringIO
from unittest import mock

from django.core.management import call_command
from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework import status
from rest_framework.test import APIClient, APITestCase

from . import services
from .access_windows import (
    DateSelect,
    DatetimeSelect,
    DurationSelect,
    EndOfDay,
    GenericBuffered,
    InstantAccess,
    NightsCheckout,
    compute_access_window,
    legacy_access_window,
    strategy_for,
)
from .exceptions import (
    BackupCodeUnavailable,
    DuplicateProfileCode,
    InvalidIdentifier,
    InvalidInterval,
    InvalidPin,
    LockCodeNotFound,
    PassNotFound,
    PassTypeInactive,
    PassTypeNotFound,
    ProfileInUse,
    SlotUnavailable,
    StorageError,
    UnknownReservation,
)
from .managers import PassQuerySet
from .models import BackupCode, Device, LockCode, Pass, PassProfile, PassType
from .types import (
    BACKUP_HARDWARE_LIMIT,
    BACKUP_RESERVE_GOALS,
    ProfileData,
    ProfileRules,
    parse_checkout_time,
)
from .verification import MIGRATED_FIXTURES, verify_windows

UTC = dt_timezone.utc
NOW = datetime(2025, 2, 3, 8, 0, tzinfo=UTC)


def fixed_clock():
    return NOW


def utc(*args):
    return datetime(*args, tzinfo=UTC)


def make_profile(**overrides):
    fields = {
        'site_id': uuid.uuid4(),
        'code': 'hourly_slot',
        'name': 'Hourly Slot',
        'profile_type': 'datetime_select',
    }
    fields.update(overrides)
    return PassProfile.objects.create(**fields)


def make_pass_type(profile=None, **overrides):
    fields = {
        'org_id': uuid.uuid4(),
        'name': 'Entry Pass',
        'duration_hours': 24,
        'price_cents': 2000,
        'profile': profile,
    }
    fields.update(overrides)
    return PassType.objects.create(**fields)


def make_pass(pass_type, booked_from=None, booked_to=None, status='active', device_id=None, **overrides):
    fields = {
        'pass_number': f'ZP-TEST-{uuid.uuid4().hex[:8]}',
        'pass_type': pass_type,
        'device_id': device_id,
        'guest_name': 'Guest',
        'guest_email': 'guest@example.com',
        'valid_from': booked_from or NOW,
        'valid_until': booked_to or NOW + timedelta(hours=24),
        'booked_from': booked_from,
        'booked_to': booked_to,
        'status': status,
    }
    fields.update(overrides)
    return Pass.objects.create(**fields)


class NoProfileWindowTests(SimpleTestCase):
    """Pass types without a profile use the legacy duration."""

    def test_window_spans_duration_hours_from_now(self):
        """Test validFrom is the clock time and the window lasts durationHours."""
        window = compute_access_window(duration_hours=24, clock=fixed_clock)

        self.assertEqual(window.valid_from, NOW)
        self.assertEqual(window.valid_until - window.valid_from, timedelta(hours=24))

    def test_booking_times_do_not_move_window(self):
        """Test booked times are irrelevant without a profile."""
        window = compute_access_window(
            booked_from=utc(2025, 3, 1, 10),
            booked_to=utc(2025, 3, 1, 12),
            duration_hours=2,
            clock=fixed_clock
        )

        self.assertEqual(window.valid_from, NOW)
        self.assertEqual(window.valid_until, NOW + timedelta(hours=2))


class EndOfDayWindowTests(SimpleTestCase):
    """end_of_day profiles expire at checkout time on the start date."""

    def setUp(self):
        self.rules = ProfileRules(code='end_of_day', profile_type='date_select', checkout_time='23:59:00')

    def test_morning_start(self):
        window = compute_access_window(booked_from=utc(2025, 2, 3, 9, 0), rules=self.rules, clock=fixed_clock)

        self.assertEqual(window.valid_from, utc(2025, 2, 3, 9, 0))
        self.assertEqual(window.valid_until, utc(2025, 2, 3, 23, 59))

    def test_afternoon_start_has_same_expiry(self):
        """Test only the calendar date of bookedFrom matters."""
        window = compute_access_window(booked_from=utc(2025, 2, 3, 14, 30), rules=self.rules, clock=fixed_clock)

        self.assertEqual(window.valid_until, utc(2025, 2, 3, 23, 59))

    def test_starts_now_without_booking(self):
        window = compute_access_window(rules=self.rules, clock=fixed_clock)

        self.assertEqual(window.valid_from, NOW)
        self.assertEqual(window.valid_until, utc(2025, 2, 3, 23, 59))

    def test_exit_buffer_does_not_move_checkout(self):
        """Test a nonzero exit buffer leaves validUntil unchanged."""
        rules = ProfileRules(code='end_of_day', checkout_time='18:00', entry_buffer_minutes=30, exit_buffer_minutes=45)
        window = compute_access_window(booked_from=utc(2025, 2, 3, 9, 0), rules=rules, clock=fixed_clock)

        self.assertEqual(window.valid_from, utc(2025, 2, 3, 8, 30))
        self.assertEqual(window.valid_until, utc(2025, 2, 3, 18, 0))

    def test_default_checkout_time(self):
        """Test a missing checkout time means 23:59."""
        rules = ProfileRules(code='end_of_day', checkout_time=None)
        window = compute_access_window(booked_from=utc(2025, 2, 3, 9, 0), rules=rules, clock=fixed_clock)

        self.assertEqual(window.valid_until, utc(2025, 2, 3, 23, 59))

    def test_checkout_uses_utc_date(self):
        """Test a start given in another offset is anchored on its UTC date."""
        brisbane = dt_timezone(timedelta(hours=10))
        start = datetime(2025, 2, 4, 8, 0, tzinfo=brisbane)  # 2025-02-03T22:00Z
        window = compute_access_window(booked_from=start, rules=self.rules, clock=fixed_clock)

        self.assertEqual(window.valid_until, utc(2025, 2, 3, 23, 59))

    def test_checkout_seconds_and_microseconds_zeroed(self):
        rules = ProfileRules(code='end_of_day', checkout_time='17:30:45')
        window = compute_access_window(booked_from=utc(2025, 2, 3, 9, 0, 12, 500), rules=rules, clock=fixed_clock)

        self.assertEqual(window.valid_until, utc(2025, 2, 3, 17, 30))


class NightsCheckoutWindowTests(SimpleTestCase):
    """nights_checkout profiles expire at checkout time after N nights."""

    def setUp(self):
        self.rules = ProfileRules(code='nights_checkout', profile_type='date_select', checkout_time='10:00:00')

    def test_one_night(self):
        window = compute_access_window(booked_from=utc(2025, 2, 3, 12, 0), nights=1, rules=self.rules, clock=fixed_clock)

        self.assertEqual(window.valid_until, utc(2025, 2, 4, 10, 0))

    def test_three_nights(self):
        window = compute_access_window(booked_from=utc(2025, 2, 3, 15, 0), nights=3, rules=self.rules, clock=fixed_clock)

        self.assertEqual(window.valid_from, utc(2025, 2, 3, 15, 0))
        self.assertEqual(window.valid_until, utc(2025, 2, 6, 10, 0))

    def test_unset_nights_defaults_to_one(self):
        window = compute_access_window(booked_from=utc(2025, 2, 3, 12, 0), rules=self.rules, clock=fixed_clock)

        self.assertEqual(window.valid_until, utc(2025, 2, 4, 10, 0))

    def test_zero_nights_collapses_to_one(self):
        """Test nights=0 is treated as unset and yields a one-night stay."""
        window = compute_access_window(booked_from=utc(2025, 2, 3, 12, 0), nights=0, rules=self.rules, clock=fixed_clock)

        self.assertEqual(window.valid_until, utc(2025, 2, 4, 10, 0))

    def test_crosses_month_boundary(self):
        window = compute_access_window(booked_from=utc(2025, 1, 31, 16, 0), nights=2, rules=self.rules, clock=fixed_clock)

        self.assertEqual(window.valid_until, utc(2025, 2, 2, 10, 0))

    def test_exit_buffer_does_not_move_checkout(self):
        rules = ProfileRules(code='nights_checkout', checkout_time='10:00', entry_buffer_minutes=60, exit_buffer_minutes=120)
        window = compute_access_window(booked_from=utc(2025, 2, 3, 15, 0), nights=1, rules=rules, clock=fixed_clock)

        self.assertEqual(window.valid_from, utc(2025, 2, 3, 14, 0))
        self.assertEqual(window.valid_until, utc(2025, 2, 4, 10, 0))


class InstantAccessWindowTests(SimpleTestCase):
    """instant_access profiles start now and last the profile duration."""

    def test_uses_profile_duration_and_buffers(self):
        rules = ProfileRules(code='instant_access', duration_minutes=90, entry_buffer_minutes=5, exit_buffer_minutes=10)
        window = compute_access_window(duration_hours=24, rules=rules, clock=fixed_clock)

        self.assertEqual(window.valid_from, NOW - timedelta(minutes=5))
        self.assertEqual(window.valid_until, NOW + timedelta(minutes=100))

    def test_ignores_booked_from(self):
        rules = ProfileRules(code='instant_access', duration_minutes=60)
        window = compute_access_window(
            booked_from=utc(2025, 3, 1, 10),
            booked_to=utc(2025, 3, 1, 12),
            rules=rules,
            clock=fixed_clock
        )

        self.assertEqual(window.valid_from, NOW)
        self.assertEqual(window.valid_until, NOW + timedelta(minutes=60))

    def test_falls_back_to_duration_hours(self):
        """Test unset or zero duration_minutes uses the pass type's hours."""
        for duration_minutes in (None, 0):
            with self.subTest(duration_minutes=duration_minutes):
                rules = ProfileRules(code='instant_access', duration_minutes=duration_minutes)
                window = compute_access_window(duration_hours=3, rules=rules, clock=fixed_clock)
                self.assertEqual(window.valid_until, NOW + timedelta(hours=3))


class GenericWindowTests(SimpleTestCase):
    """Profiles without a dedicated code use the booked interval plus buffers."""

    def test_booked_interval_with_buffers(self):
        """Test validFrom = bookedFrom - entry and validUntil = bookedTo + exit exactly."""
        rules = ProfileRules(code='hourly_slot', profile_type='datetime_select',
                             entry_buffer_minutes=15, exit_buffer_minutes=10)
        window = compute_access_window(
            booked_from=utc(2025, 3, 1, 10),
            booked_to=utc(2025, 3, 1, 12),
            rules=rules,
            clock=fixed_clock
        )

        self.assertEqual(window.valid_from, utc(2025, 3, 1, 9, 45))
        self.assertEqual(window.valid_until, utc(2025, 3, 1, 12, 10))

    def test_without_booking_falls_back_to_duration(self):
        rules = ProfileRules(code='hourly_slot', duration_minutes=120,
                             entry_buffer_minutes=15, exit_buffer_minutes=10)
        window = compute_access_window(booked_from=utc(2025, 3, 1, 10), rules=rules, clock=fixed_clock)

        self.assertEqual(window.valid_from, NOW - timedelta(minutes=15))
        self.assertEqual(window.valid_until, NOW + timedelta(minutes=130))

    def test_every_generic_profile_type_behaves_alike(self):
        for profile_type in ('date_select', 'datetime_select', 'duration_select', 'instant'):
            with self.subTest(profile_type=profile_type):
                rules = ProfileRules(code='custom', profile_type=profile_type, exit_buffer_minutes=5)
                window = compute_access_window(
                    booked_from=utc(2025, 3, 1, 10),
                    booked_to=utc(2025, 3, 1, 11),
                    rules=rules,
                    clock=fixed_clock
                )
                self.assertEqual(window.valid_from, utc(2025, 3, 1, 10))
                self.assertEqual(window.valid_until, utc(2025, 3, 1, 11, 5))


class StrategySelectionTests(SimpleTestCase):
    """Test profile codes and types map onto the right strategy."""

    def test_dedicated_codes(self):
        self.assertIsInstance(strategy_for(ProfileRules(code='end_of_day')), EndOfDay)
        self.assertIsInstance(strategy_for(ProfileRules(code='nights_checkout')), NightsCheckout)
        self.assertIsInstance(strategy_for(ProfileRules(code='instant_access')), InstantAccess)

    def test_code_wins_over_profile_type(self):
        strategy = strategy_for(ProfileRules(code='end_of_day', profile_type='duration_select'))
        self.assertIsInstance(strategy, EndOfDay)

    def test_generic_strategies_by_profile_type(self):
        self.assertIsInstance(strategy_for(ProfileRules(code='x', profile_type='date_select')), DateSelect)
        self.assertIsInstance(strategy_for(ProfileRules(code='x', profile_type='datetime_select')), DatetimeSelect)
        self.assertIsInstance(strategy_for(ProfileRules(code='x', profile_type='duration_select')), DurationSelect)

        fallback = strategy_for(ProfileRules(code='x', profile_type='instant'))
        self.assertIs(type(fallback), GenericBuffered)


class WindowOrderingTests(SimpleTestCase):
    """Test validFrom < validUntil across strategies for valid inputs."""

    def test_windows_are_non_empty(self):
        cases = [
            (None, {}),
            (ProfileRules(code='end_of_day'), {'booked_from': utc(2025, 2, 3, 9)}),
            (ProfileRules(code='nights_checkout', checkout_time='10:00'), {'booked_from': utc(2025, 2, 3, 23), 'nights': 1}),
            (ProfileRules(code='instant_access', duration_minutes=1), {}),
            (ProfileRules(code='slot', entry_buffer_minutes=5), {'booked_from': utc(2025, 2, 3, 9), 'booked_to': utc(2025, 2, 3, 10)}),
            (ProfileRules(code='slot'), {}),
        ]
        for rules, inputs in cases:
            with self.subTest(rules=rules):
                window = compute_access_window(rules=rules, duration_hours=24, clock=fixed_clock, **inputs)
                self.assertTrue(window.is_valid)


class CheckoutTimeParsingTests(SimpleTestCase):

    def test_accepts_short_and_long_forms(self):
        self.assertEqual(parse_checkout_time('10:00'), time(10, 0))
        self.assertEqual(parse_checkout_time('23:59:00'), time(23, 59))
        self.assertEqual(parse_checkout_time(None), time(23, 59))

    def test_rejects_out_of_range_values(self):
        for value in ('24:00', '10:60', 'noon', '10'):
            with self.subTest(value=value):
                with self.assertRaises(ValueError):
                    parse_checkout_time(value)

    def test_rejects_negative_buffers(self):
        with self.assertRaises(ValueError):
            ProfileRules(code='slot', entry_buffer_minutes=-5)


class LegacyEquivalenceTests(SimpleTestCase):
    """Profile-driven windows must equal the legacy rules for migrated passes."""

    def test_all_fixtures_match(self):
        comparisons = verify_windows()

        self.assertEqual(len(comparisons), len(MIGRATED_FIXTURES))
        for comparison in comparisons:
            with self.subTest(fixture=comparison.fixture.name):
                self.assertEqual(comparison.legacy.valid_from, comparison.profile.valid_from)
                self.assertEqual(comparison.legacy.valid_until, comparison.profile.valid_until)

    def test_legacy_day_rule_checked_before_camping(self):
        window = legacy_access_window('Day Night Combo', start=utc(2025, 2, 3, 9))
        self.assertEqual(window.valid_until, utc(2025, 2, 3, 23, 59))

    def test_legacy_default_uses_duration(self):
        window = legacy_access_window('Entry Pass', start=utc(2025, 2, 3, 9), duration_hours=5)
        self.assertEqual(window.valid_until, utc(2025, 2, 3, 14))


class PassQuerySetTests(TestCase):
    """Test Pass queryset methods."""

    def setUp(self):
        self.pass_type = make_pass_type()

    def test_overlapping_is_half_open(self):
        make_pass(self.pass_type, utc(2025, 3, 1, 10), utc(2025, 3, 1, 11))

        touching = Pass.objects.get_queryset().overlapping(utc(2025, 3, 1, 11), utc(2025, 3, 1, 12))
        overlapping = Pass.objects.get_queryset().overlapping(utc(2025, 3, 1, 10, 30), utc(2025, 3, 1, 12))

        self.assertEqual(touching.count(), 0)
        self.assertEqual(overlapping.count(), 1)

    def test_blocking_statuses(self):
        for status_value in ('active', 'pending', 'cancelled', 'expired'):
            make_pass(self.pass_type, status=status_value)

        self.assertEqual(Pass.objects.blocking().count(), 2)

    def test_expirable(self):
        make_pass(self.pass_type, valid_from=NOW - timedelta(days=2), valid_until=NOW - timedelta(days=1))
        make_pass(self.pass_type, valid_from=NOW, valid_until=NOW + timedelta(days=1))
        make_pass(self.pass_type, status='cancelled', valid_from=NOW - timedelta(days=2),
                  valid_until=NOW - timedelta(days=1))

        self.assertEqual(Pass.objects.expirable(NOW).count(), 1)


class CheckAvailabilityTests(TestCase):
    """Test services.check_availability."""

    def setUp(self):
        self.profile = make_profile(future_booking_enabled=True, availability_enforcement=True)
        self.pass_type = make_pass_type(profile=self.profile)
        self.device_a = uuid.uuid4()
        self.device_b = uuid.uuid4()

    def test_overlapping_booking_conflicts(self):
        make_pass(self.pass_type, utc(2025, 3, 1, 10), utc(2025, 3, 1, 12))

        result = services.check_availability(self.pass_type.pk, utc(2025, 3, 1, 11), utc(2025, 3, 1, 13))

        self.assertFalse(result.available)
        self.assertTrue(result.enforcement_enabled)
        self.assertEqual(result.conflicts, 1)
        self.assertEqual(result.reason, 'Time slot conflicts with 1 existing booking(s)')

    def test_touching_booking_is_available(self):
        make_pass(self.pass_type, utc(2025, 3, 1, 10), utc(2025, 3, 1, 11))

        result = services.check_availability(self.pass_type.pk, utc(2025, 3, 1, 11), utc(2025, 3, 1, 12))

        self.assertTrue(result.available)
        self.assertEqual(result.conflicts, 0)
        self.assertIsNone(result.reason)

    def test_device_scoping(self):
        """Test conflicts on another device are excluded when a device is given."""
        make_pass(self.pass_type, utc(2025, 3, 1, 10), utc(2025, 3, 1, 12), device_id=self.device_a)

        other = services.check_availability(
            self.pass_type.pk, utc(2025, 3, 1, 11), utc(2025, 3, 1, 13), device_id=self.device_b
        )
        same = services.check_availability(
            self.pass_type.pk, utc(2025, 3, 1, 11), utc(2025, 3, 1, 13), device_id=self.device_a
        )
        any_device = services.check_availability(self.pass_type.pk, utc(2025, 3, 1, 11), utc(2025, 3, 1, 13))

        self.assertEqual(other.conflicts, 0)
        self.assertEqual(same.conflicts, 1)
        self.assertEqual(any_device.conflicts, 1)

    def test_released_and_unbooked_passes_do_not_conflict(self):
        make_pass(self.pass_type, utc(2025, 3, 1, 10), utc(2025, 3, 1, 12), status='cancelled')
        make_pass(self.pass_type, utc(2025, 3, 1, 10), utc(2025, 3, 1, 12), status='expired')
        make_pass(self.pass_type)
        make_pass(make_pass_type(profile=self.profile), utc(2025, 3, 1, 10), utc(2025, 3, 1, 12))

        result = services.check_availability(self.pass_type.pk, utc(2025, 3, 1, 11), utc(2025, 3, 1, 13))

        self.assertTrue(result.available)

    def test_enforcement_disabled_skips_overlap_query(self):
        """Test no overlap query runs and the slot is always available."""
        pass_type = make_pass_type(profile=make_profile(code='open', availability_enforcement=False))
        make_pass(pass_type, utc(2025, 3, 1, 10), utc(2025, 3, 1, 12))

        with self.assertNumQueries(1):
            result = services.check_availability(pass_type.pk, utc(2025, 3, 1, 11), utc(2025, 3, 1, 13))

        self.assertTrue(result.available)
        self.assertFalse(result.enforcement_enabled)
        self.assertIsNone(result.conflicts)

    def test_no_profile_is_always_available(self):
        pass_type = make_pass_type()

        result = services.check_availability(pass_type.pk, utc(2025, 3, 1, 11), utc(2025, 3, 1, 13))

        self.assertTrue(result.available)
        self.assertFalse(result.enforcement_enabled)

    def test_storage_failure_is_not_reported_as_available(self):
        with mock.patch.object(PassQuerySet, 'count', side_effect=DatabaseError('connection lost')):
            with self.assertRaises(StorageError):
                services.check_availability(self.pass_type.pk, utc(2025, 3, 1, 11), utc(2025, 3, 1, 13))

    def test_unknown_pass_type(self):
        with self.assertRaises(PassTypeNotFound):
            services.check_availability(uuid.uuid4(), utc(2025, 3, 1, 11), utc(2025, 3, 1, 13))

    def test_invalid_interval(self):
        with self.assertRaises(InvalidInterval):
            services.check_availability(self.pass_type.pk, utc(2025, 3, 1, 13), utc(2025, 3, 1, 13))

    def test_invalid_identifier(self):
        with self.assertRaises(InvalidIdentifier):
            services.check_availability('not-a-uuid', utc(2025, 3, 1, 11), utc(2025, 3, 1, 13))


class CreatePassTests(TestCase):
    """Test services.create_pass."""

    def create(self, pass_type, **kwargs):
        return services.create_pass(
            pass_type_id=pass_type.pk,
            guest_name='Jo Guest',
            guest_email='jo@example.com',
            clock=fixed_clock,
            **kwargs
        )

    def test_no_profile_creates_pending_pass(self):
        created = self.create(make_pass_type(duration_hours=24, price_cents=1500))
        pass_obj = created.pass_obj

        self.assertEqual(pass_obj.status, 'pending')
        self.assertEqual(pass_obj.valid_from, NOW)
        self.assertEqual(pass_obj.valid_until, NOW + timedelta(hours=24))
        self.assertIsNone(pass_obj.booked_from)
        self.assertFalse(created.booking_mode)
        self.assertEqual(created.price_cents, 1500)
        self.assertTrue(pass_obj.pass_number.startswith('ZP-'))

    def test_booking_mode_applies_buffers(self):
        profile = make_profile(future_booking_enabled=True, entry_buffer_minutes=15, exit_buffer_minutes=10)
        created = self.create(
            make_pass_type(profile=profile),
            booked_from=utc(2025, 3, 1, 10),
            booked_to=utc(2025, 3, 1, 12)
        )

        self.assertTrue(created.booking_mode)
        self.assertEqual(created.pass_obj.valid_from, utc(2025, 3, 1, 9, 45))
        self.assertEqual(created.pass_obj.valid_until, utc(2025, 3, 1, 12, 10))
        self.assertEqual(created.pass_obj.booked_from, utc(2025, 3, 1, 10))
        self.assertEqual(created.pass_obj.booked_to, utc(2025, 3, 1, 12))

    def test_booking_times_ignored_when_future_booking_disabled(self):
        profile = make_profile(code='end_of_day', profile_type='date_select', future_booking_enabled=False)

        with self.assertLogs('passes.services', level='INFO') as logs:
            created = self.create(
                make_pass_type(profile=profile),
                booked_from=utc(2025, 3, 1, 10),
                booked_to=utc(2025, 3, 1, 12)
            )

        self.assertFalse(created.booking_mode)
        self.assertIsNone(created.pass_obj.booked_from)
        self.assertEqual(created.pass_obj.valid_from, NOW)
        self.assertEqual(created.pass_obj.valid_until, utc(2025, 2, 3, 23, 59))
        self.assertTrue(any('Ignoring booking times' in line for line in logs.output))

    def test_nights_reach_nights_checkout_profile(self):
        profile = make_profile(code='nights_checkout', profile_type='date_select', checkout_time=time(10, 0))
        created = self.create(make_pass_type(profile=profile), nights=2)

        self.assertEqual(created.pass_obj.valid_until, utc(2025, 2, 5, 10, 0))

    def test_invalid_interval_rejected_even_without_booking_mode(self):
        with self.assertRaises(InvalidInterval):
            self.create(make_pass_type(), booked_from=utc(2025, 3, 1, 12), booked_to=utc(2025, 3, 1, 10))

    def test_taken_slot_is_rejected(self):
        profile = make_profile(future_booking_enabled=True, availability_enforcement=True)
        pass_type = make_pass_type(profile=profile)
        make_pass(pass_type, utc(2025, 3, 1, 10), utc(2025, 3, 1, 12))

        with self.assertRaises(SlotUnavailable) as ctx:
            self.create(pass_type, booked_from=utc(2025, 3, 1, 11), booked_to=utc(2025, 3, 1, 13))

        self.assertEqual(ctx.exception.conflicts, 1)
        self.assertEqual(Pass.objects.filter(pass_type=pass_type).count(), 1)

    def test_free_slot_is_reserved(self):
        profile = make_profile(future_booking_enabled=True, availability_enforcement=True)
        pass_type = make_pass_type(profile=profile)
        make_pass(pass_type, utc(2025, 3, 1, 10), utc(2025, 3, 1, 11))

        created = self.create(pass_type, booked_from=utc(2025, 3, 1, 11), booked_to=utc(2025, 3, 1, 12))

        self.assertTrue(created.booking_mode)
        self.assertEqual(Pass.objects.filter(pass_type=pass_type).count(), 2)

    def test_inactive_pass_type(self):
        with self.assertRaises(PassTypeInactive):
            self.create(make_pass_type(is_active=False))

    def test_unknown_pass_type(self):
        with self.assertRaises(PassTypeNotFound):
            services.create_pass(uuid.uuid4(), 'Jo', 'jo@example.com', clock=fixed_clock)

    def test_empty_window_is_rejected(self):
        """Test an end-of-day purchase after checkout time is refused."""
        profile = make_profile(code='end_of_day', checkout_time=time(18, 0))

        with self.assertRaises(InvalidInterval):
            services.create_pass(
                make_pass_type(profile=profile).pk,
                'Jo',
                'jo@example.com',
                clock=lambda: utc(2025, 2, 3, 19, 0)
            )

    def test_get_pass_by_number(self):
        created = self.create(make_pass_type())

        self.assertEqual(services.get_pass(pass_number=created.pass_obj.pass_number), created.pass_obj)
        with self.assertRaises(PassNotFound):
            services.get_pass(pass_id=uuid.uuid4())
        with self.assertRaises(ValueError):
            services.get_pass()


class PinLifecycleTests(TestCase):
    """Test PIN intake, revocation and expiry."""

    def setUp(self):
        self.pass_type = make_pass_type()
        self.pass_obj = make_pass(self.pass_type, status='pending')

    def test_record_pin_activates_pending_pass(self):
        result = services.record_pin(self.pass_obj.pk, '1234')

        self.pass_obj.refresh_from_db()
        self.assertFalse(result.idempotent)
        self.assertEqual(self.pass_obj.status, 'active')
        self.assertEqual(self.pass_obj.lock_code.code, '1234')
        self.assertEqual(self.pass_obj.lock_code.provider, 'rooms')

    def test_record_same_pin_is_idempotent(self):
        services.record_pin(self.pass_obj.pk, '1234')
        result = services.record_pin(self.pass_obj.pk, '1234')

        self.assertTrue(result.idempotent)
        self.assertEqual(LockCode.objects.count(), 1)

    def test_record_new_pin_replaces_old(self):
        services.record_pin(self.pass_obj.pk, '1234')
        services.record_pin(self.pass_obj.pk, '987654')

        self.assertEqual(LockCode.objects.get().code, '987654')

    def test_record_pin_does_not_reactivate_cancelled_pass(self):
        cancelled = make_pass(self.pass_type, status='cancelled')
        services.record_pin(cancelled.pk, '1234')

        cancelled.refresh_from_db()
        self.assertEqual(cancelled.status, 'cancelled')

    def test_invalid_pins(self):
        for pin in ('', '12a4', '123', '123456789'):
            with self.subTest(pin=pin):
                with self.assertRaises(InvalidPin):
                    services.record_pin(self.pass_obj.pk, pin)

    def test_unknown_reservation(self):
        """Test an unknown reservation is the caller's error, not a missing resource."""
        with self.assertRaises(UnknownReservation) as ctx:
            services.record_pin(uuid.uuid4(), '1234')

        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(ctx.exception.message, 'reservationId not found - pass does not exist')

    def test_revoke_cancels_pass(self):
        services.record_pin(self.pass_obj.pk, '1234')
        result = services.revoke_pin(self.pass_obj.pk, 'payment_failed')

        self.pass_obj.refresh_from_db()
        self.assertFalse(result.pass_active)
        self.assertEqual(self.pass_obj.status, 'cancelled')
        self.assertEqual(LockCode.objects.get().status, 'revoked')

    def test_revoke_on_timeout_keeps_pass_active(self):
        services.record_pin(self.pass_obj.pk, '1234')
        result = services.revoke_pin(self.pass_obj.pk, 'timeout')

        self.pass_obj.refresh_from_db()
        self.assertTrue(result.pass_active)
        self.assertEqual(self.pass_obj.status, 'active')

    def test_revoke_twice_is_idempotent(self):
        services.record_pin(self.pass_obj.pk, '1234')
        services.revoke_pin(self.pass_obj.pk)
        result = services.revoke_pin(self.pass_obj.pk)

        self.assertTrue(result.idempotent)

    def test_revoke_without_pin(self):
        result = services.revoke_pin(self.pass_obj.pk, 'backup_used')
        self.assertFalse(result.revoked)
        self.assertTrue(result.pass_active)

        with self.assertRaises(LockCodeNotFound):
            services.revoke_pin(self.pass_obj.pk, 'user_cancelled')

    def test_expire_passes(self):
        make_pass(self.pass_type, valid_from=NOW - timedelta(days=2), valid_until=NOW - timedelta(days=1))

        expired = services.expire_passes(clock=fixed_clock)

        self.assertEqual(expired, 1)
        self.assertEqual(Pass.objects.filter(status='expired').count(), 1)


class ProfileServiceTests(TestCase):
    """Test profile administration services."""

    def setUp(self):
        self.site_id = uuid.uuid4()

    def test_create_normalizes_code(self):
        profile = services.create_profile(
            self.site_id,
            ProfileData(code='Hourly  Slot', name='Hourly', profile_type='datetime_select')
        )

        self.assertEqual(profile.code, 'hourly_slot')
        self.assertEqual(profile.entry_buffer_minutes, 0)
        self.assertFalse(profile.future_booking_enabled)

    def test_duplicate_code_per_site(self):
        data = ProfileData(code='day', name='Day', profile_type='date_select')
        services.create_profile(self.site_id, data)

        with self.assertRaises(DuplicateProfileCode):
            services.create_profile(self.site_id, data)

        services.create_profile(uuid.uuid4(), data)

    def test_update_only_given_fields(self):
        profile = make_profile(site_id=self.site_id, entry_buffer_minutes=15)

        services.update_profile(profile, ProfileData(name='Renamed'))

        profile.refresh_from_db()
        self.assertEqual(profile.name, 'Renamed')
        self.assertEqual(profile.entry_buffer_minutes, 15)

    def test_cleared_fields_reset_to_null(self):
        """Test checkout time and duration can be unset explicitly."""
        profile = make_profile(site_id=self.site_id, checkout_time=time(18, 0), duration_minutes=90)

        services.update_profile(
            profile,
            ProfileData(cleared_fields=('checkout_time', 'duration_minutes'))
        )

        profile.refresh_from_db()
        self.assertIsNone(profile.checkout_time)
        self.assertIsNone(profile.duration_minutes)
        self.assertEqual(profile.rules.checkout_time, time(23, 59))

    def test_cleared_fields_only_applies_to_nullable_fields(self):
        profile = make_profile(site_id=self.site_id, duration_minutes=90)

        services.update_profile(profile, ProfileData(cleared_fields=('name',)))

        profile.refresh_from_db()
        self.assertEqual(profile.name, 'Hourly Slot')
        self.assertEqual(profile.duration_minutes, 90)

    def test_profile_change_does_not_touch_existing_passes(self):
        profile = make_profile(code='end_of_day', checkout_time=time(23, 59))
        created = services.create_pass(make_pass_type(profile=profile).pk, 'Jo', 'jo@example.com', clock=fixed_clock)

        services.update_profile(profile, ProfileData(checkout_time=time(12, 0)))

        created.pass_obj.refresh_from_db()
        self.assertEqual(created.pass_obj.valid_until, utc(2025, 2, 3, 23, 59))

    def test_delete_in_use_profile(self):
        profile = make_profile()
        make_pass_type(profile=profile)

        with self.assertRaises(ProfileInUse):
            services.delete_profile(profile)

    def test_delete_unused_profile(self):
        profile = make_profile()
        services.delete_profile(profile)

        self.assertFalse(PassProfile.objects.filter(pk=profile.pk).exists())


class AvailabilityAPITests(APITestCase):
    """Test the availability endpoint."""

    url = '/api/v1/availability/'

    def setUp(self):
        self.client = APIClient()
        profile = make_profile(future_booking_enabled=True, availability_enforcement=True)
        self.pass_type = make_pass_type(profile=profile)
        make_pass(self.pass_type, utc(2025, 3, 1, 10), utc(2025, 3, 1, 12))

    def query(self, **overrides):
        params = {
            'pass_type_id': str(self.pass_type.pk),
            'booked_from': '2025-03-01T11:00:00Z',
            'booked_to': '2025-03-01T13:00:00Z',
        }
        params.update(overrides)
        return self.client.get(self.url, params)

    def test_conflict(self):
        response = self.query()

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, {
            'available': False,
            'enforcement_enabled': True,
            'conflicts': 1,
            'reason': 'Time slot conflicts with 1 existing booking(s)',
        })

    def test_available(self):
        response = self.query(booked_from='2025-03-01T12:00:00Z')

        self.assertTrue(response.data['available'])
        self.assertEqual(response.data['conflicts'], 0)
        self.assertNotIn('reason', response.data)

    def test_bad_requests(self):
        for params in (
            {'pass_type_id': 'nope'},
            {'booked_from': 'yesterday'},
            {'booked_from': '2025-03-01T13:00:00Z'},
            {'device_id': 'nope'},
        ):
            with self.subTest(params=params):
                self.assertEqual(self.query(**params).status_code, status.HTTP_400_BAD_REQUEST)

    def test_unknown_pass_type(self):
        response = self.query(pass_type_id=str(uuid.uuid4()))

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'Not Found')

    def test_storage_error(self):
        with mock.patch.object(PassQuerySet, 'count', side_effect=DatabaseError('connection lost')):
            response = self.query()

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data['error'], 'Database Error')


class PaymentIntentAPITests(APITestCase):
    """Test the payment intent endpoints."""

    url = '/api/v1/payment-intents/'

    def setUp(self):
        self.client = APIClient()
        profile = make_profile(
            future_booking_enabled=True,
            availability_enforcement=True,
            entry_buffer_minutes=15,
            exit_buffer_minutes=10
        )
        self.pass_type = make_pass_type(profile=profile, price_cents=2500)

    def payload(self, **overrides):
        data = {
            'pass_type_id': str(self.pass_type.pk),
            'guest_name': 'Jo Guest',
            'guest_email': 'jo@example.com',
            'booked_from': '2025-03-01T10:00:00Z',
            'booked_to': '2025-03-01T12:00:00Z',
        }
        data.update(overrides)
        return data

    def test_create_in_booking_mode(self):
        response = self.client.post(self.url, self.payload(), format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(response.data['success'])
        self.assertEqual(response.data['valid_from'], '2025-03-01T09:45:00Z')
        self.assertEqual(response.data['valid_to'], '2025-03-01T12:10:00Z')
        self.assertEqual(response.data['booked_from'], '2025-03-01T10:00:00Z')
        self.assertTrue(response.data['booking_mode'])
        self.assertEqual(response.data['price_cents'], 2500)

    def test_taken_slot_conflict(self):
        self.client.post(self.url, self.payload(), format='json')
        response = self.client.post(
            self.url,
            self.payload(booked_from='2025-03-01T11:00:00Z', booked_to='2025-03-01T13:00:00Z'),
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['conflicts'], 1)

    def test_missing_guest_fields(self):
        response = self.client.post(self.url, self.payload(guest_email=''), format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_inactive_pass_type(self):
        self.pass_type.is_active = False
        self.pass_type.save()

        response = self.client.post(self.url, self.payload(), format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['message'], 'Pass type is not active')

    def test_get_pass(self):
        created = self.client.post(self.url, self.payload(), format='json')

        response = self.client.get(self.url, {'pass_number': created.data['pass_number']})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['status'], 'pending')
        self.assertEqual(response.data['data']['pass_type']['price_cents'], 2500)

    def test_get_pass_requires_key(self):
        response = self.client.get(self.url)
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class PassTypeAPITests(APITestCase):
    """Test the pass type listing."""

    def test_profile_only_present_when_linked(self):
        profile = make_profile(code='end_of_day', entry_buffer_minutes=15, exit_buffer_minutes=5,
                               checkout_time=time(23, 59))
        make_pass_type(profile=profile, name='B Day Pass', display_order=1)
        make_pass_type(name='A Legacy Pass')
        make_pass_type(name='Hidden', is_active=False)

        response = self.client.get('/api/v1/pass-types/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 2)
        day, legacy = response.data['data']
        self.assertEqual(day['name'], 'B Day Pass')
        self.assertEqual(day['profile']['profile_code'], 'end_of_day')
        self.assertEqual(day['profile']['buffer_before_minutes'], 15)
        self.assertEqual(day['profile']['buffer_after_minutes'], 5)
        self.assertEqual(day['profile']['checkout_time'], '23:59:00')
        self.assertNotIn('profile', legacy)

    def test_site_and_slug_filters_are_ignored(self):
        """Test site and access point filters are accepted and logged, not applied."""
        make_pass_type(name='Entry Pass')

        with self.assertLogs('passes.views', level='INFO') as logs:
            response = self.client.get('/api/v1/pass-types/', {'site_id': str(uuid.uuid4()), 'slug': 'front-gate'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
        self.assertTrue(any('site_id, slug' in line for line in logs.output))


class ProfileAPITests(APITestCase):
    """Test profile administration endpoints."""

    def test_create_and_delete(self):
        response = self.client.post('/api/v1/profiles/', {
            'site_id': str(uuid.uuid4()),
            'code': 'Camping Nights',
            'name': 'Camping',
            'profile_type': 'date_select',
            'checkout_time': '10:00',
            'required_inputs': ['date', 'nights'],
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['code'], 'camping_nights')
        self.assertEqual(response.data['checkout_time'], '10:00:00')

        response = self.client.delete(f"/api/v1/profiles/{response.data['id']}/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_invalid_checkout_time(self):
        response = self.client.post('/api/v1/profiles/', {
            'site_id': str(uuid.uuid4()),
            'code': 'late',
            'name': 'Late',
            'profile_type': 'date_select',
            'checkout_time': '25:00',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_delete_in_use_profile(self):
        profile = make_profile()
        make_pass_type(profile=profile)

        response = self.client.delete(f'/api/v1/profiles/{profile.pk}/')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_patch_profile(self):
        profile = make_profile()

        response = self.client.patch(f'/api/v1/profiles/{profile.pk}/', {'exit_buffer_minutes': 30}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['exit_buffer_minutes'], 30)
        self.assertEqual(response.data['code'], 'hourly_slot')

    def test_patch_null_resets_checkout_and_duration(self):
        """Test explicit nulls unset the fields instead of being skipped."""
        profile = make_profile(checkout_time=time(18, 0), duration_minutes=90)

        response = self.client.patch(
            f'/api/v1/profiles/{profile.pk}/',
            {'checkout_time': None, 'duration_minutes': None},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIsNone(response.data['checkout_time'])
        self.assertIsNone(response.data['duration_minutes'])
        profile.refresh_from_db()
        self.assertIsNone(profile.checkout_time)
        self.assertIsNone(profile.duration_minutes)

    def test_patch_without_nulls_keeps_checkout(self):
        profile = make_profile(checkout_time=time(18, 0))

        self.client.patch(f'/api/v1/profiles/{profile.pk}/', {'name': 'Evening'}, format='json')

        profile.refresh_from_db()
        self.assertEqual(profile.checkout_time, time(18, 0))


@override_settings(ROOMS_WEBHOOK_SECRET='s3cret')
class PinWebhookAPITests(APITestCase):
    """Test the rooms PIN webhook."""

    url = '/api/v1/webhooks/rooms/pin/'

    def setUp(self):
        self.pass_obj = make_pass(make_pass_type(), status='pending')

    def test_requires_authorization(self):
        response = self.client.post(self.url, {'reservationId': str(self.pass_obj.pk), 'pinCode': '1234'},
                                    format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

        response = self.client.post(self.url, {'reservationId': str(self.pass_obj.pk), 'pinCode': '1234'},
                                    format='json', HTTP_AUTHORIZATION='Bearer wrong')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_nested_event_payload(self):
        response = self.client.post(self.url, {
            'event': 'pin.created',
            'data': {'reservationId': str(self.pass_obj.pk), 'pinCode': '482913'},
        }, format='json', HTTP_AUTHORIZATION='Bearer s3cret')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.pass_obj.refresh_from_db()
        self.assertEqual(self.pass_obj.status, 'active')

    def test_flat_payload_with_raw_token(self):
        response = self.client.post(self.url, {'reservationId': str(self.pass_obj.pk), 'pinCode': '1234'},
                                    format='json', HTTP_AUTHORIZATION='s3cret')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['passId'], str(self.pass_obj.pk))

    def test_invalid_pin(self):
        response = self.client.post(self.url, {'reservationId': str(self.pass_obj.pk), 'pinCode': '12'},
                                    format='json', HTTP_AUTHORIZATION='Bearer s3cret')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_revoke(self):
        services.record_pin(self.pass_obj.pk, '1234')

        response = self.client.delete(self.url, {'reservationId': str(self.pass_obj.pk), 'reason': 'user_cancelled'},
                                      format='json', HTTP_AUTHORIZATION='Bearer s3cret')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data['passActive'])
        self.pass_obj.refresh_from_db()
        self.assertEqual(self.pass_obj.status, 'cancelled')

    def test_non_ascii_token_is_unauthorized(self):
        """Test a token with characters outside ASCII is rejected, not a server error."""
        response = self.client.post(self.url, {'reservationId': str(self.pass_obj.pk), 'pinCode': '1234'},
                                    format='json', HTTP_AUTHORIZATION='Bearer café')

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_unknown_reservation_is_bad_request(self):
        response = self.client.post(self.url, {'reservationId': str(uuid.uuid4()), 'pinCode': '1234'},
                                    format='json', HTTP_AUTHORIZATION='Bearer s3cret')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Bad Request')
        self.assertEqual(response.data['message'], 'reservationId not found - pass does not exist')

    def test_health_check(self):
        """Test GET without a reservation needs no authorization."""
        response = self.client.get(self.url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'ok')
        self.assertTrue(response.data['config']['webhookSecretSet'])

    def test_get_pin(self):
        services.record_pin(self.pass_obj.pk, '482913')

        response = self.client.get(self.url, {'reservationId': str(self.pass_obj.pk)},
                                   HTTP_AUTHORIZATION='Bearer s3cret')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['reservationId'], str(self.pass_obj.pk))
        self.assertEqual(response.data['pinCode'], '482913')
        self.assertEqual(response.data['status'], 'active')
        self.assertEqual(response.data['provider'], 'rooms')
        self.assertIn('createdAt', response.data)

    def test_get_pin_requires_authorization(self):
        response = self.client.get(self.url, {'reservationId': str(self.pass_obj.pk)})

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_get_pin_not_found(self):
        response = self.client.get(self.url, {'reservationId': str(self.pass_obj.pk)},
                                   HTTP_AUTHORIZATION='Bearer s3cret')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['message'], 'No PIN found for this reservation')

    def test_get_pin_invalid_reservation_id(self):
        response = self.client.get(self.url, {'reservationId': 'not-a-uuid'},
                                   HTTP_AUTHORIZATION='Bearer s3cret')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


def make_device(**overrides):
    fields = {
        'site_id': uuid.uuid4(),
        'name': 'Front Gate Lock',
    }
    fields.update(overrides)
    return Device.objects.create(**fields)


def make_backup_codes(device, count, category='day', status='available', expires_at=None):
    return BackupCode.objects.bulk_create(
        BackupCode(
            site_id=device.site_id,
            device=device,
            code=f'{index:06d}',
            category=category,
            validity_hours=BACKUP_RESERVE_GOALS[category].validity_hours,
            status=status,
            starts_at=NOW - timedelta(hours=1),
            expires_at=expires_at or NOW + timedelta(hours=12),
        )
        for index in range(count)
    )


class BackupCodePoolTests(TestCase):
    """Test backup code pool maintenance."""

    def setUp(self):
        self.device = make_device()

    def category_counts(self, device):
        return {
            category: BackupCode.objects.filter(device=device, category=category, status='available').count()
            for category in BACKUP_RESERVE_GOALS
        }

    def test_empty_lock_is_filled_to_reserve_goals(self):
        result = services.replenish_backup_codes(clock=fixed_clock)

        self.assertEqual(result.created, 50)
        self.assertEqual(result.errors, [])
        self.assertEqual(self.category_counts(self.device), {
            'day': 30,
            'camping_3d': 10,
            'camping_7d': 5,
            'camping_14d': 5,
        })

        day_code = BackupCode.objects.filter(device=self.device, category='day').first()
        self.assertEqual(day_code.starts_at, NOW)
        self.assertEqual(day_code.expires_at, NOW + timedelta(hours=24))
        self.assertEqual(day_code.validity_hours, 24)
        self.assertEqual(day_code.site_id, self.device.site_id)
        self.assertRegex(day_code.code, r'^\d{6}$')

    def test_only_missing_codes_are_created(self):
        make_backup_codes(self.device, 25, category='day')
        make_backup_codes(self.device, 10, category='camping_3d')

        result = services.replenish_backup_codes(clock=fixed_clock)

        self.assertEqual(result.created, 5 + 0 + 5 + 5)
        self.assertEqual(self.category_counts(self.device)['day'], 30)
        self.assertEqual(self.category_counts(self.device)['camping_3d'], 10)

    def test_second_run_creates_nothing(self):
        services.replenish_backup_codes(clock=fixed_clock)
        result = services.replenish_backup_codes(clock=fixed_clock)

        self.assertEqual(result.created, 0)

    def test_hardware_limit_caps_creation(self):
        """Test assigned codes use up lock slots and shorter categories fill first."""
        make_backup_codes(self.device, BACKUP_HARDWARE_LIMIT - 10, status='assigned')

        result = services.replenish_backup_codes(clock=fixed_clock)

        self.assertEqual(result.created, 10)
        self.assertEqual(self.category_counts(self.device), {
            'day': 10,
            'camping_3d': 0,
            'camping_7d': 0,
            'camping_14d': 0,
        })
        live = BackupCode.objects.filter(device=self.device, status__in=['available', 'assigned']).count()
        self.assertEqual(live, BACKUP_HARDWARE_LIMIT)

    def test_full_lock_gets_nothing(self):
        make_backup_codes(self.device, BACKUP_HARDWARE_LIMIT, status='assigned')

        result = services.replenish_backup_codes(clock=fixed_clock)

        self.assertEqual(result.created, 0)

    def test_expired_codes_marked_for_removal(self):
        make_backup_codes(self.device, 3, expires_at=NOW - timedelta(minutes=1))
        make_backup_codes(self.device, 2, status='assigned', expires_at=NOW - timedelta(minutes=1))

        result = services.replenish_backup_codes(clock=fixed_clock)

        self.assertEqual(result.cleaned, 5)
        self.assertEqual(BackupCode.objects.filter(status='pending_removal').count(), 5)
        self.assertEqual(self.category_counts(self.device)['day'], 30)

    def test_inactive_devices_and_gates_are_skipped(self):
        inactive = make_device(status=Device.STATUS_INACTIVE)
        gate = make_device(device_type=Device.TYPE_GATE)

        services.replenish_backup_codes(clock=fixed_clock)

        self.assertFalse(BackupCode.objects.filter(device__in=[inactive, gate]).exists())
        self.assertTrue(BackupCode.objects.filter(device=self.device).exists())


class BackupCodeAssignmentTests(TestCase):
    """Test handing backup codes to passes."""

    def setUp(self):
        self.device = make_device()
        self.pass_obj = make_pass(make_pass_type(), device_id=self.device.pk)

    def test_shortest_validity_first(self):
        make_backup_codes(self.device, 1, category='camping_3d')
        make_backup_codes(self.device, 1, category='day')

        assignment = services.assign_backup_code(self.pass_obj.pk, self.device.pk, clock=fixed_clock)

        self.assertEqual(assignment.category, 'day')
        code = BackupCode.objects.get(status='assigned')
        self.assertEqual(code.pass_obj, self.pass_obj)
        self.assertEqual(code.assigned_at, NOW)

    def test_falls_through_to_longer_categories(self):
        make_backup_codes(self.device, 1, category='day', expires_at=NOW - timedelta(minutes=1))
        make_backup_codes(self.device, 1, category='camping_7d')

        assignment = services.assign_backup_code(self.pass_obj.pk, self.device.pk, clock=fixed_clock)

        self.assertEqual(assignment.category, 'camping_7d')

    def test_no_codes_left(self):
        with self.assertRaises(BackupCodeUnavailable):
            services.assign_backup_code(self.pass_obj.pk, self.device.pk, clock=fixed_clock)

    def test_unknown_pass(self):
        make_backup_codes(self.device, 1)

        with self.assertRaises(PassNotFound):
            services.assign_backup_code(uuid.uuid4(), self.device.pk, clock=fixed_clock)

    def test_cancelling_pass_releases_backup_code(self):
        make_backup_codes(self.device, 1)
        services.assign_backup_code(self.pass_obj.pk, self.device.pk, clock=fixed_clock)
        services.record_pin(self.pass_obj.pk, '1234')

        services.revoke_pin(self.pass_obj.pk, 'payment_failed')

        code = BackupCode.objects.get()
        self.assertEqual(code.status, 'available')
        self.assertIsNone(code.pass_obj)
        self.assertIsNone(code.assigned_at)

    def test_backup_used_keeps_code_assigned(self):
        make_backup_codes(self.device, 1)
        services.assign_backup_code(self.pass_obj.pk, self.device.pk, clock=fixed_clock)
        services.record_pin(self.pass_obj.pk, '1234')

        services.revoke_pin(self.pass_obj.pk, 'backup_used')

        self.assertEqual(BackupCode.objects.get().status, 'assigned')


class ManagementCommandTests(TestCase):
    """Test management commands."""

    def test_verify_profile_windows_command(self):
        out = StringIO()
        call_command('verify_profile_windows', stdout=out)

        output = out.getvalue()
        self.assertIn('ALL TESTS PASSED', output)
        self.assertNotIn('FAIL', output)

    def test_expire_passes_command(self):
        make_pass(make_pass_type(), valid_from=NOW - timedelta(days=2), valid_until=NOW - timedelta(days=1))

        out = StringIO()
        call_command('expire_passes', stdout=out)

        self.assertIn('Expired 1 pass(es)', out.getvalue())

    def test_replenish_backup_codes_command(self):
        make_device()

        out = StringIO()
        call_command('replenish_backup_codes', stdout=out)

        output = out.getvalue()
        self.assertIn('Marked 0 expired code(s) for removal', output)
        self.assertIn('Created 50 backup code(s)', output)
