"""
Service layer for pass business logic.
Services are framework-agnostic and handle all business operations.
"""

import logging
import re
import secrets
import string
import uuid
from datetime import datetime, timedelta
from typing import Optional

from django.conf import settings
from django.db import DatabaseError, transaction
from django.db.models import Count, ProtectedError
from django.utils import timezone

from .access_windows import Clock, compute_access_window, to_utc
from .exceptions import (
    BackupCodeUnavailable,
    DuplicateProfileCode,
    InvalidIdentifier,
    InvalidInterval,
    InvalidPin,
    LockCodeNotFound,
    PassError,
    PassNotFound,
    PassTypeInactive,
    PassTypeNotFound,
    ProfileInUse,
    SlotUnavailable,
    StorageError,
    UnknownReservation,
)
from .models import BackupCode, Device, LockCode, Pass, PassProfile, PassType
from .types import (
    BACKUP_CODE_LENGTH,
    BACKUP_HARDWARE_LIMIT,
    BACKUP_RESERVE_GOALS,
    NULLABLE_PROFILE_FIELDS,
    PIN_MAX_LENGTH,
    PIN_MIN_LENGTH,
    AvailabilityResult,
    BackupAssignment,
    BackupCodeStatus,
    BackupReplenishResult,
    PassCreated,
    PassStatus,
    PinResult,
    ProfileData,
    RevokeReason,
    RevokeResult,
)

logger = logging.getLogger(__name__)

BASE36_ALPHABET = string.digits + string.ascii_uppercase
PASS_NUMBER_RANDOM_LENGTH = 6


def check_availability(
    pass_type_id,
    booked_from: datetime,
    booked_to: datetime,
    device_id=None
) -> AvailabilityResult:
    """
    Check whether a booking interval is free for a pass type.

    Args:
        pass_type_id: PassType UUID
        booked_from: Requested start
        booked_to: Requested end
        device_id: Optional device UUID narrowing the check to one resource

    Returns:
        AvailabilityResult; always available when the pass type's profile
        does not enforce availability (no overlap query is issued then)

    Raises:
        InvalidIdentifier: If an identifier is not a UUID
        InvalidInterval: If booked_from >= booked_to
        PassTypeNotFound: If the pass type does not exist
        StorageError: If the overlap query fails
    """
    pass_type_id = _as_uuid(pass_type_id, 'pass_type_id')
    device_id = _as_uuid(device_id, 'device_id') if device_id else None
    booked_from, booked_to = _validate_interval(booked_from, booked_to)

    pass_type = _get_pass_type(pass_type_id)
    profile = pass_type.profile

    if profile is None or not profile.availability_enforcement:
        return AvailabilityResult(
            available=True,
            enforcement_enabled=False,
            message='Availability enforcement is not enabled for this pass type',
        )

    conflicts = count_conflicts(pass_type.pk, booked_from, booked_to, device_id)
    result = AvailabilityResult(
        available=conflicts == 0,
        enforcement_enabled=True,
        conflicts=conflicts,
    )
    if conflicts:
        result.reason = f"Time slot conflicts with {conflicts} existing booking(s)"
    return result


def count_conflicts(pass_type_id, booked_from, booked_to, device_id=None) -> int:
    """
    Count blocking bookings overlapping [booked_from, booked_to).

    Raises:
        StorageError: If the query fails; a failed query never reads as free
    """
    try:
        return Pass.objects.conflicting_with(
            pass_type_id, booked_from, booked_to, device_id
        ).count()
    except DatabaseError as exc:
        logger.exception("Error checking conflicts for pass type %s", pass_type_id)
        raise StorageError('Failed to check availability') from exc


def create_pass(
    pass_type_id,
    guest_name: str,
    guest_email: str,
    guest_phone: Optional[str] = None,
    device_id=None,
    booked_from: Optional[datetime] = None,
    booked_to: Optional[datetime] = None,
    nights: Optional[int] = None,
    clock: Clock = timezone.now
) -> PassCreated:
    """
    Reserve a pending pass, or reject the request.

    Booking times are honoured only when both are given and the profile
    allows future booking; otherwise the pass starts now. In booking mode
    with availability enforcement, the conflict check and the insert run
    under a lock on the pass type row, so concurrent requests for the same
    slot cannot both succeed.

    Args:
        pass_type_id: PassType UUID
        guest_name: Guest display name
        guest_email: Guest contact email
        guest_phone: Optional phone number
        device_id: Optional device UUID the pass is for
        booked_from: Optional booking start
        booked_to: Optional booking end
        nights: Number of nights for nights-checkout profiles
        clock: Zero-argument callable returning the current time

    Returns:
        PassCreated with the saved pass

    Raises:
        InvalidIdentifier: If an identifier is not a UUID
        InvalidInterval: If booked_from >= booked_to, or the computed window is empty
        PassTypeNotFound: If the pass type does not exist
        PassTypeInactive: If the pass type is not on sale
        SlotUnavailable: If the booked slot is already taken
        StorageError: If the conflict query fails
    """
    pass_type_id = _as_uuid(pass_type_id, 'pass_type_id')
    device_id = _as_uuid(device_id, 'device_id') if device_id else None

    has_booking_times = booked_from is not None and booked_to is not None
    if has_booking_times:
        booked_from, booked_to = _validate_interval(booked_from, booked_to)

    with transaction.atomic():
        pass_type = _get_pass_type(pass_type_id, for_update=True)
        if not pass_type.is_active:
            raise PassTypeInactive()

        rules = pass_type.profile.rules if pass_type.profile else None
        booking_mode = has_booking_times and rules is not None and rules.future_booking_enabled

        if has_booking_times and not booking_mode:
            logger.info(
                "Ignoring booking times - future booking is disabled for pass type %s",
                pass_type_id
            )

        if booking_mode and rules.availability_enforcement:
            conflicts = count_conflicts(pass_type.pk, booked_from, booked_to, device_id)
            if conflicts:
                raise SlotUnavailable(conflicts)

        window = compute_access_window(
            booked_from=booked_from if booking_mode else None,
            booked_to=booked_to if booking_mode else None,
            nights=nights,
            duration_hours=pass_type.duration_hours,
            rules=rules,
            clock=clock,
        )
        if not window.is_valid:
            raise InvalidInterval('Computed access window ends before it starts')

        pass_obj = Pass.objects.create(
            pass_number=generate_pass_number(clock),
            pass_type=pass_type,
            device_id=device_id,
            guest_name=guest_name,
            guest_email=guest_email,
            guest_phone=guest_phone or None,
            valid_from=window.valid_from,
            valid_until=window.valid_until,
            booked_from=booked_from if booking_mode else None,
            booked_to=booked_to if booking_mode else None,
            status=PassStatus.PENDING.value,
        )

    logger.info("Created pass %s, booking_mode: %s", pass_obj.pk, booking_mode)
    return PassCreated(
        pass_obj=pass_obj,
        booking_mode=booking_mode,
        price_cents=pass_type.price_cents,
    )


def generate_pass_number(clock: Clock = timezone.now) -> str:
    """Build a pass number: prefix, base36 millisecond timestamp, random suffix."""
    prefix = getattr(settings, 'PASS_NUMBER_PREFIX', 'ZP')
    millis = int(clock().timestamp() * 1000)
    suffix = ''.join(
        secrets.choice(BASE36_ALPHABET) for _ in range(PASS_NUMBER_RANDOM_LENGTH)
    )
    return f"{prefix}-{_base36(millis)}-{suffix}"


def get_pass(pass_id=None, pass_number: Optional[str] = None) -> Pass:
    """
    Look up a pass by id or pass number.

    Raises:
        ValueError: If neither key is given
        InvalidIdentifier: If pass_id is not a UUID
        PassNotFound: If no pass matches
    """
    if not pass_id and not pass_number:
        raise ValueError("pass_id or pass_number is required")

    queryset = Pass.objects.select_related('pass_type')
    if pass_id:
        pass_obj = queryset.filter(pk=_as_uuid(pass_id, 'pass_id')).first()
    else:
        pass_obj = queryset.filter(pass_number=pass_number).first()

    if pass_obj is None:
        raise PassNotFound()
    return pass_obj


@transaction.atomic
def record_pin(reservation_id, pin_code: str, provider: str = 'rooms') -> PinResult:
    """
    Store the PIN a lock provider issued and activate the pending pass.

    Args:
        reservation_id: Pass UUID
        pin_code: 4-8 digit PIN
        provider: Provider name recorded on the lock code

    Returns:
        PinResult; idempotent when the same PIN is already active

    Raises:
        InvalidPin: If the PIN format is wrong
        InvalidIdentifier: If reservation_id is not a UUID
        UnknownReservation: If the pass does not exist
    """
    _validate_pin(pin_code)
    reservation_id = _as_uuid(reservation_id, 'reservationId')

    pass_obj = Pass.objects.select_for_update().filter(pk=reservation_id).first()
    if pass_obj is None:
        raise UnknownReservation()

    existing = LockCode.objects.filter(pass_obj=pass_obj).first()
    if existing and existing.code == pin_code and existing.status == LockCode.STATUS_ACTIVE:
        logger.info("PIN already set for pass %s", pass_obj.pk)
        return PinResult(pass_id=pass_obj.pk, idempotent=True)

    lock_code = existing or LockCode(pass_obj=pass_obj)
    lock_code.code = pin_code
    lock_code.status = LockCode.STATUS_ACTIVE
    lock_code.provider = provider
    lock_code.provider_ref = str(pass_obj.pk)
    lock_code.save()

    Pass.objects.filter(
        pk=pass_obj.pk,
        status=PassStatus.PENDING.value
    ).update(status=PassStatus.ACTIVE.value)

    logger.info("PIN received for pass %s", pass_obj.pk)
    return PinResult(pass_id=pass_obj.pk)


def get_pin(reservation_id) -> LockCode:
    """
    Look up the PIN stored for a reservation.

    Raises:
        InvalidIdentifier: If reservation_id is not a UUID
        LockCodeNotFound: If no PIN was recorded
    """
    reservation_id = _as_uuid(reservation_id, 'reservationId')
    lock_code = LockCode.objects.filter(pass_obj_id=reservation_id).first()
    if lock_code is None:
        raise LockCodeNotFound()
    return lock_code


@transaction.atomic
def revoke_pin(reservation_id, reason: str = RevokeReason.USER_CANCELLED.value) -> RevokeResult:
    """
    Revoke a pass's PIN.

    Timeouts and backup-code use keep the pass active; payment failure and
    user cancellation cancel it.

    Raises:
        PassError: If the reason is unknown
        InvalidIdentifier: If reservation_id is not a UUID
        LockCodeNotFound: If there is no PIN and the reason cancels the pass
    """
    try:
        reason = RevokeReason(reason or RevokeReason.USER_CANCELLED.value)
    except ValueError:
        choices = ', '.join(r.value for r in RevokeReason)
        raise PassError(f"reason must be one of: {choices}") from None

    reservation_id = _as_uuid(reservation_id, 'reservationId')
    keep_active = reason.keeps_pass_active

    lock_code = LockCode.objects.select_for_update().filter(pass_obj_id=reservation_id).first()

    if lock_code is None:
        if keep_active:
            logger.info("No lock code for %s, reason: %s", reservation_id, reason.value)
            return RevokeResult(
                pass_id=reservation_id, reason=reason, pass_active=True, revoked=False
            )
        raise LockCodeNotFound()

    if lock_code.status == LockCode.STATUS_REVOKED:
        return RevokeResult(
            pass_id=reservation_id, reason=reason, pass_active=keep_active, idempotent=True
        )

    lock_code.status = LockCode.STATUS_REVOKED
    lock_code.save(update_fields=['status', 'updated_at'])

    if not keep_active:
        Pass.objects.filter(pk=reservation_id).update(status=PassStatus.CANCELLED.value)
        release_backup_code(reservation_id)

    logger.info(
        "PIN revoked for pass %s, reason: %s, pass kept active: %s",
        reservation_id, reason.value, keep_active
    )
    return RevokeResult(pass_id=reservation_id, reason=reason, pass_active=keep_active)


def expire_passes(clock: Clock = timezone.now) -> int:
    """
    Mark active and pending passes whose window has closed as expired.

    Returns:
        Number of passes expired
    """
    now = to_utc(clock())
    expired = Pass.objects.expirable(now).update(status=PassStatus.EXPIRED.value)
    logger.info("Expired %d pass(es)", expired)
    return expired


def replenish_backup_codes(clock: Clock = timezone.now) -> BackupReplenishResult:
    """
    Maintain the backup code pool of every active lock.

    Phase 1 marks live codes past their expiry as pending removal. Phase 2
    tops each active lock up to its per-category reserve goals without going
    over the lock's hardware limit. A failing lock is recorded in the result
    and does not stop the others.

    Returns:
        BackupReplenishResult with the cleanup and creation counts
    """
    now = to_utc(clock())
    result = BackupReplenishResult()

    result.cleaned = BackupCode.objects.expired(now).update(
        status=BackupCodeStatus.PENDING_REMOVAL.value,
        updated_at=now
    )

    for device in Device.objects.active_locks():
        try:
            with transaction.atomic():
                result.created += _replenish_device(device, now)
        except DatabaseError as exc:
            logger.exception("Failed to replenish backup codes for device %s", device.pk)
            result.errors.append(f"Device {device.pk}: {exc}")

    logger.info(
        "Backup code pool: %d marked for removal, %d created, %d error(s)",
        result.cleaned, result.created, len(result.errors)
    )
    return result


@transaction.atomic
def assign_backup_code(pass_id, device_id, clock: Clock = timezone.now) -> BackupAssignment:
    """
    Hand an available backup code of a lock to a pass.

    Categories are tried shortest validity first.

    Raises:
        InvalidIdentifier: If an identifier is not a UUID
        PassNotFound: If the pass does not exist
        BackupCodeUnavailable: If the lock has no unexpired code left
    """
    pass_id = _as_uuid(pass_id, 'pass_id')
    device_id = _as_uuid(device_id, 'device_id')
    if not Pass.objects.filter(pk=pass_id).exists():
        raise PassNotFound()

    now = to_utc(clock())
    available = BackupCode.objects.for_device(device_id).available(now).select_for_update()

    for category in BACKUP_RESERVE_GOALS:
        backup_code = available.filter(category=category).first()
        if backup_code is None:
            continue

        backup_code.status = BackupCodeStatus.ASSIGNED.value
        backup_code.pass_obj_id = pass_id
        backup_code.assigned_at = now
        backup_code.save(update_fields=['status', 'pass_obj', 'assigned_at', 'updated_at'])

        logger.info("Assigned %s backup code to pass %s", category, pass_id)
        return BackupAssignment(
            code=backup_code.code,
            category=category,
            expires_at=backup_code.expires_at,
        )

    logger.warning("No backup codes left on device %s", device_id)
    raise BackupCodeUnavailable()


def release_backup_code(pass_id) -> int:
    """Return the backup code assigned to a pass to the pool."""
    return BackupCode.objects.filter(
        pass_obj_id=pass_id,
        status=BackupCodeStatus.ASSIGNED.value
    ).update(
        status=BackupCodeStatus.AVAILABLE.value,
        pass_obj=None,
        assigned_at=None,
        updated_at=timezone.now()
    )


def generate_backup_code() -> str:
    return ''.join(secrets.choice(string.digits) for _ in range(BACKUP_CODE_LENGTH))


def list_pass_types(org_id=None):
    """Active pass types in display order, with their profiles joined."""
    queryset = PassType.objects.active().with_profile().ordered()
    if org_id:
        queryset = queryset.for_org(_as_uuid(org_id, 'organization_id'))
    return list(queryset)


def list_profiles(site_id=None):
    queryset = PassProfile.objects.all()
    if site_id:
        queryset = queryset.filter(site_id=_as_uuid(site_id, 'site_id'))
    return list(queryset)


def normalize_profile_code(code: str) -> str:
    """Lower-case a profile code and collapse whitespace runs to underscores."""
    return re.sub(r'\s+', '_', code.lower())


@transaction.atomic
def create_profile(site_id, data: ProfileData) -> PassProfile:
    """
    Create a pass profile.

    Raises:
        ValueError: If code, name or profile type is missing
        DuplicateProfileCode: If the site already has a profile with this code
    """
    if not data.code or not data.name or not data.profile_type:
        raise ValueError("Missing required fields: site_id, code, name, profile_type")

    site_id = _as_uuid(site_id, 'site_id')
    code = normalize_profile_code(data.code)
    _ensure_code_free(site_id, code)

    profile = PassProfile(site_id=site_id)
    _apply_field_updates(profile, _profile_fields(data, code))
    profile.full_clean()
    profile.save()
    return profile


@transaction.atomic
def update_profile(profile: PassProfile, data: ProfileData) -> PassProfile:
    """
    Update the given fields of a pass profile.

    Fields left as None are not touched, except nullable fields named in
    ``data.cleared_fields``, which are reset to None. Existing passes keep
    the windows computed at their creation.

    Raises:
        DuplicateProfileCode: If the new code clashes with another profile of the site
    """
    code = normalize_profile_code(data.code) if data.code else None
    if code and code != profile.code:
        _ensure_code_free(profile.site_id, code, exclude_pk=profile.pk)

    _apply_field_updates(profile, _profile_fields(data, code))
    for field_name in data.cleared_fields:
        if field_name in NULLABLE_PROFILE_FIELDS:
            setattr(profile, field_name, None)
    profile.full_clean()
    profile.save()
    return profile


def delete_profile(profile: PassProfile) -> None:
    """
    Delete a pass profile.

    Raises:
        ProfileInUse: If a pass type still references the profile
    """
    try:
        profile.delete()
    except ProtectedError:
        raise ProfileInUse() from None


def _get_pass_type(pass_type_id, for_update: bool = False) -> PassType:
    """Fetch a pass type with its profile."""
    queryset = PassType.objects.with_profile()
    if for_update:
        queryset = queryset.select_for_update(of=('self',))

    pass_type = queryset.filter(pk=pass_type_id).first()
    if pass_type is None:
        raise PassTypeNotFound()
    return pass_type


def _validate_interval(booked_from: datetime, booked_to: datetime):
    """Normalise both bounds to UTC and ensure start is before end."""
    booked_from, booked_to = to_utc(booked_from), to_utc(booked_to)
    if booked_from >= booked_to:
        raise InvalidInterval()
    return booked_from, booked_to


def _as_uuid(value, field_name: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise InvalidIdentifier(f"{field_name} must be a valid UUID") from None


def _validate_pin(pin_code: str) -> None:
    if not pin_code:
        raise InvalidPin('pinCode is required')
    if not pin_code.isdigit() or not pin_code.isascii():
        raise InvalidPin('pinCode must contain only digits (0-9)')
    if not PIN_MIN_LENGTH <= len(pin_code) <= PIN_MAX_LENGTH:
        raise InvalidPin(f'pinCode must be {PIN_MIN_LENGTH} to {PIN_MAX_LENGTH} digits')


def _ensure_code_free(site_id, code: str, exclude_pk=None) -> None:
    clashes = PassProfile.objects.filter(site_id=site_id, code=code)
    if exclude_pk is not None:
        clashes = clashes.exclude(pk=exclude_pk)
    if clashes.exists():
        raise DuplicateProfileCode(code)


def _profile_fields(data: ProfileData, code: Optional[str]) -> dict:
    return {
        'code': code,
        'name': data.name,
        'profile_type': data.profile_type,
        'duration_minutes': data.duration_minutes,
        'duration_options': data.duration_options,
        'checkout_time': data.checkout_time,
        'entry_buffer_minutes': data.entry_buffer_minutes,
        'exit_buffer_minutes': data.exit_buffer_minutes,
        'reset_buffer_minutes': data.reset_buffer_minutes,
        'required_inputs': data.required_inputs,
        'future_booking_enabled': data.future_booking_enabled,
        'availability_enforcement': data.availability_enforcement,
    }


def _base36(number: int) -> str:
    if number == 0:
        return '0'
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(BASE36_ALPHABET[remainder])
    return ''.join(reversed(digits))


def _apply_field_updates(obj, fields: dict) -> None:
    """Apply field updates to object if values are not None (DRY helper)."""
    for field_name, value in fields.items():
        if value is not None:
            setattr(obj, field_name, value)


def _replenish_device(device: Device, now: datetime) -> int:
    """Create the codes one lock is missing; returns how many were created."""
    codes = BackupCode.objects.for_device(device.pk)
    counts = dict(
        codes.available(now)
        .order_by()
        .values_list('category')
        .annotate(total=Count('id'))
    )
    free_slots = BACKUP_HARDWARE_LIMIT - codes.live().count()

    new_codes = []
    for category, goal in BACKUP_RESERVE_GOALS.items():
        to_create = min(goal.count - counts.get(category, 0), free_slots)
        if to_create <= 0:
            continue

        # TODO: provision each code on the lock through the rooms API and keep its id in provider_ref.
        expires_at = now + timedelta(hours=goal.validity_hours)
        new_codes.extend(
            BackupCode(
                site_id=device.site_id,
                device=device,
                code=generate_backup_code(),
                category=category,
                validity_hours=goal.validity_hours,
                starts_at=now,
                expires_at=expires_at,
            )
            for _ in range(to_create)
        )
        free_slots -= to_create

    BackupCode.objects.bulk_create(new_codes)
    return len(new_codes)
