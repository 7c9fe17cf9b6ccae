"""
Data types and constants for the pass system.

This module contains:
- Enumerations for profile codes, profile types and pass statuses
- DTOs (Data Transfer Objects) passed between services and views
- Constants used across the application
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime, time
from typing import List, Optional, Tuple, Union


DEFAULT_CHECKOUT_TIME = time(23, 59)
DEFAULT_NIGHTS = 1

PIN_MIN_LENGTH = 4
PIN_MAX_LENGTH = 8


class ProfileCode(str, enum.Enum):
    """Profile codes with dedicated window strategies."""
    END_OF_DAY = 'end_of_day'
    NIGHTS_CHECKOUT = 'nights_checkout'
    INSTANT_ACCESS = 'instant_access'

    @classmethod
    def lookup(cls, code: Optional[str]) -> Optional['ProfileCode']:
        """Return the matching member, or None for any other code."""
        try:
            return cls(code)
        except ValueError:
            return None


class ProfileType(str, enum.Enum):
    INSTANT = 'instant'
    DATE_SELECT = 'date_select'
    DATETIME_SELECT = 'datetime_select'
    DURATION_SELECT = 'duration_select'


PROFILE_TYPE_LABELS = {
    ProfileType.INSTANT: 'Instant (No Selection)',
    ProfileType.DATE_SELECT: 'Date Selection',
    ProfileType.DATETIME_SELECT: 'Date & Time Selection',
    ProfileType.DURATION_SELECT: 'Duration Selection',
}

REQUIRED_INPUT_LABELS = {
    'date': 'Date',
    'time': 'Time',
    'duration': 'Duration',
    'nights': 'Number of Nights',
}


class PassStatus(str, enum.Enum):
    PENDING = 'pending'
    ACTIVE = 'active'
    CANCELLED = 'cancelled'
    EXPIRED = 'expired'


# Passes in these states hold their booked slot.
BLOCKING_STATUSES = (PassStatus.ACTIVE.value, PassStatus.PENDING.value)

# Profile fields that may be reset to null on update.
NULLABLE_PROFILE_FIELDS = ('checkout_time', 'duration_minutes')


class BackupCodeStatus(str, enum.Enum):
    AVAILABLE = 'available'
    ASSIGNED = 'assigned'
    PENDING_REMOVAL = 'pending_removal'


# Codes in these states occupy a slot on the lock.
LIVE_BACKUP_STATUSES = (BackupCodeStatus.AVAILABLE.value, BackupCodeStatus.ASSIGNED.value)

BACKUP_CODE_LENGTH = 6

# Maximum number of codes a lock can store.
BACKUP_HARDWARE_LIMIT = 150


class RevokeReason(str, enum.Enum):
    TIMEOUT = 'timeout'
    BACKUP_USED = 'backup_used'
    PAYMENT_FAILED = 'payment_failed'
    USER_CANCELLED = 'user_cancelled'

    @property
    def keeps_pass_active(self) -> bool:
        """Guest falls back to a backup code, so the pass stays usable."""
        return self in (RevokeReason.TIMEOUT, RevokeReason.BACKUP_USED)


def parse_checkout_time(value: Union[str, time, None]) -> time:
    """
    Parse a wall-clock checkout time.

    Args:
        value: 'HH:MM' or 'HH:MM:SS' string, a time object, or None

    Returns:
        time object; DEFAULT_CHECKOUT_TIME when value is empty

    Raises:
        ValueError: If the hour or minute is out of range
    """
    if not value:
        return DEFAULT_CHECKOUT_TIME
    if isinstance(value, time):
        return value

    parts = value.strip().split(':')
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid checkout time: {value!r}")

    try:
        hour, minute = int(parts[0]), int(parts[1])
        second = int(parts[2]) if len(parts) == 3 else 0
    except ValueError:
        raise ValueError(f"Invalid checkout time: {value!r}") from None

    if not 0 <= hour <= 23:
        raise ValueError("Checkout hour must be between 0 and 23")
    if not 0 <= minute <= 59:
        raise ValueError("Checkout minute must be between 0 and 59")
    if not 0 <= second <= 59:
        raise ValueError("Checkout second must be between 0 and 59")

    return time(hour, minute, second)


@dataclass(frozen=True)
class ProfileRules:
    """Immutable snapshot of the profile fields that drive window math."""
    code: str
    profile_type: str = ProfileType.INSTANT.value
    checkout_time: time = DEFAULT_CHECKOUT_TIME
    duration_minutes: Optional[int] = None
    entry_buffer_minutes: int = 0
    exit_buffer_minutes: int = 0
    future_booking_enabled: bool = False
    availability_enforcement: bool = False

    def __post_init__(self):
        object.__setattr__(self, 'checkout_time', parse_checkout_time(self.checkout_time))
        object.__setattr__(self, 'entry_buffer_minutes', self.entry_buffer_minutes or 0)
        object.__setattr__(self, 'exit_buffer_minutes', self.exit_buffer_minutes or 0)
        if self.entry_buffer_minutes < 0 or self.exit_buffer_minutes < 0:
            raise ValueError("Buffers must not be negative")


@dataclass(frozen=True)
class AccessWindow:
    """Computed validity window of a pass, both bounds in UTC."""
    valid_from: datetime
    valid_until: datetime

    @property
    def is_valid(self) -> bool:
        return self.valid_from < self.valid_until


@dataclass
class AvailabilityResult:
    """Outcome of an availability check."""
    available: bool
    enforcement_enabled: bool
    conflicts: Optional[int] = None
    reason: Optional[str] = None
    message: Optional[str] = None


@dataclass
class PassCreated:
    """Result of a pass reservation."""
    pass_obj: object
    booking_mode: bool
    price_cents: int


@dataclass
class PinResult:
    pass_id: object
    idempotent: bool = False


@dataclass
class RevokeResult:
    pass_id: object
    reason: RevokeReason
    pass_active: bool
    idempotent: bool = False
    revoked: bool = True


@dataclass
class ProfileData:
    """DTO for profile create/update operations."""
    code: Optional[str] = None
    name: Optional[str] = None
    profile_type: Optional[str] = None
    duration_minutes: Optional[int] = None
    duration_options: Optional[list] = None
    checkout_time: Optional[time] = None
    entry_buffer_minutes: Optional[int] = None
    exit_buffer_minutes: Optional[int] = None
    reset_buffer_minutes: Optional[int] = None
    required_inputs: Optional[list] = None
    future_booking_enabled: Optional[bool] = None
    availability_enforcement: Optional[bool] = None
    # Nullable fields the caller explicitly set to None
    cleared_fields: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ReserveGoal:
    """How many available backup codes a lock should hold for one category."""
    count: int
    validity_hours: int


# Per-lock reserve goals, shortest validity first. Assignment walks the
# categories in this order.
BACKUP_RESERVE_GOALS = {
    'day': ReserveGoal(count=30, validity_hours=24),
    'camping_3d': ReserveGoal(count=10, validity_hours=72),
    'camping_7d': ReserveGoal(count=5, validity_hours=168),
    'camping_14d': ReserveGoal(count=5, validity_hours=336),
}


@dataclass
class BackupReplenishResult:
    """Outcome of one backup code pool maintenance run."""
    cleaned: int = 0
    created: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class BackupAssignment:
    code: str
    category: str
    expires_at: datetime
