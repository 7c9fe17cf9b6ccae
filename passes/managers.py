"""
Custom managers and querysets for pass models.

QuerySets define chainable query methods.
Managers expose them through ``Model.objects``.
No business logic should be here - only query operations.
"""

from django.db import models
from django.db.models import F

from .types import BLOCKING_STATUSES, LIVE_BACKUP_STATUSES, BackupCodeStatus


class PassTypeQuerySet(models.QuerySet):
    """Chainable queries for PassType."""

    def active(self):
        """Get pass types that can be sold."""
        return self.filter(is_active=True)

    def with_profile(self):
        """Join the linked profile in the same query."""
        return self.select_related('profile')

    def for_org(self, org_id):
        return self.filter(org_id=org_id)

    def ordered(self):
        """Display order first (unset last), then name."""
        return self.order_by(F('display_order').asc(nulls_last=True), 'name')


PassTypeManager = models.Manager.from_queryset(PassTypeQuerySet)


class PassQuerySet(models.QuerySet):
    """Chainable queries for Pass."""

    def blocking(self):
        """Get passes that still hold their booked slot (active or pending)."""
        return self.filter(status__in=BLOCKING_STATUSES)

    def booked(self):
        """Get passes created in booking mode."""
        return self.filter(booked_from__isnull=False, booked_to__isnull=False)

    def overlapping(self, start, end):
        """
        Get bookings sharing any instant with [start, end).

        Args:
            start: datetime object
            end: datetime object

        Touching intervals do not overlap.
        """
        return self.filter(booked_from__lt=end, booked_to__gt=start)

    def for_pass_type(self, pass_type_id):
        return self.filter(pass_type_id=pass_type_id)

    def for_device(self, device_id):
        return self.filter(device_id=device_id)

    def conflicting_with(self, pass_type_id, start, end, device_id=None):
        """
        Get blocking bookings of a pass type that overlap [start, end).

        Args:
            pass_type_id: PassType primary key
            start: datetime object
            end: datetime object
            device_id: optional device UUID narrowing contention to one resource
        """
        queryset = (
            self.for_pass_type(pass_type_id)
            .blocking()
            .booked()
            .overlapping(start, end)
        )
        if device_id:
            queryset = queryset.for_device(device_id)
        return queryset

    def expirable(self, now):
        """Get active or pending passes whose window has closed."""
        return self.blocking().filter(valid_until__lte=now)


class PassManager(models.Manager):
    """Custom manager for Pass model."""

    def get_queryset(self):
        """Return custom queryset for method chaining."""
        return PassQuerySet(self.model, using=self._db)

    def blocking(self):
        return self.get_queryset().blocking()

    def conflicting_with(self, pass_type_id, start, end, device_id=None):
        return self.get_queryset().conflicting_with(pass_type_id, start, end, device_id)

    def expirable(self, now):
        return self.get_queryset().expirable(now)


class DeviceQuerySet(models.QuerySet):

    def active_locks(self):
        """Get active devices that hold PIN codes."""
        return self.filter(status='active', device_type='lock')


DeviceManager = models.Manager.from_queryset(DeviceQuerySet)


class BackupCodeQuerySet(models.QuerySet):
    """Chainable queries for BackupCode."""

    def for_device(self, device_id):
        return self.filter(device_id=device_id)

    def live(self):
        """Get codes occupying a slot on the lock (available or assigned)."""
        return self.filter(status__in=LIVE_BACKUP_STATUSES)

    def available(self, now):
        """Get unassigned codes that have not expired yet."""
        return self.filter(
            status=BackupCodeStatus.AVAILABLE.value,
            expires_at__gte=now
        )

    def expired(self, now):
        """Get live codes past their expiry, due for removal from the lock."""
        return self.live().filter(expires_at__lt=now)


BackupCodeManager = models.Manager.from_queryset(BackupCodeQuerySet)
