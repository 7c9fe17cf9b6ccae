"""
Models for the pass system.

- PassProfile holds the configuration deciding how a pass window is computed
- PassType is the sellable product, optionally linked to a profile
- Pass is one purchased pass with its computed validity window
- LockCode is the PIN a lock provider issued for a pass
- Device and BackupCode hold the fallback PIN pool of each lock
"""

import uuid

from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator, RegexValidator
from django.db import models

from .managers import BackupCodeManager, DeviceManager, PassManager, PassTypeManager
from .types import (
    PIN_MAX_LENGTH,
    PIN_MIN_LENGTH,
    PROFILE_TYPE_LABELS,
    REQUIRED_INPUT_LABELS,
    BackupCodeStatus,
    PassStatus,
    ProfileRules,
    ProfileType,
)


class PassProfile(models.Model):
    """
    Configuration entity selecting a window strategy for its pass types.

    ``code`` drives the window math; ``profile_type`` is informational and
    only picks between the generic booking strategies.
    """

    PROFILE_TYPE_CHOICES = [(t.value, label) for t, label in PROFILE_TYPE_LABELS.items()]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    site_id = models.UUIDField()
    code = models.CharField(max_length=50)
    name = models.CharField(max_length=200)
    profile_type = models.CharField(
        max_length=20,
        choices=PROFILE_TYPE_CHOICES,
        default=ProfileType.INSTANT.value
    )

    duration_minutes = models.PositiveIntegerField(null=True, blank=True)
    duration_options = models.JSONField(default=list, blank=True)
    checkout_time = models.TimeField(
        null=True,
        blank=True,
        help_text="Wall-clock expiry for day and overnight passes (null = 23:59)"
    )

    entry_buffer_minutes = models.PositiveIntegerField(default=0)
    exit_buffer_minutes = models.PositiveIntegerField(default=0)
    reset_buffer_minutes = models.PositiveIntegerField(default=0)

    required_inputs = models.JSONField(default=list, blank=True)
    future_booking_enabled = models.BooleanField(default=False)
    availability_enforcement = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']
        constraints = [
            models.UniqueConstraint(fields=['site_id', 'code'], name='unique_profile_code_per_site'),
        ]

    def __str__(self):
        return f"{self.name} ({self.code})"

    @property
    def rules(self) -> ProfileRules:
        """Snapshot of the fields the window calculator reads."""
        return ProfileRules(
            code=self.code,
            profile_type=self.profile_type,
            checkout_time=self.checkout_time,
            duration_minutes=self.duration_minutes,
            entry_buffer_minutes=self.entry_buffer_minutes,
            exit_buffer_minutes=self.exit_buffer_minutes,
            future_booking_enabled=self.future_booking_enabled,
            availability_enforcement=self.availability_enforcement,
        )

    def clean(self):
        """Validate list-shaped JSON fields."""
        super().clean()

        unknown = [i for i in self.required_inputs or [] if i not in REQUIRED_INPUT_LABELS]
        if unknown:
            raise ValidationError({
                'required_inputs': f"Unknown inputs: {', '.join(map(str, unknown))}"
            })

        for option in self.duration_options or []:
            if not isinstance(option, dict) or not isinstance(option.get('minutes'), int):
                raise ValidationError({
                    'duration_options': 'Each option needs a label and integer minutes.'
                })


class PassType(models.Model):
    """A sellable pass product."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    org_id = models.UUIDField()
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True, default='')

    duration_hours = models.PositiveIntegerField(
        default=24,
        validators=[MinValueValidator(1)],
        help_text="Validity length for pass types without a profile"
    )
    price_cents = models.PositiveIntegerField(default=0)
    max_uses = models.PositiveIntegerField(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    display_order = models.IntegerField(null=True, blank=True)

    profile = models.ForeignKey(
        PassProfile,
        on_delete=models.PROTECT,
        related_name='pass_types',
        null=True,
        blank=True
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = PassTypeManager()

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name


class Pass(models.Model):
    """
    A purchased pass.

    The validity window is computed once at creation and never recalculated,
    even when the profile changes later.
    """

    STATUS_CHOICES = [
        (PassStatus.PENDING.value, 'Pending'),
        (PassStatus.ACTIVE.value, 'Active'),
        (PassStatus.CANCELLED.value, 'Cancelled'),
        (PassStatus.EXPIRED.value, 'Expired'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    pass_number = models.CharField(max_length=40, unique=True)
    pass_type = models.ForeignKey(PassType, on_delete=models.PROTECT, related_name='passes')
    device_id = models.UUIDField(null=True, blank=True)

    guest_name = models.CharField(max_length=200)
    guest_email = models.EmailField()
    guest_phone = models.CharField(max_length=40, null=True, blank=True)

    valid_from = models.DateTimeField()
    valid_until = models.DateTimeField()
    booked_from = models.DateTimeField(null=True, blank=True)
    booked_to = models.DateTimeField(null=True, blank=True)

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=PassStatus.PENDING.value
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = PassManager()

    class Meta:
        verbose_name_plural = 'passes'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['pass_type', 'status', 'booked_from', 'booked_to']),
            models.Index(fields=['status', 'valid_until']),
        ]

    def __str__(self):
        return f"{self.pass_number} [{self.status}]"

    @property
    def is_booking(self):
        """Check if this pass was created in booking mode."""
        return self.booked_from is not None and self.booked_to is not None

    def clean(self):
        """Validate window and booking ordering."""
        super().clean()

        if self.valid_from and self.valid_until and self.valid_from >= self.valid_until:
            raise ValidationError({
                'valid_until': 'Valid until must be after valid from.'
            })

        if self.booked_from and self.booked_to and self.booked_from >= self.booked_to:
            raise ValidationError({
                'booked_to': 'Booked to must be after booked from.'
            })


class LockCode(models.Model):
    """PIN issued by a lock provider for one pass."""

    STATUS_ACTIVE = 'active'
    STATUS_REVOKED = 'revoked'
    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_REVOKED, 'Revoked'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    pass_obj = models.OneToOneField(
        Pass,
        on_delete=models.CASCADE,
        related_name='lock_code',
        db_column='pass_id'
    )
    code = models.CharField(
        max_length=PIN_MAX_LENGTH,
        validators=[RegexValidator(rf'^\d{{{PIN_MIN_LENGTH},{PIN_MAX_LENGTH}}}$')]
    )
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_ACTIVE)
    provider = models.CharField(max_length=50)
    provider_ref = models.CharField(max_length=100, blank=True, default='')

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.provider} PIN for {self.pass_obj_id} [{self.status}]"


class Device(models.Model):
    """A physical access device at a site (lock or gate)."""

    TYPE_LOCK = 'lock'
    TYPE_GATE = 'gate'
    TYPE_CHOICES = [
        (TYPE_LOCK, 'Lock'),
        (TYPE_GATE, 'Gate'),
    ]

    STATUS_ACTIVE = 'active'
    STATUS_INACTIVE = 'inactive'
    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_INACTIVE, 'Inactive'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    site_id = models.UUIDField()
    name = models.CharField(max_length=200)
    device_type = models.CharField(max_length=20, choices=TYPE_CHOICES, default=TYPE_LOCK)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_ACTIVE)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = DeviceManager()

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name


class BackupCode(models.Model):
    """
    Pre-provisioned fallback PIN on a lock.

    Guests get one of these when the lock provider cannot deliver a PIN in
    time. Each lock keeps a reserve per validity category.
    """

    STATUS_CHOICES = [
        (BackupCodeStatus.AVAILABLE.value, 'Available'),
        (BackupCodeStatus.ASSIGNED.value, 'Assigned'),
        (BackupCodeStatus.PENDING_REMOVAL.value, 'Pending removal'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    site_id = models.UUIDField()
    device = models.ForeignKey(Device, on_delete=models.CASCADE, related_name='backup_codes')
    code = models.CharField(max_length=PIN_MAX_LENGTH)
    category = models.CharField(max_length=20)
    validity_hours = models.PositiveIntegerField()
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=BackupCodeStatus.AVAILABLE.value
    )
    starts_at = models.DateTimeField()
    expires_at = models.DateTimeField()

    pass_obj = models.ForeignKey(
        Pass,
        on_delete=models.SET_NULL,
        related_name='backup_codes',
        null=True,
        blank=True,
        db_column='pass_id'
    )
    assigned_at = models.DateTimeField(null=True, blank=True)
    provider_ref = models.CharField(max_length=100, blank=True, default='')

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = BackupCodeManager()

    class Meta:
        ordering = ['expires_at']
        indexes = [
            models.Index(fields=['device', 'status', 'category', 'expires_at']),
        ]

    def __str__(self):
        return f"{self.category} backup code on {self.device_id} [{self.status}]"
