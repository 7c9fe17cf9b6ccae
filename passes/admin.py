"""
Admin configuration for the passes app.
"""

from django.contrib import admin
from .models import BackupCode, Device, LockCode, Pass, PassProfile, PassType


@admin.register(PassProfile)
class PassProfileAdmin(admin.ModelAdmin):
    """Admin interface for PassProfile model."""

    list_display = ['name', 'code', 'profile_type', 'checkout_time', 'future_booking_enabled', 'availability_enforcement']
    list_filter = ['profile_type', 'future_booking_enabled', 'availability_enforcement']
    search_fields = ['name', 'code']

    fieldsets = (
        ('Basic Information', {
            'fields': ('site_id', 'code', 'name', 'profile_type')
        }),
        ('Window Rules', {
            'fields': ('duration_minutes', 'duration_options', 'checkout_time')
        }),
        ('Buffers', {
            'fields': ('entry_buffer_minutes', 'exit_buffer_minutes', 'reset_buffer_minutes')
        }),
        ('Booking', {
            'fields': ('required_inputs', 'future_booking_enabled', 'availability_enforcement')
        }),
        ('Metadata', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    readonly_fields = ['created_at', 'updated_at']


@admin.register(PassType)
class PassTypeAdmin(admin.ModelAdmin):
    """Admin interface for PassType model."""

    list_display = ['name', 'price_cents', 'duration_hours', 'profile', 'is_active', 'display_order']
    list_filter = ['is_active', 'profile']
    search_fields = ['name', 'description']
    list_select_related = ['profile']


class LockCodeInline(admin.StackedInline):
    model = LockCode
    extra = 0


@admin.register(Pass)
class PassAdmin(admin.ModelAdmin):
    """Admin interface for Pass model."""

    list_display = ['pass_number', 'pass_type', 'guest_name', 'valid_from', 'valid_until', 'status']
    list_filter = ['status', 'pass_type', 'created_at']
    search_fields = ['pass_number', 'guest_name', 'guest_email']
    date_hierarchy = 'valid_from'
    inlines = [LockCodeInline]

    fieldsets = (
        ('Guest', {
            'fields': ('pass_number', 'guest_name', 'guest_email', 'guest_phone')
        }),
        ('Access', {
            'fields': ('pass_type', 'device_id', 'valid_from', 'valid_until')
        }),
        ('Booking', {
            'fields': ('booked_from', 'booked_to')
        }),
        ('Status', {
            'fields': ('status',)
        }),
        ('Metadata', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    # Windows are computed once at creation and never edited.
    readonly_fields = ['pass_number', 'valid_from', 'valid_until', 'created_at', 'updated_at']


@admin.register(Device)
class DeviceAdmin(admin.ModelAdmin):
    """Admin interface for Device model."""

    list_display = ['name', 'device_type', 'status', 'site_id']
    list_filter = ['device_type', 'status']
    search_fields = ['name']


@admin.register(BackupCode)
class BackupCodeAdmin(admin.ModelAdmin):
    """Admin interface for BackupCode model."""

    list_display = ['device', 'category', 'status', 'expires_at', 'pass_obj']
    list_filter = ['status', 'category']
    list_select_related = ['device']
    readonly_fields = ['assigned_at', 'created_at', 'updated_at']
