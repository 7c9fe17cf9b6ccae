"""
Serializers for the pass system API.
"""

from rest_framework import serializers

from .models import Pass, PassProfile, PassType
from .types import PROFILE_TYPE_LABELS, REQUIRED_INPUT_LABELS, parse_checkout_time


class CheckoutTimeField(serializers.Field):
    """Accepts 'HH:MM' or 'HH:MM:SS'; renders 'HH:MM:SS'."""

    def to_internal_value(self, data):
        if data in (None, ''):
            return None
        try:
            return parse_checkout_time(str(data))
        except ValueError as exc:
            raise serializers.ValidationError(str(exc))

    def to_representation(self, value):
        return value.strftime('%H:%M:%S') if value else None


class BookingIntervalMixin:
    """Ensure booked_from is before booked_to when both are present."""

    def validate(self, data):
        booked_from = data.get('booked_from')
        booked_to = data.get('booked_to')
        if booked_from and booked_to and booked_from >= booked_to:
            raise serializers.ValidationError(
                "booked_from must be before booked_to"
            )
        return data


class AvailabilityQuerySerializer(BookingIntervalMixin, serializers.Serializer):
    """Serializer for availability query parameters."""

    pass_type_id = serializers.UUIDField()
    booked_from = serializers.DateTimeField()
    booked_to = serializers.DateTimeField()
    device_id = serializers.UUIDField(required=False, allow_null=True)


class AvailabilityResultSerializer(serializers.Serializer):
    """Serializer for AvailabilityResult (output). Unset optional keys are dropped."""

    available = serializers.BooleanField()
    enforcement_enabled = serializers.BooleanField()
    conflicts = serializers.IntegerField(required=False)
    reason = serializers.CharField(required=False)
    message = serializers.CharField(required=False)

    def to_representation(self, instance):
        data = super().to_representation(instance)
        return {key: value for key, value in data.items() if value is not None}


class PaymentIntentCreateSerializer(BookingIntervalMixin, serializers.Serializer):
    """Serializer for creating a pending pass."""

    pass_type_id = serializers.UUIDField()
    device_id = serializers.UUIDField(required=False, allow_null=True)
    guest_name = serializers.CharField(max_length=200)
    guest_email = serializers.EmailField()
    guest_phone = serializers.CharField(max_length=40, required=False, allow_blank=True, allow_null=True)
    booked_from = serializers.DateTimeField(required=False, allow_null=True)
    booked_to = serializers.DateTimeField(required=False, allow_null=True)
    nights = serializers.IntegerField(min_value=0, required=False, allow_null=True)


class PassLookupSerializer(serializers.Serializer):
    """Serializer for pass lookup query parameters."""

    pass_id = serializers.UUIDField(required=False)
    pass_number = serializers.CharField(required=False)

    def validate(self, data):
        if not data.get('pass_id') and not data.get('pass_number'):
            raise serializers.ValidationError("pass_id or pass_number is required")
        return data


class PassTypeSummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = PassType
        fields = ['id', 'name', 'price_cents']


class PassReadSerializer(serializers.ModelSerializer):
    """Serializer for reading/displaying Pass (output)."""

    valid_to = serializers.DateTimeField(source='valid_until')
    pass_type = PassTypeSummarySerializer(read_only=True)

    class Meta:
        model = Pass
        fields = [
            'id',
            'pass_number',
            'guest_name',
            'guest_email',
            'guest_phone',
            'valid_from',
            'valid_to',
            'booked_from',
            'booked_to',
            'status',
            'created_at',
            'pass_type',
        ]


class PublicProfileSerializer(serializers.ModelSerializer):
    """Profile as exposed on pass types, using the public field names."""

    profile_code = serializers.CharField(source='code')
    buffer_before_minutes = serializers.IntegerField(source='entry_buffer_minutes')
    buffer_after_minutes = serializers.IntegerField(source='exit_buffer_minutes')
    checkout_time = CheckoutTimeField()

    class Meta:
        model = PassProfile
        fields = [
            'profile_code',
            'profile_type',
            'required_inputs',
            'future_booking_enabled',
            'availability_enforcement',
            'buffer_before_minutes',
            'buffer_after_minutes',
            'reset_buffer_minutes',
            'duration_minutes',
            'duration_options',
            'checkout_time',
        ]


class PassTypeReadSerializer(serializers.ModelSerializer):
    """
    Serializer for reading PassType (output).

    The ``profile`` key is only present when a profile is linked, so legacy
    clients keep receiving the response shape they know.
    """

    profile = PublicProfileSerializer(read_only=True)

    class Meta:
        model = PassType
        fields = [
            'id',
            'name',
            'description',
            'duration_hours',
            'price_cents',
            'max_uses',
            'is_active',
            'display_order',
            'org_id',
            'created_at',
            'updated_at',
            'profile',
        ]

    def to_representation(self, instance):
        data = super().to_representation(instance)
        if data.get('profile') is None:
            data.pop('profile', None)
        return data


class DurationOptionSerializer(serializers.Serializer):
    label = serializers.CharField(max_length=50)
    minutes = serializers.IntegerField(min_value=1)


class PassProfileSerializer(serializers.ModelSerializer):
    """Serializer for reading PassProfile (output)."""

    checkout_time = CheckoutTimeField()
    profile_type_label = serializers.SerializerMethodField()

    class Meta:
        model = PassProfile
        fields = [
            'id',
            'site_id',
            'code',
            'name',
            'profile_type',
            'profile_type_label',
            'duration_minutes',
            'duration_options',
            'checkout_time',
            'entry_buffer_minutes',
            'exit_buffer_minutes',
            'reset_buffer_minutes',
            'required_inputs',
            'future_booking_enabled',
            'availability_enforcement',
            'created_at',
            'updated_at',
        ]

    def get_profile_type_label(self, obj):
        return dict((t.value, label) for t, label in PROFILE_TYPE_LABELS.items()).get(obj.profile_type)


class PassProfileWriteSerializer(serializers.Serializer):
    """Serializer for creating or updating a PassProfile (input)."""

    site_id = serializers.UUIDField()
    code = serializers.CharField(max_length=50)
    name = serializers.CharField(max_length=200)
    profile_type = serializers.ChoiceField(choices=PassProfile.PROFILE_TYPE_CHOICES)
    duration_minutes = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    duration_options = DurationOptionSerializer(many=True, required=False)
    checkout_time = CheckoutTimeField(required=False, allow_null=True)
    entry_buffer_minutes = serializers.IntegerField(min_value=0, required=False)
    exit_buffer_minutes = serializers.IntegerField(min_value=0, required=False)
    reset_buffer_minutes = serializers.IntegerField(min_value=0, required=False)
    required_inputs = serializers.ListField(
        child=serializers.ChoiceField(choices=list(REQUIRED_INPUT_LABELS)),
        required=False
    )
    future_booking_enabled = serializers.BooleanField(required=False)
    availability_enforcement = serializers.BooleanField(required=False)


class PinWebhookSerializer(serializers.Serializer):
    """
    PIN webhook payload.

    Accepts the flat form (``reservationId``, ``pinCode``) and the event
    form (``event: pin.created`` with a nested ``data`` object).
    """

    def to_internal_value(self, data):
        if not isinstance(data, dict):
            raise serializers.ValidationError("Expected a JSON object")

        nested = data.get('data')
        if data.get('event') == 'pin.created' and isinstance(nested, dict):
            source = nested
        else:
            source = data

        reservation_id = source.get('reservationId')
        pin_code = source.get('pinCode')
        if not reservation_id or not pin_code:
            raise serializers.ValidationError("reservationId and pinCode are required")

        return {'reservation_id': str(reservation_id), 'pin_code': str(pin_code)}


class PinRevokeSerializer(serializers.Serializer):
    reservationId = serializers.UUIDField()
    reason = serializers.CharField(required=False, allow_blank=True)
