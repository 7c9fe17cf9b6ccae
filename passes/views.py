"""Views for the pass system API."""

import logging
import secrets

from django.conf import settings
from django.shortcuts import get_object_or_404

from rest_framework import serializers, status
from rest_framework.response import Response
from rest_framework.views import APIView

from . import services
from .models import PassProfile
from .serializers import (
    AvailabilityQuerySerializer,
    AvailabilityResultSerializer,
    PassLookupSerializer,
    PassProfileSerializer,
    PassProfileWriteSerializer,
    PassReadSerializer,
    PassTypeReadSerializer,
    PaymentIntentCreateSerializer,
    PinRevokeSerializer,
    PinWebhookSerializer,
)
from .types import NULLABLE_PROFILE_FIELDS, ProfileData

logger = logging.getLogger(__name__)

WEBHOOK_VERSION = '1.0.0'
UNSUPPORTED_PASS_TYPE_FILTERS = ('site_id', 'slug')


class AvailabilityView(APIView):
    """
    Check whether a time slot is free for a pass type.

    GET /api/v1/availability/?pass_type_id=X&booked_from=Y&booked_to=Z[&device_id=D]
    """

    def get(self, request):
        """Report availability for the requested interval."""
        query_serializer = AvailabilityQuerySerializer(data=request.query_params)
        query_serializer.is_valid(raise_exception=True)

        data = query_serializer.validated_data
        result = services.check_availability(
            pass_type_id=data['pass_type_id'],
            booked_from=data['booked_from'],
            booked_to=data['booked_to'],
            device_id=data.get('device_id')
        )
        return Response(AvailabilityResultSerializer(result).data)


class PaymentIntentView(APIView):
    """
    Create a pending pass or look one up.

    POST /api/v1/payment-intents/ - Create a pending pass
    GET /api/v1/payment-intents/?pass_id=X|pass_number=Y - Pass details
    """

    def post(self, request):
        """Create a pending pass with its computed access window."""
        serializer = PaymentIntentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        data = serializer.validated_data
        created = services.create_pass(
            pass_type_id=data['pass_type_id'],
            guest_name=data['guest_name'],
            guest_email=data['guest_email'],
            guest_phone=data.get('guest_phone'),
            device_id=data.get('device_id'),
            booked_from=data.get('booked_from'),
            booked_to=data.get('booked_to'),
            nights=data.get('nights')
        )

        pass_data = PassReadSerializer(created.pass_obj).data
        response = {
            'success': True,
            'pass_id': pass_data['id'],
            'pass_number': pass_data['pass_number'],
            'valid_from': pass_data['valid_from'],
            'valid_to': pass_data['valid_to'],
            'price_cents': created.price_cents,
        }
        if created.booking_mode:
            response['booked_from'] = pass_data['booked_from']
            response['booked_to'] = pass_data['booked_to']
            response['booking_mode'] = True

        return Response(response, status=status.HTTP_201_CREATED)

    def get(self, request):
        """Retrieve a pass by id or pass number."""
        query_serializer = PassLookupSerializer(data=request.query_params)
        query_serializer.is_valid(raise_exception=True)

        pass_obj = services.get_pass(
            pass_id=query_serializer.validated_data.get('pass_id'),
            pass_number=query_serializer.validated_data.get('pass_number')
        )
        return Response({'success': True, 'data': PassReadSerializer(pass_obj).data})


class PassTypeListView(APIView):
    """
    List pass types on sale.

    GET /api/v1/pass-types/[?organization_id=X]

    ``site_id`` and ``slug`` need the site and access point registries,
    which live outside this service; they are accepted and ignored.
    """

    def get(self, request):
        """List active pass types with their optional profile."""
        ignored = [name for name in UNSUPPORTED_PASS_TYPE_FILTERS if name in request.query_params]
        if ignored:
            logger.info("Ignoring unsupported pass type filters: %s", ', '.join(ignored))

        pass_types = services.list_pass_types(
            org_id=request.query_params.get('organization_id')
        )
        serializer = PassTypeReadSerializer(pass_types, many=True)
        return Response({
            'success': True,
            'data': serializer.data,
            'count': len(serializer.data),
        })


class PassProfileListCreateView(APIView):
    """
    List all pass profiles or create a new one.

    GET /api/v1/profiles/ - List profiles
    POST /api/v1/profiles/ - Create a profile
    """

    def get(self, request):
        """List pass profiles, optionally for one site."""
        profiles = services.list_profiles(site_id=request.query_params.get('site_id'))
        return Response(PassProfileSerializer(profiles, many=True).data)

    def post(self, request):
        """Create a pass profile."""
        serializer = PassProfileWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        data = serializer.validated_data
        profile = services.create_profile(
            site_id=data['site_id'],
            data=_profile_data(data)
        )
        return Response(PassProfileSerializer(profile).data, status=status.HTTP_201_CREATED)


class PassProfileDetailView(APIView):
    """
    Retrieve, update, or delete a pass profile.

    GET /api/v1/profiles/{id}/ - Retrieve profile
    PATCH /api/v1/profiles/{id}/ - Update profile
    DELETE /api/v1/profiles/{id}/ - Delete profile
    """

    def get(self, request, pk):
        """Retrieve a pass profile."""
        profile = get_object_or_404(PassProfile, pk=pk)
        return Response(PassProfileSerializer(profile).data)

    def patch(self, request, pk):
        """Update a pass profile."""
        profile = get_object_or_404(PassProfile, pk=pk)
        serializer = PassProfileWriteSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        updated = services.update_profile(profile, _profile_data(serializer.validated_data))
        return Response(PassProfileSerializer(updated).data)

    def delete(self, request, pk):
        """Delete a pass profile that no pass type uses."""
        profile = get_object_or_404(PassProfile, pk=pk)
        name = profile.name
        services.delete_profile(profile)
        return Response({
            'message': f'Profile "{name}" has been deleted.'
        }, status=status.HTTP_200_OK)


class RoomsPinWebhookView(APIView):
    """
    PIN intake from the rooms lock provider.

    GET /api/v1/webhooks/rooms/pin/ - Health check
    GET /api/v1/webhooks/rooms/pin/?reservationId=X - Stored PIN of a reservation
    POST /api/v1/webhooks/rooms/pin/ - Store PIN, activate pending pass
    DELETE /api/v1/webhooks/rooms/pin/ - Revoke PIN
    """

    def get(self, request):
        """Report endpoint health, or the PIN stored for a reservation."""
        reservation_id = request.query_params.get('reservationId')
        if not reservation_id:
            return Response({
                'status': 'ok',
                'endpoint': 'Rooms PIN Webhook',
                'version': WEBHOOK_VERSION,
                'config': {
                    'webhookSecretSet': bool(getattr(settings, 'ROOMS_WEBHOOK_SECRET', '')),
                },
            })

        if not _webhook_authorized(request):
            return _unauthorized()

        lock_code = services.get_pin(reservation_id)
        return Response({
            'success': True,
            'reservationId': str(lock_code.pass_obj_id),
            'pinCode': lock_code.code,
            'status': lock_code.status,
            'provider': lock_code.provider,
            'createdAt': serializers.DateTimeField().to_representation(lock_code.created_at),
        })

    def post(self, request):
        """Store the PIN issued for a reservation."""
        if not _webhook_authorized(request):
            return _unauthorized()

        serializer = PinWebhookSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = services.record_pin(
            reservation_id=serializer.validated_data['reservation_id'],
            pin_code=serializer.validated_data['pin_code']
        )
        body = {
            'success': True,
            'message': 'PIN code received and stored',
            'passId': str(result.pass_id),
        }
        if result.idempotent:
            body['message'] = 'PIN code already set (no changes made)'
            body['idempotent'] = True
        return Response(body)

    def delete(self, request):
        """Revoke the PIN of a reservation."""
        if not _webhook_authorized(request):
            return _unauthorized()

        serializer = PinRevokeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = services.revoke_pin(
            reservation_id=serializer.validated_data['reservationId'],
            reason=serializer.validated_data.get('reason')
        )

        if result.idempotent:
            message = 'PIN already revoked (no changes made)'
        elif not result.revoked:
            message = 'No PIN to revoke (backup code in use)'
        elif result.pass_active:
            message = 'PIN request cancelled (backup code in use)'
        else:
            message = 'PIN code revoked and pass cancelled'

        body = {
            'success': True,
            'message': message,
            'passId': str(result.pass_id),
            'reason': result.reason.value,
            'passActive': result.pass_active,
        }
        if result.idempotent:
            body['idempotent'] = True
        return Response(body)


def _profile_data(validated: dict) -> ProfileData:
    options = validated.get('duration_options')
    return ProfileData(
        code=validated.get('code'),
        name=validated.get('name'),
        profile_type=validated.get('profile_type'),
        duration_minutes=validated.get('duration_minutes'),
        duration_options=[dict(option) for option in options] if options is not None else None,
        checkout_time=validated.get('checkout_time'),
        entry_buffer_minutes=validated.get('entry_buffer_minutes'),
        exit_buffer_minutes=validated.get('exit_buffer_minutes'),
        reset_buffer_minutes=validated.get('reset_buffer_minutes'),
        required_inputs=validated.get('required_inputs'),
        future_booking_enabled=validated.get('future_booking_enabled'),
        availability_enforcement=validated.get('availability_enforcement'),
        cleared_fields=tuple(
            name for name in NULLABLE_PROFILE_FIELDS
            if name in validated and validated[name] is None
        ),
    )


def _webhook_authorized(request) -> bool:
    """Accept 'Bearer <secret>' or the raw secret."""
    secret = getattr(settings, 'ROOMS_WEBHOOK_SECRET', '')
    if not secret:
        logger.error("ROOMS_WEBHOOK_SECRET not configured")
        return False

    header = request.headers.get('Authorization', '')
    if not header:
        logger.warning("No authorization header provided")
        return False

    token = header[len('Bearer '):] if header.startswith('Bearer ') else header
    return secrets.compare_digest(token.encode(), secret.encode())


def _unauthorized():
    return Response(
        {'error': 'Unauthorized', 'message': 'Invalid or missing authorization'},
        status=status.HTTP_401_UNAUTHORIZED
    )
