"""
URL routing for the passes API.
"""

from django.urls import path
from .views import (
    AvailabilityView,
    PassProfileDetailView,
    PassProfileListCreateView,
    PassTypeListView,
    PaymentIntentView,
    RoomsPinWebhookView,
)

urlpatterns = [
    path('availability/', AvailabilityView.as_view(), name='availability'),
    path('payment-intents/', PaymentIntentView.as_view(), name='payment-intents'),
    path('pass-types/', PassTypeListView.as_view(), name='pass-type-list'),
    path('profiles/', PassProfileListCreateView.as_view(), name='profile-list-create'),
    path('profiles/<uuid:pk>/', PassProfileDetailView.as_view(), name='profile-detail'),
    path('webhooks/rooms/pin/', RoomsPinWebhookView.as_view(), name='rooms-pin-webhook'),
]
