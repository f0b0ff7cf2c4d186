from django.urls import path

from billing.realtime.consumers import BillingUpdatesConsumer, BillUpdatesConsumer

websocket_urlpatterns = [
    path("ws/billing/", BillingUpdatesConsumer.as_asgi()),
    path("ws/billing/bills/<int:bill_id>/", BillUpdatesConsumer.as_asgi()),
]
