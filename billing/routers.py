"""
URL mappings for the billing API.

Paths follow the front-end's endpoint table, without trailing slashes.
"""
from django.urls import path, include

from .auth_views import login_view, me_view, jwt_refresh_view, jwt_logout_view
from .views import bills, catalog, health, patients, reports

urlpatterns = [
    path('metrics', include('django_prometheus.urls')),
    path('healthz', health.healthz, name='healthz'),
    # Authentication
    path('api/auth/login', login_view, name='auth-login'),
    path('api/auth/me', me_view, name='auth-me'),
    path('api/auth/refresh', jwt_refresh_view, name='auth-refresh'),
    path('api/auth/logout', jwt_logout_view, name='auth-logout'),
    # Patients
    path('api/patients', patients.patients, name='patients'),
    # Bills
    path('api/billing/bills', bills.bills, name='bills'),
    path('api/billing/bills/<int:bill_id>', bills.bill_detail, name='bill-detail'),
    path('api/billing/bills/<int:bill_id>/cancel', bills.cancel_bill, name='bill-cancel'),
    path('api/billing/bills/<int:bill_id>/payments', bills.bill_payments, name='bill-payments'),
    path('api/billing/bills/<int:bill_id>/payment-summary', bills.payment_summary, name='bill-payment-summary'),
    path('api/billing/bills/<int:bill_id>/invoice', bills.bill_invoice, name='bill-invoice'),
    path('api/billing/payments', bills.record_payment, name='payments'),
    # Reports
    path('api/billing/stats', reports.billing_stats, name='billing-stats'),
    # Service catalog
    path('api/billing/services', catalog.services, name='services'),
]
