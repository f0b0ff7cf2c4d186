"""
Django admin registrations for the billing models.

Bills are editable only for their notes; money columns and status are
derived by the ledger and shown read-only.  Payment history can be
browsed but never changed or deleted from the admin.
"""

from django.contrib import admin

from .models import AuditEvent, Bill, BillItem, Patient, PaymentHistory, ServiceCatalogItem, User


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('username', 'role', 'is_staff', 'is_superuser')
    list_filter = ('role',)
    search_fields = ('username', 'first_name', 'last_name')


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ('mrn', 'first_name', 'last_name', 'contact', 'user')
    search_fields = ('mrn', 'first_name', 'last_name', 'contact')


class BillItemInline(admin.TabularInline):
    model = BillItem
    extra = 0
    readonly_fields = ('item_type', 'description', 'quantity', 'unit_price', 'total_price')
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


class PaymentInline(admin.TabularInline):
    model = PaymentHistory
    extra = 0
    readonly_fields = ('amount', 'payment_method', 'paid_by', 'paid_at', 'notes')
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Bill)
class BillAdmin(admin.ModelAdmin):
    list_display = ('id', 'patient', 'status', 'total_amount', 'paid_amount', 'created_by', 'created_at')
    list_filter = ('status',)
    search_fields = ('id', 'patient__mrn', 'patient__last_name')
    readonly_fields = ('patient', 'created_by', 'total_amount', 'paid_amount', 'status', 'cancelled_at')
    inlines = [BillItemInline, PaymentInline]

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(PaymentHistory)
class PaymentHistoryAdmin(admin.ModelAdmin):
    list_display = ('id', 'bill', 'amount', 'payment_method', 'paid_by', 'paid_at')
    list_filter = ('payment_method',)
    search_fields = ('bill__id', 'paid_by__username')

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(ServiceCatalogItem)
class ServiceCatalogItemAdmin(admin.ModelAdmin):
    list_display = ('name', 'category', 'price', 'is_active')
    list_filter = ('category', 'is_active')
    search_fields = ('name',)


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = ('action', 'object_type', 'object_id', 'user', 'created_at')
    list_filter = ('action', 'object_type')
    search_fields = ('object_id', 'user__username')
