from rest_framework import serializers

from billing.models import Bill, BillItem, PaymentHistory


class BillItemInputSerializer(serializers.Serializer):
    itemType = serializers.ChoiceField(choices=[c for c, _ in BillItem.TYPE_CHOICES])
    description = serializers.CharField(max_length=255)
    quantity = serializers.DecimalField(max_digits=10, decimal_places=2)
    unitPrice = serializers.DecimalField(max_digits=12, decimal_places=2)


def items_for_service(items):
    return [
        {
            'item_type': i['itemType'],
            'description': i['description'],
            'quantity': i['quantity'],
            'unit_price': i['unitPrice'],
        }
        for i in items
    ]


class CreateBillSerializer(serializers.Serializer):
    patientId = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    items = BillItemInputSerializer(many=True, required=False)
    notes = serializers.CharField(max_length=2000, required=False, allow_blank=True)


class UpdateBillSerializer(serializers.Serializer):
    # omit ``items`` to keep the current lines; send [] to clear them
    items = BillItemInputSerializer(many=True, required=False)
    notes = serializers.CharField(max_length=2000, required=False, allow_blank=True)

    def validate(self, attrs):
        if 'items' not in attrs and 'notes' not in attrs:
            raise serializers.ValidationError('nothing to update')
        return attrs


class CancelBillSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=500, required=False, allow_blank=True)


class RecordPaymentSerializer(serializers.Serializer):
    billId = serializers.IntegerField(min_value=1)
    # sign and balance checks belong to the ledger so they raise payment errors
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    paymentMethod = serializers.ChoiceField(choices=[c for c, _ in PaymentHistory.METHOD_CHOICES])
    notes = serializers.CharField(max_length=2000, required=False, allow_blank=True)
    idempotencyKey = serializers.CharField(max_length=64, required=False, allow_blank=True)


class BillListQuerySerializer(serializers.Serializer):
    patientId = serializers.IntegerField(min_value=1, required=False)
    status = serializers.ChoiceField(choices=[c for c, _ in Bill.STATUS_CHOICES], required=False)
    paymentMethod = serializers.ChoiceField(choices=[c for c, _ in PaymentHistory.METHOD_CHOICES], required=False)
    createdBy = serializers.IntegerField(min_value=1, required=False)
    dateFrom = serializers.DateField(required=False)
    dateTo = serializers.DateField(required=False)
    page = serializers.IntegerField(min_value=1, required=False)
    pageSize = serializers.IntegerField(min_value=1, max_value=100, required=False)

    def validate(self, attrs):
        if attrs.get('dateFrom') and attrs.get('dateTo') and attrs['dateFrom'] > attrs['dateTo']:
            raise serializers.ValidationError('dateFrom must not be after dateTo')
        return attrs
