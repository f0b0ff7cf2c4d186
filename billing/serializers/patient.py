import bleach
from rest_framework import serializers


class PatientCreateSerializer(serializers.Serializer):
    firstName = serializers.CharField(max_length=100)
    lastName = serializers.CharField(max_length=100, required=False, allow_blank=True)
    mrn = serializers.CharField(max_length=32, required=False, allow_blank=True)
    contact = serializers.CharField(max_length=64, required=False, allow_blank=True)
    dateOfBirth = serializers.DateField(required=False, allow_null=True)
    userId = serializers.IntegerField(min_value=1, required=False, allow_null=True)

    def validate_firstName(self, v):
        v = bleach.clean((v or '').strip(), strip=True)
        if not v:
            raise serializers.ValidationError('first name is required')
        return v

    def validate_lastName(self, v):
        return bleach.clean((v or '').strip(), strip=True)

    def validate_contact(self, v):
        return bleach.clean((v or '').strip(), strip=True)

    def validate_mrn(self, v):
        return (v or '').strip().upper()


class PatientListQuerySerializer(serializers.Serializer):
    q = serializers.CharField(max_length=64, required=False, allow_blank=True)
    page = serializers.IntegerField(required=False, min_value=1)
    pageSize = serializers.IntegerField(required=False, min_value=1, max_value=200)
