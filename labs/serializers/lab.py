import html

import bleach
from rest_framework import serializers

from labs.models import LabTest
from labs.services.lifecycle import OrderStatus, Priority


def _clean_text(v):
    # drop markup but store the text itself unescaped
    return html.unescape(bleach.clean((v or '').strip(), tags=set(), strip=True))


class LabOrderCreateSerializer(serializers.Serializer):
    patientId = serializers.IntegerField(min_value=1)
    doctorId = serializers.IntegerField(min_value=1, required=False)
    testName = serializers.CharField(max_length=255, required=False, allow_blank=True)
    testCode = serializers.CharField(max_length=32, required=False, allow_blank=True, allow_null=True)
    priority = serializers.CharField(max_length=16)
    notes = serializers.CharField(max_length=2000, required=False, allow_blank=True, allow_null=True)
    requiresPayment = serializers.BooleanField()

    def validate_testName(self, v):
        return _clean_text(v)

    def validate_notes(self, v):
        return _clean_text(v)


class LabOrderListQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=OrderStatus.values, required=False)
    priority = serializers.ChoiceField(choices=Priority.values, required=False)
    patientId = serializers.IntegerField(min_value=1, required=False)
    dateFrom = serializers.DateField(required=False)
    dateTo = serializers.DateField(required=False)
    # default None keeps an absent flag from reading as False on query strings
    overdue = serializers.BooleanField(allow_null=True, default=None)
    ordering = serializers.ChoiceField(choices=['newest', 'triage'], required=False)
    limit = serializers.IntegerField(min_value=1, required=False)
    offset = serializers.IntegerField(min_value=0, required=False)

    def validate(self, attrs):
        if attrs.get('dateFrom') and attrs.get('dateTo') and attrs['dateFrom'] > attrs['dateTo']:
            raise serializers.ValidationError({'dateTo': 'must not be before dateFrom'})
        return attrs


class ConfirmPaymentSerializer(serializers.Serializer):
    billId = serializers.CharField(max_length=64, required=False, allow_blank=True)


class CancelSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, allow_null=True)

    def validate_reason(self, v):
        return _clean_text(v)


class StatusUpdateSerializer(serializers.Serializer):
    status = serializers.CharField(max_length=32)
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, allow_null=True)

    def validate_status(self, v):
        return (v or '').strip().upper()


class LabResultSubmitSerializer(serializers.Serializer):
    """Accepts the front-end shape ``{orderId, result: {parameters}, interpretation, attachments}``.

    Payload contents are validated by the engine so that malformed
    results surface as ``invalid_result``.
    """
    orderId = serializers.UUIDField()
    result = serializers.JSONField(required=False)
    parameters = serializers.JSONField(required=False)
    interpretation = serializers.JSONField(required=False, allow_null=True)
    attachments = serializers.JSONField(required=False, allow_null=True)

    def validate_result(self, v):
        if v is not None and not isinstance(v, dict):
            raise serializers.ValidationError('must be an object')
        return v

    def to_result(self) -> dict:
        vd = self.validated_data
        nested = vd.get('result') if isinstance(vd.get('result'), dict) else {}
        return {
            key: vd[key] if vd.get(key) is not None else nested.get(key)
            for key in ('parameters', 'interpretation', 'attachments')
        }


class LabTestSerializer(serializers.ModelSerializer):
    turnaroundHours = serializers.IntegerField(source='turnaround_hours', min_value=1, required=False, allow_null=True)
    normalRange = serializers.CharField(source='normal_range', max_length=128, required=False, allow_blank=True)
    isActive = serializers.BooleanField(source='is_active', required=False)
    units = serializers.ListField(child=serializers.CharField(max_length=32), required=False)

    class Meta:
        model = LabTest
        fields = ['id', 'code', 'name', 'department', 'turnaroundHours', 'units', 'normalRange', 'isActive']

    def validate_code(self, v):
        return (v or '').strip().upper()
