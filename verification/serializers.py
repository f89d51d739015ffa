"""
PharmaTrust – Serializers

Request validation for generation, claims, reports and the audit query, plus
the read-only shapes returned by the API. Secrets never appear in any output
serializer.
"""

import re
import logging

from django.conf import settings
from rest_framework import serializers

from .hashing import is_well_formed_secret, normalize_secret
from .models import Batch, CounterfeitReport, ProductCode, VerificationAttempt

logger = logging.getLogger(__name__)


# ============================================================================
# GENERATION SERIALIZERS
# ============================================================================


class GenerateBatchSerializer(serializers.Serializer):
    """✓ GENERATION: Parameters for bulk code generation"""
    manufacturer_id = serializers.CharField(
        max_length=64,
        help_text="Tenant the batch is issued for"
    )
    quantity = serializers.IntegerField(
        min_value=1,
        max_value=settings.CODE_GENERATION_MAX_QUANTITY,
        help_text="Number of codes to generate"
    )
    product_name = serializers.CharField(max_length=200)
    company_name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    brand_prefix = serializers.CharField(max_length=10, required=False, allow_blank=True)
    batch_number = serializers.CharField(
        max_length=100,
        required=False,
        allow_blank=True,
        help_text="Optional batch label; de-collided with a random suffix"
    )
    enable_custom_page = serializers.BooleanField(default=False)
    custom_logo_url = serializers.URLField(required=False, allow_blank=True)
    additional_info = serializers.DictField(
        child=serializers.CharField(max_length=500),
        required=False,
        default=dict
    )

    def validate_brand_prefix(self, value):
        """✓ VALIDATION: Prefix format"""
        value = value.strip().upper()
        if value and not re.match(r'^[A-Z0-9]{1,10}$', value):
            raise serializers.ValidationError(
                "Brand prefix: 1-10 uppercase letters or numbers only"
            )
        return value

    def validate_batch_number(self, value):
        """✓ VALIDATION: Batch number format"""
        value = value.strip()
        if value and not re.match(r'^[A-Za-z0-9\-_]{1,100}$', value):
            raise serializers.ValidationError(
                "Batch number: letters, numbers, hyphens and underscores only"
            )
        return value

    def custom_config(self):
        data = self.validated_data
        if not data.get('enable_custom_page'):
            return None
        return {
            'logo_url': data.get('custom_logo_url') or None,
            'additional_info': data.get('additional_info') or {},
        }


class BatchSerializer(serializers.ModelSerializer):
    """✓ READ-ONLY: Batch summary (no secrets)"""

    class Meta:
        model = Batch
        fields = [
            'batch_id', 'manufacturer_id', 'product_name', 'company_name',
            'quantity', 'codes_generated', 'generation_date', 'created_by',
            'custom_config',
        ]
        read_only_fields = fields


class ProductCodeSummarySerializer(serializers.ModelSerializer):
    """Code state for the tenant's batch view; never includes the secret"""

    class Meta:
        model = ProductCode
        fields = [
            'public_id', 'verification_url', 'status', 'verification_count',
            'first_verified_at', 'last_verified_at',
        ]
        read_only_fields = fields


# ============================================================================
# WEB VERIFICATION SERIALIZERS
# ============================================================================


class ProductDisplaySerializer(serializers.ModelSerializer):
    """Product metadata disclosed after a successful resolve or claim"""
    batch_id = serializers.CharField(source='batch.batch_id', read_only=True)
    custom_page = serializers.JSONField(source='batch.custom_config', read_only=True)

    class Meta:
        model = ProductCode
        fields = [
            'public_id', 'product_name', 'company_name', 'manufacturer_id',
            'brand_prefix', 'batch_id', 'custom_page',
        ]
        read_only_fields = fields


class ClaimSerializer(serializers.Serializer):
    """✓ VALIDATION: Scratch secret entered on the verification page"""
    secret_code = serializers.CharField(max_length=64, trim_whitespace=True)

    def validate_secret_code(self, value):
        secret = normalize_secret(value)
        if not is_well_formed_secret(secret):
            raise serializers.ValidationError(
                "Scratch code must be 12 characters (letters and digits, no 0, O, 1, I or L)"
            )
        return secret


# ============================================================================
# COUNTERFEIT REPORT SERIALIZERS
# ============================================================================


class CounterfeitReportCreateSerializer(serializers.ModelSerializer):
    """✓ CREATION: Public counterfeit report"""

    class Meta:
        model = CounterfeitReport
        fields = [
            'id', 'public_id', 'secret_code', 'product_name', 'purchase_location',
            'purchase_date', 'reporter_email', 'reporter_phone', 'additional_info',
        ]
        read_only_fields = ['id']

    def validate_product_name(self, value):
        value = value.strip()
        if len(value) < 2:
            raise serializers.ValidationError("Product name is required")
        return value

    def validate_purchase_location(self, value):
        value = value.strip()
        if len(value) < 3:
            raise serializers.ValidationError("Purchase location is required")
        return value

    def validate_secret_code(self, value):
        return normalize_secret(value)[:64]

    def validate_additional_info(self, value):
        """✓ VALIDATION: Free text length"""
        if len(value) > 2000:
            raise serializers.ValidationError("Additional info too long (max 2000 chars)")
        return value


class CounterfeitReportSerializer(serializers.ModelSerializer):
    status_display = serializers.CharField(source='get_status_display', read_only=True)

    class Meta:
        model = CounterfeitReport
        fields = [
            'id', 'public_id', 'product_name', 'purchase_location', 'status',
            'status_display', 'priority', 'created_at',
        ]
        read_only_fields = fields


# ============================================================================
# AUDIT SERIALIZERS
# ============================================================================


class VerificationAttemptSerializer(serializers.ModelSerializer):
    """✓ AUDIT: Read-only attempt records"""

    class Meta:
        model = VerificationAttempt
        fields = [
            'id', 'timestamp', 'scanned_code', 'secret_attempt', 'result',
            'caller_address', 'user_agent', 'location',
        ]
        read_only_fields = fields


class AttemptQuerySerializer(serializers.Serializer):
    """✓ VALIDATION: Audit query filters"""
    public_id = serializers.CharField(required=False, max_length=256)
    secret_code = serializers.CharField(required=False, max_length=64)
    result = serializers.ChoiceField(
        choices=[choice for choice, _ in VerificationAttempt.RESULT_CHOICES],
        required=False
    )
    caller_address = serializers.IPAddressField(required=False)
    start_date = serializers.DateTimeField(required=False)
    end_date = serializers.DateTimeField(required=False)
    page = serializers.IntegerField(required=False, min_value=1, default=1)
    limit = serializers.IntegerField(required=False, min_value=1, max_value=500, default=50)
    sort_order = serializers.ChoiceField(choices=['asc', 'desc'], required=False, default='desc')

    def validate(self, data):
        start, end = data.get('start_date'), data.get('end_date')
        if start and end and start > end:
            raise serializers.ValidationError("start_date must be before end_date")
        return data
