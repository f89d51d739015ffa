"""
PharmaTrust – Product Authentication Models

Tenants, batches, product codes and the two audit trails (web attempts and
gateway messages). ProductCode rows are only mutated through the conditional
updates on ProductCodeManager so concurrent claims stay consistent.
"""

import logging
import re
import uuid
from datetime import timedelta

from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Case, F, Value, When
from django.utils import timezone

from .decision import FIRST_VERIFICATION, REPEAT_VERIFICATION

logger = logging.getLogger(__name__)


# ============================================================================
# 1. TENANT MODEL
# ============================================================================


class TenantManager(models.Manager):
    """✓ CONCURRENCY: Quota accounting"""
    def reserve_quota(self, tenant_pk, quantity: int, now=None) -> bool:
        """
        ✓ CONCURRENCY: Atomically consume `quantity` codes of monthly quota.

        Single conditional UPDATE; returns False when the limit would be
        exceeded (nothing is consumed in that case).
        """
        now = now or timezone.now()
        updated = self.filter(
            pk=tenant_pk,
            status='active',
            codes_generated__lte=F('monthly_limit') - quantity,
        ).update(
            codes_generated=F('codes_generated') + quantity,
            last_batch_at=now,
            updated_at=now,
        )
        return updated == 1


class Tenant(models.Model):
    """
    ✓ PRODUCTION-READY: Client company issuing authenticated products

    Projection of the tenant-management collaborator: only what generation
    needs (active flag, monthly quota) plus display names.
    """

    STATUS_CHOICES = (
        ('active', 'Active'),
        ('suspended', 'Suspended'),
        ('inactive', 'Inactive'),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    manufacturer_id = models.CharField(
        max_length=64,
        unique=True,
        help_text="Public manufacturer identifier printed on batches"
    )
    company_name = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Official company name"
    )
    brand_prefix = models.CharField(
        max_length=10,
        help_text="Uppercase prefix used in public code identifiers (e.g. EMB)"
    )
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default='active',
        db_index=True,
        help_text="Only active tenants may generate codes"
    )
    monthly_limit = models.IntegerField(
        default=10000,
        validators=[MinValueValidator(0)],
        help_text="Max codes per month"
    )
    codes_generated = models.IntegerField(
        default=0,
        validators=[MinValueValidator(0)],
        help_text="Codes generated in the current month"
    )
    last_batch_at = models.DateTimeField(null=True, blank=True)
    website = models.URLField(blank=True)
    logo_url = models.URLField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=['status'], name='tenant_status_idx'),
            models.Index(fields=['company_name'], name='tenant_company_idx'),
        ]

    def __str__(self):
        return f"{self.company_name} ({self.get_status_display()})"

    def clean(self):
        """✓ VALIDATION: Run before save"""
        if not re.match(r'^[A-Z0-9]{1,10}$', self.brand_prefix or ''):
            raise ValidationError(
                "Brand prefix must be 1-10 uppercase letters or digits"
            )

    def save(self, *args, **kwargs):
        """✓ VALIDATION: Enforce validation on save"""
        self.full_clean()
        super().save(*args, **kwargs)

    @property
    def is_active(self) -> bool:
        return self.status == 'active'

    def can_generate_codes(self, quantity: int) -> bool:
        """✓ BUSINESS LOGIC: Check if tenant can generate codes"""
        return self.codes_generated + quantity <= self.monthly_limit

    def get_remaining_codes(self) -> int:
        """✓ CONVENIENCE: Codes remaining this month"""
        return max(0, self.monthly_limit - self.codes_generated)


# ============================================================================
# 2. BATCH MODEL
# ============================================================================


class Batch(models.Model):
    """One generation request: a labelled run of product codes"""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    batch_id = models.CharField(
        max_length=128,
        unique=True,
        help_text="Batch identifier (caller label or generated)"
    )
    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name='batches',
        help_text="Issuing tenant"
    )
    manufacturer_id = models.CharField(max_length=64, db_index=True)
    product_name = models.CharField(max_length=200)
    company_name = models.CharField(max_length=255)
    quantity = models.IntegerField(validators=[MinValueValidator(1)])
    codes_generated = models.IntegerField(default=0)
    generation_date = models.DateTimeField(default=timezone.now, db_index=True)
    created_by = models.CharField(max_length=150, default='admin')
    custom_config = models.JSONField(
        null=True,
        blank=True,
        help_text="Custom success page: logo URL and additional key/value info"
    )

    class Meta:
        verbose_name_plural = 'batches'
        indexes = [
            models.Index(fields=['manufacturer_id', 'generation_date'], name='batch_mfr_date_idx'),
        ]

    def __str__(self):
        return f"{self.batch_id} ({self.quantity} codes)"


# ============================================================================
# 3. PRODUCT CODE MODEL (CORE)
# ============================================================================


class ProductCodeManager(models.Manager):
    """
    ✓ CONCURRENCY: Code store. Lookups plus the conditional writes that
    apply verification mutations.
    """
    def by_public_id(self, public_id):
        """Resolve a scanned identifier; None when unknown"""
        if not public_id:
            return None
        return self.select_related('batch').filter(public_id=public_id).first()

    def by_secret_hash(self, secret_hash, for_update=False):
        """
        Resolve a secret by its hash (SMS/USSD channel); None when unknown.
        `for_update` locks the code row until the surrounding transaction ends.
        """
        if not secret_hash:
            return None
        codes = self.select_related('batch').filter(secret_hash=secret_hash)
        if for_update:
            codes = codes.select_for_update(of=('self',))
        return codes.first()

    def by_batch(self, batch_id):
        return self.filter(batch__batch_id=batch_id)

    def apply_decision(self, code, decision):
        """
        Apply a decision's mutation to `code`.

        The first verification is a conditional UPDATE on
        `first_verified_at IS NULL`; when another request won the race the
        claim is re-applied as a repeat and the returned decision is
        `already_used`. `code` is refreshed from the database.
        """
        mutation = decision.mutation
        if code is None or mutation is None:
            return decision

        if mutation.kind == FIRST_VERIFICATION:
            won = self.filter(pk=code.pk, first_verified_at__isnull=True).update(
                first_verified_at=mutation.at,
                last_verified_at=mutation.at,
                verification_count=F('verification_count') + 1,
                status=Case(
                    When(status='active', then=Value('verified')),
                    default=F('status'),
                ),
                updated_at=mutation.at,
            )
            if not won:
                logger.info(
                    f"First verification lost race for {code.public_id}",
                    extra={'public_id': code.public_id}
                )
                decision = decision.as_repeat()
                mutation = decision.mutation

        if mutation.kind == REPEAT_VERIFICATION:
            self.filter(pk=code.pk).update(
                last_verified_at=mutation.at,
                verification_count=F('verification_count') + 1,
                updated_at=mutation.at,
            )

        code.refresh_from_db(fields=[
            'status', 'verification_count', 'first_verified_at',
            'last_verified_at', 'updated_at',
        ])
        return decision

    def mark_suspected_counterfeit(self, code) -> None:
        """Report path only: status change, counters untouched"""
        self.filter(pk=code.pk).update(
            status='suspected_counterfeit',
            updated_at=timezone.now(),
        )
        code.status = 'suspected_counterfeit'


class ProductCode(models.Model):
    """
    ✓ PRODUCTION-READY: One physical unit's public identifier + scratch secret
    ✓ SECURITY: Secret kept hashed for lookups and Fernet-encrypted at rest
    """

    STATUS_CHOICES = (
        ('active', 'Active'),
        ('verified', 'Verified'),
        ('suspected_counterfeit', 'Suspected Counterfeit'),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    public_id = models.CharField(
        max_length=128,
        unique=True,
        help_text="Opaque identifier embedded in the QR code"
    )
    public_id_hash = models.CharField(
        max_length=64,
        db_index=True,
        help_text="HMAC-SHA256 of public_id"
    )
    secret_code_encrypted = models.TextField(
        help_text="Fernet-encrypted scratch secret (never returned after generation)"
    )
    secret_hash = models.CharField(
        max_length=64,
        db_index=True,
        help_text="HMAC-SHA256 of the scratch secret; all secret lookups use it"
    )
    batch = models.ForeignKey(
        Batch,
        on_delete=models.CASCADE,
        related_name='codes',
        help_text="Batch this code was generated in"
    )
    product_name = models.CharField(max_length=200)
    company_name = models.CharField(max_length=255)
    manufacturer_id = models.CharField(max_length=64, db_index=True)
    brand_prefix = models.CharField(max_length=10)
    verification_url = models.URLField(max_length=300)
    status = models.CharField(
        max_length=32,
        choices=STATUS_CHOICES,
        default='active',
        db_index=True
    )
    verification_count = models.IntegerField(default=0)
    first_verified_at = models.DateTimeField(null=True, blank=True)
    last_verified_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = ProductCodeManager()

    class Meta:
        indexes = [
            models.Index(fields=['manufacturer_id', 'status'], name='code_mfr_status_idx'),
            models.Index(fields=['batch', 'status'], name='code_batch_status_idx'),
        ]

    def __str__(self):
        return self.public_id

    @property
    def batch_label(self) -> str:
        return self.batch.batch_id


# ============================================================================
# 4. VERIFICATION ATTEMPT MODEL (Audit)
# ============================================================================


class VerificationAttemptManager(models.Manager):
    def for_public_id(self, public_id):
        return self.filter(scanned_code=public_id).order_by('timestamp')


class VerificationAttempt(models.Model):
    """
    ✓ COMPLIANCE: Append-only record of every web verification event.
    Never updated; removed only by the privileged purge endpoint.
    """

    RESULT_CHOICES = (
        ('scanned', 'Scanned'),
        ('valid', 'Valid'),
        ('invalid', 'Invalid'),
        ('already_used', 'Already Used'),
        ('suspected_counterfeit', 'Suspected Counterfeit'),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    timestamp = models.DateTimeField(
        default=timezone.now,
        db_index=True,
        help_text="Request time (not write time)"
    )
    scanned_code = models.CharField(
        max_length=256,
        db_index=True,
        help_text="Public identifier as scanned, even when unresolved"
    )
    secret_attempt = models.CharField(
        max_length=64,
        blank=True,
        help_text="Secret as entered (audit only)"
    )
    result = models.CharField(max_length=32, choices=RESULT_CHOICES, db_index=True)
    caller_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.CharField(max_length=512, blank=True)
    location = models.JSONField(
        null=True,
        blank=True,
        help_text="Best-effort geolocation; null when unavailable"
    )

    objects = VerificationAttemptManager()

    class Meta:
        ordering = ['-timestamp']
        indexes = [
            models.Index(fields=['scanned_code', 'timestamp'], name='attempt_code_ts_idx'),
            models.Index(fields=['result', 'timestamp'], name='attempt_result_ts_idx'),
            models.Index(fields=['caller_address'], name='attempt_caller_idx'),
        ]

    def __str__(self):
        return f"{self.scanned_code} - {self.result} @ {self.timestamp}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("Verification attempts are append-only")
        super().save(*args, **kwargs)


# ============================================================================
# 5. SMS / USSD VERIFICATION MODEL
# ============================================================================


class SMSVerificationManager(models.Manager):
    def recent_for(self, secret_hash: str, phone_number: str, window_seconds: int, now=None):
        """Most recent completed message for (secret, phone) within the window"""
        now = now or timezone.now()
        return self.filter(
            secret_hash=secret_hash,
            phone_number=phone_number,
            created_at__gte=now - timedelta(seconds=window_seconds),
        ).exclude(result__in=('pending', 'failed')).order_by('-created_at').first()


class SMSVerification(models.Model):
    """One inbound gateway message (SMS or USSD session) and its outcome"""

    CHANNEL_CHOICES = (
        ('sms', 'SMS'),
        ('ussd', 'USSD'),
    )

    RESULT_CHOICES = (
        ('pending', 'Pending'),
        ('valid', 'Valid'),
        ('invalid', 'Invalid'),
        ('already_used', 'Already Used'),
        ('failed', 'Failed'),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    session_id = models.CharField(max_length=64, unique=True)
    phone_number = models.CharField(max_length=32, db_index=True)
    carrier = models.CharField(max_length=64, blank=True)
    network_code = models.CharField(max_length=16, blank=True)
    channel = models.CharField(max_length=8, choices=CHANNEL_CHOICES, default='sms')
    message_id = models.CharField(
        max_length=128,
        unique=True,
        null=True,
        blank=True,
        help_text="Gateway message/session id; repeats are duplicate deliveries"
    )
    secret_hash = models.CharField(max_length=64, blank=True, db_index=True)
    product_code = models.ForeignKey(
        ProductCode,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='sms_verifications'
    )
    result = models.CharField(
        max_length=16,
        choices=RESULT_CHOICES,
        default='pending',
        db_index=True
    )
    cost = models.DecimalField(max_digits=8, decimal_places=2, default=0)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    objects = SMSVerificationManager()

    class Meta:
        indexes = [
            models.Index(fields=['secret_hash', 'phone_number', 'created_at'], name='sms_dedup_idx'),
        ]

    def __str__(self):
        return f"{self.channel.upper()} {self.session_id} - {self.result}"


# ============================================================================
# 6. COUNTERFEIT REPORT MODEL
# ============================================================================


class CounterfeitReport(models.Model):
    """
    ✓ PRODUCTION-READY: Public report of a suspected fake product
    """

    STATUS_CHOICES = (
        ('pending', 'Pending Review'),
        ('investigating', 'Investigating'),
        ('resolved', 'Resolved'),
        ('dismissed', 'Dismissed'),
    )

    PRIORITY_CHOICES = (
        ('low', 'Low'),
        ('medium', 'Medium'),
        ('high', 'High'),
        ('critical', 'Critical'),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    public_id = models.CharField(max_length=256, blank=True, db_index=True)
    secret_code = models.CharField(
        max_length=64,
        blank=True,
        help_text="Secret as typed by the reporter"
    )
    product_code = models.ForeignKey(
        ProductCode,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='reports',
        help_text="Resolved code, when the public identifier is known"
    )
    product_name = models.CharField(max_length=200)
    purchase_location = models.CharField(max_length=500)
    purchase_date = models.DateField(null=True, blank=True)
    reporter_email = models.EmailField(blank=True)
    reporter_phone = models.CharField(max_length=32, blank=True)
    additional_info = models.TextField(blank=True)
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default='pending',
        db_index=True
    )
    priority = models.CharField(max_length=10, choices=PRIORITY_CHOICES, default='medium')
    caller_address = models.GenericIPAddressField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    resolved_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=['status', 'created_at'], name='report_status_created_idx'),
        ]

    def __str__(self):
        return f"Report: {self.public_id or self.product_name} - {self.get_status_display()}"
