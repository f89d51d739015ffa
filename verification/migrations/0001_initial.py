import uuid

import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Tenant',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('manufacturer_id', models.CharField(help_text='Public manufacturer identifier printed on batches', max_length=64, unique=True)),
                ('company_name', models.CharField(db_index=True, help_text='Official company name', max_length=255)),
                ('brand_prefix', models.CharField(help_text='Uppercase prefix used in public code identifiers (e.g. EMB)', max_length=10)),
                ('status', models.CharField(choices=[('active', 'Active'), ('suspended', 'Suspended'), ('inactive', 'Inactive')], db_index=True, default='active', help_text='Only active tenants may generate codes', max_length=20)),
                ('monthly_limit', models.IntegerField(default=10000, help_text='Max codes per month', validators=[django.core.validators.MinValueValidator(0)])),
                ('codes_generated', models.IntegerField(default=0, help_text='Codes generated in the current month', validators=[django.core.validators.MinValueValidator(0)])),
                ('last_batch_at', models.DateTimeField(blank=True, null=True)),
                ('website', models.URLField(blank=True)),
                ('logo_url', models.URLField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'indexes': [
                    models.Index(fields=['status'], name='tenant_status_idx'),
                    models.Index(fields=['company_name'], name='tenant_company_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Batch',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('batch_id', models.CharField(help_text='Batch identifier (caller label or generated)', max_length=128, unique=True)),
                ('manufacturer_id', models.CharField(db_index=True, max_length=64)),
                ('product_name', models.CharField(max_length=200)),
                ('company_name', models.CharField(max_length=255)),
                ('quantity', models.IntegerField(validators=[django.core.validators.MinValueValidator(1)])),
                ('codes_generated', models.IntegerField(default=0)),
                ('generation_date', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('created_by', models.CharField(default='admin', max_length=150)),
                ('custom_config', models.JSONField(blank=True, help_text='Custom success page: logo URL and additional key/value info', null=True)),
                ('tenant', models.ForeignKey(help_text='Issuing tenant', on_delete=django.db.models.deletion.CASCADE, related_name='batches', to='verification.tenant')),
            ],
            options={
                'verbose_name_plural': 'batches',
                'indexes': [
                    models.Index(fields=['manufacturer_id', 'generation_date'], name='batch_mfr_date_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ProductCode',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('public_id', models.CharField(help_text='Opaque identifier embedded in the QR code', max_length=128, unique=True)),
                ('public_id_hash', models.CharField(db_index=True, help_text='HMAC-SHA256 of public_id', max_length=64)),
                ('secret_code_encrypted', models.TextField(help_text='Fernet-encrypted scratch secret (never returned after generation)')),
                ('secret_hash', models.CharField(db_index=True, help_text='HMAC-SHA256 of the scratch secret; all secret lookups use it', max_length=64)),
                ('product_name', models.CharField(max_length=200)),
                ('company_name', models.CharField(max_length=255)),
                ('manufacturer_id', models.CharField(db_index=True, max_length=64)),
                ('brand_prefix', models.CharField(max_length=10)),
                ('verification_url', models.URLField(max_length=300)),
                ('status', models.CharField(choices=[('active', 'Active'), ('verified', 'Verified'), ('suspected_counterfeit', 'Suspected Counterfeit')], db_index=True, default='active', max_length=32)),
                ('verification_count', models.IntegerField(default=0)),
                ('first_verified_at', models.DateTimeField(blank=True, null=True)),
                ('last_verified_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('batch', models.ForeignKey(help_text='Batch this code was generated in', on_delete=django.db.models.deletion.CASCADE, related_name='codes', to='verification.batch')),
            ],
            options={
                'indexes': [
                    models.Index(fields=['manufacturer_id', 'status'], name='code_mfr_status_idx'),
                    models.Index(fields=['batch', 'status'], name='code_batch_status_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='VerificationAttempt',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('timestamp', models.DateTimeField(db_index=True, default=django.utils.timezone.now, help_text='Request time (not write time)')),
                ('scanned_code', models.CharField(db_index=True, help_text='Public identifier as scanned, even when unresolved', max_length=256)),
                ('secret_attempt', models.CharField(blank=True, help_text='Secret as entered (audit only)', max_length=64)),
                ('result', models.CharField(choices=[('scanned', 'Scanned'), ('valid', 'Valid'), ('invalid', 'Invalid'), ('already_used', 'Already Used'), ('suspected_counterfeit', 'Suspected Counterfeit')], db_index=True, max_length=32)),
                ('caller_address', models.GenericIPAddressField(blank=True, null=True)),
                ('user_agent', models.CharField(blank=True, max_length=512)),
                ('location', models.JSONField(blank=True, help_text='Best-effort geolocation; null when unavailable', null=True)),
            ],
            options={
                'ordering': ['-timestamp'],
                'indexes': [
                    models.Index(fields=['scanned_code', 'timestamp'], name='attempt_code_ts_idx'),
                    models.Index(fields=['result', 'timestamp'], name='attempt_result_ts_idx'),
                    models.Index(fields=['caller_address'], name='attempt_caller_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='SMSVerification',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('session_id', models.CharField(max_length=64, unique=True)),
                ('phone_number', models.CharField(db_index=True, max_length=32)),
                ('carrier', models.CharField(blank=True, max_length=64)),
                ('network_code', models.CharField(blank=True, max_length=16)),
                ('channel', models.CharField(choices=[('sms', 'SMS'), ('ussd', 'USSD')], default='sms', max_length=8)),
                ('message_id', models.CharField(blank=True, help_text='Gateway message/session id; repeats are duplicate deliveries', max_length=128, null=True, unique=True)),
                ('secret_hash', models.CharField(blank=True, db_index=True, max_length=64)),
                ('result', models.CharField(choices=[('pending', 'Pending'), ('valid', 'Valid'), ('invalid', 'Invalid'), ('already_used', 'Already Used'), ('failed', 'Failed')], db_index=True, default='pending', max_length=16)),
                ('cost', models.DecimalField(decimal_places=2, default=0, max_digits=8)),
                ('metadata', models.JSONField(blank=True, default=dict)),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('product_code', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='sms_verifications', to='verification.productcode')),
            ],
            options={
                'indexes': [
                    models.Index(fields=['secret_hash', 'phone_number', 'created_at'], name='sms_dedup_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='CounterfeitReport',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('public_id', models.CharField(blank=True, db_index=True, max_length=256)),
                ('secret_code', models.CharField(blank=True, help_text='Secret as typed by the reporter', max_length=64)),
                ('product_name', models.CharField(max_length=200)),
                ('purchase_location', models.CharField(max_length=500)),
                ('purchase_date', models.DateField(blank=True, null=True)),
                ('reporter_email', models.EmailField(blank=True, max_length=254)),
                ('reporter_phone', models.CharField(blank=True, max_length=32)),
                ('additional_info', models.TextField(blank=True)),
                ('status', models.CharField(choices=[('pending', 'Pending Review'), ('investigating', 'Investigating'), ('resolved', 'Resolved'), ('dismissed', 'Dismissed')], db_index=True, default='pending', max_length=20)),
                ('priority', models.CharField(choices=[('low', 'Low'), ('medium', 'Medium'), ('high', 'High'), ('critical', 'Critical')], default='medium', max_length=10)),
                ('caller_address', models.GenericIPAddressField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('resolved_at', models.DateTimeField(blank=True, null=True)),
                ('product_code', models.ForeignKey(blank=True, help_text='Resolved code, when the public identifier is known', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='reports', to='verification.productcode')),
            ],
            options={
                'indexes': [
                    models.Index(fields=['status', 'created_at'], name='report_status_created_idx'),
                ],
            },
        ),
    ]
