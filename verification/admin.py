from django.contrib import admin

from .models import Batch, CounterfeitReport, ProductCode, SMSVerification, Tenant, VerificationAttempt


@admin.register(Tenant)
class TenantAdmin(admin.ModelAdmin):
    list_display = ('manufacturer_id', 'company_name', 'brand_prefix', 'status',
                    'codes_generated', 'monthly_limit')
    list_filter = ('status',)
    search_fields = ('manufacturer_id', 'company_name')


@admin.register(Batch)
class BatchAdmin(admin.ModelAdmin):
    list_display = ('batch_id', 'manufacturer_id', 'product_name', 'quantity', 'generation_date')
    search_fields = ('batch_id', 'manufacturer_id', 'product_name')
    readonly_fields = ('generation_date',)


@admin.register(ProductCode)
class ProductCodeAdmin(admin.ModelAdmin):
    list_display = ('public_id', 'product_name', 'status', 'verification_count', 'first_verified_at')
    list_filter = ('status',)
    search_fields = ('public_id',)
    # ✓ SECURITY: Secret material is never shown in the admin
    exclude = ('secret_code_encrypted', 'secret_hash')
    readonly_fields = ('public_id', 'public_id_hash', 'verification_count',
                       'first_verified_at', 'last_verified_at')


@admin.register(VerificationAttempt)
class VerificationAttemptAdmin(admin.ModelAdmin):
    list_display = ('timestamp', 'scanned_code', 'result', 'caller_address')
    list_filter = ('result',)
    search_fields = ('scanned_code', 'caller_address')

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(SMSVerification)
class SMSVerificationAdmin(admin.ModelAdmin):
    list_display = ('created_at', 'channel', 'phone_number', 'result', 'cost')
    list_filter = ('channel', 'result')
    exclude = ('secret_hash',)


@admin.register(CounterfeitReport)
class CounterfeitReportAdmin(admin.ModelAdmin):
    list_display = ('created_at', 'public_id', 'product_name', 'status', 'priority')
    list_filter = ('status', 'priority')
