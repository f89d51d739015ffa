"""
Read-through interface to the tenant-management collaborator.

Business rules (active status, quota) always go through here, keyed by
manufacturer id; names denormalized onto batches and codes are display-only.
"""

import logging

from .exceptions import QuotaExceededError, TenantInactiveError, TenantNotFoundError
from .models import Tenant

logger = logging.getLogger(__name__)


class TenantDirectory:

    def get(self, manufacturer_id: str) -> Tenant:
        try:
            return Tenant.objects.get(manufacturer_id=manufacturer_id)
        except Tenant.DoesNotExist:
            raise TenantNotFoundError(
                "Client not found",
                manufacturer_id=manufacturer_id,
            )

    def ensure_can_generate(self, tenant: Tenant, quantity: int) -> None:
        """✓ BUSINESS LOGIC: Active tenant with enough quota left"""
        if not tenant.is_active:
            logger.warning(
                f"Generation refused for inactive tenant {tenant.manufacturer_id}",
                extra={'manufacturer_id': tenant.manufacturer_id, 'status': tenant.status}
            )
            raise TenantInactiveError(
                "Client is not active",
                manufacturer_id=tenant.manufacturer_id,
                status=tenant.status,
            )

        if not tenant.can_generate_codes(quantity):
            raise self._quota_error(tenant, quantity)

    def reserve(self, tenant: Tenant, quantity: int) -> None:
        """
        ✓ CONCURRENCY: Consume quota with a conditional UPDATE.
        Must run inside the generation transaction so a failed batch gives
        the quota back.
        """
        if not Tenant.objects.reserve_quota(tenant.pk, quantity):
            tenant.refresh_from_db(fields=['status', 'codes_generated', 'monthly_limit'])
            if not tenant.is_active:
                raise TenantInactiveError(
                    "Client is not active",
                    manufacturer_id=tenant.manufacturer_id,
                    status=tenant.status,
                )
            raise self._quota_error(tenant, quantity)

        tenant.refresh_from_db(fields=['codes_generated', 'last_batch_at'])

    @staticmethod
    def _quota_error(tenant: Tenant, quantity: int) -> QuotaExceededError:
        remaining = tenant.get_remaining_codes()
        logger.warning(
            f"Monthly limit exceeded for {tenant.manufacturer_id}",
            extra={
                'manufacturer_id': tenant.manufacturer_id,
                'requested': quantity,
                'remaining': remaining,
            }
        )
        return QuotaExceededError(
            f"Monthly code limit exceeded. Remaining: {remaining}",
            limit=tenant.monthly_limit,
            remaining=remaining,
            requested=quantity,
        )
