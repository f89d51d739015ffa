import logging

from celery import shared_task

from .attempts import write_attempt
from .geolocation import lookup_location

logger = logging.getLogger(__name__)


@shared_task(name='verification.record_verification_attempt', ignore_result=True)
def record_verification_attempt(payload):
    """Geolocate the caller (best effort), then write the attempt once"""
    try:
        location = lookup_location(payload.get('caller_address'))
    except Exception:
        logger.exception("Geolocation enrichment failed; recording attempt without location")
        location = None
    attempt = write_attempt(payload, location=location)
    if attempt is not None:
        logger.info(
            f"Recorded {attempt.result} attempt for {attempt.scanned_code}",
            extra={'attempt_id': str(attempt.id), 'located': location is not None}
        )
        return str(attempt.id)
    return None
