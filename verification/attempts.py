"""
Attempt logging for the web channel.

Each web attempt produces exactly one VerificationAttempt. Recording is handed
to Celery (which adds geolocation); when the broker is unreachable the record
is written inline without location. Audit failures never change the outcome
of a verification.
"""

import logging

from django.db import DatabaseError
from django.utils import timezone
from django.utils.dateparse import parse_datetime
from kombu.exceptions import OperationalError

from .models import VerificationAttempt

logger = logging.getLogger(__name__)


def attempt_payload(scanned_code, result, caller_address=None, user_agent='',
                    secret_attempt='', timestamp=None) -> dict:
    timestamp = timestamp or timezone.now()
    return {
        'scanned_code': (scanned_code or '')[:256],
        'result': result,
        'caller_address': caller_address,
        'user_agent': (user_agent or '')[:512],
        'secret_attempt': (secret_attempt or '')[:64],
        'timestamp': timestamp.isoformat(),
    }


def write_attempt(payload: dict, location=None):
    """Persist one attempt; errors are logged and swallowed"""
    try:
        return VerificationAttempt.objects.create(
            timestamp=parse_datetime(payload['timestamp']),
            scanned_code=payload['scanned_code'],
            secret_attempt=payload.get('secret_attempt', ''),
            result=payload['result'],
            caller_address=payload.get('caller_address'),
            user_agent=payload.get('user_agent', ''),
            location=location,
        )
    except DatabaseError:
        logger.exception(
            "Failed to record verification attempt",
            extra={'scanned_code': payload.get('scanned_code'), 'result': payload.get('result')}
        )
        return None


def log_attempt(scanned_code, result, caller_address=None, user_agent='',
                secret_attempt='', timestamp=None) -> None:
    """✓ COMPLIANCE: Record a web verification attempt (async, best effort)"""
    from .tasks import record_verification_attempt

    payload = attempt_payload(
        scanned_code, result,
        caller_address=caller_address,
        user_agent=user_agent,
        secret_attempt=secret_attempt,
        timestamp=timestamp,
    )
    try:
        record_verification_attempt.delay(payload)
    except OperationalError:
        logger.warning(
            "Attempt queue unavailable, recording inline",
            extra={'scanned_code': payload['scanned_code'], 'result': result}
        )
        write_attempt(payload, location=None)
