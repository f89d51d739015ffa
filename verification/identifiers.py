"""
✓ UNIQUENESS: Public identifier allocation

Identifiers look like QR-{PREFIX}-{ms timestamp}-{index:06d}-{RAND4}. Each
generation request owns one allocator; candidates are checked against its
in-flight set and the database unique constraint catches cross-request
collisions at insert time.
"""

import logging
import secrets
import string
import time

from django.conf import settings

from .exceptions import IdentifierCollisionError

logger = logging.getLogger(__name__)

SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def _timestamp_ms() -> int:
    return int(time.time() * 1000)


def random_suffix(length: int) -> str:
    return ''.join(secrets.choice(SUFFIX_ALPHABET) for _ in range(length))


def build_public_id(prefix: str, index: int) -> str:
    return f"QR-{prefix}-{_timestamp_ms()}-{index:06d}-{random_suffix(4)}"


def build_batch_id(prefix: str) -> str:
    return f"BATCH-{prefix}-{_timestamp_ms()}-{random_suffix(6)}"


class IdentifierAllocator:
    """
    Allocates public identifiers for a single generation request.

    allocate(prefix, index) retries up to `max_attempts` times against the
    in-flight set, then raises IdentifierCollisionError.
    """

    def __init__(self, max_attempts: int = None):
        self.max_attempts = max_attempts or settings.CODE_ID_MAX_ATTEMPTS
        self._in_flight = set()

    def allocate(self, prefix: str, index: int = 0) -> str:
        for attempt in range(1, self.max_attempts + 1):
            candidate = build_public_id(prefix, index)
            if candidate not in self._in_flight:
                self._in_flight.add(candidate)
                return candidate
            logger.warning(
                f"Public identifier collision (attempt {attempt}/{self.max_attempts})",
                extra={'prefix': prefix, 'index': index}
            )

        raise IdentifierCollisionError(
            "Failed to generate unique identifier",
            prefix=prefix,
            index=index,
            attempts=self.max_attempts,
        )
