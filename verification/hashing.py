"""
✓ SECURITY: One-way hashing, secret alphabet & at-rest encryption for codes

Hashes are keyed HMAC-SHA256 (deterministic, so they can be used as lookup
keys) with a dedicated CODE_HASH_KEY. Secrets are additionally kept encrypted
(Fernet) so batches can be re-issued by the tenant; the plaintext is never
used for lookups.
"""

import hashlib
import hmac
import re
import secrets

from cryptography.fernet import Fernet
from django.conf import settings
from django.utils.crypto import constant_time_compare

# Uppercase letters & digits minus the ambiguous 0/O, 1/I/L
SECRET_ALPHABET = 'ABCDEFGHJKMNPQRSTUVWXYZ23456789'
SECRET_LENGTH = 12

SEPARATORS_RE = re.compile(r'[\s\-_./]+')
SECRET_RE = re.compile(r'^[%s]{%d}$' % (SECRET_ALPHABET, SECRET_LENGTH))


def hash_value(value: str) -> str:
    """HMAC-SHA256 hex digest of `value` under CODE_HASH_KEY"""
    return hmac.new(
        settings.CODE_HASH_KEY.encode(),
        value.encode(),
        hashlib.sha256
    ).hexdigest()


def hash_matches(value: str, expected_hash: str) -> bool:
    """✓ SECURITY: constant-time comparison of hash(value) with a stored hash"""
    if not expected_hash:
        return False
    return constant_time_compare(hash_value(value), expected_hash)


def generate_secret_code() -> str:
    """12 characters drawn uniformly from SECRET_ALPHABET"""
    return ''.join(secrets.choice(SECRET_ALPHABET) for _ in range(SECRET_LENGTH))


def normalize_secret(raw: str) -> str:
    """Uppercase and strip separators (spaces, hyphens, dots, slashes)"""
    return SEPARATORS_RE.sub('', raw or '').upper()


def is_well_formed_secret(secret: str) -> bool:
    return bool(SECRET_RE.match(secret or ''))


def secret_cipher() -> Fernet:
    return Fernet(settings.SECRET_ENCRYPTION_KEY.encode())


def encrypt_secret(secret: str, cipher: Fernet = None) -> str:
    cipher = cipher or secret_cipher()
    return cipher.encrypt(secret.encode()).decode()
