"""
Domain errors raised by the authentication engine.

Views translate these into HTTP responses; lookup misses are never errors
(they are ordinary `invalid` outcomes).
"""


class AuthenticationEngineError(Exception):
    """Base class for all engine errors"""
    default_message = "Product authentication error"

    def __init__(self, message=None, **details):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details


class CodeValidationError(AuthenticationEngineError):
    """Malformed quantity, secret or metadata. Nothing was persisted."""
    default_message = "Invalid request data"


class TenantNotFoundError(AuthenticationEngineError):
    default_message = "Client not found"


class TenantInactiveError(AuthenticationEngineError):
    default_message = "Client is not active"


class QuotaExceededError(AuthenticationEngineError):
    default_message = "Monthly code limit exceeded"


class IdentifierCollisionError(AuthenticationEngineError):
    """Identifier retries exhausted; the whole batch is abandoned"""
    default_message = "Failed to generate unique code identifiers"
