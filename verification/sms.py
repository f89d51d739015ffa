"""
SMS / USSD verification channel.

Inbound gateway text -> command -> dedup -> decide() -> SMSVerification ->
plain-text reply. SMS replies are bounded to one message (160 characters);
USSD replies carry CON/END menu prefixes.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from typing import Optional

from django.conf import settings
from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone

from .decision import ALREADY_USED, INVALID, VALID, decide
from .hashing import SECRET_LENGTH, hash_value
from .models import ProductCode, SMSVerification

logger = logging.getLogger(__name__)

HELP = 'help'
USAGE = 'usage'
LENGTH = 'length'
VERIFY = 'verify'

CODE_SEPARATORS_RE = re.compile(r'[\s\-]+')
USSD_CODE_RE = re.compile(r'^[A-Z0-9]+$')

EXAMPLE_CODE = 'ABCD2345EFGH'


# ============================================================================
# 1. PARSING
# ============================================================================


@dataclass(frozen=True)
class Command:
    kind: str
    code: str = ''


def parse_command(text: str) -> Command:
    """
    Case-insensitive, whitespace-tolerant grammar:
        HELP | ?           -> help
        SCRATCH <code>     -> verify (separators stripped, cut to 12)
        anything else      -> usage error
    """
    normalized = ' '.join((text or '').split()).upper()
    if normalized in ('HELP', '?'):
        return Command(HELP)

    keyword = settings.SMS_KEYWORD.upper()
    if normalized != keyword and not normalized.startswith(keyword + ' '):
        return Command(USAGE)

    code = CODE_SEPARATORS_RE.sub('', normalized[len(keyword):])[:SECRET_LENGTH]
    if len(code) != SECRET_LENGTH:
        return Command(LENGTH, code)
    return Command(VERIFY, code)


# ============================================================================
# 2. REPLIES
# ============================================================================


def truncate_reply(text: str, max_length: int = None) -> str:
    max_length = max_length or settings.SMS_REPLY_MAX_LENGTH
    if len(text) <= max_length:
        return text
    return text[:max_length - 3] + '...'


def help_reply() -> str:
    return (
        "PRODUCT VERIFICATION\n"
        f"Send: {settings.SMS_KEYWORD} <12-char code>\n"
        f"Example: {settings.SMS_KEYWORD} {EXAMPLE_CODE}\n"
        "Code is under the scratch panel.\n"
        f"Help: {settings.SMS_SUPPORT_LINE}"
    )


def usage_reply() -> str:
    return (
        "Invalid format.\n"
        f"Send: {settings.SMS_KEYWORD} <12-char code>\n"
        f"Example: {settings.SMS_KEYWORD} {EXAMPLE_CODE}\n"
        "Send HELP for help."
    )


def length_reply(code: str) -> str:
    return (
        "Invalid code length.\n"
        f"Must be {SECRET_LENGTH} characters.\n"
        f"Your code: {code} ({len(code)} chars)\n"
        f"Example: {settings.SMS_KEYWORD} {EXAMPLE_CODE}"
    )


def error_reply() -> str:
    return f"System error. Please try again.\nFor help: {settings.SMS_SUPPORT_LINE}"


def missing_fields_reply() -> str:
    return "Invalid request. Missing required fields."


def recent_reply(code: str, prior: SMSVerification) -> str:
    at = timezone.localtime(prior.created_at).strftime('%H:%M:%S')
    return (
        "Recently verified.\n"
        f"Code: {code}\n"
        f"Result: {prior.result.replace('_', ' ').upper()}\n"
        f"Time: {at}\n"
        f"If suspicious call {settings.SMS_SUPPORT_LINE}"
    )


def decision_reply(outcome: str, code: str, product: Optional[ProductCode]) -> str:
    support = settings.SMS_SUPPORT_LINE
    if outcome == VALID:
        return (
            "GENUINE PRODUCT\n"
            f"{product.product_name}\n"
            f"Mfr: {product.company_name}\n"
            f"Batch: {product.batch_label}\n"
            "First verification. Keep as proof.\n"
            f"Issues: {support}"
        )
    if outcome == ALREADY_USED:
        first = timezone.localtime(product.first_verified_at).strftime('%d/%m/%Y')
        return (
            "PREVIOUSLY VERIFIED\n"
            f"{product.product_name}\n"
            f"First: {first}\n"
            f"Checks: {product.verification_count}\n"
            f"If unexpected, may be fake. Report: {support}"
        )
    return (
        "PRODUCT NOT FOUND\n"
        f"Code: {code}\n"
        "Not a genuine product. DO NOT USE.\n"
        f"Report: {support}"
    )


@dataclass
class GatewayReply:
    text: str
    session_id: str
    timestamp: str

    @property
    def headers(self) -> dict:
        return {
            'X-Session-ID': self.session_id,
            'X-Timestamp': self.timestamp,
        }


@dataclass
class InboundMessage:
    phone_number: str
    text: str
    message_id: Optional[str] = None
    carrier: str = ''
    network_code: str = ''
    channel: str = 'sms'


@dataclass
class ChannelResult:
    """Outcome of the shared verification core"""
    record: SMSVerification
    product: Optional[ProductCode] = None
    duplicate: bool = False

    @property
    def result(self) -> str:
        return self.record.result


# ============================================================================
# 3. VERIFICATION CORE
# ============================================================================


def product_snapshot(product: Optional[ProductCode], first_verification: bool) -> dict:
    if product is None:
        return {}
    return {
        'product_name': product.product_name,
        'company_name': product.company_name,
        'batch_id': product.batch_label,
        'public_id': product.public_id,
        'verification_count': product.verification_count,
        'is_first_verification': first_verification,
    }


class GatewayVerificationService:
    """
    ✓ SECURITY: Shared SMS/USSD verification path.

    Repeat submissions of the same secret from the same phone within the
    dedup window, and repeated gateway message ids, are answered from the
    earlier record without invoking the state machine.
    """

    def __init__(self, now=None):
        self._now = now or timezone.now

    def verify(self, message: InboundMessage, secret: str, session_id: str) -> ChannelResult:
        secret_hash = hash_value(secret)
        now = self._now()

        try:
            with transaction.atomic():
                # Row lock serializes same-secret submissions before the dedup check
                product = ProductCode.objects.by_secret_hash(secret_hash, for_update=True)
                prior = self._prior(message, secret_hash, now)
                if prior is not None:
                    logger.info(
                        "Duplicate gateway submission answered from prior record",
                        extra={'session_id': session_id, 'prior_session_id': prior.session_id}
                    )
                    return ChannelResult(record=prior, product=prior.product_code, duplicate=True)

                record = SMSVerification.objects.create(
                    session_id=session_id,
                    phone_number=message.phone_number,
                    carrier=message.carrier or '',
                    network_code=message.network_code or '',
                    channel=message.channel,
                    message_id=message.message_id or None,
                    secret_hash=secret_hash,
                    result='pending',
                    cost=settings.SMS_COST_PER_MESSAGE,
                    created_at=now,
                )
                decision = decide(product, secret, now)
                decision = ProductCode.objects.apply_decision(product, decision)

                record.product_code = product if decision.outcome != INVALID else None
                record.result = decision.outcome
                record.metadata = product_snapshot(
                    record.product_code, first_verification=decision.is_valid
                )
                record.completed_at = self._now()
                record.save(update_fields=['product_code', 'result', 'metadata', 'completed_at'])
        except IntegrityError:
            if not message.message_id:
                raise
            prior = SMSVerification.objects.filter(message_id=message.message_id).first()
            if prior is None:
                raise
            logger.info(
                "Concurrent duplicate delivery of gateway message",
                extra={'session_id': session_id, 'prior_session_id': prior.session_id}
            )
            return ChannelResult(record=prior, product=prior.product_code, duplicate=True)

        logger.info(
            f"{message.channel.upper()} verification: {decision.outcome}",
            extra={
                'session_id': session_id,
                'result': decision.outcome,
                'secret_hash_prefix': secret_hash[:8],
                'carrier': message.carrier,
            }
        )
        return ChannelResult(record=record, product=record.product_code)

    @staticmethod
    def _prior(message: InboundMessage, secret_hash: str, now):
        prior = SMSVerification.objects.recent_for(
            secret_hash, message.phone_number, settings.SMS_DEDUP_WINDOW_SECONDS, now=now
        )
        if prior is None and message.message_id:
            prior = SMSVerification.objects.filter(message_id=message.message_id).first()
        return prior

    def record_failure(self, message: InboundMessage, session_id: str, secret: str = '') -> None:
        """Persist a `failed` record; never raises"""
        try:
            SMSVerification.objects.create(
                session_id=session_id,
                phone_number=(message.phone_number or 'unknown')[:32],
                carrier=message.carrier or '',
                network_code=message.network_code or '',
                channel=message.channel,
                secret_hash=hash_value(secret) if secret else '',
                result='failed',
                cost=settings.SMS_COST_PER_MESSAGE,
                metadata={'error': 'processing_failed'},
                completed_at=self._now(),
            )
        except DatabaseError:
            logger.exception("Failed to record failed gateway message", extra={'session_id': session_id})


def new_session_id() -> str:
    return uuid.uuid4().hex


def render_result(result: ChannelResult, code: str) -> str:
    if result.duplicate:
        return recent_reply(code, result.record)
    return decision_reply(result.result, code, result.product)


# ============================================================================
# 4. SMS CHANNEL
# ============================================================================


class SMSChannel:

    def __init__(self, service: GatewayVerificationService = None):
        self.service = service or GatewayVerificationService()

    def handle(self, message: InboundMessage) -> GatewayReply:
        session_id = new_session_id()
        return GatewayReply(
            text=truncate_reply(self._respond(message, session_id)),
            session_id=session_id,
            timestamp=timezone.now().isoformat(),
        )

    def _respond(self, message: InboundMessage, session_id: str) -> str:
        if not message.phone_number or not message.text:
            return missing_fields_reply()

        command = parse_command(message.text)
        if command.kind == HELP:
            return help_reply()
        if command.kind == USAGE:
            return usage_reply()
        if command.kind == LENGTH:
            return length_reply(command.code)

        try:
            result = self.service.verify(message, command.code, session_id)
            return render_result(result, command.code)
        except Exception:
            logger.exception("SMS processing error", extra={'session_id': session_id})
            self.service.record_failure(message, session_id, command.code)
            return error_reply()


# ============================================================================
# 5. USSD CHANNEL
# ============================================================================


class USSDChannel:
    """
    Menu flow (the gateway sends every input of the session joined by '*'):
        ""            -> CON welcome
        "1"           -> END help
        "<code>"      -> END verification result, CON retry on malformed code
        too many tries -> END session expired
    """

    max_steps = 3

    def __init__(self, service: GatewayVerificationService = None):
        self.service = service or GatewayVerificationService()

    def handle(self, message: InboundMessage) -> str:
        if not message.text:
            return (
                "CON Welcome to Product Verification\n"
                f"Enter the {SECRET_LENGTH}-character code under the scratch panel\n"
                "or 1 for help"
            )

        steps = [step.strip() for step in message.text.split('*')]
        current = steps[-1]

        if current == '1':
            return (
                "END Scratch the panel on the pack and enter the "
                f"{SECRET_LENGTH}-character code.\n"
                f"Or SMS: {settings.SMS_KEYWORD} <code>\n"
                f"Help: {settings.SMS_SUPPORT_LINE}"
            )

        if len(steps) > self.max_steps:
            return "END Session expired. Please dial again."

        code = CODE_SEPARATORS_RE.sub('', current).upper()
        if len(code) != SECRET_LENGTH:
            return (
                "CON Invalid code length.\n"
                f"Must be {SECRET_LENGTH} characters. You entered {len(code)}.\n"
                "Try again:"
            )
        if not USSD_CODE_RE.match(code):
            return "CON Invalid characters.\nUse letters and numbers only.\nTry again:"

        session_id = new_session_id()
        try:
            result = self.service.verify(message, code, session_id)
        except Exception:
            logger.exception("USSD processing error", extra={'session_id': session_id})
            self.service.record_failure(message, session_id, code)
            return f"END {error_reply()}"
        return f"END {render_result(result, code)}"
