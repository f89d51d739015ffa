"""
PharmaTrust – REST API Views

Features:
  ✓ Public web verification (resolve + claim) and counterfeit reports
  ✓ SMS / USSD gateway webhooks (plain-text replies)
  ✓ Staff-only batch generation and attempt audit (JWT)
  ✓ Rate limiting & throttling on every surface
"""

import ipaddress
import logging
import math

from django.conf import settings
from django.db import transaction
from django.db.models import Count
from django.http import HttpResponse
from django.utils import timezone
from django.utils.crypto import constant_time_compare

from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.permissions import AllowAny, IsAdminUser
from rest_framework.response import Response
from rest_framework.throttling import AnonRateThrottle, UserRateThrottle
from rest_framework.views import APIView
from rest_framework_simplejwt.authentication import JWTAuthentication

from .attempts import log_attempt
from .decision import ALREADY_USED, INVALID, VALID, decide
from .exceptions import (
    AuthenticationEngineError, CodeValidationError, IdentifierCollisionError,
    QuotaExceededError, TenantInactiveError, TenantNotFoundError,
)
from .generator import CodeGenerator
from .hashing import normalize_secret
from .models import Batch, ProductCode, VerificationAttempt
from .serializers import (
    AttemptQuerySerializer, BatchSerializer, ClaimSerializer,
    CounterfeitReportCreateSerializer, CounterfeitReportSerializer,
    GenerateBatchSerializer, ProductCodeSummarySerializer,
    ProductDisplaySerializer, VerificationAttemptSerializer,
)
from .sms import InboundMessage, SMSChannel, USSDChannel

logger = logging.getLogger(__name__)

PLAIN_TEXT = 'text/plain; charset=utf-8'

# ============================================================================
# THROTTLE CLASSES
# ============================================================================


class VerifyRateThrottle(AnonRateThrottle):
    """✓ SECURITY: Public resolve/claim (secret guessing)"""
    scope = 'verify'


class ReportRateThrottle(AnonRateThrottle):
    """✓ SECURITY: Public counterfeit reports"""
    scope = 'report'


class GatewayRateThrottle(AnonRateThrottle):
    """✓ SECURITY: SMS/USSD gateway callbacks"""
    scope = 'sms_gateway'


class GenerationRateThrottle(UserRateThrottle):
    """✓ SECURITY: Code generation rate limiting (expensive operation)"""
    scope = 'generation'


class AuditRateThrottle(UserRateThrottle):
    scope = 'audit'


# ============================================================================
# PERMISSION CLASSES
# ============================================================================


class HasGatewayKey(permissions.BasePermission):
    """✓ SECURITY: Shared gateway key, enforced when configured"""
    message = "Invalid gateway key"

    def has_permission(self, request, view):
        expected = settings.SMS_GATEWAY_API_KEY
        if not expected:
            return True
        provided = request.headers.get('X-Gateway-Api-Key', '')
        return constant_time_compare(provided, expected)


class ClientContextMixin:

    @staticmethod
    def _get_client_ip(request):
        x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
        if x_forwarded_for:
            address = x_forwarded_for.split(',')[0].strip()
        else:
            address = request.META.get('HTTP_X_REAL_IP') or request.META.get('REMOTE_ADDR', '')
        try:
            return str(ipaddress.ip_address(address))
        except ValueError:
            return None

    @staticmethod
    def _get_user_agent(request):
        return request.META.get('HTTP_USER_AGENT', '')


# ============================================================================
# GENERATION VIEWS (Staff)
# ============================================================================


ERROR_STATUS = {
    CodeValidationError: status.HTTP_400_BAD_REQUEST,
    TenantNotFoundError: status.HTTP_404_NOT_FOUND,
    TenantInactiveError: status.HTTP_400_BAD_REQUEST,
    QuotaExceededError: status.HTTP_402_PAYMENT_REQUIRED,
    IdentifierCollisionError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def engine_error_response(exc: AuthenticationEngineError) -> Response:
    body = {'error': exc.message, 'details': exc.details}
    if isinstance(exc, QuotaExceededError):
        body['limit'] = exc.details.get('limit')
        body['remaining'] = exc.details.get('remaining')
    return Response(body, status=ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST))


class BatchViewSet(ClientContextMixin, viewsets.ViewSet):
    """✓ CODES: Generate batches and inspect them"""
    permission_classes = [IsAdminUser]
    authentication_classes = [JWTAuthentication]
    throttle_classes = [AuditRateThrottle]
    lookup_field = 'batch_id'
    lookup_value_regex = '[A-Za-z0-9_-]+'

    def retrieve(self, request, batch_id=None):
        """Batch summary plus code states (no secrets)"""
        try:
            batch = Batch.objects.get(batch_id=batch_id)
        except Batch.DoesNotExist:
            raise NotFound("Batch not found")

        codes = ProductCode.objects.by_batch(batch.batch_id).order_by('created_at', 'public_id')
        return Response({
            'batch': BatchSerializer(batch).data,
            'verified_count': codes.exclude(first_verified_at__isnull=True).count(),
            'codes': ProductCodeSummarySerializer(codes, many=True).data,
        })

    @action(detail=False, methods=['post'], throttle_classes=[GenerationRateThrottle])
    def generate(self, request):
        """✓ SECURITY: Generate a batch of code pairs"""
        serializer = GenerateBatchSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(
                {'error': 'Invalid request data', 'details': serializer.errors},
                status=status.HTTP_400_BAD_REQUEST
            )

        data = serializer.validated_data
        try:
            generated = CodeGenerator().generate(
                manufacturer_id=data['manufacturer_id'],
                quantity=data['quantity'],
                product_name=data['product_name'],
                company_name=data.get('company_name') or None,
                brand_prefix=data.get('brand_prefix') or None,
                batch_label=data.get('batch_number') or None,
                custom_config=serializer.custom_config(),
                created_by=request.user.get_username(),
            )
        except AuthenticationEngineError as e:
            return engine_error_response(e)
        except Exception as e:
            logger.exception(f"Code generation error: {str(e)}")
            return Response(
                {'error': 'Code generation failed'},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR
            )

        batch = generated.batch
        logger.info(
            f"Batch {batch.batch_id} generated by {request.user.get_username()}",
            extra={'batch_id': batch.batch_id, 'ip_address': self._get_client_ip(request)}
        )

        if request.query_params.get('export') == 'csv':
            response = HttpResponse(generated.csv_content, content_type='text/csv; charset=utf-8')
            response['Content-Disposition'] = f'attachment; filename="{batch.batch_id}.csv"'
            return response

        return Response({
            'message': f'Successfully generated {len(generated.codes)} codes',
            'batch_id': batch.batch_id,
            'codes_count': len(generated.codes),
            'remaining_quota': batch.tenant.get_remaining_codes(),
            'codes': [
                {
                    'index': code.index,
                    'public_id': code.public_id,
                    'secret_code': code.secret_code,
                    'verification_url': code.verification_url,
                }
                for code in generated.codes
            ],
            'csv': generated.csv_content,
            'rendering': generated.rendering,
        }, status=status.HTTP_201_CREATED)


# ============================================================================
# PUBLIC VERIFICATION VIEWS (Consumer Facing)
# ============================================================================


def render_claim(decision, code) -> dict:
    """Disclosure rules: nothing about the product on invalid"""
    outcome = decision.outcome
    if outcome == INVALID:
        return {
            'result': INVALID,
            'message': 'This code was not recognised. The product may be counterfeit.',
        }

    payload = {
        'result': outcome,
        'product': ProductDisplaySerializer(code).data,
    }
    if outcome == VALID:
        payload['message'] = 'Genuine product. This is the first verification.'
        payload['verified_at'] = code.first_verified_at
    elif outcome == ALREADY_USED:
        payload['message'] = 'This code has already been verified.'
        payload['verification_count'] = code.verification_count
        payload['first_verified_at'] = code.first_verified_at
        payload['report_available'] = decision.report_available
    return payload


class PublicVerificationViewSet(ClientContextMixin, viewsets.ViewSet):
    """✓ PUBLIC: Product verification (no auth required)"""
    permission_classes = [AllowAny]
    authentication_classes = []
    throttle_classes = [VerifyRateThrottle]
    lookup_field = 'public_id'
    lookup_value_regex = '[^/]+'

    def retrieve(self, request, public_id=None):
        """Resolve a scanned identifier to product display metadata"""
        now = timezone.now()
        code = ProductCode.objects.by_public_id(public_id)

        if code is None:
            logger.info("Unknown public identifier scanned", extra={'public_id': public_id[:256]})
            self._log(request, public_id, INVALID, now)
            return Response(
                {'error': 'Product code not found', 'result': INVALID},
                status=status.HTTP_404_NOT_FOUND
            )

        self._log(request, public_id, 'scanned', now)
        return Response({
            'result': 'scanned',
            'product': ProductDisplaySerializer(code).data,
        })

    @action(detail=True, methods=['post'])
    def claim(self, request, public_id=None):
        """✓ SECURITY: Adjudicate the scratch secret for a scanned code"""
        serializer = ClaimSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(
                {'error': 'Invalid scratch code', 'details': serializer.errors},
                status=status.HTTP_400_BAD_REQUEST
            )

        secret = serializer.validated_data['secret_code']
        now = timezone.now()
        code = ProductCode.objects.by_public_id(public_id)

        decision = decide(code, secret, now)
        with transaction.atomic():
            decision = ProductCode.objects.apply_decision(code, decision)

        logger.info(
            f"Web verification: {decision.outcome}",
            extra={'public_id': public_id[:256], 'result': decision.outcome}
        )
        self._log(request, public_id, decision.outcome, now, secret_attempt=secret)
        return Response(render_claim(decision, code))

    def _log(self, request, public_id, result, now, secret_attempt=''):
        log_attempt(
            public_id,
            result,
            caller_address=self._get_client_ip(request),
            user_agent=self._get_user_agent(request),
            secret_attempt=secret_attempt,
            timestamp=now,
        )


# ============================================================================
# COUNTERFEIT REPORT VIEWS
# ============================================================================


class CounterfeitReportViewSet(ClientContextMixin, viewsets.ViewSet):
    """✓ REPORTS: Public counterfeit report submission"""
    permission_classes = [AllowAny]
    authentication_classes = []
    throttle_classes = [ReportRateThrottle]

    def create(self, request):
        serializer = CounterfeitReportCreateSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(
                {'error': 'Invalid report', 'details': serializer.errors},
                status=status.HTTP_400_BAD_REQUEST
            )

        now = timezone.now()
        caller_address = self._get_client_ip(request)
        try:
            with transaction.atomic():
                report = serializer.save(caller_address=caller_address)
                code = ProductCode.objects.by_public_id(report.public_id)
                if code is not None:
                    ProductCode.objects.mark_suspected_counterfeit(code)
                    report.product_code = code
                    report.priority = 'high' if code.verification_count > 1 else 'medium'
                    report.save(update_fields=['product_code', 'priority'])
        except Exception as e:
            logger.exception(f"Report creation error: {str(e)}")
            return Response(
                {'error': 'Failed to submit report'},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR
            )

        if code is not None:
            log_attempt(
                report.public_id,
                'suspected_counterfeit',
                caller_address=caller_address,
                user_agent=self._get_user_agent(request),
                secret_attempt=report.secret_code,
                timestamp=now,
            )

        logger.info(
            f"Counterfeit report created: {report.id}",
            extra={'report_id': str(report.id), 'public_id': report.public_id}
        )
        return Response({
            'report_id': str(report.id),
            'message': 'Report submitted. Thank you for helping fight counterfeits.',
            'report': CounterfeitReportSerializer(report).data,
        }, status=status.HTTP_201_CREATED)


# ============================================================================
# SMS / USSD GATEWAY VIEWS
# ============================================================================


class GatewayWebhookView(APIView):
    permission_classes = [HasGatewayKey]
    authentication_classes = []
    throttle_classes = [GatewayRateThrottle]
    parser_classes = [FormParser, MultiPartParser, JSONParser]

    @staticmethod
    def _field(data, *names):
        for name in names:
            value = data.get(name)
            if value not in (None, ''):
                return str(value).strip()
        return ''


class SMSWebhookView(GatewayWebhookView):
    """✓ GATEWAY: Inbound SMS (`SCRATCH <code>`, `HELP`)"""

    def get(self, request):
        return HttpResponse(
            "SMS verification endpoint is active.\n"
            f"Send: {settings.SMS_KEYWORD} <12-char code>",
            content_type=PLAIN_TEXT
        )

    def post(self, request):
        data = request.data
        message = InboundMessage(
            phone_number=self._field(data, 'from', 'phone_number'),
            text=self._field(data, 'text', 'sms'),
            message_id=self._field(data, 'message_id', 'id') or None,
            carrier=self._field(data, 'network', 'carrier'),
            network_code=self._field(data, 'network_code'),
            channel='sms',
        )
        reply = SMSChannel().handle(message)

        response_status = status.HTTP_200_OK
        if not (message.phone_number and message.text):
            response_status = status.HTTP_400_BAD_REQUEST

        response = HttpResponse(reply.text, content_type=PLAIN_TEXT, status=response_status)
        for header, value in reply.headers.items():
            response[header] = value
        return response


class USSDWebhookView(GatewayWebhookView):
    """✓ GATEWAY: USSD menu session callback"""

    def post(self, request):
        data = request.data
        session_id = self._field(data, 'session_id', 'sessionId')
        message = InboundMessage(
            phone_number=self._field(data, 'phone_number', 'phoneNumber'),
            text=self._field(data, 'text'),
            message_id=f"ussd-{session_id}" if session_id else None,
            network_code=self._field(data, 'network_code', 'networkCode'),
            channel='ussd',
        )
        if not (session_id and message.phone_number):
            return HttpResponse("END Invalid request.", content_type=PLAIN_TEXT,
                                status=status.HTTP_400_BAD_REQUEST)

        return HttpResponse(USSDChannel().handle(message), content_type=PLAIN_TEXT)


# ============================================================================
# ATTEMPT AUDIT VIEWS (Staff)
# ============================================================================


class VerificationAttemptViewSet(viewsets.ViewSet):
    """✓ AUDIT: Query and purge verification attempts"""
    permission_classes = [IsAdminUser]
    authentication_classes = [JWTAuthentication]
    throttle_classes = [AuditRateThrottle]
    lookup_value_regex = '[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}'

    def list(self, request):
        query = AttemptQuerySerializer(data=request.query_params)
        if not query.is_valid():
            return Response(
                {'error': 'Invalid query', 'details': query.errors},
                status=status.HTTP_400_BAD_REQUEST
            )
        params = query.validated_data

        if params.get('public_id'):
            attempts = VerificationAttempt.objects.for_public_id(params['public_id'])
        else:
            attempts = VerificationAttempt.objects.all()
        if params.get('secret_code'):
            attempts = attempts.filter(secret_attempt=normalize_secret(params['secret_code']))
        if params.get('result'):
            attempts = attempts.filter(result=params['result'])
        if params.get('caller_address'):
            attempts = attempts.filter(caller_address=params['caller_address'])
        if params.get('start_date'):
            attempts = attempts.filter(timestamp__gte=params['start_date'])
        if params.get('end_date'):
            attempts = attempts.filter(timestamp__lte=params['end_date'])

        page, limit = params['page'], params['limit']
        total = attempts.count()
        ordering = 'timestamp' if params['sort_order'] == 'asc' else '-timestamp'
        offset = (page - 1) * limit
        records = attempts.order_by(ordering)[offset:offset + limit]

        return Response({
            'results': VerificationAttemptSerializer(records, many=True).data,
            'pagination': {
                'page': page,
                'limit': limit,
                'total': total,
                'pages': math.ceil(total / limit) if total else 0,
            },
            'stats': self._stats(attempts),
        })

    def destroy(self, request, pk=None):
        """✓ COMPLIANCE: Privileged purge of a single attempt"""
        deleted, _ = VerificationAttempt.objects.filter(pk=pk).delete()
        if not deleted:
            raise NotFound("Verification attempt not found")

        logger.warning(
            f"Verification attempt {pk} purged by {request.user.get_username()}",
            extra={'attempt_id': str(pk)}
        )
        return Response(status=status.HTTP_204_NO_CONTENT)

    @staticmethod
    def _stats(attempts):
        by_result = {
            row['result']: row['count']
            for row in attempts.order_by().values('result').annotate(count=Count('id'))
        }
        return {
            'total': sum(by_result.values()),
            'by_result': {
                choice: by_result.get(choice, 0)
                for choice, _ in VerificationAttempt.RESULT_CHOICES
            },
            'unique_public_ids': attempts.order_by().values('scanned_code').distinct().count(),
            'unique_secrets': attempts.exclude(secret_attempt='').order_by()
                                      .values('secret_attempt').distinct().count(),
            'unique_addresses': attempts.exclude(caller_address__isnull=True).order_by()
                                        .values('caller_address').distinct().count(),
        }
