"""
Tests for the SMS verification channel
"""
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from django.test import override_settings
from django.utils import timezone

from verification.generator import CodeGenerator
from verification.models import ProductCode, SMSVerification
from verification.sms import HELP, LENGTH, USAGE, VERIFY, parse_command, truncate_reply

SMS_URL = '/api/v1/sms/inbound/'
PHONE = '+2348012345678'


def send(client, text, phone=PHONE, **extra):
    data = {'from': phone, 'to': '33221', 'text': text, 'network': 'MTN', 'network_code': '62130'}
    data.update(extra)
    response = client.post(SMS_URL, data)
    return response, response.content.decode()


class TestParseCommand:

    @pytest.mark.parametrize('text', ['HELP', 'help', ' Help ', '?'])
    def test_help(self, text):
        assert parse_command(text).kind == HELP

    @pytest.mark.parametrize('text', ['HELLO', 'VERIFY ABCDEFGH2345', 'SCRATCHABCDEFGH2345', ''])
    def test_usage(self, text):
        assert parse_command(text).kind == USAGE

    def test_code_is_normalized(self):
        command = parse_command('  scratch  abcd-efgh 2345 ')
        assert command.kind == VERIFY
        assert command.code == 'ABCDEFGH2345'

    def test_long_code_truncated_to_twelve(self):
        command = parse_command('SCRATCH ABCDEFGH23456789')
        assert command == parse_command('SCRATCH ABCDEFGH2345')

    def test_short_code_length_diagnostic(self):
        command = parse_command('SCRATCH ABC12')
        assert command.kind == LENGTH
        assert command.code == 'ABC12'


def test_truncate_reply():
    assert truncate_reply('short') == 'short'
    truncated = truncate_reply('x' * 200)
    assert len(truncated) == 160
    assert truncated.endswith('...')


@pytest.mark.django_db
class TestSMSWebhook:

    def test_status_banner(self, api_client):
        response = api_client.get(SMS_URL)
        assert response.status_code == 200
        assert response['Content-Type'] == 'text/plain; charset=utf-8'
        assert 'active' in response.content.decode()

    def test_help_reply(self, api_client, code_pair):
        code, _ = code_pair

        response, reply = send(api_client, 'HELP')

        assert response.status_code == 200
        assert 'SCRATCH' in reply
        assert SMSVerification.objects.count() == 0
        code.refresh_from_db()
        assert code.verification_count == 0

    def test_usage_error(self, api_client, db):
        _, reply = send(api_client, 'Is this real?')
        assert reply.startswith('Invalid format')

    def test_length_diagnostic(self, api_client, db):
        _, reply = send(api_client, 'SCRATCH AB12')
        assert 'Your code: AB12 (4 chars)' in reply
        assert SMSVerification.objects.count() == 0

    def test_valid_code(self, api_client, code_pair):
        code, secret = code_pair
        typed = f"scratch {secret[:4].lower()}-{secret[4:8]}-{secret[8:]}"

        response, reply = send(api_client, typed, message_id='msg-1')

        assert reply.startswith('GENUINE PRODUCT')
        assert 'Amoxicillin 500mg' in reply
        assert 'BATCH-EMB-X' in reply
        assert response['Content-Type'] == 'text/plain; charset=utf-8'

        record = SMSVerification.objects.get()
        assert response['X-Session-ID'] == record.session_id
        assert response['X-Timestamp']
        assert record.result == 'valid'
        assert record.channel == 'sms'
        assert record.carrier == 'MTN'
        assert record.message_id == 'msg-1'
        assert record.cost == Decimal('4.50')
        assert record.product_code == code
        assert record.metadata['product_name'] == 'Amoxicillin 500mg'
        assert record.metadata['is_first_verification'] is True
        assert record.completed_at is not None

        code.refresh_from_db()
        assert code.verification_count == 1
        assert code.status == 'verified'

    def test_unknown_code_twice_within_window(self, api_client, db):
        _, first = send(api_client, 'SCRATCH AB12CD34EF56')
        _, second = send(api_client, 'SCRATCH AB12CD34EF56')

        assert first.startswith('PRODUCT NOT FOUND')
        assert second.startswith('Recently verified')
        assert 'Result: INVALID' in second
        assert SMSVerification.objects.count() == 1

    def test_repeat_within_window_does_not_mutate(self, api_client, code_pair):
        code, secret = code_pair

        send(api_client, f'SCRATCH {secret}')
        _, reply = send(api_client, f'SCRATCH {secret}')

        assert reply.startswith('Recently verified')
        assert 'Result: VALID' in reply
        code.refresh_from_db()
        assert code.verification_count == 1
        assert SMSVerification.objects.count() == 1

    def test_repeat_after_window_is_already_used(self, api_client, code_pair):
        code, secret = code_pair
        send(api_client, f'SCRATCH {secret}')
        SMSVerification.objects.update(created_at=timezone.now() - timedelta(minutes=6))

        _, reply = send(api_client, f'SCRATCH {secret}')

        assert reply.startswith('PREVIOUSLY VERIFIED')
        assert 'Checks: 2' in reply
        code.refresh_from_db()
        assert code.verification_count == 2

    def test_other_phone_is_not_deduplicated(self, api_client, code_pair):
        _, secret = code_pair
        send(api_client, f'SCRATCH {secret}')

        _, reply = send(api_client, f'SCRATCH {secret}', phone='+2348098765432')

        assert reply.startswith('PREVIOUSLY VERIFIED')
        assert SMSVerification.objects.filter(result='already_used').count() == 1

    def test_duplicate_message_id_is_not_reprocessed(self, api_client, code_pair):
        code, secret = code_pair
        send(api_client, f'SCRATCH {secret}', message_id='msg-42')

        _, reply = send(api_client, f'SCRATCH {secret}', phone='+2348098765432', message_id='msg-42')

        assert reply.startswith('Recently verified')
        code.refresh_from_db()
        assert code.verification_count == 1

    def test_submission_completed_while_waiting_for_lock_is_deduplicated(self, api_client, code_pair):
        code, secret = code_pair
        lookup = ProductCode.objects.by_secret_hash

        def finish_competing_submission(secret_hash, for_update=False):
            SMSVerification.objects.create(
                session_id='competing-session',
                phone_number=PHONE,
                secret_hash=secret_hash,
                result='valid',
                product_code=code,
                completed_at=timezone.now(),
            )
            return lookup(secret_hash, for_update=for_update)

        with patch.object(ProductCode.objects, 'by_secret_hash',
                          side_effect=finish_competing_submission) as mock_lookup:
            _, reply = send(api_client, f'SCRATCH {secret}')

        assert mock_lookup.call_args[1]['for_update'] is True
        assert reply.startswith('Recently verified')
        assert 'Result: VALID' in reply
        code.refresh_from_db()
        assert code.verification_count == 0
        assert SMSVerification.objects.count() == 1

    def test_wrong_secret(self, api_client, code_pair, wrong_secret):
        code, _ = code_pair

        _, reply = send(api_client, f'SCRATCH {wrong_secret}')

        assert reply.startswith('PRODUCT NOT FOUND')
        record = SMSVerification.objects.get()
        assert record.result == 'invalid'
        assert record.product_code is None
        code.refresh_from_db()
        assert code.verification_count == 0

    def test_replies_fit_one_message(self, api_client, tenant):
        generated = CodeGenerator().generate(
            manufacturer_id=tenant.manufacturer_id,
            quantity=1,
            product_name='P' * 200,
        )

        _, reply = send(api_client, f'SCRATCH {generated.codes[0].secret_code}')

        assert len(reply) == 160
        assert reply.endswith('...')

    def test_processing_failure_records_failed_message(self, api_client, code_pair):
        code, secret = code_pair

        with patch('verification.sms.decide', side_effect=RuntimeError('boom')):
            _, reply = send(api_client, f'SCRATCH {secret}', message_id='msg-err')

        assert reply.startswith('System error')
        assert len(reply) <= 160
        record = SMSVerification.objects.get()
        assert record.result == 'failed'
        assert record.message_id is None
        code.refresh_from_db()
        assert code.verification_count == 0

    def test_missing_fields(self, api_client, db):
        response = api_client.post(SMS_URL, {'text': 'HELP'})
        assert response.status_code == 400
        assert 'Missing required fields' in response.content.decode()

    @override_settings(SMS_GATEWAY_API_KEY='gateway-secret')
    def test_gateway_key_required_when_configured(self, api_client, db):
        denied = api_client.post(SMS_URL, {'from': PHONE, 'text': 'HELP'})
        wrong = api_client.post(SMS_URL, {'from': PHONE, 'text': 'HELP'}, HTTP_X_GATEWAY_API_KEY='nope')
        allowed = api_client.post(SMS_URL, {'from': PHONE, 'text': 'HELP'}, HTTP_X_GATEWAY_API_KEY='gateway-secret')

        assert denied.status_code == 403
        assert wrong.status_code == 403
        assert allowed.status_code == 200
