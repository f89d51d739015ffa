"""
Tests for the web verification channel (resolve + claim)
"""
from unittest.mock import Mock, patch

import pytest
from kombu.exceptions import OperationalError

from verification.models import ProductCode, VerificationAttempt


def resolve_url(public_id):
    return f'/api/v1/verify/{public_id}/'


def claim_url(public_id):
    return f'/api/v1/verify/{public_id}/claim/'


@pytest.mark.django_db
class TestResolve:

    def test_resolve_known_code(self, api_client, code_pair):
        code, _ = code_pair

        response = api_client.get(resolve_url(code.public_id))

        assert response.status_code == 200
        product = response.data['product']
        assert product['product_name'] == 'Amoxicillin 500mg'
        assert product['company_name'] == 'Embodi Pharma'
        assert product['manufacturer_id'] == 'MFR-EMB-001'
        assert product['batch_id'] == 'BATCH-EMB-X'
        assert 'secret_code' not in product
        assert VerificationAttempt.objects.filter(
            scanned_code=code.public_id, result='scanned'
        ).count() == 1

    def test_unknown_code_not_found(self, api_client, db):
        response = api_client.get(resolve_url('QR-FAKE-0000'))

        assert response.status_code == 404
        attempts = VerificationAttempt.objects.filter(scanned_code='QR-FAKE-0000')
        assert attempts.filter(result='scanned').count() == 0
        assert attempts.filter(result='invalid').count() == 1

    def test_resolve_does_not_change_code(self, api_client, code_pair):
        code, _ = code_pair
        api_client.get(resolve_url(code.public_id))
        code.refresh_from_db()
        assert code.verification_count == 0
        assert code.status == 'active'


@pytest.mark.django_db
class TestClaim:

    def test_first_claim_valid_then_already_used(self, api_client, code_pair):
        code, secret = code_pair

        first = api_client.post(claim_url(code.public_id), {'secret_code': secret}, format='json')
        assert first.status_code == 200
        assert first.data['result'] == 'valid'
        assert first.data['product']['batch_id'] == 'BATCH-EMB-X'
        assert first.data['verified_at'] is not None

        second = api_client.post(claim_url(code.public_id), {'secret_code': secret}, format='json')
        assert second.data['result'] == 'already_used'
        assert second.data['verification_count'] == 2
        assert second.data['first_verified_at'] is not None
        assert second.data['report_available'] is True

        code.refresh_from_db()
        assert code.verification_count == 2
        assert code.status == 'verified'
        assert VerificationAttempt.objects.filter(result='valid').count() == 1
        assert VerificationAttempt.objects.filter(result='already_used').count() == 1

    def test_secret_is_normalized(self, api_client, code_pair):
        code, secret = code_pair
        typed = f"{secret[:4].lower()}-{secret[4:8]} {secret[8:].lower()}"

        response = api_client.post(claim_url(code.public_id), {'secret_code': typed}, format='json')

        assert response.data['result'] == 'valid'
        attempt = VerificationAttempt.objects.get(result='valid')
        assert attempt.secret_attempt == secret

    def test_wrong_secret_discloses_nothing(self, api_client, code_pair, wrong_secret):
        code, _ = code_pair

        response = api_client.post(claim_url(code.public_id), {'secret_code': wrong_secret}, format='json')

        assert response.status_code == 200
        assert response.data['result'] == 'invalid'
        assert 'product' not in response.data
        code.refresh_from_db()
        assert code.verification_count == 0
        assert VerificationAttempt.objects.filter(result='invalid').count() == 1

    @pytest.mark.parametrize('secret', ['ABCDEFGH234', 'ABCDEFGH23450', 'ABCDEFGH2340', 'ABCDEFGH234!', ''])
    def test_malformed_secret_rejected(self, api_client, code_pair, secret):
        code, _ = code_pair

        response = api_client.post(claim_url(code.public_id), {'secret_code': secret}, format='json')

        assert response.status_code == 400
        assert 'error' in response.data
        assert VerificationAttempt.objects.exclude(result='scanned').count() == 0
        code.refresh_from_db()
        assert code.verification_count == 0

    def test_claim_on_unknown_identifier(self, api_client, db):
        response = api_client.post(claim_url('QR-FAKE-0000'), {'secret_code': 'ABCDEFGH2345'}, format='json')

        assert response.data['result'] == 'invalid'
        assert VerificationAttempt.objects.filter(scanned_code='QR-FAKE-0000', result='invalid').count() == 1

    def test_attempt_records_caller_and_location(self, api_client, code_pair):
        code, secret = code_pair
        location = {'country': 'Nigeria', 'city': 'Lagos'}

        with patch('verification.tasks.lookup_location', return_value=location) as mock_lookup:
            api_client.post(
                claim_url(code.public_id),
                {'secret_code': secret},
                format='json',
                HTTP_X_FORWARDED_FOR='102.89.1.1, 10.0.0.1',
                HTTP_USER_AGENT='pytest-agent',
            )

        mock_lookup.assert_called_once_with('102.89.1.1')
        attempt = VerificationAttempt.objects.get(result='valid')
        assert attempt.caller_address == '102.89.1.1'
        assert attempt.user_agent == 'pytest-agent'
        assert attempt.location == location

    def test_attempt_written_inline_when_queue_unavailable(self, api_client, code_pair):
        code, secret = code_pair

        with patch('verification.tasks.record_verification_attempt') as mock_task:
            mock_task.delay.side_effect = OperationalError('broker down')
            response = api_client.post(claim_url(code.public_id), {'secret_code': secret}, format='json')

        assert response.data['result'] == 'valid'
        attempt = VerificationAttempt.objects.get(result='valid')
        assert attempt.location is None

    def test_audit_failure_does_not_change_outcome(self, api_client, code_pair):
        code, secret = code_pair

        with patch('verification.tasks.write_attempt', side_effect=RuntimeError('disk full')):
            response = api_client.post(claim_url(code.public_id), {'secret_code': secret}, format='json')

        assert response.data['result'] == 'valid'
        assert ProductCode.objects.get(pk=code.pk).verification_count == 1


def lookup_response(payload):
    response = Mock()
    response.raise_for_status = Mock()
    response.json.return_value = payload
    return response


@pytest.mark.django_db
class TestAttemptEnrichment:

    @pytest.mark.parametrize('payload', [
        {'status': 'fail', 'message': 'quota exceeded'},
        {'status': 'fail', 'message': 'reserved range'},
        None,
        [],
        'rate limited',
    ])
    def test_unusable_lookup_still_records_attempt(self, api_client, code_pair, payload):
        code, _ = code_pair

        with patch('verification.geolocation.httpx.get', return_value=lookup_response(payload)):
            response = api_client.get(resolve_url(code.public_id), HTTP_X_FORWARDED_FOR='102.89.1.1')

        assert response.status_code == 200
        attempt = VerificationAttempt.objects.get(scanned_code=code.public_id)
        assert attempt.result == 'scanned'
        assert attempt.caller_address == '102.89.1.1'
        assert attempt.location is None

    def test_enrichment_error_still_records_attempt(self, api_client, code_pair):
        code, secret = code_pair

        with patch('verification.tasks.lookup_location', side_effect=RuntimeError('resolver crashed')):
            response = api_client.post(
                claim_url(code.public_id),
                {'secret_code': secret},
                format='json',
                HTTP_X_FORWARDED_FOR='102.89.1.1',
            )

        assert response.data['result'] == 'valid'
        attempt = VerificationAttempt.objects.get(result='valid')
        assert attempt.location is None
