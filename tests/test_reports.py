"""
Tests for public counterfeit report submission
"""
import pytest

from verification.models import CounterfeitReport, VerificationAttempt

REPORTS_URL = '/api/v1/reports/'


def report_data(**overrides):
    data = {
        'product_name': 'Amoxicillin 500mg',
        'purchase_location': 'Balogun Market, Lagos',
        'purchase_date': '2026-02-14',
        'reporter_phone': '+2348012345678',
        'additional_info': 'Packaging colour is off',
    }
    data.update(overrides)
    return data


@pytest.mark.django_db
class TestCounterfeitReports:

    def test_report_marks_known_code_suspected(self, api_client, code_pair):
        code, secret = code_pair

        response = api_client.post(REPORTS_URL, report_data(public_id=code.public_id, secret_code=secret), format='json')

        assert response.status_code == 201
        report = CounterfeitReport.objects.get(pk=response.data['report_id'])
        assert report.product_code == code
        assert report.status == 'pending'

        code.refresh_from_db()
        assert code.status == 'suspected_counterfeit'
        assert code.verification_count == 0
        assert VerificationAttempt.objects.filter(
            scanned_code=code.public_id, result='suspected_counterfeit'
        ).count() == 1

    def test_repeat_verified_code_gets_high_priority(self, api_client, code_pair):
        code, secret = code_pair
        for _ in range(2):
            api_client.post(f'/api/v1/verify/{code.public_id}/claim/', {'secret_code': secret}, format='json')

        response = api_client.post(REPORTS_URL, report_data(public_id=code.public_id), format='json')

        assert CounterfeitReport.objects.get(pk=response.data['report_id']).priority == 'high'

    def test_report_without_known_code(self, api_client, db):
        response = api_client.post(REPORTS_URL, report_data(public_id='QR-FAKE-0000'), format='json')

        assert response.status_code == 201
        report = CounterfeitReport.objects.get()
        assert report.product_code is None
        assert VerificationAttempt.objects.count() == 0

    def test_missing_required_fields(self, api_client, db):
        response = api_client.post(REPORTS_URL, report_data(purchase_location=''), format='json')

        assert response.status_code == 400
        assert 'purchase_location' in response.data['details']
        assert CounterfeitReport.objects.count() == 0
