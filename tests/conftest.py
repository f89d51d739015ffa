"""Shared fixtures: tenant, generated batch, API clients"""
import pytest
from rest_framework.test import APIClient

from verification.generator import CodeGenerator
from verification.hashing import SECRET_ALPHABET
from verification.models import ProductCode, Tenant


@pytest.fixture
def tenant(db):
    return Tenant.objects.create(
        manufacturer_id='MFR-EMB-001',
        company_name='Embodi Pharma',
        brand_prefix='EMB',
        monthly_limit=1000,
    )


@pytest.fixture
def generated_batch(tenant):
    return CodeGenerator().generate(
        manufacturer_id=tenant.manufacturer_id,
        quantity=3,
        product_name='Amoxicillin 500mg',
        batch_label='BATCH-EMB-X',
    )


@pytest.fixture
def code_pair(generated_batch):
    """(ProductCode, plaintext secret) for the first code of the batch"""
    first = generated_batch.codes[0]
    return ProductCode.objects.get(public_id=first.public_id), first.secret_code


@pytest.fixture
def wrong_secret(code_pair):
    """Well-formed secret that does not belong to the code"""
    _, secret = code_pair
    for char in SECRET_ALPHABET:
        candidate = char * 12
        if candidate != secret:
            return candidate


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def staff_user(db, django_user_model):
    return django_user_model.objects.create_user(
        username='ops', password='not-used', is_staff=True
    )


@pytest.fixture
def staff_client(staff_user):
    client = APIClient()
    client.force_authenticate(user=staff_user)
    return client


@pytest.fixture
def user_client(db, django_user_model):
    user = django_user_model.objects.create_user(username='consumer', password='not-used')
    client = APIClient()
    client.force_authenticate(user=user)
    return client
