from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import (
    BatchViewSet, CounterfeitReportViewSet, PublicVerificationViewSet,
    SMSWebhookView, USSDWebhookView, VerificationAttemptViewSet,
)

router = DefaultRouter()
router.register('batches', BatchViewSet, basename='batch')
router.register('verify', PublicVerificationViewSet, basename='verify')
router.register('reports', CounterfeitReportViewSet, basename='report')
router.register('attempts', VerificationAttemptViewSet, basename='attempt')

urlpatterns = [
    path('sms/inbound/', SMSWebhookView.as_view(), name='sms-inbound'),
    path('ussd/inbound/', USSDWebhookView.as_view(), name='ussd-inbound'),
    path('', include(router.urls)),
]
