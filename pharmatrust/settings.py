from decimal import Decimal
from pathlib import Path

from decouple import config, Csv
import sentry_sdk
from sentry_sdk.integrations.django import DjangoIntegration
from sentry_sdk.integrations.celery import CeleryIntegration

# ✓ SECURITY: Load secrets from environment ONLY
BASE_DIR = Path(__file__).resolve().parent.parent
SECRET_KEY = config('DJANGO_SECRET_KEY')  # Raises error if not set
DEBUG = config('DEBUG', default=False, cast=bool)
ALLOWED_HOSTS = config('ALLOWED_HOSTS', cast=Csv())
ENVIRONMENT = config('ENVIRONMENT', default='development')

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'corsheaders',
    'rest_framework',
    'verification',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'corsheaders.middleware.CorsMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'pharmatrust.urls'
WSGI_APPLICATION = 'pharmatrust.wsgi.application'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True
STATIC_URL = 'static/'
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# ✓ GDPR: Sentry for error tracking (no PII in default integrations)
sentry_sdk.init(
    dsn=config('SENTRY_DSN', default=''),
    integrations=[
        DjangoIntegration(),
        CeleryIntegration(),
    ],
    traces_sample_rate=0.1,
    environment=ENVIRONMENT,
    send_default_pii=False,
    # ✓ SECURITY: Redact sensitive data before sending to Sentry
    before_send=lambda event, hint: redact_event_for_sentry(event),
)

# ✓ SECURITY: HTTPS-only in production
SECURE_SSL_REDIRECT = not DEBUG
SESSION_COOKIE_SECURE = not DEBUG
CSRF_COOKIE_SECURE = not DEBUG
SESSION_COOKIE_HTTPONLY = True
CSRF_COOKIE_HTTPONLY = True
SECURE_HSTS_SECONDS = 31536000 if not DEBUG else 0
SECURE_HSTS_INCLUDE_SUBDOMAINS = not DEBUG
SECURE_HSTS_PRELOAD = not DEBUG
SECURE_PROXY_SSL_HEADER = ('HTTP_X_FORWARDED_PROTO', 'https')
X_FRAME_OPTIONS = 'DENY'
SECURE_CONTENT_TYPE_NOSNIFF = True

# ✓ SECURITY: CORS configuration (whitelist only trusted origins)
CORS_ALLOWED_ORIGINS = config('CORS_ALLOWED_ORIGINS', default='', cast=Csv())
CORS_ALLOW_CREDENTIALS = True
CORS_PREFLIGHT_MAX_AGE = 3600

# Verification must stand once committed, even if the reply is lost, so
# requests are not wrapped in a single transaction.
DATABASES = {
    'default': {
        'ENGINE': config('DB_ENGINE', default='django.db.backends.postgresql'),
        'NAME': config('DB_NAME'),
        'USER': config('DB_USER'),
        'PASSWORD': config('DB_PASSWORD'),  # From env, never hardcoded
        'HOST': config('DB_HOST'),
        'PORT': config('DB_PORT', default='5432', cast=int),
        'ATOMIC_REQUESTS': False,
        'CONN_MAX_AGE': 600,
        'OPTIONS': {
            'connect_timeout': 10,
            'options': '-c statement_timeout=30000',  # 30s max query time
        }
    }
}

# Backs DRF throttling
CACHES = {
    'default': {
        'BACKEND': 'django_redis.cache.RedisCache',
        'LOCATION': config('REDIS_URL'),
        'OPTIONS': {
            'CLIENT_CLASS': 'django_redis.client.DefaultClient',
            'CONNECTION_POOL_KWARGS': {'max_connections': 50, 'retry_on_timeout': True},
            'SOCKET_CONNECT_TIMEOUT': 5,
            'SOCKET_TIMEOUT': 5,
            'COMPRESSOR': 'django_redis.compressors.zlib.ZlibCompressor',
        }
    }
}

# ✓ Celery: attempt recording + geolocation enrichment
CELERY_BROKER_URL = config('CELERY_BROKER_URL')
CELERY_RESULT_BACKEND = config('CELERY_RESULT_BACKEND', default=None)
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_TIMEZONE = 'UTC'
CELERY_TASK_TIME_LIMIT = 30
CELERY_TASK_ALWAYS_EAGER = config('CELERY_TASK_ALWAYS_EAGER', default=False, cast=bool)
CELERY_BROKER_CONNECTION_TIMEOUT = 2
CELERY_TASK_PUBLISH_RETRY = False

REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'rest_framework_simplejwt.authentication.JWTAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.IsAuthenticated',
    ],
    'DEFAULT_THROTTLE_RATES': {
        'verify': config('THROTTLE_VERIFY', default='60/hour'),
        'report': config('THROTTLE_REPORT', default='10/hour'),
        'generation': config('THROTTLE_GENERATION', default='10/hour'),
        'sms_gateway': config('THROTTLE_SMS_GATEWAY', default='6000/hour'),
        'audit': config('THROTTLE_AUDIT', default='1000/hour'),
    },
    'PAGE_SIZE': 100,
}

# ✓ SECURITY: JWT Configuration (staff endpoints only)
SIMPLE_JWT = {
    'ALGORITHM': 'HS256',
    'SIGNING_KEY': config('JWT_SECRET', default=SECRET_KEY),
    'VERIFYING_KEY': None,
    'AUTH_HEADER_TYPES': ('Bearer',),
}

# ============================================================================
# PRODUCT AUTHENTICATION ENGINE
# ============================================================================

SITE_URL = config('SITE_URL', default='http://localhost:3000').rstrip('/')

# ✓ SECURITY: Dedicated keys (never SECRET_KEY) for code hashing & secret storage
CODE_HASH_KEY = config('CODE_HASH_KEY')
SECRET_ENCRYPTION_KEY = config('SECRET_ENCRYPTION_KEY')

CODE_GENERATION_MAX_QUANTITY = config('CODE_GENERATION_MAX_QUANTITY', default=10000, cast=int)
CODE_ID_MAX_ATTEMPTS = config('CODE_ID_MAX_ATTEMPTS', default=10, cast=int)
LABELS_PER_PAGE = config('LABELS_PER_PAGE', default=24, cast=int)

SMS_KEYWORD = config('SMS_KEYWORD', default='SCRATCH')
SMS_DEDUP_WINDOW_SECONDS = config('SMS_DEDUP_WINDOW_SECONDS', default=300, cast=int)
SMS_REPLY_MAX_LENGTH = config('SMS_REPLY_MAX_LENGTH', default=160, cast=int)
SMS_COST_PER_MESSAGE = config('SMS_COST_PER_MESSAGE', default='4.50', cast=Decimal)
SMS_SUPPORT_LINE = config('SMS_SUPPORT_LINE', default='0800-EMBODI')
SMS_GATEWAY_API_KEY = config('SMS_GATEWAY_API_KEY', default='')

GEOLOCATION_API_URL = config(
    'GEOLOCATION_API_URL',
    default='http://ip-api.com/json/{ip}?fields=status,message,country,countryCode,regionName,city,lat,lon,timezone,isp,org',
)
GEOLOCATION_TIMEOUT = config('GEOLOCATION_TIMEOUT', default=3.0, cast=float)

# ✓ GDPR/CCPA: Structured Logging (JSON format for easy parsing)
LOG_LEVEL = config('LOG_LEVEL', default='INFO')
LOG_FILE = config('LOG_FILE', default='')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'json': {
            '()': 'pythonjsonlogger.json.JsonFormatter',
            'format': '%(asctime)s %(name)s %(levelname)s %(message)s',
        }
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'json',
        },
    },
    'loggers': {
        'verification': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        },
        'django.db.backends': {
            'handlers': ['console'],
            'level': 'WARNING',  # Don't log SQL in production (sensitive)
        },
    },
}

if LOG_FILE:
    LOGGING['handlers']['file'] = {
        'class': 'logging.handlers.RotatingFileHandler',
        'filename': LOG_FILE,
        'maxBytes': 1024 * 1024 * 10,  # 10MB
        'backupCount': 10,
        'formatter': 'json',
    }
    LOGGING['loggers']['verification']['handlers'].append('file')


SENSITIVE_FRAME_VARS = {
    'password', 'token', 'secret', 'secret_code', 'secret_attempt',
    'claimed_secret', 'code', 'text',
}


def redact_event_for_sentry(event):
    """
    ✓ GDPR: Remove PII from Sentry before sending.
    Prevents accidental logging of scratch codes, phone numbers and tokens.
    """
    if 'request' in event:
        if 'cookies' in event['request']:
            del event['request']['cookies']
        if 'data' in event['request']:
            event['request']['data'] = '[REDACTED]'
        if 'headers' in event['request']:
            for header in ('Authorization', 'X-Gateway-Api-Key'):
                if header in event['request']['headers']:
                    event['request']['headers'][header] = '[REDACTED]'

    if 'exception' in event:
        for exc in event['exception']['values']:
            if 'stacktrace' in exc and exc['stacktrace']:
                for frame in exc['stacktrace']['frames']:
                    if 'vars' in frame:
                        frame['vars'] = {k: '[REDACTED]' if k in SENSITIVE_FRAME_VARS else v
                                         for k, v in frame['vars'].items()}
    return event
