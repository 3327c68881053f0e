"""Settings used by the test suite (in-memory SQLite, local memory email)"""
import os

os.environ.setdefault('DATABASE_URL', 'sqlite://:memory:')
os.environ.setdefault('JWT_SECRET', 'test-jwt-secret-0123456789abcdef0123456789')
os.environ.setdefault('SESSION_SECRET', 'test-session-secret-0123456789abcdef')
os.environ.setdefault('NODE_ENV', 'test')

from .base import *  # noqa: E402,F401,F403

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
        'LOCATION': 'repairshop-test-cache',
    }
}

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']
EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'
EMAIL_HOST = ''
STATUS_FEED_INTERVAL = 0.01

LOGGING['loggers']['backend']['level'] = 'CRITICAL'  # noqa: F405
