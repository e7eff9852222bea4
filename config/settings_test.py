"""
Test settings: in-memory SQLite, eager Celery, fixed protected identity.
"""
import os

os.environ.setdefault('SECRET_KEY', 'test-secret-key-not-for-production-use-0001')
os.environ.setdefault('JWT_SECRET_KEY', 'test-jwt-key-Zq8vN3kP1xR7mW2cT9bY4hL6')
os.environ.setdefault('DEBUG', 'False')
os.environ.setdefault('SECURE_SSL_REDIRECT', 'False')
os.environ.setdefault('ALLOWED_HOSTS', 'testserver,localhost')
os.environ.setdefault('DATABASE_URL', 'sqlite://:memory:')
os.environ.setdefault('PROTECTED_IDENTITY_ID', '9b1f4c2e-6a7d-4e3b-8c5f-2d1a0e9f7b64')
os.environ.setdefault('PROTECTED_IDENTITY_EMAIL', 'root@inspecta.test')
os.environ.setdefault('PROTECTED_IDENTITY_NAME', 'Inspecta Root')
os.environ.setdefault('MASTER_ORGANIZATION_ID', '1')

from .settings import *  # noqa: E402,F401,F403

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = False
CELERY_BROKER_URL = 'memory://'
CELERY_RESULT_BACKEND = 'cache+memory://'

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']
