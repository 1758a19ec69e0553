"""
Django settings for the Libroware library service.

Every value can be overridden from the environment or from a ``.env`` file
placed next to ``manage.py``.
"""

from pathlib import Path

import environ

BASE_DIR = Path(__file__).resolve().parent.parent

env = environ.Env(
    DEBUG=(bool, False),
    LOG_LEVEL=(str, 'INFO'),
    LIBROWARE_MAX_LOAN_DAYS=(int, 14),
    LIBROWARE_TOKEN_MAX_AGE=(int, 60 * 60 * 24 * 7),
    LIBROWARE_FORCE_DELETE_MAX_AGE=(int, 300),
    LIBROWARE_DEFAULT_PAGE_SIZE=(int, 10),
    LIBROWARE_MAX_PAGE_SIZE=(int, 100),
    LIBROWARE_DB_RETRY_ATTEMPTS=(int, 10),
    LIBROWARE_DB_RETRY_DELAY=(float, 0.05),
)
environ.Env.read_env(BASE_DIR / '.env')

SECRET_KEY = env('SECRET_KEY', default='django-insecure-libroware-dev-key-change-me')
DEBUG = env('DEBUG')
ALLOWED_HOSTS = env.list('ALLOWED_HOSTS', default=['localhost', '127.0.0.1'])

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.auth',
    'libroware_app',
]

# sqlite by default; mysql:// needs mysqlclient, mssql:// needs mssql-django + pyodbc
DATABASES = {
    'default': env.db('DATABASE_URL', default=f"sqlite:///{BASE_DIR / 'db.sqlite3'}"),
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'
AUTH_USER_MODEL = 'libroware_app.User'

AUTH_PASSWORD_VALIDATORS = [
    {
        'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator',
        'OPTIONS': {'min_length': 8},
    },
]

LANGUAGE_CODE = 'en-us'
TIME_ZONE = env('TIME_ZONE', default='UTC')
USE_I18N = True
USE_TZ = True

# --- Libroware domain settings ---
LIBROWARE_MAX_LOAN_DAYS = env('LIBROWARE_MAX_LOAN_DAYS')
LIBROWARE_TOKEN_MAX_AGE = env('LIBROWARE_TOKEN_MAX_AGE')
LIBROWARE_FORCE_DELETE_MAX_AGE = env('LIBROWARE_FORCE_DELETE_MAX_AGE')
LIBROWARE_DEFAULT_PAGE_SIZE = env('LIBROWARE_DEFAULT_PAGE_SIZE')
LIBROWARE_MAX_PAGE_SIZE = env('LIBROWARE_MAX_PAGE_SIZE')

# transactions that hit a database lock are retried with a growing, jittered pause
LIBROWARE_DB_RETRY_ATTEMPTS = env('LIBROWARE_DB_RETRY_ATTEMPTS')
LIBROWARE_DB_RETRY_DELAY = env('LIBROWARE_DB_RETRY_DELAY')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'loggers': {
        'libroware_app': {
            'handlers': ['console'],
            'level': env('LOG_LEVEL'),
            'propagate': False,
        },
        'libroware_app.audit': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
    },
}
