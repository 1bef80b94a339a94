import os
from urllib.parse import urlparse

basedir = os.path.abspath(os.path.dirname(__file__))


def _is_production_runtime():
    flask_env = (os.environ.get('FLASK_ENV') or '').strip().lower()
    return flask_env == 'production'


def _as_bool(value, default=False):
    if value is None:
        return default
    return str(value).strip().lower() in {'1', 'true', 'yes', 'on'}


def _as_int(value, default):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value, default):
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _database_url():
    raw = (os.environ.get('DATABASE_URL') or '').strip()
    if raw.startswith('postgres://'):
        raw = raw.replace('postgres://', 'postgresql://', 1)
    if raw:
        return raw
    return 'sqlite:///' + os.path.join(basedir, 'site.db')


def _database_engine_options(database_url):
    if database_url.startswith('sqlite'):
        return {}
    options = {
        'pool_pre_ping': True,
        'pool_recycle': 300,
    }
    if urlparse(database_url).scheme.startswith('postgresql'):
        options['connect_args'] = {
            'connect_timeout': max(1, _as_int(os.environ.get('DB_CONNECT_TIMEOUT_SECONDS'), 5)),
        }
    return options


def _vault_prefix():
    raw = (os.environ.get('VAULT_URL_PREFIX') or '/vault-e9232b8eefbaa45e').strip().rstrip('/')
    if not raw.startswith('/'):
        raw = '/' + raw
    return raw


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or ''
    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_ENGINE_OPTIONS = _database_engine_options(SQLALCHEMY_DATABASE_URI)
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    UPLOAD_FOLDER = (os.environ.get('UPLOAD_FOLDER') or '').strip() or os.path.join(basedir, 'uploads')
    MAX_CONTENT_LENGTH = 8 * 1024 * 1024  # 8MB max upload
    MAX_UPLOAD_IMAGE_PIXELS = _as_int(os.environ.get('MAX_UPLOAD_IMAGE_PIXELS'), 40_000_000)
    ALLOWED_EXTENSIONS = {'png', 'jpg', 'jpeg', 'gif', 'webp'}
    ALLOWED_UPLOAD_MIME_TYPES = {
        'image/png',
        'image/jpeg',
        'image/gif',
        'image/webp',
    }
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    SESSION_COOKIE_SECURE = _as_bool(
        os.environ.get('SESSION_COOKIE_SECURE'),
        ((os.environ.get('PREFERRED_URL_SCHEME') or '').lower() == 'https') or _is_production_runtime(),
    )
    REMEMBER_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_SAMESITE = 'Lax'
    REMEMBER_COOKIE_SECURE = SESSION_COOKIE_SECURE
    TRUST_PROXY_HEADERS = _as_bool(os.environ.get('TRUST_PROXY_HEADERS'), False)
    PREFERRED_URL_SCHEME = os.environ.get('PREFERRED_URL_SCHEME') or ('https' if SESSION_COOKIE_SECURE else 'http')
    SITE_URL = (os.environ.get('SITE_URL') or 'https://finaceverse.io').rstrip('/')
    HSTS_ENABLED = _as_bool(os.environ.get('HSTS_ENABLED'), True)
    HSTS_MAX_AGE = _as_int(os.environ.get('HSTS_MAX_AGE'), 31536000)
    HSTS_INCLUDE_SUBDOMAINS = _as_bool(os.environ.get('HSTS_INCLUDE_SUBDOMAINS'), True)
    HSTS_PRELOAD = _as_bool(os.environ.get('HSTS_PRELOAD'), False)
    CSRF_EXEMPT_ENDPOINTS = ('main.mailgun_api',)

    BACKEND_API_URL = (os.environ.get('BACKEND_API_URL') or 'http://localhost:5000').rstrip('/')
    BACKEND_TIMEOUT_SECONDS = _as_float(os.environ.get('BACKEND_TIMEOUT_SECONDS'), 10.0)
    ANALYTICS_POLL_SECONDS = max(5, _as_int(os.environ.get('ANALYTICS_POLL_SECONDS'), 60))
    SEO_POLL_SECONDS = max(5, _as_int(os.environ.get('SEO_POLL_SECONDS'), 300))
    LIVE_FEED_LIMIT = max(1, _as_int(os.environ.get('LIVE_FEED_LIMIT'), 10))
    ANALYTICS_REALTIME_ENABLED = _as_bool(os.environ.get('ANALYTICS_REALTIME_ENABLED'), False)
    ANALYTICS_REALTIME_URL = (os.environ.get('ANALYTICS_REALTIME_URL') or BACKEND_API_URL).rstrip('/')
    ANALYTICS_REALTIME_TOKEN = (os.environ.get('ANALYTICS_REALTIME_TOKEN') or '').strip()
    VAULT_URL_PREFIX = _vault_prefix()

    MAILGUN_API_KEY = (os.environ.get('MAILGUN_API_KEY') or '').strip()
    MAILGUN_DOMAIN = (os.environ.get('MAILGUN_DOMAIN') or 'finaceverse.io').strip()
    MAILGUN_MAILING_LIST = (os.environ.get('MAILGUN_MAILING_LIST') or 'newsletter@finaceverse.io').strip()
    NEWSLETTER_FORM_LIMIT = _as_int(os.environ.get('NEWSLETTER_FORM_LIMIT'), 10)
    NEWSLETTER_FORM_WINDOW_SECONDS = _as_int(os.environ.get('NEWSLETTER_FORM_WINDOW_SECONDS'), 3600)

    SENTRY_DSN = (os.environ.get('SENTRY_DSN') or '').strip()
    SENTRY_ENVIRONMENT = (os.environ.get('SENTRY_ENVIRONMENT') or '').strip()
    SENTRY_TRACES_SAMPLE_RATE = _as_float(os.environ.get('SENTRY_TRACES_SAMPLE_RATE'), 0.0)
    LOG_JSON = _as_bool(os.environ.get('LOG_JSON'), True)
    LOG_LEVEL = (os.environ.get('LOG_LEVEL') or 'INFO').strip().upper()
