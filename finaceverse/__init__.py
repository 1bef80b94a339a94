import json
import logging
import os
import re
import secrets
import threading
from urllib.parse import urlparse

import click
from flask import Flask, abort, flash, g, has_request_context, jsonify, redirect, render_template, request, session, url_for
from flask_login import LoginManager, logout_user
from markupsafe import Markup, escape
from sqlalchemy import text
from werkzeug.middleware.proxy_fix import ProxyFix

from .api_client import BackendClient, BackendError, BackendUnauthorized
from .config import Config
from .content_forms import format_tags
from .models import db, Article, SiteSetting
from .polling import ANALYTICS_AUTH_SLOT, ANALYTICS_TARGETS, PollingRefresher
from .realtime import init_realtime
from .rendering import render_article, rich_text
from .token_store import ANALYTICS_KEYS, SUPERADMIN_KEYS, clear_tokens, load_vault_user
from .utils import format_count

login_manager = LoginManager()
login_manager.login_view = 'vault.login'
login_manager.login_message = 'Please sign in to the vault.'
login_manager.login_message_category = 'warning'
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{8,80}$")
_sentry_initialized = False


class JsonLogFormatter(logging.Formatter):
    def format(self, record):
        payload = {
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'time': self.formatTime(record, self.datefmt),
        }
        if has_request_context():
            payload.update(
                {
                    'request_id': getattr(g, 'request_id', ''),
                    'method': request.method,
                    'path': request.path,
                    'remote_ip': request.remote_addr,
                }
            )
        if record.exc_info:
            payload['exc_info'] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(app):
    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    app.logger.setLevel(level)
    # Module loggers (api client, polling, realtime) share the app's handlers.
    package_logger = logging.getLogger(__name__)
    package_logger.setLevel(level)
    if not app.config.get('LOG_JSON', True):
        return
    formatter = JsonLogFormatter()
    for handler in app.logger.handlers:
        handler.setFormatter(formatter)
    if not package_logger.handlers:
        handler = logging.StreamHandler()
        package_logger.addHandler(handler)
        package_logger.propagate = False
    for handler in package_logger.handlers:
        handler.setFormatter(formatter)


login_manager.user_loader(load_vault_user)


def get_site_settings():
    try:
        return {s.key: s.value for s in SiteSetting.query.all()}
    except Exception:
        db.session.rollback()
        logging.getLogger(__name__).exception('Loading site settings failed.')
        return {}


def get_csrf_token():
    token = session.get('_csrf_token')
    if not token:
        token = secrets.token_urlsafe(32)
        session['_csrf_token'] = token
    return token


def csrf_input():
    token = get_csrf_token()
    return Markup(f'<input type="hidden" name="_csrf_token" value="{escape(token)}">')  # nosec B704


def get_csp_nonce():
    nonce = getattr(g, 'csp_nonce', '')
    if nonce:
        return nonce
    nonce = secrets.token_urlsafe(16)
    g.csp_nonce = nonce
    return nonce


def safe_referrer_path(fallback):
    raw_referrer = (request.referrer or '').strip()
    if not raw_referrer:
        return fallback

    parsed = urlparse(raw_referrer)
    if parsed.scheme and parsed.scheme not in {'http', 'https'}:
        return fallback
    if parsed.netloc and parsed.netloc != request.host:
        return fallback

    path = parsed.path or '/'
    if not path.startswith('/'):
        return fallback

    target = path
    if parsed.query:
        target = f"{target}?{parsed.query}"
    return target


def wants_json():
    if request.is_json or request.path.endswith('/data') or request.path.endswith('/live'):
        return True
    best = request.accept_mimetypes.best_match(['application/json', 'text/html'])
    return best == 'application/json' and request.accept_mimetypes[best] > request.accept_mimetypes['text/html']


def private_path_prefixes(app):
    return (app.config['VAULT_URL_PREFIX'], '/analytics', '/seo-dashboard')


def init_sentry(app):
    global _sentry_initialized
    if _sentry_initialized:
        return

    dsn = (app.config.get('SENTRY_DSN') or '').strip()
    if not dsn:
        return

    try:
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

        traces_sample_rate = float(app.config.get('SENTRY_TRACES_SAMPLE_RATE') or 0.0)
        sentry_sdk.init(
            dsn=dsn,
            integrations=[FlaskIntegration(), SqlalchemyIntegration()],
            traces_sample_rate=traces_sample_rate,
            environment=(app.config.get('SENTRY_ENVIRONMENT') or None),
        )
        _sentry_initialized = True
        app.logger.info('Sentry monitoring enabled.')
    except Exception:
        app.logger.exception('Failed to initialize Sentry monitoring.')


def _asset_version(app):
    commit_sha = (os.environ.get('ASSET_VERSION') or os.environ.get('GITHUB_SHA') or '').strip()
    if commit_sha:
        return commit_sha[:12]
    css_path = os.path.join(app.static_folder or '', 'css', 'style.css')
    try:
        return str(int(os.path.getmtime(css_path)))
    except OSError:
        return 'dev'


def register_cli(app):
    @app.cli.command('watch-analytics')
    @click.option('--token', envvar='ANALYTICS_TOKEN', required=True, help='Analytics bearer token.')
    @click.option('--interval', type=float, default=None, help='Seconds between refreshes.')
    @click.option('--cycles', type=int, default=0, help='Stop after this many refreshes (0 = run until Ctrl+C).')
    def watch_analytics(token, interval, cycles):
        """Poll the analytics endpoints and log a summary line per refresh."""
        finished = threading.Event()
        completed = {'count': 0}

        def on_update(state):
            summary = state.get('summary') or {}
            click.echo(
                'visits={total} 24h={day} 7d={week} events={events} errors={errors} countries={countries}'.format(
                    total=format_count(summary.get('totalVisits')),
                    day=format_count(summary.get('visits24h')),
                    week=format_count(summary.get('visits7d')),
                    events=format_count(summary.get('totalEvents')),
                    errors=format_count(summary.get('totalErrors')),
                    countries=format_count(summary.get('uniqueCountries')),
                )
            )
            completed['count'] += 1
            if cycles and completed['count'] >= cycles:
                finished.set()

        def on_unauthorized():
            click.echo('Token rejected by the analytics backend.', err=True)
            finished.set()

        refresher = PollingRefresher(
            lambda: BackendClient(
                app.config['BACKEND_API_URL'],
                token=token,
                timeout=app.config['BACKEND_TIMEOUT_SECONDS'],
            ),
            ANALYTICS_TARGETS,
            interval or app.config['ANALYTICS_POLL_SECONDS'],
            auth_slot=ANALYTICS_AUTH_SLOT,
            on_update=on_update,
            on_unauthorized=on_unauthorized,
        )
        refresher.start()
        try:
            while not finished.wait(0.5):
                if not refresher.running:
                    break
        except KeyboardInterrupt:
            click.echo('Stopping.')
        finally:
            refresher.stop(timeout=5)


def create_app(config_overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)
    configure_logging(app)
    app.config['ASSET_VERSION'] = (app.config.get('ASSET_VERSION') or '').strip() or _asset_version(app)

    if not app.config.get('SECRET_KEY'):
        import warnings
        app.config['SECRET_KEY'] = secrets.token_urlsafe(32)
        warnings.warn(
            'SECRET_KEY is not set; using a random key. '
            'Sessions (and the backend tokens they hold) will not survive restarts.',
            stacklevel=2,
        )

    if app.config.get('TRUST_PROXY_HEADERS'):
        # Only trust one proxy hop (the platform edge) when explicitly enabled.
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)

    init_sentry(app)
    os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)

    db.init_app(app)
    login_manager.init_app(app)

    app.add_template_filter(render_article, 'article')
    app.add_template_filter(rich_text, 'rich_text')
    app.add_template_filter(format_count, 'count')
    app.add_template_filter(format_tags, 'tags')

    @app.before_request
    def assign_request_id():
        incoming = (request.headers.get('X-Request-ID') or '').strip()
        if _REQUEST_ID_RE.match(incoming):
            g.request_id = incoming
        else:
            g.request_id = secrets.token_hex(16)

    @app.before_request
    def enforce_csrf():
        if request.method not in ('POST', 'PUT', 'PATCH', 'DELETE'):
            return
        if request.endpoint in app.config.get('CSRF_EXEMPT_ENDPOINTS', ()):
            return
        expected = session.get('_csrf_token')
        provided = request.form.get('_csrf_token') or request.headers.get('X-CSRF-Token')
        if not expected or not provided or not secrets.compare_digest(expected, provided):
            abort(400, description='Invalid or missing CSRF token.')

    @app.before_request
    def ensure_csp_nonce():
        get_csp_nonce()

    @app.context_processor
    def inject_globals():
        return dict(
            site_settings=get_site_settings(),
            csrf_token=get_csrf_token,
            csrf_input=csrf_input,
            csp_nonce=get_csp_nonce(),
            asset_v=app.config.get('ASSET_VERSION', 'dev'),
            vault_prefix=app.config['VAULT_URL_PREFIX'],
        )

    @app.after_request
    def add_security_headers(response):
        response.headers['X-Request-ID'] = getattr(g, 'request_id', '')
        response.headers.setdefault('X-Content-Type-Options', 'nosniff')
        response.headers.setdefault('X-Frame-Options', 'DENY')
        response.headers.setdefault('Referrer-Policy', 'strict-origin-when-cross-origin')
        response.headers.setdefault('Permissions-Policy', 'geolocation=(), microphone=(), camera=()')
        response.headers.setdefault('Cross-Origin-Resource-Policy', 'same-origin')
        response.headers.setdefault('Cross-Origin-Opener-Policy', 'same-origin')
        if request.is_secure and app.config.get('HSTS_ENABLED', True):
            hsts_max_age = max(0, int(app.config.get('HSTS_MAX_AGE', 31536000)))
            hsts_parts = [f'max-age={hsts_max_age}']
            if app.config.get('HSTS_INCLUDE_SUBDOMAINS', True):
                hsts_parts.append('includeSubDomains')
            if app.config.get('HSTS_PRELOAD', False):
                hsts_parts.append('preload')
            response.headers.setdefault('Strict-Transport-Security', '; '.join(hsts_parts))
        if request.path.startswith(private_path_prefixes(app)):
            response.headers.setdefault('X-Robots-Tag', 'noindex, nofollow, noarchive')

        if request.path.startswith('/static/') and response.status_code in (200, 304):
            response.headers['Cache-Control'] = 'public, max-age=31536000, immutable'
        elif '/uploads/' in request.path and response.status_code in (200, 304):
            response.headers['Cache-Control'] = 'public, max-age=604800'

        if response.content_type and response.content_type.startswith('text/html'):
            nonce = get_csp_nonce()
            response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'
            response.headers['Pragma'] = 'no-cache'
            response.headers['Expires'] = '0'
            csp_parts = [
                "default-src 'self'",
                "base-uri 'self'",
                "frame-ancestors 'none'",
                "form-action 'self'",
                "object-src 'none'",
                "img-src 'self' data: https:",
                f"script-src 'self' 'nonce-{nonce}' https://cdnjs.cloudflare.com",
                f"style-src 'self' 'nonce-{nonce}' https://cdnjs.cloudflare.com https://fonts.googleapis.com",
                "font-src 'self' data: https://cdnjs.cloudflare.com https://fonts.gstatic.com",
                "connect-src 'self'",
            ]
            if request.is_secure:
                csp_parts.append('upgrade-insecure-requests')
            response.headers['Content-Security-Policy'] = "; ".join(csp_parts)
        return response

    @app.errorhandler(400)
    def handle_bad_request(error):
        description = str(getattr(error, 'description', '') or '')
        if 'CSRF' in description:
            if wants_json():
                return jsonify({'success': False, 'message': description}), 400
            flash('Your form session expired. Please retry your action.', 'danger')
            return redirect(safe_referrer_path(url_for('main.index')))
        return error

    @app.errorhandler(BackendUnauthorized)
    def handle_backend_unauthorized(error):
        if request.blueprint == 'analytics':
            clear_tokens(*ANALYTICS_KEYS)
            login_url = url_for('analytics.login')
        else:
            clear_tokens(*SUPERADMIN_KEYS)
            logout_user()
            login_url = url_for('vault.login')
        app.logger.warning('Backend rejected the session token on %s.', request.path)
        if wants_json():
            return jsonify({'error': error.message, 'redirect': login_url}), 401
        flash('Your session has expired. Please sign in again.', 'warning')
        return redirect(login_url)

    @app.errorhandler(BackendError)
    def handle_backend_error(error):
        app.logger.warning('Unhandled backend failure on %s: %s', request.path, error.message)
        if wants_json():
            return jsonify({'error': error.message}), 502
        return render_template('errors/500.html', message=error.message), 502

    @app.errorhandler(404)
    def handle_not_found(error):
        return render_template('errors/404.html'), 404

    @app.errorhandler(500)
    def handle_server_error(error):
        return render_template('errors/500.html'), 500

    @app.get('/healthz')
    def healthz():
        try:
            db.session.execute(text('SELECT 1'))
            return {'status': 'ok'}, 200
        except Exception:
            db.session.rollback()
            app.logger.exception('Health check database query failed.')
            return {'status': 'degraded'}, 503

    @app.get('/readyz')
    def readyz():
        checks = {
            'database': False,
            'site_settings_seeded': False,
            'articles_seeded': False,
        }
        try:
            db.session.execute(text('SELECT 1'))
            checks['database'] = True
            checks['site_settings_seeded'] = db.session.query(SiteSetting.id).first() is not None
            checks['articles_seeded'] = db.session.query(Article.id).first() is not None
            all_ready = all(checks.values())
            return {'status': 'ready' if all_ready else 'warming', 'checks': checks}, (200 if all_ready else 503)
        except Exception:
            db.session.rollback()
            app.logger.exception('Readiness check failed.')
            return {'status': 'degraded', 'checks': checks}, 503

    from .routes.analytics import analytics_bp
    from .routes.main import main_bp
    from .routes.seo import seo_bp
    from .routes.vault import vault_bp
    app.register_blueprint(main_bp)
    app.register_blueprint(analytics_bp, url_prefix='/analytics')
    app.register_blueprint(seo_bp, url_prefix='/seo-dashboard')
    app.register_blueprint(vault_bp, url_prefix=app.config['VAULT_URL_PREFIX'])

    register_cli(app)
    init_realtime(app)

    with app.app_context():
        try:
            db.create_all()
        except Exception:
            app.logger.exception('db.create_all() failed; tables may need manual migration.')
        try:
            from .seed import seed_database
            seed_database()
        except Exception:
            db.session.rollback()
            app.logger.exception('seed_database() failed; seeding skipped.')

    return app
