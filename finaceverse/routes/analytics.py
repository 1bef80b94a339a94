from flask import Blueprint, current_app, flash, jsonify, redirect, render_template, request, url_for

from ..api_client import BackendError, client_for
from ..forms import AnalyticsLoginForm
from ..polling import ANALYTICS_AUTH_SLOT, ANALYTICS_TARGETS, session_refresher
from ..token_store import (
    ANALYTICS_KEYS,
    ANALYTICS_TOKEN,
    ANALYTICS_USER,
    clear_tokens,
    get_token,
    store_tokens,
    token_required,
)

analytics_bp = Blueprint('analytics', __name__)

DASHBOARD_TABS = ('overview', 'geography', 'performance', 'errors')
PANEL_SLOTS = {
    'overview': ('summary', 'performance'),
    'geography': ('geography',),
    'performance': ('performance',),
    'errors': ('errors',),
}


def refresh_dashboard():
    refresher = session_refresher(
        ANALYTICS_TARGETS,
        ANALYTICS_TOKEN,
        current_app.config['ANALYTICS_POLL_SECONDS'],
        auth_slot=ANALYTICS_AUTH_SLOT,
    )
    return refresher.refresh_once()


def _tab_arg(source):
    tab = source.get('tab', 'overview')
    return tab if tab in DASHBOARD_TABS else 'overview'


def render_panel(tab, result):
    if any(slot in result.failed for slot in PANEL_SLOTS[tab]):
        return None
    return render_template('analytics/_panel.html', tab=tab, data=result.slots)


def _expired_session_redirect():
    clear_tokens(*ANALYTICS_KEYS)
    flash('Your analytics session has expired. Please sign in again.', 'warning')
    return redirect(url_for('analytics.login'))


@analytics_bp.route('/login', methods=['GET', 'POST'])
def login():
    if get_token(ANALYTICS_TOKEN):
        return redirect(url_for('analytics.dashboard'))
    form = AnalyticsLoginForm()
    if request.method == 'POST':
        if not form.validate():
            flash('Username and password are required.', 'danger')
            return render_template('analytics/login.html', form=form), 400
        try:
            data = client_for().post('/api/auth/login', {
                'username': form.username.data.strip(),
                'password': form.password.data,
            })
        except BackendError as exc:
            flash(exc.message or 'Login failed', 'danger')
            return render_template('analytics/login.html', form=form), 401 if exc.status in (401, 403) else 200
        token = data.get('token') if isinstance(data, dict) else None
        if not token:
            current_app.logger.warning('Analytics login response carried no token.')
            flash('Login failed', 'danger')
            return render_template('analytics/login.html', form=form)
        store_tokens(analytics_token=token, analytics_user=data.get('username') or form.username.data.strip())
        return redirect(url_for('analytics.dashboard'))
    return render_template('analytics/login.html', form=form)


@analytics_bp.route('/dashboard')
@token_required(ANALYTICS_TOKEN, 'analytics.login')
def dashboard():
    tab = _tab_arg(request.args)
    result = refresh_dashboard()
    if result.unauthorized:
        return _expired_session_redirect()
    if result.failed:
        flash('Some analytics panels could not be refreshed.', 'warning')
    return render_template(
        'analytics/dashboard.html',
        tab=tab,
        tabs=DASHBOARD_TABS,
        data=result.slots,
        username=get_token(ANALYTICS_USER),
        poll_seconds=current_app.config['ANALYTICS_POLL_SECONDS'],
    )


@analytics_bp.route('/dashboard/data')
def dashboard_data():
    if not get_token(ANALYTICS_TOKEN):
        return jsonify({'error': 'Not signed in.', 'redirect': url_for('analytics.login')}), 401
    result = refresh_dashboard()
    if result.unauthorized:
        clear_tokens(*ANALYTICS_KEYS)
        return jsonify({'error': 'Session expired.', 'redirect': url_for('analytics.login')}), 401
    tab = _tab_arg(request.args)
    payload = result.as_dict()
    payload['tab'] = tab
    payload['html'] = render_panel(tab, result)
    return jsonify(payload)


@analytics_bp.route('/live')
def live():
    if not get_token(ANALYTICS_TOKEN):
        return jsonify({'error': 'Not signed in.', 'redirect': url_for('analytics.login')}), 401
    feed = current_app.extensions['live_feed']
    snapshot = feed.snapshot()
    snapshot['connected'] = bool(
        current_app.extensions.get('analytics_stream') and current_app.extensions['analytics_stream'].connected
    )
    return jsonify(snapshot)


@analytics_bp.route('/logout', methods=['POST'])
def logout():
    clear_tokens(*ANALYTICS_KEYS)
    flash('Signed out of analytics.', 'info')
    return redirect(url_for('analytics.login'))
