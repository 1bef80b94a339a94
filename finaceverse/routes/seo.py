from urllib.parse import quote

from flask import Blueprint, current_app, flash, jsonify, redirect, render_template, request, url_for
from flask_login import logout_user

from ..api_client import BackendError, BackendUnavailable, BackendUnauthorized, client_for, json_object
from ..polling import SEO_TARGETS, session_refresher
from ..token_store import SUPERADMIN_KEYS, SUPERADMIN_TOKEN, clear_tokens, get_token, token_required
from ..utils import clean_text

seo_bp = Blueprint('seo', __name__)

SEO_TABS = ('optimize', 'keywords', 'backlinks', 'issues', 'fixes', 'scores')
REFRESH_ACTIONS = {
    'keywords': ('/api/seo/gsc/fetch-rankings', {'days': 7}, 'Ranking fetch started.'),
    'backlinks': ('/api/seo/backlinks/crawl', None, 'Backlink crawl started.'),
    'issues': ('/api/seo/scan-all', None, 'Site-wide scan started.'),
    'scores': ('/api/seo/scan', None, 'Fresh SEO scan started.'),
}

FALLBACK_SUGGESTIONS = [
    {'keyword': 'cognitive operating system', 'volume': 1200, 'difficulty': 45, 'relevance': 95},
    {'keyword': 'autonomous enterprise', 'volume': 890, 'difficulty': 38, 'relevance': 92},
    {'keyword': 'AI financial automation', 'volume': 2400, 'difficulty': 52, 'relevance': 88},
    {'keyword': 'enterprise AI platform', 'volume': 3100, 'difficulty': 65, 'relevance': 85},
    {'keyword': 'financial process automation', 'volume': 1800, 'difficulty': 48, 'relevance': 90},
    {'keyword': 'cognitive finance', 'volume': 720, 'difficulty': 32, 'relevance': 98},
    {'keyword': 'AI accounting software', 'volume': 4200, 'difficulty': 72, 'relevance': 82},
    {'keyword': 'enterprise process mining', 'volume': 1100, 'difficulty': 41, 'relevance': 87},
]
FALLBACK_TIPS = [
    {'page': '/', 'tip': 'Add more long-tail keywords in hero section', 'priority': 'high', 'impact': '+15% organic traffic'},
    {'page': '/modules', 'tip': 'Include product comparison keywords', 'priority': 'medium', 'impact': '+8% CTR'},
    {'page': '/', 'tip': 'Add FAQ schema markup for featured snippets', 'priority': 'high', 'impact': '+20% visibility'},
    {'page': '/tailored-pilots', 'tip': 'Target "enterprise AI pilot program" keyword', 'priority': 'medium',
     'impact': '+12% conversions'},
    {'page': '/', 'tip': 'Optimize meta description with action verbs', 'priority': 'low', 'impact': '+5% CTR'},
]
SEVERITY_CLASSES = {'critical': 'severity-critical', 'warning': 'severity-warning', 'info': 'severity-info'}
# Polled slots each tab renders; optimize draws on keyword and suggestion calls instead.
PANEL_SLOTS = {
    'keywords': ('keyword_summary', 'top_keywords', 'opportunities'),
    'backlinks': ('backlinks', 'backlink_stats'),
    'issues': ('issues',),
    'fixes': ('fix_stats', 'fix_history'),
    'scores': ('report',),
}


def _tab_arg(source):
    tab = source.get('tab', 'optimize')
    return tab if tab in SEO_TABS else 'optimize'


def _expired_session_redirect():
    clear_tokens(*SUPERADMIN_KEYS)
    logout_user()
    flash('Your session has expired. Please sign in again.', 'warning')
    return redirect(url_for('vault.login'))


def refresh_seo():
    return session_refresher(SEO_TARGETS, SUPERADMIN_TOKEN, current_app.config['SEO_POLL_SECONDS']).refresh_once()


def render_panel(tab, result):
    """HTML for the tab's polled panel, or None when one of its slots failed and the page should keep what it shows."""
    slots = PANEL_SLOTS.get(tab)
    if not slots or any(slot in result.failed for slot in slots):
        return None
    return render_template('seo/_panel.html', tab=tab, data=result.slots, severity_classes=SEVERITY_CLASSES)


def load_optimize_panel():
    client = client_for(SUPERADMIN_TOKEN)
    try:
        keywords = json_object(client.get('/api/seo/target-keywords')).get('keywords') or []
    except BackendUnauthorized:
        raise
    except BackendError as exc:
        current_app.logger.warning('Target keywords unavailable: %s', exc.message)
        keywords = []
    try:
        payload = json_object(client.get('/api/seo/ai-suggestions'))
    except BackendUnauthorized:
        raise
    except BackendUnavailable as exc:
        current_app.logger.warning('AI suggestions unreachable, using fallback list: %s', exc.message)
        return keywords, FALLBACK_SUGGESTIONS, FALLBACK_TIPS
    except BackendError as exc:
        current_app.logger.warning('AI suggestions failed: %s', exc.message)
        return keywords, [], []
    return keywords, payload.get('suggestions') or [], payload.get('tips') or []


@seo_bp.route('')
@token_required(SUPERADMIN_TOKEN, 'vault.login')
def dashboard():
    tab = _tab_arg(request.args)
    result = refresh_seo()
    if result.unauthorized:
        return _expired_session_redirect()
    if result.failed:
        flash('Some SEO panels could not be refreshed.', 'warning')
    keywords, suggestions, tips = [], [], []
    if tab == 'optimize':
        keywords, suggestions, tips = load_optimize_panel()
    return render_template(
        'seo/dashboard.html',
        tab=tab,
        tabs=SEO_TABS,
        data=result.slots,
        target_keywords=keywords,
        suggestions=suggestions,
        tips=tips,
        refreshable=REFRESH_ACTIONS,
        severity_classes=SEVERITY_CLASSES,
        poll_seconds=current_app.config['SEO_POLL_SECONDS'],
    )


@seo_bp.route('/data')
def dashboard_data():
    if not get_token(SUPERADMIN_TOKEN):
        return jsonify({'error': 'Not signed in.', 'redirect': url_for('vault.login')}), 401
    result = refresh_seo()
    if result.unauthorized:
        clear_tokens(*SUPERADMIN_KEYS)
        return jsonify({'error': 'Session expired.', 'redirect': url_for('vault.login')}), 401
    tab = _tab_arg(request.args)
    payload = result.as_dict()
    payload['tab'] = tab
    payload['html'] = render_panel(tab, result)
    return jsonify(payload)


@seo_bp.route('/refresh', methods=['POST'])
@token_required(SUPERADMIN_TOKEN, 'vault.login')
def refresh():
    tab = _tab_arg(request.form)
    action = REFRESH_ACTIONS.get(tab)
    if action is None:
        return redirect(url_for('seo.dashboard', tab=tab))
    path, payload, message = action
    try:
        client_for(SUPERADMIN_TOKEN).post(path, payload)
    except BackendUnauthorized:
        return _expired_session_redirect()
    except BackendError as exc:
        flash(f'Refresh failed: {exc.message}', 'danger')
    else:
        flash(message, 'success')
    return redirect(url_for('seo.dashboard', tab=tab))


@seo_bp.route('/auto-fix', methods=['POST'])
@token_required(SUPERADMIN_TOKEN, 'vault.login')
def auto_fix():
    try:
        result = client_for(SUPERADMIN_TOKEN).post('/api/seo/auto-fix')
    except BackendUnauthorized:
        return _expired_session_redirect()
    except BackendError as exc:
        flash(f'Auto-fix failed: {exc.message}', 'danger')
    else:
        flash(json_object(result).get('message') or 'Auto-fix run completed.', 'success')
    return redirect(url_for('seo.dashboard', tab='fixes'))


@seo_bp.route('/keywords', methods=['POST'])
@token_required(SUPERADMIN_TOKEN, 'vault.login')
def add_keyword():
    keyword = clean_text(request.form.get('keyword'), 120)
    if not keyword:
        flash('Enter a keyword to track.', 'warning')
        return redirect(url_for('seo.dashboard', tab='optimize'))
    try:
        client_for(SUPERADMIN_TOKEN).post('/api/seo/target-keywords', {'keyword': keyword})
    except BackendUnauthorized:
        return _expired_session_redirect()
    except BackendError as exc:
        flash(f'Could not add keyword: {exc.message}', 'danger')
    else:
        flash(f'Tracking "{keyword}".', 'success')
    return redirect(url_for('seo.dashboard', tab='optimize'))


@seo_bp.route('/keywords/delete', methods=['POST'])
@token_required(SUPERADMIN_TOKEN, 'vault.login')
def remove_keyword():
    keyword = clean_text(request.form.get('keyword'), 120)
    if keyword:
        try:
            client_for(SUPERADMIN_TOKEN).delete(f"/api/seo/target-keywords/{quote(keyword, safe='')}")
        except BackendUnauthorized:
            return _expired_session_redirect()
        except BackendError as exc:
            flash(f'Could not remove keyword: {exc.message}', 'danger')
        else:
            flash(f'Stopped tracking "{keyword}".', 'info')
    return redirect(url_for('seo.dashboard', tab='optimize'))
