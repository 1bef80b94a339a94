from datetime import timedelta
from xml.sax.saxutils import escape as xml_escape

from flask import Blueprint, current_app, flash, jsonify, redirect, render_template, request, url_for

from .. import newsletter
from ..api_client import BackendError, BackendClient
from ..content_forms import group_content, section_state
from ..content_schemas import CONTENT_SCHEMAS
from ..forms import UnsubscribeForm
from ..models import db, Article, AuthRateLimitBucket, Category
from ..utils import clean_text, get_request_ip, is_valid_email, utc_now_naive

main_bp = Blueprint('main', __name__)

PRODUCT_VIEWS = ('current', 'vision')
PRODUCT_STATUS_BADGES = {
    'launched': ('Live', 'launched'),
    'launching': ('Launching Soon', 'launching'),
    'coming_soon': ('Coming Soon', 'coming-soon'),
}
PLANNED_BADGE = ('In Development', 'planned')

STATIC_PRODUCTS = [
    {'slug': 'accute', 'name': 'Accute', 'tagline': 'Workflow orchestration',
     'description': 'The conductor for every financial process, so no handoff gets dropped.',
     'external_url': 'https://accute.io', 'cell_size': 'large', 'is_hero': True},
    {'slug': 'cyloid', 'name': 'Cyloid', 'tagline': 'Intelligent verification',
     'description': 'Reads, verifies and routes every invoice, receipt and statement.',
     'external_url': 'https://cyloid.io', 'cell_size': 'medium'},
    {'slug': 'luca', 'name': 'Luca', 'tagline': 'Domain intelligence',
     'description': 'An AI that speaks fluent CPA for tax, compliance and advisory questions.',
     'external_url': 'https://askluca.io', 'cell_size': 'medium'},
    {'slug': 'finaid-hub', 'name': 'Finaid Hub', 'tagline': 'Workforce multiplication',
     'description': 'Bookkeeping, reconciliation and reporting at machine speed.',
     'external_url': 'https://finaidhub.io', 'cell_size': 'medium'},
    {'slug': 'epi-q', 'name': 'EPI-Q', 'tagline': 'Process mining',
     'description': 'Shows how work really flows through your firm, then finds what to fix.',
     'external_url': 'https://epi-q.io', 'cell_size': 'small'},
    {'slug': 'vamn', 'name': 'VAMN', 'tagline': 'Financial language model',
     'description': 'Cognitive intelligence trained for finance.',
     'external_url': 'https://vamn.io', 'cell_size': 'small'},
    {'slug': 'finory', 'name': 'Finory', 'tagline': 'Self-constructing ERP',
     'description': 'Reporting that assembles itself around your operating data.',
     'external_url': 'https://finory.io', 'cell_size': 'small'},
]

STATIC_PAGES = {
    'cognitive_finance': 'cognitive_finance.html',
    'compliance_privacy': 'compliance_privacy.html',
    'expert_consultation': 'expert_consultation.html',
    'tailored_pilots': 'tailored_pilots.html',
    'request_demo': 'request_demo.html',
}


def public_client():
    return BackendClient(
        current_app.config['BACKEND_API_URL'],
        timeout=float(current_app.config.get('BACKEND_TIMEOUT_SECONDS') or 10.0),
    )


def load_page_content(page):
    """Stored copy for ``page`` merged over the schema defaults, section by section."""
    grouped = {}
    try:
        payload = public_client().get(f'/api/content/{page}')
    except BackendError as exc:
        current_app.logger.warning('Public content for %s unavailable: %s', page, exc.message)
    else:
        records = payload.get('content', []) if isinstance(payload, dict) else payload
        grouped = group_content(records if isinstance(records, list) else [])
    return {
        section: section_state(grouped, schema_page, section, schema)
        for (schema_page, section), schema in CONTENT_SCHEMAS.items()
        if schema_page == page
    }


def product_badge(product):
    label, css_class = PRODUCT_STATUS_BADGES.get(product.get('status'), PLANNED_BADGE)
    return {'label': label, 'css_class': css_class}


def load_products(view):
    """Return (products, from_backend). Any failure falls back to every static product."""
    try:
        payload = public_client().get('/api/products', {'view': view})
    except BackendError as exc:
        current_app.logger.warning('Product catalogue unavailable: %s', exc.message)
        return STATIC_PRODUCTS, False
    products = payload.get('products') if isinstance(payload, dict) else None
    if not products:
        return STATIC_PRODUCTS, False
    products = [product for product in products if isinstance(product, dict)]
    for product in products:
        product['badge'] = product_badge(product)
    return sorted(products, key=lambda item: item.get('display_order') or 0), True


def _cleanup_expired_buckets():
    now = utc_now_naive()
    try:
        AuthRateLimitBucket.query.filter(AuthRateLimitBucket.reset_at < now).delete(synchronize_session=False)
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception('Purging expired rate limit buckets failed.')


_cleanup_call_counter = 0


def get_form_rate_limit_bucket(scope, window_seconds):
    global _cleanup_call_counter
    _cleanup_call_counter += 1
    if _cleanup_call_counter % 50 == 0:
        _cleanup_expired_buckets()

    ip = get_request_ip()
    now = utc_now_naive()
    bucket = AuthRateLimitBucket.query.filter_by(scope=scope, ip=ip).first()
    if not bucket:
        bucket = AuthRateLimitBucket(
            scope=scope,
            ip=ip,
            count=0,
            reset_at=now + timedelta(seconds=window_seconds),
        )
        db.session.add(bucket)
        db.session.commit()
        return bucket
    if bucket.reset_at <= now:
        bucket.count = 0
        bucket.reset_at = now + timedelta(seconds=window_seconds)
        db.session.commit()
    return bucket


def is_form_rate_limited(scope, limit, window_seconds):
    bucket = get_form_rate_limit_bucket(scope, window_seconds)
    if bucket.count < limit:
        return False, 0
    seconds = max(1, int((bucket.reset_at - utc_now_naive()).total_seconds()))
    return True, seconds


def register_form_submission_attempt(scope, window_seconds):
    bucket = get_form_rate_limit_bucket(scope, window_seconds)
    bucket.count += 1
    db.session.commit()
    return bucket.count


def newsletter_rate_limited():
    limit = current_app.config['NEWSLETTER_FORM_LIMIT']
    window = current_app.config['NEWSLETTER_FORM_WINDOW_SECONDS']
    limited, seconds = is_form_rate_limited('newsletter', limit, window)
    if not limited:
        register_form_submission_attempt('newsletter', window)
    return limited, seconds


@main_bp.route('/')
def index():
    content = load_page_content('home')
    articles = Article.query.filter_by(is_published=True).order_by(Article.published_at.desc()).limit(3).all()
    return render_template('index.html', content=content, products=STATIC_PRODUCTS, articles=articles)


@main_bp.route('/modules')
def modules():
    view = request.args.get('view', 'current')
    if view not in PRODUCT_VIEWS:
        view = 'current'
    products, from_backend = load_products(view)
    content = load_page_content('modules')
    return render_template('modules.html', products=products, from_backend=from_backend, view=view, content=content)


def _static_page(endpoint, template):
    def view():
        return render_template(template)
    view.__name__ = endpoint
    return view


for _endpoint, _template in STATIC_PAGES.items():
    main_bp.add_url_rule('/' + _endpoint.replace('_', '-'), _endpoint, _static_page(_endpoint, _template))


@main_bp.route('/blog')
def blog():
    category_slug = clean_text(request.args.get('category', ''), 120)
    query = Article.query.filter_by(is_published=True)
    current_category = None
    if category_slug:
        current_category = Category.query.filter_by(slug=category_slug).first()
        if current_category:
            query = query.filter_by(category_id=current_category.id)
    articles = query.order_by(Article.published_at.desc()).all()
    categories = Category.query.order_by(Category.sort_order.asc()).all()
    return render_template('blog.html', articles=articles, categories=categories, current_category=current_category)


@main_bp.route('/blog/<slug>')
def article(slug):
    entry = Article.query.filter_by(slug=slug, is_published=True).first()
    if entry is None:
        return redirect(url_for('main.blog'))
    related = Article.query.filter_by(is_published=True).filter(Article.id != entry.id)\
        .order_by(Article.published_at.desc()).limit(3).all()
    return render_template('article.html', article=entry, related=related)


@main_bp.route('/unsubscribe', methods=['GET', 'POST'])
def unsubscribe():
    form = UnsubscribeForm(data={'email': clean_text(request.args.get('email', ''), 320)})
    status = None
    if request.method == 'POST':
        form = UnsubscribeForm(request.form)
        if not form.validate():
            flash('Please enter a valid email address.', 'danger')
            return render_template('unsubscribe.html', form=form, status=status), 400
        limited, seconds = newsletter_rate_limited()
        if limited:
            flash(f'Too many requests. Try again in {seconds} seconds.', 'danger')
            return render_template('unsubscribe.html', form=form, status=status), 429
        result = newsletter.unsubscribe(form.email.data.strip())
        status = 'success' if result['success'] else 'error'
        if not result['success']:
            flash(result['message'], 'danger')
    return render_template('unsubscribe.html', form=form, status=status)


def _json_text(value):
    return value if isinstance(value, str) else ''


@main_bp.route('/api/mailgun', methods=['POST'])
def mailgun_api():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({'success': False, 'message': 'Valid email is required'}), 400
    action = clean_text(_json_text(payload.get('action')), 20)
    email = clean_text(_json_text(payload.get('email')), 320)
    name = clean_text(_json_text(payload.get('name')), 120)

    if not is_valid_email(email):
        return jsonify({'success': False, 'message': 'Valid email is required'}), 400
    if action not in newsletter.NEWSLETTER_ACTIONS:
        return jsonify({
            'success': False,
            'message': 'Invalid action. Use: subscribe, unsubscribe, or status',
        }), 400

    limited, seconds = newsletter_rate_limited()
    if limited:
        return jsonify({'success': False, 'message': f'Too many requests. Try again in {seconds} seconds.'}), 429

    if action == 'subscribe':
        result = newsletter.subscribe(email, name)
    elif action == 'unsubscribe':
        result = newsletter.unsubscribe(email)
    else:
        result = newsletter.subscriber_status(email)
    return jsonify(result), (200 if result['success'] else 400)


def absolute_public_url(path):
    if path.startswith('http://') or path.startswith('https://'):
        return path
    base = (current_app.config.get('SITE_URL') or '').rstrip('/') or request.url_root.rstrip('/')
    return f"{base}{path}"


def build_sitemap_entry(path, lastmod=None, changefreq='weekly', priority='0.6'):
    lines = [
        '  <url>',
        f"    <loc>{xml_escape(absolute_public_url(path))}</loc>",
    ]
    if lastmod:
        lines.append(f"    <lastmod>{lastmod.strftime('%Y-%m-%d')}</lastmod>")
    if changefreq:
        lines.append(f"    <changefreq>{changefreq}</changefreq>")
    if priority:
        lines.append(f"    <priority>{priority}</priority>")
    lines.append('  </url>')
    return '\n'.join(lines)


@main_bp.route('/sitemap.xml')
def sitemap_xml():
    entries = [
        build_sitemap_entry(url_for('main.index'), changefreq='weekly', priority='1.0'),
        build_sitemap_entry(url_for('main.modules'), changefreq='weekly', priority='0.9'),
        build_sitemap_entry(url_for('main.blog'), changefreq='weekly', priority='0.8'),
    ]
    for endpoint in STATIC_PAGES:
        entries.append(build_sitemap_entry(url_for(f'main.{endpoint}'), changefreq='monthly', priority='0.7'))
    try:
        for entry in Article.query.filter_by(is_published=True).order_by(Article.published_at.desc()).all():
            entries.append(build_sitemap_entry(
                url_for('main.article', slug=entry.slug),
                lastmod=entry.updated_at or entry.published_at,
                changefreq='monthly',
                priority='0.7',
            ))
    except Exception:
        db.session.rollback()
        current_app.logger.exception('Failed to list articles for the sitemap; serving core entries only.')

    xml_body = '\n'.join([
        '<?xml version="1.0" encoding="UTF-8"?>',
        '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">',
        *entries,
        '</urlset>',
    ])
    response = current_app.response_class(xml_body, mimetype='application/xml')
    response.headers['Cache-Control'] = 'public, max-age=3600'
    return response


@main_bp.route('/robots.txt')
def robots_txt():
    body = '\n'.join([
        'User-agent: *',
        'Allow: /',
        f"Disallow: {current_app.config['VAULT_URL_PREFIX']}",
        'Disallow: /analytics/',
        'Disallow: /seo-dashboard',
        'Disallow: /unsubscribe',
        '',
        f"Sitemap: {absolute_public_url(url_for('main.sitemap_xml'))}",
        '',
    ])
    response = current_app.response_class(body, mimetype='text/plain')
    response.headers['Cache-Control'] = 'public, max-age=3600'
    return response
