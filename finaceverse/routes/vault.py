import os
import uuid

from flask import Blueprint, abort, current_app, flash, redirect, render_template, request, send_from_directory, url_for
from flask_login import current_user, login_required, login_user, logout_user
from PIL import Image, UnidentifiedImageError
from werkzeug.utils import secure_filename

from ..api_client import BackendError, BackendUnauthorized, client_for, json_object
from ..blog_drafts import (
    DEFAULT_CATEGORIES,
    GENERATION_TYPES,
    STATUS_PUBLISHED,
    apply_generated,
    draft_from_form,
    draft_from_post,
    new_draft,
    status_badge,
)
from ..content_forms import (
    apply_array_action,
    build_bulk_items,
    format_tags,
    group_content,
    parse_section_form,
    parse_tags,
    section_state,
    validate_section,
)
from ..content_schemas import get_schema, grouped_sections, schema_fields
from ..forms import BlogPostForm, ProductForm, VaultLoginForm, VaultTotpForm
from ..rendering import EDITOR_TOOLBAR
from ..token_store import (
    ADMIN_PASSWORD,
    MASTER_KEY,
    PENDING_LOGIN_KEYS,
    SUPERADMIN_KEYS,
    SUPERADMIN_TOKEN,
    VaultUser,
    clear_tokens,
    get_token,
    store_tokens,
)
from .main import is_form_rate_limited, register_form_submission_attempt

vault_bp = Blueprint('vault', __name__)
VAULT_LOGIN_LIMIT = 5
VAULT_LOGIN_WINDOW_SECONDS = 300
IMAGE_EXTENSION_MIMES = {
    'png': {'image/png'},
    'jpg': {'image/jpeg'},
    'jpeg': {'image/jpeg'},
    'gif': {'image/gif'},
    'webp': {'image/webp'},
}
PRODUCT_DEFAULTS = {
    'slug': '',
    'name': '',
    'tagline': '',
    'description': '',
    'status': 'planned',
    'external_url': '',
    'display_order': 0,
    'cell_tag': '',
    'cell_size': 'medium',
    'is_hero': False,
    'features': [],
}


def call_backend(method, path, payload=None, failure='Request failed'):
    """Return (data, error_message). Rejected tokens propagate to the app-level handler."""
    client = client_for(SUPERADMIN_TOKEN)
    try:
        if method in ('post', 'put'):
            data = getattr(client, method)(path, payload)
        else:
            data = getattr(client, method)(path)
    except BackendUnauthorized:
        raise
    except BackendError as exc:
        current_app.logger.warning('%s: %s', failure, exc.message)
        return None, f'{failure}: {exc.message}'
    return (data if isinstance(data, dict) else {'data': data}), None


def allowed_file(filename):
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in current_app.config['ALLOWED_EXTENSIONS']


def _safe_upload_path(stored_name):
    upload_root = os.path.abspath(current_app.config['UPLOAD_FOLDER'])
    raw_name = (stored_name or '').strip()
    safe_name = secure_filename(raw_name)
    if not safe_name or safe_name != raw_name:
        return None, None
    full_path = os.path.abspath(os.path.join(upload_root, safe_name))
    try:
        if os.path.commonpath([upload_root, full_path]) != upload_root:
            return None, None
    except ValueError:
        return None, None
    return safe_name, full_path


def validate_uploaded_file(file):
    if not file or not file.filename:
        return False

    filename = secure_filename(file.filename)
    if not filename or len(filename) > 180 or not allowed_file(filename):
        return False

    extension = filename.rsplit('.', 1)[1].lower()
    mime_type = (file.mimetype or '').split(';', 1)[0].lower()
    allowed_mimes = current_app.config.get('ALLOWED_UPLOAD_MIME_TYPES', set())
    if mime_type not in allowed_mimes or mime_type not in IMAGE_EXTENSION_MIMES.get(extension, set()):
        return False

    max_pixels = max(1, int(current_app.config.get('MAX_UPLOAD_IMAGE_PIXELS', 40_000_000)))
    file.stream.seek(0)
    try:
        with Image.open(file.stream) as image:
            width, height = image.size
            if width < 1 or height < 1 or (width * height) > max_pixels:
                return False
            image.verify()
        return True
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError):
        return False
    finally:
        file.stream.seek(0)


def save_upload(file):
    """Store a validated image and return its public URL, or None when rejected."""
    if not validate_uploaded_file(file):
        return None
    filename = secure_filename(file.filename)
    unique_name = f"{uuid.uuid4().hex[:16]}_{filename}"
    file.save(os.path.join(current_app.config['UPLOAD_FOLDER'], unique_name))
    current_app.logger.info('Stored upload %s', unique_name)
    return url_for('vault.uploaded_file', filename=unique_name)


@vault_bp.route('/uploads/<filename>')
def uploaded_file(filename):
    safe_filename, full_path = _safe_upload_path(filename)
    if not safe_filename or not full_path or not os.path.exists(full_path):
        abort(404)
    return send_from_directory(current_app.config['UPLOAD_FOLDER'], safe_filename, conditional=True, etag=True)


# Auth
def _finish_login(data):
    token = data.get('accessToken')
    if not token:
        current_app.logger.warning('Vault login response carried no access token.')
        flash('Authentication failed', 'danger')
        return redirect(url_for('vault.login'))
    clear_tokens(*PENDING_LOGIN_KEYS)
    store_tokens(superadmin_token=token, superadmin_refresh=data.get('refreshToken'))
    login_user(VaultUser())
    return redirect(url_for('vault.dashboard'))


def _login_rate_limited():
    limited, seconds = is_form_rate_limited('vault_login', VAULT_LOGIN_LIMIT, VAULT_LOGIN_WINDOW_SECONDS)
    if limited:
        flash(f'Too many login attempts. Try again in {seconds} seconds.', 'danger')
    return limited


def _superadmin_login(payload):
    try:
        return json_object(client_for().post('/api/superadmin/login', payload)), None
    except BackendError as exc:
        register_form_submission_attempt('vault_login', VAULT_LOGIN_WINDOW_SECONDS)
        return None, exc.message or 'Authentication failed'


@vault_bp.route('', methods=['GET', 'POST'])
def login():
    if current_user.is_authenticated:
        return redirect(url_for('vault.dashboard'))
    form = VaultLoginForm()
    if request.method == 'POST':
        if _login_rate_limited():
            return render_template('vault/login.html', form=form), 429
        if not form.validate():
            flash('Master key and password are required.', 'danger')
            return render_template('vault/login.html', form=form), 400
        data, error = _superadmin_login({'masterKey': form.master_key.data, 'password': form.password.data})
        if error:
            flash(error, 'danger')
            return render_template('vault/login.html', form=form), 401
        if data.get('requiresTotp'):
            store_tokens(masterKey=form.master_key.data, adminPassword=form.password.data)
            return redirect(url_for('vault.totp'))
        return _finish_login(data)
    return render_template('vault/login.html', form=form)


@vault_bp.route('/totp', methods=['GET', 'POST'])
def totp():
    master_key = get_token(MASTER_KEY)
    password = get_token(ADMIN_PASSWORD)
    if not master_key or not password:
        return redirect(url_for('vault.login'))
    form = VaultTotpForm()
    if request.method == 'POST':
        if _login_rate_limited():
            return render_template('vault/totp.html', form=form), 429
        if not form.validate():
            flash('Enter the 6-digit code from your authenticator app.', 'danger')
            return render_template('vault/totp.html', form=form), 400
        data, error = _superadmin_login({
            'masterKey': master_key,
            'password': password,
            'totpCode': form.totp_code.data,
        })
        if error:
            flash(error, 'danger')
            return render_template('vault/totp.html', form=form), 401
        return _finish_login(data)
    return render_template('vault/totp.html', form=form)


@vault_bp.route('/totp/cancel', methods=['POST'])
def cancel_totp():
    clear_tokens(*PENDING_LOGIN_KEYS)
    return redirect(url_for('vault.login'))


@vault_bp.route('/logout', methods=['POST'])
def logout():
    clear_tokens(*SUPERADMIN_KEYS, *PENDING_LOGIN_KEYS)
    logout_user()
    flash('Vault locked.', 'info')
    return redirect(url_for('vault.login'))


@vault_bp.route('/dashboard')
@login_required
def dashboard():
    return render_template('vault/dashboard.html')


# Content editor
@vault_bp.route('/content')
@login_required
def content_sections():
    return render_template('vault/content_list.html', pages=grouped_sections())


def _stored_section(page, section, schema):
    data, error = call_backend('get', '/api/admin/content', failure='Failed to load content')
    if error:
        flash(f'{error}. Showing default values.', 'warning')
    records = (data or {}).get('content') or []
    return section_state(group_content(records), page, section, schema)


def _apply_uploads(schema, state):
    for field in schema_fields(schema):
        if field.get('type') != 'image':
            continue
        if schema['kind'] == 'array':
            targets = [(item, f"items-{index}-{field['key']}-upload") for index, item in enumerate(state)]
        else:
            targets = [(state, f"{field['key']}-upload")]
        for target, input_name in targets:
            upload = request.files.get(input_name)
            if not upload or not upload.filename:
                continue
            stored_url = save_upload(upload)
            if stored_url:
                target[field['key']] = stored_url
            else:
                flash(f"{field['label']}: only PNG, JPEG, GIF or WEBP images are accepted.", 'danger')


@vault_bp.route('/content/<page>/<section>', methods=['GET', 'POST'])
@login_required
def edit_section(page, section):
    schema = get_schema(page, section)
    if schema is None:
        abort(404)

    if request.method == 'GET':
        state = _stored_section(page, section, schema)
        return render_template('vault/content_edit.html', page=page, section=section, schema=schema, state=state)

    state = parse_section_form(request.form, schema)
    _apply_uploads(schema, state)
    action = request.form.get('action', 'save')

    if action == 'reset':
        return redirect(url_for('vault.edit_section', page=page, section=section))

    if action != 'save':
        if schema['kind'] != 'array':
            abort(400)
        try:
            state = apply_array_action(state, schema, action)
        except ValueError:
            abort(400)
        return render_template('vault/content_edit.html', page=page, section=section, schema=schema, state=state,
                               dirty=True)

    errors = validate_section(schema, state)
    if errors:
        for message in errors:
            flash(message, 'danger')
        return render_template('vault/content_edit.html', page=page, section=section, schema=schema, state=state,
                               dirty=True), 400

    items = build_bulk_items(page, section, schema, state)
    _, error = call_backend('post', '/api/admin/content/bulk', {'items': items}, failure='Failed to save content')
    if error:
        flash(error, 'danger')
        return render_template('vault/content_edit.html', page=page, section=section, schema=schema, state=state,
                               dirty=True), 502
    flash(f"{schema['label']} saved.", 'success')
    return redirect(url_for('vault.edit_section', page=page, section=section))


# Blog editor
def _blog_posts():
    data, error = call_backend('get', '/api/admin/blog/posts', failure='Failed to fetch posts')
    if error:
        flash(error, 'warning')
    return [post for post in (data or {}).get('posts') or [] if isinstance(post, dict)]


def _blog_categories():
    data, error = call_backend('get', '/api/admin/blog/categories', failure='Failed to fetch categories')
    names = []
    for category in (data or {}).get('categories') or []:
        name = category.get('name') if isinstance(category, dict) else category
        if name and name not in names:
            names.append(str(name))
    return names or list(DEFAULT_CATEGORIES)


def _render_blog_editor(draft, post_id=None, generated=None, status=200):
    form = BlogPostForm(formdata=None, data=draft)
    categories = _blog_categories()
    form.category.choices = [(name, name) for name in categories]
    return render_template(
        'vault/blog_editor.html',
        form=form,
        draft=draft,
        post_id=post_id,
        posts=_blog_posts(),
        toolbar=EDITOR_TOOLBAR,
        generation_types=GENERATION_TYPES,
        generated=generated,
        status_badge=status_badge,
    ), status


def _find_post(post_id):
    for post in _blog_posts():
        if str(post.get('id')) == str(post_id):
            return post
    return None


def _generate(draft, post_id):
    generation_type = request.form.get('generation_type', 'content')
    prompt = (request.form.get('prompt') or '').strip()
    if generation_type not in GENERATION_TYPES or not prompt:
        flash('Enter a prompt and choose what to generate.', 'warning')
        return _render_blog_editor(draft, post_id, status=400)
    data, error = call_backend(
        'post',
        '/api/admin/blog/ai-generate',
        {'prompt': prompt, 'type': generation_type},
        failure='Generation failed',
    )
    if error:
        flash(error, 'danger')
        return _render_blog_editor(draft, post_id, status=502)
    generated = data.get('generated') or data.get('content') or ''
    updated = apply_generated(draft, generated, generation_type, editing=post_id is not None)
    flash('Generated text applied to the draft. Review it before saving.', 'info')
    return _render_blog_editor(updated, post_id, generated=generated)


def _save_post(draft, post_id):
    form = BlogPostForm()
    if not draft.get('title'):
        flash('Title is required', 'danger')
        return _render_blog_editor(draft, post_id, status=400)
    if not form.validate():
        for field_errors in form.errors.values():
            for message in field_errors:
                flash(message, 'danger')
        return _render_blog_editor(draft, post_id, status=400)
    if post_id is None:
        data, error = call_backend('post', '/api/admin/blog/posts', draft, failure='Failed to save post')
    else:
        data, error = call_backend('put', f'/api/admin/blog/posts/{post_id}', draft, failure='Failed to save post')
    if error:
        flash(error, 'danger')
        return _render_blog_editor(draft, post_id, status=502)
    flash('Post saved.', 'success')
    saved_id = post_id or json_object(json_object(data).get('post')).get('id')
    if saved_id:
        return redirect(url_for('vault.edit_post', post_id=saved_id))
    return redirect(url_for('vault.blog_posts'))


@vault_bp.route('/blog')
@login_required
def blog_posts():
    return _render_blog_editor(new_draft())


@vault_bp.route('/blog/new', methods=['POST'])
@login_required
def create_post():
    draft = draft_from_form(request.form)
    if request.form.get('action') == 'generate':
        return _generate(draft, None)
    return _save_post(draft, None)


@vault_bp.route('/blog/<int:post_id>', methods=['GET', 'POST'])
@login_required
def edit_post(post_id):
    if request.method == 'GET':
        post = _find_post(post_id)
        if post is None:
            flash('Post not found.', 'warning')
            return redirect(url_for('vault.blog_posts'))
        return _render_blog_editor(draft_from_post(post), post_id)
    draft = draft_from_form(request.form, editing=True)
    if request.form.get('action') == 'generate':
        return _generate(draft, post_id)
    return _save_post(draft, post_id)


@vault_bp.route('/blog/<int:post_id>/delete', methods=['POST'])
@login_required
def delete_post(post_id):
    _, error = call_backend('delete', f'/api/admin/blog/posts/{post_id}', failure='Failed to delete post')
    flash(error or 'Post deleted.', 'danger' if error else 'success')
    return redirect(url_for('vault.blog_posts'))


@vault_bp.route('/blog/<int:post_id>/publish', methods=['POST'])
@login_required
def publish_post(post_id):
    _, error = call_backend(
        'put', f'/api/admin/blog/posts/{post_id}', {'status': STATUS_PUBLISHED}, failure='Failed to publish post'
    )
    flash(error or 'Post published.', 'danger' if error else 'success')
    return redirect(url_for('vault.blog_posts'))


# Product manager
def _products():
    data, error = call_backend('get', '/api/admin/products', failure='Failed to fetch products')
    if error:
        flash(error, 'warning')
    products = [product for product in (data or {}).get('products') or [] if isinstance(product, dict)]
    return sorted(products, key=lambda item: item.get('display_order') or 0)


def product_from_form(form):
    product = dict(PRODUCT_DEFAULTS)
    product.update({
        'slug': form.slug.data.strip(),
        'name': form.name.data.strip(),
        'tagline': (form.tagline.data or '').strip(),
        'description': (form.description.data or '').strip(),
        'status': form.status.data,
        'external_url': (form.external_url.data or '').strip(),
        'display_order': form.display_order.data or 0,
        'cell_tag': (form.cell_tag.data or '').strip(),
        'cell_size': form.cell_size.data,
        'is_hero': bool(form.is_hero.data),
        'features': parse_tags(form.features.data),
    })
    return product


def _render_product_form(form, product_id=None, status=200):
    return render_template('vault/product_form.html', form=form, product_id=product_id), status


@vault_bp.route('/products')
@login_required
def products():
    return render_template('vault/products.html', products=_products())


@vault_bp.route('/products/new', methods=['GET', 'POST'])
@login_required
def create_product():
    if request.method == 'GET':
        form = ProductForm(data={**PRODUCT_DEFAULTS, 'display_order': len(_products()) + 1, 'features': ''})
        return _render_product_form(form)
    form = ProductForm()
    if not form.validate():
        flash('Slug and Name are required', 'danger')
        return _render_product_form(form, status=400)
    _, error = call_backend('post', '/api/admin/products', product_from_form(form), failure='Failed to create product')
    if error:
        flash(error, 'danger')
        return _render_product_form(form, status=502)
    flash('Product created.', 'success')
    return redirect(url_for('vault.products'))


@vault_bp.route('/products/<int:product_id>', methods=['GET', 'POST'])
@login_required
def edit_product(product_id):
    if request.method == 'GET':
        product = next((item for item in _products() if str(item.get('id')) == str(product_id)), None)
        if product is None:
            flash('Product not found.', 'warning')
            return redirect(url_for('vault.products'))
        values = {**PRODUCT_DEFAULTS, **product}
        values['features'] = format_tags(values.get('features') or [])
        return _render_product_form(ProductForm(data=values), product_id)
    form = ProductForm()
    if not form.validate():
        flash('Slug and Name are required', 'danger')
        return _render_product_form(form, product_id, status=400)
    _, error = call_backend(
        'put', f'/api/admin/products/{product_id}', product_from_form(form), failure='Failed to update product'
    )
    if error:
        flash(error, 'danger')
        return _render_product_form(form, product_id, status=502)
    flash('Product updated.', 'success')
    return redirect(url_for('vault.products'))


@vault_bp.route('/products/<int:product_id>/delete', methods=['POST'])
@login_required
def delete_product(product_id):
    _, error = call_backend('delete', f'/api/admin/products/{product_id}', failure='Failed to delete product')
    flash(error or 'Product deleted.', 'danger' if error else 'success')
    return redirect(url_for('vault.products'))


@vault_bp.route('/products/seed', methods=['POST'])
@login_required
def seed_products():
    data, error = call_backend('post', '/api/admin/products/seed', {}, failure='Failed to seed products')
    flash(error or (data or {}).get('message') or 'Default products seeded.', 'danger' if error else 'success')
    return redirect(url_for('vault.products'))


@vault_bp.route('/uploads', methods=['POST'])
@login_required
def upload_image():
    stored_url = save_upload(request.files.get('file'))
    if not stored_url:
        return {'error': 'Only PNG, JPEG, GIF or WEBP images are accepted.'}, 400
    return {'url': stored_url}, 201
