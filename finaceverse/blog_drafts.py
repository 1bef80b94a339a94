"""Blog post drafts edited in the vault before they are sent to the backend."""
import json
import re

from slugify import slugify

from .rendering import sanitize_html

DEFAULT_CATEGORY = 'Technology'
DEFAULT_AUTHOR = 'FinACEverse Team'
DEFAULT_CATEGORIES = ('Technology', 'Industry Insights', 'Case Studies', 'Compliance')
SLUG_MAX_LENGTH = 100
META_TITLE_MAX_LENGTH = 70
META_DESCRIPTION_MAX_LENGTH = 160

STATUS_DRAFT = 'draft'
STATUS_PUBLISHED = 'published'
STATUS_ARCHIVED = 'archived'
STATUS_BADGES = {
    STATUS_DRAFT: {'label': 'Draft', 'css_class': 'badge-draft'},
    STATUS_PUBLISHED: {'label': 'Published', 'css_class': 'badge-published'},
    STATUS_ARCHIVED: {'label': 'Archived', 'css_class': 'badge-archived'},
}

GENERATION_TYPES = ('title', 'excerpt', 'content', 'full')
DRAFT_FIELDS = (
    'title', 'slug', 'excerpt', 'content', 'category', 'author', 'image_url',
    'meta_title', 'meta_description', 'meta_keywords', 'status', 'featured',
)

_LIST_NUMBER_RE = re.compile(r'^\d+\.\s*')


def new_draft():
    return {
        'title': '',
        'slug': '',
        'excerpt': '',
        'content': '',
        'category': DEFAULT_CATEGORY,
        'author': DEFAULT_AUTHOR,
        'image_url': '',
        'meta_title': '',
        'meta_description': '',
        'meta_keywords': '',
        'status': STATUS_DRAFT,
        'featured': False,
    }


def draft_from_post(post):
    draft = new_draft()
    for key in DRAFT_FIELDS:
        value = (post or {}).get(key)
        if value not in (None, ''):
            draft[key] = value
    draft['featured'] = bool((post or {}).get('featured'))
    return draft


def generate_slug(title):
    return slugify(title or '', max_length=SLUG_MAX_LENGTH, word_boundary=False)


def update_draft(draft, field, value, editing=False):
    """Return a copy of ``draft`` with ``field`` set, applying editor side effects."""
    if field not in DRAFT_FIELDS:
        raise KeyError(field)
    updated = dict(draft)
    updated[field] = value
    if field == 'title':
        if not editing:
            updated['slug'] = generate_slug(value)
        if not draft.get('meta_title'):
            updated['meta_title'] = (value or '')[:META_TITLE_MAX_LENGTH]
    if field == 'excerpt' and not draft.get('meta_description'):
        updated['meta_description'] = (value or '')[:META_DESCRIPTION_MAX_LENGTH]
    return updated


def apply_generated(draft, generated, generation_type, editing=False):
    if generation_type not in GENERATION_TYPES:
        raise ValueError(f'Unknown generation type: {generation_type}')
    generated = generated or ''

    if generation_type == 'title':
        lines = [line.strip() for line in generated.splitlines() if line.strip()]
        if not lines:
            return dict(draft)
        return update_draft(draft, 'title', _LIST_NUMBER_RE.sub('', lines[0]), editing)
    if generation_type in ('excerpt', 'content'):
        return update_draft(draft, generation_type, generated, editing)

    try:
        parsed = json.loads(generated)
    except ValueError:
        return update_draft(draft, 'content', generated, editing)
    if not isinstance(parsed, dict):
        return update_draft(draft, 'content', generated, editing)

    updated = dict(draft)
    updated['title'] = parsed.get('title') or draft.get('title', '')
    updated['excerpt'] = parsed.get('excerpt') or draft.get('excerpt', '')
    updated['content'] = parsed.get('content') or draft.get('content', '')
    updated['category'] = parsed.get('category') or draft.get('category', DEFAULT_CATEGORY)
    keywords = parsed.get('keywords')
    if isinstance(keywords, list):
        keywords = ', '.join(str(item) for item in keywords)
    updated['meta_keywords'] = keywords or draft.get('meta_keywords', '')
    updated['slug'] = generate_slug(updated['title'])
    return updated


def draft_from_form(form, editing=False, base=None):
    """Read a posted editor form into a draft, filling derived fields."""
    draft = dict(base or new_draft())
    for key in DRAFT_FIELDS:
        if key == 'featured':
            continue
        if key in form:
            draft[key] = (form.get(key) or '').strip()
    draft['featured'] = form.get('featured') in ('on', 'true', '1', 'y')
    draft['content'] = sanitize_html(draft.get('content', ''))
    if not draft.get('slug') and not editing:
        draft['slug'] = generate_slug(draft.get('title'))
    if not draft.get('meta_title'):
        draft['meta_title'] = (draft.get('title') or '')[:META_TITLE_MAX_LENGTH]
    if not draft.get('meta_description'):
        draft['meta_description'] = (draft.get('excerpt') or '')[:META_DESCRIPTION_MAX_LENGTH]
    if draft.get('status') not in STATUS_BADGES:
        draft['status'] = STATUS_DRAFT
    return draft


def status_badge(status):
    return STATUS_BADGES.get(status, STATUS_BADGES[STATUS_DRAFT])
