import html
import re

import bleach
from markupsafe import Markup, escape

EDITOR_TOOLBAR = [
    {'command': 'bold', 'label': 'Bold', 'icon': 'fa-solid fa-bold'},
    {'command': 'italic', 'label': 'Italic', 'icon': 'fa-solid fa-italic'},
    {'command': 'underline', 'label': 'Underline', 'icon': 'fa-solid fa-underline'},
    {'command': 'formatBlock', 'value': 'h2', 'label': 'Heading 2', 'text': 'H2'},
    {'command': 'formatBlock', 'value': 'h3', 'label': 'Heading 3', 'text': 'H3'},
    {'command': 'formatBlock', 'value': 'p', 'label': 'Paragraph', 'text': 'P'},
    {'command': 'insertUnorderedList', 'label': 'Bullet list', 'icon': 'fa-solid fa-list-ul'},
    {'command': 'insertOrderedList', 'label': 'Numbered list', 'icon': 'fa-solid fa-list-ol'},
    {'command': 'formatBlock', 'value': 'blockquote', 'label': 'Quote', 'icon': 'fa-solid fa-quote-left'},
    {'command': 'createLink', 'label': 'Insert link', 'icon': 'fa-solid fa-link', 'prompt': 'Enter URL:'},
    {'command': 'removeFormat', 'label': 'Clear formatting', 'icon': 'fa-solid fa-eraser'},
]

ALLOWED_RICH_TEXT_TAGS = [
    'p', 'br', 'strong', 'em', 'b', 'i', 'u', 'blockquote', 'code', 'pre',
    'ul', 'ol', 'li', 'h2', 'h3', 'h4', 'a', 'img', 'hr', 'div', 'span',
]
ALLOWED_RICH_TEXT_ATTRIBUTES = {
    'a': ['href', 'title', 'target', 'rel'],
    'img': ['src', 'alt', 'title', 'width', 'height'],
}
ALLOWED_RICH_TEXT_PROTOCOLS = ['http', 'https', 'mailto']

_BOLD_RE = re.compile(r'\*\*(.+?)\*\*')
_ITALIC_RE = re.compile(r'\*(.+?)\*')
_ORDERED_RE = re.compile(r'^\d+\.\s+(.+)$')
_RULE_RE = re.compile(r'^-{3,}$')


def sanitize_html(value):
    return bleach.clean(
        value or '',
        tags=ALLOWED_RICH_TEXT_TAGS,
        attributes=ALLOWED_RICH_TEXT_ATTRIBUTES,
        protocols=ALLOWED_RICH_TEXT_PROTOCOLS,
        strip=True,
    )


def rich_text(value):
    return Markup(sanitize_html(value))  # nosec B704


def strip_formatting(value):
    text = bleach.clean(value or '', tags=[], strip=True)
    return ' '.join(html.unescape(text).split())


def _inline(text):
    text = _BOLD_RE.sub(r'<strong>\1</strong>', text)
    return _ITALIC_RE.sub(r'<em>\1</em>', text)


def render_article(text):
    """Render the blog's markdown-like article format to HTML.

    Supports ``##``/``###`` headings, ``**bold**``, ``*italic*``, ``- `` and
    ``1. `` lists, ``---`` rules and blank-line separated paragraphs. Input is
    escaped before any markup is added.
    """
    lines = str(escape(text or '')).replace('\r\n', '\n').split('\n')
    out = []
    paragraph = []
    list_tag = None

    def close_paragraph():
        if paragraph:
            out.append(f"<p>{_inline(' '.join(paragraph))}</p>")
            paragraph.clear()

    def close_list():
        nonlocal list_tag
        if list_tag:
            out.append(f'</{list_tag}>')
            list_tag = None

    def open_list(tag):
        nonlocal list_tag
        if list_tag != tag:
            close_list()
            out.append(f'<{tag}>')
            list_tag = tag

    for raw_line in lines:
        line = raw_line.strip()
        if not line:
            close_paragraph()
            close_list()
            continue
        if line.startswith('### '):
            close_paragraph()
            close_list()
            out.append(f'<h3>{_inline(line[4:].strip())}</h3>')
        elif line.startswith('## '):
            close_paragraph()
            close_list()
            out.append(f'<h2>{_inline(line[3:].strip())}</h2>')
        elif _RULE_RE.match(line):
            close_paragraph()
            close_list()
            out.append('<hr>')
        elif line.startswith('- '):
            close_paragraph()
            open_list('ul')
            out.append(f'<li>{_inline(line[2:].strip())}</li>')
        elif _ORDERED_RE.match(line):
            close_paragraph()
            open_list('ol')
            out.append(f'<li>{_inline(_ORDERED_RE.match(line).group(1))}</li>')
        else:
            close_list()
            paragraph.append(line)
    close_paragraph()
    close_list()
    return Markup('\n'.join(out))  # nosec B704


def reading_time(text, words_per_minute=200):
    words = len(strip_formatting(text).split())
    return max(1, round(words / words_per_minute))
