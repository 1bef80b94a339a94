"""Editable marketing copy, described per (page, section).

``kind`` is either ``fields`` (a flat set of keys) or ``array`` (an ordered
list of items sharing ``item_fields``). Defaults double as the public site's
fallback copy when the content store is unreachable.
"""

FIELD_TYPES = ('text', 'textarea', 'number', 'select', 'checkbox', 'image', 'tags')
SECTION_KINDS = ('fields', 'array')
ARRAY_ITEMS_KEY = 'items'

PRODUCT_STATUS_OPTIONS = [
    {'value': 'launched', 'label': 'Launched'},
    {'value': 'launching', 'label': 'Launching Soon'},
    {'value': 'coming_soon', 'label': 'Coming Soon'},
    {'value': 'planned', 'label': 'Planned (Vision)'},
]

CONTENT_SCHEMAS = {
    ('modules', 'hero'): {
        'label': 'Hero Section',
        'icon': 'fa-solid fa-house',
        'kind': 'fields',
        'fields': [
            {'key': 'title', 'label': 'Main Title', 'type': 'text', 'max_length': 160,
             'default': 'One Cognitive OS. Seven Specialised Modules.'},
            {'key': 'subtitle', 'label': 'Subtitle Text', 'type': 'textarea', 'max_length': 600,
             'default': 'Every module works on its own and gets smarter together: orchestration, verification, '
                        'domain intelligence and workforce multiplication on one platform.'},
        ],
    },
    ('modules', 'capabilities'): {
        'label': 'Capabilities',
        'icon': 'fa-solid fa-bolt',
        'kind': 'fields',
        'fields': [
            {'key': 'title', 'label': 'Section Title', 'type': 'text', 'max_length': 160,
             'default': 'Capabilities That Compound'},
            {'key': 'subtitle', 'label': 'Section Subtitle', 'type': 'textarea', 'max_length': 600,
             'default': 'Each module removes a bottleneck. Together they remove the ceiling.'},
        ],
    },
    ('modules', 'integration'): {
        'label': 'Integration Journey',
        'icon': 'fa-solid fa-link',
        'kind': 'fields',
        'fields': [
            {'key': 'title', 'label': 'Section Title', 'type': 'text', 'max_length': 160,
             'default': 'Your Integration Journey'},
            {'key': 'subtitle', 'label': 'Section Subtitle', 'type': 'textarea', 'max_length': 600,
             'default': 'From first pilot to firm-wide rollout without ripping out the tools your team already uses.'},
        ],
    },
    ('modules', 'timeline'): {
        'label': 'Timeline Phases',
        'icon': 'fa-solid fa-calendar-days',
        'kind': 'array',
        'item_label': 'Phase',
        'item_fields': [
            {'key': 'title', 'label': 'Phase Title', 'type': 'text', 'required': True, 'max_length': 120,
             'default': 'New Phase'},
            {'key': 'description', 'label': 'Phase Description', 'type': 'textarea', 'max_length': 600,
             'default': ''},
            {'key': 'time', 'label': 'Phase Time', 'type': 'text', 'max_length': 60, 'default': 'Week 1'},
        ],
        'default_items': [
            {'title': 'Discovery', 'description': 'Map current workflows with EPI-Q process mining.', 'time': 'Week 1-2'},
            {'title': 'Pilot', 'description': 'Switch on Accute and Cyloid for one practice area.', 'time': 'Week 3-6'},
            {'title': 'Expand', 'description': 'Roll Luca and Finaid Hub out across teams.', 'time': 'Week 7-10'},
            {'title': 'Optimise', 'description': 'Continuous improvement driven by live operating data.', 'time': 'Ongoing'},
        ],
    },
    ('modules', 'cta'): {
        'label': 'Call to Action',
        'icon': 'fa-solid fa-bullhorn',
        'kind': 'fields',
        'fields': [
            {'key': 'title', 'label': 'CTA Title', 'type': 'text', 'max_length': 160,
             'default': 'Start With the Bundle That Fits'},
            {'key': 'subtitle', 'label': 'CTA Description', 'type': 'textarea', 'max_length': 600,
             'default': 'Pick a starting bundle and expand module by module.'},
            {'key': 'bundles', 'label': 'Bundle Names', 'type': 'tags',
             'default': ['Practice Essentials', 'Growth Engine', 'Enterprise Cognitive OS']},
            {'key': 'show_pricing_link', 'label': 'Show Pricing Link', 'type': 'checkbox', 'default': True},
        ],
    },
    ('home', 'hero'): {
        'label': 'Home Hero',
        'icon': 'fa-solid fa-star',
        'kind': 'fields',
        'fields': [
            {'key': 'badge', 'label': 'Badge', 'type': 'select', 'default': 'pilot',
             'options': [
                 {'value': 'pilot', 'label': 'Pilot Program Open'},
                 {'value': 'launch', 'label': 'Now Launching'},
                 {'value': 'none', 'label': 'No Badge'},
             ]},
            {'key': 'title', 'label': 'Headline', 'type': 'text', 'required': True, 'max_length': 160,
             'default': 'The Cognitive Operating System for Finance'},
            {'key': 'subtitle', 'label': 'Supporting Copy', 'type': 'textarea', 'max_length': 600,
             'default': 'FinACEverse multiplies what your accountants can deliver: '
                        'orchestrated workflows, verified numbers, and an AI that speaks fluent CPA.'},
            {'key': 'background_image', 'label': 'Background Image', 'type': 'image',
             'default': 'https://images.pexels.com/photos/30547577/pexels-photo-30547577.jpeg?auto=compress&cs=tinysrgb&w=1500'},
            {'key': 'show_phase2', 'label': 'Show Phase 2 Modules', 'type': 'checkbox', 'default': False},
        ],
    },
    ('home', 'stats'): {
        'label': 'Impact Stats',
        'icon': 'fa-solid fa-chart-line',
        'kind': 'array',
        'item_label': 'Stat',
        'item_fields': [
            {'key': 'label', 'label': 'Label', 'type': 'text', 'required': True, 'max_length': 80, 'default': 'New stat'},
            {'key': 'value', 'label': 'Value', 'type': 'number', 'default': 0},
            {'key': 'suffix', 'label': 'Suffix', 'type': 'text', 'max_length': 12, 'default': '%'},
        ],
        'default_items': [
            {'label': 'Capacity uplift', 'value': 2.5, 'suffix': 'x'},
            {'label': 'Faster month-end close', 'value': 85, 'suffix': '%'},
            {'label': 'Fewer audit adjustments', 'value': 90, 'suffix': '%'},
            {'label': 'First-year ROI', 'value': 400, 'suffix': '%'},
        ],
    },
    ('home', 'pilot_banner'): {
        'label': 'Pilot Banner',
        'icon': 'fa-solid fa-flag',
        'kind': 'fields',
        'fields': [
            {'key': 'enabled', 'label': 'Show Banner', 'type': 'checkbox', 'default': True},
            {'key': 'message', 'label': 'Message', 'type': 'text', 'max_length': 200,
             'default': 'Tailored pilots are open for accounting firms of every size.'},
            {'key': 'seats', 'label': 'Seats Remaining', 'type': 'number', 'default': 12},
            {'key': 'status', 'label': 'Programme Status', 'type': 'select', 'default': 'launching',
             'options': PRODUCT_STATUS_OPTIONS},
        ],
    },
}


def get_schema(page, section):
    return CONTENT_SCHEMAS.get((page, section))


def schema_fields(schema):
    if schema.get('kind') == 'array':
        return schema.get('item_fields', [])
    return schema.get('fields', [])


def grouped_sections():
    pages = {}
    for (page, section), schema in CONTENT_SCHEMAS.items():
        pages.setdefault(page, []).append({'section': section, 'label': schema['label'], 'icon': schema.get('icon', '')})
    return pages
