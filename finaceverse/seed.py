from datetime import datetime

from slugify import slugify

from .blog_drafts import DEFAULT_CATEGORIES
from .models import db, Article, Category, SiteSetting
from .rendering import reading_time

SITE_DEFAULTS = {
    'company_name': 'FinACEverse',
    'tagline': 'The Cognitive Operating System for Finance',
    'email': 'hello@finaceverse.io',
    'meta_title': 'FinACEverse | Cognitive Operating System for Accounting Firms',
    'meta_description': 'FinACEverse multiplies accounting capacity with orchestrated workflows, intelligent '
                        'document processing, domain AI and process mining on one cognitive platform.',
    'footer_text': '© 2026 FinACEverse. All rights reserved.',
    'linkedin': 'https://www.linkedin.com/company/finaceverse',
}

ARTICLES = [
    {
        'slug': 'why-cognitive-operating-systems-are-future',
        'title': 'Why Cognitive Operating Systems Are the Future of Finance',
        'excerpt': 'Traditional accounting software was built for record-keeping. The future demands '
                   'intelligent systems that think, learn, and act.',
        'category': 'Industry Insights',
        'published': datetime(2026, 1, 5),
        'author': 'Vithal Deshmukh',
        'author_role': 'Founder & CEO, FinACEverse',
        'image_url': 'https://images.pexels.com/photos/30547577/pexels-photo-30547577.jpeg?auto=compress&cs=tinysrgb&w=1500',
        'content': """## The End of Record-Keeping Software

For decades accounting software has recorded what happened. It has never understood what is happening, and it certainly does not anticipate what comes next.

**The software hasn't kept up.**

## What is a Cognitive Operating System?

1. **Understands context** - a Q4 equipment purchase is a deduction, a depreciation trigger and a cash flow event at once.
2. **Learns patterns** - recurring late invoices are flagged before month-end close.
3. **Orchestrates workflows** - information moves between accounting, tax, audit and advisory.

## The Business Case

- **2.5x capacity increase** without adding headcount
- **85% reduction** in month-end close time
- **400% ROI** in the first year

---

*The future of finance is cognitive. The question is whether you are ready.*
""",
    },
    {
        'slug': 'ai-workforce-multiplier-explained',
        'title': 'The AI Workforce Multiplier: What It Is and Why It Matters',
        'excerpt': 'Understanding how AI can make one accountant as productive as ten, without replacing a single human.',
        'category': 'Technology',
        'published': datetime(2026, 1, 3),
        'author': 'FinACEverse Team',
        'image_url': 'https://images.pexels.com/photos/30547598/pexels-photo-30547598.jpeg?auto=compress&cs=tinysrgb&w=1500',
        'content': """## Not Enough Hands, Too Much Work

Every firm has more work than people. Client demands grow, regulation gets more complex and the graduate pipeline shrinks.

- There aren't enough qualified candidates
- Training takes months
- Senior professionals spend too much time on routine tasks

## Enter the AI Workforce Multiplier

A multiplier makes each professional more productive. People are redeployed to work that needs *human judgment*.

### Automated Bookkeeping
- Categorises transactions with 99.2% accuracy
- Learns each client's coding patterns
""",
    },
    {
        'slug': 'pilot-program-results-2-5x-capacity',
        'title': 'Pilot Program Results: 2.5x Capacity Uplift Without New Hires',
        'excerpt': "Early adopters share their experience implementing FinACEverse and the results they've achieved.",
        'category': 'Case Studies',
        'published': datetime(2025, 12, 28),
        'author': 'FinACEverse Research',
        'image_url': 'https://images.pexels.com/photos/30547606/pexels-photo-30547606.jpeg?auto=compress&cs=tinysrgb&w=1500',
        'content': """## The Pilot Program Overview

In Q4 2025 twelve accounting firms of varying sizes joined the pilot programme.

## Participant Profile

- 3 sole practitioners
- 5 small firms (2-10 staff)
- 3 mid-size firms (11-50 staff)
- 1 regional firm (100+ staff)

## What We Measured

### Capacity Increase
- **Average:** 2.5x capacity increase
- **Best performer:** 4.1x (sole practitioner)
""",
    },
    {
        'slug': 'process-mining-accounting-firms',
        'title': 'Process Mining for Accounting Firms: Finding Hidden Inefficiencies',
        'excerpt': "How EPI-Q reveals the actual workflows in your firm, and why they're probably different from what you think.",
        'category': 'Technology',
        'published': datetime(2025, 12, 20),
        'author': 'FinACEverse Team',
        'image_url': 'https://images.pexels.com/photos/30547577/pexels-photo-30547577.jpeg?auto=compress&cs=tinysrgb&w=1500',
        'content': """## The Workflow Illusion

Every firm has documented workflows. Almost none of them match reality.

## What is Process Mining?

Process mining reconstructs actual workflows from system logs. It shows you:

- How work really moves through your organisation
- Where bottlenecks actually occur
- Which steps get skipped or repeated

## EPI-Q: Process Mining Built for Finance

EPI-Q maps the close, the tax season crunch and the audit file so you can *see* where time goes.
""",
    },
]


def seed_database():
    if SiteSetting.query.first() is None:
        for key, value in SITE_DEFAULTS.items():
            db.session.add(SiteSetting(key=key, value=value))

    categories = {category.name: category for category in Category.query.all()}
    for index, name in enumerate(DEFAULT_CATEGORIES):
        if name not in categories:
            category = Category(name=name, slug=slugify(name), sort_order=index)
            db.session.add(category)
            categories[name] = category

    existing_slugs = {slug for (slug,) in db.session.query(Article.slug).all()}
    for entry in ARTICLES:
        if entry['slug'] in existing_slugs:
            continue
        db.session.add(Article(
            slug=entry['slug'],
            title=entry['title'],
            excerpt=entry['excerpt'],
            content=entry['content'],
            author=entry['author'],
            author_role=entry.get('author_role'),
            image_url=entry['image_url'],
            read_minutes=reading_time(entry['content']),
            category=categories[entry['category']],
            is_published=True,
            published_at=entry['published'],
        ))
    db.session.commit()
