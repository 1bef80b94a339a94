"""Flask-WTF forms for the dashboards and the vault.

CSRF is enforced globally in ``app.before_request``, so the forms opt out.
"""
from flask_wtf import FlaskForm
from wtforms import BooleanField, IntegerField, PasswordField, SelectField, StringField, TextAreaField
from wtforms.validators import DataRequired, Length, NumberRange, Optional, Regexp, URL

from .blog_drafts import DEFAULT_CATEGORIES, STATUS_BADGES
from .content_schemas import PRODUCT_STATUS_OPTIONS
from .utils import EMAIL_RE

CELL_SIZE_CHOICES = [('small', 'Small'), ('medium', 'Medium'), ('large', 'Large')]


class _BaseForm(FlaskForm):
    class Meta:
        csrf = False


_slug_validator = Regexp(
    r"^[a-z0-9-]*$",
    message="Slug can only contain lowercase letters, numbers, and hyphens.",
)


class AnalyticsLoginForm(_BaseForm):
    username = StringField("Username", validators=[DataRequired(), Length(max=120)])
    password = PasswordField("Password", validators=[DataRequired(), Length(max=256)])


class VaultLoginForm(_BaseForm):
    master_key = PasswordField("Master Key", validators=[DataRequired(), Length(max=512)])
    password = PasswordField("Admin Password", validators=[DataRequired(), Length(max=256)])


class VaultTotpForm(_BaseForm):
    totp_code = StringField(
        "Authenticator Code",
        validators=[DataRequired(), Regexp(r"^\d{6}$", message="Enter the 6-digit code.")],
    )


class BlogPostForm(_BaseForm):
    title = StringField("Title", validators=[DataRequired(message="Title is required"), Length(max=300)])
    slug = StringField("Slug", validators=[Optional(), Length(max=100), _slug_validator])
    excerpt = TextAreaField("Excerpt", validators=[Optional(), Length(max=600)])
    content = TextAreaField("Content", validators=[Optional(), Length(max=200000)])
    category = SelectField("Category", choices=[(name, name) for name in DEFAULT_CATEGORIES], validate_choice=False)
    author = StringField("Author", validators=[Optional(), Length(max=120)])
    image_url = StringField("Featured Image URL", validators=[Optional(), URL(), Length(max=500)])
    meta_title = StringField("Meta Title", validators=[Optional(), Length(max=70)])
    meta_description = TextAreaField("Meta Description", validators=[Optional(), Length(max=160)])
    meta_keywords = StringField("Keywords", validators=[Optional(), Length(max=300)])
    status = SelectField("Status", choices=[(key, badge['label']) for key, badge in STATUS_BADGES.items()])
    featured = BooleanField("Featured")


class ProductForm(_BaseForm):
    slug = StringField("Slug", validators=[DataRequired(), Length(max=100), _slug_validator])
    name = StringField("Name", validators=[DataRequired(), Length(max=120)])
    tagline = StringField("Tagline", validators=[Optional(), Length(max=200)])
    description = TextAreaField("Description", validators=[Optional(), Length(max=4000)])
    status = SelectField("Status", choices=[(option['value'], option['label']) for option in PRODUCT_STATUS_OPTIONS])
    external_url = StringField("External URL", validators=[Optional(), URL(), Length(max=500)])
    display_order = IntegerField("Display Order", default=0, validators=[Optional(), NumberRange(min=0, max=999)])
    cell_tag = StringField("Cell Tag", validators=[Optional(), Length(max=60)])
    cell_size = SelectField("Cell Size", choices=CELL_SIZE_CHOICES, default='medium')
    is_hero = BooleanField("Hero Product")
    features = StringField("Features", validators=[Optional(), Length(max=2000)])


class UnsubscribeForm(_BaseForm):
    email = StringField("Email", validators=[DataRequired(), Regexp(EMAIL_RE, message="Please enter a valid email address."), Length(max=320)])
