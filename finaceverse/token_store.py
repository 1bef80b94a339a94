"""Session-backed token cache shared by the dashboards and the vault.

The keys mirror the ones the browser build kept in local/session storage so
that the backend's token contract stays recognisable.
"""
from functools import wraps

from flask import redirect, session, url_for
from flask_login import UserMixin

ANALYTICS_TOKEN = 'analytics_token'
ANALYTICS_USER = 'analytics_user'
SUPERADMIN_TOKEN = 'superadmin_token'
SUPERADMIN_REFRESH = 'superadmin_refresh'
MASTER_KEY = 'masterKey'
ADMIN_PASSWORD = 'adminPassword'

STORAGE_KEYS = (
    ANALYTICS_TOKEN,
    ANALYTICS_USER,
    SUPERADMIN_TOKEN,
    SUPERADMIN_REFRESH,
    MASTER_KEY,
    ADMIN_PASSWORD,
)
ANALYTICS_KEYS = (ANALYTICS_TOKEN, ANALYTICS_USER)
SUPERADMIN_KEYS = (SUPERADMIN_TOKEN, SUPERADMIN_REFRESH)
PENDING_LOGIN_KEYS = (MASTER_KEY, ADMIN_PASSWORD)


def get_token(key):
    value = session.get(key)
    if not isinstance(value, str):
        return ''
    return value.strip()


def store_tokens(**values):
    for key, value in values.items():
        if key not in STORAGE_KEYS:
            raise KeyError(f'Unknown storage key: {key}')
        if value:
            session[key] = str(value)
        else:
            session.pop(key, None)


def clear_tokens(*keys):
    for key in keys or STORAGE_KEYS:
        session.pop(key, None)


def token_required(key, login_endpoint):
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            if not get_token(key):
                return redirect(url_for(login_endpoint))
            return view(*args, **kwargs)
        return wrapped
    return decorator


class VaultUser(UserMixin):
    """The superadmin, identified by the backend token held in the session."""

    id = 'superadmin'

    @property
    def token(self):
        return get_token(SUPERADMIN_TOKEN)


def load_vault_user(user_id):
    if user_id != VaultUser.id or not get_token(SUPERADMIN_TOKEN):
        return None
    return VaultUser()
