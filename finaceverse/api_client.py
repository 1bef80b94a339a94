"""Thin JSON client for the backend REST API.

All authenticated data (analytics, SEO, content, blog posts, products, AI
generation) lives behind the backend; this module is the only place the site
talks to it.
"""
import json
import logging
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from flask import current_app

from .token_store import get_token

logger = logging.getLogger(__name__)

UNAUTHORIZED_STATUSES = {401, 403}


class BackendError(Exception):
    def __init__(self, message, status=None, payload=None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.payload = payload if payload is not None else {}


class BackendUnauthorized(BackendError):
    pass


class BackendUnavailable(BackendError):
    pass


def _decode_body(body):
    text = (body or b'').decode('utf-8', errors='replace').strip()
    if not text:
        return {}
    return json.loads(text)


def _error_message(payload, status):
    if isinstance(payload, dict):
        for key in ('error', 'message'):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()[:300]
    return f'Backend request failed with HTTP {status}.'


def json_object(payload):
    """The decoded body when it is a JSON object, otherwise an empty dict."""
    return payload if isinstance(payload, dict) else {}


class BackendClient:
    def __init__(self, base_url, token=None, timeout=10.0):
        self.base_url = (base_url or '').rstrip('/')
        self.token = token or None
        self.timeout = timeout

    def get(self, path, params=None):
        return self.request('GET', path, params=params)

    def post(self, path, payload=None):
        return self.request('POST', path, payload=payload if payload is not None else {})

    def put(self, path, payload=None):
        return self.request('PUT', path, payload=payload if payload is not None else {})

    def delete(self, path):
        return self.request('DELETE', path)

    def build_url(self, path, params=None):
        url = f"{self.base_url}/{path.lstrip('/')}"
        if params:
            query = urlencode({key: value for key, value in params.items() if value is not None})
            if query:
                url = f'{url}?{query}'
        return url

    def request(self, method, path, payload=None, params=None):
        url = self.build_url(path, params)
        headers = {'Accept': 'application/json'}
        data = None
        if payload is not None:
            data = json.dumps(payload, ensure_ascii=False).encode('utf-8')
            headers['Content-Type'] = 'application/json'
        if self.token:
            headers['Authorization'] = f'Bearer {self.token}'

        req = Request(url, data=data, headers=headers, method=method)
        try:
            status, body = self._send(req)
        except (URLError, OSError) as exc:
            logger.warning('Backend %s %s unreachable: %s', method, path, exc)
            raise BackendUnavailable('Connection error. Please try again.') from exc

        if status >= 400:
            try:
                error_payload = _decode_body(body)
            except ValueError:
                error_payload = {}
            message = _error_message(error_payload, status)
            logger.warning('Backend %s %s returned HTTP %s: %s', method, path, status, message)
            if status in UNAUTHORIZED_STATUSES:
                raise BackendUnauthorized(message, status=status, payload=error_payload)
            raise BackendError(message, status=status, payload=error_payload)

        try:
            return _decode_body(body)
        except ValueError as exc:
            logger.warning('Backend %s %s returned a non-JSON body.', method, path)
            raise BackendUnavailable('Unexpected response from server.', status=status) from exc

    def _send(self, req):
        try:
            with urlopen(req, timeout=self.timeout) as response:  # nosec B310
                return response.status, response.read()
        except HTTPError as exc:
            return exc.code, exc.read()


def client_for(token_key=None):
    token = get_token(token_key) if token_key else None
    return BackendClient(
        current_app.config.get('BACKEND_API_URL', ''),
        token=token,
        timeout=float(current_app.config.get('BACKEND_TIMEOUT_SECONDS') or 10.0),
    )
