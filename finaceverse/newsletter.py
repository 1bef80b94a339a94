import base64
import json
import urllib.error
import urllib.parse
import urllib.request

from flask import current_app

MAILGUN_API_BASE = 'https://api.mailgun.net/v3'
NEWSLETTER_ACTIONS = ('subscribe', 'unsubscribe', 'status')


def _mailing_list():
    return (current_app.config.get('MAILGUN_MAILING_LIST') or '').strip()


def _mailgun_request(method, path, fields=None):
    """Call the Mailgun HTTP API. Returns (status, payload) or None when unconfigured."""
    api_key = (current_app.config.get('MAILGUN_API_KEY') or '').strip()
    if not api_key or not _mailing_list():
        return None

    data = urllib.parse.urlencode(fields).encode('utf-8') if fields else None
    req = urllib.request.Request(f'{MAILGUN_API_BASE}{path}', data=data, method=method)
    auth = base64.b64encode(f'api:{api_key}'.encode()).decode()
    req.add_header('Authorization', f'Basic {auth}')
    status, body = _open(req)
    try:
        payload = json.loads(body.decode('utf-8', errors='replace') or '{}')
    except ValueError:
        payload = {}
    return status, payload


def _open(req):
    try:
        with urllib.request.urlopen(req, timeout=15) as resp:  # nosec B310
            return resp.status, resp.read()
    except urllib.error.HTTPError as e:
        return e.code, e.read()


def _member_path(email=None):
    path = f'/lists/{urllib.parse.quote(_mailing_list())}/members'
    if email:
        path = f'{path}/{urllib.parse.quote(email)}'
    return path


def _failure(message):
    return {'success': False, 'message': message}


def _call(method, path, fields, failure_message):
    try:
        result = _mailgun_request(method, path, fields)
    except (urllib.error.URLError, OSError):
        current_app.logger.exception('Mailgun request %s %s failed.', method, path)
        return None, _failure(failure_message)
    if result is None:
        current_app.logger.info('Mailgun is not configured (set MAILGUN_API_KEY and MAILGUN_MAILING_LIST).')
        return None, _failure('Newsletter service is not configured.')
    return result, None


def subscribe(email, name=''):
    result, failure = _call(
        'POST',
        _member_path(),
        {'address': email, 'name': name or '', 'subscribed': 'yes', 'upsert': 'yes'},
        'Failed to subscribe',
    )
    if failure:
        return failure
    status, payload = result
    if status >= 400:
        current_app.logger.error('Mailgun subscribe error %s: %s', status, payload)
        return _failure(payload.get('message') or 'Failed to subscribe')
    return {'success': True, 'message': 'Successfully subscribed to newsletter'}


def unsubscribe(email):
    result, failure = _call('DELETE', _member_path(email), None, 'Failed to unsubscribe')
    if failure:
        return failure
    status, payload = result
    if status >= 400:
        current_app.logger.error('Mailgun unsubscribe error %s: %s', status, payload)
        return _failure(payload.get('message') or 'Failed to unsubscribe')
    return {'success': True, 'message': 'Successfully unsubscribed from newsletter'}


def subscriber_status(email):
    result, failure = _call('GET', _member_path(email), None, 'Failed to look up subscriber')
    if failure:
        return failure
    status, payload = result
    if status == 404:
        return {'success': True, 'subscribed': False}
    if status >= 400:
        return _failure(payload.get('message') or 'Failed to look up subscriber')
    member = payload.get('member') or {}
    return {'success': True, 'subscribed': member.get('subscribed') in (True, 'yes')}
