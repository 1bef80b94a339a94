"""Realtime analytics feed pushed by the backend over socket.io.

The backend broadcasts ``analytics-update`` events shaped ``{"type", "data"}``.
Visits are kept newest first in a bounded list; summaries replace the last one.
"""
import logging
import threading
from collections import deque

import socketio
from socketio.exceptions import ConnectionError as SocketConnectionError

logger = logging.getLogger(__name__)

UPDATE_EVENT = 'analytics-update'
SUBSCRIBE_EVENT = 'subscribe-analytics'
DEFAULT_FEED_LIMIT = 10


class LiveVisitFeed:
    def __init__(self, limit=DEFAULT_FEED_LIMIT):
        self.limit = max(1, int(limit))
        self._visits = deque(maxlen=self.limit)
        self._summary = None
        self._ignored = 0
        self._lock = threading.Lock()

    def apply_event(self, event):
        if not isinstance(event, dict):
            return False
        kind = event.get('type')
        data = event.get('data')
        with self._lock:
            if kind == 'visit':
                self._visits.appendleft(data)
                return True
            if kind == 'summary':
                self._summary = data
                return True
            self._ignored += 1
        return False

    @property
    def visits(self):
        with self._lock:
            return list(self._visits)

    @property
    def ignored_events(self):
        return self._ignored

    def snapshot(self):
        with self._lock:
            return {'visits': list(self._visits), 'summary': self._summary}

    def clear(self):
        with self._lock:
            self._visits.clear()
            self._summary = None


class AnalyticsEventStream:
    def __init__(self, url, feed, token=None, client=None):
        self.url = url
        self.feed = feed
        self.token = token or None
        self.client = client or socketio.Client(reconnection=True, logger=False)
        self.client.on('connect', self._on_connect)
        self.client.on('disconnect', self._on_disconnect)
        self.client.on(UPDATE_EVENT, self._on_update)

    def _on_connect(self):
        logger.info('Realtime analytics connected to %s', self.url)
        self.client.emit(SUBSCRIBE_EVENT)

    def _on_disconnect(self, *args):
        logger.info('Realtime analytics disconnected.')

    def _on_update(self, payload):
        if not self.feed.apply_event(payload):
            logger.debug('Ignored realtime analytics event: %r', payload)

    @property
    def connected(self):
        return bool(self.client.connected)

    def start(self):
        if self.connected:
            return True
        headers = {'Authorization': f'Bearer {self.token}'} if self.token else {}
        try:
            self.client.connect(self.url, headers=headers, transports=['websocket', 'polling'])
        except SocketConnectionError:
            logger.exception('Realtime analytics connection to %s failed.', self.url)
            return False
        return True

    def stop(self):
        if self.connected:
            self.client.disconnect()


def init_realtime(app):
    feed = LiveVisitFeed(limit=app.config.get('LIVE_FEED_LIMIT', DEFAULT_FEED_LIMIT))
    app.extensions['live_feed'] = feed
    if not app.config.get('ANALYTICS_REALTIME_ENABLED') or app.config.get('TESTING'):
        return feed
    stream = AnalyticsEventStream(
        app.config.get('ANALYTICS_REALTIME_URL') or app.config.get('BACKEND_API_URL'),
        feed,
        token=app.config.get('ANALYTICS_REALTIME_TOKEN') or None,
    )
    app.extensions['analytics_stream'] = stream
    stream.start()
    return feed
