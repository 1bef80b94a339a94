"""Periodic refresh of dashboard data from several backend endpoints.

A cycle fires one GET per target in parallel and replaces each slot with the
JSON body it received. There is no retry or backoff: a failed slot keeps its
previous value until the next cycle. When the designated auth slot fails, or
any request comes back 401/403, the whole cycle counts as unauthorized and no
slot is touched.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor

from .api_client import BackendError, BackendUnauthorized, client_for

logger = logging.getLogger(__name__)


class PollTarget:
    def __init__(self, slot, path, params=None):
        self.slot = slot
        self.path = path
        self.params = dict(params or {})

    def __repr__(self):
        return f'PollTarget({self.slot!r}, {self.path!r})'


class PollResult:
    def __init__(self, slots, unauthorized=False, failed=()):
        self.slots = slots
        self.unauthorized = unauthorized
        self.failed = tuple(failed)

    @property
    def ok(self):
        return not self.unauthorized and not self.failed

    def as_dict(self):
        return {
            'slots': self.slots,
            'unauthorized': self.unauthorized,
            'failed': list(self.failed),
        }


ANALYTICS_TARGETS = (
    PollTarget('summary', '/api/analytics/summary'),
    PollTarget('geography', '/api/analytics/geography'),
    PollTarget('performance', '/api/analytics/performance'),
    PollTarget('errors', '/api/analytics/errors'),
)
ANALYTICS_AUTH_SLOT = 'summary'

SEO_TARGETS = (
    PollTarget('keyword_summary', '/api/seo/gsc/summary'),
    PollTarget('top_keywords', '/api/seo/gsc/top-keywords', {'limit': 20}),
    PollTarget('opportunities', '/api/seo/gsc/opportunities'),
    PollTarget('backlinks', '/api/seo/backlinks/top', {'limit': 50}),
    PollTarget('backlink_stats', '/api/seo/backlinks/stats'),
    PollTarget('issues', '/api/seo/issues'),
    PollTarget('fix_history', '/api/seo/auto-fix/history', {'limit': 30}),
    PollTarget('fix_stats', '/api/seo/auto-fix/stats'),
    PollTarget('report', '/api/seo/report'),
)


class PollingRefresher:
    def __init__(
        self,
        client_factory,
        targets,
        interval_seconds,
        auth_slot=None,
        on_update=None,
        on_unauthorized=None,
        initial_state=None,
    ):
        if not targets:
            raise ValueError('PollingRefresher needs at least one target.')
        slots = [target.slot for target in targets]
        if len(set(slots)) != len(slots):
            raise ValueError('Poll target slots must be unique.')
        if auth_slot is not None and auth_slot not in slots:
            raise ValueError(f'Unknown auth slot: {auth_slot}')

        self.client_factory = client_factory
        self.targets = tuple(targets)
        self.interval_seconds = max(0.01, float(interval_seconds))
        self.auth_slot = auth_slot
        self.on_update = on_update
        self.on_unauthorized = on_unauthorized
        self.cycles = 0

        self._lock = threading.Lock()
        self._state = {slot: None for slot in slots}
        for slot, value in (initial_state or {}).items():
            if slot in self._state:
                self._state[slot] = value
        self._stop_event = threading.Event()
        self._thread = None

    @property
    def state(self):
        with self._lock:
            return dict(self._state)

    @property
    def running(self):
        return bool(self._thread and self._thread.is_alive())

    def _fetch_all(self):
        client = self.client_factory()
        outcomes = {}
        with ThreadPoolExecutor(max_workers=len(self.targets)) as pool:
            futures = {
                target.slot: pool.submit(client.get, target.path, target.params or None)
                for target in self.targets
            }
            for slot, future in futures.items():
                try:
                    outcomes[slot] = (True, future.result())
                except BackendError as exc:
                    outcomes[slot] = (False, exc)
        return outcomes

    def refresh_once(self):
        outcomes = self._fetch_all()
        self.cycles += 1
        failed = [slot for slot, (ok, _) in outcomes.items() if not ok]

        unauthorized = any(
            isinstance(value, BackendUnauthorized)
            for ok, value in outcomes.values()
            if not ok
        )
        if self.auth_slot is not None and self.auth_slot in failed:
            unauthorized = True

        if unauthorized:
            logger.warning('Polling cycle unauthorized; failed slots: %s', ', '.join(failed))
            if self.on_unauthorized:
                self.on_unauthorized()
            return PollResult(self.state, unauthorized=True, failed=failed)

        with self._lock:
            for slot, (ok, value) in outcomes.items():
                if ok:
                    self._state[slot] = value
            snapshot = dict(self._state)
        for slot in failed:
            logger.warning('Polling slot %s failed: %s', slot, outcomes[slot][1])

        if self.on_update:
            self.on_update(snapshot)
        return PollResult(snapshot, failed=failed)

    def _run(self):
        while not self._stop_event.is_set():
            try:
                result = self.refresh_once()
            except Exception:
                logger.exception('Polling cycle crashed.')
            else:
                if result.unauthorized:
                    self._stop_event.set()
                    break
            if self._stop_event.wait(self.interval_seconds):
                break

    def start(self):
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name='polling-refresher', daemon=True)
        self._thread.start()

    def stop(self, timeout=None):
        # In-flight requests finish on their own; only the timer is cleared.
        self._stop_event.set()
        thread = self._thread
        if thread and thread is not threading.current_thread():
            thread.join(timeout)

    def wait(self, timeout=None):
        thread = self._thread
        if thread:
            thread.join(timeout)


def session_refresher(targets, token_key, interval_seconds, auth_slot=None):
    """A refresher whose client carries the token cached in the current session."""
    return PollingRefresher(
        lambda: client_for(token_key),
        targets,
        interval_seconds,
        auth_slot=auth_slot,
    )
