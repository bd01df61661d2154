"""Per-client reconciliation of a session view.

A ``ReconciliationClient`` keeps one player's view of one session in step
with the store using notifications that may be duplicated, reordered or
lost. Notifications are hints: each one triggers an authoritative fetch,
and a polling loop covers the ones that never arrive.

The client talks to the server through a gateway: ``LocalGateway`` calls a
``SessionCore`` in-process, ``HttpGateway`` uses the HTTP API and the
``/ws`` Socket.IO namespace.
"""
import logging
import threading
import time
from collections import defaultdict

import requests
import socketio
from flask import has_app_context
from sqlalchemy.exc import SQLAlchemyError

from duoplay.errors import Conflict, SessionError, StaleMove, error_from_code
from duoplay.models import SessionRecord
from duoplay.notifier import kind_topic, session_topic
from duoplay.services.games import build_rules

logger = logging.getLogger(__name__)

EVENT_TYPES = ('state_update', 'rematch_requested', 'rematch_linked', 'rematch_declined', 'rematch_expired')


class GatewayError(Exception):
    """The server could not be reached; retried by the polling loop."""


class LocalGateway:
    def __init__(self, core, app=None):
        self.core = core
        self.app = app

    def _call(self, fn, *args, **kwargs):
        try:
            if self.app is None or has_app_context():
                return fn(*args, **kwargs)
            with self.app.app_context():
                return fn(*args, **kwargs)
        except SQLAlchemyError as exc:
            raise GatewayError(f"store unavailable: {exc}") from exc

    def fetch(self, session_id):
        return self._call(self.core.get_session, session_id)

    def submit_move(self, session_id, actor_id, move, expected_version=None):
        return self._call(self.core.submit_move, session_id, actor_id, move, expected_version=expected_version)

    def request_rematch(self, session_id, player_id):
        return self._call(self.core.request_rematch, session_id, player_id).to_dict()

    def accept_rematch(self, session_id, player_id):
        return self._call(self.core.accept_rematch, session_id, player_id).to_dict()

    def decline_rematch(self, session_id, player_id):
        self._call(self.core.decline_rematch, session_id, player_id)

    def subscribe(self, topic, handler):
        return self.core.notifier.subscribe(topic, handler)

    def close(self):
        pass


class HttpGateway:
    def __init__(self, base_url, namespace='/ws', timeout=5.0, http=None, sio=None):
        self.base_url = base_url.rstrip('/')
        self.namespace = namespace
        self.timeout = timeout
        self.http = http or requests.Session()
        self.sio = sio
        self._handlers = defaultdict(list)
        self._lock = threading.Lock()

    def _request(self, method, path, **kwargs):
        try:
            response = self.http.request(method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise GatewayError(str(exc)) from exc
        return self.parse_response(response)

    @staticmethod
    def parse_response(response):
        if response.status_code == 204:
            return None
        try:
            body = response.json()
        except ValueError:
            body = None
        if response.status_code >= 400:
            if isinstance(body, dict) and body.get('code'):
                raise error_from_code(body['code'], body.get('error'))
            raise GatewayError(f"HTTP {response.status_code}")
        if not isinstance(body, dict):
            raise GatewayError(f"HTTP {response.status_code} without a JSON object body")
        return body

    def fetch(self, session_id):
        return SessionRecord.from_dict(self._request('GET', f"/api/sessions/{session_id}"))

    def submit_move(self, session_id, actor_id, move, expected_version=None):
        body = {'player_id': actor_id, 'move': move}
        if expected_version is not None:
            body['expected_version'] = expected_version
        return SessionRecord.from_dict(self._request('POST', f"/api/sessions/{session_id}/moves", json=body))

    def request_rematch(self, session_id, player_id):
        return self._request('POST', f"/api/sessions/{session_id}/rematch", json={'player_id': player_id})

    def accept_rematch(self, session_id, player_id):
        return self._request('POST', f"/api/sessions/{session_id}/rematch/accept", json={'player_id': player_id})

    def decline_rematch(self, session_id, player_id):
        self._request('POST', f"/api/sessions/{session_id}/rematch/decline", json={'player_id': player_id})

    def _ensure_socket(self):
        if self.sio is None:
            self.sio = socketio.Client(reconnection=True)
        if not self.sio.connected:
            for event_type in EVENT_TYPES:
                self.sio.on(event_type, self.dispatch, namespace=self.namespace)
            # Rooms do not survive a disconnect; fires again on every reconnect
            self.sio.on('connect', self.resubscribe, namespace=self.namespace)
            try:
                self.sio.connect(self.base_url, namespaces=[self.namespace])
            except socketio.exceptions.ConnectionError as exc:
                raise GatewayError(str(exc)) from exc

    def dispatch(self, event):
        topics = {session_topic(event.get('session_id')), kind_topic(event.get('game_kind'))}
        with self._lock:
            handlers = [h for topic in topics for h in self._handlers.get(topic, [])]
        for handler in handlers:
            handler(event)

    def resubscribe(self):
        with self._lock:
            topics = [topic for topic, handlers in self._handlers.items() if handlers]
        for topic in topics:
            self.sio.emit('subscribe', {'topic': topic}, namespace=self.namespace)
        if topics:
            logger.info(f"[resubscribe] {len(topics)} topic(s) after connect")

    def subscribe(self, topic, handler):
        self._ensure_socket()
        with self._lock:
            first = not self._handlers[topic]
            self._handlers[topic].append(handler)
        if first:
            self.sio.emit('subscribe', {'topic': topic}, namespace=self.namespace)

        def unsubscribe():
            with self._lock:
                handlers = self._handlers.get(topic, [])
                if handler in handlers:
                    handlers.remove(handler)
                last = not handlers
                if last:
                    self._handlers.pop(topic, None)
            if last and self.sio is not None and self.sio.connected:
                self.sio.emit('unsubscribe', {'topic': topic}, namespace=self.namespace)

        return unsubscribe

    def close(self):
        if self.sio is not None and self.sio.connected:
            self.sio.disconnect()
        self.http.close()


class ReconciliationClient:
    """One player's view of one session.

    ``open()`` fetches the session, subscribes to its own topic and to the
    per-kind topic, and starts the polling loop. ``close()`` undoes all of
    it. Views only move forward: a record is applied only if its version
    is newer than the one already shown. The one exception is a copy
    embedded in a notification, which the next store read overrides.
    """

    def __init__(self, gateway, session_id, player_id, on_update=None, on_navigate=None,
                 rules=None, poll_interval=3.0, max_backoff=30.0, optimistic=True, clock=time.time):
        self.gateway = gateway
        self.session_id = session_id
        self.player_id = player_id
        self.on_update = on_update
        self.on_navigate = on_navigate
        self.rules = rules if rules is not None else build_rules({})
        self.poll_interval = poll_interval
        self.max_backoff = max_backoff
        self.optimistic = optimistic
        self.clock = clock
        self.session = None
        self.version = 0
        self.failures = 0
        self.navigated_to = None
        self._unconfirmed = False
        self._confirmed_version = 0
        self._lock = threading.RLock()
        self._unsubscribers = []
        self._stop = threading.Event()
        self._thread = None

    @classmethod
    def for_app(cls, app, session_id, player_id, **kwargs):
        """In-process client tuned from the app's POLL_* settings."""
        core = app.extensions['duoplay']
        kwargs.setdefault('poll_interval', float(app.config.get('POLL_INTERVAL_SEC', 3)))
        kwargs.setdefault('max_backoff', float(app.config.get('POLL_MAX_BACKOFF_SEC', 30)))
        kwargs.setdefault('rules', core.rules)
        kwargs.setdefault('clock', core.clock)
        return cls(LocalGateway(core, app), session_id, player_id, **kwargs)

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        self.refresh()
        self._unsubscribers = [
            self.gateway.subscribe(session_topic(self.session_id), self.handle_event),
            self.gateway.subscribe(kind_topic(self.session.game_kind), self.handle_event),
        ]
        if self.poll_interval and self.poll_interval > 0:
            self._stop.clear()
            self._thread = threading.Thread(target=self._run, name=f"reconcile-{self.session_id}", daemon=True)
            self._thread.start()
        logger.info(f"[open] session={self.session_id} player={self.player_id} version={self.version}")
        return self

    def close(self):
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.poll_interval + 1)
        self._thread = None
        logger.info(f"[close] session={self.session_id} player={self.player_id}")

    @property
    def current_delay(self):
        return min(self.poll_interval * (2 ** self.failures), self.max_backoff)

    def _run(self):
        while not self._stop.wait(self.current_delay):
            try:
                self.poll()
            except SessionError as exc:
                logger.warning(f"[poll] session={self.session_id} rejected: {exc}")
            except Exception:
                self.failures += 1
                logger.exception(f"[poll] session={self.session_id} failed; next try in {self.current_delay:.1f}s")

    def apply(self, record, confirmed=True):
        """Show ``record`` if it is newer than the current view.

        A record taken from a notification's embedded copy is unconfirmed.
        The next record read from the store replaces it, even at the same
        or a lower version, as long as it is not older than the last
        confirmed one.
        """
        with self._lock:
            newer = self.session is None or record.version > self.version
            if not newer:
                if not (confirmed and self._unconfirmed):
                    return False
                if record == self.session:
                    self._unconfirmed = False
                    self._confirmed_version = record.version
                    return False
                if record.version < self._confirmed_version:
                    return False
            self.session = record
            self.version = record.version
            self._unconfirmed = not confirmed
            if confirmed:
                self._confirmed_version = record.version
        if self.on_update is not None:
            self.on_update(record)
        self._maybe_navigate(record)
        return True

    def _maybe_navigate(self, record):
        linked = record.rematch.linked_session_id
        with self._lock:
            if not linked or self.navigated_to:
                return
            self.navigated_to = linked
        logger.info(f"[navigate] session={self.session_id} -> {linked}")
        if self.on_navigate is not None:
            self.on_navigate(linked)

    def refresh(self):
        return self.apply(self.gateway.fetch(self.session_id))

    def poll(self):
        try:
            record = self.gateway.fetch(self.session_id)
        except GatewayError as exc:
            self.failures += 1
            logger.warning(f"[poll] session={self.session_id} unreachable ({exc}); next try in {self.current_delay:.1f}s")
            return False
        self.failures = 0
        return self.apply(record)

    def handle_event(self, event):
        if event.get('session_id') != self.session_id:
            return False
        if int(event.get('version') or 0) <= self.version:
            return False
        if self.optimistic and event.get('session'):
            self.apply(SessionRecord.from_dict(event['session']), confirmed=False)
        # The embedded copy is only a hint; the store decides
        try:
            self.refresh()
        except GatewayError as exc:
            logger.warning(f"[event] session={self.session_id} fetch failed ({exc}); polling will retry")
        return True

    def submit_move(self, move):
        """Send a move; a lost race resyncs quietly and returns None."""
        try:
            record = self.gateway.submit_move(self.session_id, self.player_id, move, expected_version=self.version or None)
        except (StaleMove, Conflict) as exc:
            logger.info(f"[move-resync] session={self.session_id} player={self.player_id}: {exc}")
            self.refresh()
            return None
        self.apply(record)
        return record

    def request_rematch(self):
        result = self.gateway.request_rematch(self.session_id, self.player_id)
        self.refresh()
        return result

    def accept_rematch(self):
        result = self.gateway.accept_rematch(self.session_id, self.player_id)
        self.refresh()
        return result

    def decline_rematch(self):
        self.gateway.decline_rematch(self.session_id, self.player_id)
        self.refresh()

    @property
    def is_my_turn(self):
        return self.session is not None and self.session.current_actor == self.player_id

    @property
    def rematch_pending(self):
        if self.session is None:
            return False
        rematch = self.session.rematch
        return rematch.requested_by == self.player_id and not rematch.linked_session_id

    def visible_payload(self, now=None):
        """Payload as it should be drawn at ``now``.

        Scheduled effects (a memory card reset) are applied from the
        timestamp recorded by the server, not from a local timer.
        """
        if self.session is None:
            return None
        rules = self.rules.get(self.session.game_kind)
        payload = self.session.payload
        if rules is None:
            return payload
        settled = rules.settle(payload, self.clock() if now is None else now)
        return payload if settled is None else settled
