import logging
import threading
from collections import defaultdict
from typing import Callable, Dict, List


def session_topic(session_id) -> str:
    return f"session:{session_id}"


def kind_topic(game_kind) -> str:
    return f"kind:{getattr(game_kind, 'value', game_kind)}"


class ChangeNotifier:
    """Publish/subscribe over Socket.IO rooms plus in-process handlers.

    Delivery is best effort. Every session change is published on both the
    per-session topic and the per-kind topic, so a consumer listening on both
    sees most events twice and must deduplicate by version.
    """

    def __init__(self, socketio=None, namespace='/ws', logger=None):
        self.socketio = socketio
        self.namespace = namespace
        self.logger = logger or logging.getLogger(__name__)
        self._handlers: Dict[str, List[Callable]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, topic, handler):
        with self._lock:
            self._handlers[topic].append(handler)

        def unsubscribe():
            with self._lock:
                handlers = self._handlers.get(topic, [])
                if handler in handlers:
                    handlers.remove(handler)
                if not handlers:
                    self._handlers.pop(topic, None)

        return unsubscribe

    def publish(self, topic, event):
        if self.socketio is not None:
            try:
                self.socketio.emit(event.get('type', 'state_update'), event, to=topic, namespace=self.namespace)
            except Exception as exc:
                self.logger.warning(f"[publish] socket emit failed topic={topic}: {exc}")
        with self._lock:
            handlers = list(self._handlers.get(topic, []))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                self.logger.exception(f"[publish] handler failed topic={topic}")

    def publish_session(self, record, event_type='state_update', **extra):
        event = {
            'type': event_type,
            'session_id': record.id,
            'game_kind': record.game_kind.value,
            'version': record.version,
            'last_move_at': record.last_move_at,
            'session': record.to_dict(),
        }
        event.update(extra)
        self.publish(session_topic(record.id), event)
        self.publish(kind_topic(record.game_kind), event)
        return event
