from flask import current_app, request
from flask_socketio import emit, join_room, leave_room

from duoplay import socketio
from duoplay.errors import SessionError
from duoplay.notifier import kind_topic, session_topic

TOPIC_PREFIXES = ('session:', 'kind:')


def _core():
    return current_app.extensions['duoplay']


def _emit_error(exc):
    if isinstance(exc, SessionError):
        emit('error', exc.to_dict())
    else:
        emit('error', {'error': str(exc), 'code': 'validation_error'})


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(reason=None):
    # Rooms are dropped with the socket; views re-sync by polling or on reconnect
    current_app.logger.info(f"[ws-disconnect] sid={getattr(request, 'sid', None)}")


def _load(data):
    session_id = (data or {}).get('session_id')
    if not session_id:
        raise ValueError('session_id is required')
    return _core().get_session(session_id)


def handle_join_session(data):
    try:
        record = _load(data)
    except (SessionError, ValueError) as exc:
        _emit_error(exc)
        return
    join_room(session_topic(record.id))
    join_room(kind_topic(record.game_kind))
    emit('joined', {'rooms': [session_topic(record.id), kind_topic(record.game_kind)], 'session': record.to_dict()})


def handle_leave_session(data):
    try:
        record = _load(data)
    except (SessionError, ValueError) as exc:
        _emit_error(exc)
        return
    leave_room(session_topic(record.id))
    leave_room(kind_topic(record.game_kind))
    emit('left', {'rooms': [session_topic(record.id), kind_topic(record.game_kind)]})


def _topic(data):
    topic = (data or {}).get('topic')
    if not isinstance(topic, str) or not topic.startswith(TOPIC_PREFIXES):
        raise ValueError('topic must look like session:<id> or kind:<game_kind>')
    return topic


def handle_subscribe(data):
    try:
        topic = _topic(data)
    except ValueError as exc:
        _emit_error(exc)
        return
    join_room(topic)
    emit('subscribed', {'topic': topic})


def handle_unsubscribe(data):
    try:
        topic = _topic(data)
    except ValueError as exc:
        _emit_error(exc)
        return
    leave_room(topic)
    emit('unsubscribed', {'topic': topic})


def handle_sync(data):
    """Reply with the authoritative state; clients call this after reconnecting."""
    try:
        record = _load(data)
    except (SessionError, ValueError) as exc:
        _emit_error(exc)
        return
    emit('state_update', {
        'type': 'state_update',
        'session_id': record.id,
        'game_kind': record.game_kind.value,
        'version': record.version,
        'last_move_at': record.last_move_at,
        'session': record.to_dict(),
    })


def handle_ping(data):
    emit('pong', data or {})


HANDLERS = (
    ('connect', handle_connect),
    ('disconnect', handle_disconnect),
    ('join_session', handle_join_session),
    ('leave_session', handle_leave_session),
    ('subscribe', handle_subscribe),
    ('unsubscribe', handle_unsubscribe),
    ('sync', handle_sync),
    ('ping', handle_ping),
)


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    for event, handler in HANDLERS:
        socketio.on_event(event, handler, namespace='/ws')

    if testing:
        for event, handler in HANDLERS:
            socketio.on_event(event, handler, namespace='/')
