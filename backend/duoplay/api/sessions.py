from flask import Blueprint, current_app, jsonify, request

from duoplay.errors import SessionError, ValidationError
from duoplay.services.sessions.scheduler import schedule_followups


sessions = Blueprint('sessions', __name__)


def _core():
    return current_app.extensions['duoplay']


def _after_write(record):
    schedule_followups(current_app._get_current_object(), record)
    return record


def _body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def _player_id(data):
    player_id = data.get('player_id')
    if not isinstance(player_id, str) or not player_id:
        raise ValidationError('player_id is required')
    return player_id


@sessions.errorhandler(SessionError)
def handle_session_error(exc):
    current_app.logger.info(f"[api-error] {request.method} {request.path} code={exc.code}: {exc.message}")
    return jsonify(exc.to_dict()), exc.status_code


@sessions.route('', methods=['POST'])
def create_session():
    data = _body()
    record = _core().create_session(data.get('game_kind'), data.get('player'))
    return jsonify(record.to_dict()), 201


@sessions.route('', methods=['GET'])
def list_sessions():
    game_kind = request.args.get('game_kind')
    if not game_kind:
        raise ValidationError('game_kind is required')
    records = _core().list_open_sessions(game_kind)
    return jsonify([record.to_dict() for record in records]), 200


@sessions.route('/<session_id>', methods=['GET'])
def get_session(session_id):
    record = _core().get_session(session_id)
    return jsonify(record.to_dict()), 200


@sessions.route('/<session_id>/join', methods=['POST'])
def join_session(session_id):
    data = _body()
    record = _core().join_session(session_id, data.get('player'))
    return jsonify(record.to_dict()), 200


@sessions.route('/<session_id>/moves', methods=['POST'])
def submit_move(session_id):
    data = _body()
    expected_version = data.get('expected_version')
    if expected_version is not None:
        try:
            expected_version = int(expected_version)
        except (TypeError, ValueError):
            raise ValidationError('expected_version must be an integer')
    record = _core().submit_move(session_id, _player_id(data), data.get('move'), expected_version=expected_version)
    _after_write(record)
    return jsonify(record.to_dict()), 200


@sessions.route('/<session_id>/rematch', methods=['POST'])
def request_rematch(session_id):
    data = _body()
    core = _core()
    result = core.request_rematch(session_id, _player_id(data))
    _after_write(core.store.get(session_id))
    return jsonify(result.to_dict()), 200


@sessions.route('/<session_id>/rematch/accept', methods=['POST'])
def accept_rematch(session_id):
    data = _body()
    result = _core().accept_rematch(session_id, _player_id(data))
    return jsonify(result.to_dict()), 200


@sessions.route('/<session_id>/rematch/decline', methods=['POST'])
def decline_rematch(session_id):
    data = _body()
    _core().decline_rematch(session_id, _player_id(data))
    return '', 204
