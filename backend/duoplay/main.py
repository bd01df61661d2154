from flask import Blueprint, current_app, jsonify

from duoplay.models import GameKind

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({'message': 'Duoplay API is running', 'game_kinds': [kind.value for kind in GameKind]})


@main.route('/health')
def health():
    core = current_app.extensions['duoplay']
    return jsonify({
        'status': 'ok',
        'conditional_writes': core.store.conditional_writes,
        'rematch_timeout_sec': core.rematches.timeout_sec,
    })
