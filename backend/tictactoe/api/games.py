from flask import Blueprint, jsonify, request, current_app
from tictactoe.services.games.errors import PersistenceUnavailable


games = Blueprint('games', __name__)


def _router():
    return current_app.extensions['session_router']


@games.route('', methods=['POST'])
def create_game():
    try:
        session_id = _router().create_session()
    except PersistenceUnavailable as exc:
        current_app.logger.error(f"[session-create-failed] error={exc.__cause__ or exc}")
        return jsonify({'error': 'Game creation failed'}), 503
    return jsonify({'session_id': session_id}), 201


@games.route('', methods=['GET'])
def list_games():
    """Most recent game records first, for the history view."""
    max_limit = int(current_app.config.get('HISTORY_LIMIT', 20))
    limit = request.args.get('limit', type=int) or max_limit
    limit = max(1, min(limit, max_limit))
    try:
        records = _router().gateway.list_recent(limit)
    except PersistenceUnavailable:
        return jsonify({'error': 'Failed to load history'}), 503
    return jsonify(records)
