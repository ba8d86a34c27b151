from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user
import json
from squares import db
from squares.models import Game, GlobalScores
from squares.schedule import game_for_year
from squares.services.games.scores import normalize_scores
from squares.socketio_events import notify_game_update

scores = Blueprint('scores', __name__)


@scores.route('/schedule/<string:year>', methods=['GET'])
def get_schedule(year):
    entry = game_for_year(year)
    if not entry:
        return jsonify({'error': f'No game scheduled for {year}'}), 404
    return jsonify(entry)


@scores.route('/<string:big_game_id>', methods=['GET'])
def get_global_scores(big_game_id):
    record = GlobalScores.query.filter_by(big_game_id=big_game_id).first_or_404()
    return jsonify(record.to_dict())


@scores.route('/<string:big_game_id>', methods=['PUT'])
@login_required
def save_global_scores(big_game_id):
    """
    Merges the submitted periods into the shared record for ``big_game_id``
    and notifies every game that reads its scores from it.
    """
    if not current_user.is_super_admin:
        return jsonify({'error': 'Only super admins can edit shared scores'}), 403

    data = request.get_json(silent=True) or {}
    record = GlobalScores.query.filter_by(big_game_id=big_game_id).first()
    try:
        merged = normalize_scores(data.get('scores', data), base=record.to_dict() if record else None)
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400

    if record is None:
        record = GlobalScores(big_game_id=big_game_id, scores=json.dumps(merged))
        db.session.add(record)
    else:
        record.scores = json.dumps(merged)
    db.session.commit()
    current_app.logger.info(f"[scores] big_game={big_game_id} scores={merged}")

    for (game_id,) in db.session.query(Game.id).filter(Game.big_game_id == big_game_id).all():
        notify_game_update(game_id)
    return jsonify(merged)
