from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user
from sqlalchemy.exc import IntegrityError
import json
import math
from datetime import date
from squares import db
from squares.models import (
    Game,
    Square,
    User,
    GRID_SIZE,
    PERIODS,
    STATUS_DRAFT,
    UNCLAIMED_RULES,
)
from squares.schedule import default_teams, game_for_year
from squares.services.games.start import StartGameError, start_game as svc_start_game
from squares.services.games.scores import empty_scores, normalize_scores, resolve_scores
from squares.services.games.payouts import (
    compute_winners,
    my_stats,
    player_stats,
    total_won,
    winning_positions,
)
from squares.socketio_events import notify_game_update


games = Blueprint('games', __name__)

PAYOUT_PRESETS = {
    'standard': {'q1': 25, 'half': 25, 'q3': 25, 'final': 25},
    'final_bonus': {'q1': 20, 'half': 20, 'q3': 20, 'final': 40},
    'halftime_final': {'q1': 12.5, 'half': 25, 'q3': 12.5, 'final': 50},
    'jackpot': {'q1': 10, 'half': 10, 'q3': 10, 'final': 70},
}

START_ERROR_STATUS = {
    'invalid-argument': 400,
    'unauthenticated': 401,
    'not-found': 404,
    'permission-denied': 403,
    'failed-precondition': 409,
}


def _parse_payouts(data: dict) -> dict:
    preset = data.get('preset')
    if preset:
        if preset not in PAYOUT_PRESETS:
            raise ValueError(f'Unknown payout preset: {preset}')
        return dict(PAYOUT_PRESETS[preset])
    payouts = data.get('payouts')
    if payouts is None:
        return dict(PAYOUT_PRESETS['standard'])
    if not isinstance(payouts, dict):
        raise ValueError('Payouts must be an object keyed by period')
    parsed = {}
    for period in PERIODS:
        value = payouts.get(period, 0)
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise ValueError(f'Payout for {period} must be a non-negative number')
        parsed[period] = value
    if abs(sum(parsed.values()) - 100) > 1e-9:
        raise ValueError('Payout percentages must add up to 100')
    return parsed


def _parse_max_squares(value):
    if value is None or value == '':
        return None
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ValueError('max_squares must be a whole number')
    # Anything below one means "no limit"
    return value if value >= 1 else None


def _require_admin(game: Game):
    if game.admin_id != current_user.id:
        return jsonify({'error': 'Only the game admin can do that'}), 403
    return None


def _user_names(squares):
    owner_ids = {s['owner_id'] for s in squares if s['owner_id'] is not None}
    if not owner_ids:
        return {}
    return {u.id: u.name for u in User.query.filter(User.id.in_(owner_ids)).all()}


@games.route('/create', methods=['POST'])
@login_required
def create_game():
    """
    Creates a DRAFT game owned by the current user.
    """
    data = request.get_json(silent=True) or {}
    try:
        payouts = _parse_payouts(data)
        price = float(data.get('price', 1))
        if not math.isfinite(price) or price < 0:
            raise ValueError('Price must be a non-negative number')
        rules = data.get('rules') or {}
        if not isinstance(rules, dict):
            raise ValueError('Rules must be an object')
        unclaimed_rule = rules.get('unclaimed_rule') or current_app.config.get('DEFAULT_UNCLAIMED_RULE')
        if unclaimed_rule not in UNCLAIMED_RULES:
            raise ValueError(f'Unknown unclaimed rule: {unclaimed_rule}')
        max_squares = _parse_max_squares(rules.get('max_squares'))
    except (TypeError, ValueError) as exc:
        return jsonify({'error': str(exc)}), 400

    big_game_id = data.get('big_game_id')
    name = (data.get('name') or '').strip()
    if not name:
        season = game_for_year(big_game_id or date.today().year) or {}
        first_name = current_user.name.split(' ')[0] or 'My'
        name = f"{first_name}'s {season.get('name') or 'Big Game'} Squares"

    new_game = Game(
        admin_id=current_user.id,
        name=name,
        status=STATUS_DRAFT,
        price=price,
        payouts=json.dumps(payouts),
        unclaimed_rule=unclaimed_rule,
        max_squares=max_squares,
        track_payments=bool(rules.get('track_payments', True)),
        teams=json.dumps(data.get('teams') or default_teams(big_game_id)),
        scores=json.dumps(empty_scores()),
        big_game_id=str(big_game_id) if big_game_id else None,
    )
    db.session.add(new_game)
    db.session.commit()
    current_app.logger.info(f"[create] game={new_game.id} admin={current_user.id} rule={unclaimed_rule}")

    return jsonify({
        'message': 'New game created!',
        'id': new_game.id,
    }), 201


@games.route('/owned', methods=['GET'])
@login_required
def owned_games():
    owned = Game.query.filter_by(admin_id=current_user.id).order_by(Game.created_at.desc()).all()
    return jsonify([g.to_dict(scores=resolve_scores(g)) for g in owned])


@games.route('/participating', methods=['GET'])
@login_required
def participating_games():
    joined = (
        Game.query.join(Square, Square.game_id == Game.id)
        .filter(Square.owner_id == current_user.id)
        .distinct()
        .all()
    )
    return jsonify([g.to_dict(scores=resolve_scores(g)) for g in joined])


@games.route('/<string:game_id>', methods=['GET'])
def get_game(game_id):
    game = Game.query.filter_by(id=game_id).first_or_404()
    payload = game.to_dict(scores=resolve_scores(game))
    payload['filled_count'] = game.squares.filter(Square.owner_id.isnot(None)).count()
    return jsonify(payload)


@games.route('/<string:game_id>/squares', methods=['GET'])
def get_squares(game_id):
    game = Game.query.filter_by(id=game_id).first_or_404()
    return jsonify([s.to_dict() for s in game.squares.order_by(Square.position).all()])


@games.route('/<string:game_id>/squares/<int:position>/claim', methods=['POST'])
@login_required
def claim_square(game_id, position):
    game = Game.query.filter_by(id=game_id).first_or_404()
    if game.status != STATUS_DRAFT:
        return jsonify({'error': 'The grid is locked'}), 409
    if not 0 <= position < GRID_SIZE:
        return jsonify({'error': 'Square position must be between 0 and 99'}), 400

    if Square.query.filter_by(game_id=game.id, position=position).first():
        return jsonify({'error': 'Square already claimed'}), 409

    if game.max_squares and game.max_squares > 0:
        mine = Square.query.filter_by(game_id=game.id, owner_id=current_user.id).count()
        if mine >= game.max_squares:
            return jsonify({
                'error': f'You have reached the maximum limit of {game.max_squares} squares per player.'
            }), 409

    square = Square(
        game_id=game.id,
        position=position,
        owner_id=current_user.id,
        owner_name=current_user.name,
        is_paid=False,
    )
    db.session.add(square)
    try:
        db.session.commit()
    except IntegrityError:
        # Someone else claimed it between our check and the insert
        db.session.rollback()
        return jsonify({'error': 'Square already claimed'}), 409

    current_app.logger.info(f"[claim] game={game.id} square={position} owner={current_user.id}")
    notify_game_update(game.id)
    return jsonify(square.to_dict()), 201


@games.route('/<string:game_id>/squares/<int:position>/release', methods=['POST'])
@login_required
def release_square(game_id, position):
    game = Game.query.filter_by(id=game_id).first_or_404()
    if game.status != STATUS_DRAFT:
        return jsonify({'error': 'The grid is locked'}), 409
    square = Square.query.filter_by(game_id=game.id, position=position).first_or_404()
    if square.owner_id != current_user.id:
        return jsonify({'error': 'You can only release your own squares'}), 403
    if square.is_paid:
        return jsonify({'error': 'This square has been marked as paid for and cannot be unset.'}), 409

    db.session.delete(square)
    db.session.commit()
    current_app.logger.info(f"[release] game={game.id} square={position} owner={current_user.id}")
    notify_game_update(game.id)
    return jsonify({'message': 'Square released'})


@games.route('/<string:game_id>/squares/<int:position>/paid', methods=['POST'])
@login_required
def set_square_paid(game_id, position):
    game = Game.query.filter_by(id=game_id).first_or_404()
    denied = _require_admin(game)
    if denied:
        return denied
    square = Square.query.filter_by(game_id=game.id, position=position).first_or_404()
    data = request.get_json(silent=True) or {}
    square.is_paid = bool(data.get('is_paid', True))
    db.session.commit()
    current_app.logger.info(f"[paid] game={game.id} square={position} is_paid={square.is_paid}")
    notify_game_update(game.id)
    return jsonify(square.to_dict())


@games.route('/<string:game_id>/players/<int:user_id>/paid', methods=['POST'])
@login_required
def set_player_paid(game_id, user_id):
    game = Game.query.filter_by(id=game_id).first_or_404()
    denied = _require_admin(game)
    if denied:
        return denied
    data = request.get_json(silent=True) or {}
    is_paid = bool(data.get('is_paid', True))
    # One UPDATE over all of the player's squares
    updated = (
        Square.query.filter_by(game_id=game.id, owner_id=user_id)
        .update({Square.is_paid: is_paid}, synchronize_session=False)
    )
    db.session.commit()
    current_app.logger.info(f"[paid] game={game.id} player={user_id} squares={updated} is_paid={is_paid}")
    notify_game_update(game.id)
    return jsonify({'updated': updated, 'is_paid': is_paid})


@games.route('/<string:game_id>/scores', methods=['PUT'])
@login_required
def update_scores(game_id):
    game = Game.query.filter_by(id=game_id).first_or_404()
    denied = _require_admin(game)
    if denied:
        return denied
    data = request.get_json(silent=True) or {}
    current = json.loads(game.scores) if game.scores else None
    try:
        scores = normalize_scores(data.get('scores', data), base=current)
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400

    game.scores = json.dumps(scores)
    db.session.commit()
    current_app.logger.info(f"[scores] game={game.id} scores={scores}")
    notify_game_update(game.id)
    return jsonify(game.to_dict(scores=resolve_scores(game)))


@games.route('/<string:game_id>/config', methods=['PUT'])
@login_required
def update_config(game_id):
    game = Game.query.filter_by(id=game_id).first_or_404()
    denied = _require_admin(game)
    if denied:
        return denied
    if game.status != STATUS_DRAFT:
        return jsonify({'error': 'Rules cannot change once the grid is locked'}), 409
    data = request.get_json(silent=True) or {}
    rules = data.get('rules', data) if isinstance(data, dict) else None
    if not isinstance(rules, dict):
        return jsonify({'error': 'Rules must be an object'}), 400
    if 'unclaimed_rule' in rules:
        if rules['unclaimed_rule'] not in UNCLAIMED_RULES:
            return jsonify({'error': f"Unknown unclaimed rule: {rules['unclaimed_rule']}"}), 400
        game.unclaimed_rule = rules['unclaimed_rule']
    if 'max_squares' in rules:
        try:
            game.max_squares = _parse_max_squares(rules['max_squares'])
        except ValueError as exc:
            return jsonify({'error': str(exc)}), 400
    db.session.commit()
    current_app.logger.info(
        f"[config] game={game.id} rule={game.unclaimed_rule} max_squares={game.max_squares}"
    )
    notify_game_update(game.id)
    return jsonify(game.to_dict(scores=resolve_scores(game)))


@games.route('/start', methods=['POST'])
def start_game():
    data = request.get_json(silent=True) or {}
    game_id = data.get('gameId')
    caller_id = current_user.id if current_user.is_authenticated else None
    try:
        result = svc_start_game(game_id, caller_id)
    except StartGameError as exc:
        return jsonify({'error': exc.message, 'code': exc.code}), START_ERROR_STATUS[exc.code]
    notify_game_update(game_id)
    return jsonify(result)


@games.route('/<string:game_id>/standings', methods=['GET'])
def get_standings(game_id):
    game = Game.query.filter_by(id=game_id).first_or_404()
    scores = resolve_scores(game)
    doc = game.to_dict(scores=scores)
    squares = [s.to_dict() for s in game.squares.order_by(Square.position).all()]
    users = _user_names(squares)
    periods = compute_winners(doc, squares, scores=scores, users=users)
    uid = current_user.id if current_user.is_authenticated else None
    return jsonify({
        'periods': periods,
        'players': player_stats(doc, squares, users),
        'total_won': total_won(periods, uid) if uid is not None else 0,
        'my_stats': my_stats(doc, squares, uid),
        'winning_positions': winning_positions(doc, scores),
    })


@games.route('/<string:game_id>', methods=['DELETE'])
@login_required
def delete_game(game_id):
    game = Game.query.filter_by(id=game_id).first_or_404()
    denied = _require_admin(game)
    if denied:
        return denied
    Square.query.filter_by(game_id=game.id).delete()
    db.session.delete(game)
    db.session.commit()
    current_app.logger.info(f"[delete] game={game_id} admin={current_user.id}")
    notify_game_update(game_id)
    return jsonify({'message': 'Game deleted'})
