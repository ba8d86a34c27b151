import json
from typing import Optional

from squares import db
from squares.models import Game, GlobalScores, PERIODS


def empty_scores() -> dict:
    return {p: {'home': None, 'away': None} for p in PERIODS}


def _coerce_side(value):
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        raise ValueError('Scores must be whole numbers')
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError('Scores must be whole numbers')
        value = int(value)
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ValueError('Scores must be whole numbers')
    if value < 0:
        raise ValueError('Scores cannot be negative')
    return value


def normalize_scores(data: Optional[dict], base: Optional[dict] = None) -> dict:
    """Coerce submitted scores into the four-period shape.

    Periods, or single sides of a period, missing from ``data`` are taken
    from ``base`` (or left pending). An explicit null clears a side.
    Raises ValueError on anything that is not a non-negative whole number.
    """
    if data is not None and not isinstance(data, dict):
        raise ValueError('Scores must be an object keyed by period')
    data = data or {}
    result = empty_scores()
    for period in PERIODS:
        previous = (base or {}).get(period) or {}
        source = data.get(period)
        if source is None:
            source = previous
        if not isinstance(source, dict):
            raise ValueError(f'Score for {period} must have home and away')
        result[period] = {
            side: _coerce_side(source[side] if side in source else previous.get(side))
            for side in ('home', 'away')
        }
    return result


def resolve_scores(game: Game, session=None) -> Optional[dict]:
    """Scores to feed the payout engine.

    A shared big game record wins over the game's own scores when it exists.
    """
    session = session or db.session
    if game.big_game_id:
        shared = session.query(GlobalScores).filter_by(big_game_id=game.big_game_id).first()
        if shared:
            return shared.to_dict()
    if not game.scores:
        return None
    return json.loads(game.scores)
