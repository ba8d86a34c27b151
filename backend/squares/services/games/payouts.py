"""Winner and payout computation.

Everything here is a pure function of plain dict snapshots (``Game.to_dict()``,
``Square.to_dict()``), so callers simply re-run it whenever the game, its
squares or its scores change. Nothing touches the database or the app.
"""
from typing import Dict, Iterable, List, Optional

PERIODS = ('q1', 'half', 'q3', 'final')
FINAL_PERIOD = 'final'

PERIOD_LABELS = {
    'q1': 'Q1',
    'half': 'Halftime',
    'q3': 'Q3',
    'final': 'FINAL',
}

PERIOD_COLORS = {
    'q1': '#2196f3',
    'half': '#4caf50',
    'q3': '#ff9800',
    'final': '#e91e63',
}

RETURN_TO_POOL = 'RETURN_TO_POOL'


def base_payout(config: Optional[dict], period: str) -> float:
    config = config or {}
    pct = (config.get('payouts') or {}).get(period) or 0
    total_pot = (config.get('price') or 0) * 100
    return total_pot * pct / 100


def is_settled(score: Optional[dict]) -> bool:
    return bool(score) and score.get('home') is not None and score.get('away') is not None


def winning_position(grid: dict, score: dict) -> int:
    """Square position won by ``score``.

    The home score's last digit picks the column, the away score's the row.
    """
    row_index = grid['row'].index(score['away'] % 10)
    col_index = grid['col'].index(score['home'] % 10)
    return row_index * 10 + col_index


def winning_positions(game: dict, scores: Optional[dict] = None) -> Dict[str, int]:
    """Map each settled period to its winning position."""
    grid = game.get('grid_numbers')
    scores = scores if scores is not None else game.get('scores')
    if not grid or not scores:
        return {}
    return {
        p: winning_position(grid, scores[p])
        for p in PERIODS
        if is_settled(scores.get(p))
    }


def prizes_for_square(game: dict, position: int, scores: Optional[dict] = None) -> List[str]:
    if game.get('status') == 'DRAFT':
        return []
    won = winning_positions(game, scores)
    return [p for p in PERIODS if won.get(p) == position]


def _owner_name(square: dict, users: Optional[dict]) -> str:
    if users and square.get('owner_id') in users:
        return users[square['owner_id']]
    return square.get('owner_name') or 'Unknown'


def _period_result(period, base, payout_amount, score=None, winner=None, is_reallocated=False):
    return {
        'period': period,
        'label': PERIOD_LABELS[period],
        'score': score,
        'payout_amount': payout_amount,
        'base_payout': base,
        'winner': winner,
        'is_reallocated': is_reallocated,
        'is_split_to_previous': False,
        'color': PERIOD_COLORS[period],
    }


def compute_winners(game: dict, squares: Iterable[dict], scores: Optional[dict] = None,
                    users: Optional[dict] = None) -> List[dict]:
    """Derive the winner and payout of every period.

    Args:
        game: game document with ``status``, ``config`` and ``grid_numbers``.
        squares: claimed square documents (``id`` is the stringified position).
        scores: resolved scores; defaults to ``game['scores']``.
        users: optional ``{uid: display_name}`` used for winner names.

    Returns:
        Four period results in ``q1, half, q3, final`` order.

    Periods are processed in order with a running carry-over. A settled
    period whose square is unclaimed (a house win) pushes its whole payout
    into the next period under RETURN_TO_POOL, except for the final period.
    Pending periods receive the carry-over once, on the first one reached.
    A final-period house win is split among the earlier human winners,
    weighted by their base payouts.
    """
    config = game.get('config') or {}
    scores = scores if scores is not None else game.get('scores')
    grid = game.get('grid_numbers')

    if game.get('status') == 'DRAFT' or not grid or not scores:
        results = []
        for p in PERIODS:
            base = base_payout(config, p)
            results.append(_period_result(p, base, base))
        return results

    rule = (config.get('rules') or {}).get('unclaimed_rule')
    by_position = {
        int(s['id']): s for s in squares if s.get('owner_id') is not None
    }

    carry_over = 0
    carry_over_applied_to_pending = False
    results = []

    for p in PERIODS:
        score = scores.get(p)
        base = base_payout(config, p)
        payout_amount = base
        winner = None
        is_reallocated = False
        settled = is_settled(score)

        if settled:
            payout_amount += carry_over
            square = by_position.get(winning_position(grid, score))
            if square:
                winner = {'uid': square['owner_id'], 'name': _owner_name(square, users)}
                carry_over = 0
            elif rule == RETURN_TO_POOL and p != FINAL_PERIOD:
                # House wins: the whole pot moves to the next period
                is_reallocated = True
                carry_over = payout_amount
                payout_amount = 0
            else:
                carry_over = 0
        elif not carry_over_applied_to_pending:
            payout_amount += carry_over
            carry_over_applied_to_pending = True

        results.append(_period_result(
            p, base, payout_amount,
            score=score if settled else None,
            winner=winner,
            is_reallocated=is_reallocated,
        ))

    final = results[-1]
    if final['score'] and not final['winner'] and not final['is_reallocated']:
        human_winners = [r for r in results[:-1] if r['winner']]
        total_weight = sum(r['base_payout'] for r in human_winners)
        if total_weight > 0:
            amount_to_split = final['payout_amount']
            for r in human_winners:
                r['payout_amount'] += (r['base_payout'] / total_weight) * amount_to_split
            final['payout_amount'] = 0
            final['is_split_to_previous'] = True

    return results


def total_won(periods: Iterable[dict], uid) -> float:
    return sum(
        r['payout_amount'] for r in periods
        if r['winner'] and r['winner']['uid'] == uid
    )


def player_stats(game: dict, squares: Iterable[dict], users: Optional[dict] = None) -> List[dict]:
    """Per-owner totals: squares held, amount owed, whether all are paid.

    Squares owned by the game admin never count as unpaid.
    """
    price = (game.get('config') or {}).get('price') or 0
    admin_id = game.get('admin_id')
    players: Dict[object, dict] = {}
    for s in squares:
        uid = s.get('owner_id')
        if uid is None:
            continue
        player = players.get(uid)
        if player is None:
            player = players[uid] = {
                'uid': uid,
                'name': _owner_name(s, users),
                'squares_count': 0,
                'owed': 0,
                'all_paid': True,
            }
        player['squares_count'] += 1
        player['owed'] += price
        if uid != admin_id and not s.get('is_paid'):
            player['all_paid'] = False
    return list(players.values())


def my_stats(game: dict, squares: Iterable[dict], uid) -> dict:
    price = (game.get('config') or {}).get('price') or 0
    mine = [s for s in squares if uid is not None and s.get('owner_id') == uid]
    unpaid = [s for s in mine if not s.get('is_paid')]
    return {
        'count': len(mine),
        'owed': len(mine) * price,
        'unpaid_amount': len(unpaid) * price,
    }
