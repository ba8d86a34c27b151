import json
import secrets
from typing import Callable, List, Optional, Sequence

from flask import current_app

from squares import db
from squares.models import (
    Game,
    Square,
    GRID_SIZE,
    RULE_REQUIRE_FULL,
    RULE_RETURN_TO_POOL,
    STATUS_DRAFT,
    STATUS_LOCKED,
)

DIGITS = list(range(10))

# Error kinds surfaced to callers of the start transition
INVALID_ARGUMENT = 'invalid-argument'
UNAUTHENTICATED = 'unauthenticated'
NOT_FOUND = 'not-found'
PERMISSION_DENIED = 'permission-denied'
FAILED_PRECONDITION = 'failed-precondition'

ALREADY_STARTED_MESSAGE = 'Game is already started or completed.'


class StartGameError(Exception):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


def secure_shuffle(values: Sequence[int], randbelow: Callable[[int], int] = secrets.randbelow) -> List[int]:
    """Return a shuffled copy of ``values`` using Fisher-Yates.

    ``randbelow(n)`` must return a uniform integer in ``[0, n)``; the default
    draws from the OS CSPRNG without modulo bias.
    """
    shuffled = list(values)
    for i in range(len(shuffled) - 1, 0, -1):
        j = randbelow(i + 1)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def count_claimed_squares(game_id: str, session=None) -> int:
    session = session or db.session
    return (
        session.query(Square)
        .filter(Square.game_id == game_id, Square.owner_id.isnot(None))
        .count()
    )


def lock_game(game_id: str, row: List[int], col: List[int], session=None) -> bool:
    """Write status, grid and start time in one conditional UPDATE.

    Only matches while the game is still DRAFT; returns False when another
    start got there first.
    """
    session = session or db.session
    updated = (
        session.query(Game)
        .filter(Game.id == game_id, Game.status == STATUS_DRAFT)
        .update(
            {
                Game.status: STATUS_LOCKED,
                Game.grid_numbers: json.dumps({'row': row, 'col': col}),
                Game.started_at: db.func.now(),
            },
            synchronize_session=False,
        )
    )
    if updated != 1:
        session.rollback()
        return False
    session.commit()
    return True


def start_game(game_id: Optional[str], caller_id: Optional[int], session=None,
               randbelow: Callable[[int], int] = secrets.randbelow) -> dict:
    """Validate and lock a DRAFT game, assigning its row/column digits.

    Checks run in a fixed order and the first failure raises
    ``StartGameError``; nothing is written until every check has passed.
    """
    session = session or db.session

    if not game_id or not isinstance(game_id, str):
        raise StartGameError(INVALID_ARGUMENT, 'The function must be called with a gameId.')
    if caller_id is None:
        raise StartGameError(UNAUTHENTICATED, 'The function must be called while authenticated.')

    game = session.query(Game).filter(Game.id == game_id).first()
    if not game:
        raise StartGameError(NOT_FOUND, 'Game not found.')

    if game.admin_id != caller_id:
        current_app.logger.info(f"[start-denied] game={game_id} caller={caller_id} not admin")
        raise StartGameError(PERMISSION_DENIED, 'Only the game admin can start the game.')

    if game.status != STATUS_DRAFT:
        raise StartGameError(FAILED_PRECONDITION, ALREADY_STARTED_MESSAGE)

    unclaimed_rule = game.unclaimed_rule or RULE_RETURN_TO_POOL
    if unclaimed_rule == RULE_REQUIRE_FULL:
        count = count_claimed_squares(game.id, session)
        if count < GRID_SIZE:
            raise StartGameError(
                FAILED_PRECONDITION,
                f'Grid not full. Only {count}/{GRID_SIZE} squares taken.',
            )

    row = secure_shuffle(DIGITS, randbelow)
    col = secure_shuffle(DIGITS, randbelow)

    if not lock_game(game.id, row, col, session):
        current_app.logger.info(f"[start-denied] game={game_id} lost race to a concurrent start")
        raise StartGameError(FAILED_PRECONDITION, ALREADY_STARTED_MESSAGE)

    current_app.logger.info(f"[start] game={game_id} locked rows={row} cols={col}")
    return {'success': True, 'message': 'Game started successfully'}
