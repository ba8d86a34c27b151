import json

import pytest

from squares import db
from squares.models import Game, Square, User
from squares.services.games.start import StartGameError, lock_game, start_game


def make_user(username):
    user = User(username=username, display_name=username.capitalize())
    user.set_password('password')
    db.session.add(user)
    db.session.commit()
    return user


def make_game(admin, rule='RETURN_TO_POOL', status='DRAFT'):
    game = Game(
        admin_id=admin.id,
        name='Office Pool',
        status=status,
        price=1,
        payouts=json.dumps({'q1': 25, 'half': 25, 'q3': 25, 'final': 25}),
        unclaimed_rule=rule,
    )
    db.session.add(game)
    db.session.commit()
    return game


def fill(game, owner, count):
    for position in range(count):
        db.session.add(Square(game_id=game.id, position=position, owner_id=owner.id, owner_name=owner.name))
    db.session.commit()


def assert_fails(code, game_id, caller_id, match=None):
    with pytest.raises(StartGameError) as excinfo:
        start_game(game_id, caller_id)
    assert excinfo.value.code == code
    if match:
        assert excinfo.value.message == match
    return excinfo.value


def test_start_locks_game_and_assigns_grid(app_ctx):
    admin = make_user('admin')
    game = make_game(admin)

    result = start_game(game.id, admin.id)

    assert result == {'success': True, 'message': 'Game started successfully'}
    locked = Game.query.filter_by(id=game.id).first()
    assert locked.status == 'LOCKED'
    assert locked.started_at is not None
    grid = locked.grid
    assert sorted(grid['row']) == list(range(10))
    assert sorted(grid['col']) == list(range(10))


def test_missing_game_id_is_checked_before_authentication(app_ctx):
    assert_fails('invalid-argument', None, None, 'The function must be called with a gameId.')
    assert_fails('invalid-argument', '', 1)


def test_unauthenticated_caller_is_rejected(app_ctx):
    admin = make_user('admin')
    game = make_game(admin)
    assert_fails('unauthenticated', game.id, None)


def test_unknown_game_is_not_found(app_ctx):
    admin = make_user('admin')
    assert_fails('not-found', 'does-not-exist', admin.id, 'Game not found.')


def test_only_admin_can_start(app_ctx):
    admin = make_user('admin')
    other = make_user('other')
    game = make_game(admin)

    assert_fails('permission-denied', game.id, other.id, 'Only the game admin can start the game.')
    assert Game.query.filter_by(id=game.id).first().status == 'DRAFT'


def test_second_start_fails_and_keeps_first_grid(app_ctx):
    admin = make_user('admin')
    game = make_game(admin)

    start_game(game.id, admin.id)
    first_grid = Game.query.filter_by(id=game.id).first().grid_numbers

    assert_fails('failed-precondition', game.id, admin.id, 'Game is already started or completed.')
    assert Game.query.filter_by(id=game.id).first().grid_numbers == first_grid


def test_completed_game_cannot_start(app_ctx):
    admin = make_user('admin')
    game = make_game(admin, status='COMPLETED')
    assert_fails('failed-precondition', game.id, admin.id)


def test_require_full_reports_claimed_count(app_ctx):
    admin = make_user('admin')
    game = make_game(admin, rule='REQUIRE_FULL')
    fill(game, admin, 57)

    assert_fails('failed-precondition', game.id, admin.id, 'Grid not full. Only 57/100 squares taken.')
    locked = Game.query.filter_by(id=game.id).first()
    assert locked.status == 'DRAFT'
    assert locked.grid_numbers is None


def test_require_full_starts_with_every_square_taken(app_ctx):
    admin = make_user('admin')
    game = make_game(admin, rule='REQUIRE_FULL')
    fill(game, admin, 100)

    assert start_game(game.id, admin.id)['success'] is True


def test_return_to_pool_starts_with_empty_grid(app_ctx):
    admin = make_user('admin')
    game = make_game(admin, rule='RETURN_TO_POOL')
    assert start_game(game.id, admin.id)['success'] is True


def test_missing_rule_defaults_to_return_to_pool(app_ctx):
    admin = make_user('admin')
    game = make_game(admin, rule=None)
    assert start_game(game.id, admin.id)['success'] is True


def test_rows_and_columns_use_separate_draws(app_ctx):
    admin = make_user('admin')
    game = make_game(admin)
    draws = iter([0] * 9 + [n - 1 for n in range(10, 1, -1)])

    start_game(game.id, admin.id, randbelow=lambda n: next(draws))

    grid = Game.query.filter_by(id=game.id).first().grid
    assert grid['row'] == [1, 2, 3, 4, 5, 6, 7, 8, 9, 0]
    assert grid['col'] == list(range(10))


def test_lock_write_is_guarded_by_draft_status(app_ctx):
    admin = make_user('admin')
    game = make_game(admin)

    assert lock_game(game.id, list(range(10)), list(range(10))) is True
    # A second writer that passed its own DRAFT check must not overwrite the grid
    assert lock_game(game.id, [9] * 10, [9] * 10) is False
    assert Game.query.filter_by(id=game.id).first().grid == {
        'row': list(range(10)), 'col': list(range(10)),
    }
