from flask_socketio import join_room, leave_room, emit
from squares import socketio


def game_room(game_id: str) -> str:
    return f"game:{game_id}"


def notify_game_update(game_id: str) -> None:
    """Tell clients watching a game that its game, squares or scores changed.

    Clients respond by re-fetching standings, which are recomputed from
    scratch on every request.
    """
    socketio.emit('state_update', {'game_id': game_id}, to=game_room(game_id), namespace='/ws')


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_join_game(data):
    game_id = (data or {}).get('game_id')
    if not game_id:
        emit('error', {'message': 'game_id is required'})
        return
    room = game_room(game_id)
    join_room(room)
    emit('joined', {'room': room})


def handle_leave_game(data):
    game_id = (data or {}).get('game_id')
    if not game_id:
        emit('error', {'message': 'game_id is required'})
        return
    room = game_room(game_id)
    leave_room(room)
    emit('left', {'room': room})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    socketio.on_event('connect', handle_connect, namespace='/ws')
    socketio.on_event('join_game', handle_join_game, namespace='/ws')
    socketio.on_event('leave_game', handle_leave_game, namespace='/ws')
    socketio.on_event('ping', handle_ping, namespace='/ws')

    if testing:
        # Test-only mirror on default namespace
        socketio.on_event('connect', handle_connect, namespace='/')
        socketio.on_event('join_game', handle_join_game, namespace='/')
        socketio.on_event('leave_game', handle_leave_game, namespace='/')
        socketio.on_event('ping', handle_ping, namespace='/')
