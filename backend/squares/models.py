from squares import db, bcrypt
from flask_login import UserMixin
import json
import uuid

STATUS_DRAFT = 'DRAFT'
STATUS_LOCKED = 'LOCKED'
STATUS_COMPLETED = 'COMPLETED'

RULE_RETURN_TO_POOL = 'RETURN_TO_POOL'
RULE_REQUIRE_FULL = 'REQUIRE_FULL'
UNCLAIMED_RULES = (RULE_RETURN_TO_POOL, RULE_REQUIRE_FULL)

PERIODS = ('q1', 'half', 'q3', 'final')
GRID_SIZE = 100


def _loads(raw, default=None):
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return default


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    display_name = db.Column(db.String(128), nullable=True)
    password_hash = db.Column(db.String(256), nullable=False)
    is_super_admin = db.Column(db.Boolean, default=False, nullable=False)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    @property
    def name(self):
        return self.display_name or self.username

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'display_name': self.name,
            'is_super_admin': bool(self.is_super_admin),
        }


def generate_game_id():
    return uuid.uuid4().hex


class Game(db.Model):
    __tablename__ = 'game'
    id = db.Column(db.String(32), primary_key=True, default=generate_game_id)
    admin_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=STATUS_DRAFT)  # DRAFT, LOCKED, COMPLETED
    # Payout configuration
    price = db.Column(db.Float, nullable=False, default=0)
    payouts = db.Column(db.Text, nullable=False)  # JSON-encoded {q1, half, q3, final} percentages
    unclaimed_rule = db.Column(db.String(32), nullable=True)
    max_squares = db.Column(db.Integer, nullable=True)
    track_payments = db.Column(db.Boolean, default=True, nullable=False)
    teams = db.Column(db.Text, nullable=True)  # JSON-encoded {home, away, home_color, away_color}
    # Written once, by the start transition
    grid_numbers = db.Column(db.Text, nullable=True)  # JSON-encoded {row: [...], col: [...]}
    scores = db.Column(db.Text, nullable=True)  # JSON-encoded {period: {home, away}}
    big_game_id = db.Column(db.String(32), nullable=True, index=True)
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    started_at = db.Column(db.DateTime, nullable=True)

    admin = db.relationship('User')
    squares = db.relationship('Square', backref='game', lazy='dynamic')

    @property
    def grid(self):
        return _loads(self.grid_numbers)

    def config_dict(self):
        return {
            'price': self.price or 0,
            'payouts': _loads(self.payouts, {}),
            'rules': {
                'unclaimed_rule': self.unclaimed_rule,
                'max_squares': self.max_squares,
                'track_payments': bool(self.track_payments),
            },
            'teams': _loads(self.teams, {}),
        }

    def to_dict(self, scores=None):
        """Render the game as the document clients consume.

        ``scores`` overrides the stored scores, e.g. with a shared big game
        record resolved by the caller.
        """
        return {
            'id': self.id,
            'admin_id': self.admin_id,
            'name': self.name,
            'status': self.status,
            'config': self.config_dict(),
            'grid_numbers': self.grid,
            'scores': scores if scores is not None else _loads(self.scores),
            'big_game_id': self.big_game_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'started_at': self.started_at.isoformat() if self.started_at else None,
        }


class Square(db.Model):
    __tablename__ = 'square'
    game_id = db.Column(db.String(32), db.ForeignKey('game.id'), primary_key=True)
    # row * 10 + col
    position = db.Column(db.Integer, primary_key=True, autoincrement=False)
    owner_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True, index=True)
    owner_name = db.Column(db.String(128), nullable=True)
    is_paid = db.Column(db.Boolean, default=False, nullable=False)

    def to_dict(self):
        return {
            'id': str(self.position),
            'owner_id': self.owner_id,
            'owner_name': self.owner_name,
            'is_paid': bool(self.is_paid),
        }


class GlobalScores(db.Model):
    """Scores shared by every game pointing at the same big game id."""
    __tablename__ = 'global_scores'
    big_game_id = db.Column(db.String(32), primary_key=True)
    scores = db.Column(db.Text, nullable=False)
    updated_at = db.Column(db.DateTime, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self):
        return _loads(self.scores, {})
