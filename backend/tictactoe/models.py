from tictactoe import db
from datetime import datetime, timezone
import json
import uuid


def generate_record_id():
    """Generate an opaque, unique session/record id."""
    return uuid.uuid4().hex


def _utcnow():
    return datetime.now(timezone.utc)


class GameRecord(db.Model):
    __tablename__ = 'game_record'
    id = db.Column(db.String(32), primary_key=True, default=generate_record_id)
    status = db.Column(db.String(16), default='waiting', nullable=False)  # waiting, in_progress, finished
    result = db.Column(db.String(16), nullable=True)  # first_wins, second_wins, draw
    players = db.Column(db.Text, nullable=True)  # JSON-encoded list of {name, role}
    moves = db.Column(db.Text, nullable=True)  # JSON-encoded list of {role, cell}
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    def __init__(self, **kwargs):
        super(GameRecord, self).__init__(**kwargs)
        if not self.id:
            self.id = generate_record_id()

    def to_dict(self):
        return {
            'id': self.id,
            'status': self.status,
            'result': self.result,
            'players': json.loads(self.players) if self.players else [],
            'moves': json.loads(self.moves) if self.moves else [],
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
