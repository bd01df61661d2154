import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from duoplay import db


class GameKind(str, Enum):
    HANGMAN = 'hangman'
    MEMORY = 'memory'
    TIC_TAC_TOE = 'tic_tac_toe'


class SessionStatus(str, Enum):
    WAITING = 'waiting'
    PLAYING = 'playing'
    FINISHED = 'finished'


# Legal forward steps; anything else is a regression or a skip.
STATUS_ORDER = (SessionStatus.WAITING, SessionStatus.PLAYING, SessionStatus.FINISHED)


class GameSession(db.Model):
    __tablename__ = 'game_session'
    id = db.Column(db.String(36), primary_key=True)
    game_kind = db.Column(db.String(32), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=SessionStatus.WAITING.value, index=True)
    seat1_id = db.Column(db.String(64), nullable=False)
    seat1_nickname = db.Column(db.String(32), nullable=False)
    seat2_id = db.Column(db.String(64), nullable=True)
    seat2_nickname = db.Column(db.String(32), nullable=True)
    current_actor = db.Column(db.String(64), nullable=True)
    payload = db.Column(db.JSON, nullable=False, default=dict)
    winner_id = db.Column(db.String(64), nullable=True)
    rematch_requested_by = db.Column(db.String(64), nullable=True)
    rematch_requested_at = db.Column(db.Float, nullable=True)
    rematch_linked_session_id = db.Column(db.String(36), nullable=True)
    rematch_accepted = db.Column(db.Boolean, nullable=False, default=False)
    original_session_id = db.Column(db.String(36), nullable=True)
    created_at = db.Column(db.Float, nullable=False)
    last_move_at = db.Column(db.Float, nullable=False)
    version = db.Column(db.Integer, nullable=False, default=1)

    def to_record(self):
        seat2 = Seat(self.seat2_id, self.seat2_nickname) if self.seat2_id else None
        return SessionRecord(
            id=self.id,
            game_kind=GameKind(self.game_kind),
            status=SessionStatus(self.status),
            seat1=Seat(self.seat1_id, self.seat1_nickname),
            seat2=seat2,
            current_actor=self.current_actor,
            payload=copy.deepcopy(self.payload or {}),
            winner_id=self.winner_id,
            rematch=RematchState(
                requested_by=self.rematch_requested_by,
                requested_at=self.rematch_requested_at,
                linked_session_id=self.rematch_linked_session_id,
                accepted=bool(self.rematch_accepted),
            ),
            original_session_id=self.original_session_id,
            created_at=self.created_at,
            last_move_at=self.last_move_at,
            version=self.version,
        )


@dataclass(frozen=True)
class Seat:
    player_id: str
    nickname: str

    def to_dict(self):
        return {'player_id': self.player_id, 'nickname': self.nickname}


@dataclass(frozen=True)
class RematchState:
    requested_by: Optional[str] = None
    requested_at: Optional[float] = None
    linked_session_id: Optional[str] = None
    accepted: bool = False

    def to_dict(self):
        return {
            'requested_by': self.requested_by,
            'requested_at': self.requested_at,
            'linked_session_id': self.linked_session_id,
            'accepted': self.accepted,
        }


@dataclass(frozen=True)
class SessionRecord:
    """Immutable snapshot of one session row as read from the store."""
    id: str
    game_kind: GameKind
    status: SessionStatus
    seat1: Seat
    seat2: Optional[Seat]
    current_actor: Optional[str]
    payload: Dict[str, Any] = field(default_factory=dict)
    winner_id: Optional[str] = None
    rematch: RematchState = field(default_factory=RematchState)
    original_session_id: Optional[str] = None
    created_at: float = 0.0
    last_move_at: float = 0.0
    version: int = 1

    @property
    def seats(self) -> Tuple[str, Optional[str]]:
        return (self.seat1.player_id, self.seat2.player_id if self.seat2 else None)

    def holds_seat(self, player_id) -> bool:
        return bool(player_id) and player_id in self.seats

    def opponent_of(self, player_id) -> Optional[str]:
        seat1_id, seat2_id = self.seats
        if player_id == seat1_id:
            return seat2_id
        if player_id == seat2_id:
            return seat1_id
        return None

    def to_dict(self):
        return {
            'id': self.id,
            'game_kind': self.game_kind.value,
            'status': self.status.value,
            'seat1': self.seat1.to_dict(),
            'seat2': self.seat2.to_dict() if self.seat2 else None,
            'current_actor': self.current_actor,
            'payload': self.payload,
            'winner_id': self.winner_id,
            'rematch': self.rematch.to_dict(),
            'original_session_id': self.original_session_id,
            'created_at': self.created_at,
            'last_move_at': self.last_move_at,
            'version': self.version,
        }

    @classmethod
    def from_dict(cls, data):
        seat2 = data.get('seat2')
        rematch = data.get('rematch') or {}
        return cls(
            id=data['id'],
            game_kind=GameKind(data['game_kind']),
            status=SessionStatus(data['status']),
            seat1=Seat(data['seat1']['player_id'], data['seat1']['nickname']),
            seat2=Seat(seat2['player_id'], seat2['nickname']) if seat2 else None,
            current_actor=data.get('current_actor'),
            payload=data.get('payload') or {},
            winner_id=data.get('winner_id'),
            rematch=RematchState(
                requested_by=rematch.get('requested_by'),
                requested_at=rematch.get('requested_at'),
                linked_session_id=rematch.get('linked_session_id'),
                accepted=bool(rematch.get('accepted')),
            ),
            original_session_id=data.get('original_session_id'),
            created_at=data.get('created_at') or 0.0,
            last_move_at=data.get('last_move_at') or 0.0,
            version=int(data.get('version') or 0),
        )
