import logging
import random
import time

from duoplay.errors import AlreadyJoined, ConditionFailed, Conflict, InvalidState, ValidationError
from duoplay.models import STATUS_ORDER, GameKind, Seat, SessionStatus

MAX_WRITE_ATTEMPTS = 3
NICKNAME_MIN = 3
NICKNAME_MAX = 15
PLAYER_ID_MAX = 64


def parse_game_kind(value) -> GameKind:
    try:
        return GameKind(getattr(value, 'value', value))
    except ValueError:
        kinds = ', '.join(k.value for k in GameKind)
        raise ValidationError(f'Unknown game kind {value!r}; expected one of {kinds}')


def parse_player(data) -> Seat:
    """Validate a ``{id, nickname}`` identity."""
    if isinstance(data, Seat):
        data = {'id': data.player_id, 'nickname': data.nickname}
    if not isinstance(data, dict):
        raise ValidationError('Player identity is required')
    player_id = data.get('id')
    nickname = data.get('nickname')
    if not isinstance(player_id, str) or not player_id.strip():
        raise ValidationError('Player id is required')
    if len(player_id) > PLAYER_ID_MAX:
        raise ValidationError(f'Player id must be at most {PLAYER_ID_MAX} characters')
    if not isinstance(nickname, str):
        raise ValidationError('Nickname is required')
    nickname = nickname.strip()
    if not NICKNAME_MIN <= len(nickname) <= NICKNAME_MAX:
        raise ValidationError(f'Nickname must be {NICKNAME_MIN} to {NICKNAME_MAX} characters')
    return Seat(player_id.strip(), nickname)


def check_transition(current, target) -> None:
    """Status only ever moves one step forward."""
    if current == target:
        return
    if STATUS_ORDER.index(target) != STATUS_ORDER.index(current) + 1:
        raise InvalidState(f'Cannot move a session from {current.value} to {target.value}')


class SessionMachine:
    """Lifecycle of a session: create and join.

    Moves are the turn arbiter's business; rematches belong to the rematch
    coordinator. All three share the store, notifier and rules registry.
    """

    def __init__(self, store, notifier, rules, clock=time.time, rng=None, logger=None):
        self.store = store
        self.notifier = notifier
        self.rules = rules
        self.clock = clock
        self.rng = rng or random.Random()
        self.logger = logger or logging.getLogger(__name__)

    def rules_for(self, game_kind):
        kind = parse_game_kind(game_kind)
        try:
            return self.rules[kind]
        except KeyError:
            raise ValidationError(f'No rules registered for {kind.value}')

    def create(self, game_kind, creator):
        kind = parse_game_kind(game_kind)
        self.rules_for(kind)
        player = parse_player(creator)
        record = self.store.create({
            'game_kind': kind,
            'status': SessionStatus.WAITING,
            'seat1_id': player.player_id,
            'seat1_nickname': player.nickname,
            'current_actor': None,
            'payload': {},
        })
        self.logger.info(f"[create] session={record.id} kind={kind.value} player={player.player_id}")
        self.notifier.publish_session(record, 'state_update')
        return record

    def join(self, session_id, joiner):
        player = parse_player(joiner)
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            record = self.store.get(session_id)
            if record.seat2 is not None:
                raise AlreadyJoined('This game already has two players')
            if record.status != SessionStatus.WAITING:
                raise InvalidState(f'This game is {record.status.value}, not waiting for players')
            if player.player_id == record.seat1.player_id:
                raise AlreadyJoined('You already hold a seat in this game')
            check_transition(record.status, SessionStatus.PLAYING)

            # Payload is initialized in the same write that fills the seat, so
            # no reader ever sees a playing session without a board
            payload = self.rules_for(record.game_kind).initialize_payload(
                record.seat1.player_id, player.player_id, self.rng
            )
            try:
                updated = self.store.update(
                    session_id,
                    {
                        'seat2_id': player.player_id,
                        'seat2_nickname': player.nickname,
                        'status': SessionStatus.PLAYING,
                        'current_actor': record.seat1.player_id,
                        'payload': payload,
                        'last_move_at': self.clock(),
                    },
                    expected_version=record.version,
                    condition={'status': SessionStatus.WAITING, 'seat2_id': None},
                )
            except ConditionFailed:
                self.logger.info(f"[join-retry] session={session_id} player={player.player_id} attempt={attempt}")
                continue
            self.logger.info(f"[join] session={session_id} player={player.player_id} starts={updated.current_actor}")
            self.notifier.publish_session(updated, 'state_update')
            return updated
        raise Conflict('The game changed while joining; refresh and try again')

    def list_open(self, game_kind):
        kind = parse_game_kind(game_kind)
        return self.store.query(game_kind=kind, status=SessionStatus.WAITING)
