import logging
import time

from duoplay.errors import ConditionFailed, Conflict, InvalidState, StaleMove, ValidationError
from duoplay.models import SessionStatus
from .machine import check_transition


class TurnArbiter:
    """Accepts exactly one move per ply.

    Every decision is taken against a fresh read of the store, never the
    caller's cached copy, and the write is conditional on the version that
    was read. A write that loses the race fails with ``Conflict``.
    """

    def __init__(self, store, notifier, machine, clock=time.time, logger=None):
        self.store = store
        self.notifier = notifier
        self.machine = machine
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)

    def submit_move(self, session_id, actor_id, move, expected_version=None):
        if not actor_id:
            raise ValidationError('Actor id is required')
        if move is None:
            raise ValidationError('Move data is required')

        record = self.store.get(session_id)
        if record.status != SessionStatus.PLAYING:
            raise InvalidState(f'This game is {record.status.value}; moves are not accepted')
        if actor_id != record.current_actor:
            raise StaleMove('It is not your turn')
        if expected_version is not None and int(expected_version) != record.version:
            raise Conflict(f'Session is at version {record.version}, not {expected_version}; re-read and retry')

        rules = self.machine.rules_for(record.game_kind)
        now = self.clock()
        outcome = rules.apply_move(record.payload, actor_id, record.seats, move, now)

        fields = {
            'payload': outcome.payload,
            'current_actor': outcome.next_actor,
            'last_move_at': now,
        }
        if outcome.terminal:
            check_transition(record.status, SessionStatus.FINISHED)
            # Result is written with the move itself, never afterwards
            fields['status'] = SessionStatus.FINISHED
            fields['winner_id'] = outcome.winner_id

        try:
            updated = self.store.update(session_id, fields, expected_version=record.version)
        except ConditionFailed:
            self.logger.info(f"[move-conflict] session={session_id} actor={actor_id} version={record.version}")
            raise Conflict('Another move was accepted first; re-read and retry')

        self.logger.info(
            f"[move] session={session_id} actor={actor_id} next={updated.current_actor} "
            f"status={updated.status.value} version={updated.version}"
        )
        self.notifier.publish_session(updated, 'state_update')
        return updated

    def settle(self, record):
        """Persist any scheduled payload effect that has come due."""
        rules = self.machine.rules_for(record.game_kind)
        settled = rules.settle(record.payload, self.clock())
        if settled is None:
            return record
        try:
            updated = self.store.update(
                record.id,
                {'payload': settled},
                expected_version=record.version,
                condition={'last_move_at': record.last_move_at},
            )
        except ConditionFailed:
            # Someone else settled it (or moved) first; their write wins
            return self.store.get(record.id)
        self.logger.info(f"[settle] session={record.id} version={updated.version}")
        self.notifier.publish_session(updated, 'state_update')
        return updated
