import logging
import random
import time
from dataclasses import dataclass
from typing import Optional

from duoplay.errors import ConditionFailed, Conflict, InvalidState, ValidationError
from duoplay.models import SessionStatus
from .machine import MAX_WRITE_ATTEMPTS


@dataclass(frozen=True)
class RematchResult:
    pending: bool = False
    linked_session_id: Optional[str] = None

    def to_dict(self):
        if self.linked_session_id:
            return {'linked_session_id': self.linked_session_id}
        return {'pending': self.pending}


class RematchCoordinator:
    """Two-phase rematch handshake: request, then accept.

    A finished session carries at most one rematch link, and the link is
    append-only. Every write is guarded by the rematch columns it read, so
    duplicate clicks, crossed requests and replayed accepts all converge
    on a single linked session.
    """

    def __init__(self, store, notifier, machine, clock=time.time, rng=None, timeout_sec=30, logger=None):
        self.store = store
        self.notifier = notifier
        self.machine = machine
        self.clock = clock
        self.rng = rng or random.Random()
        self.timeout_sec = timeout_sec
        self.logger = logger or logging.getLogger(__name__)

    @staticmethod
    def _require_seat(record, player_id):
        if not record.holds_seat(player_id):
            raise ValidationError('Only the two players of this game can use rematch')

    def request(self, session_id, requester_id):
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            record = self.expire_if_stale(self.store.get(session_id))
            self._require_seat(record, requester_id)
            if record.rematch.linked_session_id:
                return RematchResult(linked_session_id=record.rematch.linked_session_id)
            if record.status != SessionStatus.FINISHED:
                raise InvalidState('Rematch is only available once the game is finished')

            requested_by = record.rematch.requested_by
            if requested_by == requester_id:
                return RematchResult(pending=True)
            if requested_by:
                # Both players asked: the second request accepts the first
                return self.accept(session_id, requester_id)

            try:
                updated = self.store.update(
                    session_id,
                    {'rematch_requested_by': requester_id, 'rematch_requested_at': self.clock()},
                    condition={'rematch_requested_by': None, 'rematch_linked_session_id': None},
                )
            except ConditionFailed:
                self.logger.info(f"[rematch-retry] session={session_id} player={requester_id} attempt={attempt}")
                continue
            self.logger.info(f"[rematch-request] session={session_id} player={requester_id}")
            self.notifier.publish_session(updated, 'rematch_requested', requested_by=requester_id)
            return RematchResult(pending=True)
        raise Conflict('Rematch state kept changing; refresh and try again')

    def accept(self, session_id, accepter_id):
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            record = self.expire_if_stale(self.store.get(session_id))
            self._require_seat(record, accepter_id)
            if record.rematch.linked_session_id:
                return RematchResult(linked_session_id=record.rematch.linked_session_id)
            if record.status != SessionStatus.FINISHED:
                raise InvalidState('Rematch is only available once the game is finished')
            requested_by = record.rematch.requested_by
            if not requested_by:
                raise InvalidState('No rematch has been requested')
            if requested_by == accepter_id:
                raise ValidationError('You cannot accept your own rematch request')

            try:
                # New session and link land together or not at all
                with self.store.atomic():
                    rematch = self.store.create(self._rematch_fields(record))
                    linked = self.store.update(
                        session_id,
                        {
                            'rematch_linked_session_id': rematch.id,
                            'rematch_accepted': True,
                            'rematch_requested_by': None,
                            'rematch_requested_at': None,
                        },
                        condition={'rematch_linked_session_id': None, 'rematch_requested_by': requested_by},
                    )
            except ConditionFailed:
                self.logger.info(f"[rematch-accept-retry] session={session_id} player={accepter_id} attempt={attempt}")
                continue

            self.logger.info(f"[rematch-linked] session={session_id} rematch={rematch.id} by={accepter_id}")
            # Fan out on every topic of both sessions
            self.notifier.publish_session(linked, 'rematch_linked', linked_session_id=rematch.id)
            self.notifier.publish_session(rematch, 'state_update')
            return RematchResult(linked_session_id=rematch.id)
        raise Conflict('Rematch state kept changing; refresh and try again')

    def decline(self, session_id, decliner_id):
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            record = self.store.get(session_id)
            self._require_seat(record, decliner_id)
            requested_by = record.rematch.requested_by
            if not requested_by or record.rematch.linked_session_id:
                # Nothing pending; an existing link stays authoritative
                return record
            try:
                updated = self.store.update(
                    session_id,
                    {'rematch_requested_by': None, 'rematch_requested_at': None},
                    condition={'rematch_requested_by': requested_by, 'rematch_linked_session_id': None},
                )
            except ConditionFailed:
                continue
            self.logger.info(f"[rematch-decline] session={session_id} player={decliner_id}")
            self.notifier.publish_session(updated, 'rematch_declined', declined_by=decliner_id)
            return updated
        raise Conflict('Rematch state kept changing; refresh and try again')

    def expire_if_stale(self, record):
        """Auto-decline a request that has waited longer than the timeout."""
        rematch = record.rematch
        if not rematch.requested_by or rematch.linked_session_id or rematch.requested_at is None:
            return record
        if self.clock() - rematch.requested_at < self.timeout_sec:
            return record
        try:
            updated = self.store.update(
                record.id,
                {'rematch_requested_by': None, 'rematch_requested_at': None},
                condition={
                    'rematch_requested_by': rematch.requested_by,
                    'rematch_requested_at': rematch.requested_at,
                    'rematch_linked_session_id': None,
                },
            )
        except ConditionFailed:
            return self.store.get(record.id)
        self.logger.info(f"[rematch-expired] session={record.id} requested_by={rematch.requested_by}")
        self.notifier.publish_session(updated, 'rematch_expired', requested_by=rematch.requested_by)
        return updated

    def expire(self, session_id):
        return self.expire_if_stale(self.store.get(session_id))

    def expire_stale(self):
        cutoff = self.clock() - self.timeout_sec
        return [self.expire_if_stale(record) for record in self.store.query(rematch_requested_before=cutoff)]

    def _rematch_fields(self, finished):
        # Seats swap so the turn order rotates
        seat1, seat2 = finished.seat2, finished.seat1
        rules = self.machine.rules_for(finished.game_kind)
        return {
            'game_kind': finished.game_kind,
            'status': SessionStatus.PLAYING,
            'seat1_id': seat1.player_id,
            'seat1_nickname': seat1.nickname,
            'seat2_id': seat2.player_id,
            'seat2_nickname': seat2.nickname,
            'current_actor': rules.rematch_first_actor(finished, seat1.player_id, seat2.player_id),
            'payload': rules.initialize_payload(seat1.player_id, seat2.player_id, self.rng),
            'original_session_id': finished.id,
        }
