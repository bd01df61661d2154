"""Session Store: durable keyed storage for session rows.

All reads return ``SessionRecord`` snapshots. All writes go through
``update``, which is a single conditional ``UPDATE`` statement bumping the
row version, so a write based on a stale read can be detected instead of
silently overwriting newer state.
"""
import threading
import time
import uuid
from contextlib import contextmanager
from enum import Enum

from sqlalchemy import or_, select, update

from duoplay import db
from duoplay.errors import ConditionFailed, NotFound, ValidationError
from duoplay.models import GameSession

_WRITABLE = {
    'status', 'seat2_id', 'seat2_nickname', 'current_actor', 'payload', 'winner_id',
    'rematch_requested_by', 'rematch_requested_at', 'rematch_linked_session_id',
    'rematch_accepted', 'original_session_id', 'last_move_at',
}


def _column_value(value):
    return value.value if isinstance(value, Enum) else value


class SessionStore:
    def __init__(self, session=None, conditional_writes=True, clock=time.time):
        self._session = session
        self.conditional_writes = conditional_writes
        self.clock = clock
        self._local = threading.local()

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    @property
    def _depth(self):
        return getattr(self._local, 'depth', 0)

    @_depth.setter
    def _depth(self, value):
        self._local.depth = value

    @contextmanager
    def atomic(self):
        """Group several writes into one transaction."""
        self._depth += 1
        try:
            yield self
        except Exception:
            self._depth -= 1
            if self._depth == 0:
                self.session.rollback()
            raise
        self._depth -= 1
        if self._depth == 0:
            self.session.commit()

    def _commit(self):
        if self._depth == 0:
            self.session.commit()
        else:
            self.session.flush()

    def _fetch(self, session_id):
        return self.session.execute(
            select(GameSession)
            .where(GameSession.id == str(session_id))
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get(self, session_id):
        if not session_id:
            raise NotFound('Session id is required')
        row = self._fetch(session_id)
        if row is None:
            raise NotFound(f'Session {session_id} not found')
        return row.to_record()

    def create(self, fields):
        now = self.clock()
        values = {k: _column_value(v) for k, v in fields.items()}
        values.setdefault('created_at', now)
        values.setdefault('last_move_at', now)
        values.setdefault('payload', {})
        values['id'] = str(uuid.uuid4())
        values['version'] = 1
        row = GameSession(**values)
        self.session.add(row)
        self._commit()
        return row.to_record()

    def update(self, session_id, fields, expected_version=None, condition=None):
        """Write ``fields`` and bump the version.

        ``expected_version`` makes the write conditional on the version that
        was read (ignored in last-write-wins mode). ``condition`` adds column
        equality checks that always apply. Raises ``ConditionFailed`` when
        the row exists but a check did not match.
        """
        values = {k: _column_value(v) for k, v in fields.items()}
        unknown = set(values) - _WRITABLE
        if unknown:
            raise ValidationError(f"Fields not writable: {', '.join(sorted(unknown))}")

        stmt = update(GameSession).where(GameSession.id == str(session_id))
        if expected_version is not None and self.conditional_writes:
            stmt = stmt.where(GameSession.version == expected_version)

        linked = values.get('rematch_linked_session_id')
        if linked is not None:
            if linked == session_id:
                raise ValidationError('A session cannot be linked to itself')
            # Append-only pointer: only set once, never changed
            stmt = stmt.where(or_(
                GameSession.rematch_linked_session_id.is_(None),
                GameSession.rematch_linked_session_id == linked,
            ))
        elif 'rematch_linked_session_id' in values:
            raise ValidationError('A rematch link cannot be cleared')

        for column, expected in (condition or {}).items():
            attr = getattr(GameSession, column)
            expected = _column_value(expected)
            stmt = stmt.where(attr.is_(None) if expected is None else attr == expected)

        stmt = stmt.values(version=GameSession.version + 1, **values).execution_options(synchronize_session=False)
        result = self.session.execute(stmt)
        if result.rowcount == 0:
            if self._depth == 0:
                self.session.rollback()
            if self._fetch(session_id) is None:
                raise NotFound(f'Session {session_id} not found')
            raise ConditionFailed(f'Session {session_id} changed since version {expected_version}')
        self._commit()
        return self.get(session_id)

    def query(self, game_kind=None, status=None, rematch_requested_before=None, newest_first=True):
        stmt = select(GameSession)
        if game_kind is not None:
            stmt = stmt.where(GameSession.game_kind == _column_value(game_kind))
        if status is not None:
            stmt = stmt.where(GameSession.status == _column_value(status))
        if rematch_requested_before is not None:
            stmt = stmt.where(
                GameSession.rematch_requested_by.is_not(None),
                GameSession.rematch_linked_session_id.is_(None),
                GameSession.rematch_requested_at <= rematch_requested_before,
            )
        order = GameSession.created_at.desc() if newest_first else GameSession.created_at.asc()
        rows = self.session.execute(
            stmt.order_by(order).execution_options(populate_existing=True)
        ).scalars().all()
        return [row.to_record() for row in rows]
