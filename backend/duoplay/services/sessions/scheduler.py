import time
from typing import Set, Tuple

from duoplay import socketio
from duoplay.errors import SessionError


_scheduled_keys: Set[Tuple[str, str, float]] = set()


def schedule_followups(app, record) -> None:
    """Schedule the timers a freshly written session needs.

    - a pending memory card reset settles at its recorded ``reset_at``
    - an open rematch request is auto-declined after REMATCH_TIMEOUT_SEC
    """
    core = app.extensions['duoplay']
    deadline = core.rules_for(record.game_kind).next_deadline(record.payload)
    if deadline is not None:
        schedule_timer(app, ('settle', record.id, deadline), deadline, lambda c: c.get_session(record.id))

    rematch = record.rematch
    if rematch.requested_by and not rematch.linked_session_id and rematch.requested_at is not None:
        due = rematch.requested_at + core.rematches.timeout_sec
        schedule_timer(app, ('rematch', record.id, rematch.requested_at), due, lambda c: c.expire_rematch(record.id))


def schedule_timer(app, key, due_at, action) -> None:
    """Run ``action(core)`` once at ``due_at``.

    - No-ops in TESTING mode unless ENABLE_SCHEDULER_IN_TESTS is set
    - Ensures a single timer per key
    - The action re-reads the session, so a timer firing late or after the
      state moved on is harmless
    """
    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        return

    kind, session_id, _ = key
    if key in _scheduled_keys:
        app.logger.info(f"[timer-skip] session={session_id} kind={kind} already scheduled")
        return
    _scheduled_keys.add(key)

    core = app.extensions['duoplay']
    delay = max(0.0, due_at - core.clock())
    app.logger.info(f"[timer-set] session={session_id} kind={kind} delay={delay:.2f}s")

    def _worker(wait: float):
        try:
            hb = int(app.config.get('TIMER_HEARTBEAT_SEC', 0))
        except (TypeError, ValueError):
            hb = 0
        if hb and hb > 0:
            slept = 0.0
            while slept < wait:
                step = min(hb, wait - slept)
                time.sleep(step)
                slept += step
                app.logger.info(f"[timer-heartbeat] session={session_id} kind={kind} remaining={max(0.0, wait - slept):.1f}s")
        elif wait:
            time.sleep(wait)
        with app.app_context():
            _scheduled_keys.discard(key)
            app.logger.info(f"[timer-fire] session={session_id} kind={kind}")
            try:
                action(app.extensions['duoplay'])
            except SessionError as exc:
                app.logger.info(f"[timer-abort] session={session_id} kind={kind}: {exc}")

    if app.config.get('TESTING'):
        _worker(delay)
    else:
        socketio.start_background_task(_worker, delay)
