import logging
import random
import time

from duoplay.notifier import ChangeNotifier, session_topic
from duoplay.services.games import build_rules
from duoplay.store import SessionStore
from .arbiter import TurnArbiter
from .machine import SessionMachine
from .rematch import RematchCoordinator


class SessionCore:
    """The operations the game pages call, for every game kind.

    One instance is owned by the Flask app (``app.extensions['duoplay']``)
    and shares a store, a notifier and the rules registry between the
    state machine, the turn arbiter and the rematch coordinator.
    """

    def __init__(self, store, notifier, rules, clock=time.time, rng=None, rematch_timeout_sec=30, logger=None):
        self.store = store
        self.notifier = notifier
        self.rules = rules
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)
        rng = rng or random.Random()
        self.machine = SessionMachine(store, notifier, rules, clock=clock, rng=rng, logger=self.logger)
        self.arbiter = TurnArbiter(store, notifier, self.machine, clock=clock, logger=self.logger)
        self.rematches = RematchCoordinator(
            store, notifier, self.machine,
            clock=clock, rng=rng, timeout_sec=rematch_timeout_sec, logger=self.logger,
        )

    @classmethod
    def from_app(cls, app, socketio=None, clock=time.time, rng=None):
        cfg = app.config
        store = SessionStore(conditional_writes=bool(cfg.get('CONDITIONAL_WRITES', True)), clock=clock)
        notifier = ChangeNotifier(socketio, namespace='/ws', logger=app.logger)
        if not store.conditional_writes:
            app.logger.warning('[config] conditional writes disabled; concurrent moves resolve last-write-wins')
        return cls(
            store, notifier, build_rules(cfg),
            clock=clock, rng=rng,
            rematch_timeout_sec=int(cfg.get('REMATCH_TIMEOUT_SEC', 30)),
            logger=app.logger,
        )

    def rules_for(self, game_kind):
        return self.machine.rules_for(game_kind)

    def create_session(self, game_kind, creator):
        return self.machine.create(game_kind, creator)

    def join_session(self, session_id, joiner):
        return self.machine.join(session_id, joiner)

    def list_open_sessions(self, game_kind):
        return self.machine.list_open(game_kind)

    def get_session(self, session_id):
        """Authoritative read, with due timers (card reset, rematch timeout) applied."""
        record = self.store.get(session_id)
        record = self.rematches.expire_if_stale(record)
        return self.arbiter.settle(record)

    def submit_move(self, session_id, actor_id, move, expected_version=None):
        return self.arbiter.submit_move(session_id, actor_id, move, expected_version=expected_version)

    def request_rematch(self, session_id, requester_id):
        return self.rematches.request(session_id, requester_id)

    def accept_rematch(self, session_id, accepter_id):
        return self.rematches.accept(session_id, accepter_id)

    def decline_rematch(self, session_id, decliner_id):
        self.rematches.decline(session_id, decliner_id)

    def expire_rematch(self, session_id):
        return self.rematches.expire(session_id)

    def expire_stale_rematches(self):
        return self.rematches.expire_stale()

    def subscribe(self, session_id, on_update):
        """Call ``on_update(event)`` for every change to the session."""
        return self.notifier.subscribe(session_topic(session_id), on_update)
