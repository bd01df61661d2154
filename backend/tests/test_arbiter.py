import random

import pytest

from conftest import ALICE, BOB, CAROL
from duoplay.errors import Conflict, IllegalMove, InvalidState, StaleMove, ValidationError
from duoplay.models import GameKind, SessionStatus
from duoplay.notifier import ChangeNotifier
from duoplay.services.games import build_rules
from duoplay.services.sessions.core import SessionCore
from duoplay.store import SessionStore


class RacingStore(SessionStore):
    """Lets another writer slip in right before the next update."""

    race = None

    def update(self, session_id, fields, expected_version=None, condition=None):
        race, self.race = self.race, None
        if race is not None:
            race(session_id)
        return super().update(session_id, fields, expected_version=expected_version, condition=condition)


def _racing_core(clock, conditional_writes=True):
    store = RacingStore(conditional_writes=conditional_writes, clock=clock)
    return SessionCore(store, ChangeNotifier(), build_rules({}), clock=clock, rng=random.Random(5))


def test_move_by_non_current_actor_is_stale_and_changes_nothing(core, start_game):
    record = start_game()
    with pytest.raises(StaleMove):
        core.submit_move(record.id, BOB['id'], {'position': 0})
    with pytest.raises(StaleMove):
        core.submit_move(record.id, CAROL['id'], {'position': 0})
    after = core.get_session(record.id)
    assert after.version == record.version
    assert after.payload == record.payload


def test_move_requires_actor_and_move(core, start_game):
    record = start_game()
    with pytest.raises(ValidationError):
        core.submit_move(record.id, '', {'position': 0})
    with pytest.raises(ValidationError):
        core.submit_move(record.id, ALICE['id'], None)


def test_move_before_join_is_invalid_state(core):
    created = core.create_session(GameKind.TIC_TAC_TOE, ALICE)
    with pytest.raises(InvalidState):
        core.submit_move(created.id, ALICE['id'], {'position': 0})


def test_expected_version_mismatch_is_conflict(core, start_game):
    record = start_game()
    with pytest.raises(Conflict):
        core.submit_move(record.id, ALICE['id'], {'position': 0}, expected_version=record.version - 1)
    moved = core.submit_move(record.id, ALICE['id'], {'position': 0}, expected_version=record.version)
    assert moved.version == record.version + 1


def test_illegal_move_does_not_write(core, start_game):
    record = start_game()
    core.submit_move(record.id, ALICE['id'], {'position': 4})
    with pytest.raises(IllegalMove):
        core.submit_move(record.id, BOB['id'], {'position': 4})
    assert core.get_session(record.id).current_actor == BOB['id']


def test_lost_race_is_conflict(flask_app, clock):
    core = _racing_core(clock)
    created = core.create_session(GameKind.TIC_TAC_TOE, ALICE)
    record = core.join_session(created.id, BOB)

    core.store.race = lambda sid: SessionStore(clock=clock).update(sid, {'last_move_at': clock() + 1})
    with pytest.raises(Conflict):
        core.submit_move(record.id, ALICE['id'], {'position': 0})
    after = core.store.get(record.id)
    assert after.payload['board'] == [''] * 9
    assert after.current_actor == ALICE['id']


def test_last_write_wins_mode_accepts_lost_race(flask_app, clock):
    core = _racing_core(clock, conditional_writes=False)
    created = core.create_session(GameKind.TIC_TAC_TOE, ALICE)
    record = core.join_session(created.id, BOB)

    core.store.race = lambda sid: SessionStore(clock=clock).update(sid, {'last_move_at': clock() + 1})
    moved = core.submit_move(record.id, ALICE['id'], {'position': 0})
    assert moved.payload['board'][0] == 'X'
    assert moved.version == record.version + 2


def test_terminal_move_writes_result_with_the_move(core, start_game):
    record = start_game()
    for actor, position in ((ALICE, 0), (BOB, 3), (ALICE, 1), (BOB, 4)):
        core.submit_move(record.id, actor['id'], {'position': position})
    final = core.submit_move(record.id, ALICE['id'], {'position': 2})
    assert final.status == SessionStatus.FINISHED
    assert final.winner_id == ALICE['id']
    with pytest.raises(InvalidState):
        core.submit_move(record.id, BOB['id'], {'position': 8})


def test_draw_has_no_winner(core, start_game):
    record = start_game()
    # X O X / X O O / O X X
    moves = ((ALICE, 0), (BOB, 1), (ALICE, 2), (BOB, 4), (ALICE, 3), (BOB, 5), (ALICE, 7), (BOB, 6), (ALICE, 8))
    for actor, position in moves:
        final = core.submit_move(record.id, actor['id'], {'position': position})
    assert final.status == SessionStatus.FINISHED
    assert final.winner_id is None


@pytest.mark.parametrize('seed', range(5))
def test_tic_tac_toe_turns_strictly_alternate(core, start_game, seed):
    rng = random.Random(seed)
    record = start_game()
    actors = []
    while record.status == SessionStatus.PLAYING:
        free = [i for i, cell in enumerate(record.payload['board']) if not cell]
        waiting = record.opponent_of(record.current_actor)
        with pytest.raises(StaleMove):
            core.submit_move(record.id, waiting, {'position': free[0]})
        actors.append(record.current_actor)
        record = core.submit_move(record.id, record.current_actor, {'position': rng.choice(free)})
    assert all(a != b for a, b in zip(actors, actors[1:]))


@pytest.mark.parametrize('seed', range(3))
def test_memory_turn_only_changes_on_mismatch(core, start_game, clock, seed):
    rng = random.Random(seed)
    record = start_game(GameKind.MEMORY)
    while record.status == SessionStatus.PLAYING:
        hidden = [c['id'] for c in record.payload['cards'] if not c['is_flipped'] and not c['is_matched']]
        actor = record.current_actor
        before = len(record.payload['matches'])
        record = core.submit_move(record.id, actor, {'card_id': rng.choice(hidden)})
        if record.payload['selection']:
            assert record.current_actor == actor
        elif len(record.payload['matches']) > before:
            assert record.current_actor == actor
        else:
            assert record.current_actor == record.opponent_of(actor)
            clock.advance(2)
            record = core.get_session(record.id)
            assert record.payload['reset_pending'] is False
