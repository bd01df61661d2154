import pytest

import conftest
from conftest import ALICE, BOB, FakeClock, make_app
from duoplay import db
from duoplay.services.sessions import scheduler


class SchedulerConfig(conftest.TestConfig):
    ENABLE_SCHEDULER_IN_TESTS = True
    REMATCH_TIMEOUT_SEC = 0
    MEMORY_RESET_DELAY_MS = 0


@pytest.fixture()
def timed_app():
    application = make_app(FakeClock(), SchedulerConfig)
    with application.app_context():
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()
    scheduler._scheduled_keys.clear()


@pytest.fixture()
def timed_client(timed_app):
    return timed_app.test_client()


def _start(client, game_kind):
    created = client.post('/api/sessions', json={'game_kind': game_kind, 'player': ALICE}).get_json()
    return client.post(f"/api/sessions/{created['id']}/join", json={'player': BOB}).get_json()


def test_scheduler_is_off_in_plain_tests(client):
    sid = _start(client, 'tic_tac_toe')['id']
    for player, position in ((ALICE, 0), (BOB, 3), (ALICE, 1), (BOB, 4), (ALICE, 2)):
        client.post(f'/api/sessions/{sid}/moves', json={'player_id': player['id'], 'move': {'position': position}})
    client.post(f'/api/sessions/{sid}/rematch', json={'player_id': ALICE['id']})
    assert not scheduler._scheduled_keys
    assert client.get(f'/api/sessions/{sid}').get_json()['rematch']['requested_by'] == ALICE['id']


def test_rematch_timer_declines_unanswered_request(timed_client):
    sid = _start(timed_client, 'tic_tac_toe')['id']
    for player, position in ((ALICE, 0), (BOB, 3), (ALICE, 1), (BOB, 4), (ALICE, 2)):
        timed_client.post(f'/api/sessions/{sid}/moves', json={'player_id': player['id'], 'move': {'position': position}})

    res = timed_client.post(f'/api/sessions/{sid}/rematch', json={'player_id': ALICE['id']})
    assert res.get_json() == {'pending': True}

    session = timed_client.get(f'/api/sessions/{sid}').get_json()
    assert session['rematch']['requested_by'] is None
    assert session['rematch']['linked_session_id'] is None
    assert not scheduler._scheduled_keys


def test_memory_reset_timer_turns_cards_back(timed_app, timed_client):
    data = _start(timed_client, 'memory')
    sid = data['id']
    by_icon = {}
    for card in data['payload']['cards']:
        by_icon.setdefault(card['icon'], []).append(card['id'])
    a, b = (ids[0] for ids in list(by_icon.values())[:2])

    timed_client.post(f'/api/sessions/{sid}/moves', json={'player_id': ALICE['id'], 'move': {'card_id': a}})
    res = timed_client.post(f'/api/sessions/{sid}/moves', json={'player_id': ALICE['id'], 'move': {'card_id': b}})
    assert res.get_json()['payload']['reset_pending'] is True

    # The timer already settled the stored row
    stored = timed_app.extensions['duoplay'].store.get(sid)
    assert stored.payload['reset_pending'] is False
    assert not stored.payload['cards'][a]['is_flipped']
    assert stored.version == res.get_json()['version'] + 1
