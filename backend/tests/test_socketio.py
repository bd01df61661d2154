from conftest import ALICE, BOB


def _names(received):
    return [pkt['name'] for pkt in received]


def _start(client):
    created = client.post('/api/sessions', json={'game_kind': 'tic_tac_toe', 'player': ALICE}).get_json()
    return client.post(f"/api/sessions/{created['id']}/join", json={'player': BOB}).get_json()


def test_socket_connect_and_ping(sio_client):
    assert sio_client.is_connected('/ws')
    received = sio_client.get_received('/ws')
    assert 'connected' in _names(received)

    sio_client.emit('ping', {'n': 1}, namespace='/ws')
    received = sio_client.get_received('/ws')
    assert any(pkt['name'] == 'pong' and pkt['args'][0] == {'n': 1} for pkt in received)


def test_join_session_acks_with_state(client, sio_client):
    data = _start(client)
    sio_client.get_received('/ws')

    sio_client.emit('join_session', {'session_id': data['id']}, namespace='/ws')
    received = sio_client.get_received('/ws')
    joined = [pkt for pkt in received if pkt['name'] == 'joined']
    assert joined
    payload = joined[0]['args'][0]
    assert payload['session']['version'] == data['version']
    assert f"session:{data['id']}" in payload['rooms']
    assert 'kind:tic_tac_toe' in payload['rooms']


def test_join_unknown_session_emits_error(sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('join_session', {'session_id': 'missing'}, namespace='/ws')
    received = sio_client.get_received('/ws')
    errors = [pkt['args'][0] for pkt in received if pkt['name'] == 'error']
    assert errors and errors[0]['code'] == 'not_found'


def test_move_is_broadcast_on_both_topics(client, sio_client):
    data = _start(client)
    sio_client.emit('join_session', {'session_id': data['id']}, namespace='/ws')
    sio_client.get_received('/ws')

    res = client.post(f"/api/sessions/{data['id']}/moves", json={'player_id': ALICE['id'], 'move': {'position': 4}})
    assert res.status_code == 200

    updates = [pkt['args'][0] for pkt in sio_client.get_received('/ws') if pkt['name'] == 'state_update']
    # Same change arrives once per topic; consumers dedupe by version
    assert len(updates) == 2
    assert {u['version'] for u in updates} == {3}
    assert all(u['session_id'] == data['id'] for u in updates)
    assert updates[0]['session']['payload']['board'][4] == 'X'


def test_subscribe_kind_topic_sees_new_sessions(client, sio_client):
    sio_client.emit('subscribe', {'topic': 'kind:memory'}, namespace='/ws')
    assert 'subscribed' in _names(sio_client.get_received('/ws'))

    client.post('/api/sessions', json={'game_kind': 'memory', 'player': ALICE})
    client.post('/api/sessions', json={'game_kind': 'hangman', 'player': ALICE})

    updates = [pkt['args'][0] for pkt in sio_client.get_received('/ws') if pkt['name'] == 'state_update']
    assert [u['game_kind'] for u in updates] == ['memory']

    sio_client.emit('unsubscribe', {'topic': 'kind:memory'}, namespace='/ws')
    sio_client.get_received('/ws')
    client.post('/api/sessions', json={'game_kind': 'memory', 'player': ALICE})
    assert 'state_update' not in _names(sio_client.get_received('/ws'))


def test_subscribe_rejects_unknown_topic(sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('subscribe', {'topic': 'everything'}, namespace='/ws')
    assert 'error' in _names(sio_client.get_received('/ws'))


def test_sync_replies_with_authoritative_state(client, sio_client):
    data = _start(client)
    sio_client.get_received('/ws')
    sio_client.emit('sync', {'session_id': data['id']}, namespace='/ws')
    updates = [pkt['args'][0] for pkt in sio_client.get_received('/ws') if pkt['name'] == 'state_update']
    assert len(updates) == 1
    assert updates[0]['version'] == data['version']
    assert updates[0]['session']['status'] == 'playing'


def test_rematch_events_reach_room(client, sio_client):
    sid = _start(client)['id']
    for player, position in ((ALICE, 0), (BOB, 3), (ALICE, 1), (BOB, 4), (ALICE, 2)):
        client.post(f'/api/sessions/{sid}/moves', json={'player_id': player['id'], 'move': {'position': position}})
    sio_client.emit('join_session', {'session_id': sid}, namespace='/ws')
    sio_client.get_received('/ws')

    client.post(f'/api/sessions/{sid}/rematch', json={'player_id': BOB['id']})
    assert 'rematch_requested' in _names(sio_client.get_received('/ws'))

    linked = client.post(f'/api/sessions/{sid}/rematch/accept', json={'player_id': ALICE['id']}).get_json()['linked_session_id']
    linked_events = [pkt['args'][0] for pkt in sio_client.get_received('/ws') if pkt['name'] == 'rematch_linked']
    assert linked_events
    assert linked_events[0]['linked_session_id'] == linked
