"""
Storage Adapter Tests
=====================

The same contract checks run against every local backend; the Supabase
backend is exercised with a mocked requests session.
"""

import json
import os
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
import requests
from flask import Flask

from subscribely.modules.subscribers.models import (
    ALREADY_ACTIVE, CREATED,
    DuplicateKeyError, InvalidArgumentError, NotFoundError,
    StorageUnavailableError, Subscriber,
)
from subscribely.modules.subscribers.registry import SubscriberRegistry
from subscribely.modules.subscribers.storage import (
    EmbeddedSqlAdapter, FileAdapter, RemoteAdapter, StorageAdapter, build_adapter,
)

BASE_TIME = datetime(2025, 1, 10, 8, 0, tzinfo=timezone.utc)


def make_subscriber(email, minutes=0, source='website', status='active'):
    subscriber = Subscriber.new(email, source, now=BASE_TIME + timedelta(minutes=minutes))
    subscriber.status = status
    return subscriber


# ---------------------------------------------------------------------------
# Contract tests (file + sqlite)
# ---------------------------------------------------------------------------

@pytest.fixture(params=['file', 'sqlite'])
def storage(request, tmp_path):
    if request.param == 'file':
        return FileAdapter(str(tmp_path / 'data' / 'subscribers.json'))
    return EmbeddedSqlAdapter(str(tmp_path / 'data' / 'subscribers.db'))


def test_adapters_satisfy_protocol(storage):
    assert isinstance(storage, StorageAdapter)


def test_empty_store(storage):
    assert storage.find_by_email('x@example.com') is None
    assert storage.find_by_token('missing') is None
    assert storage.count() == 0
    paged = storage.list(1, 10)
    assert paged.records == []
    assert paged.total_count == 0


def test_insert_and_find_round_trip(storage):
    subscriber = make_subscriber('find@example.com')
    subscriber.ip_address = '192.0.2.1'
    subscriber.user_agent = 'Mozilla/5.0'
    storage.insert(subscriber)

    by_email = storage.find_by_email('find@example.com')
    by_token = storage.find_by_token(subscriber.unsubscribe_token)
    assert by_email == subscriber
    assert by_token == subscriber


def test_find_is_case_sensitive(storage):
    storage.insert(make_subscriber('Mixed@Example.com'))
    assert storage.find_by_email('mixed@example.com') is None


def test_insert_duplicate_raises(storage):
    storage.insert(make_subscriber('dup@example.com'))
    with pytest.raises(DuplicateKeyError):
        storage.insert(make_subscriber('dup@example.com', minutes=5))
    assert storage.count() == 1


def test_update_status(storage):
    original = make_subscriber('upd@example.com')
    storage.insert(original)
    later = BASE_TIME + timedelta(hours=1)

    updated = storage.update_status('upd@example.com', 'unsubscribed', later)

    assert updated.status == 'unsubscribed'
    assert updated.updated_at == later
    assert updated.subscribed_at == original.subscribed_at
    assert updated.id == original.id
    assert storage.find_by_email('upd@example.com').status == 'unsubscribed'


def test_update_status_missing_raises(storage):
    with pytest.raises(NotFoundError):
        storage.update_status('ghost@example.com', 'active', BASE_TIME)


def test_count_filters(storage):
    storage.insert(make_subscriber('a@example.com', minutes=0))
    storage.insert(make_subscriber('b@example.com', minutes=10, status='unsubscribed'))
    storage.insert(make_subscriber('c@example.com', minutes=20))

    assert storage.count() == 3
    assert storage.count(status='active') == 2
    assert storage.count(status='unsubscribed') == 1
    assert storage.count(subscribed_since=BASE_TIME + timedelta(minutes=10)) == 2
    assert storage.count(status='active', subscribed_since=BASE_TIME + timedelta(minutes=10)) == 1


def test_list_orders_newest_first_and_pages(storage):
    for i in range(5):
        storage.insert(make_subscriber(f'p{i}@example.com', minutes=i))
    storage.insert(make_subscriber('gone@example.com', minutes=99, status='unsubscribed'))

    first = storage.list(1, 2, status='active')
    second = storage.list(2, 2, status='active')
    third = storage.list(3, 2, status='active')
    beyond = storage.list(9, 2, status='active')

    assert [s.email for s in first.records] == ['p4@example.com', 'p3@example.com']
    assert [s.email for s in second.records] == ['p2@example.com', 'p1@example.com']
    assert [s.email for s in third.records] == ['p0@example.com']
    assert beyond.records == []
    assert first.total_count == 5
    assert storage.list(1, 10).total_count == 6
    assert storage.list(1, 10).records[0].email == 'gone@example.com'


@pytest.mark.parametrize('page, page_size', [(1, 0), (1, -3), (0, 5), (-1, 5)])
def test_list_rejects_bad_pagination(storage, page, page_size):
    with pytest.raises(InvalidArgumentError):
        storage.list(page, page_size)


def test_count_by_source(storage):
    storage.insert(make_subscriber('a@example.com', source='widget'))
    storage.insert(make_subscriber('b@example.com', source='widget', status='unsubscribed'))
    storage.insert(make_subscriber('c@example.com', source='footer'))

    assert storage.count_by_source() == [
        {'source': 'widget', 'count': 2, 'active_count': 1},
        {'source': 'footer', 'count': 1, 'active_count': 1},
    ]


# ---------------------------------------------------------------------------
# FileAdapter specifics
# ---------------------------------------------------------------------------

def test_file_layout_is_camel_case(tmp_path):
    path = tmp_path / 'subscribers.json'
    store = FileAdapter(str(path))
    subscriber = make_subscriber('layout@example.com')
    store.insert(subscriber)

    records = json.loads(path.read_text(encoding='utf-8'))
    assert len(records) == 1
    assert set(records[0]) == {
        'id', 'email', 'subscribedAt', 'source', 'status', 'unsubscribeToken',
        'createdAt', 'updatedAt', 'ipAddress', 'userAgent',
    }
    assert records[0]['unsubscribeToken'] == subscriber.unsubscribe_token


def test_file_save_leaves_no_temp_files(tmp_path):
    store = FileAdapter(str(tmp_path / 'subscribers.json'))
    for i in range(3):
        store.insert(make_subscriber(f't{i}@example.com', minutes=i))
    store.update_status('t1@example.com', 'unsubscribed', BASE_TIME + timedelta(days=1))

    leftovers = [name for name in os.listdir(tmp_path) if name.endswith('.tmp')]
    assert leftovers == []


@pytest.mark.parametrize('content', ['{not json', '{"email": "a@b.com"}', '[{"subscribedAt": "2025-01-01T00:00:00Z"}]', '[42]'])
def test_file_corrupt_content_is_storage_error(tmp_path, content):
    path = tmp_path / 'subscribers.json'
    path.write_text(content, encoding='utf-8')
    store = FileAdapter(str(path))

    with pytest.raises(StorageUnavailableError):
        store.find_by_email('a@b.com')


def test_file_legacy_records_get_ids_and_tokens(tmp_path):
    path = tmp_path / 'subscribers.json'
    path.write_text(json.dumps([
        {'email': 'old@example.com', 'subscribedAt': '2025-01-01T00:00:00.000Z', 'source': 'emailjs-learning-tool'},
        {'email': 'older@example.com', 'subscribedAt': '2024-12-01T08:30:00.000Z'},
    ]), encoding='utf-8')
    store = FileAdapter(str(path))

    old = store.find_by_email('old@example.com')
    assert old.status == 'active'
    assert old.subscribed_at == datetime(2025, 1, 1, tzinfo=timezone.utc)
    assert old.id and old.unsubscribe_token

    # Generated values are written back, so later reads agree
    assert store.find_by_email('old@example.com') == old
    assert store.find_by_token(old.unsubscribe_token).email == 'old@example.com'
    records = json.loads(path.read_text(encoding='utf-8'))
    assert all(r['id'] and r['unsubscribeToken'] for r in records)
    assert records[1]['source'] == 'emailjs-learning-tool'

    registry = SubscriberRegistry(store)
    assert registry.register('new@example.com').outcome == CREATED
    assert registry.register('old@example.com').outcome == ALREADY_ACTIVE
    assert store.count() == 3


def test_file_empty_file_is_empty_store(tmp_path):
    path = tmp_path / 'subscribers.json'
    path.write_text('', encoding='utf-8')
    assert FileAdapter(str(path)).count() == 0


def test_file_store_survives_reopen(tmp_path):
    path = str(tmp_path / 'subscribers.json')
    FileAdapter(path).insert(make_subscriber('persist@example.com'))
    assert FileAdapter(path).find_by_email('persist@example.com') is not None


# ---------------------------------------------------------------------------
# EmbeddedSqlAdapter specifics
# ---------------------------------------------------------------------------

def test_sqlite_reads_legacy_timestamps(tmp_path):
    store = EmbeddedSqlAdapter(str(tmp_path / 'subscribers.db'))
    conn = store._connect()
    conn.execute(
        "INSERT INTO subscribers (id, email, subscribed_at, status, unsubscribe_token, created_at, updated_at) "
        "VALUES ('legacy', 'legacy@example.com', '2024-02-01 10:00:00', 'active', 'tok', "
        "'2024-02-01 10:00:00', '2024-02-01 10:00:00')"
    )
    conn.commit()
    conn.close()

    subscriber = store.find_by_email('legacy@example.com')
    assert subscriber.subscribed_at == datetime(2024, 2, 1, 10, 0, tzinfo=timezone.utc)


def test_sqlite_legacy_timestamps_are_normalised_on_open(tmp_path):
    db_path = str(tmp_path / 'subscribers.db')
    store = EmbeddedSqlAdapter(db_path)
    conn = store._connect()
    conn.executemany(
        "INSERT INTO subscribers (id, email, subscribed_at, status, unsubscribe_token, created_at, updated_at) "
        "VALUES (?, ?, ?, 'active', ?, ?, ?)",
        [
            ('l1', 'boundary@example.com', '2025-06-15 00:00:00', 't1', '2025-06-15 00:00:00', '2025-06-15 00:00:00'),
            ('l2', 'later@example.com', '2025-06-15 10:00:00', 't2', '2025-06-15 10:00:00', '2025-06-15 10:00:00'),
            ('l3', 'before@example.com', '2025-06-14 23:59:59', 't3', '2025-06-14 23:59:59', '2025-06-14 23:59:59'),
        ]
    )
    conn.commit()
    conn.close()
    store.insert(make_subscriber('fresh@example.com'))

    reopened = EmbeddedSqlAdapter(db_path)
    today = datetime(2025, 6, 15, tzinfo=timezone.utc)

    assert reopened.count(subscribed_since=today) == 2
    assert [s.email for s in reopened.list(1, 2).records] == ['later@example.com', 'boundary@example.com']

    conn = reopened._connect()
    stored = conn.execute("SELECT subscribed_at FROM subscribers WHERE id = 'l1'").fetchone()[0]
    conn.close()
    assert stored == '2025-06-15T00:00:00.000000+00:00'


def test_sqlite_unreachable_path_is_storage_error(tmp_path):
    blocker = tmp_path / 'not-a-dir'
    blocker.write_text('x', encoding='utf-8')
    with pytest.raises(StorageUnavailableError):
        EmbeddedSqlAdapter(str(blocker / 'subscribers.db'))


# ---------------------------------------------------------------------------
# RemoteAdapter (Supabase REST, mocked session)
# ---------------------------------------------------------------------------

def fake_response(status_code=200, payload=None, headers=None, text=''):
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    response.text = text
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def remote(session):
    return RemoteAdapter('https://project.supabase.co/', 'anon-key', session=session, timeout=3)


def test_remote_sets_auth_headers(session, remote):
    headers = session.headers.update.call_args[0][0]
    assert headers['apikey'] == 'anon-key'
    assert headers['Authorization'] == 'Bearer anon-key'
    assert remote.endpoint == 'https://project.supabase.co/rest/v1/subscribers'


def test_remote_requires_credentials():
    with pytest.raises(StorageUnavailableError):
        RemoteAdapter('', 'key', session=MagicMock())
    with pytest.raises(StorageUnavailableError):
        RemoteAdapter('https://project.supabase.co', None, session=MagicMock())


def test_remote_find_by_email(session, remote):
    row = make_subscriber('r@example.com').to_dict()
    session.request.return_value = fake_response(payload=[row])

    found = remote.find_by_email('r@example.com')

    assert found.email == 'r@example.com'
    method, url = session.request.call_args[0]
    kwargs = session.request.call_args[1]
    assert method == 'GET'
    assert url.endswith('/rest/v1/subscribers')
    assert kwargs['params']['email'] == 'eq.r@example.com'
    assert kwargs['timeout'] == 3


def test_remote_find_missing(session, remote):
    session.request.return_value = fake_response(payload=[])
    assert remote.find_by_email('none@example.com') is None


def test_remote_insert_returns_representation(session, remote):
    subscriber = make_subscriber('ins@example.com')
    session.request.return_value = fake_response(status_code=201, payload=[subscriber.to_dict()])

    stored = remote.insert(subscriber)

    assert stored == subscriber
    kwargs = session.request.call_args[1]
    assert kwargs['json']['email'] == 'ins@example.com'
    assert kwargs['headers']['Prefer'] == 'return=representation'


@pytest.mark.parametrize('status_code, payload', [
    (409, {'code': '23505', 'message': 'duplicate key value violates unique constraint'}),
    (400, {'code': '23505', 'message': 'duplicate key'}),
])
def test_remote_insert_duplicate(session, remote, status_code, payload):
    session.request.return_value = fake_response(status_code=status_code, payload=payload)
    with pytest.raises(DuplicateKeyError):
        remote.insert(make_subscriber('dup@example.com'))


def test_remote_update_status(session, remote):
    row = make_subscriber('u@example.com').to_dict()
    later = BASE_TIME + timedelta(hours=2)
    row.update({'status': 'unsubscribed', 'updated_at': later.isoformat()})
    session.request.return_value = fake_response(payload=[row])

    updated = remote.update_status('u@example.com', 'unsubscribed', later)

    assert updated.status == 'unsubscribed'
    assert updated.updated_at == later
    assert session.request.call_args[0][0] == 'PATCH'


def test_remote_update_missing(session, remote):
    session.request.return_value = fake_response(payload=[])
    with pytest.raises(NotFoundError):
        remote.update_status('ghost@example.com', 'active', BASE_TIME)


def test_remote_count_parses_content_range(session, remote):
    session.request.return_value = fake_response(payload=[{'id': 'x'}], headers={'Content-Range': '0-0/42'})
    assert remote.count(status='active', subscribed_since=BASE_TIME) == 42
    kwargs = session.request.call_args[1]
    assert kwargs['params']['status'] == 'eq.active'
    assert kwargs['params']['subscribed_at'].startswith('gte.2025-01-10T08:00:00')
    assert kwargs['headers']['Prefer'] == 'count=exact'


def test_remote_count_empty_table(session, remote):
    session.request.return_value = fake_response(payload=[], headers={'Content-Range': '*/0'})
    assert remote.count() == 0


def test_remote_list(session, remote):
    rows = [make_subscriber(f'l{i}@example.com', minutes=-i).to_dict() for i in range(2)]
    session.request.return_value = fake_response(payload=rows, headers={'Content-Range': '10-11/25'})

    paged = remote.list(6, 2, status='active')

    assert [s.email for s in paged.records] == ['l0@example.com', 'l1@example.com']
    assert paged.total_count == 25
    params = session.request.call_args[1]['params']
    assert params['order'] == 'subscribed_at.desc'
    assert params['offset'] == '10'
    assert params['limit'] == '2'


def test_remote_list_rejects_bad_pagination(session, remote):
    with pytest.raises(InvalidArgumentError):
        remote.list(1, 0)
    session.request.assert_not_called()


def test_remote_count_by_source(session, remote):
    session.request.return_value = fake_response(payload=[
        {'source': 'widget', 'status': 'active'},
        {'source': 'widget', 'status': 'unsubscribed'},
        {'source': 'footer', 'status': 'active'},
    ], headers={'Content-Range': '0-2/3'})
    assert remote.count_by_source() == [
        {'source': 'widget', 'count': 2, 'active_count': 1},
        {'source': 'footer', 'count': 1, 'active_count': 1},
    ]
    assert session.request.call_count == 1


def test_remote_count_by_source_pages_through_large_tables(session, remote):
    # Server caps responses at 1000 rows (max-rows); the table holds 2300
    pages = [
        fake_response(payload=[{'source': 'widget', 'status': 'active'}] * 1000,
                      headers={'Content-Range': '0-999/2300'}),
        fake_response(payload=[{'source': 'footer', 'status': 'unsubscribed'}] * 1000,
                      headers={'Content-Range': '1000-1999/2300'}),
        fake_response(payload=[{'source': 'widget', 'status': 'unsubscribed'}] * 300,
                      headers={'Content-Range': '2000-2299/2300'}),
    ]
    session.request.side_effect = pages

    assert remote.count_by_source() == [
        {'source': 'widget', 'count': 1300, 'active_count': 1000},
        {'source': 'footer', 'count': 1000, 'active_count': 0},
    ]
    offsets = [c[1]['params']['offset'] for c in session.request.call_args_list]
    assert offsets == ['0', '1000', '2000']
    assert all(c[1]['headers']['Prefer'] == 'count=exact' for c in session.request.call_args_list)


def test_remote_count_by_source_respects_lower_server_cap(session, remote):
    session.request.side_effect = [
        fake_response(payload=[{'source': 'widget', 'status': 'active'}] * 500,
                      headers={'Content-Range': '0-499/700'}),
        fake_response(payload=[{'source': 'widget', 'status': 'active'}] * 200,
                      headers={'Content-Range': '500-699/700'}),
    ]
    assert remote.count_by_source() == [{'source': 'widget', 'count': 700, 'active_count': 700}]
    assert session.request.call_count == 2


def test_remote_count_by_source_empty_table(session, remote):
    session.request.return_value = fake_response(payload=[], headers={'Content-Range': '*/0'})
    assert remote.count_by_source() == []


@pytest.mark.parametrize('side_effect', [
    requests.ConnectionError('connection refused'),
    requests.Timeout('read timed out'),
])
def test_remote_transport_errors(session, remote, side_effect):
    session.request.side_effect = side_effect
    with pytest.raises(StorageUnavailableError):
        remote.find_by_email('a@example.com')


def test_remote_http_errors_do_not_leak_body(session, remote):
    session.request.return_value = fake_response(
        status_code=500, payload={'message': 'relation "subscribers" does not exist'},
        text='relation "subscribers" does not exist'
    )
    with pytest.raises(StorageUnavailableError) as excinfo:
        remote.count()
    assert 'relation' not in str(excinfo.value)


def test_remote_non_json_body(session, remote):
    session.request.return_value = fake_response(payload=ValueError('no json'))
    with pytest.raises(StorageUnavailableError):
        remote.find_by_email('a@example.com')


def test_remote_missing_content_range(session, remote):
    session.request.return_value = fake_response(payload=[])
    with pytest.raises(StorageUnavailableError):
        remote.count()


# ---------------------------------------------------------------------------
# build_adapter
# ---------------------------------------------------------------------------

def test_build_adapter_from_app_config(tmp_path):
    app = Flask(__name__)
    app.config['SUBSCRIBER_STORAGE'] = 'file'
    app.config['SUBSCRIBERS_FILE'] = str(tmp_path / 'subs.json')
    assert isinstance(build_adapter(app), FileAdapter)

    app.config['SUBSCRIBER_STORAGE'] = 'SQLite'
    app.config['SUBSCRIBERS_DB'] = str(tmp_path / 'subs.db')
    assert isinstance(build_adapter(app), EmbeddedSqlAdapter)

    app.config['SUBSCRIBER_STORAGE'] = 'remote'
    app.config['SUPABASE_URL'] = 'https://project.supabase.co'
    app.config['SUPABASE_KEY'] = 'key'
    assert isinstance(build_adapter(app), RemoteAdapter)


def test_build_adapter_unknown_backend():
    with pytest.raises(InvalidArgumentError):
        build_adapter(backend='mongo')
