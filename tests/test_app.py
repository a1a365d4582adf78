import pytest
from conftest import LIGHTHOUSE_DDL, VISUAL_DDL, FakeSession, file_bytes, make_db

from app import create_app
from merge_pipeline.connections import ConnectionManager
from merge_pipeline.orchestrator import MergeOrchestrator
from merge_pipeline.scheduler import RefreshScheduler
from utils.config import GroupSpec, Settings

LH = ['http://storage.test/lighthouse-desktop.db', 'http://storage.test/lighthouse-mobile.db']
VIS = ['http://storage.test/visual-chromium.db']

GROUP_ENDPOINTS = [
    '/api/lighthouse/data',
    '/api/lighthouse/stats',
    '/api/data',
    '/api/visual/data',
    '/api/visual/stats',
    '/api/baseline/data',
]


def build_client(tmp_path, routes, groups=None):
    settings = Settings(
        groups=groups if groups is not None else [GroupSpec('lighthouse', LH), GroupSpec('visual', VIS)],
        data_dir=str(tmp_path / 'data'),
    )
    manager = ConnectionManager()
    orch = MergeOrchestrator(settings.downloads_dir, session=FakeSession(routes), retries=0, retry_delay=0)
    scheduler = RefreshScheduler(settings, manager, orch)
    app = create_app(settings=settings, manager=manager, scheduler=scheduler, start_scheduler=False)
    return app.test_client(), manager


@pytest.fixture
def remote(tmp_path):
    desktop = make_db(tmp_path / 'desktop.sqlite', LIGHTHOUSE_DDL, {'lighthouse_results': [
        (1, '/home', 0.91, '2024-05-01T10:00:00'),
        (2, '/docs', 0.75, '2024-05-03T10:00:00'),
    ]})
    mobile = make_db(tmp_path / 'mobile.sqlite', LIGHTHOUSE_DDL, {'lighthouse_results': [
        (1, '/home', 0.66, '2024-05-02T10:00:00'),
    ]})
    visual = make_db(tmp_path / 'visual.sqlite', VISUAL_DDL + ['CREATE TABLE notes (body TEXT)'], {
        'baselines': [('home', 'home.png'), ('docs', 'docs.png')],
        'comparisons': [(1, 'home', 0.0, '2024-05-01'), (2, 'docs', 1.5, '2024-05-04')],
        'notes': [('first',)],
    })
    return {LH[0]: file_bytes(desktop), LH[1]: file_bytes(mobile), VIS[0]: file_bytes(visual)}


def test_health(tmp_path):
    client, _ = build_client(tmp_path, {})
    response = client.get('/api/health')
    assert response.status_code == 200
    assert response.get_json() == {'status': 'ok'}


@pytest.mark.parametrize('path', GROUP_ENDPOINTS)
def test_group_endpoints_unavailable_before_any_merge(tmp_path, path):
    client, _ = build_client(tmp_path, {})
    response = client.get(path)
    assert response.status_code == 503
    assert 'error' in response.get_json()


def test_refresh_then_query_lighthouse(tmp_path, remote):
    client, _ = build_client(tmp_path, remote)
    response = client.post('/api/refresh')
    assert response.status_code == 200
    payload = response.get_json()
    assert payload['success'] is True
    assert payload['lighthouse'] is True and payload['visual'] is True

    rows = client.get('/api/lighthouse/data').get_json()
    assert [r['timestamp'] for r in rows] == [
        '2024-05-03T10:00:00', '2024-05-02T10:00:00', '2024-05-01T10:00:00',
    ]
    assert sorted(r['id'] for r in rows) == [1, 2, 3]
    assert client.get('/api/data').get_json() == rows


def test_lighthouse_stats(tmp_path, remote):
    client, _ = build_client(tmp_path, remote)
    client.post('/api/refresh')
    stats = client.get('/api/lighthouse/stats').get_json()
    assert stats['tables'] == ['lighthouse_results']
    assert stats['table_counts'] == {'lighthouse_results': 3}
    assert stats['total_rows'] == 3
    assert stats['source_count'] == 2
    assert stats['file_size'] > 0
    assert stats['last_modified']


def test_visual_data_orders_each_table(tmp_path, remote):
    client, _ = build_client(tmp_path, remote)
    client.post('/api/refresh')
    tables = client.get('/api/visual/data').get_json()['tables']
    assert set(tables) == {'baselines', 'comparisons', 'notes'}
    assert [r['created_at'] for r in tables['comparisons']] == ['2024-05-04', '2024-05-01']
    assert tables['notes'] == [{'body': 'first'}]
    assert len(tables['baselines']) == 2

    stats = client.get('/api/visual/stats').get_json()
    assert stats['total_rows'] == 5
    assert stats['source_count'] == 1


def test_baseline_data(tmp_path, remote):
    client, _ = build_client(tmp_path, remote)
    client.post('/api/refresh')
    response = client.get('/api/baseline/data')
    assert response.status_code == 200
    assert {r['name'] for r in response.get_json()} == {'home', 'docs'}


def test_baseline_missing_table_is_404(tmp_path, remote):
    plain = make_db(tmp_path / 'plain.sqlite', ['CREATE TABLE comparisons (id INTEGER PRIMARY KEY, name TEXT)'])
    remote[VIS[0]] = file_bytes(plain)
    client, _ = build_client(tmp_path, remote)
    client.post('/api/refresh')
    assert client.get('/api/baseline/data').status_code == 404
    assert client.get('/api/visual/data').status_code == 200


def test_refresh_with_one_group_unreachable(tmp_path, remote):
    remote[VIS[0]] = 503
    client, manager = build_client(tmp_path, remote)
    payload = client.post('/api/refresh').get_json()
    assert payload['success'] is False
    assert payload['lighthouse'] is True
    assert payload['visual'] is False
    assert manager.has_handle('lighthouse')
    assert not manager.has_handle('visual')
    assert client.get('/api/visual/data').status_code == 503
    assert client.get('/api/lighthouse/data').status_code == 200


def test_unexpected_error_is_500(tmp_path, remote, monkeypatch):
    client, _ = build_client(tmp_path, remote)
    client.post('/api/refresh')

    def boom(*args, **kwargs):
        raise RuntimeError('boom')

    monkeypatch.setattr('services.query_service.fetch_records', boom)
    response = client.get('/api/lighthouse/data')
    assert response.status_code == 500
    assert response.get_json() == {'error': 'Internal server error'}


def test_integer_column_with_nulls_stays_integer(tmp_path, remote):
    ddl = ['CREATE TABLE lighthouse_results (id INTEGER PRIMARY KEY, url TEXT, score INTEGER, timestamp TEXT)']
    desktop = make_db(tmp_path / 'int-desktop.sqlite', ddl, {'lighthouse_results': [
        (1, '/home', 90, '2024-05-01T10:00:00'),
        (2, '/docs', None, '2024-05-02T10:00:00'),
    ]})
    remote[LH[0]] = remote[LH[1]] = file_bytes(desktop)
    client, _ = build_client(tmp_path, remote)
    client.post('/api/refresh')

    rows = client.get('/api/lighthouse/data').get_json()
    scores = {r['url']: r['score'] for r in rows}
    assert scores == {'/home': 90, '/docs': None}
    assert all(type(r['score']) is int for r in rows if r['url'] == '/home')
    assert all(type(r['id']) is int for r in rows)


def test_blob_columns_are_served_as_base64(tmp_path, remote):
    ddl = [
        'CREATE TABLE baselines (name TEXT PRIMARY KEY, image BLOB)',
        'CREATE TABLE comparisons (id INTEGER PRIMARY KEY, name TEXT, diff REAL, created_at TEXT)',
    ]
    visual = make_db(tmp_path / 'blob-visual.sqlite', ddl, {
        'baselines': [('home', b'\x89PNG\r\n\x1a\n'), ('empty', None)],
        'comparisons': [(1, 'home', 0.5, '2024-05-01')],
    })
    remote[VIS[0]] = file_bytes(visual)
    client, _ = build_client(tmp_path, remote)
    client.post('/api/refresh')

    response = client.get('/api/baseline/data')
    assert response.status_code == 200
    images = {r['name']: r['image'] for r in response.get_json()}
    assert images == {'home': 'iVBORw0KGgo=', 'empty': None}

    response = client.get('/api/visual/data')
    assert response.status_code == 200
    baselines = response.get_json()['tables']['baselines']
    assert {r['image'] for r in baselines} == {'iVBORw0KGgo=', None}


def test_cors_headers_on_api_routes(tmp_path):
    client, _ = build_client(tmp_path, {})
    response = client.get('/api/health', headers={'Origin': 'http://dashboard.example'})
    assert response.status_code == 200
    assert response.headers.get('Access-Control-Allow-Origin') in ('*', 'http://dashboard.example')
