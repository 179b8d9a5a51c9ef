"""
Shared pytest fixtures for Console Backup tests.

This module provides fixtures for:
- An in-memory row store standing in for Appwrite
- Configuration pointing at a temporary backup directory
- Flask app and test client
- Mock fixtures for APScheduler
- Pre-populated backup tiers
"""

import copy
import os
from unittest.mock import MagicMock, patch

import pytest

from console_backup import create_app
from console_backup.backup.store import RowStore, RowStoreError
from console_backup.config import get_config


class FakeRowStore(RowStore):
    """
    In-memory RowStore.

    collections maps collection id -> list of rows; ids in `failing` raise
    RowStoreError on read (permission denied).
    """

    def __init__(self, collections=None, failing=None):
        self.collections = collections or {}
        self.failing = set(failing or [])
        self.created = []

    def _check(self, collection_id):
        if collection_id in self.failing:
            raise RowStoreError('Appwrite error (401): The current user is not authorized', status_code=401)
        if collection_id not in self.collections:
            raise RowStoreError(f'Appwrite error (404): Table {collection_id} not found', status_code=404)

    def list_rows(self, database_id, collection_id):
        self._check(collection_id)
        return list(self.collections[collection_id])

    def probe(self, database_id, collection_id):
        self._check(collection_id)

    def list_collections(self, database_id):
        return list(self.collections.keys()) + sorted(self.failing - set(self.collections))

    def get_row(self, database_id, collection_id, row_id):
        self._check(collection_id)
        for row in self.collections[collection_id]:
            if row.get('$id') == row_id:
                return row
        raise RowStoreError(f'Appwrite error (404): Row {row_id} not found', status_code=404)

    def create_row(self, database_id, collection_id, data, row_id='unique()'):
        self.created.append((collection_id, data))
        return dict(data, **{'$id': row_id})

    def update_row(self, database_id, collection_id, row_id, data):
        raise NotImplementedError

    def delete_row(self, database_id, collection_id, row_id):
        raise NotImplementedError


def make_rows(count, prefix='row'):
    """Rows shaped like Appwrite output."""
    return [
        {
            '$id': f'{prefix}{i}',
            '$createdAt': '2024-01-01T00:00:00.000+00:00',
            '$updatedAt': '2024-01-02T00:00:00.000+00:00',
            '$permissions': [],
            'title': f'Title {i}',
            'views': i,
        }
        for i in range(1, count + 1)
    ]


@pytest.fixture
def posts_rows():
    return [
        {'$id': 'p1', '$createdAt': '2024-01-01T00:00:00.000+00:00',
         '$updatedAt': '2024-01-01T00:00:00.000+00:00', 'title': 'Hello', 'tags': ['a', 'b']},
        {'$id': 'p2', '$createdAt': '2024-01-02T00:00:00.000+00:00',
         '$updatedAt': '2024-01-02T00:00:00.000+00:00', 'title': "It's here", 'tags': []},
        {'$id': 'p3', '$createdAt': '2024-01-03T00:00:00.000+00:00',
         '$updatedAt': '2024-01-03T00:00:00.000+00:00', 'title': None, 'tags': None},
    ]


@pytest.fixture
def fake_store(posts_rows):
    """Row store with one populated and one empty collection."""
    return FakeRowStore({'posts': posts_rows, 'empty_collection': []})


@pytest.fixture
def backup_dir(tmp_path):
    path = tmp_path / 'backup'
    path.mkdir()
    return path


@pytest.fixture
def config(backup_dir):
    """
    Testing configuration as a plain dict.

    BACKUP_DIR points at a temporary directory; audit events are off.
    """
    cfg = copy.deepcopy(get_config('testing'))
    cfg.update({
        'APPWRITE_PROJECT_ID': 'test-project',
        'APPWRITE_DATABASE_ID': 'console-db',
        'BACKUP_DIR': str(backup_dir),
        'BACKUP_COLLECTION_DISCOVERY': 'dynamic',
        'BACKUP_INCLUDE_COLLECTIONS': [],
        'BACKUP_EXCLUDE_COLLECTIONS': [],
        'BACKUP_FORMATS': {'postgresql': True, 'mongodb': True, 'excel': True},
        'BACKUP_RETENTION': {'daily': 7, 'weekly': 4, 'monthly': 12},
        'BACKUP_TIMEZONE': 'UTC',
        'BACKUP_LOCK_TIMEOUT': 0,
        'LOG_FILE': None,
    })
    return cfg


@pytest.fixture(scope='function')
def app(config):
    """Create Flask app with test configuration."""
    app = create_app('testing')
    app.config.update(config)
    yield app


@pytest.fixture(scope='function')
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture(autouse=True)
def reset_global_scheduler():
    """Each test starts without a global backup scheduler."""
    import console_backup.scheduler as scheduler_module
    scheduler_module.backup_scheduler = None
    yield
    scheduler_module.backup_scheduler = None


@pytest.fixture(scope='function')
def mock_scheduler():
    """
    Mock APScheduler for testing scheduler functionality.
    """
    with patch('console_backup.scheduler.BackgroundScheduler') as mock_sched:
        scheduler_instance = MagicMock()
        mock_sched.return_value = scheduler_instance

        # Mock scheduler methods
        scheduler_instance.running = False
        scheduler_instance.get_jobs.return_value = []

        yield scheduler_instance


def write_artifact(directory, name, mtime, content=b'data'):
    """Create an artifact file with a fixed modification time."""
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, name)
    with open(path, 'wb') as f:
        f.write(content)
    os.utime(path, (mtime, mtime))
    return path


@pytest.fixture
def make_artifact():
    return write_artifact


@pytest.fixture
def make_store():
    """Factory: make_store({'coll': rows}, failing=['denied'])"""
    return FakeRowStore


@pytest.fixture
def rows_factory():
    return make_rows
