"""
Unit tests for backup run history (console_backup/backup/history.py).
"""

import json
import os

import pytest

from console_backup.backup.history import HistoryError, delete_run, list_runs


def _write_summary(backup_dir, timestamp, **fields):
    logs = backup_dir / 'logs'
    logs.mkdir(exist_ok=True)
    data = {
        'id': f'backup_{timestamp}',
        'type': 'auto',
        'timestamp': f'{timestamp}Z',
        'collections': 1,
        'totalRecords': 3,
        'duration': 120,
        'exports': [],
    }
    data.update(fields)
    (logs / f'backup_{timestamp}.json').write_text(json.dumps(data))


class TestListRuns:
    """Test reading run summaries."""

    def test_newest_first(self, backup_dir):
        _write_summary(backup_dir, '2024-01-14T02-00-00')
        _write_summary(backup_dir, '2024-01-15T02-00-00', type='manual')

        runs = list_runs(str(backup_dir))

        assert [r['id'] for r in runs] == ['backup_2024-01-15T02-00-00', 'backup_2024-01-14T02-00-00']
        assert runs[0]['type'] == 'manual'
        assert runs[0]['status'] == 'completed'

    def test_limit(self, backup_dir):
        for day in range(1, 26):
            _write_summary(backup_dir, f'2024-01-{day:02d}T02-00-00')

        runs = list_runs(str(backup_dir))

        assert len(runs) == 20
        assert runs[0]['id'] == 'backup_2024-01-25T02-00-00'

    def test_corrupt_file_skipped(self, backup_dir):
        _write_summary(backup_dir, '2024-01-14T02-00-00')
        (backup_dir / 'logs' / 'backup_2024-01-15T02-00-00.json').write_text('{not json')

        runs = list_runs(str(backup_dir))

        assert [r['id'] for r in runs] == ['backup_2024-01-14T02-00-00']

    def test_no_logs_directory(self, backup_dir):
        assert list_runs(str(backup_dir)) == []

    def test_size_of_present_artifacts(self, backup_dir, make_artifact):
        make_artifact(str(backup_dir / 'daily'), 'posts_2024-01-15T02-00-00.xlsx', 1_700_000_000, b'x' * 10)
        _write_summary(backup_dir, '2024-01-15T02-00-00', exports=[{
            'collection': 'posts',
            'records': 3,
            'status': 'exported',
            'files': {
                'excel': 'posts_2024-01-15T02-00-00.xlsx',
                'postgresql': 'posts_2024-01-15T02-00-00.sql.gz',
            },
        }])

        runs = list_runs(str(backup_dir))

        assert runs[0]['size_bytes'] == 10


class TestDeleteRun:
    """Test deleting a run's files."""

    def test_deletes_artifacts_and_summary(self, backup_dir, make_artifact):
        daily = str(backup_dir / 'daily')
        make_artifact(daily, 'posts_manual_2024-01-15T02-00-00.xlsx', 1_700_000_000)
        make_artifact(daily, 'posts_manual_2024-01-15T02-00-00.sql.gz', 1_700_000_000)
        make_artifact(daily, 'posts_2024-01-14T02-00-00.xlsx', 1_700_000_000)
        _write_summary(backup_dir, '2024-01-15T02-00-00')

        deleted = delete_run(str(backup_dir), 'backup_2024-01-15T02-00-00')

        assert sorted(deleted) == [
            'backup_2024-01-15T02-00-00.json',
            'posts_manual_2024-01-15T02-00-00.sql.gz',
            'posts_manual_2024-01-15T02-00-00.xlsx',
        ]
        assert os.listdir(daily) == ['posts_2024-01-14T02-00-00.xlsx']

    def test_unknown_id(self, backup_dir):
        assert delete_run(str(backup_dir), 'backup_2020-01-01T00-00-00') == []

    @pytest.mark.parametrize('backup_id', ['../etc', 'backup_', 'backup_2024-01-15', ''])
    def test_invalid_id(self, backup_dir, backup_id):
        with pytest.raises(HistoryError):
            delete_run(str(backup_dir), backup_id)
