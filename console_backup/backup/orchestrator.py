"""
Backup orchestrator - runs one complete backup.

Workflow:
1. Acquire the run lock, report start
2. Ensure tier directories exist
3. Auto runs: remove today's automatic daily artifacts
4. Discover collections
5. Export each collection and encode non-empty ones in every enabled format
6. Write the run summary to logs/
7. Enforce retention on all tiers
8. Report completion (or failure), release the lock
"""

import json
import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .collections import CollectionProvider, create_collection_provider, export_collection
from .encoders import ENCODERS, enabled_formats, generate_timestamp
from .locking import acquire_lock, release_lock
from .reporter import NullReporter, Reporter, create_reporter
from .retention import LOGS_DIR, RetentionManager
from .store import RowStore, create_row_store


logger = logging.getLogger(__name__)

BACKUP_TYPES = ('auto', 'manual')
RUN_LOCK_NAME = '.backup.lock'


class BackupError(Exception):
    """Raised when a backup run cannot be performed."""
    pass


class RunSummary:
    """
    Outcome of one backup run.

    exports holds one entry per discovered collection with keys
    'collection', 'records', 'status' (exported/empty/failed), 'files' and,
    for failed collections, 'error'.
    """

    def __init__(self, backup_type: str, run_timestamp: str, exports: List[Dict[str, Any]],
                 duration_ms: int, completed_at: str = None):
        self.backup_type = backup_type
        self.run_timestamp = run_timestamp
        self.exports = exports
        self.duration_ms = duration_ms
        self.completed_at = completed_at or datetime.now(timezone.utc).isoformat()

    @property
    def id(self) -> str:
        return f"backup_{self.run_timestamp}"

    @property
    def collections(self) -> int:
        """Number of collections that produced artifacts."""
        return sum(1 for e in self.exports if e['status'] == 'exported')

    @property
    def total_records(self) -> int:
        return sum(e['records'] for e in self.exports if e['status'] == 'exported')

    @property
    def errors(self) -> List[Dict[str, Any]]:
        return [e for e in self.exports if e['status'] == 'failed']

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.backup_type,
            'timestamp': self.completed_at,
            'collections': self.collections,
            'totalRecords': self.total_records,
            'duration': self.duration_ms,
            'exports': self.exports,
        }

    def __repr__(self):
        return f'<RunSummary {self.id} collections={self.collections} records={self.total_records}>'


class BackupOrchestrator:
    """
    Runs backups against one row store into one backup directory.

    Collections are processed sequentially, and so are the encoders of one
    collection.
    """

    def __init__(
        self,
        config,
        store: RowStore,
        provider: Optional[CollectionProvider] = None,
        reporter: Optional[Reporter] = None,
        retention_manager: Optional[RetentionManager] = None
    ):
        """
        Initialize backup orchestrator.

        Args:
            config: Mapping with BACKUP_* and APPWRITE_DATABASE_ID keys
            store: Row store to export from
            provider: Collection discovery (built from config if omitted)
            reporter: Lifecycle event sink (NullReporter if omitted)
            retention_manager: Tier manager (built from config if omitted)
        """
        self.config = config
        self.store = store
        self.database_id = config['APPWRITE_DATABASE_ID']
        self.base_dir = config['BACKUP_DIR']
        self.provider = provider or create_collection_provider(config, store)
        self.reporter = reporter or NullReporter()
        self.retention = retention_manager or RetentionManager(
            self.base_dir,
            lock_timeout=config.get('BACKUP_LOCK_TIMEOUT', 300),
            stale_seconds=config.get('BACKUP_LOCK_STALE_SECONDS', 21600)
        )
        self.logs = []

    @property
    def daily_dir(self) -> str:
        return os.path.join(self.base_dir, 'daily')

    def perform_backup(
        self,
        backup_type: str = 'auto',
        collections: Optional[List[str]] = None,
        formats: Optional[List[str]] = None
    ) -> RunSummary:
        """
        Perform a backup run.

        Args:
            backup_type: 'auto' (scheduled) or 'manual'
            collections: Explicit collection ids, bypassing discovery
            formats: Format names to produce (defaults to enabled formats)

        Returns:
            RunSummary of the run

        Raises:
            BackupError: If backup_type or formats are invalid
            LockBusyError: If another run holds the run lock
            EncodingError: If an artifact cannot be written (run aborted)
        """
        if backup_type not in BACKUP_TYPES:
            raise BackupError(f"Invalid backup type: {backup_type}. Valid options: {list(BACKUP_TYPES)}")

        formats = self._resolve_formats(formats)

        os.makedirs(self.base_dir, exist_ok=True)
        lock = acquire_lock(
            os.path.join(self.base_dir, RUN_LOCK_NAME),
            timeout=self.config.get('BACKUP_LOCK_TIMEOUT', 300),
            stale_seconds=self.config.get('BACKUP_LOCK_STALE_SECONDS', 21600)
        )

        start = time.monotonic()
        self._log(f"Starting Appwrite backup process ({backup_type})...")
        self._report('record_start', backup_type, {})

        try:
            summary = self._run(backup_type, collections, formats, start)
        except Exception as e:
            self._log(f"Backup failed: {e}", logging.ERROR)
            self._report('record_failure', backup_type, {
                'error': str(e),
                'duration': int((time.monotonic() - start) * 1000),
            })
            raise
        finally:
            release_lock(lock)

        self._report('record_completion', backup_type, {
            'collections': summary.collections,
            'totalRecords': summary.total_records,
            'duration': summary.duration_ms,
        })

        self._log(
            f"Backup completed successfully in {summary.duration_ms / 1000:.2f}s: "
            f"{summary.collections} collections, {summary.total_records} records"
        )
        return summary

    def _run(self, backup_type: str, collections, formats: List[str], start: float) -> RunSummary:
        self.retention.ensure_directories()

        run_timestamp = generate_timestamp()
        prefix = 'manual_' if backup_type == 'manual' else ''

        if backup_type == 'auto':
            self.retention.cleanup_same_day('daily')

        if collections is None:
            self._log("Fetching collections...")
            collections = self.provider.get_collections()
        self._log(f"Found {len(collections)} collections: {', '.join(collections)}")

        exports = []
        for collection_id in collections:
            exports.append(self._backup_collection(collection_id, f"{prefix}{run_timestamp}", formats))

        summary = RunSummary(
            backup_type,
            run_timestamp,
            exports,
            duration_ms=int((time.monotonic() - start) * 1000)
        )
        self._write_summary(summary)

        self._log("Cleaning up old backups...")
        self.retention.enforce_all(self.config['BACKUP_RETENTION'])

        return summary

    def _backup_collection(self, collection_id: str, timestamp: str, formats: List[str]) -> Dict[str, Any]:
        """Export one collection and encode it; encoder errors propagate."""
        self._log(f"Exporting collection: {collection_id}")
        result = export_collection(self.store, self.database_id, collection_id)

        if result.failed:
            self._log(f"Collection {collection_id} failed: {result.error}", logging.WARNING)
            return {
                'collection': collection_id,
                'records': 0,
                'status': 'failed',
                'files': {},
                'error': result.error,
            }

        self._log(f"Found {result.total} records")

        if result.total == 0:
            return {'collection': collection_id, 'records': 0, 'status': 'empty', 'files': {}}

        files = {}
        for format_name in formats:
            _, encoder = ENCODERS[format_name]
            self._log(f"Exporting to {format_name} format...")
            path = encoder(result.rows, collection_id, timestamp, self.daily_dir)
            files[format_name] = os.path.basename(path)

        return {
            'collection': collection_id,
            'records': result.total,
            'status': 'exported',
            'files': files,
        }

    def _write_summary(self, summary: RunSummary) -> str:
        path = os.path.join(self.base_dir, LOGS_DIR, f"{summary.id}.json")
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(summary.to_dict(), f, indent=2)
        self._log(f"Run summary written: {path}")
        return path

    def _resolve_formats(self, formats: Optional[List[str]]) -> List[str]:
        if formats is None:
            return enabled_formats(self.config.get('BACKUP_FORMATS'))

        unknown = [f for f in formats if f not in ENCODERS]
        if unknown:
            raise BackupError(f"Invalid export format(s): {unknown}. Valid options: {list(ENCODERS)}")
        return [f for f in ENCODERS if f in formats]

    def _report(self, method: str, backup_type: str, metadata: Dict[str, Any]):
        """Call a reporter hook; reporter errors are only logged."""
        try:
            getattr(self.reporter, method)(backup_type, metadata)
        except Exception as e:
            logger.warning(f"Reporter {method} failed: {e}")

    def preview(self, collections: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        """
        Count rows per collection without writing anything.

        Returns:
            List of dicts with 'collection', 'records' and 'error'
        """
        if collections is None:
            collections = self.provider.get_collections()

        preview = []
        for collection_id in collections:
            result = export_collection(self.store, self.database_id, collection_id)
            preview.append({
                'collection': collection_id,
                'records': result.total,
                'error': result.error,
            })
        return preview

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: logging level for the module logger
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)


def build_orchestrator(config, store: Optional[RowStore] = None) -> BackupOrchestrator:
    """
    Build an orchestrator with the configured store, provider and reporter.

    Raises:
        ValueError: If the row store is not configured
    """
    store = store or create_row_store(config)
    return BackupOrchestrator(
        config,
        store,
        provider=create_collection_provider(config, store),
        reporter=create_reporter(config, store)
    )


def perform_backup(backup_type: str = 'auto', config=None, **kwargs) -> RunSummary:
    """
    Perform a backup with the application configuration.

    Args:
        backup_type: 'auto' or 'manual'
        config: Configuration mapping (defaults to get_config())
        **kwargs: Passed to BackupOrchestrator.perform_backup()

    Returns:
        RunSummary of the run
    """
    if config is None:
        from console_backup.config import get_config
        config = get_config()

    return build_orchestrator(config).perform_backup(backup_type, **kwargs)


SAMPLE_COLLECTION_ID = 'test_collection'
SAMPLE_ROWS = [
    {
        'id': '1',
        'name': 'John Doe',
        'email': 'john@example.com',
        'role': 'admin',
        'createdAt': '2024-01-01T10:00:00Z',
        'lastLogin': '2024-01-15T08:30:00Z'
    },
    {
        'id': '2',
        'name': 'Jane Smith',
        'email': 'jane@example.com',
        'role': 'user',
        'createdAt': '2024-01-02T14:20:00Z',
        'lastLogin': '2024-01-14T16:45:00Z'
    },
    {
        'id': '3',
        'name': 'Bob Johnson',
        'email': 'bob@example.com',
        'role': 'moderator',
        'createdAt': '2024-01-03T09:15:00Z',
        'lastLogin': '2024-01-13T11:20:00Z'
    },
]


def run_test_backup(config, formats: Optional[List[str]] = None) -> List[str]:
    """
    Encode built-in sample rows in every format, without touching the store.

    Files are written to the daily tier with a 'test_' timestamp prefix.

    Returns:
        Paths of the written test artifacts

    Raises:
        EncodingError: If an encoder fails
    """
    retention = RetentionManager(config['BACKUP_DIR'])
    retention.ensure_directories()

    formats = formats or enabled_formats(config.get('BACKUP_FORMATS'))
    timestamp = f"test_{generate_timestamp()}"
    daily_dir = retention.tier_path('daily')

    paths = []
    for format_name in formats:
        _, encoder = ENCODERS[format_name]
        paths.append(encoder(SAMPLE_ROWS, SAMPLE_COLLECTION_ID, timestamp, daily_dir))
    return paths
