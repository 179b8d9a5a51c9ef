"""
Run reporters.

The orchestrator announces run start, completion and failure through a
Reporter. AuditLogReporter writes system audit events to the audit
collection; NullReporter and MemoryReporter are used where no audit sink
exists (tests, dry runs).
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .store import RowStore


logger = logging.getLogger(__name__)


class Reporter:
    """Receives backup lifecycle events."""

    def record_start(self, backup_type: str, metadata: Dict[str, Any]):
        pass

    def record_completion(self, backup_type: str, metadata: Dict[str, Any]):
        pass

    def record_failure(self, backup_type: str, metadata: Dict[str, Any]):
        pass


class NullReporter(Reporter):
    """Discards every event."""
    pass


class MemoryReporter(Reporter):
    """Keeps events in memory as (event_name, metadata) tuples."""

    def __init__(self):
        self.events: List[tuple] = []

    def record_start(self, backup_type, metadata):
        self.events.append(('BACKUP_STARTED', dict(metadata, type=backup_type)))

    def record_completion(self, backup_type, metadata):
        self.events.append(('BACKUP_COMPLETED', dict(metadata, type=backup_type)))

    def record_failure(self, backup_type, metadata):
        self.events.append(('BACKUP_FAILED', dict(metadata, type=backup_type)))

    @property
    def event_names(self) -> List[str]:
        return [name for name, _ in self.events]


class AuditLogReporter(Reporter):
    """
    Writes backup events to the audit log collection.

    Each event becomes an audit row from userId 'system' on resource
    'backup'; metadata is stored as a JSON string. Write failures are
    logged as warnings and never raised.
    """

    def __init__(self, store: RowStore, database_id: str, collection_id: str = 'audit_logs'):
        self.store = store
        self.database_id = database_id
        self.collection_id = collection_id

    def log_system_event(self, action: str, resource: str, details: Optional[Dict[str, Any]] = None):
        metadata = {'eventType': 'system'}
        metadata.update(details or {})

        data = {
            'userId': 'system',
            'action': action,
            'resource': resource,
            'oldValues': None,
            'newValues': None,
            'metadata': json.dumps(metadata, default=str),
        }

        try:
            self.store.create_row(self.database_id, self.collection_id, data)
            logger.debug(f"Audit log created for: {action}")
        except Exception as e:
            logger.warning(f"Failed to log {action}: {e}")

    def _event(self, action: str, backup_type: str, metadata: Dict[str, Any]):
        details = {
            'type': backup_type,
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'userId': 'system',
        }
        details.update(metadata)
        self.log_system_event(action, 'backup', details)

    def record_start(self, backup_type, metadata):
        self._event('BACKUP_STARTED', backup_type, metadata)

    def record_completion(self, backup_type, metadata):
        self._event('BACKUP_COMPLETED', backup_type, metadata)

    def record_failure(self, backup_type, metadata):
        self._event('BACKUP_FAILED', backup_type, metadata)


def create_reporter(config, store: RowStore) -> Reporter:
    """Audit reporter when BACKUP_AUDIT_ENABLED, otherwise a NullReporter."""
    if not config.get('BACKUP_AUDIT_ENABLED', True):
        return NullReporter()
    return AuditLogReporter(
        store,
        config['APPWRITE_DATABASE_ID'],
        config.get('AUDIT_COLLECTION_ID', 'audit_logs')
    )
