"""
Backup module for Console Backup.

This module handles the core backup functionality including:
- Row store access (Appwrite)
- Collection discovery and export
- Format encoding (SQL, BSON, Excel)
- Execution orchestration
- Tier retention and promotion
"""

from .store import AppwriteRowStore, RowStore, RowStoreError
from .collections import DynamicCollectionProvider, StaticCollectionProvider, export_collection
from .encoders import ENCODERS, EncodingError
from .locking import LockBusyError
from .orchestrator import BackupError, BackupOrchestrator, RunSummary, perform_backup
from .reporter import AuditLogReporter, MemoryReporter, NullReporter
from .retention import RetentionManager

__all__ = [
    'AppwriteRowStore',
    'RowStore',
    'RowStoreError',
    'DynamicCollectionProvider',
    'StaticCollectionProvider',
    'export_collection',
    'ENCODERS',
    'EncodingError',
    'LockBusyError',
    'BackupError',
    'BackupOrchestrator',
    'RunSummary',
    'perform_backup',
    'AuditLogReporter',
    'MemoryReporter',
    'NullReporter',
    'RetentionManager'
]
