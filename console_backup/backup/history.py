"""
Backup run history, read back from the run summaries in logs/.
"""

import json
import logging
import os
import re
from typing import Any, Dict, List

from .retention import LOGS_DIR


logger = logging.getLogger(__name__)

HISTORY_LIMIT = 20

_BACKUP_ID_RE = re.compile(r'^backup_(\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2})$')


class HistoryError(Exception):
    """Raised for malformed backup ids."""
    pass


def _summary_files(logs_dir: str) -> List[str]:
    if not os.path.isdir(logs_dir):
        return []
    names = [f for f in os.listdir(logs_dir) if f.startswith('backup_') and f.endswith('.json')]
    # Timestamps sort lexically, newest first
    return sorted(names, reverse=True)


def _artifact_size(daily_dir: str, exports: List[Dict[str, Any]]) -> int:
    size = 0
    for export in exports:
        for filename in (export.get('files') or {}).values():
            path = os.path.join(daily_dir, filename)
            if os.path.isfile(path):
                size += os.path.getsize(path)
    return size


def list_runs(base_dir: str, limit: int = HISTORY_LIMIT) -> List[Dict[str, Any]]:
    """
    Load the most recent run summaries, newest first.

    Unreadable or corrupt summary files are skipped with a warning.

    Args:
        base_dir: Backup base directory
        limit: Maximum number of runs returned

    Returns:
        List of history entries (summary fields plus 'id', 'status' and
        'size_bytes' of the artifacts still present in the daily tier)
    """
    logs_dir = os.path.join(base_dir, LOGS_DIR)
    daily_dir = os.path.join(base_dir, 'daily')
    history = []

    for filename in _summary_files(logs_dir)[:limit]:
        try:
            with open(os.path.join(logs_dir, filename), encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to parse backup log {filename}: {e}")
            continue

        if not isinstance(data, dict):
            logger.warning(f"Skipping malformed backup log {filename}")
            continue

        exports = data.get('exports') or []
        history.append({
            'id': data.get('id') or filename[:-len('.json')],
            'type': data.get('type', 'auto'),
            'status': 'completed',
            'timestamp': data.get('timestamp'),
            'collections': data.get('collections', 0),
            'totalRecords': data.get('totalRecords', 0),
            'duration': data.get('duration', 0),
            'size_bytes': _artifact_size(daily_dir, exports),
            'exports': exports,
        })

    return history


def delete_run(base_dir: str, backup_id: str) -> List[str]:
    """
    Delete the daily artifacts and the summary of one run.

    Files are matched by the run timestamp embedded in backup_id
    ('backup_<timestamp>'), which also matches manual_ artifacts.

    Args:
        base_dir: Backup base directory
        backup_id: Run id as listed by list_runs()

    Returns:
        Names of the deleted files (empty if nothing matched)

    Raises:
        HistoryError: If backup_id is not a valid run id
    """
    match = _BACKUP_ID_RE.match(backup_id or '')
    if not match:
        raise HistoryError(f"Invalid backup id: {backup_id}")

    timestamp = match.group(1)
    deleted = []

    for tier in ('daily', LOGS_DIR):
        tier_dir = os.path.join(base_dir, tier)
        if not os.path.isdir(tier_dir):
            continue

        for filename in sorted(os.listdir(tier_dir)):
            if timestamp not in filename:
                continue
            try:
                os.remove(os.path.join(tier_dir, filename))
                deleted.append(filename)
                logger.info(f"Deleted backup file: {filename}")
            except OSError as e:
                logger.warning(f"Failed to delete file {filename}: {e}")

    if deleted:
        logger.info(f"Deleted {len(deleted)} backup files for {backup_id}")
    return deleted
