"""
Retention and tier rotation for backup artifacts.

Artifacts live in count-capped tiers (daily, weekly, monthly). Cleanup keeps
the newest N artifacts of a tier by modification time; promotion copies the
newest artifact of one tier into the next. Every tier operation runs under
that tier's lock file.
"""

import logging
import os
import re
import shutil
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .encoders import is_artifact
from .locking import file_lock


logger = logging.getLogger(__name__)

TIERS = ('daily', 'weekly', 'monthly')
LOGS_DIR = 'logs'
TIER_LOCK_NAME = '.tier.lock'

_TIMESTAMP_LOOKAHEAD = r'(?=\d{4}-\d{2}-\d{2}T)'
_TIMESTAMP_RE = re.compile(r'\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}')


class RetentionError(Exception):
    """Raised for invalid retention requests (unknown tier, negative count)."""
    pass


def promoted_name(filename: str, source_tier: str, dest_tier: str) -> str:
    """
    Filename of an artifact after promotion from source_tier to dest_tier.

    An existing '_{source}_' marker in front of the timestamp is replaced by
    '_{dest}_'; otherwise '{dest}_' is inserted before the timestamp.

    Examples:
        posts_2024-01-07T03-00-00.xlsx -> posts_weekly_2024-01-07T03-00-00.xlsx
        posts_weekly_2024-01-07T03-00-00.xlsx -> posts_monthly_2024-01-07T03-00-00.xlsx
    """
    marker = re.compile(f'_{re.escape(source_tier)}_{_TIMESTAMP_LOOKAHEAD}')
    renamed, count = marker.subn(f'_{dest_tier}_', filename, count=1)
    if count:
        return renamed

    match = _TIMESTAMP_RE.search(filename)
    if match:
        return f"{filename[:match.start()]}{dest_tier}_{filename[match.start():]}"
    return f"{dest_tier}_{filename}"


class RetentionManager:
    """
    Manages retention and promotion across backup tiers.

    Keeps a timestamped log of everything it does in self.logs.
    """

    def __init__(self, base_dir: str, lock_timeout: float = 300, stale_seconds: int = 21600):
        """
        Initialize retention manager.

        Args:
            base_dir: Backup base directory holding the tier directories
            lock_timeout: Seconds to wait for a tier lock
            stale_seconds: Age after which a tier lock is reclaimed
        """
        self.base_dir = base_dir
        self.lock_timeout = lock_timeout
        self.stale_seconds = stale_seconds
        self.logs = []

    def tier_path(self, tier: str) -> str:
        if tier not in TIERS and tier != LOGS_DIR:
            raise RetentionError(f"Invalid tier: {tier}. Valid options: {list(TIERS)}")
        return os.path.join(self.base_dir, tier)

    def ensure_directories(self):
        """Create the base, tier and logs directories if missing."""
        for name in TIERS + (LOGS_DIR,):
            path = os.path.join(self.base_dir, name)
            if not os.path.isdir(path):
                os.makedirs(path, exist_ok=True)
                self._log(f"Created directory: {path}")

    def _tier_lock(self, tier_path: str):
        return file_lock(
            os.path.join(tier_path, TIER_LOCK_NAME),
            timeout=self.lock_timeout,
            stale_seconds=self.stale_seconds
        )

    @staticmethod
    def list_artifacts(tier_path: str) -> List[Dict[str, Any]]:
        """
        List artifact files in a tier, newest first.

        Returns:
            List of dicts with 'name', 'path' and 'modified' (mtime) keys
        """
        if not os.path.isdir(tier_path):
            return []

        files = []
        for name in os.listdir(tier_path):
            path = os.path.join(tier_path, name)
            if is_artifact(name) and os.path.isfile(path):
                files.append({
                    'name': name,
                    'path': path,
                    'modified': os.stat(path).st_mtime
                })

        files.sort(key=lambda f: (f['modified'], f['name']), reverse=True)
        return files

    def cleanup_directory(self, tier_path: str, keep_count: int, tier_name: str = None) -> int:
        """
        Delete every artifact beyond the keep_count newest in a tier.

        Per-file failures are logged and skipped.

        Args:
            tier_path: Tier directory
            keep_count: Number of newest artifacts to keep
            tier_name: Label used in log messages

        Returns:
            Number of files deleted

        Raises:
            RetentionError: If keep_count is negative
        """
        if keep_count < 0:
            raise RetentionError(f"Retention count must be >= 0, got {keep_count}")

        if not os.path.isdir(tier_path):
            return 0

        label = tier_name or os.path.basename(tier_path.rstrip(os.sep))
        deleted = 0

        with self._tier_lock(tier_path):
            files = self.list_artifacts(tier_path)

            for file_info in files[keep_count:]:
                try:
                    os.remove(file_info['path'])
                    deleted += 1
                    self._log(f"Removed old {label} backup: {file_info['name']}")
                except OSError as e:
                    self._log(f"Failed to remove {label} backup {file_info['name']}: {e}", logging.WARNING)

        return deleted

    def cleanup_same_day(self, tier: str = 'daily', today: str = None) -> int:
        """
        Delete today's automatic artifacts from a tier.

        Manual artifacts ('manual_' in the name) are kept.

        Args:
            tier: Tier to clean (daily for auto runs)
            today: Date string YYYY-MM-DD (defaults to the current UTC date)

        Returns:
            Number of files deleted
        """
        tier_path = self.tier_path(tier)
        if not os.path.isdir(tier_path):
            return 0

        today = today or datetime.now(timezone.utc).strftime('%Y-%m-%d')
        self._log(f"Cleaning up existing {tier} backups for {today}...")
        deleted = 0

        with self._tier_lock(tier_path):
            for file_info in self.list_artifacts(tier_path):
                name = file_info['name']
                if 'manual_' in name or today not in name:
                    continue
                try:
                    os.remove(file_info['path'])
                    deleted += 1
                    self._log(f"Removed old {tier} backup: {name}")
                except OSError as e:
                    self._log(f"Failed to remove {name}: {e}", logging.WARNING)

        if deleted:
            self._log(f"Cleaned up {deleted} existing {tier} backup files")
        else:
            self._log(f"No existing {tier} backups to clean up")

        return deleted

    def promote_tier(self, source_tier: str, dest_tier: str) -> Optional[str]:
        """
        Copy the newest artifact of source_tier into dest_tier.

        The source file is kept. The copy is renamed with promoted_name().

        Returns:
            Destination path, or None if there was nothing to promote or the
            copy failed
        """
        source_path = self.tier_path(source_tier)
        dest_path = self.tier_path(dest_tier)

        with self._tier_lock(source_path):
            files = self.list_artifacts(source_path)
            if not files:
                self._log(f"No {source_tier} backups to archive into {dest_tier}")
                return None

            latest = files[0]
            target = os.path.join(dest_path, promoted_name(latest['name'], source_tier, dest_tier))

            try:
                os.makedirs(dest_path, exist_ok=True)
                with self._tier_lock(dest_path):
                    shutil.copy2(latest['path'], target)
            except OSError as e:
                self._log(f"Failed to archive {dest_tier} backup: {e}", logging.ERROR)
                return None

        self._log(f"Archived {dest_tier} backup: {latest['name']} -> {os.path.basename(target)}")
        return target

    def enforce_all(self, retention: Dict[str, int]) -> Dict[str, Any]:
        """
        Apply retention caps to every tier.

        Args:
            retention: {'daily': N, 'weekly': N, 'monthly': N}

        Returns:
            Dict with per-tier deletion counts and 'errors'
        """
        summary = {'errors': []}

        for tier in TIERS:
            try:
                summary[tier] = self.cleanup_directory(self.tier_path(tier), retention[tier], tier)
            except Exception as e:
                error_msg = f"Failed to enforce {tier} retention: {e}"
                self._log(error_msg, logging.ERROR)
                summary[tier] = 0
                summary['errors'].append(error_msg)

        return summary

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


def enforce_retention_policies(config) -> Dict[str, Any]:
    """
    Enforce the configured retention caps on all tiers.

    Returns:
        Summary dict from RetentionManager.enforce_all(), plus 'logs'
    """
    manager = RetentionManager(
        config['BACKUP_DIR'],
        lock_timeout=config.get('BACKUP_LOCK_TIMEOUT', 300),
        stale_seconds=config.get('BACKUP_LOCK_STALE_SECONDS', 21600)
    )
    summary = manager.enforce_all(config['BACKUP_RETENTION'])
    summary['logs'] = manager.logs
    return summary
