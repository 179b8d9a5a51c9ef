"""
APScheduler configuration and job scheduling for Console Backup.

Manages:
- Daily, weekly and monthly backup jobs (cron expressions from config)
- Tier promotion ahead of weekly and monthly runs
- Manual triggers
"""

import logging
import re
from datetime import datetime
from typing import Callable, Dict, List, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from console_backup.backup.orchestrator import perform_backup
from console_backup.backup.retention import TIERS, RetentionManager


logger = logging.getLogger(__name__)

# Global scheduler instance for the web process
backup_scheduler = None

_WEEKDAY_NAMES = ('sun', 'mon', 'tue', 'wed', 'thu', 'fri', 'sat')

_WEEKDAY_ITEM_RE = re.compile(r'^(\*|\d+)(?:-(\d+))?(?:/(\d+))?$')


def _crontab_weekdays(field: str) -> str:
    """
    Rewrite a crontab day-of-week field as a list of day names.

    Crontab counts 0 (and 7) as Sunday while APScheduler counts from Monday,
    so numeric items, ranges and steps are expanded ('0-5' -> 'sun,mon,...,fri').
    Items that are already names are kept.

    Raises:
        ValueError: If a day number is outside 0-7
    """
    if field == '*':
        return field

    names = []
    for item in field.split(','):
        match = _WEEKDAY_ITEM_RE.match(item)
        if not match:
            names.append(item)
            continue

        start, end, step = match.groups()
        if start == '*':
            first, last = 0, 6
        else:
            first = int(start)
            last = int(end) if end is not None else (6 if step else first)

        if first > 7 or last > 7 or first > last:
            raise ValueError(f"Invalid day of week: {item}")

        for day in range(first, last + 1, int(step or 1)):
            name = _WEEKDAY_NAMES[day % 7]
            if name not in names:
                names.append(name)

    return ','.join(names)


class ScheduleEntry:
    """One configured cron schedule."""

    def __init__(self, name: str, cron: str, timezone: str, task: Callable,
                 description: str = '', enabled: bool = True):
        self.name = name
        self.cron = cron
        self.timezone = timezone
        self.task = task
        self.description = description or name
        self.enabled = enabled

    @property
    def job_id(self) -> str:
        return f"backup_{self.name}"

    def trigger(self) -> CronTrigger:
        """
        Build the cron trigger.

        Numeric weekdays follow crontab (0 and 7 are Sunday) and are
        converted to names, since APScheduler counts from Monday.

        Raises:
            ValueError: If the cron expression is invalid
        """
        fields = self.cron.split()
        if len(fields) == 5:
            fields[4] = _crontab_weekdays(fields[4])
        return CronTrigger.from_crontab(' '.join(fields), timezone=self.timezone)

    def next_run_time(self, now: datetime = None) -> Optional[datetime]:
        trigger = self.trigger()
        now = now or datetime.now(trigger.timezone)
        return trigger.get_next_fire_time(None, now)

    def __repr__(self):
        return f'<ScheduleEntry {self.name} "{self.cron}" enabled={self.enabled}>'


class BackupScheduler:
    """
    Owns the backup schedules and the APScheduler instance running them.

    Scheduled tasks never raise into APScheduler; failures are logged.
    """

    def __init__(
        self,
        config,
        scheduler=None,
        backup_func: Callable = None,
        retention_manager: RetentionManager = None
    ):
        """
        Initialize backup scheduler.

        Args:
            config: Mapping with BACKUP_SCHEDULES, BACKUP_TIMEZONE and BACKUP_* keys
            scheduler: APScheduler scheduler (a BackgroundScheduler by default)
            backup_func: Callable taking the backup type ('auto'/'manual')
            retention_manager: Manager used for tier promotion
        """
        self.config = config
        self.timezone = config.get('BACKUP_TIMEZONE') or 'UTC'

        if scheduler is None:
            scheduler = BackgroundScheduler(
                executors={'default': ThreadPoolExecutor(max_workers=1)},
                job_defaults={
                    'coalesce': True,  # Combine multiple pending runs into one
                    'max_instances': 1,  # Only one instance of a job at a time
                    'misfire_grace_time': 300  # 5 minutes grace period for misfires
                },
                timezone=self.timezone
            )
        self.scheduler = scheduler

        self.backup_func = backup_func or (lambda backup_type: perform_backup(backup_type, config=config))
        self.retention = retention_manager or RetentionManager(
            config['BACKUP_DIR'],
            lock_timeout=config.get('BACKUP_LOCK_TIMEOUT', 300),
            stale_seconds=config.get('BACKUP_LOCK_STALE_SECONDS', 21600)
        )
        self.entries = self._build_entries()

    def _build_entries(self) -> List[ScheduleEntry]:
        schedules = self.config.get('BACKUP_SCHEDULES', {})
        tasks = {
            'daily': self.run_daily,
            'weekly': self.run_weekly,
            'monthly': self.run_monthly,
        }

        entries = []
        for name in TIERS:
            schedule = schedules.get(name)
            if not schedule:
                continue
            entries.append(ScheduleEntry(
                name,
                schedule['cron'],
                self.timezone,
                tasks[name],
                description=schedule.get('description', ''),
                enabled=schedule.get('enabled', True)
            ))
        return entries

    def run_daily(self):
        return self.backup_func('auto')

    def run_weekly(self):
        self.retention.promote_tier('daily', 'weekly')
        return self.backup_func('auto')

    def run_monthly(self):
        self.retention.promote_tier('weekly', 'monthly')
        return self.backup_func('auto')

    def _execute_task(self, name: str):
        """Wrapper executed by APScheduler for a named schedule."""
        entry = self.get_entry(name)

        logger.info(f"Starting scheduled {name} backup")
        try:
            summary = entry.task()
            logger.info(f"Scheduled {name} backup completed: {summary!r}")
        except Exception as e:
            logger.error(f"Scheduled {name} backup failed: {e}")

    def get_entry(self, name: str) -> ScheduleEntry:
        for entry in self.entries:
            if entry.name == name:
                return entry
        raise ValueError(f"Unknown schedule: {name}")

    def start(self):
        """Register every enabled schedule and start the scheduler."""
        for entry in self.entries:
            if not entry.enabled:
                logger.info(f"{entry.name} backup schedule disabled")
                continue

            try:
                trigger = entry.trigger()
            except ValueError as e:
                logger.error(f"Invalid cron expression for {entry.name} backup ({entry.cron}): {e}")
                continue

            self.scheduler.add_job(
                func=self._execute_task,
                args=[entry.name],
                trigger=trigger,
                id=entry.job_id,
                name=entry.description,
                replace_existing=True
            )
            logger.info(f"Scheduled {entry.name} backup: {entry.description} ({entry.cron})")

        if not self.scheduler.running:
            self.scheduler.start()
            logger.info(f"Backup scheduler started ({self.timezone})")

    def stop_all(self):
        """Stop the scheduler; a run in progress is not cancelled."""
        if self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("Backup scheduler stopped")

    def is_running(self) -> bool:
        return bool(self.scheduler.running)

    def trigger(self, tier: str):
        """
        Run a manual backup now, in the calling thread.

        No promotion happens for manual runs; tier only names the schedule
        the operator asked for.

        Raises:
            ValueError: If tier is not a known schedule
            Whatever the backup raises
        """
        if tier not in TIERS:
            raise ValueError(f"Invalid tier: {tier}. Valid options: {list(TIERS)}")

        logger.info(f"Manually triggering {tier} backup")
        return self.backup_func('manual')

    def get_scheduled_jobs(self) -> List[Dict]:
        """
        Get list of all scheduled jobs.

        Returns:
            List of dicts with job information
        """
        jobs = []

        for job in self.scheduler.get_jobs():
            next_run = getattr(job, 'next_run_time', None)
            jobs.append({
                'id': job.id,
                'name': job.name,
                'next_run': next_run.isoformat() if next_run else None,
                'trigger': str(job.trigger)
            })

        return jobs

    def describe(self, now: datetime = None) -> List[Dict]:
        """Configured schedules with their next fire time, registered or not."""
        schedules = []
        for entry in self.entries:
            try:
                next_run = entry.next_run_time(now)
                next_run = next_run.isoformat() if next_run else None
                error = None
            except ValueError as e:
                next_run = None
                error = str(e)

            schedules.append({
                'name': entry.name,
                'cron': entry.cron,
                'enabled': entry.enabled,
                'description': entry.description,
                'timezone': entry.timezone,
                'next_run': next_run,
                'error': error,
            })
        return schedules


def init_scheduler(config, **kwargs) -> BackupScheduler:
    """
    Initialize the global backup scheduler (idempotent).

    Args:
        config: Configuration mapping (Flask app.config qualifies)
    """
    global backup_scheduler

    if backup_scheduler is None:
        backup_scheduler = BackupScheduler(config, **kwargs)
    return backup_scheduler


def get_scheduler() -> Optional[BackupScheduler]:
    return backup_scheduler


def stop_scheduler():
    """Stop the global backup scheduler if it is running."""
    if backup_scheduler is not None:
        backup_scheduler.stop_all()
