"""
Command line entry points.

console-backup-cron   Run and manage the backup scheduler
console-backup        Run a single backup (or test/dry-run/cleanup)
"""

import argparse
import os
import signal
import sys
import threading

from console_backup.backup.orchestrator import build_orchestrator, run_test_backup
from console_backup.backup.retention import RetentionManager, enforce_retention_policies
from console_backup.config import get_config
from console_backup.scheduler import BackupScheduler


PID_FILE_NAME = '.cronjob.pid'
FORMAT_CHOICES = ('all', 'postgresql', 'mongodb', 'excel')
# Tier promoted into -> tier it is promoted from
PROMOTE_SOURCES = {'weekly': 'daily', 'monthly': 'weekly'}


def _load_config(config):
    if config is not None:
        return config

    from console_backup import configure_logging
    config = get_config()
    configure_logging(config)
    return config


def _pid_file(config) -> str:
    return os.path.join(config['BACKUP_DIR'], PID_FILE_NAME)


def _read_pid(path):
    try:
        with open(path) as f:
            return int(f.read().strip())
    except (OSError, ValueError):
        return None


def _process_alive(pid) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _print_summary(summary):
    print()
    print("Backup completed successfully!")
    print(f"Duration: {summary.duration_ms / 1000:.2f}s")
    print(f"Collections backed up: {summary.collections}")
    print(f"Total records: {summary.total_records}")
    for export in summary.errors:
        print(f"  Failed: {export['collection']} ({export['error']})")


# Cron


def build_cron_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='console-backup-cron',
        description='Appwrite Backup Cronjob Manager',
        epilog='Environment: TZ sets the timezone for cronjobs (default: UTC)'
    )
    actions = parser.add_mutually_exclusive_group()
    actions.add_argument('--start', dest='action', action='store_const', const='start',
                         help='Start cronjobs (default)')
    actions.add_argument('--stop', dest='action', action='store_const', const='stop',
                         help='Stop running cronjobs')
    actions.add_argument('--trigger-daily', dest='action', action='store_const', const='daily',
                         help='Run daily backup manually')
    actions.add_argument('--trigger-weekly', dest='action', action='store_const', const='weekly',
                         help='Run weekly backup manually')
    actions.add_argument('--trigger-monthly', dest='action', action='store_const', const='monthly',
                         help='Run monthly backup manually')
    actions.add_argument('--status', dest='action', action='store_const', const='status',
                         help='Show cronjob status')
    actions.add_argument('--system-cron', dest='action', action='store_const', const='system-cron',
                         help='Show system cron (crontab) commands')
    actions.add_argument('--docker-cron', dest='action', action='store_const', const='docker-cron',
                         help='Show Docker cron setup commands')
    parser.set_defaults(action='start')
    return parser


def _wait_for_signal(stop_event: threading.Event):
    """Block until SIGINT or SIGTERM."""
    def handle(signum, frame):
        stop_event.set()

    signal.signal(signal.SIGINT, handle)
    signal.signal(signal.SIGTERM, handle)

    while not stop_event.is_set():
        stop_event.wait(1)


def start_cron(config) -> int:
    scheduler = BackupScheduler(config)
    pid_file = _pid_file(config)

    print("Starting Appwrite backup cronjobs...")
    print(f"Timezone: {scheduler.timezone}")

    scheduler.start()
    for entry in scheduler.entries:
        if entry.enabled:
            print(f"  {entry.description} ({entry.cron})")

    os.makedirs(os.path.dirname(pid_file), exist_ok=True)
    with open(pid_file, 'w') as f:
        f.write(str(os.getpid()))

    print("\nCronjobs are now running. Press Ctrl+C to stop.")

    try:
        _wait_for_signal(threading.Event())
    finally:
        print("\nStopping cronjobs...")
        scheduler.stop_all()
        if _read_pid(pid_file) == os.getpid():
            os.remove(pid_file)

    return 0


def stop_cron(config) -> int:
    pid_file = _pid_file(config)
    pid = _read_pid(pid_file)

    if pid is None:
        print("No running backup scheduler found")
        return 0

    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        print(f"Backup scheduler (pid {pid}) is not running; removing stale pid file")
        os.remove(pid_file)
        return 1

    print(f"Sent stop signal to backup scheduler (pid {pid})")
    return 0


def trigger_cron(config, tier: str) -> int:
    print(f"Triggering {tier} backup...")
    try:
        summary = BackupScheduler(config).trigger(tier)
    except Exception as e:
        print(f"{tier} backup failed: {e}", file=sys.stderr)
        return 1

    _print_summary(summary)
    return 0


def show_status(config) -> int:
    scheduler = BackupScheduler(config)

    pid = _read_pid(_pid_file(config))
    if pid is not None and _process_alive(pid):
        print(f"Scheduler: running (pid {pid})")
    else:
        print("Scheduler: not running")

    print(f"Timezone: {scheduler.timezone}")
    for schedule in scheduler.describe():
        state = 'enabled' if schedule['enabled'] else 'disabled'
        if schedule['error']:
            next_run = f"invalid cron: {schedule['error']}"
        else:
            next_run = f"next run {schedule['next_run']}"
        print(f"  {schedule['name']:<8} {schedule['cron']:<12} {state:<8} {next_run}")

    return 0


def backup_command(name: str) -> str:
    """console-backup invocation for a schedule; weekly and monthly promote first."""
    if name in PROMOTE_SOURCES:
        return f"console-backup --promote {name}"
    return 'console-backup'


def system_cron_lines(config, project_root: str = None):
    project_root = project_root or os.getcwd()
    lines = ['# Console Database Backups']
    for name, schedule in config['BACKUP_SCHEDULES'].items():
        if not schedule['enabled']:
            continue
        lines.append(f"# {schedule['description']}")
        lines.append(f"{schedule['cron']} cd {project_root} && {backup_command(name)}")
    return lines


def docker_cron_snippets(config):
    setup = ['# cron-setup.sh', '#!/bin/bash', '# Add cron jobs']
    for name, schedule in config['BACKUP_SCHEDULES'].items():
        if schedule['enabled']:
            setup.append(
                f'echo "{schedule["cron"]} root cd /app && {backup_command(name)}" '
                f'>> /etc/cron.d/console-backup'
            )
    setup.append('chmod 0644 /etc/cron.d/console-backup')
    setup.append('crontab /etc/cron.d/console-backup')

    dockerfile = '\n'.join([
        '# Add to your Dockerfile',
        'RUN apt-get update && apt-get install -y cron',
        'COPY cron-setup.sh /cron-setup.sh',
        'RUN chmod +x /cron-setup.sh',
        'RUN /cron-setup.sh',
        '',
        '# Add to docker-compose.yml',
        'command: ["cron", "-f"]',
    ])
    return '\n'.join(setup), dockerfile


def show_system_cron(config) -> int:
    lines = system_cron_lines(config)

    print("System Cron (crontab) Setup:")
    print()
    print("1. Open crontab editor:")
    print("   crontab -e")
    print()
    print("2. Add these lines:")
    for line in lines:
        print(f"   {line}")
    print()
    print("3. Save and exit")
    return 0


def show_docker_cron(config) -> int:
    cron_setup, dockerfile = docker_cron_snippets(config)

    print("Docker Cron Setup:")
    print()
    print("1. Create cron-setup.sh:")
    print(cron_setup)
    print()
    print("2. Update Dockerfile:")
    print(dockerfile)
    print()
    print("3. Alternative: Use a separate cron container")
    print("   - Use docker-compose with a cron service running console-backup-cron")
    return 0


def cron_main(argv=None, config=None) -> int:
    args = build_cron_parser().parse_args(argv)
    config = _load_config(config)

    if args.action == 'start':
        return start_cron(config)
    if args.action == 'stop':
        return stop_cron(config)
    if args.action in ('daily', 'weekly', 'monthly'):
        return trigger_cron(config, args.action)
    if args.action == 'status':
        return show_status(config)
    if args.action == 'system-cron':
        return show_system_cron(config)
    return show_docker_cron(config)


# Backup


def build_backup_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='console-backup',
        description='Appwrite Database Backup Tool',
        epilog=(
            'Environment: NEXT_PUBLIC_APPWRITE_ENDPOINT, NEXT_PUBLIC_APPWRITE_PROJECT_ID, '
            'NEXT_PUBLIC_APPWRITE_DATABASE_ID (default: console-db), APPWRITE_API_KEY'
        )
    )
    parser.add_argument('--dry-run', action='store_true',
                        help='Show what would be backed up without actually doing it')
    parser.add_argument('--test', action='store_true',
                        help='Run with test data to verify export functions')
    parser.add_argument('--collections', metavar='IDS',
                        help='Comma-separated list of collection IDs to backup')
    parser.add_argument('--format', choices=FORMAT_CHOICES, default='all',
                        help='Export format (default: all)')
    parser.add_argument('--cleanup-only', action='store_true',
                        help="Only cleanup old backups, don't create new ones")
    parser.add_argument('--manual', action='store_true',
                        help='Record the run as a manual backup')
    parser.add_argument('--promote', choices=sorted(PROMOTE_SOURCES),
                        help='Copy the newest artifact of the tier below into this tier before the backup '
                             '(weekly: daily -> weekly, monthly: weekly -> monthly)')
    return parser


def promote(config, tier: str):
    """Promote the newest artifact of the tier below into tier."""
    manager = RetentionManager(
        config['BACKUP_DIR'],
        lock_timeout=config.get('BACKUP_LOCK_TIMEOUT', 300),
        stale_seconds=config.get('BACKUP_LOCK_STALE_SECONDS', 21600)
    )
    path = manager.promote_tier(PROMOTE_SOURCES[tier], tier)
    if path:
        print(f"Promoted {PROMOTE_SOURCES[tier]} backup to {tier}: {os.path.basename(path)}")
    else:
        print(f"No {PROMOTE_SOURCES[tier]} backup to promote")
    return path


def backup_main(argv=None, config=None) -> int:
    args = build_backup_parser().parse_args(argv)
    config = _load_config(config)

    formats = None if args.format == 'all' else [args.format]
    collections = None
    if args.collections:
        collections = [c.strip() for c in args.collections.split(',') if c.strip()]

    if args.test:
        print("Running backup test with sample data...")
        try:
            paths = run_test_backup(config, formats=formats)
        except Exception as e:
            print(f"Test backup failed: {e}", file=sys.stderr)
            return 1
        for path in paths:
            print(f"  Created {os.path.basename(path)}")
        print("All export functions working correctly!")
        return 0

    if args.cleanup_only:
        summary = enforce_retention_policies(config)
        print(f"Removed: daily={summary['daily']} weekly={summary['weekly']} monthly={summary['monthly']}")
        for error in summary['errors']:
            print(f"  {error}", file=sys.stderr)
        return 1 if summary['errors'] else 0

    try:
        orchestrator = build_orchestrator(config)

        if args.dry_run:
            print("Dry run: nothing will be written")
            for item in orchestrator.preview(collections):
                if item['error']:
                    print(f"  {item['collection']}: not accessible ({item['error']})")
                else:
                    print(f"  {item['collection']}: {item['records']} records")
            return 0

        if args.promote:
            promote(config, args.promote)

        summary = orchestrator.perform_backup(
            'manual' if args.manual else 'auto',
            collections=collections,
            formats=formats
        )
    except Exception as e:
        print(f"Backup failed: {e}", file=sys.stderr)
        return 1

    _print_summary(summary)
    print(f"Backup location: {os.path.join(config['BACKUP_DIR'], 'daily')}")
    return 0


def run_cron():
    sys.exit(cron_main())


def run_backup():
    sys.exit(backup_main())
