"""
Backup routes - trigger backups and inspect schedules.
"""

from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request

from console_backup.backup.locking import LockBusyError
from console_backup.backup.orchestrator import BACKUP_TYPES, perform_backup
from console_backup.routes import require_api_token
from console_backup.scheduler import get_scheduler


bp = Blueprint('backup', __name__, url_prefix='/api/backup')
bp.before_request(require_api_token)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@bp.route('', methods=['POST'])
def trigger_backup():
    """
    Perform a backup synchronously.

    Request body:
        - type: 'auto' or 'manual' (default: manual)

    Returns:
        JSON envelope with the run summary in 'data'
    """
    data = request.get_json(silent=True) or {}
    backup_type = data.get('type', 'manual')

    if backup_type not in BACKUP_TYPES:
        return jsonify({
            'success': False,
            'message': 'Invalid request data',
            'error': f"type must be one of {list(BACKUP_TYPES)}",
            'timestamp': _now()
        }), 400

    current_app.logger.info(f"{backup_type.capitalize()} backup initiated via API")

    try:
        summary = perform_backup(backup_type, config=current_app.config)
    except LockBusyError as e:
        return jsonify({
            'success': False,
            'message': 'Another backup is already running',
            'error': str(e),
            'timestamp': _now()
        }), 409
    except Exception as e:
        current_app.logger.error(f"{backup_type.capitalize()} backup failed: {e}")
        return jsonify({
            'success': False,
            'message': f"{backup_type.capitalize()} backup failed",
            'error': str(e),
            'timestamp': _now()
        }), 500

    current_app.logger.info(
        f"Backup summary: {summary.collections} collections, {summary.total_records} records"
    )

    return jsonify({
        'success': True,
        'message': f"{backup_type.capitalize()} backup completed successfully",
        'data': summary.to_dict(),
        'timestamp': _now()
    })


@bp.route('', methods=['GET'])
def backup_info():
    return jsonify({
        'message': 'Backup API is available',
        'endpoints': [
            'POST /api/backup - Perform backup',
            'GET /api/backup/schedule - Backup schedule configuration',
            'GET /api/backup/status - Scheduler status',
            'GET /api/backups/history - Recent backup runs',
            'DELETE /api/backups/<id> - Delete a backup'
        ]
    })


@bp.route('/schedule', methods=['GET'])
def get_schedule():
    """
    Get backup schedule configuration.

    Returns:
        JSON with timezone, schedules and retention counts
    """
    config = current_app.config
    schedules = {
        name: {
            'cron': schedule['cron'],
            'enabled': schedule['enabled'],
            'description': schedule['description'],
        }
        for name, schedule in config['BACKUP_SCHEDULES'].items()
    }

    return jsonify({
        'success': True,
        'data': {
            'timezone': config['BACKUP_TIMEZONE'],
            'schedules': schedules,
            'retention': config['BACKUP_RETENTION'],
        }
    })


@bp.route('/status', methods=['GET'])
def get_status():
    """
    Get scheduler status for this process.

    Returns:
        JSON with running state and scheduled jobs
    """
    scheduler = get_scheduler()

    if scheduler is None:
        return jsonify({
            'success': True,
            'data': {
                'initialized': False,
                'running': False,
                'jobs': [],
                'note': 'Scheduler not running in this process'
            }
        })

    return jsonify({
        'success': True,
        'data': {
            'initialized': True,
            'running': scheduler.is_running(),
            'jobs': scheduler.get_scheduled_jobs()
        }
    })
