"""
Backup history routes - View and delete past backup runs.
"""

from flask import Blueprint, current_app, jsonify, request

from console_backup.backup.history import HISTORY_LIMIT, HistoryError, delete_run, list_runs
from console_backup.routes import require_api_token


bp = Blueprint('history', __name__, url_prefix='/api/backups')
bp.before_request(require_api_token)


@bp.route('/history', methods=['GET'])
def list_history():
    """
    Get the most recent backup runs.

    Query params:
        - limit: Max number of runs (default and max: 20)

    Returns:
        JSON array of run summaries, newest first
    """
    limit = request.args.get('limit', HISTORY_LIMIT, type=int)
    if limit < 1 or limit > HISTORY_LIMIT:
        limit = HISTORY_LIMIT

    try:
        runs = list_runs(current_app.config['BACKUP_DIR'], limit=limit)
    except OSError as e:
        current_app.logger.error(f"Failed to read backup history: {e}")
        return jsonify({'error': 'Failed to read backup history'}), 500

    return jsonify(runs)


@bp.route('/<backup_id>', methods=['DELETE'])
def delete_backup(backup_id):
    """
    Delete the daily artifacts and summary of a backup run.

    Args:
        backup_id: Run id ('backup_<timestamp>')

    Returns:
        JSON with number of files deleted
    """
    try:
        deleted = delete_run(current_app.config['BACKUP_DIR'], backup_id)
    except HistoryError as e:
        return jsonify({'error': str(e)}), 400

    if not deleted:
        return jsonify({'error': 'Backup not found'}), 404

    return jsonify({
        'success': True,
        'message': f"Backup {backup_id} deleted successfully",
        'filesDeleted': len(deleted)
    })
