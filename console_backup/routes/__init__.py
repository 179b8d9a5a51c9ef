"""
HTTP routes for Console Backup.

All /api blueprints share require_api_token() as their before_request hook.
"""

import hmac

from flask import current_app, jsonify, request


def require_api_token():
    """
    Accept 'Authorization: Bearer <token>' matching BACKUP_API_TOKEN.

    Routes are open when no token is configured.
    """
    expected = current_app.config.get('BACKUP_API_TOKEN')
    if not expected:
        return None

    authorization = request.headers.get('Authorization')
    if not authorization:
        return jsonify({'success': False, 'error': 'Missing Authorization header'}), 401

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != 'bearer':
        return jsonify({'success': False, 'error': 'Invalid Authorization header'}), 401

    if not hmac.compare_digest(parts[1].strip(), expected):
        return jsonify({'success': False, 'error': 'Forbidden'}), 403

    return None
