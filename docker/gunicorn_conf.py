# Gunicorn configuration for Console Backup
# Only one worker may own the backup scheduler

import os
import logging

logger = logging.getLogger('gunicorn.error')

bind = f"0.0.0.0:{os.environ.get('PORT', '5000')}"
workers = int(os.environ.get('GUNICORN_WORKERS', '2'))
# Backups run inside the request for POST /api/backup
timeout = int(os.environ.get('GUNICORN_TIMEOUT', '900'))


def post_fork(server, worker):
    """
    Designate the first spawned worker (worker.age == 1) as the scheduler owner.

    Runs before the worker loads the app; create_app() starts the backup
    scheduler only where SCHEDULER_WORKER is 'true', so cron runs fire once
    per deployment, not once per worker.
    """
    owner = worker.age == 1
    os.environ['SCHEDULER_WORKER'] = 'true' if owner else 'false'
    role = 'scheduler owner' if owner else 'HTTP only'
    logger.info(f"Worker PID {worker.pid} (age={worker.age}): {role}")
