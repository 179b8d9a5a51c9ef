import os
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask


def configure_logging(config, app=None):
    """
    Configure application logging.

    Args:
        config: Mapping with LOG_LEVEL, LOG_FILE, LOG_MAX_SIZE and LOG_MAX_FILES
        app: Flask app whose logger should share the handlers (optional)
    """
    from console_backup.config import parse_size

    log_level = getattr(logging, str(config.get('LOG_LEVEL', 'info')).upper(), logging.INFO)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    handlers = [console_handler]

    # File handler
    log_file = config.get('LOG_FILE')
    if log_file:
        log_dir = os.path.dirname(os.path.abspath(log_file))
        os.makedirs(log_dir, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=parse_size(config.get('LOG_MAX_SIZE', '10m')),
            backupCount=config.get('LOG_MAX_FILES', 5)
        )
        file_handler.setLevel(log_level)
        file_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=handlers)

    # Configure Flask app logger
    if app is not None:
        app.logger.setLevel(log_level)
        for handler in handlers:
            app.logger.addHandler(handler)
        app.logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_app(config_name=None):
    """Flask application factory"""

    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'production')

    from console_backup.config import config
    app.config.from_object(config.get(config_name, config['default']))

    # Configure logging
    configure_logging(app.config, app)

    # Register blueprints
    from console_backup.routes import backup_routes, history_routes
    app.register_blueprint(backup_routes.bp)
    app.register_blueprint(history_routes.bp)

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy'}, 200

    # Initialize and start scheduler (only in designated worker or development child process)
    from console_backup.scheduler import init_scheduler, stop_scheduler
    import atexit

    # Determine if this process should initialize the scheduler
    is_reloader_child = os.environ.get('WERKZEUG_RUN_MAIN') == 'true'
    is_development = app.config.get('DEBUG', False)
    is_scheduler_worker = os.environ.get('SCHEDULER_WORKER', 'true').lower() == 'true'

    # Scheduler initialization logic:
    # - Testing: never
    # - Development mode: Only in Flask reloader child process (not parent)
    # - Production mode: Only in designated scheduler worker (SCHEDULER_WORKER=true)
    if app.config.get('TESTING', False):
        should_init_scheduler = False
    elif is_development:
        should_init_scheduler = is_reloader_child
        app.logger.info(f"Development mode: is_reloader_child={is_reloader_child}")
    else:
        should_init_scheduler = is_scheduler_worker
        app.logger.info(f"Production mode: is_scheduler_worker={is_scheduler_worker}")

    if should_init_scheduler:
        app.logger.info("Initializing scheduler in this process...")
        init_scheduler(app.config).start()

        # Register cleanup function to stop scheduler on app shutdown
        atexit.register(stop_scheduler)
        app.logger.info("Scheduler initialized and started successfully")
    else:
        app.logger.info("Scheduler initialization skipped in this process (not designated scheduler worker)")

    return app
