import os


def _env(*names, default=None):
    """Return the first non-empty environment variable among names."""
    for name in names:
        value = os.environ.get(name)
        if value:
            return value
    return default


def _env_list(name, default=''):
    return [item.strip() for item in os.environ.get(name, default).split(',') if item.strip()]


def _env_enabled(name):
    # Anything except an explicit 'false' keeps the feature on
    return os.environ.get(name, 'true').lower() != 'false'


class Config:
    """Base configuration"""

    # Appwrite row store
    APPWRITE_ENDPOINT = _env('NEXT_PUBLIC_APPWRITE_ENDPOINT', 'APPWRITE_ENDPOINT',
                             default='https://cloud.appwrite.io/v1')
    APPWRITE_PROJECT_ID = _env('NEXT_PUBLIC_APPWRITE_PROJECT_ID', 'APPWRITE_PROJECT_ID')
    APPWRITE_DATABASE_ID = _env('NEXT_PUBLIC_APPWRITE_DATABASE_ID', 'APPWRITE_DATABASE_ID',
                                default='console-db')
    APPWRITE_API_KEY = os.environ.get('APPWRITE_API_KEY')  # Server-side key required for backups
    APPWRITE_TIMEOUT = int(os.environ.get('APPWRITE_TIMEOUT', '30'))
    APPWRITE_PAGE_SIZE = int(os.environ.get('APPWRITE_PAGE_SIZE', '100'))

    # Backup layout and retention (count of artifacts kept per tier)
    BACKUP_DIR = os.environ.get('BACKUP_DIR') or './backup'
    BACKUP_RETENTION = {
        'daily': int(os.environ.get('BACKUP_RETENTION_DAILY', '7')),
        'weekly': int(os.environ.get('BACKUP_RETENTION_WEEKLY', '4')),
        'monthly': int(os.environ.get('BACKUP_RETENTION_MONTHLY', '12')),
    }

    # Collection discovery: 'dynamic' lists the database schema, 'static' probes an allow-list
    BACKUP_COLLECTION_DISCOVERY = os.environ.get('BACKUP_COLLECTION_DISCOVERY', 'dynamic').lower()
    BACKUP_STATIC_COLLECTIONS = _env_list(
        'BACKUP_STATIC_COLLECTIONS',
        'audit_logs,user_profiles,system_settings,notifications'
    )
    BACKUP_INCLUDE_COLLECTIONS = _env_list('BACKUP_INCLUDE_COLLECTIONS')
    BACKUP_EXCLUDE_COLLECTIONS = _env_list('BACKUP_EXCLUDE_COLLECTIONS')

    # Export formats
    BACKUP_FORMATS = {
        'postgresql': _env_enabled('BACKUP_FORMAT_POSTGRESQL'),
        'mongodb': _env_enabled('BACKUP_FORMAT_MONGODB'),
        'excel': _env_enabled('BACKUP_FORMAT_EXCEL'),
    }

    # Cron schedules
    BACKUP_TIMEZONE = os.environ.get('TZ') or 'UTC'
    BACKUP_SCHEDULES = {
        'daily': {
            'cron': os.environ.get('BACKUP_CRON_DAILY', '0 2 * * *'),
            'enabled': _env_enabled('BACKUP_CRON_DAILY_ENABLED'),
            'description': 'Daily backup at 2:00 AM',
        },
        'weekly': {
            'cron': os.environ.get('BACKUP_CRON_WEEKLY', '0 3 * * 0'),
            'enabled': _env_enabled('BACKUP_CRON_WEEKLY_ENABLED'),
            'description': 'Weekly backup (Sunday) at 3:00 AM',
        },
        'monthly': {
            'cron': os.environ.get('BACKUP_CRON_MONTHLY', '0 4 1 * *'),
            'enabled': _env_enabled('BACKUP_CRON_MONTHLY_ENABLED'),
            'description': 'Monthly backup (1st of month) at 4:00 AM',
        },
    }

    # Locking
    BACKUP_LOCK_TIMEOUT = float(os.environ.get('BACKUP_LOCK_TIMEOUT', '300'))
    BACKUP_LOCK_STALE_SECONDS = int(os.environ.get('BACKUP_LOCK_STALE_SECONDS', '21600'))

    # Audit events
    BACKUP_AUDIT_ENABLED = _env_enabled('BACKUP_AUDIT_ENABLED')
    AUDIT_COLLECTION_ID = os.environ.get('AUDIT_COLLECTION_ID', 'audit_logs')

    # HTTP
    BACKUP_API_TOKEN = os.environ.get('BACKUP_API_TOKEN')

    # Logging
    LOG_LEVEL = os.environ.get('BACKUP_LOG_LEVEL', 'info')
    LOG_FILE = os.environ.get('BACKUP_LOG_FILE') or './backup/logs/backup.log'
    LOG_MAX_SIZE = os.environ.get('BACKUP_LOG_MAX_SIZE', '10m')
    LOG_MAX_FILES = int(os.environ.get('BACKUP_LOG_MAX_FILES', '5'))


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    LOG_LEVEL = 'debug'


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Testing configuration"""
    DEBUG = False
    TESTING = True
    BACKUP_AUDIT_ENABLED = False
    BACKUP_LOCK_TIMEOUT = 1.0
    BACKUP_API_TOKEN = None
    LOG_FILE = None


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}


def get_config(config_name=None) -> dict:
    """
    Flatten a configuration class into a plain dict of its uppercase settings.

    Args:
        config_name: Key into ``config`` (defaults to FLASK_ENV, then 'production')

    Returns:
        Dict with the same keys Flask's app.config would hold
    """
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'production')

    config_class = config.get(config_name, config['default'])
    return {
        key: getattr(config_class, key)
        for key in dir(config_class)
        if key.isupper()
    }


def parse_size(value) -> int:
    """
    Parse a human size such as '10m', '512k' or '1g' into bytes.

    Plain integers are returned unchanged.
    """
    if isinstance(value, int):
        return value

    text = str(value).strip().lower()
    units = {'k': 1024, 'm': 1024 ** 2, 'g': 1024 ** 3}

    if text and text[-1] == 'b':
        text = text[:-1]
    if text and text[-1] in units:
        return int(float(text[:-1]) * units[text[-1]])
    return int(text)
