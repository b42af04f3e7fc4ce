import os
import secrets
import tempfile


def _env_flag(name, default):
    return os.environ.get(name, default).lower() in ('true', '1', 'yes')


def _load_secret_key(secret_file):
    """
    Read SECRET_KEY from a file, generating and saving it on first start.

    The key also encrypts stored repository credentials, so a key that
    cannot be saved makes them unreadable after a restart.
    """
    if os.path.exists(secret_file):
        with open(secret_file, 'r') as f:
            secret_key = f.read().strip()
        if secret_key:
            return secret_key

    secret_key = secrets.token_hex(32)
    parent = os.path.dirname(secret_file)
    if parent and not os.path.isdir(parent):
        print(f"WARNING: {parent} does not exist, using non-persistent SECRET_KEY. "
              "Stored credentials will not survive a restart.")
        return secret_key

    try:
        fd = os.open(secret_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, 'w') as f:
            f.write(secret_key)
    except OSError as e:
        print(f"WARNING: Could not save SECRET_KEY to {secret_file} ({e}). "
              "Stored credentials will not survive a restart.")

    return secret_key


class Config:
    """Base configuration"""

    # Flask
    # SECRET_KEY also keys the encryption of stored repository credentials
    SECRET_KEY_FILE = os.environ.get('SECRET_KEY_FILE') or '/data/.secret_key'
    SECRET_KEY = os.environ.get('SECRET_KEY') or _load_secret_key(SECRET_KEY_FILE)

    # Database
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:////data/repokeeper.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Logging
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    LOG_DIR = os.environ.get('LOG_DIR') or os.path.join(BASE_DIR, 'data', 'logs')

    # Sync engine
    SYNC_MAX_ATTEMPTS = int(os.environ.get('SYNC_MAX_ATTEMPTS', 5))
    SYNC_RETRY_DELAY = float(os.environ.get('SYNC_RETRY_DELAY', 5))
    SYNC_DRY_RUN = _env_flag('SYNC_DRY_RUN', 'false')
    ZSTD_LEVEL = int(os.environ.get('ZSTD_LEVEL', 3))

    # SSH host trust
    KNOWN_HOSTS_FILE = os.environ.get('KNOWN_HOSTS_FILE') or os.path.expanduser('~/.ssh/known_hosts')
    REJECT_CHANGED_HOST_KEYS = _env_flag('REJECT_CHANGED_HOST_KEYS', 'true')

    # Scheduler
    SCHEDULER_ENABLED = _env_flag('SCHEDULER_ENABLED', 'true')
    SYNC_SCHEDULE_CRON = os.environ.get('SYNC_SCHEDULE_CRON') or '0 3 * * *'
    SCHEDULER_TIMEZONE = 'UTC'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_ECHO = True

    # Use local data directory for development
    DATA_DIR = os.path.join(Config.BASE_DIR, 'data')
    SQLALCHEMY_DATABASE_URI = f'sqlite:///{os.path.join(DATA_DIR, "repokeeper.db")}'


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SQLALCHEMY_ECHO = False


class TestingConfig(Config):
    """Configuration used by the test suite"""
    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SECRET_KEY = 'test-secret-key'
    LOG_DIR = os.path.join(tempfile.gettempdir(), 'repokeeper-test-logs')
    SCHEDULER_ENABLED = False
    SYNC_RETRY_DELAY = 0


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}
