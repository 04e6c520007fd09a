import os


class ConfigurationError(ValueError):
    """Raised when policy, upload or download parameters are invalid."""
    pass


def _env_int(name, default):
    value = os.environ.get(name)
    if value is None or value == '':
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {name} must be an integer, got {value!r}")


def _env_bool(name, default):
    value = os.environ.get(name)
    if value is None or value == '':
        return default
    return value.lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Base configuration"""

    # AWS
    REGION = os.environ.get('AWS_REGION') or 'us-east-1'
    PROFILE = os.environ.get('AWS_PROFILE') or None
    CREDENTIALS_FILE = os.environ.get('AWS_SHARED_CREDENTIALS_FILE') or None
    ENDPOINT_URL = os.environ.get('GFSBACKUP_ENDPOINT_URL') or None

    # Upload/Download
    TIMEOUT = 3600  # seconds
    CONCURRENT_WORKERS = 5
    PART_SIZE = 50  # MiB
    PROGRESS_POLL_INTERVAL = 30  # seconds

    # Rotation
    DAILY_PREFIX = 'daily_'
    WEEKLY_PREFIX = 'weekly_'
    MONTHLY_PREFIX = 'monthly_'
    DAILY_RETENTION_COUNT = 6
    DAILY_RETENTION_PERIOD = 168  # hours
    WEEKLY_RETENTION_COUNT = 4
    WEEKLY_RETENTION_PERIOD = 672  # hours
    ENFORCE_RETENTION_PERIOD = True

    # Logging
    DEBUG = False
    LOG_DIR = os.environ.get('GFSBACKUP_LOG_DIR') or None


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}

# Settings that GFSBACKUP_<NAME> environment variables override, parsed by get_config()
INT_SETTINGS = (
    'TIMEOUT',
    'CONCURRENT_WORKERS',
    'PART_SIZE',
    'PROGRESS_POLL_INTERVAL',
    'DAILY_RETENTION_COUNT',
    'DAILY_RETENTION_PERIOD',
    'WEEKLY_RETENTION_COUNT',
    'WEEKLY_RETENTION_PERIOD',
)
BOOL_SETTINGS = (
    'ENFORCE_RETENTION_PERIOD',
)


def get_config(config_name=None):
    """
    Resolve a configuration class by name, with environment overrides applied.

    Falls back to the GFSBACKUP_ENV environment variable, then 'default'.
    The returned class is a subclass of the named one.

    Raises:
        ConfigurationError: If the name is unknown or an override does not parse
    """
    if config_name is None:
        config_name = os.environ.get('GFSBACKUP_ENV', 'default')
    try:
        base = config[config_name]
    except KeyError:
        raise ConfigurationError(f"Unknown configuration: {config_name}")

    overrides = {}
    for setting in INT_SETTINGS:
        overrides[setting] = _env_int(f'GFSBACKUP_{setting}', getattr(base, setting))
    for setting in BOOL_SETTINGS:
        overrides[setting] = _env_bool(f'GFSBACKUP_{setting}', getattr(base, setting))
    return type(base.__name__, (base,), overrides)
