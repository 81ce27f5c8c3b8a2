# QR Attendance Session Service Configuration

import os
from pathlib import Path

# Base directory
BASE_DIR = Path(__file__).parent.absolute()


def _env_float(name, default):
    value = os.environ.get(name)
    return float(value) if value not in (None, '') else default


class Config:
    """Base configuration class"""

    # Flask Configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'qr-attendance-secret-key-2025'

    # Database Configuration
    DATABASE_PATH = Path(os.environ.get('DATABASE_PATH') or BASE_DIR / 'database' / 'attendance.db')
    DATABASE_TIMEOUT = 30.0
    DATABASE_JOURNAL_MODE = 'WAL'

    # Attendance window configuration (minutes from session start)
    ATTENDANCE_PRESENT_WINDOW_MINUTES = _env_float('ATTENDANCE_PRESENT_WINDOW_MINUTES', 10)
    ATTENDANCE_LATE_WINDOW_MINUTES = _env_float('ATTENDANCE_LATE_WINDOW_MINUTES', 20)
    ATTENDANCE_TOTAL_SESSION_MINUTES = _env_float('ATTENDANCE_TOTAL_SESSION_MINUTES', 20)
    ATTENDANCE_UPSERT_MAX_RETRIES = 3

    # Rotating token configuration
    QR_TOKEN_LIFETIME_SECONDS = _env_float('QR_TOKEN_LIFETIME_SECONDS', 5)
    QR_TOKEN_ROTATION_INTERVAL_SECONDS = _env_float('QR_TOKEN_ROTATION_INTERVAL_SECONDS', 5)
    QR_TOKEN_ENTROPY_BYTES = 32  # 256 bits

    # QR Code rendering
    QR_CODE_SIZE = 10
    QR_CODE_BORDER = 4

    # Logging Configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'
    LOG_FILE = BASE_DIR / 'logs' / 'attendance.log'
    LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
    LOG_BACKUP_COUNT = 5

    # Development Configuration
    DEBUG = os.environ.get('DEBUG', 'False').lower() in ['true', 'on', '1']
    TESTING = False

    @classmethod
    def init_app(cls, app):
        """Initialize application configuration"""
        directories = [
            Path(app.config['DATABASE_PATH']).parent,
            cls.LOG_FILE.parent
        ]

        for directory in directories:
            directory.mkdir(parents=True, exist_ok=True)


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    TESTING = False

    DATABASE_PATH = Path(os.environ.get('DATABASE_PATH') or BASE_DIR / 'database' / 'attendance_dev.db')

    # More verbose logging
    LOG_LEVEL = 'DEBUG'


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = True

    # Tests point DATABASE_PATH at a temporary file
    DATABASE_PATH = None

    ATTENDANCE_PRESENT_WINDOW_MINUTES = 10
    ATTENDANCE_LATE_WINDOW_MINUTES = 20
    ATTENDANCE_TOTAL_SESSION_MINUTES = 20
    QR_TOKEN_LIFETIME_SECONDS = 5
    QR_TOKEN_ROTATION_INTERVAL_SECONDS = 5

    @classmethod
    def init_app(cls, app):
        # No log directory for tests
        if app.config.get('DATABASE_PATH'):
            Path(app.config['DATABASE_PATH']).parent.mkdir(parents=True, exist_ok=True)


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False

    DATABASE_PATH = Path(os.environ.get('DATABASE_PATH') or BASE_DIR / 'database' / 'attendance_prod.db')

    # Production logging
    LOG_LEVEL = 'WARNING'

    @classmethod
    def init_app(cls, app):
        super().init_app(app)

        # Production-specific initialization
        import logging
        from logging.handlers import RotatingFileHandler

        # Setup file logging
        if not app.debug:
            file_handler = RotatingFileHandler(
                cls.LOG_FILE,
                maxBytes=cls.LOG_MAX_BYTES,
                backupCount=cls.LOG_BACKUP_COUNT
            )
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
            ))
            file_handler.setLevel(logging.INFO)
            app.logger.addHandler(file_handler)

            app.logger.setLevel(logging.INFO)
            app.logger.info('QR Attendance service startup')


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config():
    """Get configuration based on environment variable"""
    return config.get(os.environ.get('FLASK_ENV', 'default'), DevelopmentConfig)


# Validation functions
def validate_config(settings):
    """
    Validate configuration settings.

    Args:
        settings: Flask config or any mapping with the keys above

    Returns:
        list: Error messages, empty when the configuration is usable
    """
    errors = []

    present = settings.get('ATTENDANCE_PRESENT_WINDOW_MINUTES')
    late = settings.get('ATTENDANCE_LATE_WINDOW_MINUTES')
    total = settings.get('ATTENDANCE_TOTAL_SESSION_MINUTES')

    if present is None or present <= 0:
        errors.append("ATTENDANCE_PRESENT_WINDOW_MINUTES must be positive")
    if late is None or present is None or late < present:
        errors.append("ATTENDANCE_LATE_WINDOW_MINUTES must not be shorter than the present window")
    if total is None or present is None or total < present:
        errors.append("ATTENDANCE_TOTAL_SESSION_MINUTES must not be shorter than the present window")

    if (settings.get('QR_TOKEN_LIFETIME_SECONDS') or 0) <= 0:
        errors.append("QR_TOKEN_LIFETIME_SECONDS must be positive")
    if (settings.get('QR_TOKEN_ROTATION_INTERVAL_SECONDS') or 0) <= 0:
        errors.append("QR_TOKEN_ROTATION_INTERVAL_SECONDS must be positive")
    if (settings.get('QR_TOKEN_ENTROPY_BYTES') or 0) < 32:
        errors.append("QR_TOKEN_ENTROPY_BYTES must be at least 32")

    if not settings.get('DATABASE_PATH'):
        errors.append("DATABASE_PATH is required")

    return errors


# Initialize configuration
def init_config(app, config_name=None, overrides=None):
    """Initialize application with configuration"""
    if config_name is None:
        config_class = get_config()
    else:
        config_class = config.get(config_name, DevelopmentConfig)
    app.config.from_object(config_class)
    if overrides:
        app.config.update(overrides)

    # Validate configuration
    errors = validate_config(app.config)
    if errors:
        for error in errors:
            app.logger.error(f"Configuration error: {error}")
        raise RuntimeError("Configuration validation failed")

    config_class.init_app(app)

    return config_class
