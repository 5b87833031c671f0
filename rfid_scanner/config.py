"""
Configuration for the RFID scanner service
"""

import os

def _csv_tuple(value: str):
    """Parse a comma separated list of antenna ids, ignoring blanks"""
    return tuple(item.strip() for item in (value or '').split(',') if item.strip())

class Config:
    """Base configuration"""

    # Flask Configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'rfid_scanner_secret_key'
    DEBUG = os.environ.get('DEBUG', 'True').lower() == 'true'

    # Server Configuration
    HOST = os.environ.get('HOST', '0.0.0.0')
    PORT = int(os.environ.get('PORT', 4000))

    # Serial Configuration
    SERIAL_DEVICE = os.environ.get('SERIAL_DEVICE', 'rfid_reader')
    SERIAL_BAUDRATE = int(os.environ['SERIAL_BAUDRATE']) if os.environ.get('SERIAL_BAUDRATE') else None
    SERIAL_READ_TIMEOUT = float(os.environ.get('SERIAL_READ_TIMEOUT', 0.2))

    # Connection lifecycle (milliseconds)
    MONITOR_INTERVAL_MS = int(os.environ.get('MONITOR_INTERVAL_MS', 2000))
    MAX_RETRY_MS = int(os.environ.get('MAX_RETRY_MS', 10000))

    # Tag tracking thresholds (dBm / milliseconds)
    WEAK_RSSI = int(os.environ.get('WEAK_RSSI', -50))
    TRIGGER_RSSI = int(os.environ.get('TRIGGER_RSSI', -30))
    VALID_RSSI = int(os.environ.get('VALID_RSSI', -25))
    REQUIRED_DWELL_MS = int(os.environ.get('REQUIRED_DWELL_MS', 1500))
    DEBOUNCE_MS = int(os.environ.get('DEBOUNCE_MS', 100))
    HISTORY_LIMIT = int(os.environ.get('HISTORY_LIMIT', 30))
    STALE_AFTER_MS = int(os.environ.get('STALE_AFTER_MS', 3000))
    TRACKED_ANTENNAS = _csv_tuple(os.environ.get('TRACKED_ANTENNAS', ''))

    # Audit trail
    CSV_LOG_PATH = os.environ.get('CSV_LOG_PATH', 'rfid_readings.csv')
    READINGS_LOG_PATH = os.environ.get('READINGS_LOG_PATH', 'rfid_readings.log')

    # WebSocket Configuration
    SOCKETIO_ASYNC_MODE = 'threading'
    SOCKETIO_CORS_ALLOWED_ORIGINS = os.environ.get('CORS_ORIGINS', 'http://localhost:5173')

    # Logging Configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

class DevelopmentConfig(Config):
    """Development environment"""
    DEBUG = True
    LOG_LEVEL = 'DEBUG'

class ProductionConfig(Config):
    """Production environment"""
    DEBUG = False
    LOG_LEVEL = 'WARNING'

    # Production settings
    HOST = os.environ.get('HOST', '127.0.0.1')
    PORT = int(os.environ.get('PORT', 4000))

class TestingConfig(Config):
    """Testing environment"""
    TESTING = True
    DEBUG = True
    LOG_LEVEL = 'DEBUG'
    CSV_LOG_PATH = None
    READINGS_LOG_PATH = None

# Configuration mapping
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}

def get_config(config_name=None):
    """Return the configuration class for the current environment"""
    config_name = config_name or os.environ.get('FLASK_ENV', 'default')
    return config.get(config_name, config['default'])
