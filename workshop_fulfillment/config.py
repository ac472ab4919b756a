import os
import configparser
from pathlib import Path

class Config:
    """Configuration manager for the Workshop Fulfillment System."""

    _instance = None

    def __new__(cls):
        """Singleton pattern implementation."""
        if cls._instance is None:
            cls._instance = super(Config, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        """Initialize the configuration if not already initialized."""
        if self._initialized:
            return

        self._config_dir = Path(os.getenv('WORKSHOP_CONFIG_DIR', 'config'))
        self._config_path = self._config_dir / 'settings.ini'
        self._config = configparser.ConfigParser(interpolation=None)

        # Create config directory if it doesn't exist
        if not self._config_dir.exists():
            self._config_dir.mkdir(parents=True)

        # Load config or create default
        if self._config_path.exists():
            self._config.read(self._config_path)
        else:
            self._create_default_config()

        self._initialized = True

    def _create_default_config(self):
        """Create default configuration file."""
        self._config['DATABASE'] = {
            'url': 'sqlite:///workshop.db',
            'echo': 'False',
            'pool_size': '10',
            'max_overflow': '20',
            'pool_timeout': '30',
            'pool_recycle': '1800'
        }

        self._config['LOGGING'] = {
            'level': 'INFO',
            'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            'directory': 'logs',
            'max_size_mb': '10',
            'backup_count': '5',
            'console_output': 'True'
        }

        self._config['SUPPLIER_API'] = {
            'enabled': 'False',
            'name': 'BeX',
            'base_url': 'https://api.bandenexpress.example/v1',
            'api_key': '',
            'timeout_seconds': '10',
            'max_retries': '3',
            'backoff_seconds': '1.0'
        }

        self._config['BUSINESS_RULES'] = {
            'receipt_tolerance': '0',
            'high_priority_days': '2',
            'low_priority_days': '14',
            'complete_summary_statuses': 'NO_PARTS_NEEDED,READY_TO_STAGE,FULLY_STAGED,FULLY_ISSUED',
            'release_retry_limit': '5'
        }

        self._config['EXECUTION_STATUS'] = {
            'rules_file': ''
        }

        self._save_config()

    def _save_config(self):
        """Save configuration to file."""
        with open(self._config_path, 'w') as configfile:
            self._config.write(configfile)

    def get(self, section, key, default=None):
        """Get configuration value."""
        try:
            return self._config.get(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError):
            return default

    def get_int(self, section, key, default=None):
        """Get configuration value as integer."""
        try:
            return self._config.getint(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return default

    def get_float(self, section, key, default=None):
        """Get configuration value as float."""
        try:
            return self._config.getfloat(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return default

    def get_boolean(self, section, key, default=None):
        """Get configuration value as boolean."""
        try:
            return self._config.getboolean(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return default

    def get_list(self, section, key, default=None):
        """Get a comma separated configuration value as a list of strings."""
        raw = self.get(section, key)
        if raw is None:
            return default
        return [part.strip() for part in raw.split(',') if part.strip()]

    def get_db_url(self):
        """Get the SQLAlchemy database URL.

        The WORKSHOP_DATABASE_URL environment variable wins over settings.ini.
        """
        return os.getenv('WORKSHOP_DATABASE_URL') or self.get('DATABASE', 'url', 'sqlite:///workshop.db')

    @property
    def log_config(self):
        """Get logging configuration."""
        return {
            'level': self.get('LOGGING', 'level', 'INFO'),
            'format': self.get('LOGGING', 'format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s'),
            'directory': self.get('LOGGING', 'directory', 'logs'),
            'max_size_mb': self.get_int('LOGGING', 'max_size_mb', 10),
            'backup_count': self.get_int('LOGGING', 'backup_count', 5),
            'console_output': self.get_boolean('LOGGING', 'console_output', True)
        }

    @property
    def supplier_config(self):
        """Get supplier API configuration."""
        return {
            'enabled': self.get_boolean('SUPPLIER_API', 'enabled', False),
            'name': self.get('SUPPLIER_API', 'name', 'BeX'),
            'base_url': self.get('SUPPLIER_API', 'base_url', ''),
            'api_key': self.get('SUPPLIER_API', 'api_key', ''),
            'timeout_seconds': self.get_float('SUPPLIER_API', 'timeout_seconds', 10.0),
            'max_retries': self.get_int('SUPPLIER_API', 'max_retries', 3),
            'backoff_seconds': self.get_float('SUPPLIER_API', 'backoff_seconds', 1.0)
        }

    @property
    def business_rules(self):
        """Get business rules configuration."""
        return {
            'receipt_tolerance': self.get_int('BUSINESS_RULES', 'receipt_tolerance', 0),
            'high_priority_days': self.get_int('BUSINESS_RULES', 'high_priority_days', 2),
            'low_priority_days': self.get_int('BUSINESS_RULES', 'low_priority_days', 14),
            'complete_summary_statuses': self.get_list(
                'BUSINESS_RULES', 'complete_summary_statuses',
                ['NO_PARTS_NEEDED', 'READY_TO_STAGE', 'FULLY_STAGED', 'FULLY_ISSUED']
            ),
            'release_retry_limit': self.get_int('BUSINESS_RULES', 'release_retry_limit', 5)
        }

    @property
    def execution_rules_file(self):
        """Get the path of a custom execution status rule table, if any."""
        path = self.get('EXECUTION_STATUS', 'rules_file', '')
        return Path(path) if path else None

# Global config instance
config = Config()
