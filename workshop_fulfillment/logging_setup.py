import logging
import logging.handlers
from datetime import datetime
from pathlib import Path

from workshop_fulfillment.config import config

class Logger:
    """Log channels for the Workshop Fulfillment System.

    Every channel (inventory, back_orders, work_orders, sync_job, ...) gets
    its own rotating file in the configured log directory and does not
    propagate to the root logger.
    """

    _instance = None
    _loggers = {}

    def __new__(cls):
        """Singleton pattern implementation."""
        if cls._instance is None:
            cls._instance = super(Logger, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        """Initialize the logger if not already initialized."""
        if self._initialized:
            return

        self._log_config = config.log_config
        self._log_dir = Path(self._log_config['directory'])
        self._log_dir.mkdir(parents=True, exist_ok=True)

        self._configure_root_logger()
        self._app_logger = self.get_logger('app')

        self._initialized = True

    def _level(self):
        level_name = self._log_config['level'].upper()
        return getattr(logging, level_name, logging.INFO)

    def _formatter(self):
        return logging.Formatter(self._log_config['format'])

    def _console_handler(self):
        handler = logging.StreamHandler()
        handler.setFormatter(self._formatter())
        return handler

    def _file_handler(self, channel):
        handler = logging.handlers.RotatingFileHandler(
            self._log_dir / f"{channel}.log",
            maxBytes=self._log_config['max_size_mb'] * 1024 * 1024,
            backupCount=self._log_config['backup_count']
        )
        handler.setFormatter(self._formatter())
        return handler

    def _configure_root_logger(self):
        """Third-party libraries (SQLAlchemy, urllib3) log through the root logger."""
        root_logger = logging.getLogger()
        root_logger.setLevel(self._level())

        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

        if self._log_config['console_output']:
            root_logger.addHandler(self._console_handler())

    def get_logger(self, name):
        """Get the logger for a channel.

        Args:
            name: Channel name; dotted names share the file of their last part

        Returns:
            Configured logger instance
        """
        if name in self._loggers:
            return self._loggers[name]

        channel_logger = logging.getLogger(name)
        channel_logger.setLevel(self._level())

        for handler in channel_logger.handlers[:]:
            channel_logger.removeHandler(handler)

        channel_logger.addHandler(self._file_handler(name.split('.')[-1]))
        if self._log_config['console_output']:
            channel_logger.addHandler(self._console_handler())

        channel_logger.propagate = False

        self._loggers[name] = channel_logger
        return channel_logger

    def log_exception(self, logger_name, exception, message=None):
        """Log an exception with its stack trace.

        Error codes and details of fulfillment errors are part of the line.

        Args:
            logger_name: Channel to log to
            exception: Exception object
            message: Optional context, e.g. the command that failed
        """
        channel_logger = self.get_logger(logger_name)

        text = f"{message}: {exception}" if message else str(exception)
        details = getattr(exception, 'details', None)
        if details:
            text = f"{text} {details}"

        channel_logger.error(text, exc_info=exception)

    @property
    def app_logger(self):
        """Get the application logger."""
        return self._app_logger

    def batch_start_log(self, process_name, additional_info=None):
        """Log the start of a batch run.

        Returns:
            Dictionary to hand back to batch_end_log
        """
        batch_logger = self.get_logger('batch')

        log_info = {
            'process_name': process_name,
            'start_time': datetime.now(),
            'additional_info': additional_info
        }

        if additional_info:
            batch_logger.info(f"Starting batch process {process_name} with {additional_info}")
        else:
            batch_logger.info(f"Starting batch process {process_name}")

        return log_info

    def batch_end_log(self, log_info, success=True, result_info=None):
        """Log the outcome and duration of a batch run."""
        batch_logger = self.get_logger('batch')

        process_name = log_info.get('process_name', 'Unknown')
        duration = datetime.now() - log_info.get('start_time', datetime.now())

        if success:
            batch_logger.info(f"Completed batch process {process_name} in {duration}")
        else:
            batch_logger.error(f"Failed batch process {process_name} after {duration}")

        if result_info:
            batch_logger.info(f"Results of {process_name}: {result_info}")

# Global logger instance
logger = Logger()

def get_logger(name):
    """Get the logger for a channel."""
    return logger.get_logger(name)

def log_exception(logger_name, exception, message=None):
    """Log an exception with its stack trace."""
    logger.log_exception(logger_name, exception, message)
