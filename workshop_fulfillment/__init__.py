from .config import config
from .db import db, session_scope
from .logging_setup import logger, get_logger
from .exceptions import FulfillmentError, ConfigError, UnknownStatus, DatabaseError, NotFoundError
from .results import Result

__all__ = [
    'config',
    'db',
    'session_scope',
    'logger',
    'get_logger',
    'FulfillmentError',
    'ConfigError',
    'UnknownStatus',
    'DatabaseError',
    'NotFoundError',
    'Result'
]
