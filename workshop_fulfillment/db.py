from sqlalchemy import create_engine, text
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker
from contextlib import contextmanager

from workshop_fulfillment.config import config
from workshop_fulfillment.exceptions import DatabaseError

class Database:
    """Database connection manager for the Workshop Fulfillment System."""

    _instance = None

    def __new__(cls):
        """Singleton pattern implementation."""
        if cls._instance is None:
            cls._instance = super(Database, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        """Initialize the database connection if not already initialized."""
        if self._initialized:
            return

        self._engine = None
        self._session_factory = None
        self._initialized = True

    def initialize(self, connection_string=None):
        """Initialize database connection.

        Args:
            connection_string: Optional database connection string.
                              If not provided, will use configuration.
        """
        if connection_string is None:
            connection_string = config.get_db_url()

        echo = config.get_boolean('DATABASE', 'echo', False)
        engine_options = {'echo': echo}

        url = make_url(connection_string)
        if url.get_backend_name() == 'sqlite':
            # Request handlers run on worker threads, each with its own session
            engine_options['connect_args'] = {'check_same_thread': False, 'timeout': 30}
        else:
            engine_options.update(
                pool_size=config.get_int('DATABASE', 'pool_size', 10),
                max_overflow=config.get_int('DATABASE', 'max_overflow', 20),
                pool_timeout=config.get_int('DATABASE', 'pool_timeout', 30),
                pool_recycle=config.get_int('DATABASE', 'pool_recycle', 1800)
            )

        try:
            self._engine = create_engine(connection_string, **engine_options)
        except Exception as e:
            raise DatabaseError(f"Failed to create database engine: {str(e)}")

        self._session_factory = sessionmaker(bind=self._engine, autoflush=False)

    def create_all_tables(self):
        """Create all tables defined in the models."""
        from workshop_fulfillment.models import Base
        Base.metadata.create_all(self.engine)

    def drop_all_tables(self):
        """Drop all tables from the database."""
        from workshop_fulfillment.models import Base
        Base.metadata.drop_all(self.engine)

    @property
    def engine(self):
        """Get the database engine."""
        if self._engine is None:
            self.initialize()
        return self._engine

    def new_session(self):
        """Create a new session; each request or batch step uses its own."""
        if self._session_factory is None:
            self.initialize()
        return self._session_factory()

    @contextmanager
    def session_scope(self):
        """Provide a transactional scope around a series of operations."""
        session = self.new_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def check_connection(self):
        """Run a trivial query to verify the database is reachable."""
        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except Exception as e:
            raise DatabaseError(f"Database connection test failed: {str(e)}")

# Global database instance
db = Database()

@contextmanager
def session_scope():
    """Session scope context manager."""
    with db.session_scope() as session:
        yield session
