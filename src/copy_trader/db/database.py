import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, scoped_session

Base = declarative_base()

# Pool settings for server databases; SQLite uses the driver default
SERVER_POOL_OPTIONS = {
    "pool_size": 5,
    "max_overflow": 10,
    "pool_timeout": 30,
    "pool_recycle": 1800,
}


class DatabaseConnection:
    """Engine and session factory for the trade log mirror"""

    def __init__(self, db_url: str):
        if not db_url:
            raise ValueError("A database URL is required for the trade log mirror")
        self.logger = logging.getLogger(__name__)
        self.db_url = db_url

        options = {} if db_url.startswith("sqlite") else SERVER_POOL_OPTIONS
        try:
            self.engine = create_engine(db_url, echo=False, **options)
        except Exception as e:
            self.logger.error(f"Failed to create database engine: {str(e)}")
            raise
        self.Session = scoped_session(sessionmaker(bind=self.engine, autoflush=False))

    def get_session(self):
        return self.Session()

    def init_db(self):
        # Importing the models registers their tables on Base
        from . import models  # noqa: F401
        try:
            Base.metadata.create_all(self.engine)
        except Exception as e:
            self.logger.error(f"Failed to create trade log tables: {str(e)}")
            raise
        self.logger.info(f"Trade log tables ready on {self.engine.url.render_as_string(hide_password=True)}")

    def dispose(self):
        self.Session.remove()
        self.engine.dispose()
