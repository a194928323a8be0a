from contextlib import contextmanager
from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker


class Base(DeclarativeBase):
    pass


class Store:
    """Engine and session factory for one database, built once at startup."""

    def __init__(self, database_url: str):
        self.database_url = database_url
        self.engine = self._engine(database_url)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, autocommit=False)

    @staticmethod
    def _engine(database_url: str):
        if not database_url.startswith("sqlite"):
            return create_engine(database_url, echo=False, pool_pre_ping=True)

        # For SQLite in FastAPI, allow cross-thread access
        engine = create_engine(
            database_url, echo=False, pool_pre_ping=True, connect_args={"check_same_thread": False}
        )

        # pysqlite defers BEGIN on its own; take over so SAVEPOINTs behave.
        @event.listens_for(engine, "connect")
        def _disable_driver_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _emit_begin(conn):
            conn.exec_driver_sql("BEGIN")

        return engine

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    def ping(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    @contextmanager
    def session(self) -> Iterator[Session]:
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()


def get_db(request: Request):
    with request.app.state.store.session() as session:
        yield session
