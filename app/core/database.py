from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import Session, SQLModel

from .config import settings


class DBSession(Session):
    """Custom SQLModel session class with additional methods"""

    def create(self, instance):
        """
        Add, commit and refresh an instance in the session.
        """
        self.add(instance)
        self.commit()
        self.refresh(instance)
        return instance


def _engine_kwargs() -> dict:
    if settings.database_url.startswith('sqlite'):
        return {'connect_args': {'check_same_thread': False}}
    return {
        'pool_size': settings.db_pool_size,
        'max_overflow': settings.db_max_overflow,
        'pool_timeout': 60,
        'pool_pre_ping': settings.db_pool_pre_ping,
        'pool_recycle': settings.db_pool_recycle,
    }


engine = create_engine(settings.database_url, **_engine_kwargs())
SessionLocal = sessionmaker(class_=DBSession, autocommit=False, autoflush=False, bind=engine)

SessionCls = SessionLocal  # So that we can override in tests


def create_db_and_tables():
    # Register the tables before creating them
    from app.main_app import models  # noqa: F401

    SQLModel.metadata.create_all(SessionCls.kw['bind'])


def get_db():
    """
    FastAPI dependency for getting a database session.
    Used with Depends(get_db) in endpoint parameters.
    """
    db = SessionCls()
    try:
        yield db
    finally:
        db.close()
