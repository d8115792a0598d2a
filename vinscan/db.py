from datetime import datetime, timezone

from sqlalchemy import create_engine, Column, DateTime, String
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import settings

# In FastAPI, more than one thread can interact with the database for the same request
engine = create_engine(
    settings.database_uri, connect_args={"check_same_thread": False}
)

# each instance of the SessionLocal class becomes a db session
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# parent class for the ORM models
Base = declarative_base()


def _utcnow():
    return datetime.now(timezone.utc)


class PrefillRecord(Base):
    """A make/model prefill that was confirmed by the remote decoder."""

    __tablename__ = "vin_prefill_cache"

    vin = Column(String(17), primary_key=True, index=True)
    make = Column(String)
    model = Column(String)
    manufacturer_group = Column(String)
    created_at = Column(DateTime, default=_utcnow)


Base.metadata.create_all(bind=engine)


def get_db():
    """
    Dependency function to get a database session.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
