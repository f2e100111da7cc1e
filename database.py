from datetime import datetime
from pathlib import Path

from sqlalchemy import create_engine, Column, Integer, String, DateTime, Text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from config import settings

Base = declarative_base()

# Database Models
class ProcessorConfig(Base):
    __tablename__ = "processor_config"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(100), unique=True, nullable=False, index=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

class LicenseValidationAttempt(Base):
    __tablename__ = "license_validation_attempts"

    id = Column(Integer, primary_key=True, index=True)
    license_key = Column(String(255))  # Masked, never the full key
    inference_uri = Column(String(2048))

    # Attempt Result
    result = Column(String(32), nullable=False)  # ok, invalid_credential, unreachable, ...
    error_message = Column(Text)

    attempted_at = Column(DateTime, default=datetime.utcnow, index=True)

def _is_sqlite_file(url) -> bool:
    return url.get_backend_name() == "sqlite" and bool(url.database) and url.database != ":memory:"

def make_engine(url: str) -> Engine:
    """
    Create an engine for the settings database.
    SQLite databases are shared across threads; in-memory ones use a single connection.
    """
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return create_engine(url, pool_pre_ping=True)

    if _is_sqlite_file(parsed):
        return create_engine(url, connect_args={"check_same_thread": False})

    return create_engine(
        url,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

def init_db(bind: Engine):
    """Create the settings tables, and the directory of an SQLite file if needed."""
    if _is_sqlite_file(bind.url):
        Path(bind.url.database).parent.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(bind=bind)

engine = make_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
