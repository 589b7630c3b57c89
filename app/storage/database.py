from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from app.config.settings import get_settings

settings = get_settings()


def _engine_kwargs(url: str) -> dict:
    if not url.startswith("sqlite"):
        return {"pool_pre_ping": True}
    kwargs = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        # one shared connection so every session sees the same in-memory database
        kwargs["poolclass"] = StaticPool
    return kwargs


engine = create_engine(settings.database_url, echo=False, **_engine_kwargs(settings.database_url))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


class RuleModel(Base):
    __tablename__ = "business_rules"

    id = Column(String, primary_key=True)
    seq = Column(Integer, nullable=False, index=True)  # insertion order, breaks priority ties
    type = Column(String, nullable=False)
    name = Column(String, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    parameters = Column(JSON, nullable=False)
    priority = Column(Integer, nullable=False, default=1)
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class AllocationRunModel(Base):
    __tablename__ = "allocation_runs"

    id = Column(String, primary_key=True)
    request_hash = Column(String, nullable=False, index=True)
    result = Column(JSON, nullable=False)  # AllocationResult.to_record()
    created_at = Column(DateTime, default=datetime.utcnow)


def init_db():
    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
