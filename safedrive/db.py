from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from .models import Base
from .config import DATABASE_URL

def make_engine(url: str):
    """Create an engine; in-memory SQLite shares one connection across sessions."""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, future=True, **kwargs)
    return create_engine(url, future=True)

def make_session_factory(url: str):
    """Build a session factory for ``url`` with all tables created."""
    bound_engine = make_engine(url)
    Base.metadata.create_all(bind=bound_engine)
    return sessionmaker(bind=bound_engine, expire_on_commit=False)

engine = make_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)

def init_db():
    """Initialize the database by creating all tables."""
    Base.metadata.create_all(bind=engine)
