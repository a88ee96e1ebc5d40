import os

from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker

from models import Base


DATABASE_URL = os.environ.get("MARKETPLACE_DATABASE_URL", "sqlite:///marketplace.db")

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
)
# Unscoped factory for work that must not share the request-bound session
# (sync handlers run from commit hooks and from the background worker).
SessionFactory = sessionmaker(bind=engine, expire_on_commit=False)
SessionLocal = scoped_session(SessionFactory)


def init_db():
    """Create tables for every mapped model."""
    Base.metadata.create_all(bind=engine)


def drop_db():
    Base.metadata.drop_all(bind=engine)
