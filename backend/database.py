"""
Database configuration and session management.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from models import Base

from config import LOCAL_DATABASE_URL


def make_engine(url: str = LOCAL_DATABASE_URL):
    """Create an engine for the local queue database."""
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}  # Drains run on a worker thread
    return create_engine(url, connect_args=connect_args)


engine = make_engine()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def make_session_factory(url: str):
    """Create a session factory bound to a fresh engine with tables created."""
    bind = make_engine(url)
    init_db(bind)
    return sessionmaker(autocommit=False, autoflush=False, bind=bind)


def init_db(bind=None):
    """Initialize database tables."""
    Base.metadata.create_all(bind=bind or engine)
