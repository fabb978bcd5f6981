import os

from fastapi import HTTPException, Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from . import config
from .models import Base


def make_engine(url: str) -> Engine:
    connect_args = {}
    if url.startswith("sqlite"):
        # sessions are opened from worker threads (asyncio.to_thread)
        connect_args["check_same_thread"] = False
    return create_engine(url, connect_args=connect_args)


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=bind)


def init_db(bind: Engine) -> None:
    database = bind.url.database
    if bind.url.get_backend_name() == "sqlite" and database and database != ":memory:":
        os.makedirs(os.path.dirname(os.path.abspath(database)), exist_ok=True)
    Base.metadata.create_all(bind=bind)


engine = make_engine(config.DATABASE_URL)    # Connecting to the database
SessionLocal = make_session_factory(engine)   # A temporary connection to work with the database.


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_engine(request: Request):
    """Return the ReconciliationEngine owned by the running app."""
    reconciler = getattr(request.app.state, "engine", None)
    if reconciler is None:
        raise HTTPException(status_code=503, detail="Order engine is not ready yet")
    return reconciler
