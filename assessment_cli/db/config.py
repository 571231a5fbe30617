import os
import sqlite3
import sys
from typing import Optional

import click
from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool

from assessment_cli.utils.logging_config import get_logger

load_dotenv()

logger = get_logger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///local.db")
TURSO_DATABASE_URL = os.getenv("TURSO_DATABASE_URL")
TURSO_AUTH_TOKEN = os.getenv("TURSO_AUTH_TOKEN")


TIMEOUT_SECONDS = 120


def _register_hrana_exit(engine: Engine) -> None:
    """Exit program when HRANA WebSocket error occurs."""

    @event.listens_for(engine, "handle_error")
    def _exit_on_hrana(exc_ctx):
        err = getattr(exc_ctx, "original_exception", None)
        if isinstance(err, sqlite3.DatabaseError) and "HRANA_WEBSOCKET_ERROR" in str(
            err
        ):
            click.secho("Fatal HRANA WebSocket error detected. Exiting...", fg="red")
            sys.exit(1)


def _sqlite_connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"check_same_thread": False, "timeout": TIMEOUT_SECONDS}
    return {}


def get_engine(use_local: bool = True, database_url: Optional[str] = None) -> Engine:
    if use_local:
        url = database_url or DATABASE_URL
        logger.info(f"Using local database: {url}")
        engine = create_engine(
            url,
            connect_args=_sqlite_connect_args(url),
            echo=False,
            pool_pre_ping=True,
            poolclass=NullPool,
        )
        _register_hrana_exit(engine)
        return engine

    if not (TURSO_DATABASE_URL and TURSO_AUTH_TOKEN):
        raise ValueError("TURSO_AUTH_TOKEN or TURSO_DATABASE_URL missing")

    logger.info("Using production database")
    engine = create_engine(
        f"sqlite+{TURSO_DATABASE_URL}?authToken={TURSO_AUTH_TOKEN}",
        connect_args={"check_same_thread": False, "timeout": TIMEOUT_SECONDS},
        echo=False,
        pool_pre_ping=True,
        poolclass=NullPool,
    )
    _register_hrana_exit(engine)
    return engine


def get_session(engine: Engine) -> Session:
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    return SessionLocal()
