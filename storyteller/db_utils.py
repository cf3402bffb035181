"""Start-up schema checks for databases created by older releases."""
from __future__ import annotations

from typing import Dict, Set

from flask import current_app
from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db

# Chapter columns added after the first release, with their SQL definitions.
CHAPTER_COLUMN_UPGRADES: Dict[str, str] = {
    "rating": "INTEGER",
    "was_truncated": "BOOLEAN NOT NULL DEFAULT 0",
    "used_fallback": "BOOLEAN NOT NULL DEFAULT 0",
}


def _existing_tables() -> Set[str]:
    return set(inspect(db.engine).get_table_names())


def _existing_columns(table_name: str) -> Set[str]:
    return {column["name"] for column in inspect(db.engine).get_columns(table_name)}


def ensure_database_schema() -> None:
    """Create missing tables and add late chapter columns.

    Runs on every application start, so it only issues DDL when something is
    actually missing. Schema errors are logged and re-raised; the app must not
    start against a half-upgraded database.
    """

    from .models import Chapter, Story, User

    try:
        tables = _existing_tables()
        if not tables:
            db.create_all()
            return

        for model in (User, Story, Chapter):
            if model.__tablename__ not in tables:
                model.__table__.create(bind=db.engine)
                current_app.logger.info("Created missing table '%s'.", model.__tablename__)

        chapter_columns = _existing_columns(Chapter.__tablename__)
        missing = {
            name: definition
            for name, definition in CHAPTER_COLUMN_UPGRADES.items()
            if name not in chapter_columns
        }
        for name, definition in missing.items():
            with db.engine.begin() as connection:
                connection.execute(text(f"ALTER TABLE {Chapter.__tablename__} ADD COLUMN {name} {definition}"))
            current_app.logger.info("Added column '%s' to '%s'.", name, Chapter.__tablename__)
    except SQLAlchemyError:
        current_app.logger.exception("Database schema check failed.")
        raise
