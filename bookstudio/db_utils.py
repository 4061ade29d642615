"""Database helper utilities for ensuring schema consistency."""
from __future__ import annotations

from typing import Dict, Iterable, Set

from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db

# Columns back-filled with ALTER TABLE at start-up when an existing database
# file lacks them, keyed by table.
_LATE_COLUMNS: Dict[str, Dict[str, str]] = {
    "characters": {
        "arc": "TEXT",
        "image_url": "VARCHAR(500)",
    },
    "world_elements": {
        "usage": "TEXT",
        "history": "TEXT",
        "image_url": "VARCHAR(500)",
    },
    "chapters": {
        "word_count": "INTEGER NOT NULL DEFAULT 0",
    },
}


def _get_column_names(table_name: str) -> Set[str]:
    inspector = inspect(db.engine)
    return {column["name"] for column in inspector.get_columns(table_name)}


def ensure_database_schema() -> None:
    """Ensure that essential schema updates are applied.

    The function is intentionally light-weight so it can run on every
    application start. Missing tables are created from the model metadata and
    columns added after the initial database creation are appended with
    ``ALTER TABLE`` so existing SQLite files keep working.
    """

    try:
        inspector = inspect(db.engine)
        table_names: Iterable[str] = inspector.get_table_names()

        if "books" not in table_names:
            db.create_all()
            inspector = inspect(db.engine)
            table_names = inspector.get_table_names()

        # Import locally to avoid circular import issues during application setup.
        from .models import (
            Chapter,
            Character,
            CharacterRelation,
            GlobalSettings,
            PlotPoint,
            WorldElement,
        )

        required_tables = {
            "chapters": Chapter.__table__,
            "characters": Character.__table__,
            "character_relations": CharacterRelation.__table__,
            "world_elements": WorldElement.__table__,
            "plot_points": PlotPoint.__table__,
            "global_settings": GlobalSettings.__table__,
        }

        for table_name, table in required_tables.items():
            if table_name not in table_names:
                table.create(bind=db.engine)

        for table_name, columns in _LATE_COLUMNS.items():
            if table_name not in table_names:
                continue
            existing = _get_column_names(table_name)
            for column_name, ddl in columns.items():
                if column_name in existing:
                    continue
                with db.engine.begin() as connection:
                    connection.execute(
                        text(f"ALTER TABLE {table_name} ADD COLUMN {column_name} {ddl}")
                    )
    except SQLAlchemyError:
        # If we fail to introspect or modify the schema we re-raise the error so
        # that the application does not continue in a partially configured state.
        raise
