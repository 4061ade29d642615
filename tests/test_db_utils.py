import sys
from pathlib import Path

import pytest
from sqlalchemy import inspect, text

sys.path.append(str(Path(__file__).resolve().parents[1]))

from bookstudio import create_app
from bookstudio.config import TestConfig
from bookstudio.db_utils import ensure_database_schema
from bookstudio.extensions import db


@pytest.fixture
def app_ctx():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    yield app
    db.session.remove()
    ctx.pop()


def test_schema_is_created_on_startup(app_ctx):
    tables = set(inspect(db.engine).get_table_names())

    assert {
        "books",
        "chapters",
        "characters",
        "character_relations",
        "world_elements",
        "plot_points",
        "global_settings",
    } <= tables


def test_missing_tables_and_late_columns_are_added(app_ctx):
    with db.engine.begin() as connection:
        connection.execute(text("DROP TABLE plot_points"))
        connection.execute(text("DROP TABLE characters"))
        connection.execute(
            text(
                "CREATE TABLE characters ("
                "id INTEGER PRIMARY KEY, book_id INTEGER NOT NULL, name VARCHAR(120) NOT NULL, "
                "role VARCHAR(50) NOT NULL, description TEXT, personality TEXT, backstory TEXT, "
                "appearance TEXT, motivation TEXT, notes TEXT, "
                "created_at DATETIME NOT NULL, updated_at DATETIME NOT NULL)"
            )
        )

    ensure_database_schema()

    inspector = inspect(db.engine)
    assert "plot_points" in inspector.get_table_names()
    columns = {column["name"] for column in inspector.get_columns("characters")}
    assert {"arc", "image_url"} <= columns


def test_columns_are_back_filled_on_an_existing_database(app_ctx):
    with db.engine.begin() as connection:
        connection.execute(text("DROP TABLE world_elements"))
        connection.execute(
            text(
                "CREATE TABLE world_elements ("
                "id INTEGER PRIMARY KEY, book_id INTEGER NOT NULL, name VARCHAR(150) NOT NULL, "
                "type VARCHAR(50) NOT NULL, description TEXT, "
                "created_at DATETIME NOT NULL, updated_at DATETIME NOT NULL)"
            )
        )
        connection.execute(
            text(
                "INSERT INTO world_elements (book_id, name, type, created_at, updated_at) "
                "VALUES (1, 'Old Quay', 'location', '2024-01-01', '2024-01-01')"
            )
        )

    ensure_database_schema()
    ensure_database_schema()

    columns = {column["name"] for column in inspect(db.engine).get_columns("world_elements")}
    assert {"usage", "history", "image_url"} <= columns
    with db.engine.connect() as connection:
        row = connection.execute(text("SELECT name, usage FROM world_elements")).one()
    assert tuple(row) == ("Old Quay", None)
