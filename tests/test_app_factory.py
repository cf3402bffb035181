import sys
from pathlib import Path

import pytest
from sqlalchemy import inspect, text

sys.path.append(str(Path(__file__).resolve().parents[1]))

from storyteller import create_app
from storyteller.config import TestConfig
from storyteller.db_utils import ensure_database_schema
from storyteller.extensions import db
from storyteller.models import Story, User


@pytest.fixture
def app_instance():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    yield app
    db.session.remove()
    db.drop_all()
    ctx.pop()


def test_factory_applies_test_config(app_instance):
    assert app_instance.config["TESTING"] is True
    assert app_instance.config["OPENAI_API_KEY"] is None
    assert app_instance.config["DEFAULT_CHAPTER_LENGTH"] == "A full paragraph"
    assert Path(app_instance.config["PROMPT_CONFIG_PATH"]).name == "prompt_config.json"
    assert {"users", "stories", "chapters"} <= set(inspect(db.engine).get_table_names())


def test_index_reports_anonymous_user(app_instance):
    response = app_instance.test_client().get("/")

    assert response.get_json() == {"service": "storyteller", "authenticated": False}


def test_unknown_route_returns_json_error(app_instance):
    response = app_instance.test_client().get("/missing")

    assert response.status_code == 404
    assert "error" in response.get_json()


def test_init_db_command(app_instance):
    runner = app_instance.test_cli_runner()

    result = runner.invoke(args=["init-db", "--drop"])

    assert result.exit_code == 0
    assert "Database ready" in result.output
    assert "stories" in inspect(db.engine).get_table_names()


def test_schema_check_adds_late_chapter_columns(app_instance):
    db.drop_all()
    User.__table__.create(bind=db.engine)
    Story.__table__.create(bind=db.engine)
    with db.engine.begin() as connection:
        connection.execute(
            text(
                "CREATE TABLE chapters ("
                "id INTEGER PRIMARY KEY, story_id INTEGER NOT NULL, chapter_number INTEGER NOT NULL, "
                "content TEXT NOT NULL, prompt TEXT, structural_metadata TEXT, created_at DATETIME NOT NULL)"
            )
        )

    ensure_database_schema()

    columns = {column["name"] for column in inspect(db.engine).get_columns("chapters")}
    assert {"rating", "was_truncated", "used_fallback"} <= columns


def test_schema_check_creates_missing_tables(app_instance):
    db.drop_all()
    User.__table__.create(bind=db.engine)

    ensure_database_schema()

    assert {"stories", "chapters"} <= set(inspect(db.engine).get_table_names())
