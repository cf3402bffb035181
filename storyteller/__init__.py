from __future__ import annotations

import click
from flask import Flask

from .config import BASE_DIR, Config
from .extensions import db, login_manager, migrate
from .db_utils import ensure_database_schema


def create_app(config_class: type[Config] = Config) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)
    app.config.setdefault("PROMPT_CONFIG_PATH", str(BASE_DIR / "prompt_config.json"))
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    register_extensions(app)
    register_blueprints(app)
    register_commands(app)

    with app.app_context():
        ensure_database_schema()

    return app


def register_extensions(app: Flask) -> None:
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)


def register_blueprints(app: Flask) -> None:
    from .auth import bp as auth_bp
    from .main import bp as main_bp
    from .stories import bp as stories_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(main_bp)
    app.register_blueprint(stories_bp)


def register_commands(app: Flask) -> None:
    @app.cli.command("init-db")
    @click.option("--drop", is_flag=True, help="Drop existing tables first.")
    def init_db(drop: bool) -> None:
        """Create the database tables."""

        if drop:
            db.drop_all()
        db.create_all()
        click.echo(f"Database ready at {app.config['SQLALCHEMY_DATABASE_URI']}.")
