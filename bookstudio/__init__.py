from __future__ import annotations

from pathlib import Path

from flask import Flask

from .config import Config
from .extensions import csrf, db, migrate
from .db_utils import ensure_database_schema


BASE_DIR = Path(__file__).resolve().parent.parent


def create_app(config_class: type[Config] = Config) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)
    app.config.setdefault("PROMPT_CONFIG_PATH", str(BASE_DIR / "prompt_config.json"))
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    register_extensions(app)
    register_blueprints(app)

    with app.app_context():
        ensure_database_schema()

    return app


def register_extensions(app: Flask) -> None:
    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)


def register_blueprints(app: Flask) -> None:
    from .books import bp as books_bp
    from .settings import bp as settings_bp

    # JSON API consumed by the editor front-end; requests carry no form token.
    csrf.exempt(books_bp)
    csrf.exempt(settings_bp)

    app.register_blueprint(books_bp)
    app.register_blueprint(settings_bp)
