"""Write a local .env for the book studio and create its database."""
from __future__ import annotations

import argparse
import shutil
import sys
from pathlib import Path
from typing import Dict, Optional

from dotenv import dotenv_values, set_key

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

DEFAULT_ENV_PATH = REPO_ROOT / ".env"
BACKUP_SUFFIX = ".bak"


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Create or update the .env file read by bookstudio.config and initialise the "
            "SQLite database."
        )
    )
    parser.add_argument("--flask-app", default="wsgi.py", help="Entry point used by Flask (default: wsgi.py)")
    parser.add_argument("--secret-key", help="Secret key for Flask sessions. Existing values are kept if omitted.")
    parser.add_argument("--openai-api-key", help="Fallback API key used until one is saved in the settings.")
    parser.add_argument("--openai-api-base", help="OpenAI-compatible endpoint, e.g. http://localhost:11434/v1.")
    parser.add_argument("--openai-model", help="Default chat model name.")
    parser.add_argument("--database-url", help="SQLAlchemy database URL (DATABASE_URL).")
    parser.add_argument("--log-level", help="Application log level (LOG_LEVEL).")
    parser.add_argument(
        "--env-path",
        type=Path,
        default=DEFAULT_ENV_PATH,
        help="Path to the .env file that should be created/updated.",
    )
    parser.add_argument(
        "--skip-db",
        action="store_true",
        help="Only update the .env file without touching the database.",
    )
    return parser.parse_args(argv)


def collect_updates(args: argparse.Namespace) -> Dict[str, str]:
    options = {
        "FLASK_APP": args.flask_app,
        "SECRET_KEY": args.secret_key,
        "OPENAI_API_KEY": args.openai_api_key,
        "OPENAI_API_BASE": args.openai_api_base,
        "OPENAI_MODEL": args.openai_model,
        "DATABASE_URL": args.database_url,
        "LOG_LEVEL": args.log_level,
    }
    return {key: value for key, value in options.items() if value}


def update_env_file(env_path: Path, updates: Dict[str, str]) -> Dict[str, Optional[str]]:
    if env_path.exists():
        backup_path = env_path.with_suffix(env_path.suffix + BACKUP_SUFFIX)
        shutil.copy(env_path, backup_path)
        print(f"Existing {env_path.name} backed up to {backup_path.name}.")
    else:
        env_path.touch()

    for key, value in updates.items():
        set_key(str(env_path), key, value)
    print(f"Updated environment variables written to {env_path}.")
    return dict(dotenv_values(env_path))


def initialize_database() -> str:
    from bookstudio import create_app

    # create_app runs the schema check, which creates every table on a fresh database.
    app = create_app()
    return app.config["SQLALCHEMY_DATABASE_URI"]


def main(argv: Optional[list] = None) -> None:
    args = parse_args(argv)
    env_values = update_env_file(args.env_path, collect_updates(args))

    if not args.skip_db:
        print(f"Database initialised ({initialize_database()}).")
    else:
        print("Database initialisation skipped.")

    print("\nSetup complete! Summary:")
    for key in sorted(env_values):
        value = env_values[key] or ""
        if key in {"SECRET_KEY", "OPENAI_API_KEY"} and value:
            value = f"****{value[-4:]}"
        print(f"  {key}={value}")


if __name__ == "__main__":
    main()
