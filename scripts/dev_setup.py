"""Write the local ``.env`` used by the storyteller app and create its database."""
from __future__ import annotations

import argparse
import shutil
import sys
from pathlib import Path
from typing import Dict, List, Tuple

from dotenv import dotenv_values, set_key

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from storyteller.services.chapter_length import CHAPTER_LENGTH_CATEGORIES  # noqa: E402

DEFAULT_ENV_PATH = REPO_ROOT / ".env"
SECRET_KEYS = {"SECRET_KEY", "OPENAI_API_KEY"}

# (command line option, environment variable)
ENV_OPTIONS: List[Tuple[str, str]] = [
    ("flask_app", "FLASK_APP"),
    ("secret_key", "SECRET_KEY"),
    ("openai_api_key", "OPENAI_API_KEY"),
    ("openai_model", "OPENAI_MODEL"),
    ("chapter_length", "DEFAULT_CHAPTER_LENGTH"),
    ("story_length", "DEFAULT_STORY_LENGTH"),
    ("database_url", "DATABASE_URL"),
    ("log_level", "LOG_LEVEL"),
]


def _positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError("story length must be a positive integer")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Configure the storyteller development environment and initialise the database.",
    )
    parser.add_argument("--flask-app", default="wsgi.py", help="FLASK_APP entry point (default: wsgi.py).")
    parser.add_argument("--secret-key", help="Session signing key. Existing values are kept when omitted.")
    parser.add_argument(
        "--openai-api-key",
        help="OpenAI key for chapter generation. Without one the app writes heuristic fallback chapters.",
    )
    parser.add_argument("--openai-model", help="Chat model used for generation, e.g. gpt-4.1-mini.")
    parser.add_argument(
        "--chapter-length",
        choices=[category.value for category in CHAPTER_LENGTH_CATEGORIES],
        help="Chapter length used when a story does not pick one.",
    )
    parser.add_argument("--story-length", type=_positive_int, help="Default number of chapters per story.")
    parser.add_argument("--database-url", help="SQLAlchemy database URL (default: SQLite under instance/).")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Application log level.")
    parser.add_argument("--env-path", type=Path, default=DEFAULT_ENV_PATH, help="The .env file to update.")
    parser.add_argument("--skip-db", action="store_true", help="Only update the .env file.")
    return parser


def collect_updates(args: argparse.Namespace) -> Dict[str, str]:
    updates: Dict[str, str] = {}
    for option, env_name in ENV_OPTIONS:
        value = getattr(args, option, None)
        if value is not None and value != "":
            updates[env_name] = str(value)
    return updates


def update_env_file(env_path: Path, updates: Dict[str, str]) -> Dict[str, str]:
    if env_path.exists():
        backup_path = env_path.with_name(env_path.name + ".bak")
        shutil.copy(env_path, backup_path)
        print(f"Existing {env_path.name} backed up to {backup_path.name}.")
    else:
        env_path.touch()

    for key, value in updates.items():
        set_key(str(env_path), key, value, quote_mode="auto")
    print(f"Wrote {len(updates)} setting(s) to {env_path}.")

    return {key: value for key, value in dotenv_values(env_path).items() if value is not None}


def initialize_database(env_values: Dict[str, str]) -> None:
    from storyteller import create_app, db
    from storyteller.config import Config

    # Config was evaluated before the .env update; carry the new database URL explicitly.
    class SetupConfig(Config):
        SQLALCHEMY_DATABASE_URI = env_values.get("DATABASE_URL") or Config.SQLALCHEMY_DATABASE_URI

    app = create_app(SetupConfig)
    with app.app_context():
        db.create_all()
        print(f"Database ready at {app.config['SQLALCHEMY_DATABASE_URI']}.")


def _display(key: str, value: str) -> str:
    if key in SECRET_KEYS and value:
        return value[:4] + "…"
    return value


def main(argv: List[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    env_values = update_env_file(args.env_path, collect_updates(args))

    if args.skip_db:
        print("Database initialization skipped.")
    else:
        initialize_database(env_values)

    print("\nCurrent settings:")
    for key in sorted(env_values):
        print(f"  {key}={_display(key, env_values[key])}")


if __name__ == "__main__":
    main()
