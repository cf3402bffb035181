import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")


def _default_sqlite_uri() -> str:
    instance_path = BASE_DIR / "instance"
    instance_path.mkdir(exist_ok=True)
    return f"sqlite:///{instance_path / 'storyteller.db'}"


class Config:
    """Base configuration shared across environments."""

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", _default_sqlite_uri())
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # JSON API only; auth routes refuse non-JSON bodies instead of checking CSRF tokens.
    WTF_CSRF_ENABLED = False

    OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
    OPENAI_MODEL = os.environ.get("OPENAI_MODEL", "gpt-4.1-mini")
    PROMPT_CONFIG_PATH = str(BASE_DIR / "prompt_config.json")

    DEFAULT_CHAPTER_LENGTH = os.environ.get("DEFAULT_CHAPTER_LENGTH", "A full paragraph")
    DEFAULT_STORY_LENGTH = int(os.environ.get("DEFAULT_STORY_LENGTH", "7"))
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    OPENAI_API_KEY = None
    LOG_LEVEL = "DEBUG"
