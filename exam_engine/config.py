import os
from pathlib import Path

from sqlalchemy.engine import URL


def _env_flag(name: str, default: str = "1") -> bool:
    return os.environ.get(name, default).lower() not in {"0", "false", "no"}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")
    default_db_path = Path(__file__).resolve().parent.parent / "instance" / "exam_engine.db"
    default_db_uri = URL.create(
        drivername="sqlite",
        database=str(default_db_path),
    )
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", str(default_db_uri))
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    EXAM_SWEEP_ENABLED = _env_flag("EXAM_SWEEP_ENABLED")
    EXAM_SWEEP_INTERVAL_SECONDS = float(os.environ.get("EXAM_SWEEP_INTERVAL_SECONDS", "5"))
    EXAM_TOKEN_TTL_DAYS = int(os.environ.get("EXAM_TOKEN_TTL_DAYS", "7"))


class TestConfig(Config):
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    TESTING = True
    EXAM_SWEEP_ENABLED = False
