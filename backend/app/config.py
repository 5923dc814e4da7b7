import os
from typing import List, Optional


def _split_csv(raw: str, *, default: List[str]) -> List[str]:
    parts = [p.strip() for p in (raw or "").split(",")]
    return [p for p in parts if p] or default


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class Settings:
    """Runtime configuration. Built once and handed to `create_app`."""

    def __init__(
        self,
        *,
        env: str = "local",
        db_url: str = "postgresql://localhost/branchstock",
        pool_min_size: int = 1,
        pool_max_size: int = 10,
        cors_origins: Optional[List[str]] = None,
        api_version: str = "0.1.0",
        session_cookie_name: str = "branchstock_session",
    ) -> None:
        self.env = env
        self.db_url = db_url
        self.pool_min_size = pool_min_size
        self.pool_max_size = pool_max_size
        # Default keeps local dev working out of the box.
        self.cors_origins = cors_origins or ["http://localhost:3000", "http://127.0.0.1:3000"]
        self.api_version = api_version
        self.session_cookie_name = session_cookie_name

    @property
    def is_dev(self) -> bool:
        return self.env in {"local", "dev", "test"}

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            env=os.getenv("APP_ENV", "local"),
            db_url=os.getenv("DATABASE_URL", "postgresql://localhost/branchstock"),
            # Pool sizing defaults are conservative for local/dev. Override in prod via
            # DB_POOL_MIN_SIZE / DB_POOL_MAX_SIZE.
            pool_min_size=_env_int("DB_POOL_MIN_SIZE", 1),
            pool_max_size=_env_int("DB_POOL_MAX_SIZE", 10),
            cors_origins=_split_csv(os.getenv("CORS_ORIGINS", "").strip(), default=[]) or None,
            api_version=os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0",
            session_cookie_name=os.getenv("SESSION_COOKIE_NAME", "").strip() or "branchstock_session",
        )
