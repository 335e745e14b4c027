"""Process configuration read once from the environment."""
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./expense.db"
    secret_key: str = "CHANGE_ME_TO_SOMETHING_RANDOM_AND_SECRET"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 7  # 7 days
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None
    port: int = 5000
    environment: str = "development"
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


def load_settings() -> Settings:
    """Build a Settings object from environment variables."""
    return Settings(
        database_url=os.getenv("DATABASE_URL", Settings.database_url),
        secret_key=os.getenv("SECRET_KEY", Settings.secret_key),
        algorithm=os.getenv("ALGORITHM", Settings.algorithm),
        access_token_expire_minutes=int(
            os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(Settings.access_token_expire_minutes))
        ),
        admin_email=os.getenv("ADMIN_EMAIL") or None,
        admin_password=os.getenv("ADMIN_PASSWORD") or None,
        port=int(os.getenv("PORT", str(Settings.port))),
        environment=os.getenv("ENVIRONMENT", Settings.environment),
        log_level=os.getenv("LOG_LEVEL", Settings.log_level).upper(),
    )


@lru_cache
def get_settings() -> Settings:
    """Cached settings; also used as a FastAPI dependency so tests can override it."""
    return load_settings()
