import os
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    SECRET_KEY: str = os.getenv("SECRET_KEY", "change-this-secret-key")
    DB_PATH: str = os.getenv("DB_PATH", "data/tablesync.db")
    CORS_ORIGINS: list = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    STRICT_EVENTS: bool = _flag("STRICT_EVENTS")
    OFFLINE_GRACE_SECONDS: float = float(os.getenv("OFFLINE_GRACE_SECONDS", "300"))
    TOKEN_EXPIRE_HOURS: int = int(os.getenv("TOKEN_EXPIRE_HOURS", "24"))


settings = Settings()
