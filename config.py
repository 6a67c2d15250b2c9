import logging
import os
import secrets
from pathlib import Path
from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent
load_dotenv(BASE_DIR / ".env")


def env_int(name, default):
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


class Settings:
    # --- STORAGE ---
    STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "mongo")  # mongo | memory
    MONGO_URI: str = os.getenv("MONGO_URI", "mongodb://localhost:27017")
    MONGO_DB: str = os.getenv("MONGO_DB", "digiwallet")

    # --- SECURITY ---
    SECRET_KEY: str = os.getenv("SECRET_KEY", "")
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_DAYS: int = env_int("ACCESS_TOKEN_EXPIRE_DAYS", 7)

    # --- TRANSACTION PIN ---
    PIN_MAX_ATTEMPTS: int = env_int("PIN_MAX_ATTEMPTS", 5)
    PIN_LOCKOUT_MINUTES: int = env_int("PIN_LOCKOUT_MINUTES", 15)
    PIN_HASH_ROUNDS: int = env_int("PIN_HASH_ROUNDS", 12)

    # --- VTU PROVIDERS ---
    DEFAULT_API_PROVIDER: str = os.getenv("DEFAULT_API_PROVIDER", "maskawa")
    PROVIDER_TIMEOUT_SECONDS: int = env_int("PROVIDER_TIMEOUT_SECONDS", 30)
    NAIJADATASUB_WEBHOOK_SECRET: str = os.getenv("NAIJADATASUB_WEBHOOK_SECRET", "")

    # --- DEPOSITS ---
    DEPOSIT_WEBHOOK_SECRET: str = os.getenv("DEPOSIT_WEBHOOK_SECRET", "")


def ensure_secret_key(config) -> str:
    """Tokens are signed with SECRET_KEY; only the in-memory backend may run on a throwaway key."""
    if config.SECRET_KEY:
        return config.SECRET_KEY
    if config.STORAGE_BACKEND != "memory":
        raise RuntimeError("SECRET_KEY must be set when STORAGE_BACKEND is not 'memory'")
    config.SECRET_KEY = secrets.token_urlsafe(32)
    logging.warning("SECRET_KEY is not set; using a random key, tokens will not survive a restart")
    return config.SECRET_KEY


settings = Settings()
ensure_secret_key(settings)
