import os
from dataclasses import dataclass, field
from typing import List
from dotenv import load_dotenv

# Load environment variables from .env
load_dotenv()


def _split_origins(value: str) -> List[str]:
    return [origin.strip() for origin in value.split(",") if origin.strip()]


@dataclass
class Settings:
    # Application
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    app_name: str = os.getenv("APP_NAME", "BookSwap API")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    cors_origins: List[str] = field(
        default_factory=lambda: _split_origins(os.getenv("CORS_ORIGINS", "*"))
    )

    # Storage
    storage_backend: str = os.getenv("STORAGE_BACKEND", "mongo")  # "mongo" or "memory"
    mongo_url: str = os.getenv("MONGO_URL", "mongodb://localhost:27017/?replicaSet=rs0")
    mongo_db_name: str = os.getenv("MONGO_DB_NAME", "bookswapdb")

    # Security
    secret_key: str = os.getenv("SECRET_KEY", "change-this-secret-in-production")
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")
    access_token_expire_minutes: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24 * 30)))  # 30 days
    bcrypt_rounds: int = int(os.getenv("BCRYPT_ROUNDS", "12"))


settings = Settings()
