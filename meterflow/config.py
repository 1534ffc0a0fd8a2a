from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from dotenv import load_dotenv
load_dotenv()


class Settings(BaseSettings):
	# App
	APP_NAME: str = "Meterflow API"
	APP_VERSION: str = "1.0.0"
	API_V1_PREFIX: str = "/api/v1"
	DEBUG: bool = False
	ENVIRONMENT: str = "development"  # development, staging, production

	# Server
	PORT: int = 8000
	WORKERS: int = 4

	# Database
	DATABASE_URL: str = "sqlite+aiosqlite:///./meterflow.db"
	DB_POOL_SIZE: int = 20
	DB_MAX_OVERFLOW: int = 40
	DB_POOL_PRE_PING: bool = True
	DB_ECHO: bool = False
	AUTO_CREATE_TABLES: bool = True

	# Redis (Celery broker + distributed locks)
	REDIS_URL: str = "redis://localhost:6379/0"
	LOCK_BACKEND: str = "memory"  # memory, redis
	LOCK_TIMEOUT_SECONDS: int = 30

	# Caller-supplied identity
	JWT_SECRET: str = "change-me"
	JWT_ALGORITHM: str = "HS256"

	# Directory (buildings, units, staff, services)
	DIRECTORY_BASE_URL: str = "http://localhost:8081"
	DIRECTORY_TIMEOUT_SECONDS: float = 10.0
	READER_ROLE: str = "TECHNICIAN"

	# CORS
	CORS_ORIGINS: List[str] = ["http://localhost:3000"]

	# Monitoring
	EXPOSE_METRICS: bool = True

	# Readings / export
	BULK_MAX_ITEMS: int = 500
	EXPORT_RETRY_INTERVAL_MINUTES: int = 15
	INVOICE_CURRENCY: Optional[str] = "VND"

	model_config = SettingsConfigDict(
		env_file=".env",
		env_file_encoding="utf-8",
		case_sensitive=True,
		extra="ignore",
	)


@lru_cache()
def get_settings() -> Settings:
	return Settings()


settings = get_settings()
