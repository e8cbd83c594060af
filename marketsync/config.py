"""
Configuration module for the marketplace sync jobs.

Reads environment variables and provides configuration values for the
database connection, provider endpoints, retry budgets, pacing delays
and rate-limit ceilings.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, List

from dotenv import load_dotenv

# Load environment variables from .env file (for local development).
# Values already present in the environment win.
env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(dotenv_path=env_path, override=False)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


class Config:
    """
    Configuration class that reads environment variables for the sync jobs.

    Durations are in seconds.
    """

    # Database Configuration
    DB_HOST: str = os.getenv("DB_HOST", "")
    DB_PORT: int = _env_int("DB_PORT", 5432)
    DB_NAME: str = os.getenv("DB_NAME", "")
    DB_USER: str = os.getenv("DB_USER", "")
    DB_PASSWORD: str = os.getenv("DB_PASSWORD", "")
    DB_SECRET_ARN: str = os.getenv("DB_SECRET_ARN", "")
    DB_POOL_MIN: int = _env_int("DB_POOL_MIN", 1)
    DB_POOL_MAX: int = _env_int("DB_POOL_MAX", 20)
    DB_CONNECT_TIMEOUT: int = _env_int("DB_CONNECT_TIMEOUT", 5)

    # Wildberries statistics API (orders)
    WB_API_TOKEN: str = os.getenv("WB_API_TOKEN", "")
    WB_STATISTICS_URL: str = os.getenv(
        "WB_STATISTICS_URL", "https://statistics-api.wildberries.ru"
    )
    WB_TIMEOUT: float = _env_float("REQUEST_TIMEOUT", 30.0)
    WB_MAX_RETRIES: int = _env_int("MAX_RETRIES", 3)
    WB_RETRY_DELAY: float = _env_float("WB_RETRY_DELAY", 1.0)
    # Statistics API allows one request per minute
    WB_ORDERS_RATE_LIMIT_WAIT: float = _env_float("WB_ORDERS_RATE_LIMIT_WAIT", 65.0)
    WB_ORDERS_PAGINATION_DELAY: float = _env_float("WB_ORDERS_PAGINATION_DELAY", 61.0)
    WB_ORDERS_REQUESTS_PER_MINUTE: int = _env_int("WB_ORDERS_REQUESTS_PER_MINUTE", 1)
    WB_ORDERS_PAGE_LIMIT: int = _env_int("WB_ORDERS_PAGE_LIMIT", 80000)
    WB_ORDERS_FLAG: int = _env_int("WB_ORDERS_FLAG", 0)

    # Wildberries content API (cards)
    WB_CONTENT_URL: str = os.getenv(
        "WB_CONTENT_URL", "https://content-api.wildberries.ru"
    )
    CARDS_TIMEOUT: float = _env_float("CARDS_TIMEOUT", 30.0)
    CARDS_MAX_RETRIES: int = _env_int("CARDS_MAX_RETRIES", 3)
    CARDS_PAGE_LIMIT: int = _env_int("CARDS_PAGE_LIMIT", 100)
    CARDS_PAGINATION_DELAY: float = _env_float("CARDS_PAGINATION_DELAY", 1.0)

    # Wildberries reports API (warehouse remains, task based)
    WB_REPORTS_URL: str = os.getenv(
        "WB_REPORTS_URL", "https://seller-analytics-api.wildberries.ru"
    )
    REMAINS_RATE_LIMIT_WAIT: float = _env_float("REMAINS_RATE_LIMIT_WAIT", 60.0)
    REMAINS_POLL_INTERVAL: float = _env_float("REMAINS_POLL_INTERVAL", 5.0)
    REMAINS_READY_DELAY: float = _env_float("REMAINS_READY_DELAY", 0.0)
    REMAINS_DOWNLOAD_RATE_LIMIT_WAIT: float = _env_float(
        "REMAINS_DOWNLOAD_RATE_LIMIT_WAIT", 60.0
    )
    REMAINS_MAX_POLLS: int = _env_int("REMAINS_MAX_POLLS", 0)
    REMAINS_CHUNK_SIZE: int = _env_int("REMAINS_CHUNK_SIZE", 1000)

    # MoySklad API
    MS_TOKEN: str = os.getenv("MS_TOKEN", "")
    MS_BASE_URL: str = os.getenv(
        "MS_BASE_URL", "https://api.moysklad.ru/api/remap/1.2"
    )
    MS_TIMEOUT: float = _env_float("MS_REQUEST_TIMEOUT", 60.0)
    MS_MAX_RETRIES: int = _env_int("MS_MAX_RETRIES", 5)
    MS_RETRY_DELAY: float = _env_float("MS_RETRY_DELAY", 5.0)
    MS_PAGINATION_DELAY: float = _env_float("MS_PAGINATION_DELAY", 2.0)
    MS_HEAVY_REQUEST_DELAY: float = _env_float("MS_HEAVY_REQUEST_DELAY", 20.0)
    MS_NORMAL_PER_MINUTE: int = _env_int("MS_NORMAL_PER_MINUTE", 45)
    MS_HEAVY_PER_MINUTE: int = _env_int("MS_HEAVY_PER_MINUTE", 5)
    MS_PAGE_LIMIT: int = _env_int("MS_PAGE_LIMIT", 1000)

    # Ozon seller API
    OZON_CLIENT_ID: str = os.getenv("OZON_CLIENT_ID", "")
    OZON_API_KEY: str = os.getenv("OZON_API_KEY", "")
    OZON_BASE_URL: str = os.getenv("OZON_BASE_URL", "https://api-seller.ozon.ru")
    OZON_TIMEOUT: float = _env_float("OZON_TIMEOUT", 30.0)
    OZON_MAX_RETRIES: int = _env_int("OZON_MAX_RETRIES", 3)
    OZON_PAGINATION_DELAY: float = _env_float("OZON_PAGINATION_DELAY", 0.2)
    OZON_ORDERS_PAGE_LIMIT: int = _env_int("OZON_ORDERS_PAGE_LIMIT", 1000)
    OZON_STOCKS_PAGE_LIMIT: int = _env_int("OZON_STOCKS_PAGE_LIMIT", 100)

    # Shared backoff cap
    MAX_BACKOFF: float = _env_float("MAX_BACKOFF", 30.0)

    # Sync window and persistence
    DAYS_TO_LOAD: int = _env_int("DAYS_TO_LOAD", 30)
    EXCLUDE_TODAY: bool = os.getenv("EXCLUDE_TODAY", "true").lower() != "false"
    UPSERT_SUB_BATCH_SIZE: int = _env_int("UPSERT_SUB_BATCH_SIZE", 100)
    LOG_RETENTION_DAYS: int = _env_int("LOG_RETENTION_DAYS", 30)

    # Required variables per job
    JOB_REQUIREMENTS: Dict[str, List[str]] = {
        "wb-orders": ["WB_API_TOKEN"],
        "wb-cards": ["WB_API_TOKEN"],
        "wb-remains": ["WB_API_TOKEN"],
        "moysklad": ["MS_TOKEN"],
        "ozon-orders": ["OZON_CLIENT_ID", "OZON_API_KEY"],
        "ozon-stocks": ["OZON_CLIENT_ID", "OZON_API_KEY"],
    }

    # Lazy-loaded secrets cache
    _db_secret_cache: Dict[str, Any] = {}

    @classmethod
    def _load_db_secret(cls) -> Dict[str, Any]:
        """
        Retrieve and cache the database secret from AWS Secrets Manager.

        Returns:
            Dict containing the secret payload.
        """
        if not cls._db_secret_cache:
            import boto3

            secrets_client = boto3.client("secretsmanager")
            try:
                response = secrets_client.get_secret_value(SecretId=cls.DB_SECRET_ARN)
                cls._db_secret_cache = json.loads(response["SecretString"])
            except Exception as e:
                raise ValueError(
                    f"Failed to retrieve database secret from Secrets Manager: {e}"
                )
        return cls._db_secret_cache

    @classmethod
    def get_db_connection_details(cls) -> Dict[str, Any]:
        """
        Provide database connection details.

        Environment variables are used directly; when no password is set and
        DB_SECRET_ARN is configured, missing values come from the secret.

        Returns:
            Dict containing host, port, dbname, user, password and connect_timeout.
        """
        details = {
            "host": cls.DB_HOST,
            "port": cls.DB_PORT,
            "dbname": cls.DB_NAME,
            "user": cls.DB_USER,
            "password": cls.DB_PASSWORD,
        }

        if not cls.DB_PASSWORD and cls.DB_SECRET_ARN:
            secret = cls._load_db_secret()
            details["host"] = details["host"] or secret.get("host", "")
            details["port"] = int(secret.get("port", details["port"]))
            details["dbname"] = (
                details["dbname"] or secret.get("dbname") or secret.get("database", "")
            )
            details["user"] = details["user"] or secret.get("username", "")
            details["password"] = secret.get("password", "")

        missing = [key for key in ("host", "dbname", "user", "password") if not details[key]]
        if missing:
            raise ValueError(
                f"Missing database connection settings: {', '.join(missing)}"
            )

        details["connect_timeout"] = cls.DB_CONNECT_TIMEOUT
        return details

    @classmethod
    def validate(cls, job: str) -> None:
        """
        Validate that the configuration values a job needs are present.

        Args:
            job: Job name (e.g. 'wb-orders', 'moysklad')

        Raises:
            ValueError: If the job is unknown or any required value is missing.
        """
        if job not in cls.JOB_REQUIREMENTS:
            raise ValueError(f"Unsupported job: {job}")

        required_vars = []
        if not cls.DB_SECRET_ARN:
            required_vars += [
                ("DB_HOST", cls.DB_HOST),
                ("DB_NAME", cls.DB_NAME),
                ("DB_USER", cls.DB_USER),
                ("DB_PASSWORD", cls.DB_PASSWORD),
            ]
        required_vars += [(name, getattr(cls, name)) for name in cls.JOB_REQUIREMENTS[job]]

        missing = [name for name, value in required_vars if not value]
        if missing:
            raise ValueError(
                f"Missing required environment variables: {', '.join(missing)}"
            )
