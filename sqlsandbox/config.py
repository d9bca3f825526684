"""
Centralized Configuration Management
====================================
All configuration values are read directly from environment variables.
A local .env file is honoured in development via python-dotenv.
"""
import os
import logging
from typing import Optional
from enum import Enum

from dotenv import load_dotenv

load_dotenv()


class Environment(str, Enum):
    """Deployment environment types"""
    DEV = "dev"
    UAT = "uat"
    PROD = "prod"
    LOCAL = "local"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Config:
    """Base configuration with environment-aware settings"""

    # ==================== ENVIRONMENT DETECTION ====================
    @staticmethod
    def get_environment() -> Environment:
        """Detect current deployment environment from ENV variable"""
        env = os.getenv("ENV", "local").lower()
        if env in ["dev", "development"]:
            return Environment.DEV
        elif env in ["uat", "staging"]:
            return Environment.UAT
        elif env in ["prod", "production"]:
            return Environment.PROD
        return Environment.LOCAL

    ENVIRONMENT = get_environment()

    # ==================== DATABASE CONFIGURATION ====================
    # Holds the problem/sandbox records and the sandbox schemas themselves
    DATABASE_URL: Optional[str] = os.getenv("DATABASE_URL")

    # Record store (SQLAlchemy) pool settings
    DB_POOL_TIMEOUT: int = int(os.getenv("DB_POOL_TIMEOUT", "10"))
    DB_POOL_RECYCLE: int = int(os.getenv("DB_POOL_RECYCLE", "300"))

    # Sandbox execution pool (asyncpg) settings
    DB_POOL_MIN_SIZE: int = int(os.getenv("DB_POOL_MIN_SIZE", "1"))
    DB_POOL_MAX_SIZE: int = int(os.getenv("DB_POOL_MAX_SIZE", "10"))
    DB_IDLE_IN_TRANSACTION_TIMEOUT_MS: int = int(os.getenv("DB_IDLE_IN_TRANSACTION_TIMEOUT_MS", "30000"))

    # ==================== SANDBOX CONFIGURATION ====================
    # Wall-clock deadline for a submitted query
    QUERY_TIMEOUT_MS: int = int(os.getenv("QUERY_TIMEOUT_MS", "5000"))
    # Server-side statement_timeout is the deadline plus this grace period
    STATEMENT_TIMEOUT_GRACE_MS: int = int(os.getenv("STATEMENT_TIMEOUT_GRACE_MS", "1000"))

    # PostgreSQL NAMEDATALEN - 1
    MAX_IDENTIFIER_LENGTH: int = int(os.getenv("MAX_IDENTIFIER_LENGTH", "63"))
    SCHEMA_PREFIX: str = os.getenv("SCHEMA_PREFIX", "sb")

    # ==================== DATA RETENTION ====================
    EXECUTION_LOG_RETENTION_DAYS: int = int(os.getenv("EXECUTION_LOG_RETENTION_DAYS", "7"))

    # ==================== LOGGING & MONITORING ====================
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    ENABLE_SQL_LOGGING: bool = _env_bool("ENABLE_SQL_LOGGING", "false")

    # ==================== VALIDATION ====================
    @classmethod
    def validate_config(cls) -> None:
        """Validate critical configuration settings"""
        errors = []

        if not cls.DATABASE_URL:
            errors.append("DATABASE_URL is required")
        if cls.QUERY_TIMEOUT_MS <= 0:
            errors.append("QUERY_TIMEOUT_MS must be positive")
        if cls.DB_POOL_MIN_SIZE < 0 or cls.DB_POOL_MAX_SIZE < max(cls.DB_POOL_MIN_SIZE, 1):
            errors.append("DB_POOL_MAX_SIZE must be >= max(DB_POOL_MIN_SIZE, 1)")
        # Room for the prefix, one separator and the digest suffix
        if cls.MAX_IDENTIFIER_LENGTH < len(cls.SCHEMA_PREFIX) + 12:
            errors.append("MAX_IDENTIFIER_LENGTH is too small for SCHEMA_PREFIX")

        if errors:
            raise ValueError("Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors))

    @classmethod
    def print_config_summary(cls) -> None:
        """Print configuration summary (without secrets)"""
        print("\n" + "=" * 60)
        print(f"SQL Sandbox Configuration Summary - {cls.ENVIRONMENT.value.upper()} Environment")
        print("=" * 60)
        print(f"Database: {'configured' if cls.DATABASE_URL else 'NOT configured'}")
        print(f"Sandbox pool: {cls.DB_POOL_MIN_SIZE}-{cls.DB_POOL_MAX_SIZE} connections")
        print(f"Query deadline: {cls.QUERY_TIMEOUT_MS}ms")
        print(f"Schema prefix: {cls.SCHEMA_PREFIX} (max {cls.MAX_IDENTIFIER_LENGTH} bytes)")
        print(f"Execution log retention: {cls.EXECUTION_LOG_RETENTION_DAYS} days")
        print(f"Log level: {cls.LOG_LEVEL}")
        print("=" * 60 + "\n")


def configure_logging(level: Optional[str] = None) -> None:
    """Apply LOG_LEVEL to the root logger"""
    logging.basicConfig(
        level=getattr(logging, (level or Config.LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if Config.ENABLE_SQL_LOGGING:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)
