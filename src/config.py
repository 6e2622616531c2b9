"""
APEX Operations Console
Configuration classes for the FastAPI app.

Usage:
    from config import get_config
    settings = get_config()            # picks the class from APP_ENV
    settings = get_config("testing")
"""

import os


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Base configuration shared across all environments."""

    APP_ENV = "development"
    DEBUG = False
    TESTING = False

    LOG_LEVEL = os.getenv("LOG_LEVEL")

    # Server
    HOST = os.getenv("HOST", "127.0.0.1")
    PORT = int(os.getenv("PORT", "8000"))

    # CORS (comma-separated list, "*" for any)
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Dashboard / reports
    RECENT_ACTIVITY_PAGE_SIZE = int(os.getenv("RECENT_ACTIVITY_PAGE_SIZE", "5"))
    TOP_SYSTEMS_DEFAULT = int(os.getenv("TOP_SYSTEMS_DEFAULT", "10"))
    TREND_MONTHS = int(os.getenv("TREND_MONTHS", "12"))

    # Approving a project request converts it in the same transaction
    AUTO_CONVERT_ON_APPROVAL = _flag("AUTO_CONVERT_ON_APPROVAL")

    @property
    def cors_origins(self) -> list:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def log_level(self) -> str:
        return (self.LOG_LEVEL or ("DEBUG" if self.DEBUG else "INFO")).upper()


class DevelopmentConfig(Config):
    """Development environment configuration."""

    APP_ENV = "development"
    DEBUG = True


class TestingConfig(Config):
    """Testing environment configuration."""

    APP_ENV = "testing"
    TESTING = True
    # Always explicit in tests
    AUTO_CONVERT_ON_APPROVAL = False


class ProductionConfig(Config):
    """Production environment configuration."""

    APP_ENV = "production"
    DEBUG = False
    HOST = os.getenv("HOST", "0.0.0.0")
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}


def get_config(name: str = None) -> Config:
    name = (name or os.getenv("APP_ENV", "development")).lower()
    if name not in config:
        raise ValueError(f"Unknown APP_ENV '{name}'; expected one of {sorted(config)}")
    return config[name]()
