"""Application configuration classes."""

from __future__ import annotations

import os

DEFAULT_CHANNEL_SIZES = ",".join(str(size * 1_000_000) for size in range(1, 11))


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value is not None else default


def _get_bool(name: str, default: bool) -> bool:
    return _get_env(name, "true" if default else "false").strip().lower() in {"1", "true", "yes", "on"}


class BaseConfig:
    """Settings shared by every environment; values come from the process environment."""

    SCHEDULER_ENABLED = _get_bool("SCHEDULER_ENABLED", True)
    PRICES_REFRESH_CRON = _get_env("PRICES_REFRESH_CRON", "*/10 * * * *")

    APP_NAME = "lsp-price-aggregator"
    SECRET_KEY = _get_env("SECRET_KEY", "change-me")
    SQLALCHEMY_DATABASE_URI = _get_env("DATABASE_URL", "sqlite:///lsp-prices.db")
    SCHEDULER_TIMEZONE = _get_env("SCHEDULER_TIMEZONE", "UTC")

    LSP_REQUEST_TIMEOUT_SECONDS = float(_get_env("LSP_REQUEST_TIMEOUT_SECONDS", "10"))
    LSP_BATCH_TIMEOUT_SECONDS = float(_get_env("LSP_BATCH_TIMEOUT_SECONDS", "25"))
    LSP_FETCH_MAX_ATTEMPTS = int(_get_env("LSP_FETCH_MAX_ATTEMPTS", "2"))
    LSP_RETRY_DELAY_SECONDS = float(_get_env("LSP_RETRY_DELAY_SECONDS", "1.0"))
    LSP_DISABLED_PROVIDERS = _get_env("LSP_DISABLED_PROVIDERS", "")
    RATE_LIMIT_DEFAULT_COOLDOWN_SECONDS = float(
        _get_env("RATE_LIMIT_DEFAULT_COOLDOWN_SECONDS", "60")
    )

    PRICE_HISTORY_MAX_ENTRIES = int(_get_env("PRICE_HISTORY_MAX_ENTRIES", "50"))
    PRICE_FRESHNESS_SECONDS = int(_get_env("PRICE_FRESHNESS_SECONDS", "3600"))
    BACKGROUND_REFRESH_INTERVAL_SECONDS = int(
        _get_env("BACKGROUND_REFRESH_INTERVAL_SECONDS", "600")
    )
    PRICE_CHANNEL_SIZES = _get_env("PRICE_CHANNEL_SIZES", DEFAULT_CHANNEL_SIZES)
    DEFAULT_CHANNEL_SIZE_SAT = int(_get_env("DEFAULT_CHANNEL_SIZE_SAT", "1000000"))
    MIN_CHANNEL_SIZE_SAT = int(_get_env("MIN_CHANNEL_SIZE_SAT", "100000"))
    MAX_CHANNEL_SIZE_SAT = int(_get_env("MAX_CHANNEL_SIZE_SAT", "10000000"))

    LOG_LEVEL = _get_env("LOG_LEVEL", "INFO")
    LOG_JSON_ENABLED = _get_bool("LOG_JSON_ENABLED", False)
    LOG_FORMAT = _get_env("LOG_FORMAT", "%(asctime)s %(levelname)s [%(name)s] %(message)s")
    CORS_ALLOWED_ORIGINS = _get_env("CORS_ALLOWED_ORIGINS", "*")
    CORS_ALLOWED_HEADERS = _get_env("CORS_ALLOWED_HEADERS", "Content-Type,Authorization")
    CORS_ALLOWED_METHODS = _get_env("CORS_ALLOWED_METHODS", "GET,POST,OPTIONS")
    CORS_MAX_AGE = int(_get_env("CORS_MAX_AGE", "600"))


class DevelopmentConfig(BaseConfig):
    """Local runs: debug on."""

    DEBUG = True
    TESTING = False


class ProductionConfig(BaseConfig):
    """Configuration for production deployments."""

    DEBUG = False
    TESTING = False


CONFIG_BY_ENV = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
}


def get_config(config_name: str | None = None) -> type[BaseConfig]:
    """Resolve a config class by name, falling back to ``APP_ENV``.

    Raises:
        KeyError: For an unknown environment name.
        ValueError: When channel-size, attempt or history settings are inconsistent.
    """

    env_candidate = config_name if config_name is not None else os.getenv("APP_ENV", "development")
    env_name = (env_candidate or "development").lower()
    try:
        config_cls = CONFIG_BY_ENV[env_name]
    except KeyError as exc:
        raise KeyError(f"Unknown APP_ENV '{env_name}'") from exc

    _validate_price_settings(config_cls)
    return config_cls


def parse_channel_sizes(raw: str) -> list[int]:
    """Parse a comma-separated list of channel sizes in satoshis."""

    sizes: list[int] = []
    for chunk in (raw or "").split(","):
        item = chunk.strip().replace("_", "")
        if not item:
            continue
        try:
            value = int(item)
        except ValueError as exc:
            raise ValueError(f"Invalid channel size '{chunk.strip()}' in PRICE_CHANNEL_SIZES") from exc
        if value <= 0:
            raise ValueError(f"Channel sizes must be positive, got {value}")
        if value not in sizes:
            sizes.append(value)
    return sorted(sizes)


def _validate_price_settings(config_cls: type[BaseConfig]) -> None:
    if config_cls.MIN_CHANNEL_SIZE_SAT <= 0:
        raise ValueError("MIN_CHANNEL_SIZE_SAT must be positive")
    if config_cls.MIN_CHANNEL_SIZE_SAT > config_cls.MAX_CHANNEL_SIZE_SAT:
        raise ValueError(
            f"MIN_CHANNEL_SIZE_SAT ({config_cls.MIN_CHANNEL_SIZE_SAT}) exceeds "
            f"MAX_CHANNEL_SIZE_SAT ({config_cls.MAX_CHANNEL_SIZE_SAT})"
        )
    if config_cls.LSP_FETCH_MAX_ATTEMPTS < 1:
        raise ValueError("LSP_FETCH_MAX_ATTEMPTS must be at least 1")
    if config_cls.PRICE_HISTORY_MAX_ENTRIES < 1:
        raise ValueError("PRICE_HISTORY_MAX_ENTRIES must be at least 1")

    for size in parse_channel_sizes(config_cls.PRICE_CHANNEL_SIZES):
        if not config_cls.MIN_CHANNEL_SIZE_SAT <= size <= config_cls.MAX_CHANNEL_SIZE_SAT:
            raise ValueError(
                f"Scheduled channel size {size} is outside "
                f"[{config_cls.MIN_CHANNEL_SIZE_SAT}, {config_cls.MAX_CHANNEL_SIZE_SAT}]"
            )
