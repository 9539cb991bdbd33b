import logging
import warnings

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Environment
    environment: str = "development"  # development | test | production

    # Server
    marketplace_host: str = "0.0.0.0"
    marketplace_port: int = 8000

    # Databases: one per store, never shared (sqlite for local dev, postgresql+asyncpg for production)
    registry_database_url: str = "sqlite+aiosqlite:///./data/registry.db"
    marketplace_database_url: str = "sqlite+aiosqlite:///./data/marketplace.db"

    # Content storage: local HashFS path
    content_store_path: str = "./data/content_store"

    # Auth
    jwt_secret_key: str = "dev-secret-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expire_hours: int = 24 * 7  # 7 days
    marketplace_principal: str = "marketplace"  # Only principal allowed to move ownership on a sale
    admin_principals: str = ""  # Comma-separated principals with admin access

    # Saga retry policy for secondary (post-commit) steps
    saga_max_attempts: int = 3
    saga_retry_backoff_seconds: float = 0.05

    # Store gateways
    store_call_timeout_seconds: float = 5.0
    store_breaker_failure_threshold: int = 5
    store_breaker_recovery_seconds: float = 30.0

    # Background divergence scan (0 disables)
    divergence_scan_interval_seconds: int = 300

    # CORS
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def admin_principal_set(self) -> set[str]:
        return {p.strip() for p in self.admin_principals.split(",") if p.strip()}


settings = Settings()

# Warn on insecure defaults (logged at startup, not a hard error for dev convenience)
_logger = logging.getLogger("assetmarket.config")
_INSECURE_SECRETS = {
    "dev-secret-change-in-production",
    "change-me-to-a-random-string",
    "change-me-to-a-random-64-char-string",
}


def validate_security_posture(cfg: Settings) -> None:
    is_prod = cfg.environment.lower() in {"production", "prod"}

    if cfg.jwt_secret_key in _INSECURE_SECRETS:
        if is_prod:
            raise RuntimeError(
                "FATAL: JWT_SECRET_KEY is set to an insecure default. "
                "Set a strong random secret via the JWT_SECRET_KEY environment variable before deploying to production."
            )
        warnings.warn(
            "JWT_SECRET_KEY is set to the default insecure value. "
            "Set a strong random secret via the JWT_SECRET_KEY environment variable for production.",
            stacklevel=1,
        )

    if cfg.cors_origins == "*":
        if is_prod:
            raise RuntimeError(
                "FATAL: CORS_ORIGINS cannot be '*' in production. "
                "Set explicit trusted origins via the CORS_ORIGINS environment variable."
            )
        _logger.warning(
            "CORS_ORIGINS is set to '*' (allow all). "
            "Configure specific origins for production via the CORS_ORIGINS environment variable."
        )

    if not cfg.marketplace_principal.strip():
        if is_prod:
            raise RuntimeError(
                "FATAL: MARKETPLACE_PRINCIPAL must be set; sales cannot transfer ownership without it."
            )
        _logger.warning("MARKETPLACE_PRINCIPAL is empty; purchases will fail at the transfer step.")

    if is_prod and cfg.registry_database_url == cfg.marketplace_database_url:
        raise RuntimeError(
            "FATAL: REGISTRY_DATABASE_URL and MARKETPLACE_DATABASE_URL must point to separate databases."
        )


validate_security_posture(settings)
