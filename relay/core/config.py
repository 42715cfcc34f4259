import logging
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

POLAR_SERVER_NAMES = ("sandbox", "production")

# Needed for checkout and webhooks to work end to end
REQUIRED_KEYS = (
    "POLAR_ACCESS_TOKEN",
    "POLAR_WEBHOOK_SECRET",
    "POLAR_PRO_PRODUCT_ID",
    "POLAR_MASTER_PRODUCT_ID",
)


class Settings(BaseSettings):
    ENV: str = "development"
    CONFIG_STRICT: bool = False
    PORT: int = 3000

    # Polar
    POLAR_ACCESS_TOKEN: Optional[str] = None
    POLAR_WEBHOOK_SECRET: Optional[str] = None
    POLAR_PRO_PRODUCT_ID: Optional[str] = None
    POLAR_MASTER_PRODUCT_ID: Optional[str] = None
    POLAR_SERVER: str = "sandbox"
    POLAR_API_TIMEOUT_SECONDS: float = 10.0

    # Accepted clock skew for webhook-timestamp, either direction
    WEBHOOK_TOLERANCE_SECONDS: int = 300

    # CORS origin and checkout redirect base
    FRONTEND_URL: str = "http://localhost:5173"

    # No auth in front of checkout; requests without X-Customer-Id use this
    POC_CUSTOMER_ID: str = "poc_user_001"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()


def config_problems(cfg: Settings) -> List[str]:
    """Human-readable configuration problems. Names keys, never values."""
    problems = []
    missing = [key for key in REQUIRED_KEYS if not getattr(cfg, key, None)]
    if missing:
        problems.append(f"Missing required configuration: {', '.join(missing)}")
    if cfg.POLAR_SERVER not in POLAR_SERVER_NAMES:
        problems.append(f"POLAR_SERVER must be one of {', '.join(POLAR_SERVER_NAMES)}, got '{cfg.POLAR_SERVER}'")
    return problems


def validate_config(
    strict: Optional[bool] = None,
    settings_obj: Optional[Settings] = None,
    logger: Optional[logging.Logger] = None,
) -> bool:
    """Warn about configuration problems, or raise RuntimeError in strict mode."""
    cfg = settings_obj or settings
    log = logger or logging.getLogger("relay")
    strict_mode = cfg.CONFIG_STRICT if strict is None else strict

    problems = config_problems(cfg)
    if problems and strict_mode:
        raise RuntimeError("; ".join(problems))
    for problem in problems:
        log.warning(problem)
    return True
