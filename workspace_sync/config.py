"""
Environment-driven configuration
"""

import os

import structlog

from .models.sync_models import ResolutionStrategy

logger = structlog.get_logger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./workspace_sync.db"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class DatabaseConfig:
    """Configuration for the local database"""

    def __init__(self):
        self.database_url = os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)
        self.echo = _env_bool("DB_ECHO", "false")


class RecoveryConfig:
    """Configuration for recovery runs"""

    def __init__(self,
                 default_missing_strategy: ResolutionStrategy = None,
                 inter_collection_delay: float = None,
                 revalidate_on_apply: bool = None):
        if default_missing_strategy is None:
            default_missing_strategy = ResolutionStrategy(
                os.getenv("RECOVERY_DEFAULT_MISSING_STRATEGY", ResolutionStrategy.PREFER_EXTERNAL.value)
            )
        if inter_collection_delay is None:
            inter_collection_delay = float(os.getenv("RECOVERY_INTER_COLLECTION_DELAY", "0.5"))
        if revalidate_on_apply is None:
            revalidate_on_apply = _env_bool("RECOVERY_REVALIDATE_ON_APPLY", "true")

        if default_missing_strategy == ResolutionStrategy.PREFER_LOCAL:
            # A missing document has no local side to prefer
            raise ValueError("prefer_local is not a valid default strategy for missing conflicts")

        self.default_missing_strategy = default_missing_strategy
        self.inter_collection_delay = inter_collection_delay
        self.revalidate_on_apply = revalidate_on_apply

        logger.info("Recovery configuration loaded",
                    default_missing_strategy=self.default_missing_strategy.value,
                    inter_collection_delay=self.inter_collection_delay,
                    revalidate_on_apply=self.revalidate_on_apply)
