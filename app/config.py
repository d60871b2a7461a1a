from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # =================================================================
    # SCHEDULING RULES
    # =================================================================
    SESSION_DURATION_HOURS: int = 2
    MIN_OVERLAP_HOURS: int = 1
    MIN_PROPOSAL_HOURS: int = 2
    MAX_WEEKLY_PLANS: int = 5

    # =================================================================
    # NEGOTIATION POLICY
    # =================================================================
    PROPOSAL_TTL_HOURS: int = 168  # 7 days
    MAX_COUNTER_ROUNDS: int = 5
    EXPIRY_SWEEP_INTERVAL_MINUTES: int = 15
    RUN_EXPIRY_SWEEP_IN_APP: bool = True  # proposals live in process memory

    # =================================================================
    # ADAPTERS
    # =================================================================
    AVAILABILITY_BACKEND: Literal["memory", "redis"] = "memory"
    NOTIFICATION_SINK: Literal["log", "memory"] = "log"

    # Redis settings (only used by the redis availability backend)
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 20
    REDIS_KEY_PREFIX: str = "availability"

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def uses_redis(self) -> bool:
        return self.AVAILABILITY_BACKEND == "redis"

    def get_negotiation_policy(self) -> dict:
        """Get the negotiation policy as ProposalCoordinator keyword arguments."""
        return {
            "session_hours": self.SESSION_DURATION_HOURS,
            "min_overlap_hours": self.MIN_OVERLAP_HOURS,
            "min_proposal_hours": self.MIN_PROPOSAL_HOURS,
            "max_plans": self.MAX_WEEKLY_PLANS,
            "proposal_ttl_hours": self.PROPOSAL_TTL_HOURS,
            "max_counter_rounds": self.MAX_COUNTER_ROUNDS,
        }


settings = Settings()
