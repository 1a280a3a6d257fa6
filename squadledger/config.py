"""Configuration for the SquadLedger engine."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Engine settings, overridable through SQUADLEDGER_* environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_prefix="SQUADLEDGER_")

    # Database
    database_url: str = "sqlite+aiosqlite:///./squadledger.db"
    database_echo: bool = False
    database_pool_size: int = 10
    database_max_overflow: int = 20

    # Identity boundary
    jwt_secret_key: str = "dev-only-change-me"
    jwt_algorithm: str = "HS256"

    # Lifecycle timing
    pledge_expiry_days: int = 14
    rating_window_days: int = 7
    audit_window_hours: int = 24

    # Ledger rules
    activation_threshold: float = 0.8
    challenge_uphold_weight: float = 3.0

    # Background sweeps
    scheduler_enabled: bool = True
    scheduler_interval_seconds: int = 900

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"


# Participation level -> voting power
VOTING_POWER: dict[str, float] = {
    "Apprentice": 0.0,
    "Journeyman": 1.0,
    "Master": 3.0,
    "GuestArtist": 4.0,
}

# Squad role -> participation levels it may be combined with
COMPATIBLE_LEVELS: dict[str, tuple[str, ...]] = {
    "Apprentice": ("Apprentice", "Journeyman", "Master"),
    "Journeyman": ("Apprentice", "Journeyman", "Master"),
    "Masters": ("Journeyman", "Master"),
    "Mentor": ("Master", "GuestArtist"),
}

MENTOR_ROLE = "Mentor"
MENTOR_RATING_WEIGHT = 3.0
DEFAULT_RATING_WEIGHT = 1.0

POOL_TASK_TITLE = "Other Tasks"

# Slack for float comparisons on HH sums
HH_EPSILON = 1e-9


def voting_power_for(level: str) -> float:
    """Voting power granted by a participation level."""
    return VOTING_POWER[level]


def is_compatible(squad_role: str, level: str) -> bool:
    return level in COMPATIBLE_LEVELS.get(squad_role, ())


@lru_cache
def get_settings() -> EngineSettings:
    """Get cached engine settings instance."""
    return EngineSettings()
