"""Configuration management.

Uses pydantic-settings so every knob can be overridden from the environment
(prefix REPORTFORGE_) or a local .env file.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

DEFAULT_CURRENCY_FIELDS = [
    "amount",
    "unit_amount",
    "amount_received",
    "amount_refunded",
    "amount_captured",
    "amount_paid",
    "amount_due",
    "balance",
    "subtotal",
    "total",
    "starting_balance",
    "ending_balance",
]


class Settings(BaseSettings):
    """Engine settings.

    All settings can be overridden via environment variables.
    Prefix: REPORTFORGE_
    """

    model_config = SettingsConfigDict(
        env_prefix="REPORTFORGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Grouping
    group_values_limit: int = Field(
        default=50,
        gt=0,
        description="How many distinct values the grouping engine returns for display",
    )
    max_group_selections: int = Field(
        default=10,
        gt=0,
        description="Cap on selected group-by values, enforced at selection time",
    )

    # Time bucketing
    max_buckets: int = Field(
        default=500,
        gt=0,
        description="Range/granularity combinations above this are flagged as too dense",
    )
    week_start: str = Field(default="sunday", description="First day of a week bucket")
    timestamp_fields: list[str] = Field(
        default_factory=lambda: ["created"],
        description="Priority list of timestamp fields, used when a block doesn't name one",
    )

    # Units
    currency_fields: list[str] = Field(default_factory=lambda: list(DEFAULT_CURRENCY_FIELDS))

    # Memoization
    cache_size: int = Field(default=128, ge=0, description="Formula results kept per store")

    log_level: str = Field(default="WARNING")

    @field_validator("week_start")
    @classmethod
    def validate_week_start(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in WEEKDAYS:
            raise ValueError(f"week_start must be one of {', '.join(WEEKDAYS)}")
        return value

    @property
    def week_start_index(self) -> int:
        """Week start as a python weekday number (monday == 0)."""
        return WEEKDAYS.index(self.week_start)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
