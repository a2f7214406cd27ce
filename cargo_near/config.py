"""
Configuration — environment-driven settings for the CLI.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """cargo-near settings"""

    model_config = SettingsConfigDict(case_sensitive=True)

    # Build tool binary; cargo exports CARGO when running subcommands
    CARGO: str = "cargo"

    # Logging
    LOG_LEVEL: str = "INFO"


settings = Settings()
