"""Pydantic models for database and backup configuration."""

from pydantic import BaseModel, Field


# ============================================================================
# Configuration Models
# ============================================================================


class DatabaseProfile(BaseModel):
    """Database connection profile from db.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    provider: str = "postgres"  # Defaults to postgres


class BackupSettings(BaseModel):
    """The ``[backup]`` table of db.toml."""

    directory: str = "backups"
    compress: bool = True
    verify: bool = True
    max_backups: int = Field(default=30, ge=0)  # 0 disables pruning


class DatabaseConfig(BaseModel):
    """Complete configuration from db.toml."""

    profiles: dict[str, DatabaseProfile]
    backup: BackupSettings = Field(default_factory=BackupSettings)
