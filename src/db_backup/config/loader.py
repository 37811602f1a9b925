"""Load db.toml into configuration models.

Usage:
    from db_backup.config.loader import load_db_config

    config = load_db_config()
    config.backup.directory      # 'backups'
"""

import tomllib
from pathlib import Path

from pydantic import ValidationError

from db_backup.config.models import BackupSettings, DatabaseConfig, DatabaseProfile


def load_db_config(config_path: Path | None = None) -> DatabaseConfig:
    """Load database and backup configuration from a TOML file.

    Args:
        config_path: Path to db.toml (default: ``./db.toml`` in the current
            working directory)

    Returns:
        DatabaseConfig with all profiles and backup settings

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config format is invalid
    """
    if config_path is None:
        config_path = Path.cwd() / "db.toml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(
            f"Database config not found: {config_path}\n"
            f"Create db.toml with a [profiles.<name>] table."
        )

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML in {config_path}: {e}") from e

    try:
        # Parse profiles
        profiles = {}
        for name, profile_data in data.get("profiles", {}).items():
            profiles[name] = DatabaseProfile(**profile_data)

        # Parse backup settings
        backup = BackupSettings(**data.get("backup", {}))
    except (TypeError, ValidationError) as e:
        raise ValueError(f"Invalid configuration in {config_path}: {e}") from e

    return DatabaseConfig(profiles=profiles, backup=backup)
