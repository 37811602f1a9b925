"""Data store factory.

Resolves the active database profile from db.toml and builds an
``AsyncPostgresStore`` for it.

Profile priority:
1. Explicit ``profile_name`` argument
2. ``{env_prefix}DB_PROFILE`` env var
3. ``.db-profile`` lock file in the current working directory

Usage:
    from db_backup.factory import get_store

    store = await get_store(env_prefix="SHOP_")
"""

import logging
import os
from pathlib import Path
from urllib.parse import quote

from db_backup.adapters.postgres import AsyncPostgresStore
from db_backup.config.loader import load_db_config
from db_backup.config.models import DatabaseProfile

logger = logging.getLogger(__name__)

# Profile lock file path
_PROFILE_LOCK_FILE = Path.cwd() / ".db-profile"


# ============================================================================
# Profile Lock File Operations
# ============================================================================


class ProfileNotFoundError(Exception):
    """Raised when no database profile is configured."""

    pass


def read_profile_lock() -> str | None:
    """Read profile name from lock file.

    Returns:
        Profile name if lock file exists, None otherwise
    """
    if _PROFILE_LOCK_FILE.exists():
        return _PROFILE_LOCK_FILE.read_text().strip() or None
    return None


def write_profile_lock(profile_name: str) -> None:
    """Write profile name to lock file.

    Args:
        profile_name: Name of the profile to make current
    """
    _PROFILE_LOCK_FILE.write_text(profile_name)


def get_active_profile_name(env_prefix: str = "") -> str:
    """Get active profile name from env var or lock file.

    Args:
        env_prefix: Prefix for the env var (``"SHOP_"`` reads
            ``SHOP_DB_PROFILE``).

    Returns:
        Profile name

    Raises:
        ProfileNotFoundError: If no profile is configured
    """
    env_profile = os.environ.get(f"{env_prefix}DB_PROFILE")
    if env_profile:
        return env_profile

    lock_profile = read_profile_lock()
    if lock_profile:
        return lock_profile

    raise ProfileNotFoundError(
        "No database profile configured.\n"
        f"Set {env_prefix}DB_PROFILE=<name> or write the profile name to .db-profile"
    )


def get_active_profile(
    profile_name: str | None = None,
    env_prefix: str = "",
    config_path: Path | None = None,
) -> tuple[str, DatabaseProfile]:
    """Get active profile name and configuration.

    Returns:
        Tuple of (profile_name, DatabaseProfile)

    Raises:
        ProfileNotFoundError: If no profile configured or it is not in db.toml
        FileNotFoundError: If db.toml is missing
    """
    if profile_name is None:
        profile_name = get_active_profile_name(env_prefix=env_prefix)
    config = load_db_config(config_path)

    if profile_name not in config.profiles:
        raise ProfileNotFoundError(
            f"Profile '{profile_name}' not found in db.toml.\n"
            f"Available profiles: {', '.join(config.profiles.keys())}"
        )

    return profile_name, config.profiles[profile_name]


def resolve_url(profile: DatabaseProfile) -> str:
    """Resolve profile URL with password substitution.

    Args:
        profile: Database profile from config

    Returns:
        Connection URL with password substituted
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


# ============================================================================
# Store Factory
# ============================================================================


async def get_store(
    profile_name: str | None = None,
    env_prefix: str = "",
    config_path: Path | None = None,
) -> AsyncPostgresStore:
    """Build a data store for the active (or given) profile.

    Args:
        profile_name: Profile name from db.toml.  If None, uses the env var
            or the ``.db-profile`` lock file.
        env_prefix: Prefix for the profile env var.
        config_path: Path to db.toml (default: ``./db.toml``).

    Returns:
        ``AsyncPostgresStore`` connected lazily to the profile's database

    Raises:
        ProfileNotFoundError: If no usable profile is configured
        FileNotFoundError: If db.toml is missing
        ValueError: If the profile's provider is not supported

    Example:
        >>> store = await get_store("local")
        >>> tables = await store.list_tables()
    """
    name, profile = get_active_profile(profile_name, env_prefix, config_path)
    if profile.provider != "postgres":
        raise ValueError(
            f"Profile '{name}' uses unsupported provider '{profile.provider}'"
        )
    logger.debug(f"Creating store for profile {name}")
    return AsyncPostgresStore(database_url=resolve_url(profile))
