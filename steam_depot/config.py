"""
Service configuration read from the environment
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from steam_depot import constants


def get_env_trimmed(name: str, environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Return an environment variable stripped of whitespace, or None if unset or blank."""
    environ = os.environ if environ is None else environ
    value = environ.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass
class ServiceConfig:
    """
    Runtime configuration.

    Attributes:
        session_dir: Directory holding saved sessions
        game_dir: Depot download destination
        app_id: Application to download and request tickets for
        target_os: Depot platform to download
        refresh_token: Refresh token supplied by the environment
        username: Account name supplied by the environment
        password: Password supplied by the environment
        force_redownload: Ignore the download marker and re-check every file
        download_workers: Files downloaded in parallel
    """
    session_dir: Path = Path(constants.DEFAULT_SESSION_DIR)
    game_dir: Path = Path(constants.DEFAULT_GAME_DIR)
    app_id: int = constants.DEFAULT_APP_ID
    target_os: str = constants.DEFAULT_TARGET_OS
    refresh_token: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    force_redownload: bool = False
    download_workers: int = 1

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServiceConfig":
        """
        Build a configuration from environment variables.

        Raises:
            ValueError: If a numeric variable is not an integer
        """
        def env(name: str) -> Optional[str]:
            return get_env_trimmed(name, environ)

        target_os = env("TARGET_OS")
        if target_os is not None and target_os.lower() not in constants.PLATFORMS:
            raise ValueError(f"TARGET_OS must be one of {', '.join(constants.PLATFORMS)}")

        return cls(
            session_dir=Path(env("SESSION_DIR") or constants.DEFAULT_SESSION_DIR),
            game_dir=Path(env("GAME_DIR") or constants.DEFAULT_GAME_DIR),
            app_id=int(env("STEAM_APP_ID") or constants.DEFAULT_APP_ID),
            target_os=(target_os or constants.DEFAULT_TARGET_OS).lower(),
            refresh_token=env("STEAM_REFRESH_TOKEN"),
            username=env("STEAM_USERNAME"),
            password=env("STEAM_PASSWORD"),
            force_redownload=env("FORCE_REDOWNLOAD") == "1",
            download_workers=max(1, int(env("DOWNLOAD_WORKERS") or 1)),
        )
