"""
Configuration loading for the syncer and its operator tools.

Non-secret settings live in ``settings.toml``; credentials come from the
keychain through ``shared.secrets``.  ``resolve_settings`` merges both into
a ``Settings`` object that is threaded through every run.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import toml

from shared.errors import AuthorizationError, ConfigurationError
from shared.oauth import OAuthCredentials
from shared.secrets import get_optional_secret

logger = logging.getLogger("shared.config")

DEFAULT_CONFIG_PATH = Path(
    os.environ.get("FLICKR_CHANNEL_CONFIG", "/etc/flickr-channel/settings.toml")
)

SecretGetter = Callable[[str], Optional[str]]

# Release retry stays bounded whatever settings.toml says.
MAX_RELEASE_ATTEMPTS = 10
MAX_RELEASE_DELAY_SECONDS = 60.0


# ---------------------------------------------------------------------------
# settings.toml
# ---------------------------------------------------------------------------


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """Load and validate settings from a TOML file.

    Returns:
        Parsed configuration dictionary.

    Raises:
        FileNotFoundError: If the config file does not exist.
        KeyError: If required keys are missing.
    """
    config = toml.load(path)

    required = [
        ("database",),
        ("telegram",),
    ]
    for keys in required:
        obj = config
        for k in keys:
            if k not in obj:
                raise KeyError(f"Missing required config key: {'.'.join(keys)}")
            obj = obj[k]

    config["_meta_config_path"] = str(path)
    return config


def database_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """Return the ``[database]`` section with the syncer's role filled in."""
    db_config = dict(config["database"])
    db_config.setdefault("user", config.get("syncer", {}).get("db_user", "flickr_syncer"))
    return db_config


# ---------------------------------------------------------------------------
# Resolved settings
# ---------------------------------------------------------------------------


@dataclass
class Settings:
    """Everything a run needs, resolved once at startup.

    ``telegram_bot_token`` and ``error_reporting_chat_id`` are mandatory:
    without them no failure can be reported.  The remaining credentials are
    checked by :func:`require_run_settings` inside the reporting wrapper so
    that their absence reaches the error channel.
    """

    telegram_bot_token: str
    error_reporting_chat_id: str
    photo_channel_id: Optional[str] = None
    flickr_consumer_key: Optional[str] = None
    flickr_consumer_secret: Optional[str] = None
    flickr_oauth_token: Optional[str] = None
    flickr_oauth_token_secret: Optional[str] = None
    reauthorize_url: Optional[str] = None
    action: str = "recentlyUpdated"
    per_page: int = 100
    initial_timestamp: int = 1
    sync_interval_seconds: float = 300.0
    lease_name: str = "flickr-sync"
    release_max_attempts: int = 10
    release_initial_delay: float = 1.0
    release_max_delay: float = 60.0
    audit_log_path: Optional[Path] = None

    @property
    def oauth_credentials(self) -> OAuthCredentials:
        return OAuthCredentials(
            consumer_key=self.flickr_consumer_key or "",
            consumer_secret=self.flickr_consumer_secret or "",
            token=self.flickr_oauth_token or "",
            token_secret=self.flickr_oauth_token_secret or "",
        )

    def __repr__(self) -> str:
        return (
            f"Settings(action={self.action!r}, photo_channel_id={self.photo_channel_id!r}, "
            f"error_reporting_chat_id={self.error_reporting_chat_id!r}, "
            f"lease_name={self.lease_name!r})"
        )


def _chat_id(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def resolve_settings(
    config: Dict[str, Any],
    secret_getter: SecretGetter = get_optional_secret,
) -> Settings:
    """Merge ``settings.toml`` values with keychain secrets.

    Raises:
        ConfigurationError: If the bot token or the error-reporting chat id
            is missing (nothing could be reported without them).
    """
    telegram_config = config.get("telegram", {})
    flickr_config = config.get("flickr", {})
    syncer_config = config.get("syncer", {})
    audit_config = config.get("audit", {})

    bot_token = secret_getter("telegram_bot_token")
    if not bot_token:
        raise ConfigurationError("telegram_bot_token secret missing!")
    error_chat_id = _chat_id(telegram_config.get("error_reporting_chat_id"))
    if not error_chat_id:
        raise ConfigurationError("telegram.error_reporting_chat_id config missing!")

    audit_log_path = audit_config.get("log_path")

    return Settings(
        telegram_bot_token=bot_token,
        error_reporting_chat_id=error_chat_id,
        photo_channel_id=_chat_id(telegram_config.get("photo_channel_id")),
        flickr_consumer_key=secret_getter("flickr_consumer_key"),
        flickr_consumer_secret=secret_getter("flickr_consumer_secret"),
        flickr_oauth_token=secret_getter("flickr_oauth_token"),
        flickr_oauth_token_secret=secret_getter("flickr_oauth_token_secret"),
        reauthorize_url=flickr_config.get("reauthorize_url"),
        action=str(flickr_config.get("action", "recentlyUpdated")),
        per_page=max(1, min(500, int(flickr_config.get("per_page", 100)))),
        initial_timestamp=int(syncer_config.get("initial_timestamp", 1)),
        sync_interval_seconds=float(syncer_config.get("sync_interval_seconds", 300.0)),
        lease_name=str(syncer_config.get("lease_name", "flickr-sync")),
        release_max_attempts=max(
            1, min(MAX_RELEASE_ATTEMPTS, int(syncer_config.get("release_max_attempts", 10)))
        ),
        release_initial_delay=float(syncer_config.get("release_initial_delay", 1.0)),
        release_max_delay=min(
            MAX_RELEASE_DELAY_SECONDS, float(syncer_config.get("release_max_delay", 60.0))
        ),
        audit_log_path=Path(audit_log_path) if audit_log_path else None,
    )


def require_run_settings(settings: Settings) -> None:
    """Check the credentials a run needs beyond the reporting channel.

    Raises:
        ConfigurationError: Photo channel or Flickr consumer credentials
            missing.
        AuthorizationError: No Flickr OAuth token pair (login required).
    """
    if not settings.photo_channel_id:
        raise ConfigurationError("telegram.photo_channel_id config missing!")
    if not settings.flickr_oauth_token or not settings.flickr_oauth_token_secret:
        raise AuthorizationError(
            "Flickr OAuth token missing", reauthorize_url=settings.reauthorize_url
        )
    if not settings.flickr_consumer_key or not settings.flickr_consumer_secret:
        raise ConfigurationError(
            "flickr_consumer_key / flickr_consumer_secret secrets missing!"
        )
