"""
Credential lookup for the syncer and its operator tools.

Credentials never live in ``settings.toml`` or the source tree.  They are
kept in the system keychain (libsecret, queried through ``secret-tool``)
under the ``flickr-channel`` service.  On development machines without a
keychain, ``FLICKR_CHANNEL_<KEY>`` environment variables stand in.

Keys used by the syncer:

- ``telegram_bot_token``
- ``flickr_consumer_key`` / ``flickr_consumer_secret``
- ``flickr_oauth_token`` / ``flickr_oauth_token_secret``
- ``database_password`` (optional; peer auth is the default)
"""

from __future__ import annotations

import logging
import os
import subprocess
from typing import List, Optional

logger = logging.getLogger("shared.secrets")

_SERVICE = "flickr-channel"
_KEYCHAIN_TIMEOUT_SECONDS = 10


def env_var_name(key_name: str) -> str:
    """Environment variable consulted when the keychain has no entry."""
    return "FLICKR_CHANNEL_" + key_name.upper().replace("-", "_")


def _secret_tool_command(key_name: str, service: str) -> List[str]:
    return ["secret-tool", "lookup", "service", service, "key", key_name]


def _from_keychain(key_name: str, service: str) -> Optional[str]:
    """Ask libsecret for ``key_name``; ``None`` if absent or unavailable."""
    try:
        completed = subprocess.run(
            _secret_tool_command(key_name, service),
            capture_output=True,
            text=True,
            timeout=_KEYCHAIN_TIMEOUT_SECONDS,
        )
    except FileNotFoundError:
        logger.warning("secret-tool is not installed; using environment for %s", key_name)
        return None
    except subprocess.TimeoutExpired:
        logger.warning("secret-tool timed out looking up %s", key_name)
        return None
    except OSError:
        logger.warning("secret-tool could not be run for %s", key_name, exc_info=True)
        return None
    return completed.stdout.strip() or None


def get_secret(key_name: str, service: str = _SERVICE) -> str:
    """Return the credential stored under ``key_name``.

    Looks in the keychain first::

        secret-tool lookup service flickr-channel key <key_name>

    then in ``FLICKR_CHANNEL_<KEY_NAME>``.

    Raises:
        RuntimeError: Neither source has the credential.
    """
    value = _from_keychain(key_name, service)
    if value:
        return value

    variable = env_var_name(key_name)
    value = os.environ.get(variable)
    if value:
        logger.warning("Credential %s taken from environment (%s)", key_name, variable)
        return value

    raise RuntimeError(
        f"Credential {key_name!r} missing: no keychain entry for service "
        f"{service!r} and {variable} is unset"
    )


def get_optional_secret(key_name: str, service: str = _SERVICE) -> Optional[str]:
    """Like :func:`get_secret` but returns ``None`` when the secret is absent."""
    try:
        return get_secret(key_name, service)
    except RuntimeError:
        return None
