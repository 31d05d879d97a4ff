"""Token lookup for the listener and chat platforms.

Bot tokens and bearer tokens never live in YAML. They come from the process
environment, or from a `.env.secrets` file in the working directory for local
development (loaded once with python-dotenv and cached).
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from dotenv import dotenv_values

SECRETS_FILE = ".env.secrets"


@lru_cache(maxsize=1)
def _load_secrets(secrets_path: Path | None = None) -> dict[str, str | None]:
    path = secrets_path or Path(SECRETS_FILE)
    if path.exists():
        return dotenv_values(path)
    return {}


def fetch_secret(
    key: str,
    default: str | None = None,
    secrets_path: Path | None = None,
) -> str | None:
    """Fetch a secret from the environment, then from `.env.secrets`.

    The environment wins so tests can monkeypatch tokens in and out.

    Example:
        >>> fetch_secret("BEEP_BOOP_DISCORD_BOT_TOKEN")
        'MTA...'
    """
    value = os.environ.get(key)
    if value is not None:
        return value or default

    secrets = _load_secrets(secrets_path)
    if secrets.get(key):
        return secrets[key]

    return default


def clear_secret_cache() -> None:
    """Forget the cached `.env.secrets` contents."""
    _load_secrets.cache_clear()
