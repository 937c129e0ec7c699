"""Secret lookup with dotenv support.

API keys for the session API and the model backends are never stored in
config.yaml. They come from the environment or from a project-local
``.env.secrets`` file.

Priority order:
1. Environment variables (os.environ)
2. .env.secrets file in the working directory (cached)
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from dotenv import dotenv_values

SECRETS_FILE = ".env.secrets"

# Well-known secret names
SESSION_API_KEY = "DESKPILOT_API_KEY"
OPENROUTER_API_KEY = "OPENROUTER_API_KEY"
GEMINI_API_KEY = "GEMINI_API_KEY"


@lru_cache(maxsize=4)
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
    """Fetch a secret from the environment or .env.secrets.

    Environment variables win so tests can use monkeypatch to control them.

    Example:
        >>> fetch_secret("OPENROUTER_API_KEY")
        'sk-or-...'
    """
    value = os.environ.get(key)
    if value is not None:
        return value

    secrets = _load_secrets(secrets_path)
    found = secrets.get(key)
    if found is not None:
        return found
    return default


def clear_secret_cache() -> None:
    """Forget the cached .env.secrets contents."""
    _load_secrets.cache_clear()
