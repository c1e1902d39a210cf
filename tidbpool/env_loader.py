"""Load database settings from a ``.env`` file before reading the environment."""
from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv


def load_dotenv_if_available(path: str | Path | None = None, *, override: bool = False) -> bool:
    """Load variables from ``path`` or ``./.env``; return whether anything was read."""

    dotenv_path: str | Path = path if path is not None else Path.cwd() / ".env"
    if not Path(dotenv_path).is_file():
        return False
    return load_dotenv(dotenv_path=dotenv_path, override=override)
