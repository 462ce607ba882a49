"""Utilities for loading environment variables for the command line."""
from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv


def load_dotenv_if_available(path: str | Path | None = None, *, override: bool = False) -> bool:
    """Load variables from a ``.env`` file; returns ``False`` when none was found."""

    dotenv_path: str | Path | None = path
    if dotenv_path is None:
        project_root = Path(__file__).resolve().parents[1]
        dotenv_path = project_root / ".env"

    return load_dotenv(dotenv_path=dotenv_path, override=override)
