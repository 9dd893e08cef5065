"""
Loads ``.env`` files for local runs.

Production (``ENVIRONMENT=prod``) never reads dotenv files; secrets come from
the real environment. Elsewhere ``.env`` is read first and ``.env.local``
overrides it. Imports nothing from ``tradesync.config.config``.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# (file name, overrides already-set variables)
DOTENV_FILES = ((".env", False), (".env.local", True))


def load_dotenv_files(*, repo_root: Path | None = None) -> None:
    if (os.getenv("ENVIRONMENT") or "dev").strip().lower() == "prod":
        return

    root = repo_root or Path(__file__).resolve().parents[2]
    for name, override in DOTENV_FILES:
        path = root / name
        if path.exists():
            load_dotenv(dotenv_path=path, override=override)
