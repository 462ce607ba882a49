"""JSON file storage for recipe batches and configuration documents."""
from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, List, Optional

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME = re.compile(r"[^\w\- ]+")


def sanitize_file_name(name: str) -> str:
    """Return ``name`` stripped of characters unsafe in file names."""

    cleaned = _UNSAFE_FILENAME.sub("", name).strip()
    return " ".join(cleaned.split()) or "untitled"


class FileService:
    """Reads and writes JSON documents beneath a root directory."""

    def __init__(self, root: Path | str = ".") -> None:
        self._root = Path(root)

    def _path(self, directory: str, name: str) -> Path:
        return self._root / directory / f"{sanitize_file_name(name)}.json"

    def list_files(self, directory: str) -> List[Path]:
        folder = self._root / directory
        if not folder.exists():
            return []
        return sorted(
            path
            for path in folder.iterdir()
            if path.suffix == ".json" and not path.name.startswith(".")
        )

    def read_from_file(self, directory: str, name: str) -> Optional[Any]:
        """Return the decoded document or ``None`` when it does not exist."""

        path = self._path(directory, name)
        if not path.exists():
            return None
        return self.read_path(path)

    @staticmethod
    def read_path(path: Path) -> Any:
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)

    def write_to_file(self, directory: str, name: str, payload: Any) -> Path:
        """Persist ``payload`` atomically and return the written path."""

        path = self._path(directory, name)
        path.parent.mkdir(parents=True, exist_ok=True)
        descriptor, temp_name = tempfile.mkstemp(
            dir=str(path.parent), prefix=".tmp-", suffix=".json"
        )
        try:
            with os.fdopen(descriptor, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, ensure_ascii=False)
                handle.write("\n")
            os.replace(temp_name, path)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise
        logger.debug("Wrote %s", path)
        return path
