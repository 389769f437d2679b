"""Client-local persistence of in-flight placeholders.

Placeholders live in one JSON file keyed by title id, so that a restarted
client can show the batch it was waiting for before its first poll returns.
Loading is forgiving: a missing or corrupt file, or a malformed entry, is
treated as "nothing stored" rather than an error.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


class PlaceholderStore:
    """JSON file mapping title id to that title's reconciler state.

    Args:
        path: JSON file to read and write.  Parent directories are created
            on the first save.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def _read_all(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, ValueError) as exc:
            logger.warning(f"Ignoring unreadable placeholder file {self.path}: {exc}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2)
        os.replace(tmp_path, self.path)

    def load(self, title_id: int) -> dict | None:
        """Return the stored state for ``title_id``, or None."""
        state = self._read_all().get(str(title_id))
        return state if isinstance(state, dict) else None

    def save(self, title_id: int, state: dict) -> None:
        data = self._read_all()
        data[str(title_id)] = state
        self._write_all(data)

    def clear(self, title_id: int) -> None:
        data = self._read_all()
        if data.pop(str(title_id), None) is not None:
            self._write_all(data)
