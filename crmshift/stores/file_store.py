"""Profile store keeping one JSON file per user on disk."""

import os
import re
import json
import logging
import threading
from typing import Any, Dict
from pathlib import Path

from .base import ProfileStore
from ..errors import ProfileStoreError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class JsonFileProfileStore(ProfileStore):
    """
    Stores each profile as ``<directory>/<user_id>.json``.

    Writes go to a temporary file that is renamed over the target, so a
    crash mid-write never leaves a truncated profile behind.
    """

    def __init__(self, directory: str):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, user_id: str) -> Path:
        safe = _UNSAFE_CHARS.sub("_", user_id)
        return self.directory / f"{safe}.json"

    def read_profile(self, user_id: str) -> Dict[str, Any]:
        path = self._path(user_id)
        if not path.exists():
            return {}
        try:
            with open(path, "r") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read profile {path}: {e}")
            raise ProfileStoreError(f"Failed to read profile for {user_id}: {e}", user_id=user_id)

    def update_profile(self, user_id: str, fields: Dict[str, Any]) -> None:
        with self._lock:
            profile = self.read_profile(user_id)
            profile.update(fields)

            path = self._path(user_id)
            tmp_path = path.with_suffix(".json.tmp")
            try:
                with open(tmp_path, "w") as f:
                    json.dump(profile, f, indent=2, default=str)
                os.replace(tmp_path, path)
            except (OSError, TypeError) as e:
                logger.error(f"Failed to write profile {path}: {e}")
                raise ProfileStoreError(f"Failed to write profile for {user_id}: {e}", user_id=user_id)
