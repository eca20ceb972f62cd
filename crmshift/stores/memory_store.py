"""In-process profile store."""

import copy
import threading
from typing import Any, Dict, Optional

from .base import ProfileStore


class InMemoryProfileStore(ProfileStore):
    """Profile store backed by a dictionary. Used by tests and dry runs."""

    def __init__(self, profiles: Optional[Dict[str, Dict[str, Any]]] = None):
        self._profiles: Dict[str, Dict[str, Any]] = copy.deepcopy(profiles or {})
        self._lock = threading.Lock()
        self.write_count = 0

    def read_profile(self, user_id: str) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._profiles.get(user_id, {}))

    def update_profile(self, user_id: str, fields: Dict[str, Any]) -> None:
        with self._lock:
            profile = self._profiles.setdefault(user_id, {})
            profile.update(copy.deepcopy(fields))
            self.write_count += 1
