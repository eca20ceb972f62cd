"""Profile store backed by a Supabase ``profiles`` table over PostgREST."""

import logging
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .base import ProfileStore
from ..errors import ProfileStoreError

logger = logging.getLogger(__name__)


class SupabaseProfileStore(ProfileStore):
    """
    Reads and patches rows of the ``profiles`` table by primary key.

    Uses the service-role key, so row-level security does not apply.
    """

    def __init__(
        self,
        url: str,
        service_key: str,
        table: str = "profiles",
        timeout: float = 30.0,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the store.

        Args:
            url: Supabase project URL
            service_key: Service-role API key
            table: Profiles table name
            timeout: Request timeout in seconds
            session: Custom requests session
        """
        self.base_url = f"{url.rstrip('/')}/rest/v1/{table}"
        self.timeout = timeout
        self._session = session or self._create_session(service_key)
        if session is not None:
            self._session.headers.update(self._auth_headers(service_key))

    @staticmethod
    def _auth_headers(service_key: str) -> Dict[str, str]:
        return {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
        }

    def _create_session(self, service_key: str) -> requests.Session:
        """Create a requests session with connection retries."""
        session = requests.Session()
        retries = Retry(total=3, connect=3, read=0, status=0, backoff_factor=0.5)
        adapter = HTTPAdapter(max_retries=retries)
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        session.headers.update(self._auth_headers(service_key))
        return session

    def read_profile(self, user_id: str) -> Dict[str, Any]:
        try:
            response = self._session.get(
                self.base_url,
                params={"id": f"eq.{user_id}", "select": "*"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            rows = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Failed to read profile {user_id}: {e}")
            raise ProfileStoreError(f"Failed to read profile for {user_id}: {e}", user_id=user_id)

        return rows[0] if rows else {}

    def update_profile(self, user_id: str, fields: Dict[str, Any]) -> None:
        try:
            response = self._session.patch(
                self.base_url,
                params={"id": f"eq.{user_id}"},
                json=fields,
                headers={"Prefer": "return=minimal"},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to update profile {user_id}: {e}")
            raise ProfileStoreError(f"Failed to update profile for {user_id}: {e}", user_id=user_id)
