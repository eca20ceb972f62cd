"""Property creation against the CRM properties API."""

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

from .base import BaseLoader, CreateResult
from ..extractors.base import create_session, error_message, parse_retry_after

logger = logging.getLogger(__name__)


class PropertyLoader(BaseLoader):
    """
    Loader for ``POST /crm/v3/properties/{objectType}``.
    """

    def __init__(
        self,
        base_url: str = "https://api.hubapi.com",
        timeout: float = 30.0,
        max_retries: int = 3,
        dry_run: bool = False,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the property loader.

        Args:
            base_url: API base URL
            timeout: Request timeout in seconds
            max_retries: Connection-level retries
            dry_run: If True, simulate without making changes
            session: Custom requests session
        """
        super().__init__(dry_run)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or create_session(max_retries)

    def create_property(self, token: str, object_type: str, payload: Dict[str, Any]) -> CreateResult:
        """Create one property in the target tenant."""
        name = payload.get("name", "")
        if self.dry_run:
            logger.info(f"[dry run] Would create {object_type}.{name}")
            return CreateResult(object_type=object_type, name=name, status_code=201, dry_run=True)

        url = f"{self.base_url}/crm/v3/properties/{quote(object_type, safe='')}"
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

        try:
            response = self._session.post(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.exceptions.Timeout:
            logger.warning(f"Timeout creating {object_type}.{name}")
            return CreateResult(object_type=object_type, name=name, message="Request timed out")
        except requests.exceptions.RequestException as e:
            logger.warning(f"Connection failure creating {object_type}.{name}: {e}")
            return CreateResult(object_type=object_type, name=name, message=f"Connection failed: {e}")

        if 200 <= response.status_code < 300:
            try:
                response_data = response.json() if response.text else {}
            except ValueError:
                response_data = {}
            logger.info(f"Created property {object_type}.{name}")
            return CreateResult(
                object_type=object_type,
                name=name,
                status_code=response.status_code,
                response_data=response_data if isinstance(response_data, dict) else {},
            )

        return CreateResult(
            object_type=object_type,
            name=name,
            status_code=response.status_code,
            message=error_message(response),
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
        )
