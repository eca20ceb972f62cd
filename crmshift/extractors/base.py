"""Base extractor interface for reads against the CRM's REST API."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
from datetime import datetime, timezone
import logging

import requests
from dateutil import parser as date_parser
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..errors import CatalogError, TokenExpiredError, RateLimitedError, UpstreamUnavailableError

logger = logging.getLogger(__name__)


def create_session(max_retries: int = 3, backoff_factor: float = 0.5) -> requests.Session:
    """
    Create a requests session with connection-level retries.

    Status codes are never retried here: 401 and 429 carry meaning the
    callers act on.
    """
    session = requests.Session()
    retries = Retry(
        total=max_retries,
        connect=max_retries,
        read=0,
        status=0,
        backoff_factor=backoff_factor,
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retries)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a ``Retry-After`` header given as seconds or as an HTTP date."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = date_parser.parse(value)
    except (ValueError, OverflowError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def error_message(response: requests.Response) -> str:
    """Human-readable message from an error response body."""
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(data, dict):
        return str(data.get("message") or data.get("error") or data)
    return str(data)


class BaseExtractor(ABC):
    """
    Base class for API readers.

    Wraps a requests session and turns upstream failures into the catalog
    error taxonomy.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        max_retries: int = 3,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the extractor.

        Args:
            base_url: API base URL
            timeout: Request timeout in seconds
            max_retries: Connection-level retries
            session: Custom requests session
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or create_session(max_retries)

    def _get_auth_headers(self, token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    def _get(self, path: str, token: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        """
        Issue a GET and classify failures.

        404 is returned to the caller untouched; every other non-2xx raises.

        Raises:
            TokenExpiredError: On 401
            RateLimitedError: On 429, with any Retry-After value
            UpstreamUnavailableError: On 5xx, timeout or connection failure
            CatalogError: On any other non-2xx
        """
        url = f"{self.base_url}{path}"
        try:
            response = self._session.get(url, headers=self._get_auth_headers(token), params=params, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            logger.warning(f"Timeout calling {url}: {e}")
            raise UpstreamUnavailableError(f"Timed out calling {path}")
        except requests.exceptions.RequestException as e:
            logger.warning(f"Connection failure calling {url}: {e}")
            raise UpstreamUnavailableError(f"Could not reach upstream for {path}: {e}")

        status = response.status_code
        if status < 400 or status == 404:
            return response
        if status == 401:
            raise TokenExpiredError(error_message(response))
        if status == 429:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            raise RateLimitedError(error_message(response), retry_after=retry_after)
        if status >= 500:
            raise UpstreamUnavailableError(error_message(response), upstream_status=status)
        raise CatalogError(error_message(response), upstream_status=status)

    @abstractmethod
    def extract(self, token: str, object_type: str) -> Any:
        """
        Read everything this extractor serves for one object type.

        Args:
            token: Bearer access token
            object_type: Canonical object type
        """
        pass
