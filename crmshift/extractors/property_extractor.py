"""Property definition reads against the CRM properties API."""

import logging
from typing import List, Optional
from urllib.parse import quote

import requests

from .base import BaseExtractor
from ..errors import CatalogError
from ..models.schema import PropertyDefinition

logger = logging.getLogger(__name__)


class PropertyExtractor(BaseExtractor):
    """
    Extractor for ``/crm/v3/properties``.

    Supports:
    - Listing all property definitions of an object type
    - Reading one property by internal name (existence check)
    """

    PROPERTIES_PATH = "/crm/v3/properties/{object_type}"

    def __init__(
        self,
        base_url: str = "https://api.hubapi.com",
        timeout: float = 30.0,
        max_retries: int = 3,
        session: Optional[requests.Session] = None
    ):
        super().__init__(base_url, timeout, max_retries, session)

    def _path(self, object_type: str, name: Optional[str] = None) -> str:
        path = self.PROPERTIES_PATH.format(object_type=quote(object_type, safe=""))
        if name:
            path = f"{path}/{quote(name, safe='')}"
        return path

    def extract(self, token: str, object_type: str) -> List[PropertyDefinition]:
        return self.fetch_properties(token, object_type)

    def fetch_properties(self, token: str, object_type: str) -> List[PropertyDefinition]:
        """
        Fetch every property definition of an object type.

        Raises:
            CatalogError: 404 for an unknown object type, plus everything
                ``BaseExtractor._get`` raises
        """
        response = self._get(self._path(object_type), token)
        if response.status_code == 404:
            raise CatalogError(f"Unknown object type: {object_type}", status_code=404, upstream_status=404)

        try:
            data = response.json()
        except ValueError:
            raise CatalogError(f"Malformed properties response for {object_type}")

        results = data.get("results", []) if isinstance(data, dict) else []
        definitions = [
            PropertyDefinition.from_dict(object_type, item)
            for item in results
            if isinstance(item, dict) and item.get("name")
        ]
        logger.debug(f"Fetched {len(definitions)} properties for {object_type}")
        return definitions

    def fetch_property(self, token: str, object_type: str, name: str) -> Optional[PropertyDefinition]:
        """
        Read one property by internal name.

        Returns:
            The definition, or None when upstream answers 404
        """
        response = self._get(self._path(object_type, name), token)
        if response.status_code == 404:
            return None
        try:
            data = response.json()
        except ValueError:
            data = {"name": name}
        if not isinstance(data, dict):
            data = {"name": name}
        data.setdefault("name", name)
        return PropertyDefinition.from_dict(object_type, data)
