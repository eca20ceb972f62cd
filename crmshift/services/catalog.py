"""Cached view of a tenant's property definitions."""

import time
import logging
import threading
import concurrent.futures
from typing import Callable, Dict, Iterable, List, Optional, Tuple, TypeVar, Union

from ..errors import TokenExpiredError, UnauthorizedError
from ..extractors.property_extractor import PropertyExtractor
from ..models.migration import MigrationConfig
from ..models.schema import PropertyDefinition, PropertyFilter
from ..models.session import Tenant
from .token_manager import TokenLifecycleManager

logger = logging.getLogger(__name__)

T = TypeVar("T")

OBJECT_TYPE_ALIASES = {
    "contact": "contacts",
    "company": "companies",
    "deal": "deals",
    "ticket": "tickets",
    "quote": "quotes",
    "subscription": "subscriptions",
    "lineitem": "line_items",
    "lineitems": "line_items",
    "line_item": "line_items",
    "sms": "communications",
    "whatsapp": "communications",
    "linkedin": "communications",
    "linkedin-messages": "communications",
    "linkedin_messages": "communications",
    "communication": "communications",
    "postal": "postal_mail",
    "email": "emails",
    "meeting": "meetings",
    "call": "calls",
    "note": "notes",
    "task": "tasks",
}


def normalize_object_type(name: Optional[str]) -> str:
    """Map a synonym or misspelling of an object type to its canonical name."""
    key = str(name or "").strip().lower()
    return OBJECT_TYPE_ALIASES.get(key, key)


class PropertyCatalogService:
    """
    Fetches and caches property definitions per (user, instance, object type).

    Object types are normalized once on entry so cache keys do not depend on
    the caller's spelling. An upstream 401 triggers exactly one token refresh
    and retry; 429 and 5xx are never retried here.
    """

    def __init__(
        self,
        tokens: TokenLifecycleManager,
        extractor: Optional[PropertyExtractor] = None,
        ttl_seconds: float = 600.0,
        clock: Callable[[], float] = time.time,
        max_workers: int = 4
    ):
        """
        Initialize the catalog service.

        Args:
            tokens: Token manager used to authorize reads
            extractor: Properties API reader
            ttl_seconds: Cache lifetime of a fetched list
            clock: Returns the current time in epoch seconds
            max_workers: Thread pool size for ``list_many``
        """
        self.tokens = tokens
        self.extractor = extractor or PropertyExtractor()
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.max_workers = max_workers
        self._cache: Dict[Tuple[str, str, str], Tuple[float, List[PropertyDefinition]]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: MigrationConfig,
        tokens: TokenLifecycleManager,
        extractor: Optional[PropertyExtractor] = None,
        clock: Optional[Callable[[], float]] = None
    ) -> "PropertyCatalogService":
        extractor = extractor or PropertyExtractor(
            base_url=config.api_base_url,
            timeout=config.request_timeout,
            max_retries=config.max_retries,
        )
        return cls(tokens, extractor, ttl_seconds=config.catalog_ttl_seconds, clock=clock or time.time)

    def _with_token(self, tenant: Tenant, call: Callable[[str], T]) -> T:
        """Run ``call`` with an access token, refreshing and retrying once on 401."""
        token = self.tokens.get_tenant_token(tenant)
        try:
            return call(token)
        except TokenExpiredError:
            logger.info(f"Token rejected for {tenant.session_key}; refreshing and retrying once")
            self.tokens.expire_access_token(tenant.session_key)
            token = self.tokens.get_tenant_token(tenant)
            try:
                return call(token)
            except TokenExpiredError as e:
                raise UnauthorizedError(f"Upstream still rejects the token for {tenant.session_key}: {e.message}")

    def list_properties(
        self,
        tenant: Tenant,
        object_type: str,
        force_refresh: bool = False,
        property_type: Union[PropertyFilter, str] = PropertyFilter.ALL
    ) -> List[PropertyDefinition]:
        """
        List a tenant's property definitions for an object type.

        Args:
            tenant: Tenant (user and instance) to read from
            object_type: Object type in any accepted spelling
            force_refresh: Bypass and replace the cached list
            property_type: ``all``, ``default`` (built-in) or ``custom``

        Raises:
            UnauthorizedError: When upstream still answers 401 after one refresh
            RateLimitedError: On upstream 429
            UpstreamUnavailableError: On 5xx, timeout or connection failure
        """
        canonical = normalize_object_type(object_type)
        definitions = self._fetch_cached(tenant, canonical, force_refresh)
        return self.filter(definitions, property_type)

    def _fetch_cached(self, tenant: Tenant, object_type: str, force_refresh: bool) -> List[PropertyDefinition]:
        key = (tenant.user_id, tenant.instance, object_type)
        with self._lock:
            hit = self._cache.get(key)
        if hit and not force_refresh and self.clock() - hit[0] < self.ttl_seconds:
            return list(hit[1])

        definitions = self._with_token(tenant, lambda token: self.extractor.extract(token, object_type))
        with self._lock:
            self._cache[key] = (self.clock(), definitions)
        logger.info(f"Cached {len(definitions)} {object_type} properties for {tenant.session_key}")
        return list(definitions)

    def list_many(
        self,
        tenant: Tenant,
        object_types: Iterable[str],
        force_refresh: bool = False
    ) -> Dict[str, List[PropertyDefinition]]:
        """
        List several object types concurrently.

        Returns:
            Canonical object type -> definitions. The first failure is raised.
        """
        canonical = list(dict.fromkeys(normalize_object_type(t) for t in object_types))
        results: Dict[str, List[PropertyDefinition]] = {}
        if not canonical:
            return results

        workers = max(1, min(self.max_workers, len(canonical)))
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            future_to_type = {
                executor.submit(self._fetch_cached, tenant, object_type, force_refresh): object_type
                for object_type in canonical
            }
            for future in concurrent.futures.as_completed(future_to_type):
                results[future_to_type[future]] = future.result()

        return {t: results[t] for t in canonical}

    def get_property(self, tenant: Tenant, object_type: str, name: str) -> Optional[PropertyDefinition]:
        """
        Read one property by internal name, bypassing the cache.

        Returns:
            The definition, or None when it does not exist
        """
        canonical = normalize_object_type(object_type)
        return self._with_token(tenant, lambda token: self.extractor.fetch_property(token, canonical, name))

    def invalidate(self, tenant: Optional[Tenant] = None, object_type: Optional[str] = None) -> int:
        """
        Evict cached lists. With no arguments the whole cache is cleared.

        Returns:
            Number of evicted entries
        """
        canonical = normalize_object_type(object_type) if object_type else None
        with self._lock:
            doomed = [
                key for key in self._cache
                if (tenant is None or key[:2] == (tenant.user_id, tenant.instance))
                and (canonical is None or key[2] == canonical)
            ]
            for key in doomed:
                del self._cache[key]
        return len(doomed)

    @staticmethod
    def filter(
        definitions: List[PropertyDefinition],
        property_type: Union[PropertyFilter, str] = PropertyFilter.ALL
    ) -> List[PropertyDefinition]:
        property_type = PropertyFilter(property_type)
        if property_type is PropertyFilter.DEFAULT:
            return [d for d in definitions if d.is_built_in]
        if property_type is PropertyFilter.CUSTOM:
            return [d for d in definitions if not d.is_built_in]
        return list(definitions)

    @staticmethod
    def summarize(definitions: List[PropertyDefinition]) -> Dict[str, int]:
        built_in = sum(1 for d in definitions if d.is_built_in)
        return {
            "total": len(definitions),
            "default": built_in,
            "custom": len(definitions) - built_in,
        }
