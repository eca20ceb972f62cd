"""Property migration orchestrator - creates missing user-defined properties in the target tenant."""

import re
import copy
import time
import random
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from .errors import (
    AuthError,
    CatalogError,
    CRMShiftError,
    PersistenceFailedError,
    PropertyAlreadyExistsError,
    PropertyCreateFailedError,
    RateLimitedError,
)
from .loaders.base import BaseLoader, CreateResult
from .loaders.property_loader import PropertyLoader
from .models.migration import MigrationBatchResult, MigrationConfig, PropertyOutcome, PropertyResult
from .models.schema import MappingCategory, PropertyDefinition, PropertyMapping
from .models.session import Tenant
from .services.catalog import PropertyCatalogService, normalize_object_type
from .services.identity import has_reserved_prefix, provenance_key, sanitize_property_name
from .services.mapping_store import MappingStateStore
from .services.schema_registry import SchemaRegistry
from .services.token_manager import TokenLifecycleManager
from .stores.base import ProfileStore

logger = logging.getLogger(__name__)

SOFT_CONFLICT_PATTERN = re.compile(r"already exists|duplicate|conflict", re.IGNORECASE)

# Source types that cannot be recreated without their option lists
_UNCOPYABLE_TYPES = {"enumeration"}


@dataclass
class _Candidate:
    row: PropertyMapping
    name: str

    @property
    def object_type(self) -> str:
        return self.row.object_type

    @property
    def key(self) -> Tuple[str, str]:
        return (self.object_type, self.name)

    @property
    def display_name(self) -> str:
        return f"{self.name} ({self.object_type})"


class PropertyMigrationOrchestrator:
    """
    Orchestrates property creation in the target tenant.

    Handles:
    - Candidate selection (user-defined rows only)
    - Name sanitation and reserved-prefix filtering
    - Idempotent re-runs through durable provenance
    - Existence checks before creating
    - Soft-conflict classification of create failures
    - Rate-limit backoff and pacing between properties
    - Cooperative cancellation between properties
    """

    def __init__(
        self,
        tokens: TokenLifecycleManager,
        catalog: PropertyCatalogService,
        mappings: MappingStateStore,
        loader: BaseLoader,
        registry: Optional[SchemaRegistry] = None,
        source_instance: str = "a",
        target_instance: str = "b",
        property_delay: float = 0.5,
        rate_limit_max_attempts: int = 4,
        backoff_base: float = 0.3,
        backoff_max: float = 10.0,
        dry_run: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        jitter: Callable[[], float] = random.random
    ):
        """
        Initialize the orchestrator.

        Args:
            tokens: Token manager for both instances
            catalog: Property catalog service
            mappings: Mapping state store
            loader: Property loader for the target tenant
            registry: Default property lists (group names)
            source_instance: Instance the properties come from
            target_instance: Instance the properties are created in
            property_delay: Seconds to wait between properties
            rate_limit_max_attempts: Attempts per call before a 429 becomes a failure
            backoff_base: First backoff delay in seconds
            backoff_max: Upper bound of a single backoff delay
            dry_run: Check existence but create nothing and record no provenance
            sleep: Sleep function
            jitter: Returns a float in [0, 1)
        """
        self.tokens = tokens
        self.catalog = catalog
        self.mappings = mappings
        self.loader = loader
        self.registry = registry or mappings.registry
        self.source_instance = source_instance
        self.target_instance = target_instance
        self.property_delay = property_delay
        self.rate_limit_max_attempts = max(1, rate_limit_max_attempts)
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.dry_run = dry_run
        self.sleep = sleep
        self.jitter = jitter

        if dry_run and not loader.dry_run:
            self.loader = copy.copy(loader)
            self.loader.dry_run = True

    @classmethod
    def from_config(
        cls,
        config: MigrationConfig,
        store: ProfileStore,
        registry: Optional[SchemaRegistry] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Callable[[float], None] = time.sleep
    ) -> "PropertyMigrationOrchestrator":
        """Wire all four layers from a configuration and a profile store."""
        registry = registry or SchemaRegistry()
        tokens = TokenLifecycleManager.from_config(config, store=store, clock=clock)
        catalog = PropertyCatalogService.from_config(config, tokens, clock=clock)
        mappings = MappingStateStore(store, registry, field=config.mapping_field, instance=config.source_instance)
        loader = PropertyLoader(
            base_url=config.api_base_url,
            timeout=config.request_timeout,
            max_retries=config.max_retries,
            dry_run=config.dry_run,
        )
        return cls(
            tokens,
            catalog,
            mappings,
            loader,
            registry=registry,
            source_instance=config.source_instance,
            target_instance=config.target_instance,
            property_delay=config.property_delay_seconds,
            rate_limit_max_attempts=config.rate_limit_max_attempts,
            backoff_base=config.backoff_base_seconds,
            backoff_max=config.backoff_max_seconds,
            dry_run=config.dry_run,
            sleep=sleep,
        )

    def as_dry_run(self) -> "PropertyMigrationOrchestrator":
        """A copy sharing every component except a dry-run loader."""
        if self.dry_run:
            return self
        twin = copy.copy(self)
        twin.loader = copy.copy(self.loader)
        twin.loader.dry_run = True
        twin.dry_run = True
        return twin

    def migrate(
        self,
        user_id: str,
        object_types: Iterable[str],
        cancel_event: Optional[threading.Event] = None
    ) -> MigrationBatchResult:
        """
        Create every missing user-defined property in the target tenant.

        Per-property problems never raise; every candidate ends in exactly one
        bucket of the returned result.

        Raises:
            NoRefreshTokenError: When the target tenant is not authorized
            PersistenceFailedError: When the mapping document cannot be read
        """
        source = Tenant(user_id, self.source_instance)
        target = Tenant(user_id, self.target_instance)
        object_types = list(dict.fromkeys(normalize_object_type(t) for t in object_types))

        result = MigrationBatchResult(dry_run=self.dry_run)
        result.started_at = datetime.now(timezone.utc)

        try:
            logger.info(f"=== PROPERTY MIGRATION: {user_id} {object_types} ===")

            # Preconditions
            self.tokens.get_tenant_token(target)
            source_catalog = self._load_source_catalog(source, object_types)
            rows = self.mappings.load_rows(user_id, object_types, catalog=source_catalog)
            provenance = self._provenance_set(user_id)

            candidates = self._select_candidates(rows, result)
            logger.info(f"{len(candidates)} candidate properties, {len(result.skipped_list)} skipped")

            made_calls = False
            settled: Dict[Tuple[str, str], PropertyResult] = {}
            for index, candidate in enumerate(candidates):
                if made_calls and self.property_delay > 0:
                    self.sleep(self.property_delay)

                if cancel_event is not None and cancel_event.is_set():
                    self._cancel_remaining(candidates[index:], result)
                    break

                first = settled.get(candidate.key)
                if first is not None:
                    outcome = self._duplicate_outcome(candidate, first)
                else:
                    outcome = self._migrate_one(user_id, target, candidate, source_catalog, provenance)
                    settled[candidate.key] = outcome
                made_calls = outcome.attempts > 0
                result.add(outcome)
                logger.info(f"{candidate.display_name}: {outcome.outcome.value}"
                            + (f" ({outcome.error})" if outcome.error else ""))

        finally:
            result.completed_at = datetime.now(timezone.utc)

        logger.info(f"=== PROPERTY MIGRATION DONE: {result.summary()} ===")
        return result

    # Setup

    def _load_source_catalog(self, source: Tenant, object_types: List[str]) -> Dict[str, List[PropertyDefinition]]:
        """Source definitions for type copying; unavailable catalogs degrade to defaults."""
        try:
            return self.catalog.list_many(source, object_types)
        except CRMShiftError as e:
            logger.warning(f"Source catalog unavailable for {source.session_key}, using string/text types: {e}")
            return {}

    def _provenance_set(self, user_id: str) -> Set[str]:
        provenance = self.mappings.load_provenance(user_id)
        return provenance["created"] | provenance["existing"]

    def _select_candidates(self, rows: List[PropertyMapping], result: MigrationBatchResult) -> List[_Candidate]:
        candidates: List[_Candidate] = []
        for row in rows:
            if row.category is not MappingCategory.USERDEFINED:
                continue
            name = sanitize_property_name(row.target_identity or row.target_label)
            candidate = _Candidate(row=row, name=name)
            if has_reserved_prefix(name):
                logger.info(f"Skipping {candidate.display_name}: reserved prefix")
                result.skipped_list.append(candidate.display_name)
                continue
            candidates.append(candidate)
        return candidates

    def _duplicate_outcome(self, candidate: _Candidate, first: PropertyResult) -> PropertyResult:
        """Rows sharing a sanitized name follow the row that claimed the name first."""
        outcome = PropertyResult(
            object_type=candidate.object_type,
            name=candidate.name,
            label=candidate.row.target_label,
            outcome=PropertyOutcome.ALREADY_EXISTS,
        )
        if first.outcome is PropertyOutcome.FAILED:
            outcome.outcome = PropertyOutcome.FAILED
            outcome.error = f"Same property name as {first.label}, which failed: {first.error}"
        else:
            logger.info(f"{candidate.display_name}: same property name as {first.label}")
        return outcome

    def _cancel_remaining(self, remaining: List[_Candidate], result: MigrationBatchResult) -> None:
        logger.warning(f"Migration cancelled; {len(remaining)} properties not attempted")
        result.cancelled = True
        for candidate in remaining:
            result.add(PropertyResult(
                object_type=candidate.object_type,
                name=candidate.name,
                label=candidate.row.target_label,
                outcome=PropertyOutcome.FAILED,
                error="cancelled",
            ))

    # Per-property flow

    def _migrate_one(
        self,
        user_id: str,
        target: Tenant,
        candidate: _Candidate,
        source_catalog: Dict[str, List[PropertyDefinition]],
        provenance: Set[str]
    ) -> PropertyResult:
        outcome = PropertyResult(
            object_type=candidate.object_type,
            name=candidate.name,
            label=candidate.row.target_label,
            outcome=PropertyOutcome.FAILED,
        )

        if provenance_key(candidate.object_type, candidate.name) in provenance:
            outcome.outcome = PropertyOutcome.ALREADY_EXISTS
            return outcome

        try:
            exists = self._check_exists(target, candidate, outcome)
        except RateLimitedError:
            outcome.error = f"Rate limited after {self.rate_limit_max_attempts} attempts"
            outcome.upstream_status = 429
            return outcome
        except (CatalogError, AuthError) as e:
            outcome.error = e.message
            outcome.upstream_status = getattr(e, "upstream_status", None)
            return outcome

        if exists:
            outcome.outcome = PropertyOutcome.ALREADY_EXISTS
            self._record(user_id, candidate, outcome, provenance)
            return outcome

        try:
            response = self._create(target, candidate, self._payload(candidate, source_catalog), outcome)
        except CRMShiftError as e:
            outcome.error = e.message
            return outcome

        outcome.upstream_status = response.status_code
        try:
            self._classify(candidate, response)
            outcome.outcome = PropertyOutcome.CREATED
        except PropertyAlreadyExistsError as e:
            logger.info(f"{candidate.display_name} already exists in target: {e.message}")
            outcome.outcome = PropertyOutcome.ALREADY_EXISTS
        except PropertyCreateFailedError as e:
            outcome.error = e.message
            return outcome

        self._record(user_id, candidate, outcome, provenance)
        return outcome

    def _classify(self, candidate: _Candidate, response: CreateResult) -> None:
        """
        Raise unless the create call succeeded.

        Raises:
            PropertyAlreadyExistsError: Error text reports an existing property
            PropertyCreateFailedError: Any other rejection
        """
        if response.ok:
            return
        if response.message and SOFT_CONFLICT_PATTERN.search(response.message):
            raise PropertyAlreadyExistsError(candidate.object_type, candidate.name, response.message)
        if response.rate_limited:
            message = f"Rate limited after {self.rate_limit_max_attempts} attempts"
        else:
            message = response.message or f"HTTP {response.status_code}"
        raise PropertyCreateFailedError(candidate.object_type, candidate.name, message, response.status_code)

    def _check_exists(self, target: Tenant, candidate: _Candidate, outcome: PropertyResult) -> bool:
        """Read-by-name with rate-limit backoff; 401 is retried once by the catalog."""
        attempt = 0
        while True:
            attempt += 1
            outcome.attempts += 1
            try:
                return self.catalog.get_property(target, candidate.object_type, candidate.name) is not None
            except RateLimitedError as e:
                if attempt >= self.rate_limit_max_attempts:
                    raise
                self._backoff(attempt, e.retry_after, candidate)

    def _create(
        self,
        target: Tenant,
        candidate: _Candidate,
        payload: Dict[str, Any],
        outcome: PropertyResult
    ) -> CreateResult:
        """Create with one refresh-and-retry on 401 and bounded backoff on 429."""
        refreshed = False
        attempt = 0
        while True:
            attempt += 1
            outcome.attempts += 1
            token = self.tokens.get_tenant_token(target)
            response = self.loader.create_property(token, candidate.object_type, payload)
            logger.debug(f"Create attempt {attempt} for {candidate.display_name}: {response.to_dict()}")

            if response.unauthorized and not refreshed:
                logger.info(f"Token rejected creating {candidate.display_name}; refreshing once")
                refreshed = True
                self.tokens.expire_access_token(target.session_key)
                continue
            if response.rate_limited and attempt < self.rate_limit_max_attempts:
                self._backoff(attempt, response.retry_after, candidate)
                continue
            return response

    def _backoff(self, attempt: int, retry_after: Optional[float], candidate: _Candidate) -> None:
        """Exponential backoff with jitter, never shorter than Retry-After."""
        delay = min(self.backoff_max, self.backoff_base * (2 ** (attempt - 1)))
        delay = delay / 2 + self.jitter() * delay / 2
        if retry_after:
            delay = max(delay, min(retry_after, self.backoff_max))
        logger.warning(f"Rate limited on {candidate.display_name}; retrying in {delay:.2f}s (attempt {attempt})")
        self.sleep(delay)

    def _payload(self, candidate: _Candidate, source_catalog: Dict[str, List[PropertyDefinition]]) -> Dict[str, Any]:
        prop_type, field_type = "string", "text"
        for definition in source_catalog.get(candidate.object_type, []):
            if definition.internal_name == candidate.row.source_identity:
                if definition.type not in _UNCOPYABLE_TYPES:
                    prop_type, field_type = definition.type, definition.field_type
                break

        return {
            "name": candidate.name,
            "label": candidate.row.target_label,
            "type": prop_type,
            "fieldType": field_type,
            "groupName": self.registry.default_group_name(candidate.object_type),
        }

    def _record(self, user_id: str, candidate: _Candidate, outcome: PropertyResult, provenance: Set[str]) -> None:
        """Write provenance for a classified property. Skipped in dry runs."""
        if self.dry_run:
            return
        try:
            self.mappings.record_provenance(user_id, candidate.object_type, candidate.name, outcome.outcome)
        except PersistenceFailedError as e:
            logger.error(f"Provenance not recorded for {candidate.display_name}: {e}")
            outcome.error = f"Provenance not recorded: {e.message}"
            return
        provenance.add(provenance_key(candidate.object_type, candidate.name))
