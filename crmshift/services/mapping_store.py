"""
Reconciled property mapping table backed by the tenant profile document.

The persisted document lives in one profile field and looks like::

    {
      "instance": "a",
      "updatedAt": "...",
      "schemaVersion": 2,
      "changes": {"<objectType>": {"<identity>": {...entry...}}},
      "provenance": {"created": ["<objectType>-<name>"], "existing": [...]}
    }

Every write is a read-modify-write of the whole document under a per-user
lock. Entries for untouched object types, untouched properties and the
provenance sets are always carried over.
"""

import json
import logging
import threading
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union
from datetime import datetime, timezone

from dateutil import parser as date_parser

from ..errors import (
    AmbiguousIdentityError,
    CRMShiftError,
    ImmutableMappingError,
    MappingConflictError,
    MappingError,
    PersistenceFailedError,
)
from ..models.migration import PropertyOutcome
from ..models.schema import MappingCategory, MappingEntry, PropertyDefinition, PropertyMapping
from ..models.session import SOURCE_INSTANCE
from ..stores.base import ProfileStore
from .catalog import normalize_object_type
from .identity import canonical_identity, key_forms, provenance_key, sanitize_property_name, slugify
from .schema_registry import SchemaRegistry

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2
MAPPING_FIELD = "hubspot_crm_a_mapped_json"

CatalogMap = Dict[str, List[PropertyDefinition]]

_CATEGORY_RANK = {
    MappingCategory.DEFAULT: 0,
    MappingCategory.CUSTOM: 1,
    MappingCategory.USERDEFINED: 2,
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _timestamp(value: Optional[str]) -> float:
    if not value:
        return 0.0
    try:
        when = date_parser.parse(value)
    except (ValueError, OverflowError):
        return 0.0
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when.timestamp()


def _looks_corrupted(name: Optional[str]) -> bool:
    """Internal names that are really raw labels (spaces or capitals)."""
    return bool(name) and (name != name.lower() or any(c.isspace() for c in name))


class MappingStateStore:
    """
    Produces one de-duplicated row set per object type and keeps the
    persisted mapping document in sync with edits.

    Row sources, in precedence order: persisted entries (custom and
    user-defined), live custom properties from the source catalog, then the
    built-in default list.
    """

    def __init__(
        self,
        store: ProfileStore,
        registry: Optional[SchemaRegistry] = None,
        field: str = MAPPING_FIELD,
        instance: str = SOURCE_INSTANCE
    ):
        """
        Initialize the mapping store.

        Args:
            store: Profile store holding the document
            registry: Built-in default property lists
            field: Profile field the document is stored in
            instance: Instance the document describes
        """
        self.store = store
        self.registry = registry or SchemaRegistry()
        self.field = field
        self.instance = instance
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def _user_lock(self, user_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.RLock()
            return lock

    # Document I/O

    def _empty_document(self) -> Dict[str, Any]:
        return {
            "instance": self.instance,
            "changes": {},
            "provenance": {"created": [], "existing": []},
        }

    def _read_document(self, user_id: str) -> Dict[str, Any]:
        try:
            raw = self.store.read_profile(user_id).get(self.field)
        except CRMShiftError as e:
            logger.error(f"Failed to read mapping document for {user_id}: {e}")
            raise PersistenceFailedError(f"Failed to read mapping document: {e.message}", user_id=user_id)

        if isinstance(raw, str):
            try:
                raw = json.loads(raw) if raw.strip() else {}
            except ValueError as e:
                logger.error(f"Mapping document for {user_id} is not valid JSON: {e}")
                raise PersistenceFailedError(f"Mapping document is not valid JSON: {e}", user_id=user_id)

        document = self._empty_document()
        if isinstance(raw, dict):
            document.update(raw)
        if not isinstance(document.get("changes"), dict):
            document["changes"] = {}
        provenance = document.get("provenance")
        if not isinstance(provenance, dict):
            provenance = {}
        document["provenance"] = {
            "created": list(provenance.get("created") or []),
            "existing": list(provenance.get("existing") or []),
        }
        return document

    def _write_document(self, user_id: str, document: Dict[str, Any]) -> None:
        document["updatedAt"] = _now()
        document.setdefault("instance", self.instance)
        try:
            self.store.update_profile(user_id, {self.field: document})
        except CRMShiftError as e:
            logger.error(f"Failed to write mapping document for {user_id}: {e}")
            raise PersistenceFailedError(f"Failed to write mapping document: {e.message}", user_id=user_id)

    def get_document(self, user_id: str) -> Dict[str, Any]:
        """Return the raw persisted document (normalized to the current shape)."""
        return self._read_document(user_id)

    # Provenance

    def load_provenance(self, user_id: str) -> Dict[str, Set[str]]:
        """Provenance keys (``"<objectType>-<name>"``) by outcome: ``created`` and ``existing``."""
        provenance = self._read_document(user_id)["provenance"]
        return {
            "created": set(provenance["created"]),
            "existing": set(provenance["existing"]),
        }

    def record_provenance(
        self,
        user_id: str,
        object_type: str,
        name: str,
        outcome: Union[PropertyOutcome, str]
    ) -> None:
        """Record that a property is known to exist in the target tenant."""
        outcome = PropertyOutcome(outcome)
        if outcome is PropertyOutcome.FAILED:
            return
        bucket = "created" if outcome is PropertyOutcome.CREATED else "existing"
        key = provenance_key(normalize_object_type(object_type), name)

        with self._user_lock(user_id):
            document = self._read_document(user_id)
            entries = document["provenance"][bucket]
            if key in entries:
                return
            entries.append(key)
            self._write_document(user_id, document)
        logger.debug(f"Recorded provenance {bucket}: {key}")

    @staticmethod
    def _provenance_keys(document: Dict[str, Any]) -> Set[str]:
        provenance = document["provenance"]
        return set(provenance["created"]) | set(provenance["existing"])

    # Load path

    def _definitions(self, object_type: str, catalog: Optional[CatalogMap]) -> List[PropertyDefinition]:
        definitions = self.registry.get_defaults(object_type)
        seen = {d.internal_name for d in definitions}
        for definition in (catalog or {}).get(object_type, []):
            if definition.internal_name not in seen:
                seen.add(definition.internal_name)
                definitions.append(definition)
        return definitions

    @staticmethod
    def _safe_identity(value: str, definitions: List[PropertyDefinition]) -> str:
        try:
            return canonical_identity(value, definitions)
        except AmbiguousIdentityError as e:
            logger.warning(f"{e.message}; falling back to slug")
            return slugify(value)

    def _entry_identity(self, key: str, entry: MappingEntry, definitions: List[PropertyDefinition]) -> str:
        return self._safe_identity(entry.source_name or entry.source_label or key, definitions)

    def _rows_for(
        self,
        object_type: str,
        document: Dict[str, Any],
        catalog: Optional[CatalogMap]
    ) -> List[PropertyMapping]:
        definitions = self._definitions(object_type, catalog)
        provenance = self._provenance_keys(document)
        changes: Dict[str, Any] = {}
        for raw_type, entries in sorted(document["changes"].items(), key=lambda item: item[0] != object_type):
            if isinstance(entries, dict) and normalize_object_type(raw_type) == object_type:
                for key, data in entries.items():
                    changes.setdefault(key, data)

        candidates: List[PropertyMapping] = []
        for key, data in changes.items():
            entry = MappingEntry.from_dict(key, data)
            if entry is None:
                continue
            identity = self._entry_identity(key, entry, definitions)
            if entry.category is MappingCategory.USERDEFINED:
                target_identity = sanitize_property_name(entry.target_name or entry.target_label)
            else:
                target_identity = entry.target_name or identity
            candidates.append(PropertyMapping(
                object_type=object_type,
                source_identity=identity,
                source_label=entry.source_label,
                target_identity=target_identity,
                target_label=entry.target_label,
                category=entry.category,
                remotely_created=provenance_key(object_type, target_identity) in provenance,
                version=entry.version,
                updated_at=entry.updated_at,
            ))

        for definition in (catalog or {}).get(object_type, []):
            if definition.is_built_in:
                continue
            candidates.append(PropertyMapping(
                object_type=object_type,
                source_identity=definition.internal_name,
                source_label=definition.label,
                target_identity=definition.internal_name,
                target_label=definition.label,
                category=MappingCategory.CUSTOM,
            ))

        for definition in self.registry.get_defaults(object_type):
            candidates.append(PropertyMapping(
                object_type=object_type,
                source_identity=definition.internal_name,
                source_label=definition.label,
                target_identity=definition.internal_name,
                target_label=definition.label,
                category=MappingCategory.DEFAULT,
            ))

        return self._collapse(candidates)

    @staticmethod
    def _collapse(candidates: Iterable[PropertyMapping]) -> List[PropertyMapping]:
        """One row per (object type, identity); mutable beats default, then first seen."""
        rows: List[PropertyMapping] = []
        index: Dict[Tuple[str, str], int] = {}
        for row in candidates:
            position = index.get(row.key)
            if position is None:
                index[row.key] = len(rows)
                rows.append(row)
            elif rows[position].category is MappingCategory.DEFAULT and row.category.mutable:
                rows[position] = row
        return rows

    def load_rows(
        self,
        user_id: str,
        object_types: Iterable[str],
        catalog: Optional[CatalogMap] = None
    ) -> List[PropertyMapping]:
        """
        Reconcile defaults, live custom properties and persisted entries.

        Args:
            user_id: Tenant user
            object_types: Object types in any accepted spelling
            catalog: Source catalog definitions by canonical object type, used
                for identity matching and live custom rows

        Returns:
            Rows grouped by object type in the requested order
        """
        document = self._read_document(user_id)
        rows: List[PropertyMapping] = []
        for object_type in dict.fromkeys(normalize_object_type(t) for t in object_types):
            rows.extend(self._rows_for(object_type, document, catalog))
        return rows

    # Edit path

    @staticmethod
    def _find_row(rows: List[PropertyMapping], identity: str, source: str) -> Optional[PropertyMapping]:
        for row in rows:
            if row.source_identity == identity:
                return row
        source_slug = slugify(source)
        for row in rows:
            if row.source_label == source or (source_slug and slugify(row.source_label) == source_slug):
                return row
        return None

    @staticmethod
    def _entry_matches(
        key: str,
        data: Dict[str, Any],
        forms: Set[str],
        fields: Tuple[str, ...],
        key_only: Set[str]
    ) -> bool:
        if key in forms or slugify(key) in forms or key in key_only or slugify(key) in key_only:
            return True
        if not isinstance(data, dict):
            return False
        for name in fields:
            value = data.get(name)
            if isinstance(value, str) and value and (value in forms or slugify(value) in forms):
                return True
        return False

    def _remove_matching(
        self,
        changes: Dict[str, Any],
        forms: Set[str],
        fields: Tuple[str, ...],
        key_only: Optional[Set[str]] = None
    ) -> List[Tuple[str, Dict[str, Any]]]:
        """Pop entries whose key or listed fields match ``forms``, or whose key matches ``key_only``."""
        removed = []
        for key in list(changes.keys()):
            if self._entry_matches(key, changes[key], forms, fields, key_only or set()):
                removed.append((key, changes.pop(key)))
        return removed

    def _remove_from_buckets(
        self,
        document: Dict[str, Any],
        object_type: str,
        forms: Set[str],
        fields: Tuple[str, ...],
        key_only: Optional[Set[str]] = None
    ) -> List[Tuple[str, Dict[str, Any]]]:
        """Apply ``_remove_matching`` to every bucket whose key normalizes to ``object_type``."""
        removed = []
        for raw_type in list(document["changes"].keys()):
            bucket = document["changes"][raw_type]
            if not isinstance(bucket, dict) or normalize_object_type(raw_type) != object_type:
                continue
            removed.extend(self._remove_matching(bucket, forms, fields, key_only))
            if not bucket:
                del document["changes"][raw_type]
        return removed

    def edit_mapping(
        self,
        user_id: str,
        object_type: str,
        source: str,
        new_target: str,
        category: Optional[Union[MappingCategory, str]] = None,
        expected_version: Optional[int] = None,
        catalog: Optional[CatalogMap] = None
    ) -> PropertyMapping:
        """
        Set the target of a mapping row, keyed by its canonical identity.

        Every entry referring to the same property under another key form is
        removed first, so repeated edits never accumulate ghost entries.

        Args:
            user_id: Tenant user
            object_type: Object type in any accepted spelling
            source: Source label or internal name of the row
            new_target: New target label
            category: ``custom`` or ``userdefined``; taken from the current row when omitted
            expected_version: Version the caller last read; a mismatch raises
            catalog: Source catalog definitions by canonical object type

        Raises:
            ImmutableMappingError: When the row is a default row
            MappingConflictError: When ``expected_version`` is stale
            AmbiguousIdentityError: When ``source`` matches several properties
            PersistenceFailedError: When the document cannot be read or written
        """
        object_type = normalize_object_type(object_type)
        new_target = (new_target or "").strip()
        if not new_target:
            raise MappingError("Target label must not be empty", code="INVALID_TARGET")
        definitions = self._definitions(object_type, catalog)
        identity = canonical_identity(source, definitions)

        with self._user_lock(user_id):
            document = self._read_document(user_id)
            current = self._find_row(self._rows_for(object_type, document, catalog), identity, source)

            if category is None:
                if current is not None:
                    category = current.category
                elif any(d.internal_name == identity for d in definitions):
                    category = MappingCategory.CUSTOM
                else:
                    category = MappingCategory.USERDEFINED
            category = MappingCategory(category)
            if category is MappingCategory.DEFAULT:
                raise ImmutableMappingError(object_type, source)

            if current is not None and current.source_identity != identity and current.category.mutable:
                identity = current.source_identity
            source_label = current.source_label if current is not None else source
            current_version = current.version if current is not None and current.category.mutable else 0
            if expected_version is not None and expected_version != current_version:
                raise MappingConflictError(object_type, identity, expected_version, current_version)

            previous_targets = set()
            if current is not None and current.category.mutable:
                previous_targets = key_forms(current.target_label, current.target_identity)
            bucket = document["changes"].get(object_type)
            previous = bucket.get(identity) if isinstance(bucket, dict) else None
            removed = self._remove_from_buckets(
                document, object_type, key_forms(source, identity, source_label),
                ("sourceName", "sourceLabel"), key_only=previous_targets,
            )
            if not isinstance(previous, dict) and removed:
                previous = removed[0][1]
            changes = document["changes"].setdefault(object_type, {})

            target_name = None
            if category is MappingCategory.USERDEFINED:
                target_name = sanitize_property_name(new_target)
                if current is not None and current.category is MappingCategory.USERDEFINED and current.remotely_created:
                    target_name = current.target_identity

            extra = {}
            if isinstance(previous, dict):
                parsed = MappingEntry.from_dict(identity, previous)
                if parsed is not None:
                    extra = parsed.extra

            entry = MappingEntry(
                source_label=source_label,
                source_name=identity,
                target_label=new_target,
                target_name=target_name,
                category=category,
                version=current_version + 1,
                updated_at=_now(),
                extra=extra,
            )
            changes[identity] = entry.to_dict()
            self._write_document(user_id, document)

        if len(removed) > 1 or (removed and removed[0][0] != identity):
            logger.info(f"Collapsed {len(removed)} entries for {object_type}.{identity}: {[k for k, _ in removed]}")
        logger.info(f"Mapped {object_type}.{identity} -> '{new_target}' ({category.value}, v{entry.version})")

        provenance = self._provenance_keys(document)
        target_identity = target_name if target_name else (current.target_identity if current else identity)
        return PropertyMapping(
            object_type=object_type,
            source_identity=identity,
            source_label=source_label,
            target_identity=target_identity,
            target_label=new_target,
            category=category,
            remotely_created=provenance_key(object_type, target_identity) in provenance,
            version=entry.version,
            updated_at=entry.updated_at,
        )

    def add_mapping(
        self,
        user_id: str,
        object_type: str,
        source_label: str,
        target_label: Optional[str] = None,
        category: Union[MappingCategory, str] = MappingCategory.USERDEFINED,
        catalog: Optional[CatalogMap] = None
    ) -> PropertyMapping:
        """Add a new mapping row (the "add property" flow)."""
        return self.edit_mapping(
            user_id,
            object_type,
            source_label,
            target_label or source_label,
            category=category,
            catalog=catalog,
        )

    def revert_custom(
        self,
        user_id: str,
        object_type: str,
        source: str,
        catalog: Optional[CatalogMap] = None
    ) -> PropertyMapping:
        """Reset a custom row's target label back to its source label."""
        object_type = normalize_object_type(object_type)
        definitions = self._definitions(object_type, catalog)
        identity = canonical_identity(source, definitions)
        rows = self._rows_for(object_type, self._read_document(user_id), catalog)
        row = self._find_row(rows, identity, source)

        if row is None:
            raise MappingError(f"No mapping for '{source}' on {object_type}", code="MAPPING_NOT_FOUND", status_code=404)
        if row.category is MappingCategory.DEFAULT:
            raise ImmutableMappingError(object_type, source)
        if row.category is not MappingCategory.CUSTOM:
            raise MappingError(f"'{source}' on {object_type} is not a custom mapping", code="NOT_CUSTOM")

        return self.edit_mapping(user_id, object_type, row.source_identity, row.source_label,
                                 category=MappingCategory.CUSTOM, catalog=catalog)

    # Delete path

    def delete_mapping(
        self,
        user_id: str,
        object_type: str,
        source: str,
        target: Optional[str] = None,
        category: Optional[Union[MappingCategory, str]] = None,
        catalog: Optional[CatalogMap] = None
    ) -> int:
        """
        Remove every entry referring to a property under any key form.

        Deleting an absent property is a no-op and writes nothing. Provenance
        is kept so a re-added property is not created twice.

        Returns:
            Number of removed entries

        Raises:
            ImmutableMappingError: When ``category`` is ``default``
        """
        object_type = normalize_object_type(object_type)
        if category is not None and MappingCategory(category) is MappingCategory.DEFAULT:
            raise ImmutableMappingError(object_type, source)

        forms = key_forms(source, target)
        forms.add(self._safe_identity(source, self._definitions(object_type, catalog)))
        forms.discard("")

        with self._user_lock(user_id):
            document = self._read_document(user_id)
            removed = self._remove_from_buckets(
                document, object_type, forms,
                ("sourceLabel", "sourceName", "targetLabel", "targetName"),
            )
            if not removed:
                logger.debug(f"Nothing to delete for {object_type}.{source}")
                return 0
            self._write_document(user_id, document)

        logger.info(f"Deleted {len(removed)} entries for {object_type}.{source}: {[k for k, _ in removed]}")
        return len(removed)

    # Legacy rewrite

    def rewrite_legacy_document(self, user_id: str, catalog: Optional[CatalogMap] = None) -> Dict[str, int]:
        """
        Re-key every entry to its canonical identity.

        Repairs internal names that are really raw labels, merges entries for
        the same identity (user-defined beats custom, then newest ``updatedAt``),
        stamps versions and marks the document as schema version 2. Entries
        that are neither custom nor user-defined are dropped.

        Returns:
            Counters: entries_before, entries_after, rekeyed, repaired, merged, dropped
        """
        stats = {"entries_before": 0, "entries_after": 0, "rekeyed": 0, "repaired": 0, "merged": 0, "dropped": 0}

        with self._user_lock(user_id):
            document = self._read_document(user_id)
            rewritten: Dict[str, Dict[str, Any]] = {}

            for raw_type, entries in document["changes"].items():
                object_type = normalize_object_type(raw_type)
                definitions = self._definitions(object_type, catalog)
                merged: Dict[str, MappingEntry] = {}
                if not isinstance(entries, dict):
                    continue

                for key, data in entries.items():
                    stats["entries_before"] += 1
                    entry = MappingEntry.from_dict(key, data)
                    if entry is None:
                        stats["dropped"] += 1
                        continue

                    if _looks_corrupted(entry.source_name):
                        entry.source_name = slugify(entry.source_name)
                        stats["repaired"] += 1
                    if entry.category is MappingCategory.USERDEFINED and _looks_corrupted(entry.target_name):
                        entry.target_name = sanitize_property_name(entry.target_name)
                        stats["repaired"] += 1

                    identity = self._entry_identity(key, entry, definitions)
                    if identity != key:
                        stats["rekeyed"] += 1
                    entry.source_name = identity
                    entry.version = max(entry.version, 1)

                    existing = merged.get(identity)
                    if existing is None:
                        merged[identity] = entry
                        continue
                    stats["merged"] += 1
                    merged[identity] = self._pick(existing, entry)

                target = rewritten.setdefault(object_type, {})
                for identity, entry in merged.items():
                    if identity in target:
                        stats["merged"] += 1
                        entry = self._pick(MappingEntry.from_dict(identity, target[identity]), entry)
                    target[identity] = entry.to_dict()

            document["changes"] = {k: v for k, v in rewritten.items() if v}
            stats["entries_after"] = sum(len(v) for v in document["changes"].values())
            document["schemaVersion"] = SCHEMA_VERSION
            self._write_document(user_id, document)

        logger.info(f"Rewrote mapping document for {user_id}: {stats}")
        return stats

    @staticmethod
    def _pick(a: MappingEntry, b: MappingEntry) -> MappingEntry:
        """Winner of two entries for one identity, carrying the highest version."""
        rank_a, rank_b = _CATEGORY_RANK[a.category], _CATEGORY_RANK[b.category]
        if rank_a != rank_b:
            winner = a if rank_a > rank_b else b
        else:
            winner = b if _timestamp(b.updated_at) > _timestamp(a.updated_at) else a
        winner.version = max(a.version, b.version)
        return winner
