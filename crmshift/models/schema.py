"""Schema models for property definitions and property mappings."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from enum import Enum


class MappingCategory(str, Enum):
    """Where a mapping row comes from."""
    DEFAULT = "default"  # Built into the CRM product, immutable
    CUSTOM = "custom"  # Pre-existing tenant property, label may change
    USERDEFINED = "userdefined"  # Created in the target by a migration run

    @property
    def mutable(self) -> bool:
        return self is not MappingCategory.DEFAULT


class PropertyFilter(str, Enum):
    """Catalog listing filter."""
    ALL = "all"
    DEFAULT = "default"
    CUSTOM = "custom"


@dataclass
class PropertyDefinition:
    """One field in a tenant's schema for an object type."""
    object_type: str
    internal_name: str
    label: str
    type: str = "string"
    field_type: str = "text"
    is_built_in: bool = False
    group_name: str = ""
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        result = {
            "objectType": self.object_type,
            "name": self.internal_name,
            "label": self.label,
            "type": self.type,
            "fieldType": self.field_type,
            "hubspotDefined": self.is_built_in,
        }
        if self.group_name:
            result["groupName"] = self.group_name
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, object_type: str, data: Dict[str, Any], built_in: Optional[bool] = None) -> "PropertyDefinition":
        """
        Create from an upstream property payload or a defaults file entry.

        Args:
            object_type: Canonical object type the property belongs to
            data: Dictionary with at least ``name``
            built_in: Override for ``hubspotDefined`` (defaults files omit it)
        """
        name = data.get("name", "")
        if built_in is None:
            built_in = bool(data.get("hubspotDefined", False))

        return cls(
            object_type=object_type,
            internal_name=name,
            label=data.get("label") or name,
            type=data.get("type") or "string",
            field_type=data.get("fieldType") or "text",
            is_built_in=built_in,
            group_name=data.get("groupName") or "",
            description=data.get("description") or "",
        )


@dataclass
class PropertyMapping:
    """A decision that a source field becomes a target field."""
    object_type: str
    source_identity: str
    source_label: str
    target_identity: str
    target_label: str
    category: MappingCategory = MappingCategory.DEFAULT
    remotely_created: bool = False
    version: int = 0
    updated_at: Optional[str] = None

    @property
    def key(self) -> tuple:
        return (self.object_type, self.source_identity)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "object": self.object_type,
            "sourceIdentity": self.source_identity,
            "source": self.source_label,
            "targetIdentity": self.target_identity,
            "target": self.target_label,
            "type": self.category.value,
            "remotelyCreated": self.remotely_created,
            "version": self.version,
            "updatedAt": self.updated_at,
        }


def _parse_version(value: Any) -> int:
    """Entry version stamp; unreadable stamps count as 0."""
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


@dataclass
class MappingEntry:
    """One persisted entry of the ``changes`` document."""
    source_label: str
    source_name: str
    target_label: str
    target_name: Optional[str] = None
    category: MappingCategory = MappingCategory.USERDEFINED
    version: int = 1
    updated_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted dictionary form."""
        result = dict(self.extra)
        result.update({
            "sourceLabel": self.source_label,
            "sourceName": self.source_name,
            "targetLabel": self.target_label,
            "type": self.category.value,
            "newProperty": self.category is MappingCategory.USERDEFINED,
            "version": self.version,
        })
        if self.target_name:
            result["targetName"] = self.target_name
        if self.updated_at:
            result["updatedAt"] = self.updated_at
        return result

    @classmethod
    def from_dict(cls, key: str, data: Dict[str, Any]) -> Optional["MappingEntry"]:
        """
        Parse a persisted entry.

        Returns None for entries that are neither custom nor user-defined
        (legacy dropdown selections against default rows).
        """
        if not isinstance(data, dict):
            return None

        if data.get("type") == "userdefined" or data.get("newProperty") is True:
            category = MappingCategory.USERDEFINED
        elif data.get("type") == "custom":
            category = MappingCategory.CUSTOM
        else:
            return None

        known = {"sourceLabel", "sourceName", "targetLabel", "targetName",
                 "type", "newProperty", "version", "updatedAt"}
        source_label = data.get("sourceLabel") or data.get("sourceName") or key
        target_label = data.get("targetLabel")
        if not isinstance(target_label, str) or not target_label:
            if category is MappingCategory.CUSTOM:
                target_label = source_label
            else:
                target_label = data.get("targetName") or source_label

        return cls(
            source_label=source_label,
            source_name=data.get("sourceName") or "",
            target_label=target_label,
            target_name=data.get("targetName") or None,
            category=category,
            version=_parse_version(data.get("version")),
            updated_at=data.get("updatedAt"),
            extra={k: v for k, v in data.items() if k not in known},
        )
