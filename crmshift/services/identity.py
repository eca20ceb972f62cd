"""
Property identity helpers.

Every read and write boundary goes through these functions so that a property
known under several spellings (raw label, slug, internal name) resolves to a
single canonical key.
"""

import re
from typing import Iterable, Optional, Set

from ..errors import AmbiguousIdentityError
from ..models.schema import PropertyDefinition

MAX_PROPERTY_NAME_LENGTH = 50

# Built-in identifiers a created property may not shadow
RESERVED_NAMES = frozenset({
    "id", "createdate", "lastmodifieddate", "hs_object_id", "hs_createdate",
    "hs_lastmodifieddate", "email", "firstname", "lastname", "phone",
    "company", "website", "city", "state", "country", "dealname", "amount",
    "closedate", "pipeline", "dealstage", "dealtype", "subject", "content",
    "hs_ticket_id", "hs_ticket_category", "hs_ticket_priority",
})

RESERVED_PREFIX_PATTERN = re.compile(r"^(hs_|hubspot_|a\d+_)")
VALID_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_NON_NAME = re.compile(r"[^a-z0-9_]+")
_UNDERSCORES = re.compile(r"_+")


def slugify(value: Optional[str]) -> str:
    """Lowercase, collapse runs of non-alphanumerics to ``_`` and trim."""
    if not value:
        return ""
    return _NON_ALNUM.sub("_", str(value).strip().lower()).strip("_")


def sanitize_property_name(value: Optional[str]) -> str:
    """
    Turn a label or name into a valid internal property name.

    The result always matches ``^[a-z][a-z0-9_]*$``, is at most 50 characters
    and never equals a reserved built-in name.
    """
    name = _NON_NAME.sub("_", str(value or "").strip().lower())
    name = _UNDERSCORES.sub("_", name).strip("_")

    if not name:
        name = "prop"
    if name[0].isdigit():
        name = f"prop_{name}"
    if name in RESERVED_NAMES:
        name = f"{name}_custom"

    if len(name) > MAX_PROPERTY_NAME_LENGTH:
        name = name[:MAX_PROPERTY_NAME_LENGTH].rstrip("_")
    return name


def is_valid_property_name(name: str) -> bool:
    return bool(VALID_NAME_PATTERN.match(name or ""))


def has_reserved_prefix(name: str) -> bool:
    """True for names in the CRM's own namespace (``hs_``, ``hubspot_``, ``a123_``)."""
    return bool(RESERVED_PREFIX_PATTERN.match(name or ""))


def key_forms(*values: Optional[str]) -> Set[str]:
    """All historical key spellings of the given values: raw and slug."""
    forms = set()
    for value in values:
        if not value:
            continue
        forms.add(value)
        slug = slugify(value)
        if slug:
            forms.add(slug)
    return forms


def provenance_key(object_type: str, name: str) -> str:
    return f"{object_type}-{name}"


def canonical_identity(value: str, definitions: Iterable[PropertyDefinition] = ()) -> str:
    """
    Resolve a label or name to its canonical source identity.

    Matching order: exact internal name, exact label, normalized slug. When
    nothing matches, the slug of the value is the identity.

    Raises:
        AmbiguousIdentityError: When the first matching tier yields more than
            one distinct internal name
    """
    definitions = list(definitions)
    if not value:
        return ""

    for definition in definitions:
        if definition.internal_name == value:
            return definition.internal_name

    by_label = {d.internal_name for d in definitions if d.label == value}
    if len(by_label) > 1:
        raise AmbiguousIdentityError(value, by_label)
    if by_label:
        return by_label.pop()

    slug = slugify(value)
    by_slug = {
        d.internal_name for d in definitions
        if slug and (slugify(d.internal_name) == slug or slugify(d.label) == slug)
    }
    if len(by_slug) > 1:
        raise AmbiguousIdentityError(value, by_slug)
    if by_slug:
        return by_slug.pop()

    return slug
