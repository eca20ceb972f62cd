"""Mapping table endpoints."""

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends

from ..dependencies import Services, get_services
from ..models import (
    MappingAddRequest,
    MappingCategoryEnum,
    MappingDeleteResponse,
    MappingEditRequest,
    MappingListResponse,
    MappingRevertRequest,
    MappingRewriteRequest,
    MappingRewriteResponse,
    MappingRowResponse,
)
from ...errors import CRMShiftError
from ...models.schema import PropertyDefinition, PropertyMapping
from ...models.session import Tenant
from ...services.catalog import normalize_object_type

logger = logging.getLogger(__name__)

router = APIRouter()


def _row(mapping: PropertyMapping) -> MappingRowResponse:
    return MappingRowResponse(
        object_type=mapping.object_type,
        source_identity=mapping.source_identity,
        source_label=mapping.source_label,
        target_identity=mapping.target_identity,
        target_label=mapping.target_label,
        category=mapping.category.value,
        remotely_created=mapping.remotely_created,
        version=mapping.version,
        updated_at=mapping.updated_at,
    )


def _source_catalog(
    services: Services,
    user_id: str,
    object_types: List[str],
    live: bool
) -> Optional[Dict[str, List[PropertyDefinition]]]:
    """Live source definitions for identity matching, or None when not requested or unavailable."""
    if not live or not object_types:
        return None
    try:
        return services.catalog.list_many(Tenant.source(user_id), object_types)
    except CRMShiftError as e:
        logger.warning(f"Source catalog unavailable for {user_id}; matching against defaults only: {e}")
        return None


# Registered before the parameterized routes so "rewrite" is not taken as an object type
@router.post("/rewrite", response_model=MappingRewriteResponse)
def rewrite_mappings(data: MappingRewriteRequest, services: Services = Depends(get_services)):
    """Rewrite a legacy mapping document to canonical keys."""
    catalog = _source_catalog(services, data.user_id, data.object_types, live=bool(data.object_types))
    return MappingRewriteResponse(**services.mappings.rewrite_legacy_document(data.user_id, catalog=catalog))


@router.get("/{object_type}", response_model=MappingListResponse)
def list_mappings(
    object_type: str,
    user_id: str,
    live: bool = False,
    services: Services = Depends(get_services),
):
    """Reconciled mapping rows for an object type."""
    canonical = normalize_object_type(object_type)
    catalog = _source_catalog(services, user_id, [canonical], live)
    rows = [_row(r) for r in services.mappings.load_rows(user_id, [canonical], catalog=catalog)]
    return MappingListResponse(object_type=canonical, rows=rows, total=len(rows))


@router.post("/{object_type}", response_model=MappingRowResponse, status_code=201)
def add_mapping(object_type: str, data: MappingAddRequest, services: Services = Depends(get_services)):
    """Add a mapping row."""
    return _row(services.mappings.add_mapping(
        data.user_id,
        object_type,
        data.source_label,
        data.target_label,
        category=data.category.value,
    ))


@router.put("/{object_type}", response_model=MappingRowResponse)
def edit_mapping(object_type: str, data: MappingEditRequest, services: Services = Depends(get_services)):
    """Set the target of a mapping row."""
    return _row(services.mappings.edit_mapping(
        data.user_id,
        object_type,
        data.source,
        data.target,
        category=data.category.value if data.category else None,
        expected_version=data.expected_version,
    ))


@router.delete("/{object_type}", response_model=MappingDeleteResponse)
def delete_mapping(
    object_type: str,
    user_id: str,
    source: str,
    target: Optional[str] = None,
    category: Optional[MappingCategoryEnum] = None,
    services: Services = Depends(get_services),
):
    """Delete a mapping row under every key form it was stored as."""
    removed = services.mappings.delete_mapping(
        user_id,
        object_type,
        source,
        target=target,
        category=category.value if category else None,
    )
    return MappingDeleteResponse(object_type=normalize_object_type(object_type), source=source, removed=removed)


@router.post("/{object_type}/revert", response_model=MappingRowResponse)
def revert_mapping(object_type: str, data: MappingRevertRequest, services: Services = Depends(get_services)):
    """Reset a custom row's target back to its source label."""
    return _row(services.mappings.revert_custom(data.user_id, object_type, data.source))
