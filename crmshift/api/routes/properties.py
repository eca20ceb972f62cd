"""Property catalog endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from ..dependencies import Services, get_services
from ..models import PropertyCounts, PropertyDefinitionResponse, PropertyFilterEnum, PropertyListResponse
from ...models.session import SOURCE_INSTANCE, TARGET_INSTANCE, Tenant
from ...services.catalog import normalize_object_type

router = APIRouter()


@router.get("/{instance}/{object_type}", response_model=PropertyListResponse)
def list_properties(
    instance: str,
    object_type: str,
    user_id: str,
    property_type: PropertyFilterEnum = PropertyFilterEnum.ALL,
    force_refresh: bool = False,
    services: Services = Depends(get_services),
):
    """List a tenant's properties for an object type."""
    if instance not in (SOURCE_INSTANCE, TARGET_INSTANCE):
        raise HTTPException(status_code=400, detail=f"Unknown instance: {instance}")

    tenant = Tenant(user_id=user_id, instance=instance)
    all_properties = services.catalog.list_properties(tenant, object_type, force_refresh=force_refresh)
    selected = services.catalog.filter(all_properties, property_type.value)

    return PropertyListResponse(
        instance=instance,
        object_type=normalize_object_type(object_type),
        property_type=property_type,
        counts=PropertyCounts(**services.catalog.summarize(all_properties)),
        properties=[
            PropertyDefinitionResponse(
                object_type=d.object_type,
                name=d.internal_name,
                label=d.label,
                type=d.type,
                field_type=d.field_type,
                is_built_in=d.is_built_in,
                group_name=d.group_name,
            )
            for d in selected
        ],
    )
