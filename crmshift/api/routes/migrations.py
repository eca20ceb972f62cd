"""Property migration endpoints."""

from fastapi import APIRouter, Depends

from ..dependencies import Services, get_services
from ..models import MigrationBatchResponse, PropertyMigrationRequest

router = APIRouter()


@router.post("/properties", response_model=MigrationBatchResponse)
def migrate_properties(data: PropertyMigrationRequest, services: Services = Depends(get_services)):
    """Create missing user-defined properties in the target tenant."""
    orchestrator = services.orchestrator.as_dry_run() if data.dry_run else services.orchestrator
    result = orchestrator.migrate(data.user_id, data.object_types)
    return result.to_dict()
