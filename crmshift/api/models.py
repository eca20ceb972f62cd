"""Pydantic models for API requests and responses."""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from enum import Enum
from datetime import datetime


class MappingCategoryEnum(str, Enum):
    DEFAULT = "default"
    CUSTOM = "custom"
    USERDEFINED = "userdefined"


class PropertyFilterEnum(str, Enum):
    ALL = "all"
    DEFAULT = "default"
    CUSTOM = "custom"


class PropertyOutcomeEnum(str, Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    FAILED = "failed"


# Request Models
class MappingEditRequest(BaseModel):
    user_id: str
    source: str
    target: str
    category: Optional[MappingCategoryEnum] = None
    expected_version: Optional[int] = None


class MappingAddRequest(BaseModel):
    user_id: str
    source_label: str
    target_label: Optional[str] = None
    category: MappingCategoryEnum = MappingCategoryEnum.USERDEFINED


class MappingRevertRequest(BaseModel):
    user_id: str
    source: str


class MappingRewriteRequest(BaseModel):
    user_id: str
    object_types: List[str] = Field(default_factory=list)  # Source catalogs to match against


class PropertyMigrationRequest(BaseModel):
    user_id: str
    object_types: List[str] = Field(..., min_length=1)
    dry_run: bool = False


# Response Models
class PropertyDefinitionResponse(BaseModel):
    object_type: str
    name: str
    label: str
    type: str
    field_type: str
    is_built_in: bool
    group_name: str = ""


class PropertyCounts(BaseModel):
    total: int
    default: int
    custom: int


class PropertyListResponse(BaseModel):
    instance: str
    object_type: str
    property_type: PropertyFilterEnum
    counts: PropertyCounts
    properties: List[PropertyDefinitionResponse]


class MappingRowResponse(BaseModel):
    object_type: str
    source_identity: str
    source_label: str
    target_identity: str
    target_label: str
    category: MappingCategoryEnum
    remotely_created: bool = False
    version: int = 0
    updated_at: Optional[str] = None


class MappingListResponse(BaseModel):
    object_type: str
    rows: List[MappingRowResponse]
    total: int


class MappingDeleteResponse(BaseModel):
    object_type: str
    source: str
    removed: int


class MappingRewriteResponse(BaseModel):
    entries_before: int
    entries_after: int
    rekeyed: int
    repaired: int
    merged: int
    dropped: int


class PropertyResultResponse(BaseModel):
    object_type: str
    name: str
    label: str
    outcome: PropertyOutcomeEnum
    error: Optional[str] = None
    upstream_status: Optional[int] = None
    attempts: int = 0


class MigrationBatchResponse(BaseModel):
    created_count: int
    already_exists_count: int
    failed_count: int
    already_exists_list: List[str]
    created_list: List[str]
    failed_list: List[str]
    skipped_list: List[str]
    outcomes: List[PropertyResultResponse]
    cancelled: bool = False
    dry_run: bool = False
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None


class ErrorResponse(BaseModel):
    error: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
