"""Base loader interface for writes into the target tenant."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import logging

logger = logging.getLogger(__name__)


@dataclass
class CreateResult:
    """Raw outcome of one create call, before classification."""
    object_type: str
    name: str
    status_code: Optional[int] = None  # None when no response was received
    message: str = ""
    retry_after: Optional[float] = None
    response_data: Dict[str, Any] = field(default_factory=dict)
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 300

    @property
    def unauthorized(self) -> bool:
        return self.status_code == 401

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429

    def to_dict(self) -> Dict[str, Any]:
        return {
            "object_type": self.object_type,
            "name": self.name,
            "status_code": self.status_code,
            "ok": self.ok,
            "message": self.message,
            "retry_after": self.retry_after,
            "dry_run": self.dry_run,
        }


class BaseLoader(ABC):
    """
    Base class for property loaders.

    Loaders create schema in the target tenant. They never raise for an
    upstream rejection; the caller classifies the returned CreateResult.
    """

    def __init__(self, dry_run: bool = False):
        """
        Initialize the loader.

        Args:
            dry_run: If True, simulate without making changes
        """
        self.dry_run = dry_run

    @abstractmethod
    def create_property(self, token: str, object_type: str, payload: Dict[str, Any]) -> CreateResult:
        """
        Create one property.

        Args:
            token: Bearer access token for the target tenant
            object_type: Canonical object type
            payload: ``{name, label, type, fieldType, groupName}``

        Returns:
            CreateResult describing the upstream response
        """
        pass
