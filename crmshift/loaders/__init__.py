"""Writers into the target tenant."""

from .base import BaseLoader, CreateResult
from .property_loader import PropertyLoader

__all__ = [
    "BaseLoader",
    "CreateResult",
    "PropertyLoader",
]
