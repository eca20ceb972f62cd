"""Readers for the CRM's REST API."""

from .base import BaseExtractor, create_session, parse_retry_after
from .property_extractor import PropertyExtractor

__all__ = [
    "BaseExtractor",
    "PropertyExtractor",
    "create_session",
    "parse_retry_after",
]
