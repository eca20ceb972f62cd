"""Tenant profile store adapters."""

import logging

from .base import ProfileStore
from .memory_store import InMemoryProfileStore
from .file_store import JsonFileProfileStore
from .supabase_store import SupabaseProfileStore

logger = logging.getLogger(__name__)


def create_profile_store(config) -> ProfileStore:
    """Supabase when credentials are configured, otherwise JSON files under ``config.data_dir``."""
    if config.supabase_url and config.supabase_key:
        logger.info(f"Using Supabase profile store at {config.supabase_url}")
        return SupabaseProfileStore(config.supabase_url, config.supabase_key, timeout=config.request_timeout)
    logger.info(f"Using JSON file profile store in {config.data_dir}")
    return JsonFileProfileStore(config.data_dir)


__all__ = [
    "ProfileStore",
    "InMemoryProfileStore",
    "JsonFileProfileStore",
    "SupabaseProfileStore",
    "create_profile_store",
]
