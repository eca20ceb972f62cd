"""Migration execution models."""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
from datetime import datetime


class PropertyOutcome(str, Enum):
    """Bucket a migration candidate ends in."""
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    FAILED = "failed"


@dataclass
class PropertyResult:
    """Outcome for a single candidate property."""
    object_type: str
    name: str
    label: str
    outcome: PropertyOutcome
    error: Optional[str] = None
    upstream_status: Optional[int] = None
    attempts: int = 0

    @property
    def display_name(self) -> str:
        return f"{self.name} ({self.object_type})"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "object_type": self.object_type,
            "name": self.name,
            "label": self.label,
            "outcome": self.outcome.value,
            "error": self.error,
            "upstream_status": self.upstream_status,
            "attempts": self.attempts,
        }


@dataclass
class MigrationBatchResult:
    """Summary of one orchestrator run."""
    created_count: int = 0
    already_exists_count: int = 0
    failed_count: int = 0
    already_exists_list: List[str] = field(default_factory=list)
    created_list: List[str] = field(default_factory=list)
    failed_list: List[str] = field(default_factory=list)
    skipped_list: List[str] = field(default_factory=list)  # Reserved prefixes, never candidates
    outcomes: List[PropertyResult] = field(default_factory=list)
    cancelled: bool = False
    dry_run: bool = False
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def total(self) -> int:
        return self.created_count + self.already_exists_count + self.failed_count

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def add(self, result: PropertyResult) -> None:
        """Count a classified candidate into exactly one bucket."""
        self.outcomes.append(result)
        if result.outcome is PropertyOutcome.CREATED:
            self.created_count += 1
            self.created_list.append(result.display_name)
        elif result.outcome is PropertyOutcome.ALREADY_EXISTS:
            self.already_exists_count += 1
            self.already_exists_list.append(result.display_name)
        else:
            self.failed_count += 1
            self.failed_list.append(result.display_name)

    def summary(self) -> str:
        return (
            f"Created: {self.created_count} | Already existed: {self.already_exists_count} "
            f"| Failed: {self.failed_count}"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "created_count": self.created_count,
            "already_exists_count": self.already_exists_count,
            "failed_count": self.failed_count,
            "already_exists_list": self.already_exists_list,
            "created_list": self.created_list,
            "failed_list": self.failed_list,
            "skipped_list": self.skipped_list,
            "outcomes": [o.to_dict() for o in self.outcomes],
            "cancelled": self.cancelled,
            "dry_run": self.dry_run,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }


def _env_bool(value: Optional[str]) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


@dataclass
class MigrationConfig:
    """Configuration for token handling, catalog access and property migration."""
    # OAuth client
    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = ""

    # Upstream API
    api_base_url: str = "https://api.hubapi.com"
    token_url: str = "https://api.hubapi.com/oauth/v1/token"
    request_timeout: float = 30.0  # Seconds
    max_retries: int = 3  # Connection-level retries only

    # Instances
    source_instance: str = "a"
    target_instance: str = "b"

    # Caching
    token_ttl_factor: float = 0.75
    catalog_ttl_seconds: float = 600.0

    # Migration pacing
    property_delay_seconds: float = 0.5
    rate_limit_max_attempts: int = 4
    backoff_base_seconds: float = 0.3
    backoff_max_seconds: float = 10.0
    dry_run: bool = False

    # Persistence
    mapping_field: str = "hubspot_crm_a_mapped_json"
    data_dir: str = "./data/profiles"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation (secrets omitted)."""
        return {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "api_base_url": self.api_base_url,
            "token_url": self.token_url,
            "request_timeout": self.request_timeout,
            "max_retries": self.max_retries,
            "source_instance": self.source_instance,
            "target_instance": self.target_instance,
            "token_ttl_factor": self.token_ttl_factor,
            "catalog_ttl_seconds": self.catalog_ttl_seconds,
            "property_delay_seconds": self.property_delay_seconds,
            "rate_limit_max_attempts": self.rate_limit_max_attempts,
            "backoff_base_seconds": self.backoff_base_seconds,
            "backoff_max_seconds": self.backoff_max_seconds,
            "dry_run": self.dry_run,
            "mapping_field": self.mapping_field,
            "data_dir": self.data_dir,
            "supabase_url": self.supabase_url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationConfig":
        """Create from dictionary representation."""
        defaults = cls()
        return cls(
            client_id=data.get("client_id", defaults.client_id),
            client_secret=data.get("client_secret", defaults.client_secret),
            redirect_uri=data.get("redirect_uri", defaults.redirect_uri),
            api_base_url=data.get("api_base_url", defaults.api_base_url),
            token_url=data.get("token_url", defaults.token_url),
            request_timeout=float(data.get("request_timeout", defaults.request_timeout)),
            max_retries=int(data.get("max_retries", defaults.max_retries)),
            source_instance=data.get("source_instance", defaults.source_instance),
            target_instance=data.get("target_instance", defaults.target_instance),
            token_ttl_factor=float(data.get("token_ttl_factor", defaults.token_ttl_factor)),
            catalog_ttl_seconds=float(data.get("catalog_ttl_seconds", defaults.catalog_ttl_seconds)),
            property_delay_seconds=float(data.get("property_delay_seconds", defaults.property_delay_seconds)),
            rate_limit_max_attempts=int(data.get("rate_limit_max_attempts", defaults.rate_limit_max_attempts)),
            backoff_base_seconds=float(data.get("backoff_base_seconds", defaults.backoff_base_seconds)),
            backoff_max_seconds=float(data.get("backoff_max_seconds", defaults.backoff_max_seconds)),
            dry_run=bool(data.get("dry_run", defaults.dry_run)),
            mapping_field=data.get("mapping_field", defaults.mapping_field),
            data_dir=data.get("data_dir", defaults.data_dir),
            supabase_url=data.get("supabase_url", defaults.supabase_url),
            supabase_key=data.get("supabase_key", defaults.supabase_key),
        )

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "MigrationConfig":
        """Create from environment variables."""
        env = os.environ if environ is None else environ
        data: Dict[str, Any] = {
            "client_id": env.get("CLIENT_ID", ""),
            "client_secret": env.get("CLIENT_SECRET", ""),
            "redirect_uri": env.get("HUBSPOT_REDIRECT_URI", ""),
            "dry_run": _env_bool(env.get("CRMSHIFT_DRY_RUN")),
            "supabase_url": env.get("SUPABASE_URL"),
            "supabase_key": env.get("SUPABASE_SERVICE_ROLE_KEY") or env.get("SUPABASE_SERVICE_KEY"),
        }
        if env.get("HUBSPOT_API_BASE"):
            base = env["HUBSPOT_API_BASE"].rstrip("/")
            data["api_base_url"] = base
            data["token_url"] = f"{base}/oauth/v1/token"
        if env.get("API_TIMEOUT"):
            data["request_timeout"] = int(env["API_TIMEOUT"]) / 1000.0
        if env.get("MAX_RETRIES"):
            data["max_retries"] = int(env["MAX_RETRIES"])
        if env.get("CRMSHIFT_DATA_DIR"):
            data["data_dir"] = env["CRMSHIFT_DATA_DIR"]
        return cls.from_dict(data)
