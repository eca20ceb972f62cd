"""Exception taxonomy for token, catalog, mapping and migration failures."""

from typing import Any, Dict, Optional


class CRMShiftError(Exception):
    """Base exception for all crmshift errors."""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize the error.

        Args:
            message: Human-readable error message
            code: Machine-readable error code
            status_code: HTTP status code used by the API layer
            details: Additional error details
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


# Auth

class AuthError(CRMShiftError):
    """Token lifecycle failure."""


class NoRefreshTokenError(AuthError):
    """No refresh token is on file for a session key."""

    def __init__(self, session_key: str):
        super().__init__(
            message=f"No refresh token on file for session {session_key}",
            code="NO_REFRESH_TOKEN",
            status_code=401,
            details={"session_key": session_key},
        )


class TokenExchangeFailedError(AuthError):
    """The OAuth token endpoint rejected an exchange."""

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        super().__init__(
            message=message,
            code="TOKEN_EXCHANGE_FAILED",
            status_code=401,
            details={"upstream_status": upstream_status},
        )
        self.upstream_status = upstream_status


class UnauthorizedError(AuthError):
    """The upstream API still rejects the token after a refresh."""

    def __init__(self, message: str = "Upstream rejected the access token"):
        super().__init__(message=message, code="UNAUTHORIZED", status_code=401)


# Catalog

class CatalogError(CRMShiftError):
    """Property catalog read failure."""

    def __init__(
        self,
        message: str,
        code: str = "CATALOG_ERROR",
        status_code: int = 502,
        upstream_status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = dict(details or {})
        details["upstream_status"] = upstream_status
        super().__init__(message=message, code=code, status_code=status_code, details=details)
        self.upstream_status = upstream_status


class TokenExpiredError(CatalogError):
    """Upstream answered 401 for a catalog call."""

    def __init__(self, message: str = "Access token expired"):
        super().__init__(message, code="TOKEN_EXPIRED", status_code=401, upstream_status=401)


class RateLimitedError(CatalogError):
    """Upstream answered 429."""

    def __init__(self, message: str = "Rate limited by upstream", retry_after: Optional[float] = None):
        super().__init__(
            message,
            code="RATE_LIMITED",
            status_code=429,
            upstream_status=429,
            details={"retry_after": retry_after},
        )
        self.retry_after = retry_after


class UpstreamUnavailableError(CatalogError):
    """Upstream 5xx, timeout or connection failure."""

    def __init__(self, message: str = "Upstream unavailable", upstream_status: Optional[int] = None):
        super().__init__(
            message,
            code="UPSTREAM_UNAVAILABLE",
            status_code=503,
            upstream_status=upstream_status,
        )


# Mapping

class MappingError(CRMShiftError):
    """Mapping document failure."""

    def __init__(self, message: str, code: str = "MAPPING_ERROR", status_code: int = 400,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code=code, status_code=status_code, details=details)


class PersistenceFailedError(MappingError):
    """Reading or writing the mapping document failed."""

    def __init__(self, message: str, user_id: Optional[str] = None):
        super().__init__(
            message,
            code="PERSISTENCE_FAILED",
            status_code=500,
            details={"user_id": user_id},
        )


class AmbiguousIdentityError(MappingError):
    """A label resolves to more than one catalog property."""

    def __init__(self, value: str, candidates):
        super().__init__(
            f"'{value}' matches more than one property: {', '.join(sorted(candidates))}",
            code="AMBIGUOUS_IDENTITY",
            status_code=409,
            details={"value": value, "candidates": sorted(candidates)},
        )


class ImmutableMappingError(MappingError):
    """Default mappings cannot be edited or deleted."""

    def __init__(self, object_type: str, source: str):
        super().__init__(
            f"Default property '{source}' on {object_type} cannot be changed",
            code="IMMUTABLE_MAPPING",
            status_code=403,
            details={"object_type": object_type, "source": source},
        )


class MappingConflictError(MappingError):
    """A mapping entry changed since the caller last read it."""

    def __init__(self, object_type: str, identity: str, expected: int, actual: int):
        super().__init__(
            f"Mapping {object_type}.{identity} is at version {actual}, expected {expected}",
            code="MAPPING_CONFLICT",
            status_code=409,
            details={
                "object_type": object_type,
                "identity": identity,
                "expected_version": expected,
                "actual_version": actual,
            },
        )


# Migration

class MigrationError(CRMShiftError):
    """Per-property migration outcome that is not a plain success."""


class PropertyAlreadyExistsError(MigrationError):
    """Soft failure: the property is already present in the target."""

    def __init__(self, object_type: str, name: str, message: str = ""):
        super().__init__(
            message or f"Property {object_type}.{name} already exists",
            code="ALREADY_EXISTS",
            status_code=409,
            details={"object_type": object_type, "name": name},
        )


class PropertyCreateFailedError(MigrationError):
    """Hard failure creating a property in the target."""

    def __init__(self, object_type: str, name: str, message: str, upstream_status: Optional[int] = None):
        super().__init__(
            message,
            code="CREATE_FAILED",
            status_code=502,
            details={"object_type": object_type, "name": name, "upstream_status": upstream_status},
        )
        self.upstream_status = upstream_status


# Storage

class ProfileStoreError(CRMShiftError):
    """The tenant profile store could not be read or written."""

    def __init__(self, message: str, user_id: Optional[str] = None):
        super().__init__(message, code="PROFILE_STORE_ERROR", status_code=500, details={"user_id": user_id})
