"""Command line interface for the CRM schema migration engine."""

import argparse
import json
import logging
import sys
from typing import Any

from .api.dependencies import Services
from .errors import CRMShiftError
from .models.migration import MigrationConfig
from .models.session import SOURCE_INSTANCE, TARGET_INSTANCE, Tenant

logger = logging.getLogger(__name__)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def main(argv=None):
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="CRM Schema Migration Tool - Reconcile mappings and copy properties between CRM tenants"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Authorize a tenant
    auth_parser = subparsers.add_parser("authorize", help="Exchange an authorization code for tokens")
    auth_parser.add_argument("--user", required=True, help="User id")
    auth_parser.add_argument("--instance", choices=[SOURCE_INSTANCE, TARGET_INSTANCE], required=True)
    auth_parser.add_argument("--code", required=True, help="Authorization code from the redirect")

    # List properties
    props_parser = subparsers.add_parser("properties", help="List a tenant's properties")
    props_parser.add_argument("--user", required=True, help="User id")
    props_parser.add_argument("--instance", choices=[SOURCE_INSTANCE, TARGET_INSTANCE], default=SOURCE_INSTANCE)
    props_parser.add_argument("--object-type", required=True, help="Object type, e.g. contacts")
    props_parser.add_argument("--type", dest="property_type", choices=["all", "default", "custom"], default="all")
    props_parser.add_argument("--force-refresh", action="store_true", help="Bypass the catalog cache")

    # Show mappings
    map_parser = subparsers.add_parser("mappings", help="Show reconciled mapping rows")
    map_parser.add_argument("--user", required=True, help="User id")
    map_parser.add_argument("--object-type", required=True, action="append", help="Object type (repeatable)")
    map_parser.add_argument("--live", action="store_true", help="Match identities against the live source catalog")

    # Edit a mapping
    edit_parser = subparsers.add_parser("edit-mapping", help="Set the target of a mapping row")
    edit_parser.add_argument("--user", required=True, help="User id")
    edit_parser.add_argument("--object-type", required=True)
    edit_parser.add_argument("--source", required=True, help="Source label or internal name")
    edit_parser.add_argument("--target", required=True, help="New target label")
    edit_parser.add_argument("--category", choices=["default", "custom", "userdefined"])
    edit_parser.add_argument("--expected-version", type=int)

    # Delete a mapping
    delete_parser = subparsers.add_parser("delete-mapping", help="Delete a mapping row")
    delete_parser.add_argument("--user", required=True, help="User id")
    delete_parser.add_argument("--object-type", required=True)
    delete_parser.add_argument("--source", required=True, help="Source label or internal name")
    delete_parser.add_argument("--target", help="Target label of the row")
    delete_parser.add_argument("--category", choices=["default", "custom", "userdefined"])

    # Rewrite a legacy document
    rewrite_parser = subparsers.add_parser("rewrite-mappings", help="Rewrite a legacy mapping document")
    rewrite_parser.add_argument("--user", required=True, help="User id")
    rewrite_parser.add_argument("--object-type", action="append", default=[],
                                help="Source catalog to match identities against (repeatable)")

    # Migrate properties
    migrate_parser = subparsers.add_parser("migrate-properties", help="Create missing properties in the target")
    migrate_parser.add_argument("--user", required=True, help="User id")
    migrate_parser.add_argument("--object-type", required=True, action="append", help="Object type (repeatable)")
    migrate_parser.add_argument("--dry-run", action="store_true", help="Simulate without changes")

    args = parser.parse_args(argv)

    # Set up logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    if not args.command:
        parser.print_help()
        return 1

    config = MigrationConfig.from_env()
    if getattr(args, "dry_run", False):
        config.dry_run = True
    services = Services.from_config(config)

    commands = {
        "authorize": run_authorize,
        "properties": run_properties,
        "mappings": run_mappings,
        "edit-mapping": run_edit_mapping,
        "delete-mapping": run_delete_mapping,
        "rewrite-mappings": run_rewrite,
        "migrate-properties": run_migration,
    }

    try:
        return commands[args.command](services, args)
    except CRMShiftError as e:
        logger.error(f"{e.code}: {e.message}")
        _print_json(e.to_dict())
        return 2


def run_authorize(services: Services, args) -> int:
    """Exchange an authorization code and persist the tokens."""
    tenant = Tenant(args.user, args.instance)
    session = services.tokens.exchange_code(tenant.session_key, args.code)
    _print_json(session.to_dict())
    return 0


def run_properties(services: Services, args) -> int:
    """List properties of one tenant."""
    tenant = Tenant(args.user, args.instance)
    definitions = services.catalog.list_properties(
        tenant,
        args.object_type,
        force_refresh=args.force_refresh,
        property_type=args.property_type,
    )
    print(f"\n=== {args.object_type} properties ({tenant.instance}) ===")
    for d in definitions:
        marker = " " if d.is_built_in else "*"
        print(f"  {marker} {d.internal_name}: {d.label} [{d.type}/{d.field_type}]")
    print(f"\nTotal: {len(definitions)}")
    return 0


def run_mappings(services: Services, args) -> int:
    """Print reconciled mapping rows."""
    catalog = None
    if args.live:
        catalog = services.catalog.list_many(Tenant.source(args.user), args.object_type)
    rows = services.mappings.load_rows(args.user, args.object_type, catalog=catalog)
    _print_json([r.to_dict() for r in rows])
    return 0


def run_edit_mapping(services: Services, args) -> int:
    """Edit one mapping row."""
    row = services.mappings.edit_mapping(
        args.user,
        args.object_type,
        args.source,
        args.target,
        category=args.category,
        expected_version=args.expected_version,
    )
    _print_json(row.to_dict())
    return 0


def run_delete_mapping(services: Services, args) -> int:
    """Delete one mapping row."""
    removed = services.mappings.delete_mapping(
        args.user,
        args.object_type,
        args.source,
        target=args.target,
        category=args.category,
    )
    print(f"Removed {removed} entries")
    return 0


def run_rewrite(services: Services, args) -> int:
    """Rewrite a legacy mapping document."""
    catalog = None
    if args.object_type:
        catalog = services.catalog.list_many(Tenant.source(args.user), args.object_type)
    _print_json(services.mappings.rewrite_legacy_document(args.user, catalog=catalog))
    return 0


def run_migration(services: Services, args) -> int:
    """Run a property migration."""
    result = services.orchestrator.migrate(args.user, args.object_type)

    print("\n" + "=" * 60)
    print("PROPERTY MIGRATION COMPLETE" + (" (DRY RUN)" if result.dry_run else ""))
    print("=" * 60)
    print(f"Created: {result.created_count}")
    print(f"Already Exists: {result.already_exists_count}")
    print(f"Failed: {result.failed_count}")
    print(f"Skipped: {len(result.skipped_list)}")
    for name in result.failed_list:
        print(f"  - {name}")
    if result.duration_seconds:
        print(f"Duration: {result.duration_seconds:.2f} seconds")
    return 1 if result.failed_count else 0


if __name__ == "__main__":
    sys.exit(main())
