"""
CRM Schema Migration

Reconciles and migrates CRM property schema between two independently
authenticated tenant accounts (a source and a target instance).

Supports:
- OAuth token lifecycle with proactive, single-flight refresh
- Cached property catalogs with object-type normalization
- A de-duplicated, edit-safe mapping table over defaults, live custom
  properties and a persisted mapping document
- Idempotent creation of user-defined properties in the target tenant
"""

__version__ = "0.1.0"
