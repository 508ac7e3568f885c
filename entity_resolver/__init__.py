"""Entity Resolver - links extracted vendors and line items to registry records.

Usage:
    from entity_resolver import EntityResolver, SQLiteRegistry

    resolver = EntityResolver(SQLiteRegistry(db_path))
    resolution = resolver.resolve_document(extraction)

    if resolution.needs_confirmation:
        # Show resolution.vendor (or resolution.vendor_error) for confirmation
        ...
"""

from entity_resolver.models import Material, Vendor
from entity_resolver.resolver import DocumentResolution, EntityResolver
from entity_resolver.strategies import (
    MatchStrategy,
    SubstringMatchStrategy,
    TokenSimilarityStrategy,
)
from entity_resolver.db import (
    Registry,
    SQLiteRegistry,
    init_registry_db,
    add_vendor,
    add_material,
    set_vendor_active,
)

__all__ = [
    # Models
    "Material",
    "Vendor",
    # Resolver
    "DocumentResolution",
    "EntityResolver",
    # Strategies
    "MatchStrategy",
    "SubstringMatchStrategy",
    "TokenSimilarityStrategy",
    # Database
    "Registry",
    "SQLiteRegistry",
    "init_registry_db",
    "add_vendor",
    "add_material",
    "set_vendor_active",
]
