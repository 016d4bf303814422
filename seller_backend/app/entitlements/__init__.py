"""Package catalog and feature bundle definitions."""

from .catalog import (
    DEFAULT_CATALOG_VERSION,
    STARTER_PACKAGE,
    PackageCatalog,
    default_catalog,
    load_catalog,
)
from .models import FeatureBundle, Money, Package, SearchPlacement

__all__ = [
    "DEFAULT_CATALOG_VERSION",
    "STARTER_PACKAGE",
    "FeatureBundle",
    "Money",
    "Package",
    "PackageCatalog",
    "SearchPlacement",
    "default_catalog",
    "load_catalog",
]
