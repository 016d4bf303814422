"""Static catalog definitions for seller subscription packages."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional

from ..errors import UnknownPackage
from .models import FeatureBundle, Money, Package, SearchPlacement

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_VERSION = "2024-01"
DEFAULT_CURRENCY = "INR"
STARTER_PACKAGE = "Starter"

ROYAL_STALLION_BUNDLE = FeatureBundle(
    max_listings=20,
    max_photos=20,
    duration_days=30,
    boost_count=3,
    boost_duration_days=7,
    search_placement=SearchPlacement.PREMIUM,
    badges=("Top Seller", "Premium Stable"),
    analytics=True,
    homepage_spotlights=5,
    priority_placement=True,
)

GALLOP_BUNDLE = FeatureBundle(
    max_listings=10,
    max_photos=10,
    duration_days=30,
    boost_count=1,
    boost_duration_days=5,
    search_placement=SearchPlacement.BASIC,
    badges=("Verified Seller",),
    analytics=True,
    homepage_spotlights=2,
)

TROT_BUNDLE = FeatureBundle(
    max_listings=5,
    max_photos=5,
    duration_days=30,
    badges=("Basic Seller",),
)

STARTER_BUNDLE = FeatureBundle(
    max_listings=1,
    max_photos=3,
    duration_days=365,
)


def _default_packages() -> Dict[str, Package]:
    return {
        "Royal Stallion": Package(
            name="Royal Stallion",
            display_name="Royal Stallion",
            price=Money(amount=999900, currency=DEFAULT_CURRENCY),
            features=ROYAL_STALLION_BUNDLE,
        ),
        "Gallop": Package(
            name="Gallop",
            display_name="Gallop",
            price=Money(amount=499900, currency=DEFAULT_CURRENCY),
            features=GALLOP_BUNDLE,
        ),
        "Trot": Package(
            name="Trot",
            display_name="Trot",
            price=Money(amount=199900, currency=DEFAULT_CURRENCY),
            features=TROT_BUNDLE,
        ),
        STARTER_PACKAGE: Package(
            name=STARTER_PACKAGE,
            display_name="Starter",
            price=Money.zero(DEFAULT_CURRENCY),
            features=STARTER_BUNDLE,
        ),
    }


class PackageCatalog:
    """Read-only lookup of packages, fixed for the lifetime of the process."""

    def __init__(
        self,
        packages: Mapping[str, Package],
        *,
        version: str = DEFAULT_CATALOG_VERSION,
        fallback_package: str = STARTER_PACKAGE,
    ) -> None:
        if fallback_package not in packages:
            raise ValueError(f"fallback package {fallback_package!r} missing from catalog")
        if not packages[fallback_package].is_free:
            raise ValueError("fallback package must be free")
        self._packages: Mapping[str, Package] = MappingProxyType(dict(packages))
        self._version = version
        self._fallback_package = fallback_package

    @property
    def version(self) -> str:
        return self._version

    @property
    def fallback_package(self) -> Package:
        """The free package sellers are downgraded to when paid coverage lapses."""

        return self._packages[self._fallback_package]

    @property
    def packages(self) -> Mapping[str, Package]:
        return self._packages

    def __iter__(self) -> Iterator[Package]:
        return iter(self._packages.values())

    def __contains__(self, name: object) -> bool:
        return name in self._packages

    def get_package(self, name: str) -> Package:
        """Return a package definition, raising if unsupported."""

        try:
            return self._packages[name]
        except KeyError as exc:
            raise UnknownPackage(name) from exc

    def is_fallback(self, name: Optional[str]) -> bool:
        return name == self._fallback_package

    def price_table(self) -> Dict[str, Dict[str, Any]]:
        return {
            package.name: {
                "price": package.price.amount,
                "currency": package.price.currency,
                "displayPrice": package.price.display(),
                "features": package.features.to_dict(),
            }
            for package in self._packages.values()
        }


def default_catalog() -> PackageCatalog:
    return PackageCatalog(_default_packages())


def load_catalog(path: Optional[str] = None) -> PackageCatalog:
    """Build the catalog from a JSON file, or the built-in table when no path is set.

    The file layout is::

        {
          "version": "2024-06",
          "fallbackPackage": "Starter",
          "packages": {
            "Gallop": {"price": 499900, "currency": "INR", "features": {...}}
          }
        }
    """

    if not path:
        return default_catalog()

    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    entries = raw.get("packages")
    if not isinstance(entries, dict) or not entries:
        raise ValueError("catalog file must define a non-empty 'packages' object")

    packages: Dict[str, Package] = {}
    for name, entry in entries.items():
        packages[name] = Package(
            name=name,
            display_name=str(entry.get("displayName", name)),
            price=Money(amount=entry["price"], currency=str(entry.get("currency", DEFAULT_CURRENCY))),
            features=FeatureBundle.from_mapping(entry.get("features") or {}),
        )

    catalog = PackageCatalog(
        packages,
        version=str(raw.get("version", DEFAULT_CATALOG_VERSION)),
        fallback_package=str(raw.get("fallbackPackage", STARTER_PACKAGE)),
    )
    logger.info(
        "Loaded package catalog",
        extra={"catalog_path": path, "catalog_version": catalog.version, "package_count": len(packages)},
    )
    return catalog
