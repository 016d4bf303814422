from __future__ import annotations

import dataclasses
import json

import pytest
from pydantic import ValidationError

from seller_backend.app.entitlements import (
    FeatureBundle,
    Money,
    PackageCatalog,
    SearchPlacement,
    default_catalog,
    load_catalog,
)
from seller_backend.app.errors import UnknownPackage


@pytest.mark.parametrize(
    "name, price, listings, photos, days, boosts, boost_days, placement, analytics",
    [
        ("Royal Stallion", 999900, 20, 20, 30, 3, 7, SearchPlacement.PREMIUM, True),
        ("Gallop", 499900, 10, 10, 30, 1, 5, SearchPlacement.BASIC, True),
        ("Trot", 199900, 5, 5, 30, 0, 0, SearchPlacement.BASIC, False),
        ("Starter", 0, 1, 3, 365, 0, 0, SearchPlacement.BASIC, False),
    ],
)
def test_default_catalog_matches_price_list(
    name, price, listings, photos, days, boosts, boost_days, placement, analytics
) -> None:
    package = default_catalog().get_package(name)

    assert package.price == Money(amount=price, currency="INR")
    assert package.features.max_listings == listings
    assert package.features.max_photos == photos
    assert package.features.duration_days == days
    assert package.features.boost_count == boosts
    assert package.features.boost_duration_days == boost_days
    assert package.features.search_placement == placement
    assert package.features.analytics is analytics


def test_unknown_package_raises_typed_error() -> None:
    with pytest.raises(UnknownPackage) as exc:
        default_catalog().get_package("Canter")

    assert exc.value.code == "unknown_package"
    assert exc.value.status_code == 400
    assert exc.value.payload["package"] == "Canter"


def test_catalog_is_read_only() -> None:
    catalog = default_catalog()

    with pytest.raises(TypeError):
        catalog.packages["Gallop"] = catalog.get_package("Trot")  # type: ignore[index]
    with pytest.raises(dataclasses.FrozenInstanceError):
        catalog.get_package("Gallop").features.max_listings = 99  # type: ignore[misc]


def test_fallback_package_is_starter() -> None:
    catalog = default_catalog()

    assert catalog.fallback_package.name == "Starter"
    assert catalog.fallback_package.is_free
    assert catalog.is_fallback("Starter")
    assert not catalog.is_fallback("Gallop")


def test_catalog_rejects_paid_fallback() -> None:
    packages = {"Gallop": default_catalog().get_package("Gallop")}

    with pytest.raises(ValueError):
        PackageCatalog(packages, fallback_package="Gallop")


def test_price_table_uses_minor_units_and_display_price() -> None:
    table = default_catalog().price_table()

    assert set(table) == {"Royal Stallion", "Gallop", "Trot", "Starter"}
    assert table["Gallop"]["price"] == 499900
    assert table["Gallop"]["currency"] == "INR"
    assert table["Gallop"]["displayPrice"] == "4999.00"
    assert table["Royal Stallion"]["features"]["search_placement"] == "premium"


def test_load_catalog_from_json(tmp_path) -> None:
    path = tmp_path / "catalog.json"
    path.write_text(
        json.dumps(
            {
                "version": "2024-06",
                "packages": {
                    "Starter": {"price": 0, "features": {"max_listings": 2, "duration_days": 365}},
                    "Canter": {
                        "price": 299900,
                        "currency": "inr",
                        "displayName": "Canter",
                        "features": {"max_listings": 7, "boost_count": 2, "analytics": True},
                    },
                },
            }
        ),
        encoding="utf-8",
    )

    catalog = load_catalog(str(path))

    assert catalog.version == "2024-06"
    assert catalog.get_package("Canter").price == Money(amount=299900, currency="INR")
    assert catalog.get_package("Canter").features.boost_count == 2
    assert catalog.fallback_package.features.max_listings == 2
    with pytest.raises(UnknownPackage):
        catalog.get_package("Gallop")


def test_load_catalog_rejects_unknown_feature_keys(tmp_path) -> None:
    path = tmp_path / "catalog.json"
    path.write_text(
        json.dumps({"packages": {"Starter": {"price": 0, "features": {"max_horses": 3}}}}),
        encoding="utf-8",
    )

    with pytest.raises(ValueError):
        load_catalog(str(path))


@pytest.mark.parametrize("price", [4999.99, 499900.0, "499900"])
def test_load_catalog_rejects_prices_outside_minor_units(tmp_path, price) -> None:
    path = tmp_path / "catalog.json"
    path.write_text(
        json.dumps(
            {
                "packages": {
                    "Starter": {"price": 0, "features": {"max_listings": 1}},
                    "Gallop": {"price": price, "features": {"max_listings": 10}},
                }
            }
        ),
        encoding="utf-8",
    )

    with pytest.raises(ValidationError):
        load_catalog(str(path))


def test_load_catalog_without_path_uses_defaults() -> None:
    assert load_catalog(None).get_package("Trot").price.amount == 199900


def test_money_requires_integer_minor_units() -> None:
    with pytest.raises(ValidationError):
        Money(amount=4999.0, currency="INR")
    with pytest.raises(ValidationError):
        Money(amount=-1, currency="INR")

    money = Money(amount=499900, currency="inr")
    assert money.currency == "INR"
    assert str(money) == "4999.00 INR"
    assert Money.zero("INR").is_zero


def test_feature_bundle_validation() -> None:
    with pytest.raises(ValueError):
        FeatureBundle(max_listings=-1)
    with pytest.raises(ValueError):
        FeatureBundle(duration_days=0)

    bundle = FeatureBundle.from_mapping({"search_placement": "premium", "badges": ["Top Seller"]})
    assert bundle.search_placement is SearchPlacement.PREMIUM
    assert bundle.badges == ("Top Seller",)
    assert bundle.to_flags()["search.placement"] == "premium"
