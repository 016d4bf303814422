"""Domain models for packages, prices and feature bundles."""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

_MINOR_UNIT_EXPONENTS: Dict[str, int] = {"INR": 2, "USD": 2, "EUR": 2, "JPY": 0}


class Money(BaseModel):
    """An amount in the currency's minor unit (paise for INR, cents for USD)."""

    amount: int = Field(ge=0, strict=True)
    currency: str = Field(min_length=3, max_length=3)

    model_config = ConfigDict(frozen=True)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()

    @classmethod
    def zero(cls, currency: str) -> "Money":
        return cls(amount=0, currency=currency)

    @property
    def is_zero(self) -> bool:
        return self.amount == 0

    def to_major(self) -> Decimal:
        """Return the amount in major units, e.g. rupees for INR."""

        exponent = _MINOR_UNIT_EXPONENTS.get(self.currency, 2)
        return Decimal(self.amount).scaleb(-exponent)

    def display(self) -> str:
        exponent = _MINOR_UNIT_EXPONENTS.get(self.currency, 2)
        return f"{self.to_major():.{exponent}f}"

    def __str__(self) -> str:
        return f"{self.display()} {self.currency}"


class SearchPlacement(str, Enum):
    """Search ranking tier granted by a package."""

    BASIC = "basic"
    PREMIUM = "premium"


@dataclass(frozen=True)
class FeatureBundle:
    """Normalized set of limits and flags granted by a package."""

    max_listings: int = 1
    max_photos: int = 3
    duration_days: int = 30
    boost_count: int = 0
    boost_duration_days: int = 0
    search_placement: SearchPlacement = SearchPlacement.BASIC
    badges: Tuple[str, ...] = field(default_factory=tuple)
    analytics: bool = False
    homepage_spotlights: int = 0
    priority_placement: bool = False

    def __post_init__(self) -> None:
        for name in ("max_listings", "max_photos", "boost_count", "boost_duration_days", "homepage_spotlights"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")
        if self.duration_days < 1:
            raise ValueError("duration_days must be >= 1")
        object.__setattr__(self, "search_placement", SearchPlacement(self.search_placement))
        object.__setattr__(self, "badges", tuple(self.badges))

    def to_flags(self) -> Dict[str, int | bool | str]:
        """Serialize bundle to flattened flag keys."""

        return {
            "listings.max": self.max_listings,
            "photos.max": self.max_photos,
            "boosts.count": self.boost_count,
            "boosts.duration_days": self.boost_duration_days,
            "search.placement": self.search_placement.value,
            "analytics.enabled": self.analytics,
            "spotlight.homepage": self.homepage_spotlights,
            "placement.priority": self.priority_placement,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_listings": self.max_listings,
            "max_photos": self.max_photos,
            "duration_days": self.duration_days,
            "boost_count": self.boost_count,
            "boost_duration_days": self.boost_duration_days,
            "search_placement": self.search_placement.value,
            "badges": list(self.badges),
            "analytics": self.analytics,
            "homepage_spotlights": self.homepage_spotlights,
            "priority_placement": self.priority_placement,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "FeatureBundle":
        known = {name: data[name] for name in cls.__dataclass_fields__ if name in data}
        unknown = set(data) - set(known)
        if unknown:
            raise ValueError(f"Unknown feature keys: {sorted(unknown)}")
        return cls(**known)


@dataclass(frozen=True)
class Package:
    """A named, catalog-defined bundle of price and feature limits."""

    name: str
    price: Money
    features: FeatureBundle
    display_name: str = ""

    @property
    def is_free(self) -> bool:
        return self.price.is_zero

    @property
    def duration_days(self) -> int:
        return self.features.duration_days
