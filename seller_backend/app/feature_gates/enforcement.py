"""Helpers for enforcing entitlement checks on API and service layers."""
from __future__ import annotations

from typing import Mapping

from .exceptions import FeatureGateError


def require_entitlement(
    feature_flags: Mapping[str, object],
    flag: str,
    *,
    error_code: str = "entitlement_required",
    message: str | None = None,
) -> None:
    """Ensure a feature flag from a granted bundle is enabled.

    Parameters
    ----------
    feature_flags:
        Flattened flags as produced by ``FeatureBundle.to_flags()``, e.g.
        ``"analytics.enabled"`` or ``"boosts.count"``.
    flag:
        The flag that must be truthy. Numeric flags pass when non-zero.
    error_code:
        Error code surfaced when the flag is missing or disabled.
    message:
        Optional human-friendly message; defaults to one naming the flag.
    """

    if feature_flags.get(flag):
        return
    raise FeatureGateError(
        code=error_code,
        message=message or f"Your package does not include '{flag}'.",
        detail={"missing_entitlement": flag},
    )
