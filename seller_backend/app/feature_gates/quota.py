"""Quota evaluation utilities for feature gating."""
from __future__ import annotations

from dataclasses import dataclass

from .exceptions import FeatureGateError


@dataclass(frozen=True)
class QuotaEvaluation:
    """Represents the outcome of a count-based quota check."""

    resource: str
    limit: int
    used: int
    requested: int
    allowed: bool

    @property
    def projected(self) -> int:
        return self.used + self.requested

    @property
    def remaining(self) -> int:
        return max(self.limit - self.used, 0)

    def to_dict(self) -> dict[str, int | bool | str]:
        """Serialize the evaluation for logging or API responses."""

        return {
            "resource": self.resource,
            "limit": self.limit,
            "used": self.used,
            "requested": self.requested,
            "remaining": self.remaining,
            "allowed": self.allowed,
        }


def evaluate_quota(*, resource: str, used: int, limit: int, requested: int = 1) -> QuotaEvaluation:
    """Determine whether ``requested`` more units fit under ``limit``."""

    used = max(used, 0)
    requested = max(requested, 0)
    return QuotaEvaluation(
        resource=resource,
        limit=limit,
        used=used,
        requested=requested,
        allowed=used + requested <= limit,
    )


def assert_quota(
    *,
    resource: str,
    used: int,
    limit: int,
    requested: int = 1,
    error_code: str = "quota_exceeded",
) -> QuotaEvaluation:
    """Raise when the operation would exceed the quota."""

    evaluation = evaluate_quota(resource=resource, used=used, limit=limit, requested=requested)
    if not evaluation.allowed:
        raise FeatureGateError(
            code=error_code,
            message=f"Your package allows {limit} {resource}.",
            detail={"resource": resource, "limit": limit, "used": evaluation.used},
        )
    return evaluation
