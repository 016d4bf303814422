"""Custom exceptions used for feature gating enforcement."""
from __future__ import annotations

from typing import Any, Mapping, Optional

from fastapi import status

from ..errors import BillingError


class FeatureGateError(BillingError):
    """Represents an actionable gating failure surfaced to API callers.

    ``code`` varies per failure (``quota_exceeded``, ``entitlement_required``,
    ``no_active_subscription``) while the status stays 403.
    """

    code = "entitlement_required"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "This action is not included in your package."

    def __init__(
        self,
        code: str,
        message: Optional[str] = None,
        *,
        detail: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message, detail=detail)
        self.code = code
