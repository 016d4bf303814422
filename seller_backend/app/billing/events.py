"""Audit event sink used by the billing services."""
from __future__ import annotations

from typing import Protocol

from .models import BillingAuditEvent


class BillingEventLogger(Protocol):
    """Captures structured billing audit events."""

    def log(self, event: BillingAuditEvent) -> None:
        ...


__all__ = ["BillingEventLogger"]
