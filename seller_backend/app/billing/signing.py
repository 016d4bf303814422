"""HMAC signatures attached to processor payment callbacks."""
from __future__ import annotations

import hashlib
import hmac


class PaymentSigner:
    """Signs and checks ``order_ref|payment_ref`` with the processor key secret."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("secret must be provided")
        self._secret = secret.encode("utf-8")

    def sign(self, order_ref: str, payment_ref: str) -> str:
        message = f"{order_ref}|{payment_ref}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def verify(self, order_ref: str, payment_ref: str, signature: str) -> bool:
        if not signature:
            return False
        expected = self.sign(order_ref, payment_ref)
        return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


__all__ = ["PaymentSigner"]
