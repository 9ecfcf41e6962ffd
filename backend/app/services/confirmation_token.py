"""
Transfer confirmation tokens.

A token is ``<unix_ts>.<payload_hash>.<signature>``: the payload hash binds
the token to one ``{fromWallet, toWallet, amount, memo}`` tuple and the
signature is HMAC-SHA256 over ``"<unix_ts>.<payload_hash>"`` with the shared
secret. Tokens older than the TTL, or stamped more than a minute ahead of the
server clock, are rejected server-side. Transfers above the threshold
additionally require the caller to echo ``CONFIRM``.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import time
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from app.config.settings import get_settings
from app.services.errors import ConfirmationError

_PAYLOAD_SALT = b"transfer-confirmation"
CONFIRMATION_PHRASE = "CONFIRM"


@dataclass(frozen=True)
class ConfirmationPayload:
    from_wallet: str
    to_wallet: str
    amount: str
    memo: str | None = None

    def canonical(self) -> bytes:
        body = {
            "amount": self.amount,
            "fromWallet": self.from_wallet,
            "memo": self.memo or "",
            "toWallet": self.to_wallet,
        }
        return json.dumps(body, sort_keys=True, separators=(",", ":")).encode("utf-8")


def payload_hash(payload: ConfirmationPayload) -> str:
    return hmac.new(_PAYLOAD_SALT, payload.canonical(), hashlib.sha256).hexdigest()


def _sign(secret: str, timestamp: str, digest: str) -> str:
    return hmac.new(secret.encode("utf-8"), f"{timestamp}.{digest}".encode("utf-8"), hashlib.sha256).hexdigest()


def generate_confirmation_token(secret: str, payload: ConfirmationPayload, now: float | None = None) -> str:
    timestamp = str(int(now if now is not None else time.time()))
    digest = payload_hash(payload)
    return f"{timestamp}.{digest}.{_sign(secret, timestamp, digest)}"


class ConfirmationVerifier:
    def __init__(
        self,
        secret: str,
        *,
        ttl_seconds: int = 600,
        threshold: Decimal | float = Decimal("1"),
        max_clock_skew_seconds: int = 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.secret = secret
        self.ttl_seconds = ttl_seconds
        self.threshold = Decimal(str(threshold))
        self.max_clock_skew_seconds = max_clock_skew_seconds
        self.clock = clock

    def requires_phrase(self, amount: str) -> bool:
        try:
            return Decimal(amount) > self.threshold
        except InvalidOperation:
            return False

    def verify(
        self,
        token: str | None,
        payload: ConfirmationPayload,
        user_confirmation: str | None = None,
    ) -> None:
        if not token:
            raise ConfirmationError("Confirmation token required")
        parts = token.split(".")
        if len(parts) != 3:
            raise ConfirmationError("Invalid confirmation token format")
        timestamp_str, digest, signature = parts
        try:
            timestamp = int(timestamp_str)
        except ValueError:
            raise ConfirmationError("Invalid confirmation token timestamp") from None

        now = self.clock()
        if now - timestamp > self.ttl_seconds:
            raise ConfirmationError("Confirmation token expired")
        if timestamp - now > self.max_clock_skew_seconds:
            raise ConfirmationError("Confirmation token issued in the future")

        if not hmac.compare_digest(digest, payload_hash(payload)):
            raise ConfirmationError("Confirmation token payload mismatch")
        if not hmac.compare_digest(signature, _sign(self.secret, timestamp_str, digest)):
            raise ConfirmationError("Confirmation token signature mismatch")

        if self.requires_phrase(payload.amount):
            if (user_confirmation or "").strip().upper() != CONFIRMATION_PHRASE:
                raise ConfirmationError(f"Type {CONFIRMATION_PHRASE} to approve transfers above {self.threshold}")


def get_confirmation_verifier() -> ConfirmationVerifier | None:
    """``None`` when no secret is configured; transfers are then not gated."""
    settings = get_settings()
    if not settings.confirmation_secret:
        return None
    return ConfirmationVerifier(
        settings.confirmation_secret,
        ttl_seconds=settings.confirmation_ttl_seconds,
        threshold=settings.confirmation_threshold,
    )
