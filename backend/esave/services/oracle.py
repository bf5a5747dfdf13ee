from __future__ import annotations
import hashlib
import hmac
from typing import Protocol
from esave.services.keys import composite_key


class Oracle(Protocol):
    """Attestation service vouching for meter readings."""

    def verify_signature(self, payload: bytes, signature: bytes) -> bool: ...


def encodable(text: str) -> bool:
    """False for strings utf-8 cannot carry, e.g. lone surrogates."""
    try:
        text.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def reading_payload(participant: str, challenge_id: int, kwh_reading: int, sequence: int) -> bytes:
    """
    Bytes the oracle signs for one meter reading.

    ``sequence`` is the reading's 0-based index in the participant's period, so a
    signature is only valid for the slot it was issued for.
    """
    return composite_key("reading", participant, challenge_id, kwh_reading, sequence).encode("utf-8")


class HmacOracle:
    """Shared-secret oracle: signature = HMAC-SHA256(secret, payload)."""

    def __init__(self, secret: str | bytes):
        self._secret = secret.encode("utf-8") if isinstance(secret, str) else bytes(secret)

    def sign(self, payload: bytes) -> bytes:
        return hmac.new(self._secret, payload, hashlib.sha256).digest()

    def verify_signature(self, payload: bytes, signature: bytes) -> bool:
        if not signature:
            return False
        return hmac.compare_digest(self.sign(payload), bytes(signature))
