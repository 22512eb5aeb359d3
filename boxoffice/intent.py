"""AES-256-GCM sealing of the payment intent carried as gateway checkout metadata.

Token: ``<nonce>:<ciphertext+tag>``, base64url without padding.
"""

import base64
import binascii
import hashlib
import json
import os
from datetime import datetime

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pydantic import BaseModel, Field, ValidationError

from .errors import DecryptionError, IntentTooLarge

NONCE_BYTES = 12
# Stripe rejects metadata values longer than 500 characters
MAX_TOKEN_CHARS = 500


class PaymentIntent(BaseModel):
    user_id: str
    event_id: str
    seat_numbers: list[str]
    total_price: float
    booking_date: datetime
    ticket_type: str = "standard"
    created_at: datetime
    hold_session_id: str | None = None


# short keys keep the sealed payload inside the metadata limit
_WIRE_KEYS = {
    "user_id": "u",
    "event_id": "e",
    "seat_numbers": "s",
    "total_price": "p",
    "booking_date": "d",
    "ticket_type": "t",
    "created_at": "c",
    "hold_session_id": "h",
}
_FIELD_NAMES = {v: k for k, v in _WIRE_KEYS.items()}


def _b64e(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64d(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


class IntentCodec:
    def __init__(self, secret: str):
        if not secret:
            raise ValueError("intent encryption key must not be empty")
        # any configured secret becomes a 256-bit key
        self._aead = AESGCM(hashlib.sha256(secret.encode("utf-8")).digest())

    def encode(self, intent: PaymentIntent) -> str:
        data = intent.model_dump(mode="json")
        wire = {_WIRE_KEYS[k]: v for k, v in data.items() if v is not None}
        plaintext = json.dumps(wire, separators=(",", ":"), sort_keys=True).encode("utf-8")

        nonce = os.urandom(NONCE_BYTES)
        ciphertext = self._aead.encrypt(nonce, plaintext, None)
        token = f"{_b64e(nonce)}:{_b64e(ciphertext)}"
        if len(token) > MAX_TOKEN_CHARS:
            raise IntentTooLarge(len(token), MAX_TOKEN_CHARS)
        return token

    def decode(self, token: str) -> PaymentIntent:
        if not token or token.count(":") != 1:
            raise DecryptionError("malformed intent token")
        nonce_part, cipher_part = token.split(":")
        try:
            nonce = _b64d(nonce_part)
            ciphertext = _b64d(cipher_part)
        except (binascii.Error, ValueError):
            raise DecryptionError("intent token is not valid base64")
        if len(nonce) != NONCE_BYTES:
            raise DecryptionError("intent token nonce has wrong length")

        try:
            plaintext = self._aead.decrypt(nonce, ciphertext, None)
        except InvalidTag:
            raise DecryptionError("intent token failed authentication")

        try:
            wire = json.loads(plaintext)
            return PaymentIntent(**{_FIELD_NAMES[k]: v for k, v in wire.items()})
        except (ValueError, KeyError, TypeError, ValidationError):
            raise DecryptionError("intent payload is not a valid payment intent")
