"""Payload codec - stable JSON wire shape plus AES-GCM sealing per device."""

from __future__ import annotations

import base64
import binascii
import json
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from pydantic import ValidationError

from ..errors import CodecError, PayloadError
from ..schemas.payloads import PAYLOAD_TYPES, WirePayload

_NONCE_SIZE = 12


def derive_key(seed_hex: str, *, app_id: str, user_id: str) -> bytes:
    """Derive the 256-bit payload key from the shared hex seed."""
    try:
        seed = bytes.fromhex(seed_hex.strip())
    except ValueError as exc:
        raise CodecError(f"Invalid key seed: {exc}") from exc
    if not seed:
        raise CodecError("Empty key seed")
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=app_id.encode("utf-8"),
        info=f"pcrm-vault-v1|{user_id}".encode("utf-8"),
    )
    return hkdf.derive(seed)


def _associated_data(entity: str, op: str, entity_id: str) -> bytes:
    return f"{entity}|{op}|{entity_id}".encode("utf-8")


def encode_payload(payload: WirePayload) -> bytes:
    """Serialize a payload; nullable fields that are unset are omitted."""
    return payload.model_dump_json(exclude_none=True).encode("utf-8")


def decode_payload(entity: str, data: bytes) -> WirePayload | None:
    """Parse plaintext payload bytes for ``entity``.

    Returns None for entity tags this build does not know about.
    """
    model = PAYLOAD_TYPES.get(entity)
    if model is None:
        return None
    try:
        raw = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise PayloadError(f"Invalid {entity} payload JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise PayloadError(f"Invalid {entity} payload: expected object")
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise PayloadError(f"Invalid {entity} payload: {exc.errors()[0]['msg']}") from exc


class PayloadCodec:
    """Seals and opens payload bytes with one device key.

    The envelope metadata (entity, op, entity_id) is bound as associated
    data, so a ciphertext cannot be replayed under a different envelope.
    """

    def __init__(self, key: bytes) -> None:
        if len(key) != 32:
            raise CodecError("Payload key must be 32 bytes")
        self._aead = AESGCM(key)

    @classmethod
    def from_seed(cls, seed_hex: str, *, app_id: str, user_id: str) -> PayloadCodec:
        return cls(derive_key(seed_hex, app_id=app_id, user_id=user_id))

    def seal(self, entity: str, op: str, entity_id: str, plaintext: bytes) -> str:
        nonce = os.urandom(_NONCE_SIZE)
        ciphertext = self._aead.encrypt(nonce, plaintext, _associated_data(entity, op, entity_id))
        return base64.b64encode(nonce + ciphertext).decode("ascii")

    def open(self, entity: str, op: str, entity_id: str, sealed: str) -> bytes:
        try:
            blob = base64.b64decode(sealed, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise CodecError(f"Invalid ciphertext encoding for {entity}:{entity_id}") from exc
        if len(blob) <= _NONCE_SIZE:
            raise CodecError(f"Ciphertext too short for {entity}:{entity_id}")
        nonce, ciphertext = blob[:_NONCE_SIZE], blob[_NONCE_SIZE:]
        try:
            return self._aead.decrypt(nonce, ciphertext, _associated_data(entity, op, entity_id))
        except InvalidTag as exc:
            raise CodecError(f"Failed to decrypt {entity}:{entity_id}") from exc
