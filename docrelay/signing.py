"""Event serialization and signing.

The core never touches raw key material beyond handing it to a ``Signer``.
Event ids are the sha256 of the canonical serialization
``[0, pubkey, created_at, kind, tags, content]``.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from .exceptions import SigningError
from .models import EventRecord
from .secrets import CompositeSecretsProvider, SecretsProvider

logger = logging.getLogger(__name__)


class Signer(Protocol):
    """Signing oracle: holds a key, exposes only the public half."""

    def public_key(self) -> str:
        """Hex encoded x-only public key."""
        ...

    def sign(self, digest: bytes) -> str:
        """Schnorr signature over a 32-byte event id, hex encoded."""
        ...


class NostrSdkSigner:
    """Signer backed by nostr-sdk key handling (hex or nsec secret keys)."""

    def __init__(self, secret_key: str):
        from nostr_sdk import Keys

        try:
            self._keys = Keys.parse(secret_key)
        except Exception as e:  # nostr-sdk raises its own NostrSdkError
            # Never include the key in the message
            raise SigningError(f"unusable signing key: {type(e).__name__}") from None

    def public_key(self) -> str:
        return self._keys.public_key().to_hex()

    def sign(self, digest: bytes) -> str:
        return self._keys.sign_schnorr(digest)


def load_signer(key_ref: str, provider: SecretsProvider | None = None) -> Signer:
    """Resolve a key reference (e.g. "env:NOSTR_BOT_KEY") into a signer.

    Raises:
        SigningError: the reference is unsupported or resolves to nothing
    """
    provider = provider or CompositeSecretsProvider()
    if not provider.supports(key_ref):
        raise SigningError(f"unsupported key reference {key_ref!r} (expected env:NAME or file:PATH)")
    secret = provider.get(key_ref)
    if not secret:
        raise SigningError(f"signing key reference {key_ref} did not resolve to a value")
    signer = NostrSdkSigner(secret)
    logger.debug("Loaded signing key %s (pubkey %s)", key_ref, signer.public_key())
    return signer


@dataclass(frozen=True)
class UnsignedEvent:
    pubkey: str
    created_at: int
    kind: int
    tags: list[list[str]] = field(default_factory=list)
    content: str = ""

    def serialize(self) -> bytes:
        """Canonical serialization: compact JSON, UTF-8, no ASCII escaping."""
        payload = [0, self.pubkey, self.created_at, self.kind, self.tags, self.content]
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")

    def digest(self) -> bytes:
        return hashlib.sha256(self.serialize()).digest()

    @property
    def id(self) -> str:
        return self.digest().hex()


@dataclass(frozen=True)
class SignedEvent:
    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: list[list[str]]
    content: str
    sig: str
    identifier: str = ""  # "d" tag, kept for reporting

    def to_dict(self) -> dict[str, Any]:
        """Wire form of the event."""
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": self.tags,
            "content": self.content,
            "sig": self.sig,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SignedEvent:
        tags = [list(map(str, tag)) for tag in data.get("tags", [])]
        identifier = next((t[1] for t in tags if len(t) > 1 and t[0] == "d"), "")
        return cls(
            id=str(data["id"]),
            pubkey=str(data.get("pubkey", "")),
            created_at=int(data.get("created_at", 0)),
            kind=int(data.get("kind", 0)),
            tags=tags,
            content=str(data.get("content", "")),
            sig=str(data.get("sig", "")),
            identifier=identifier,
        )


def compute_event_id(pubkey: str, created_at: int, kind: int, tags: list[list[str]], content: str) -> str:
    return UnsignedEvent(pubkey, created_at, kind, tags, content).id


def event_tags(record: EventRecord, relay_hint: str = "") -> list[list[str]]:
    """Tags for a record: d, title, kind-specific metadata tags, then references."""
    tags = [["d", record.identifier], ["title", record.title]]
    tags += record.variant.to_tags()
    for ref in record.references:
        tags.append(["a", ref.address, relay_hint] if relay_hint else ["a", ref.address])
    return tags


def build_unsigned_event(record: EventRecord, pubkey: str, relay_hint: str = "") -> UnsignedEvent:
    return UnsignedEvent(
        pubkey=pubkey,
        created_at=record.created_at,
        kind=record.kind,
        tags=event_tags(record, relay_hint),
        content=record.body,
    )


def sign_record(record: EventRecord, signer: Signer, relay_hint: str = "") -> SignedEvent:
    """Serialize, hash and sign one compiled record."""
    unsigned = build_unsigned_event(record, signer.public_key(), relay_hint)
    digest = unsigned.digest()
    return SignedEvent(
        id=digest.hex(),
        pubkey=unsigned.pubkey,
        created_at=unsigned.created_at,
        kind=unsigned.kind,
        tags=unsigned.tags,
        content=unsigned.content,
        sig=signer.sign(digest),
        identifier=record.identifier,
    )
