"""Tests for event serialization, signing and key references."""

import hashlib
import json
from pathlib import Path

import pytest

from docrelay.document.graph import build_event_graph
from docrelay.document.parser import parse_document
from docrelay.exceptions import SigningError
from docrelay.secrets import CompositeSecretsProvider, EnvSecretsProvider, FileSecretsProvider
from docrelay.signing import (
    NostrSdkSigner,
    SignedEvent,
    compute_event_id,
    event_tags,
    load_signer,
    sign_record,
)

from .conftest import BOOK, FakeSigner

# Secret key 1; its public key is the x coordinate of the secp256k1 generator
SECRET_ONE = "0" * 63 + "1"
PUBKEY_ONE = "79be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"


def test_event_id_is_sha256_of_compact_serialization():
    tags = [["d", "café"], ["title", "Ünïcode"]]
    expected = hashlib.sha256(
        json.dumps([0, "ab" * 32, 1, 30041, tags, "body"], separators=(",", ":"), ensure_ascii=False).encode()
    ).hexdigest()

    assert compute_event_id("ab" * 32, 1, 30041, tags, "body") == expected


def test_index_tags_include_references_with_relay_hint():
    graph = build_event_graph(parse_document(BOOK), 3, author="ab" * 32, created_at=1)
    ch1 = graph.records[1]

    tags = event_tags(ch1, relay_hint="wss://relay.example")
    assert tags[0] == ["d", ch1.identifier]
    assert tags[1] == ["title", "Ch1"]
    assert ["auto-update", "no"] in tags
    a_tags = [t for t in tags if t[0] == "a"]
    assert a_tags == [
        ["a", f"30041:{'ab' * 32}:{ref.identifier}", "wss://relay.example"] for ref in ch1.references
    ]


def test_sign_record(signer: FakeSigner):
    graph = build_event_graph(parse_document(BOOK), 3, author=signer.public_key(), created_at=42)
    record = graph.records[2]

    event = sign_record(record, signer)
    assert event.pubkey == signer.public_key()
    assert event.created_at == 42
    assert event.kind == 30041
    assert event.content == "Section one."
    assert event.identifier == record.identifier
    assert event.id == compute_event_id(event.pubkey, 42, 30041, event.tags, event.content)
    assert signer.signed == [bytes.fromhex(event.id)]


def test_signed_event_wire_form_round_trip(signer: FakeSigner):
    graph = build_event_graph(parse_document("= Title\n\nHello"), created_at=7)
    event = sign_record(graph.records[0], signer)

    wire = event.to_dict()
    assert set(wire) == {"id", "pubkey", "created_at", "kind", "tags", "content", "sig"}
    assert SignedEvent.from_dict(wire) == event


def test_nostr_sdk_signer_derives_public_key():
    signer = NostrSdkSigner(SECRET_ONE)
    assert signer.public_key() == PUBKEY_ONE

    signature = signer.sign(hashlib.sha256(b"docrelay").digest())
    assert len(signature) == 128
    int(signature, 16)


def test_nostr_sdk_signer_rejects_bad_key():
    with pytest.raises(SigningError) as exc:
        NostrSdkSigner("not-a-key")
    assert "not-a-key" not in str(exc.value)


def test_load_signer_from_env_reference():
    provider = CompositeSecretsProvider([EnvSecretsProvider({"BOT_KEY": SECRET_ONE})])
    assert load_signer("env:BOT_KEY", provider).public_key() == PUBKEY_ONE


def test_load_signer_from_file_reference(tmp_path: Path):
    key_file = tmp_path / "key"
    key_file.write_text(f"\n{SECRET_ONE}\n", encoding="utf-8")

    provider = CompositeSecretsProvider([FileSecretsProvider()])
    assert load_signer(f"file:{key_file}", provider).public_key() == PUBKEY_ONE


def test_missing_key_fails():
    provider = CompositeSecretsProvider([EnvSecretsProvider({})])
    with pytest.raises(SigningError, match="env:NOSTR_BOT_KEY"):
        load_signer("env:NOSTR_BOT_KEY", provider)


def test_unsupported_reference_fails():
    with pytest.raises(SigningError, match="unsupported"):
        load_signer("vault:bot", CompositeSecretsProvider([EnvSecretsProvider({})]))
