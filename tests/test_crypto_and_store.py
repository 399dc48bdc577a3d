from __future__ import annotations

import hashlib

import pytest

from quietstats.core.errors import ConfigError, CryptoError
from quietstats.core.privacy.crypto import (
    ENCRYPTION_KEY_ENV,
    FieldCipher,
    IdentifierHasher,
    KeyMaterial,
    generate_key_bytes,
    get_key_material,
    init_key_material,
)
from quietstats.core.storage.models import EventFilter, EventRecord, Site


class _L:
    def __init__(self):
        self.warnings = []

    def info(self, *_a, **_k): ...
    def warning(self, msg, *_a, **_k):
        self.warnings.append(msg)
    def error(self, *_a, **_k): ...


def test_hash_is_deterministic_hex():
    h = IdentifierHasher()
    a = h.hash_identifier("user-123")
    assert a == h.hash_identifier("user-123")
    assert len(a) == 64 and all(c in "0123456789abcdef" for c in a)
    assert a == hashlib.sha256(b"user-123").hexdigest()
    assert IdentifierHasher(salt="s").hash_identifier("user-123") != a


def test_encrypt_round_trip(cipher):
    token = cipher.encrypt("203.0.113.9")
    assert token != "203.0.113.9"
    assert len(token.split(":")) == 3
    assert cipher.decrypt(token) == "203.0.113.9"
    # random nonce per call
    assert cipher.encrypt("203.0.113.9") != token
    assert cipher.decrypt_bytes(cipher.encrypt_bytes(b"\x00\x01raw")) == b"\x00\x01raw"


def test_empty_values_are_not_encrypted(cipher):
    assert cipher.encrypt(None) is None
    assert cipher.encrypt("") is None
    assert cipher.decrypt(None) is None


def test_tampered_ciphertext_rejected(cipher):
    nonce, tag, ct = cipher.encrypt("Mozilla/5.0").split(":")
    flipped = ("0" if ct[0] != "0" else "1") + ct[1:]
    with pytest.raises(CryptoError):
        cipher.decrypt(f"{nonce}:{tag}:{flipped}")


@pytest.mark.parametrize("token", ["abc", "zz:yy:xx", "00:00:00", "a:b"])
def test_malformed_token_rejected(cipher, token):
    with pytest.raises(CryptoError):
        cipher.decrypt(token)


def test_wrong_key_rejected(cipher):
    other = FieldCipher(KeyMaterial(key=generate_key_bytes()))
    with pytest.raises(CryptoError):
        other.decrypt(cipher.encrypt("secret"))


def test_missing_key_fails_startup(monkeypatch):
    monkeypatch.delenv(ENCRYPTION_KEY_ENV, raising=False)
    with pytest.raises(ConfigError):
        init_key_material(allow_ephemeral=False)
    with pytest.raises(ConfigError):
        get_key_material()


def test_ephemeral_key_logs_warning(monkeypatch):
    monkeypatch.delenv(ENCRYPTION_KEY_ENV, raising=False)
    log = _L()
    km = init_key_material(allow_ephemeral=True, logger=log)
    assert km.ephemeral is True
    assert log.warnings
    # initialized once per process
    assert init_key_material(hex_key=generate_key_bytes().hex()) is km


def test_key_from_env(monkeypatch):
    raw = generate_key_bytes()
    monkeypatch.setenv(ENCRYPTION_KEY_ENV, raw.hex())
    km = init_key_material()
    assert km.key == raw and km.ephemeral is False
    with pytest.raises(ConfigError):
        KeyMaterial.from_hex("nothex")
    with pytest.raises(ConfigError):
        KeyMaterial.from_hex("abcd")


def test_store_create_find_group_delete(store):
    for t in ["pageview", "pageview", "click"]:
        store.create(EventRecord(site_id="s1", type=t, properties={"a": 1}))
    store.create(EventRecord(site_id="s2", type="pageview"))

    found = store.find_many(EventFilter(site_id="s1"))
    assert len(found) == 3
    assert found[0].properties == {"a": 1}
    assert store.group_count_by_type(EventFilter(site_id="s1")) == {"pageview": 2, "click": 1}
    assert store.delete_where(EventFilter(site_id="s1", types=["click"])) == 1
    assert store.count(EventFilter(site_id="s1")) == 2
    assert store.count(EventFilter(site_id="s2")) == 1


def test_store_wire_shape(store):
    ev = store.create(EventRecord(site_id="s1", type="click", properties={"b": 2}))
    wire = ev.to_wire()
    assert set(wire) == {"id", "siteId", "type", "properties", "timestamp", "ip", "userAgent", "sessionId", "createdAt", "updatedAt"}
    assert wire["properties"] == '{"b": 2}'


def test_site_update_only_mutable_fields(store, cipher):
    store.create_site(Site(site_id="s1", name="Shop", api_key=cipher.encrypt("k")))
    updated = store.update_site("s1", {"name": "Shop 2", "api_key": "stolen", "retention_days": 7})
    assert updated.name == "Shop 2"
    assert updated.retention_days == 7
    assert cipher.decrypt(store.get_site("s1").api_key) == "k"
