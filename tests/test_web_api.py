from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from quietstats.core.config.manager import ConfigManager
from quietstats.core.privacy.crypto import KeyMaterial, generate_key_bytes
from quietstats.core.storage.models import EventFilter
from quietstats.web.api import create_app
from quietstats.web.context import build_context


def _client(tmp_config_root, *, web_overrides=None):
    cm = ConfigManager(fs=tmp_config_root, logger=None)
    cm.load_all()
    if web_overrides:
        web = cm.get().web.model_dump()
        web.update(web_overrides)
        cm.save_non_sensitive("web.json", web)
    ctx = build_context(cm.get(), fs=tmp_config_root, key_material=KeyMaterial(key=generate_key_bytes()))
    return TestClient(create_app(ctx)), ctx


@pytest.fixture
def client(tmp_config_root):
    return _client(tmp_config_root)


def _register(c, site_id="shop", **extra):
    return c.post("/sites", json={"siteId": site_id, "name": "Shop", **extra})


def test_root_and_health(client):
    c, _ = client
    assert c.get("/").text == "quietstats API"
    r = c.get("/health")
    assert r.status_code == 200 and r.json()["status"] == "ok"
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert r.headers["X-Frame-Options"] == "DENY"
    assert "default-src 'none'" in r.headers["Content-Security-Policy"]
    assert r.headers["X-RateLimit-Limit"] == "100"
    assert r.headers["X-RateLimit-Remaining"] == "98"


def test_register_get_update_site(client):
    c, _ = client
    r = _register(c, domain="shop.example", retentionDays=14)
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["apiKey"]
    assert body["site"]["retentionDays"] == 14

    assert _register(c).status_code == 409
    got = c.get("/sites/shop").json()
    assert got["name"] == "Shop" and "apiKey" not in got

    r = c.patch("/sites/shop", json={"settings": {"trackIP": False}, "retentionDays": 60})
    assert r.status_code == 200
    assert r.json()["site"]["settings"] == {"trackIP": False}
    assert c.get("/sites/missing").status_code == 404
    assert c.patch("/sites/missing", json={"name": "x"}).status_code == 404


def test_post_event_stores_sanitized_encrypted(client):
    c, ctx = client
    _register(c)
    r = c.post(
        "/events",
        headers={"X-Site-ID": "shop", "X-Forwarded-For": "203.0.113.5, 10.0.0.1", "User-Agent": "UA/1.0"},
        json={"type": "signup", "properties": {"email": "x@y.z", "userId": "u1", "plan": "pro"}, "sessionId": "sess-1"},
    )
    assert r.status_code == 200
    ev = r.json()["event"]
    assert ev["siteId"] == "shop"
    props = json.loads(ev["properties"])
    assert "email" not in props and props["plan"] == "pro"
    cipher_ip = ctx.store.find_many(EventFilter(site_id="shop"))[0].ip
    assert ctx.sites.cipher.decrypt(cipher_ip) == "203.0.113.5"
    assert ctx.sites.cipher.decrypt(ev["userAgent"]) == "UA/1.0"


def test_post_event_respects_track_ip_setting(client):
    c, ctx = client
    _register(c, settings={"trackIP": False})
    c.post("/events", headers={"X-Site-ID": "shop", "X-Real-IP": "203.0.113.9"}, json={"type": "click", "properties": {}})
    assert ctx.store.find_many(EventFilter(site_id="shop"))[0].ip is None


def test_post_event_errors(client):
    c, _ = client
    _register(c)
    r = c.post("/events", json={"type": "click", "properties": {}})
    assert r.status_code == 400 and r.json()["detail"] == "Site ID is required"
    r = c.post("/events", headers={"X-Site-ID": "shop"}, json={"type": "bad name", "properties": {}})
    assert r.status_code == 400 and r.json()["code"] == "invalid_event_name"
    r = c.post("/events", headers={"X-Site-ID": "shop"}, json={"type": "ok", "properties": {"k": None}})
    assert r.status_code == 400 and r.json()["code"] == "invalid_properties"
    r = c.post("/events", headers={"X-Site-ID": "unknown"}, json={"type": "ok", "properties": {}})
    assert r.status_code == 404


def test_insights_and_erasure(client):
    c, ctx = client
    _register(c)
    for t in ["pageview", "pageview", "click"]:
        c.post("/events", headers={"X-Site-ID": "shop"}, json={"type": t, "properties": {"userId": "alice"}})
    c.post("/events", headers={"X-Site-ID": "shop"}, json={"type": "click", "properties": {"userId": "bob"}})

    out = c.get("/insights/shop").json()
    assert out["pageViews"] == 2 and out["totalEvents"] == 4
    assert out["events"][0]["count"] == 2
    only = c.get("/insights/shop", params={"eventTypes": "click"}).json()
    assert only["totalEvents"] == 2

    assert c.delete("/events/shop").status_code == 400
    r = c.delete("/events/shop", params={"userId": "alice"})
    assert r.status_code == 200 and r.json()["deleted"] == 3
    assert ctx.store.count(EventFilter(site_id="shop")) == 1


def test_origin_allow_list(client):
    c, _ = client
    r = c.get("/health", headers={"Origin": "https://evil.example"})
    assert r.status_code == 403
    assert r.headers["X-Frame-Options"] == "DENY"
    ok = c.get("/health", headers={"Origin": "http://localhost:3000"})
    assert ok.status_code == 200
    assert ok.headers["Access-Control-Allow-Origin"] == "http://localhost:3000"
    pre = c.options("/events", headers={"Origin": "http://localhost:3000"})
    assert pre.status_code == 204


def test_rate_limit(tmp_config_root):
    c, _ = _client(tmp_config_root, web_overrides={"rate_limits": {"per_ip_per_minute": 3}})
    codes = [c.get("/health", headers={"X-Forwarded-For": "198.51.100.1"}).status_code for _ in range(4)]
    assert codes == [200, 200, 200, 429]
    # other clients have their own window
    assert c.get("/health", headers={"X-Forwarded-For": "198.51.100.2"}).status_code == 200


def test_payload_too_large(client):
    c, _ = client
    _register(c)
    big = {"type": "click", "properties": {f"k{i}": "x" * 1000 for i in range(100)}, "padding": "y" * 10000}
    r = c.post("/events", headers={"X-Site-ID": "shop", "Content-Type": "application/json"}, content=json.dumps(big))
    assert r.status_code == 413
    assert r.json()["code"] == "payload_too_large"
