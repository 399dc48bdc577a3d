from __future__ import annotations

from quietstats.core.privacy.crypto import IdentifierHasher, is_tagged_digest
from quietstats.core.privacy.sanitizer import Sanitizer, is_pii_key, sanitize_text, sanitize_url, strip_tracking_params


def test_pii_keys_removed_and_input_untouched():
    s = Sanitizer()
    props = {"email": "a@b.c", "userPhone": "555", "firstName": "Jo", "homeAddress": "x", "clientIp": "1.2.3.4", "password": "p", "SSN": "1", "plan": "pro"}
    out = s.sanitize(props)
    assert out == {"plan": "pro"}
    assert props["email"] == "a@b.c"


def test_substring_heuristic_over_matches():
    # plain substring match: "description" contains "ip"
    assert is_pii_key("description")
    assert is_pii_key("fileName")
    assert not is_pii_key("plan")
    assert not is_pii_key("referrer")


def test_tracking_keys_removed():
    out = Sanitizer().sanitize({"utm_source": "x", "utm_medium": "y", "utm_campaign": "z", "utm_term": "t", "utm_content": "c", "ref": "r"})
    assert out == {"ref": "r"}


def test_url_tracking_params_stripped():
    out = Sanitizer().sanitize({"url": "http://example.com?utm_source=test&utm_medium=email&name=john"})
    assert out["url"] == "http://example.com/?name=john"


def test_url_trailing_slash_dropped():
    assert strip_tracking_params("https://example.com/page/?utm_source=x") == "https://example.com/page"
    assert strip_tracking_params("https://example.com") == "https://example.com"


def test_invalid_url_left_untouched():
    out = Sanitizer().sanitize({"url": "not a url?utm_source=x"})
    assert out["url"] == "not a url?utm_source=x"
    assert strip_tracking_params("http://host:notaport/") is None


def test_user_ids_hashed():
    h = IdentifierHasher()
    out = Sanitizer(hasher=h).sanitize({"userId": "u-1", "customerId": 7, "accountId": "acc", "other": "keep"})
    assert out["userId"] == "sha256:" + h.hash_identifier("u-1")
    assert out["customerId"] == h.tagged(7)
    assert is_tagged_digest(out["accountId"])
    assert out["other"] == "keep"


def test_hashing_can_be_disabled():
    out = Sanitizer(hash_user_ids=False).sanitize({"userId": "u-1"})
    assert out["userId"] == "u-1"


def test_sanitize_is_idempotent():
    s = Sanitizer(hasher=IdentifierHasher(salt="pepper"))
    props = {"userId": "u-1", "email": "x", "url": "https://a.example/x/?utm_term=1&q=2", "utm_source": "s", "n": 1}
    once = s.sanitize(props)
    assert s.sanitize(once) == once


def test_sanitize_never_raises_on_junk():
    s = Sanitizer()
    assert s.sanitize(None) == {}
    assert s.sanitize(["a"]) == {}
    assert s.sanitize({"url": 123}) == {"url": 123}


def test_stored_user_ref_matches_sanitized_form():
    s = Sanitizer(hasher=IdentifierHasher(salt="x"))
    out = s.sanitize({"userId": "abc"})
    assert s.stored_user_ref("abc") == out["userId"]
    assert Sanitizer(hash_user_ids=False).stored_user_ref("abc") == "abc"


def test_sanitize_text_and_url():
    assert sanitize_text("  <b>Shop</b>\x00 ") == "&lt;b&gt;Shop&lt;/b&gt;"
    assert len(sanitize_text("x" * 500)) == 200
    assert sanitize_url("https://user:pw@example.com/a?b=1") == "https://example.com/a?b=1"
    assert sanitize_url("javascript:alert(1)") is None
    assert sanitize_url("http://[::1]:8080/x") == "http://[::1]:8080/x"
    assert sanitize_url(None) is None


def test_falsy_and_digest_shaped_ids_are_hashed():
    h = IdentifierHasher()
    out = Sanitizer(hasher=h).sanitize({"userId": 0, "customerId": "f" * 64, "accountId": ""})
    assert out["userId"] == h.tagged(0)
    assert out["customerId"] == h.tagged("f" * 64)
    assert out["accountId"] == ""
