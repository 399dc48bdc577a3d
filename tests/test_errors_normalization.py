from __future__ import annotations

import json

from quietstats.core.error_reporter import ErrorReporter, normalize_exception
from quietstats.core.errors import ConfigError, DeliveryError, SiteAlreadyExistsError


def test_unknown_exception_normalized_and_redacted(tmp_path):
    p = tmp_path / "errors.jsonl"
    r = ErrorReporter(path=str(p))
    try:
        raise RuntimeError("boom")
    except Exception as e:  # noqa: BLE001
        qe = r.report_exception(e, trace_id="t1", subsystem="web", context={"api_key": "SECRET", "x": 1})
        assert qe.code == "internal_error"
        assert qe.user_message
    obj = r.tail(1)[-1]
    assert obj["trace_id"] == "t1"
    assert obj["subsystem"] == "web"
    assert "SECRET" not in json.dumps(obj)
    assert "***REDACTED***" in json.dumps(obj)


def test_subsystem_mapping():
    assert isinstance(normalize_exception(ValueError("x"), subsystem="config", context={}), ConfigError)
    assert isinstance(normalize_exception(OSError("x"), subsystem="storage", context={}), DeliveryError)
    known = SiteAlreadyExistsError(site_id="s1")
    assert normalize_exception(known, subsystem="web", context={}) is known


def test_error_to_dict_shape():
    d = SiteAlreadyExistsError("Site s1 already exists", site_id="s1", encryption_key="k").to_dict()
    assert d["code"] == "site_exists"
    assert d["severity"] == "WARN"
    assert d["context"]["site_id"] == "s1"
    assert d["context"]["encryption_key"] == "***REDACTED***"
    assert str(SiteAlreadyExistsError("Site s1 already exists")) == "Site s1 already exists"
