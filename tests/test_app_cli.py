from __future__ import annotations

import json

import app
from quietstats.core.privacy.crypto import ENCRYPTION_KEY_ENV, generate_key_bytes


def test_keygen_prints_hex_key(capsys):
    assert app.main(["keygen"]) == 0
    out = capsys.readouterr().out.strip()
    assert len(out) == 64
    bytes.fromhex(out)


def test_config_command_writes_defaults(tmp_path, capsys):
    assert app.main(["--root", str(tmp_path), "config"]) == 0
    cfg = json.loads(capsys.readouterr().out)
    assert cfg["pipeline"]["consent_required"] is True
    assert (tmp_path / "config" / "pipeline.json").exists()


def test_sweep_requires_key(tmp_path, monkeypatch):
    monkeypatch.delenv(ENCRYPTION_KEY_ENV, raising=False)
    assert app.main(["--root", str(tmp_path), "sweep"]) == 2


def test_sweep_runs_once(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv(ENCRYPTION_KEY_ENV, generate_key_bytes().hex())
    assert app.main(["--root", str(tmp_path), "sweep"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["ok"] is True and out["deleted"] == 0
    assert (tmp_path / "runtime" / "events.sqlite").exists()
