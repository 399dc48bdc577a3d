from __future__ import annotations

import json
import os
import shutil
import tempfile
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class ReadResult:
    ok: bool
    data: Dict[str, Any]
    error: Optional[str] = None

    @property
    def corrupt(self) -> bool:
        return bool(self.error and self.error.startswith("corrupt_json"))


def read_json_file(path: str) -> ReadResult:
    """Config and consent files are JSON objects; anything else is reported, never raised."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            obj = json.load(f)
    except FileNotFoundError:
        return ReadResult(ok=False, data={}, error="missing")
    except json.JSONDecodeError as e:
        return ReadResult(ok=False, data={}, error=f"corrupt_json:{e}")
    except OSError as e:
        return ReadResult(ok=False, data={}, error=str(e))
    if not isinstance(obj, dict):
        return ReadResult(ok=False, data={}, error="not_object")
    return ReadResult(ok=True, data=obj)


def _stash(path: str, backups_dir: str, reason: str, *, move: bool = False) -> Optional[str]:
    os.makedirs(backups_dir, exist_ok=True)
    name = f"{os.path.basename(path)}.{time.strftime('%Y%m%d_%H%M%S', time.gmtime())}.{reason}.json"
    dst = os.path.join(backups_dir, name)
    try:
        (shutil.move if move else shutil.copy2)(path, dst)
    except OSError:
        return None
    return dst


def prune_backups(backups_dir: str, filename: str, *, keep: int) -> None:
    prefix = f"{filename}."
    olds = sorted(
        (os.path.join(backups_dir, f) for f in os.listdir(backups_dir) if f.startswith(prefix)),
        key=os.path.getmtime,
        reverse=True,
    )
    for p in olds[max(0, keep):]:
        try:
            os.remove(p)
        except OSError:
            continue


def atomic_write_json(path: str, data: Dict[str, Any], backups_dir: Optional[str] = None, *, max_backups: int = 10) -> None:
    """
    Write via a temp file in the same directory and os.replace.
    With `backups_dir`, the previous version is copied there first.
    """
    parent = os.path.dirname(path) or "."
    os.makedirs(parent, exist_ok=True)
    if backups_dir and os.path.exists(path):
        _stash(path, backups_dir, "prewrite")
        prune_backups(backups_dir, os.path.basename(path), keep=max_backups)
    fd, tmp = tempfile.mkstemp(prefix=".tmp_", suffix=".json", dir=parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, sort_keys=True)
            f.write("\n")
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            os.remove(tmp)


def recover_from_corrupt(path: str, backups_dir: str, last_known_good_dir: str, *, max_backups: int = 10) -> tuple[Dict[str, Any], bool]:
    """
    Quarantine a corrupt file as backups/<name>.<ts>.corrupt.json and restore
    last_known_good/<name> when there is one. Returns (data, recovered).
    """
    if os.path.exists(path):
        _stash(path, backups_dir, "corrupt", move=True)
    good = read_json_file(os.path.join(last_known_good_dir, os.path.basename(path)))
    if not good.ok:
        return {}, False
    atomic_write_json(path, good.data, backups_dir, max_backups=max_backups)
    return good.data, True


def snapshot_last_known_good(config_dir: str, last_known_good_dir: str, names: list[str]) -> None:
    os.makedirs(last_known_good_dir, exist_ok=True)
    for name in names:
        src = os.path.join(config_dir, name)
        if os.path.isfile(src):
            shutil.copy2(src, os.path.join(last_known_good_dir, name))
