from __future__ import annotations

import os

import pytest

from quietstats.core.config.manager import ConfigManager
from quietstats.core.config.paths import ConfigFsPaths
from quietstats.core.privacy.crypto import FieldCipher, IdentifierHasher, KeyMaterial, generate_key_bytes, reset_key_material
from quietstats.core.privacy.pipeline import EventPipeline
from quietstats.core.privacy.sanitizer import Sanitizer
from quietstats.core.storage.sqlite_store import SqliteStore


@pytest.fixture(autouse=True)
def _fresh_process_key():
    reset_key_material()
    yield
    reset_key_material()


@pytest.fixture
def tmp_config_root(tmp_path):
    """
    Provides an isolated root with config/ under tmp_path.
    """
    fs = ConfigFsPaths(root=str(tmp_path))
    os.makedirs(fs.config_dir, exist_ok=True)
    return fs


@pytest.fixture
def config_manager(tmp_config_root):
    cm = ConfigManager(fs=tmp_config_root, logger=None, read_only=False)
    cm.load_all()
    return cm


@pytest.fixture
def key_material():
    return KeyMaterial(key=generate_key_bytes())


@pytest.fixture
def cipher(key_material):
    return FieldCipher(key_material)


@pytest.fixture
def store(tmp_path):
    return SqliteStore(db_path=str(tmp_path / "runtime" / "events.sqlite"))


@pytest.fixture
def pipeline(store, cipher):
    hasher = IdentifierHasher(salt="")
    return EventPipeline(repository=store, sanitizer=Sanitizer(hasher=hasher, hash_user_ids=True), cipher=cipher, hasher=hasher)
