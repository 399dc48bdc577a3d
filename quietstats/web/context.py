from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Optional

from quietstats.core.config.models import AppConfig
from quietstats.core.config.paths import ConfigFsPaths
from quietstats.core.error_reporter import ErrorReporter
from quietstats.core.insights import InsightsService
from quietstats.core.ops_log import OpsLogger
from quietstats.core.privacy.crypto import FieldCipher, IdentifierHasher, KeyMaterial, init_key_material
from quietstats.core.privacy.erasure import ErasureService
from quietstats.core.privacy.pipeline import EventPipeline
from quietstats.core.privacy.retention import RetentionSweeper
from quietstats.core.privacy.sanitizer import Sanitizer
from quietstats.core.sites import SiteService
from quietstats.core.storage.sqlite_store import SqliteStore
from quietstats.web.security.rate_limit import FixedWindowRateLimiter


@dataclass
class IngestContext:
    """Process-scoped state shared by the HTTP app, the sweeper and the CLI."""

    cfg: AppConfig
    key_material: KeyMaterial
    store: SqliteStore
    pipeline: EventPipeline
    erasure: ErasureService
    sites: SiteService
    insights: InsightsService
    sweeper: RetentionSweeper
    rate_limiter: FixedWindowRateLimiter
    ops_logger: OpsLogger
    reporter: ErrorReporter
    logger: Any = None


def build_context(
    cfg: AppConfig,
    *,
    fs: Optional[ConfigFsPaths] = None,
    key_material: Optional[KeyMaterial] = None,
    logger: Any = None,
) -> IngestContext:
    """
    Wire the core services from a loaded config. Raises ConfigError when no
    encryption key is available and ephemeral keys are not allowed.
    """
    fs = fs or ConfigFsPaths(".")
    km = key_material or init_key_material(allow_ephemeral=cfg.pipeline.allow_ephemeral_key, logger=logger)
    ops_logger = OpsLogger(path=os.path.join(fs.logs_dir, "ops.jsonl"))
    reporter = ErrorReporter(path=os.path.join(fs.logs_dir, "errors.jsonl"))

    store = SqliteStore(db_path=fs.resolve(cfg.storage.db_path), logger=logger)
    cipher = FieldCipher(km)
    hasher = IdentifierHasher(salt=cfg.pipeline.hash_salt)
    sanitizer = Sanitizer(hasher=hasher, hash_user_ids=cfg.pipeline.hash_user_ids)
    pipeline = EventPipeline(repository=store, sanitizer=sanitizer, cipher=cipher, hasher=hasher, ops_logger=ops_logger, logger=logger)

    rl = cfg.web.rate_limits or {}
    return IngestContext(
        cfg=cfg,
        key_material=km,
        store=store,
        pipeline=pipeline,
        erasure=ErasureService(events=store, pipeline=pipeline, ops_logger=ops_logger, logger=logger),
        sites=SiteService(sites=store, cipher=cipher, default_retention_days=cfg.pipeline.retention_days, logger=logger),
        insights=InsightsService(events=store),
        sweeper=RetentionSweeper(
            events=store,
            sites=store,
            interval_seconds=cfg.retention.interval_seconds,
            run_on_start=cfg.retention.run_on_start,
            ops_logger=ops_logger,
            logger=logger,
        ),
        rate_limiter=FixedWindowRateLimiter(limit=int(rl.get("per_ip_per_minute", 100)), window_seconds=60.0),
        ops_logger=ops_logger,
        reporter=reporter,
        logger=logger,
    )
