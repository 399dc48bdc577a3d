from __future__ import annotations

import argparse
import json
import sys
import uuid
from typing import Optional

import uvicorn

from quietstats.core.config.manager import ConfigManager
from quietstats.core.config.paths import ConfigFsPaths
from quietstats.core.errors import ConfigError
from quietstats.core.logger import setup_logging
from quietstats.core.privacy.crypto import ENCRYPTION_KEY_ENV, generate_key_bytes
from quietstats.web.api import create_app
from quietstats.web.context import IngestContext, build_context


def _load_context(root: str, logger) -> Optional[IngestContext]:  # noqa: ANN001
    fs = ConfigFsPaths(root)
    config = ConfigManager(fs=fs, logger=logger)
    try:
        cfg = config.load_all()
        return build_context(cfg, fs=fs, logger=logger)
    except ConfigError as e:
        logger.error(f"Startup failed: {e.user_message}")
        return None


def _serve(ctx: IngestContext, logger) -> int:  # noqa: ANN001
    web_cfg = ctx.cfg.web
    if not web_cfg.enabled:
        logger.error("Web server disabled in config/web.json.")
        return 2
    if ctx.cfg.retention.enabled:
        ctx.sweeper.start()
    ctx.ops_logger.log(trace_id="startup", event="server.start", outcome="ok", details={"bind_host": web_cfg.bind_host, "port": web_cfg.port, "key_id": ctx.key_material.key_id, "ephemeral_key": ctx.key_material.ephemeral})

    server = uvicorn.Server(uvicorn.Config(create_app(ctx), host=web_cfg.bind_host, port=int(web_cfg.port), log_level="info"))
    logger.info(f"quietstats API running at http://{web_cfg.bind_host}:{web_cfg.port}")
    try:
        server.run()
    finally:
        ctx.sweeper.stop()
        ctx.ops_logger.log(trace_id="shutdown", event="server.stop", outcome="ok")
    return 0


def _sweep(ctx: IngestContext) -> int:
    result = ctx.sweeper.run_once(trace_id=uuid.uuid4().hex)
    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    return 0 if result.ok else 1


def main(argv: Optional[list[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="quietstats: privacy-first analytics ingestion")
    ap.add_argument("--root", default=".", help="Directory holding config/, logs/ and runtime/.")
    sub = ap.add_subparsers(dest="command", required=True)
    sub.add_parser("serve", help="Run the HTTP API and the retention sweeper.")
    sub.add_parser("sweep", help="Run one retention pass and print the summary.")
    sub.add_parser("keygen", help=f"Print a fresh value for {ENCRYPTION_KEY_ENV}.")
    sub.add_parser("config", help="Load, validate and print the config (defaults written if missing).")
    args = ap.parse_args(argv)

    if args.command == "keygen":
        print(generate_key_bytes().hex())
        return 0
    if args.command == "config":
        try:
            cfg = ConfigManager(fs=ConfigFsPaths(args.root), logger=None).load_all()
        except ConfigError as e:
            print(e.user_message, file=sys.stderr)
            return 2
        print(json.dumps(cfg.model_dump(), indent=2, sort_keys=True))
        return 0

    logger = setup_logging(ConfigFsPaths(args.root).logs_dir)
    ctx = _load_context(args.root, logger)
    if ctx is None:
        return 2
    if args.command == "serve":
        return _serve(ctx, logger)
    return _sweep(ctx)


if __name__ == "__main__":
    sys.exit(main())
