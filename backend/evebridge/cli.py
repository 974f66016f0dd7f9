# evebridge/cli.py
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from .config import Settings, settings
from .errors import StartupError
from .ingest.driver import IngestionDriver
from .log import configure_logging
from .messaging.broker import NatsBroker
from .messaging.publisher import Publisher
from .schemas import TenantContext
from .storage import EventStore
from .utils.geoip import GeoResolver

logger = logging.getLogger("evebridge.cli")


async def run_ingest(cfg: Settings, tenant: TenantContext, stream, cancel: asyncio.Event | None = None, broker=None):
    """Store e broker obbligatori (errore fatale), GeoIP opzionale."""
    cancel = cancel or asyncio.Event()
    store = EventStore(cfg.DATABASE_PATH).open()
    geo = GeoResolver.open(cfg.GEOIP_DB_PATH, cfg.GEOIP_ASN_DB_PATH)
    owns_broker = broker is None
    try:
        if broker is None:
            broker = await NatsBroker.connect(cfg)
        publisher = Publisher(
            broker,
            prefix=cfg.EVENTS_SUBJECT_PREFIX,
            default_type=cfg.DEFAULT_EVENT_TYPE,
            max_pending=cfg.PUBLISH_MAX_PENDING,
        )
        driver = IngestionDriver(
            store, publisher, tenant,
            geo=geo if geo.available else None,
            ioc_unique=cfg.IOC_UNIQUE,
            flush_timeout=cfg.PUBLISH_FLUSH_TIMEOUT_SEC,
        )
        return await driver.run(stream, cancel)
    finally:
        if owns_broker and broker is not None:
            await broker.close()
        geo.close()
        store.close()


def _install_signal_handlers(cancel: asyncio.Event):
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel.set)
        except (NotImplementedError, RuntimeError):
            # es. Windows: resta il KeyboardInterrupt
            pass


async def _ingest_main(cfg: Settings, tenant: TenantContext, stream):
    cancel = asyncio.Event()
    _install_signal_handlers(cancel)
    return await run_ingest(cfg, tenant, stream, cancel)


def cmd_ingest(args, cfg: Settings) -> int:
    tenant_id = args.tenant_id if args.tenant_id is not None else cfg.INGEST_TENANT_ID
    if tenant_id is None or tenant_id <= 0:
        print("A positive tenant id is required (--tenant-id or INGEST_TENANT_ID)", file=sys.stderr)
        return 2
    tenant = TenantContext(tenant_id=tenant_id)

    try:
        if args.input == "-":
            stats = asyncio.run(_ingest_main(cfg, tenant, sys.stdin.buffer))
        else:
            with open(args.input, "rb") as fh:
                stats = asyncio.run(_ingest_main(cfg, tenant, fh))
    except FileNotFoundError:
        print(f"File not found: {args.input}", file=sys.stderr)
        return 2
    except StartupError as e:
        logger.error("Startup failed: %s", e)
        return 1
    logger.info("Ingest summary: %s", stats.as_dict())
    return 0


def cmd_serve(args, cfg: Settings) -> int:
    import uvicorn

    uvicorn.run(
        "evebridge.main:build_app",
        factory=True,
        host=args.host or cfg.API_HOST,
        port=args.port or cfg.API_PORT,
        log_level=cfg.LOG_LEVEL.lower(),
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="evebridge")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    p_ingest = sub.add_parser("ingest", help="Read eve.json lines, store and publish them")
    p_ingest.add_argument("--input", default="-", help="NDJSON file ('-' for stdin)")
    p_ingest.add_argument("--tenant-id", type=int, default=None, help="Tenant owning the ingested events")

    p_serve = sub.add_parser("serve", help="Run the live event stream API")
    p_serve.add_argument("--host", default=None)
    p_serve.add_argument("--port", type=int, default=None)

    args = parser.parse_args(argv)
    cfg = settings
    configure_logging(args.log_level or cfg.LOG_LEVEL)

    if args.command == "ingest":
        return cmd_ingest(args, cfg)
    return cmd_serve(args, cfg)


if __name__ == "__main__":
    raise SystemExit(main())
