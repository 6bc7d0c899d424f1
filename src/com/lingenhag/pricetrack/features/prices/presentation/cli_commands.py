# src/com/lingenhag/pricetrack/features/prices/presentation/cli_commands.py
from __future__ import annotations

import argparse
import json
import logging
from datetime import date, datetime, timezone
from typing import Dict, List, Optional

import duckdb

from com.lingenhag.pricetrack.domain.errors import PriceTrackError, StorageReadFailure
from com.lingenhag.pricetrack.domain.models import BatchResult
from com.lingenhag.pricetrack.features.prices.application.factories import PriceTrackerFactory
from com.lingenhag.pricetrack.features.prices.application.usecases.repair_history import (
    DEFAULT_BUCKET_RETENTION_DAYS,
    REPAIR_SOURCES,
)
from com.lingenhag.pricetrack.features.prices.application.usecases.rebuild_snapshots import publish_snapshots
from com.lingenhag.pricetrack.platform.config.settings import Settings
from com.lingenhag.pricetrack.platform.monitoring.metrics import Metrics
from com.lingenhag.pricetrack.platform.persistence.migrator import apply_migrations, missing_tables

_LOG = logging.getLogger(__name__)


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--db",
        help="Pfad zur DuckDB (Default aus config.yaml: database.default_path oder 'data/pricetrack.duckdb')",
    )
    p.add_argument("--auto-migrate", action="store_true", help="Apply migrations if schema is missing")
    p.add_argument("--format", choices=["table", "json"], default="table", help="Output format")


def add_prices_subparser(root_subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    prices_parser = root_subparsers.add_parser("prices", help="Price sampling, finalization and maintenance")
    prices_sub = prices_parser.add_subparsers(dest="prices_cmd", required=True)

    p_sample = prices_sub.add_parser("sample", help="Run one sampling tick (finalizes yesterday inside the grace window)")
    p_sample.add_argument("--item", nargs="+", help="Restrict to item id(s)")
    p_sample.add_argument("--at", help="ISO timestamp of the tick (default: now, UTC)")
    _add_common(p_sample)
    p_sample.set_defaults(func=_cmd_sample)

    p_final = prices_sub.add_parser("finalize", help="Finalize a service day into daily records")
    p_final.add_argument("--date", help="Service day YYYY-MM-DD (default: yesterday)")
    p_final.add_argument("--item", nargs="+", help="Restrict to item id(s)")
    p_final.add_argument("--no-publish", action="store_true", help="Skip snapshot rebuild and cache purge")
    _add_common(p_final)
    p_final.set_defaults(func=_cmd_finalize)

    p_rebuild = prices_sub.add_parser("rebuild", help="Rebuild latest/history snapshots")
    p_rebuild.add_argument("--only", choices=["all", "latest"], default="all",
                           help="'latest' skips the history snapshot")
    p_rebuild.add_argument("--force", action="store_true", help="Write even if content is unchanged")
    _add_common(p_rebuild)
    p_rebuild.set_defaults(func=_cmd_rebuild)

    p_repair = prices_sub.add_parser("repair", help="Recompute daily records for one date")
    p_repair.add_argument("--date", required=True, help="Date YYYY-MM-DD")
    p_repair.add_argument("--item", nargs="+", help="Restrict to item id(s)")
    p_repair.add_argument("--source", choices=list(REPAIR_SOURCES), default="auto")
    p_repair.add_argument("--price", nargs="+", metavar="ITEM=VALUE", help="Manual prices, e.g. 67400003=95")
    p_repair.add_argument("--confirm-overwrite", action="store_true", help="Allow overwriting existing records")
    _add_common(p_repair)
    p_repair.set_defaults(func=_cmd_repair)

    p_del_date = prices_sub.add_parser("delete-date", help="Delete all records written under a wrong date")
    p_del_date.add_argument("--date", required=True, help="Date YYYY-MM-DD")
    _add_common(p_del_date)
    p_del_date.set_defaults(func=_cmd_delete_date)

    p_del_rec = prices_sub.add_parser("delete-record", help="Delete a single daily record")
    p_del_rec.add_argument("--item", required=True, help="Item id")
    p_del_rec.add_argument("--date", required=True, help="Date YYYY-MM-DD")
    _add_common(p_del_rec)
    p_del_rec.set_defaults(func=_cmd_delete_record)

    p_backfill = prices_sub.add_parser("backfill", help="Seed new items from the upstream statistics window")
    p_backfill.add_argument("--item", nargs="+", required=True, help="Item id(s)")
    _add_common(p_backfill)
    p_backfill.set_defaults(func=_cmd_backfill)

    p_cleanup = prices_sub.add_parser("cleanup", help="Delete accumulator buckets beyond retention")
    p_cleanup.add_argument("--keep-days", type=int, default=None,
                           help=f"Retention in days (default: maintenance.bucket_retention_days or "
                                f"{DEFAULT_BUCKET_RETENTION_DAYS})")
    _add_common(p_cleanup)
    p_cleanup.set_defaults(func=_cmd_cleanup)

    p_status = prices_sub.add_parser("status", help="Per-item overview (last finalized day, counts)")
    _add_common(p_status)
    p_status.set_defaults(func=_cmd_status)

    p_read = prices_sub.add_parser("read", help="Read a published snapshot through the cache layers")
    p_read.add_argument("blob", choices=["latest", "history"])
    _add_common(p_read)
    p_read.set_defaults(func=_cmd_read)


def add_serve_subparser(root_subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    p_serve = root_subparsers.add_parser("serve", help="Start the admin/public HTTP API (uvicorn)")
    p_serve.add_argument("--host", default=None, help="Bind host (default: server.host or 127.0.0.1)")
    p_serve.add_argument("--port", type=int, default=None, help="Bind port (default: server.port or 8080)")
    p_serve.add_argument("--db", help="Pfad zur DuckDB")
    p_serve.add_argument("--auto-migrate", action="store_true", help="Apply migrations if schema is missing")
    p_serve.set_defaults(func=_cmd_serve)


# ---------- Parsing ----------
def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise SystemExit(f"Ungültiges Datumsformat: {value} (erwartet YYYY-MM-DD)") from e


def _parse_iso(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise SystemExit(f"Ungültiger Zeitstempel: {value}") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _parse_prices(values: Optional[List[str]]) -> Dict[str, float]:
    out: Dict[str, float] = {}
    for raw in values or []:
        item_id, sep, price = raw.partition("=")
        if not sep or not item_id.strip():
            raise SystemExit(f"Ungültige Preisangabe '{raw}' (erwartet ITEM=VALUE)")
        try:
            out[item_id.strip()] = float(price)
        except ValueError as e:
            raise SystemExit(f"Ungültiger Preis in '{raw}'") from e
    return out


def ensure_schema(db_path: str, auto_migrate: bool) -> None:
    if not auto_migrate:
        return
    try:
        missing = missing_tables(db_path)
        if missing:
            _LOG.info("[migrate] Fehlende Tabellen: %s", ", ".join(missing))
            applied = apply_migrations(db_path)
            if applied:
                _LOG.info("[migrate] Applied: %s", ", ".join(applied))
            else:
                print("[migrations] Keine Migrationen angewendet (vermutlich bereits aktuell).")
    except duckdb.IOException as e:
        raise SystemExit(f"Database error: {e}") from e


# ---------- Ausgabe ----------
def _print_batch(tag: str, batch: BatchResult, fmt: str) -> None:
    if fmt == "json":
        print(json.dumps(batch.to_dict(), indent=2, ensure_ascii=False, default=str))
        return
    print(f"[{tag}] {batch.message()}")
    for r in batch.results:
        line = f"  {r.item_id:<28} {r.action:<18}"
        if r.price is not None:
            line += f" price={r.price}"
        if r.day is not None:
            line += f" date={r.day.isoformat()}"
        print(line)
    for e in batch.errors:
        print(f"  ! {e.item_id or '-':<26} {e.code:<24} {e.message}")
    for key, value in batch.notes.items():
        if key == "finalization":
            print(f"  finalization: {value.get('message')}")
        else:
            print(f"  {key}: {value}")


# ---------- Kommandos ----------
def _cmd_sample(args: argparse.Namespace, config: Settings, metrics: Metrics, factory: PriceTrackerFactory) -> None:
    ensure_schema(factory.db_path, args.auto_migrate)
    try:
        batch = factory.sample_prices().execute(now=_parse_iso(args.at), item_ids=args.item)
    except PriceTrackError as e:
        raise SystemExit(f"[prices-sample] {e.message}") from e
    _print_batch("prices-sample", batch, args.format)


def _cmd_finalize(args: argparse.Namespace, config: Settings, metrics: Metrics, factory: PriceTrackerFactory) -> None:
    ensure_schema(factory.db_path, args.auto_migrate)
    day = _parse_date(args.date) if args.date else None
    try:
        batch = factory.finalize_day().execute(service_day=day, item_ids=args.item, publish=not args.no_publish)
    except PriceTrackError as e:
        raise SystemExit(f"[prices-finalize] {e.message}") from e
    _print_batch("prices-finalize", batch, args.format)


def _cmd_rebuild(args: argparse.Namespace, config: Settings, metrics: Metrics, factory: PriceTrackerFactory) -> None:
    ensure_schema(factory.db_path, args.auto_migrate)
    batch = BatchResult(operation="rebuild")
    publish_snapshots(
        factory.snapshots(),
        factory.coordinator(),
        batch,
        now=datetime.now(timezone.utc),
        include_history=args.only == "all",
        force=args.force,
    )
    _print_batch("prices-rebuild", batch, args.format)


def _cmd_repair(args: argparse.Namespace, config: Settings, metrics: Metrics, factory: PriceTrackerFactory) -> None:
    ensure_schema(factory.db_path, args.auto_migrate)
    try:
        batch = factory.repair_history().repair_day(
            _parse_date(args.date),
            item_ids=args.item,
            manual_prices=_parse_prices(args.price),
            source=args.source,
            confirm_overwrite=args.confirm_overwrite,
        )
    except ValueError as e:
        raise SystemExit(str(e)) from e
    except PriceTrackError as e:
        raise SystemExit(f"[prices-repair] {e.message}") from e
    _print_batch("prices-repair", batch, args.format)


def _cmd_delete_date(args: argparse.Namespace, config: Settings, metrics: Metrics, factory: PriceTrackerFactory) -> None:
    ensure_schema(factory.db_path, args.auto_migrate)
    try:
        batch = factory.repair_history().delete_wrong_date(_parse_date(args.date))
    except PriceTrackError as e:
        raise SystemExit(f"[prices-delete-date] {e.message}") from e
    _print_batch("prices-delete-date", batch, args.format)


def _cmd_delete_record(
        args: argparse.Namespace, config: Settings, metrics: Metrics, factory: PriceTrackerFactory
) -> None:
    ensure_schema(factory.db_path, args.auto_migrate)
    try:
        batch = factory.repair_history().delete_record(args.item, _parse_date(args.date))
    except PriceTrackError as e:
        raise SystemExit(f"[prices-delete-record] {e.message}") from e
    _print_batch("prices-delete-record", batch, args.format)


def _cmd_backfill(args: argparse.Namespace, config: Settings, metrics: Metrics, factory: PriceTrackerFactory) -> None:
    ensure_schema(factory.db_path, args.auto_migrate)
    try:
        batch = factory.backfill_items().execute(args.item)
    except PriceTrackError as e:
        raise SystemExit(f"[prices-backfill] {e.message}") from e
    _print_batch("prices-backfill", batch, args.format)


def _cmd_cleanup(args: argparse.Namespace, config: Settings, metrics: Metrics, factory: PriceTrackerFactory) -> None:
    ensure_schema(factory.db_path, args.auto_migrate)
    keep_days = args.keep_days or int(
        config.get("maintenance", "bucket_retention_days", DEFAULT_BUCKET_RETENTION_DAYS)
    )
    try:
        batch = factory.repair_history().purge_stale_buckets(keep_days=keep_days)
    except ValueError as e:
        raise SystemExit(str(e)) from e
    except PriceTrackError as e:
        raise SystemExit(f"[prices-cleanup] {e.message}") from e
    _print_batch("prices-cleanup", batch, args.format)


def _cmd_status(args: argparse.Namespace, config: Settings, metrics: Metrics, factory: PriceTrackerFactory) -> None:
    ensure_schema(factory.db_path, args.auto_migrate)
    try:
        rows = factory.repair_history().describe_status()
    except PriceTrackError as e:
        raise SystemExit(f"[prices-status] {e.message}") from e
    if args.format == "json":
        out = [
            {
                "itemId": s.item_id,
                "name": s.display_name,
                "sourceKind": s.source_kind.value,
                "lastFinalized": s.last_finalized.isoformat() if s.last_finalized else None,
                "recordCount": s.record_count,
                "currentSamples": s.current_samples,
            }
            for s in rows
        ]
        print(json.dumps(out, indent=2, ensure_ascii=False))
        return
    print("[prices-status]")
    for s in rows:
        last = s.last_finalized.isoformat() if s.last_finalized else "-"
        print(
            f"  {s.item_id:<28} {s.source_kind.value:<11} last={last:<10} "
            f"records={s.record_count:<5} samples={s.current_samples}"
        )


def _cmd_read(args: argparse.Namespace, config: Settings, metrics: Metrics, factory: PriceTrackerFactory) -> None:
    reader = factory.reader()
    try:
        data = reader.read_latest() if args.blob == "latest" else reader.read_history()
    except StorageReadFailure as e:
        raise SystemExit(f"[read] {e.message}") from e
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _cmd_serve(args: argparse.Namespace, config: Settings, metrics: Metrics, factory: PriceTrackerFactory) -> None:
    import uvicorn

    from com.lingenhag.pricetrack.features.prices.presentation.admin_api import create_app

    ensure_schema(factory.db_path, args.auto_migrate)
    host = args.host or str(config.get("server", "host", "127.0.0.1"))
    port = args.port or int(config.get("server", "port", 8080))
    uvicorn.run(create_app(factory), host=host, port=port)
