# src/com/lingenhag/pricetrack/main.py
from __future__ import annotations

import argparse
import logging
import sys

from com.lingenhag.pricetrack.domain.errors import ConfigurationMissing
from com.lingenhag.pricetrack.features.prices.application.factories import PriceTrackerFactory
from com.lingenhag.pricetrack.features.prices.presentation.cli_commands import (
    add_prices_subparser,
    add_serve_subparser,
)
from com.lingenhag.pricetrack.platform.config.settings import Settings
from com.lingenhag.pricetrack.platform.monitoring.metrics import Metrics

logging.basicConfig(level=logging.INFO)

_LOG = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """
    Root-CLI.
    Beispiel:
      pricetrack prices sample --auto-migrate
      pricetrack prices finalize --date 2025-06-26
      pricetrack prices repair --date 2025-06-26 --price 67400003=95 --confirm-overwrite
      pricetrack serve --port 8080
    """
    parser = argparse.ArgumentParser(prog="pricetrack", description="com.lingenhag.pricetrack – Price tracking CLI")
    parser.add_argument(
        "--config",
        default="config.yaml",
        help="Pfad zur Konfigurationsdatei (Default: config.yaml)",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=8000,
        help="Prometheus Metrics Port (Default: 8000, 0 = deaktiviert)",
    )

    subparsers = parser.add_subparsers(dest="feature", required=True)

    # ---- Prices-Slice ----
    add_prices_subparser(subparsers)

    # ---- HTTP-API ----
    add_serve_subparser(subparsers)

    return parser


def _resolve_db_path(config: Settings, args_db: str | None) -> str:
    """
    - CLI-Argument --db hat Vorrang
    - sonst config.yaml → database.default_path
    - Fallback: data/pricetrack.duckdb
    """
    if args_db and str(args_db).strip():
        return str(args_db)
    return str(config.get("database", "default_path", "data/pricetrack.duckdb"))


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(2)

    config = Settings.load(args.config)
    metrics = Metrics(port=args.metrics_port)
    if args.metrics_port:
        metrics.start_server()

    db_path = _resolve_db_path(config, getattr(args, "db", None))
    setattr(args, "db", db_path)
    factory = PriceTrackerFactory(config=config, metrics=metrics, db_path=db_path)

    try:
        args.func(args, config=config, metrics=metrics, factory=factory)
    except ConfigurationMissing as e:
        _LOG.error("Konfiguration unvollständig: %s", e)
        raise SystemExit(f"[config] {e.message}") from e


if __name__ == "__main__":
    main()
