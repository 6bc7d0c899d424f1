# tests/features/prices/test_cli_commands.py
import json
import os

import pytest

from com.lingenhag.pricetrack.features.prices.application.factories import PriceTrackerFactory
from com.lingenhag.pricetrack.features.prices.infrastructure.repositories.duckdb_price_repository import (
    DuckDBPriceRepository,
)
from com.lingenhag.pricetrack.features.prices.presentation.cli_commands import _parse_prices
from com.lingenhag.pricetrack.main import build_parser
from com.lingenhag.pricetrack.platform.config.settings import Settings
from com.lingenhag.pricetrack.platform.persistence.migrator import apply_migrations

MARKET_ID = "67400003"


def test_parser_wires_repair_arguments():
    args = build_parser().parse_args(
        ["prices", "repair", "--date", "2025-06-26", "--source", "manual",
         "--price", f"{MARKET_ID}=95", "--confirm-overwrite", "--format", "json"]
    )
    assert args.feature == "prices"
    assert args.prices_cmd == "repair"
    assert args.confirm_overwrite is True
    assert args.price == [f"{MARKET_ID}=95"]
    assert callable(args.func)


def test_parser_rejects_unknown_repair_source():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["prices", "repair", "--date", "2025-06-26", "--source", "guess"])


def test_parse_prices():
    assert _parse_prices([f"{MARKET_ID}=95", "6861012=12.5"]) == {MARKET_ID: 95.0, "6861012": 12.5}
    assert _parse_prices(None) == {}
    with pytest.raises(SystemExit):
        _parse_prices(["no-equals"])
    with pytest.raises(SystemExit):
        _parse_prices([f"{MARKET_ID}=abc"])


def _run(argv, factory, capsys):
    args = build_parser().parse_args(argv)
    args.func(args, config=factory.config, metrics=None, factory=factory)
    return capsys.readouterr().out


def test_manual_repair_then_status_as_json(tmp_dir, mock_source, store, mock_edge, capsys):
    db_path = os.path.join(tmp_dir, "cli.duckdb")
    factory = PriceTrackerFactory(
        config=Settings(config={}), db_path=db_path, source=mock_source, store=store, edge=mock_edge
    )

    out = _run(
        ["prices", "repair", "--date", "2025-06-25", "--source", "manual",
         "--price", f"{MARKET_ID}=95", "--auto-migrate", "--format", "json"],
        factory,
        capsys,
    )
    repaired = json.loads(out[out.index("{"):])
    assert repaired["success"] is True
    assert repaired["results"][0]["action"] == "repaired"

    status = json.loads(_run(["prices", "status", "--format", "json"], factory, capsys))
    row = next(r for r in status if r["itemId"] == MARKET_ID)
    assert row["lastFinalized"] == "2025-06-25"
    assert row["recordCount"] == 1


def test_read_missing_snapshot_exits(tmp_dir, mock_source, store, mock_edge):
    factory = PriceTrackerFactory(
        config=Settings(config={}), db_path=os.path.join(tmp_dir, "x.duckdb"),
        source=mock_source, store=store, edge=mock_edge,
    )
    args = build_parser().parse_args(["prices", "read", "latest"])
    with pytest.raises(SystemExit):
        args.func(args, config=factory.config, metrics=None, factory=factory)


def test_storage_failure_in_cleanup_exits_without_traceback(tmp_dir, mock_source, store, mock_edge):
    db_path = os.path.join(tmp_dir, "broken.duckdb")
    apply_migrations(db_path)
    repo = DuckDBPriceRepository(db_path)
    with repo._connect() as con:
        con.execute("DROP TABLE accumulator_buckets")
        con.execute("CREATE TABLE accumulator_buckets (item_id TEXT)")
    factory = PriceTrackerFactory(
        config=Settings(config={}), db_path=db_path, source=mock_source, store=store, edge=mock_edge
    )
    args = build_parser().parse_args(["prices", "cleanup", "--keep-days", "3"])

    with pytest.raises(SystemExit) as exc:
        args.func(args, config=factory.config, metrics=None, factory=factory)
    assert str(exc.value).startswith("[prices-cleanup] Bucket-Bereinigung fehlgeschlagen")
