# src/com/lingenhag/pricetrack/features/prices/infrastructure/repositories/duckdb_price_repository.py
from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import duckdb

from com.lingenhag.pricetrack.domain.errors import StorageReadFailure, StorageWriteFailure
from com.lingenhag.pricetrack.domain.models import AccumulatorBucket, DailyPriceRecord, SourceKind
from com.lingenhag.pricetrack.features.prices.application.ports import (
    AccumulatorRepositoryPort,
    HistoryRepositoryPort,
)

_LOG = logging.getLogger(__name__)


def _ts_utc_naive(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def _as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


def _price_out(value: float):
    # DOUBLE → int, wenn ganzzahlig (Tagespreise sind meist ganze Zahlen)
    f = float(value)
    return int(f) if f.is_integer() else f


class DuckDBPriceRepository(AccumulatorRepositoryPort, HistoryRepositoryPort):
    """
    Persistenz für Accumulator-Buckets und finalisierte Tagespreise.
    Konvention: Alle TIMESTAMPs werden als UTC-naiv gespeichert (Session-TZ = UTC).
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = str(db_path)

    def _connect(self) -> duckdb.DuckDBPyConnection:
        con = duckdb.connect(self.db_path)
        try:
            con.execute("SET TimeZone='UTC'")
        except duckdb.Error as e:
            _LOG.warning("Failed to set UTC timezone: %s", e)
        return con

    def _ensure_table(self, con: duckdb.DuckDBPyConnection, table: str) -> None:
        info = con.execute(f"PRAGMA table_info('{table}')").fetchall()
        if not info:
            raise RuntimeError(f"{table} fehlt. Migration ausführen.")

    @staticmethod
    def _bucket_from_row(row: tuple) -> AccumulatorBucket:
        return AccumulatorBucket(
            item_id=row[0],
            service_day=row[1],
            source_kind=SourceKind(row[2]),
            values=tuple(float(v) for v in json.loads(row[3] or "[]")),
            updated_at=_as_utc(row[4]),
        )

    @staticmethod
    def _record_from_row(row: tuple) -> DailyPriceRecord:
        return DailyPriceRecord(
            item_id=row[0],
            day=row[1],
            price=_price_out(row[2]),
            source=row[3],
            recorded_at=_as_utc(row[4]),
        )

    # -------- Accumulator --------
    def get_bucket(self, item_id: str, service_day: date) -> Optional[AccumulatorBucket]:
        try:
            with self._connect() as con:
                self._ensure_table(con, "accumulator_buckets")
                row = con.execute(
                    """
                    SELECT item_id, service_day, source_kind, prices_json, updated_at
                    FROM accumulator_buckets
                    WHERE item_id=? AND service_day=?
                    """,
                    [item_id, service_day],
                ).fetchone()
        except duckdb.Error as e:
            raise StorageReadFailure(f"Bucket-Lesen fehlgeschlagen: {e}", item_id=item_id) from e
        return self._bucket_from_row(row) if row else None

    def _write_bucket(
            self,
            con: duckdb.DuckDBPyConnection,
            item_id: str,
            service_day: date,
            source_kind: SourceKind,
            values: List[float],
            at: datetime,
            exists: bool,
    ) -> None:
        if exists:
            con.execute(
                """
                UPDATE accumulator_buckets
                SET prices_json=?, sample_count=?, source_kind=?, updated_at=?
                WHERE item_id=? AND service_day=?
                """,
                [json.dumps(values), len(values), source_kind.value, _ts_utc_naive(at), item_id, service_day],
            )
        else:
            con.execute(
                """
                INSERT INTO accumulator_buckets
                (item_id, service_day, source_kind, prices_json, sample_count, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [item_id, service_day, source_kind.value, json.dumps(values), len(values),
                 _ts_utc_naive(at), _ts_utc_naive(at)],
            )

    def overwrite_value(
            self, item_id: str, service_day: date, source_kind: SourceKind, value: float, at: datetime
    ) -> AccumulatorBucket:
        try:
            with self._connect() as con:
                self._ensure_table(con, "accumulator_buckets")
                exists = con.execute(
                    "SELECT 1 FROM accumulator_buckets WHERE item_id=? AND service_day=?",
                    [item_id, service_day],
                ).fetchone()
                self._write_bucket(con, item_id, service_day, source_kind, [float(value)], at, bool(exists))
        except duckdb.Error as e:
            raise StorageWriteFailure(f"Bucket-Update fehlgeschlagen: {e}", item_id=item_id) from e
        return AccumulatorBucket(item_id, service_day, source_kind, (float(value),), at)

    def append_value(
            self, item_id: str, service_day: date, source_kind: SourceKind, value: float, at: datetime
    ) -> AccumulatorBucket:
        try:
            with self._connect() as con:
                self._ensure_table(con, "accumulator_buckets")
                row = con.execute(
                    "SELECT prices_json FROM accumulator_buckets WHERE item_id=? AND service_day=?",
                    [item_id, service_day],
                ).fetchone()
                values = [float(v) for v in json.loads(row[0] or "[]")] if row else []
                values.append(float(value))
                self._write_bucket(con, item_id, service_day, source_kind, values, at, row is not None)
        except duckdb.Error as e:
            raise StorageWriteFailure(f"Bucket-Append fehlgeschlagen: {e}", item_id=item_id) from e
        return AccumulatorBucket(item_id, service_day, source_kind, tuple(values), at)

    def clear_bucket(self, item_id: str, service_day: date) -> bool:
        try:
            with self._connect() as con:
                self._ensure_table(con, "accumulator_buckets")
                row = con.execute(
                    "DELETE FROM accumulator_buckets WHERE item_id=? AND service_day=? RETURNING item_id",
                    [item_id, service_day],
                ).fetchall()
        except duckdb.Error as e:
            raise StorageWriteFailure(f"Bucket-Löschen fehlgeschlagen: {e}", item_id=item_id) from e
        return bool(row)

    def list_buckets(self, service_day: Optional[date] = None) -> List[AccumulatorBucket]:
        sql = """
              SELECT item_id, service_day, source_kind, prices_json, updated_at
              FROM accumulator_buckets
              """
        params: list = []
        if service_day is not None:
            sql += " WHERE service_day=?"
            params.append(service_day)
        sql += " ORDER BY service_day ASC, item_id ASC"
        try:
            with self._connect() as con:
                self._ensure_table(con, "accumulator_buckets")
                rows = con.execute(sql, params).fetchall()
        except duckdb.Error as e:
            raise StorageReadFailure(f"Bucket-Liste nicht lesbar: {e}") from e
        return [self._bucket_from_row(r) for r in rows]

    def delete_buckets_before(self, cutoff: date) -> int:
        try:
            with self._connect() as con:
                self._ensure_table(con, "accumulator_buckets")
                rows = con.execute(
                    "DELETE FROM accumulator_buckets WHERE service_day < ? RETURNING item_id",
                    [cutoff],
                ).fetchall()
        except duckdb.Error as e:
            raise StorageWriteFailure(f"Bucket-Bereinigung fehlgeschlagen: {e}") from e
        return len(rows)

    # -------- History (daily_prices) --------
    def get_record(self, item_id: str, day: date) -> Optional[DailyPriceRecord]:
        try:
            with self._connect() as con:
                self._ensure_table(con, "daily_prices")
                row = con.execute(
                    """
                    SELECT item_id, date, price, source, recorded_at
                    FROM daily_prices
                    WHERE item_id=? AND date=?
                    """,
                    [item_id, day],
                ).fetchone()
        except duckdb.Error as e:
            raise StorageReadFailure(f"Record-Lesen fehlgeschlagen: {e}", item_id=item_id) from e
        return self._record_from_row(row) if row else None

    def upsert_record(self, record: DailyPriceRecord) -> Tuple[int, int]:
        recorded_at = _ts_utc_naive(record.recorded_at or datetime.now(timezone.utc))
        try:
            with self._connect() as con:
                self._ensure_table(con, "daily_prices")
                exists = con.execute(
                    "SELECT 1 FROM daily_prices WHERE item_id=? AND date=?",
                    [record.item_id, record.day],
                ).fetchone()
                if exists:
                    con.execute(
                        """
                        UPDATE daily_prices
                        SET price=?, source=?, recorded_at=?
                        WHERE item_id=? AND date=?
                        """,
                        [float(record.price), record.source, recorded_at, record.item_id, record.day],
                    )
                    return 0, 1
                con.execute(
                    """
                    INSERT INTO daily_prices (item_id, date, price, source, recorded_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    [record.item_id, record.day, float(record.price), record.source, recorded_at],
                )
                return 1, 0
        except duckdb.Error as e:
            raise StorageWriteFailure(f"Upsert daily_prices fehlgeschlagen: {e}", item_id=record.item_id) from e

    def insert_if_absent(self, records: Sequence[DailyPriceRecord]) -> Tuple[int, int]:
        if not records:
            return 0, 0
        inserted = 0
        skipped = 0
        try:
            with self._connect() as con:
                self._ensure_table(con, "daily_prices")
                for r in records:
                    exists = con.execute(
                        "SELECT 1 FROM daily_prices WHERE item_id=? AND date=?",
                        [r.item_id, r.day],
                    ).fetchone()
                    if exists:
                        skipped += 1
                        continue
                    con.execute(
                        """
                        INSERT INTO daily_prices (item_id, date, price, source, recorded_at)
                        VALUES (?, ?, ?, ?, ?)
                        """,
                        [r.item_id, r.day, float(r.price), r.source,
                         _ts_utc_naive(r.recorded_at or datetime.now(timezone.utc))],
                    )
                    inserted += 1
        except duckdb.Error as e:
            raise StorageWriteFailure(f"Insert daily_prices fehlgeschlagen: {e}") from e
        return inserted, skipped

    def delete_record(self, item_id: str, day: date) -> int:
        with self._connect() as con:
            self._ensure_table(con, "daily_prices")
            rows = con.execute(
                "DELETE FROM daily_prices WHERE item_id=? AND date=? RETURNING item_id",
                [item_id, day],
            ).fetchall()
        return len(rows)

    def delete_date(self, day: date) -> List[str]:
        with self._connect() as con:
            self._ensure_table(con, "daily_prices")
            rows = con.execute(
                "DELETE FROM daily_prices WHERE date=? RETURNING item_id",
                [day],
            ).fetchall()
        return sorted(r[0] for r in rows)

    def latest_record(self, item_id: str, before: Optional[date] = None) -> Optional[DailyPriceRecord]:
        sql = """
              SELECT item_id, date, price, source, recorded_at
              FROM daily_prices
              WHERE item_id=?
              """
        params: list = [item_id]
        if before is not None:
            sql += " AND date < ?"
            params.append(before)
        sql += " ORDER BY date DESC LIMIT 1"
        with self._connect() as con:
            self._ensure_table(con, "daily_prices")
            row = con.execute(sql, params).fetchone()
        return self._record_from_row(row) if row else None

    def fetch_series(self, item_id: str) -> List[DailyPriceRecord]:
        with self._connect() as con:
            self._ensure_table(con, "daily_prices")
            rows = con.execute(
                """
                SELECT item_id, date, price, source, recorded_at
                FROM daily_prices
                WHERE item_id=?
                ORDER BY date ASC
                """,
                [item_id],
            ).fetchall()
        return [self._record_from_row(r) for r in rows]

    def fetch_all_series(self) -> Dict[str, List[DailyPriceRecord]]:
        with self._connect() as con:
            self._ensure_table(con, "daily_prices")
            rows = con.execute(
                """
                SELECT item_id, date, price, source, recorded_at
                FROM daily_prices
                ORDER BY item_id ASC, date ASC
                """
            ).fetchall()
        out: Dict[str, List[DailyPriceRecord]] = {}
        for r in rows:
            rec = self._record_from_row(r)
            out.setdefault(rec.item_id, []).append(rec)
        return out
