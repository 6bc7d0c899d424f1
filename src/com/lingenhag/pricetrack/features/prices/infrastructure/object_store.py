# src/com/lingenhag/pricetrack/features/prices/infrastructure/object_store.py
from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from com.lingenhag.pricetrack.domain.errors import StorageReadFailure, StorageWriteFailure
from com.lingenhag.pricetrack.features.prices.application.ports import ObjectStorePort

_LOG = logging.getLogger(__name__)


def dump_blob(payload: Dict[str, Any]) -> bytes:
    """Deterministische Serialisierung: gleicher Inhalt → gleiche Bytes."""
    return json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True).encode("utf-8")


class LocalObjectStore(ObjectStorePort):
    """
    Dateisystem-Objektspeicher für Entwicklung/Self-Hosting.
    Schreibt über Temp-Datei + os.replace (atomarer Voll-Ersatz) und legt
    Cache-Control/Content-Type in einer Sidecar-Datei '<name>.meta.json' ab.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _path(self, name: str) -> Path:
        if not name or "/" in name or name.startswith("."):
            raise ValueError(f"Ungültiger Blob-Name: {name!r}")
        return self.root / name

    def _atomic_write(self, target: Path, data: bytes) -> None:
        fd, tmp = tempfile.mkstemp(prefix=f".{target.name}.", dir=str(target.parent))
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, target)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def write_json(self, name: str, payload: Dict[str, Any], *, cache_control: str) -> None:
        target = self._path(name)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            self._atomic_write(target, dump_blob(payload))
            meta = {"contentType": "application/json", "cacheControl": cache_control}
            self._atomic_write(self._path(f"{name}.meta.json"), dump_blob(meta))
        except OSError as e:
            raise StorageWriteFailure(f"Blob {name} konnte nicht geschrieben werden: {e}") from e
        _LOG.info("Blob geschrieben: %s (%s)", target, cache_control)

    def read_json(self, name: str) -> Optional[Dict[str, Any]]:
        target = self._path(name)
        if not target.exists():
            return None
        try:
            return json.loads(target.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise StorageReadFailure(f"Blob {name} nicht lesbar: {e}") from e

    def metadata(self, name: str) -> Optional[Dict[str, Any]]:
        return self.read_json(f"{name}.meta.json")


class S3ObjectStore(ObjectStorePort):
    """
    S3-kompatibler Objektspeicher (boto3). Jeder put_object ersetzt das Objekt atomar.
    Die Blobs sind public-read; Cache-Control wird pro Blob gesetzt.
    """

    def __init__(self, bucket: str, prefix: str = "", client: Any = None, public_read: bool = True) -> None:
        if not bucket:
            raise ValueError("bucket darf nicht leer sein")
        if client is None:
            client = boto3.client("s3")
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.client = client
        self.public_read = public_read

    def _key(self, name: str) -> str:
        return f"{self.prefix}/{name}" if self.prefix else name

    def write_json(self, name: str, payload: Dict[str, Any], *, cache_control: str) -> None:
        kwargs: Dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": self._key(name),
            "Body": dump_blob(payload),
            "ContentType": "application/json",
            "CacheControl": cache_control,
        }
        if self.public_read:
            kwargs["ACL"] = "public-read"
        try:
            self.client.put_object(**kwargs)
        except (BotoCoreError, ClientError) as e:
            raise StorageWriteFailure(f"S3 put_object {kwargs['Key']} fehlgeschlagen: {e}") from e
        _LOG.info("S3 Blob geschrieben: s3://%s/%s", self.bucket, kwargs["Key"])

    def read_json(self, name: str) -> Optional[Dict[str, Any]]:
        key = self._key(name)
        try:
            resp = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return None
            raise StorageReadFailure(f"S3 get_object {key} fehlgeschlagen: {e}") from e
        except BotoCoreError as e:
            raise StorageReadFailure(f"S3 get_object {key} fehlgeschlagen: {e}") from e
        try:
            return json.loads(resp["Body"].read().decode("utf-8"))
        except ValueError as e:
            raise StorageReadFailure(f"S3 Blob {key} ist kein JSON: {e}") from e
