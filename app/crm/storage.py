"""
Archive for uploaded lead files.

An import writes its raw upload once, after the customers are committed.
Keys look like `csv-imports/<user_id>/<YYYYmmddTHHMMSS>-<filename>`; the app
never reads them back.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from app.crm.constants import CSV_ARCHIVE_PREFIX


class StorageError(RuntimeError):
    pass


def archive_key(user_id: int, filename: str, *, now: datetime) -> str:
    return f"{CSV_ARCHIVE_PREFIX}/{user_id}/{now.strftime('%Y%m%dT%H%M%S')}-{filename}"


class Storage:
    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        raise NotImplementedError


@dataclass(frozen=True)
class LocalStorage(Storage):
    root: Path

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        rel = Path(key.lstrip("/").replace("\\", "/"))
        if ".." in rel.parts:
            raise StorageError(f"Invalid storage key: {key}")
        p = self.root / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)


@dataclass(frozen=True)
class S3Storage(Storage):
    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str

    def _client(self):
        return boto3.client(
            "s3",
            endpoint_url=f"https://{self.endpoint}" if self.endpoint else None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
        )

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        extra: dict[str, object] = {}
        if content_type:
            extra["ContentType"] = content_type
        try:
            self._client().put_object(Bucket=self.bucket, Key=key, Body=data, **extra)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"S3 upload failed for {key}: {e}") from e


def storage_from_config(config) -> Storage:
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    if backend == "s3":
        return S3Storage(
            endpoint=(config.get("S3_ENDPOINT") or "").strip(),
            region=(config.get("S3_REGION") or "nyc3").strip(),
            bucket=(config.get("S3_BUCKET") or "").strip(),
            access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
            secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
        )
    return LocalStorage(root=Path(config.get("STORAGE_ROOT") or (Path(os.getcwd()) / "storage")))
