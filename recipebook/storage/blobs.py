"""Blob stores for recipe bodies and images.

Keys are flat strings chosen by the caller (`recipe-<id>.json`,
`image-<hex>`). Two backends share one contract:

- write(key, data): create or replace
- read(key): bytes, or BlobNotFound
- delete(key): best-effort, True if the blob is gone afterwards
- exists(key)

A key outside `[A-Za-z0-9._-]` (or containing `..`) raises InvalidBlobKey,
which is both a BlobStoreError and a ValueError.
"""

import io
import logging
import os
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..settings import settings

logger = logging.getLogger("recipebook.storage")

_KEY_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class BlobStoreError(Exception):
    """Blob I/O failed."""


class BlobNotFound(BlobStoreError):
    """No blob under the requested key."""


class InvalidBlobKey(BlobStoreError, ValueError):
    """Key is not a flat `[A-Za-z0-9._-]` name."""


def check_key(key: str) -> str:
    if not _KEY_RE.match(key or "") or ".." in key:
        raise InvalidBlobKey(f"Invalid blob key: {key!r}")
    return key


class BlobStore(ABC):
    @abstractmethod
    def write(self, key: str, data: bytes) -> None:
        pass

    @abstractmethod
    def read(self, key: str) -> bytes:
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        pass

    @abstractmethod
    def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    def healthcheck(self) -> bool:
        pass


class LocalBlobStore(BlobStore):
    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.root / check_key(key)

    def write(self, key: str, data: bytes) -> None:
        path = self._path(key)
        # Write to a temp file and swap it in so readers never see a partial blob
        try:
            fd, tmp = tempfile.mkstemp(dir=self.root, prefix=".tmp-")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                os.replace(tmp, path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
        except OSError as e:
            raise BlobStoreError(f"Failed to write {path}: {e}") from e
        logger.info(f"Saved {len(data)} bytes to {path}")

    def read(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise BlobNotFound(key) from e
        except OSError as e:
            raise BlobStoreError(f"Failed to read {path}: {e}") from e

    def delete(self, key: str) -> bool:
        try:
            path = self._path(key)
        except InvalidBlobKey:
            logger.warning(f"Invalid delete key: {key}")
            return False
        try:
            path.unlink(missing_ok=True)
            logger.info(f"Deleted file {path}")
            return True
        except OSError as e:
            logger.error(f"Failed to delete {path}: {e}")
            return False

    def exists(self, key: str) -> bool:
        return self._path(key).exists()

    def healthcheck(self) -> bool:
        return self.root.is_dir() and os.access(self.root, os.W_OK)


class S3BlobStore(BlobStore):
    def __init__(
        self,
        bucket: str,
        endpoint_url: Optional[str] = None,
        region_name: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        client=None,
    ):
        self.bucket = bucket
        self.s3 = client or boto3.client(
            service_name="s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            region_name=region_name,
        )

    @staticmethod
    def _is_missing(e: ClientError) -> bool:
        code = e.response.get("Error", {}).get("Code")
        return code in ("NoSuchKey", "404", "NotFound")

    def write(self, key: str, data: bytes) -> None:
        check_key(key)
        try:
            self.s3.put_object(Bucket=self.bucket, Key=key, Body=io.BytesIO(data))
        except (ClientError, BotoCoreError) as e:
            raise BlobStoreError(f"Failed to put s3://{self.bucket}/{key}: {e}") from e

    def read(self, key: str) -> bytes:
        check_key(key)
        try:
            obj = self.s3.get_object(Bucket=self.bucket, Key=key)
            return obj["Body"].read()
        except ClientError as e:
            if self._is_missing(e):
                raise BlobNotFound(key) from e
            raise BlobStoreError(f"Failed to get s3://{self.bucket}/{key}: {e}") from e
        except BotoCoreError as e:
            raise BlobStoreError(f"Failed to get s3://{self.bucket}/{key}: {e}") from e

    def delete(self, key: str) -> bool:
        try:
            self.s3.delete_object(Bucket=self.bucket, Key=check_key(key))
            return True
        except (InvalidBlobKey, ClientError, BotoCoreError) as e:
            logger.error(f"Failed to delete s3://{self.bucket}/{key}: {e}")
            return False

    def exists(self, key: str) -> bool:
        check_key(key)
        try:
            self.s3.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if self._is_missing(e):
                return False
            raise BlobStoreError(f"Failed to stat s3://{self.bucket}/{key}: {e}") from e
        except BotoCoreError as e:
            raise BlobStoreError(f"Failed to stat s3://{self.bucket}/{key}: {e}") from e

    def healthcheck(self) -> bool:
        # lightweight call; will raise if creds/endpoint wrong
        self.s3.list_objects_v2(Bucket=self.bucket, MaxKeys=1)
        return True


def get_store() -> BlobStore:
    if settings.blob_backend == "s3":
        return S3BlobStore(
            bucket=settings.object_store_bucket,
            endpoint_url=settings.object_store_endpoint,
            region_name=settings.object_store_region,
            access_key_id=settings.object_store_access_key_id,
            secret_access_key=settings.object_store_secret_access_key,
        )
    return LocalBlobStore(settings.media_root)
