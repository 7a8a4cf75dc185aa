"""
storage.py — Blob store for shared file bytes.

MinIO (S3-compatible) when enabled and reachable, local disk otherwise.
Keys are opaque strings such as ``uploads/<share id>``.
"""

import os
import logging
import boto3
from botocore.exceptions import BotoCoreError, ClientError
from botocore.config import Config

import config
from errors import BlobNotFoundError, StorageError

logger = logging.getLogger(__name__)

_MISSING_CODES = ("NoSuchKey", "404", "NotFound")


def _get_s3_client(endpoint: str):
    return boto3.client(
        "s3",
        endpoint_url=endpoint,
        aws_access_key_id=config.MINIO_ACCESS_KEY,
        aws_secret_access_key=config.MINIO_SECRET_KEY,
        config=Config(
            signature_version="s3v4",
            connect_timeout=5,
            read_timeout=30,
            retries={"max_attempts": 3, "mode": "standard"},
        ),
        region_name="us-east-1",
    )


def _ensure_bucket(s3_client, bucket: str):
    try:
        s3_client.head_bucket(Bucket=bucket)
    except ClientError as e:
        if e.response["Error"]["Code"] == "404":
            s3_client.create_bucket(Bucket=bucket)
            logger.info(f"Created MinIO bucket: {bucket}")
        else:
            raise


class StorageBackend:

    def __init__(self, use_minio: bool = None, upload_dir: str = None,
                 bucket: str = None, endpoint: str = None):
        self.use_minio = config.USE_MINIO if use_minio is None else use_minio
        self.upload_dir = upload_dir or config.LOCAL_UPLOAD_DIR
        self.bucket = bucket or config.MINIO_BUCKET
        self.endpoint = endpoint or config.MINIO_ENDPOINT
        self._minio_available = False
        self._s3 = None
        os.makedirs(self.upload_dir, exist_ok=True)
        if self.use_minio:
            self._init_minio()

    def _init_minio(self):
        try:
            self._s3 = _get_s3_client(self.endpoint)
            _ensure_bucket(self._s3, self.bucket)
            self._minio_available = True
            logger.info(f"MinIO connected: {self.endpoint} / bucket={self.bucket}")
        except (BotoCoreError, ClientError) as e:
            logger.warning(f"MinIO unavailable ({e}). Falling back to local disk.")
            self._minio_available = False

    @property
    def backend_name(self) -> str:
        return "MinIO" if self._minio_available else "LocalDisk"

    def _path(self, key: str) -> str:
        if not key or key.startswith("/") or ".." in key.split("/"):
            raise StorageError(f"Invalid blob key: {key!r}")
        return os.path.join(self.upload_dir, *key.split("/"))

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        if self._minio_available:
            try:
                self._s3.put_object(
                    Bucket=self.bucket,
                    Key=key,
                    Body=data,
                    ContentType=content_type,
                )
                return
            except (BotoCoreError, ClientError) as e:
                logger.error(f"MinIO PUT failed for {key}: {e}")
                raise StorageError(f"Failed to store {key}") from e

        path = self._path(key)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "wb") as f:
                f.write(data)
        except OSError as e:
            logger.error(f"LocalDisk PUT failed for {key}: {e}")
            raise StorageError(f"Failed to store {key}") from e

    def get(self, key: str) -> bytes:
        if self._minio_available:
            try:
                response = self._s3.get_object(Bucket=self.bucket, Key=key)
                return response["Body"].read()
            except ClientError as e:
                if e.response["Error"]["Code"] in _MISSING_CODES:
                    raise BlobNotFoundError(key) from e
                logger.error(f"MinIO GET failed for {key}: {e}")
                raise StorageError(f"Failed to read {key}") from e
            except BotoCoreError as e:
                logger.error(f"MinIO GET error for {key}: {e}")
                raise StorageError(f"Failed to read {key}") from e

        path = self._path(key)
        if not os.path.exists(path):
            raise BlobNotFoundError(key)
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as e:
            logger.error(f"LocalDisk GET failed for {key}: {e}")
            raise StorageError(f"Failed to read {key}") from e

    def delete(self, key: str) -> None:
        """Remove a blob. Deleting a key that does not exist is not an error."""
        if self._minio_available:
            try:
                # S3 DeleteObject already succeeds for missing keys
                self._s3.delete_object(Bucket=self.bucket, Key=key)
                return
            except (BotoCoreError, ClientError) as e:
                logger.error(f"MinIO DELETE failed for {key}: {e}")
                raise StorageError(f"Failed to delete {key}") from e

        path = self._path(key)
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"LocalDisk DELETE failed for {key}: {e}")
            raise StorageError(f"Failed to delete {key}") from e

    def exists(self, key: str) -> bool:
        if self._minio_available:
            try:
                self._s3.head_object(Bucket=self.bucket, Key=key)
                return True
            except ClientError as e:
                if e.response["Error"]["Code"] in _MISSING_CODES:
                    return False
                raise StorageError(f"Failed to check {key}") from e
        return os.path.exists(self._path(key))

    def get_health(self) -> dict:
        if not self.use_minio:
            return {"status": "local_disk", "backend": self.backend_name, "message": "MinIO disabled"}
        if self._minio_available:
            try:
                self._s3.head_bucket(Bucket=self.bucket)
                return {"status": "healthy", "backend": self.backend_name, "endpoint": self.endpoint}
            except (BotoCoreError, ClientError) as e:
                return {"status": "degraded", "backend": self.backend_name, "error": str(e)}
        return {"status": "fallback", "backend": self.backend_name}


_storage = None


def get_storage() -> StorageBackend:
    """Process-wide backend, created on first use."""
    global _storage
    if _storage is None:
        _storage = StorageBackend()
    return _storage
