"""Blob storage for uploaded media (MinIO/S3 or local disk)."""

import logging
import os
import shutil
from typing import BinaryIO, Optional
import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from diary_media.config import get_settings
from diary_media.errors import BlobNotFound, PayloadTooLarge

logger = logging.getLogger(__name__)

settings = get_settings()

CHUNK_SIZE = 1024 * 1024


class _LimitedReader:
    """File-like wrapper that counts bytes and refuses to read past a limit."""

    def __init__(self, stream: BinaryIO, max_bytes: Optional[int]):
        self._stream = stream
        self._max_bytes = max_bytes
        self.bytes_read = 0

    def read(self, size: int = -1) -> bytes:
        chunk = self._stream.read(size)
        self.bytes_read += len(chunk)
        if self._max_bytes is not None and self.bytes_read > self._max_bytes:
            raise PayloadTooLarge(
                f"Upload exceeds the {self._max_bytes} byte limit"
            )
        return chunk


class StorageService:
    """Write-once blob store backed by MinIO/S3."""

    def __init__(self, bucket: Optional[str] = None):
        self._client = None
        self._bucket = bucket or settings.minio_bucket

    @property
    def client(self):
        """Lazy initialization of S3 client."""
        if self._client is None:
            endpoint_url = f"{'https' if settings.minio_use_ssl else 'http'}://{settings.minio_endpoint}"
            self._client = boto3.client(
                "s3",
                endpoint_url=endpoint_url,
                aws_access_key_id=settings.minio_access_key,
                aws_secret_access_key=settings.minio_secret_key,
                config=Config(signature_version="s3v4"),
            )
            self._ensure_bucket()
        return self._client

    def _ensure_bucket(self):
        """Create bucket if it doesn't exist."""
        try:
            self.client.head_bucket(Bucket=self._bucket)
        except ClientError:
            self.client.create_bucket(Bucket=self._bucket)

    def write(
        self,
        key: str,
        stream: BinaryIO,
        content_type: str,
        max_bytes: Optional[int] = None,
    ) -> int:
        """
        Stream bytes into storage under ``key``.

        Returns the number of bytes written. Raises PayloadTooLarge if more than
        ``max_bytes`` arrive.
        """
        reader = _LimitedReader(stream, max_bytes)
        self.client.upload_fileobj(
            reader,
            self._bucket,
            key,
            ExtraArgs={"ContentType": content_type},
        )
        return reader.bytes_read

    def download_to(self, key: str, fileobj: BinaryIO) -> None:
        """Stream a blob into a writable file object."""
        try:
            self.client.download_fileobj(self._bucket, key, fileobj)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey"):
                raise BlobNotFound(key) from e
            raise

    def exists(self, key: str) -> bool:
        """Check whether a blob exists."""
        try:
            self.client.head_object(Bucket=self._bucket, Key=key)
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey"):
                return False
            raise

    def delete(self, key: str) -> None:
        """Delete a blob. Deleting a missing key is not an error."""
        self.client.delete_object(Bucket=self._bucket, Key=key)

    def generate_presigned_url(self, key: str, expires_in: int = 3600) -> str:
        """Generate a presigned URL for downloading a blob."""
        return self.client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self._bucket, "Key": key},
            ExpiresIn=expires_in,
        )

    def health_check(self) -> bool:
        """Check if storage is accessible."""
        try:
            self.client.head_bucket(Bucket=self._bucket)
            return True
        except Exception:
            return False


class LocalStorageService:
    """Write-once blob store on the local filesystem."""

    def __init__(self, root: Optional[str] = None):
        self.root = os.path.abspath(root or settings.local_storage_root)
        os.makedirs(self.root, exist_ok=True)

    def _path(self, key: str) -> str:
        safe = os.path.basename(key.replace("\\", "/"))
        if not safe or safe in (".", ".."):
            raise ValueError(f"Invalid storage key: {key!r}")
        return os.path.join(self.root, safe)

    def write(
        self,
        key: str,
        stream: BinaryIO,
        content_type: str,
        max_bytes: Optional[int] = None,
    ) -> int:
        """
        Stream bytes to ``{root}/{key}``.

        The file is created exclusively so an existing blob is never overwritten.
        A partially written file is removed before the error propagates.
        """
        path = self._path(key)
        reader = _LimitedReader(stream, max_bytes)
        with open(path, "xb") as f:
            try:
                shutil.copyfileobj(reader, f, CHUNK_SIZE)
            except BaseException:
                f.close()
                os.remove(path)
                raise
        return reader.bytes_read

    def download_to(self, key: str, fileobj: BinaryIO) -> None:
        """Stream a blob into a writable file object."""
        try:
            with open(self._path(key), "rb") as f:
                shutil.copyfileobj(f, fileobj, CHUNK_SIZE)
        except FileNotFoundError as e:
            raise BlobNotFound(key) from e

    def exists(self, key: str) -> bool:
        return os.path.exists(self._path(key))

    def delete(self, key: str) -> None:
        path = self._path(key)
        if os.path.exists(path):
            os.remove(path)

    def local_path(self, key: str) -> str:
        """Filesystem path of an existing blob."""
        path = self._path(key)
        if not os.path.isfile(path):
            raise BlobNotFound(key)
        return path

    def health_check(self) -> bool:
        return os.path.isdir(self.root) and os.access(self.root, os.W_OK)


BlobStore = StorageService | LocalStorageService

_blob_store: Optional[BlobStore] = None


def get_blob_store() -> BlobStore:
    """Return the configured blob store (created once per process)."""
    global _blob_store
    if _blob_store is None:
        if settings.storage_backend == "local":
            _blob_store = LocalStorageService()
        else:
            _blob_store = StorageService()
        logger.info(f"Using {settings.storage_backend} blob storage")
    return _blob_store
