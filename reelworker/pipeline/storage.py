"""
S3/R2 storage helpers for the pipeline.

All run artifacts are stored under:
  pipeline/{owner_id}/{run_id}/{filename}

Uploads go through boto3 (run in a worker thread so the event loop keeps
moving); downloads use httpx with an explicit per-call timeout.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import boto3
import httpx
from boto3.exceptions import S3UploadFailedError
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import PipelineSettings
from .errors import StorageError, UploadFailed

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "mp4": "video/mp4",
}


# ── Helpers ──────────────────────────────────────────────────────────────────

def artifact_key(owner_id: str, run_id: str, filename: str) -> str:
    """Generate the S3 key for a pipeline artifact."""
    return f"pipeline/{owner_id}/{run_id}/{filename}"


def content_type_for(filename: str) -> str:
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    return CONTENT_TYPES.get(ext, "application/octet-stream")


def guess_mime(url: str, header: Optional[str] = None) -> str:
    """MIME type from a response header, falling back to the URL suffix."""
    if header:
        return header.split(";")[0].strip()
    lower = url.lower()
    if ".png" in lower:
        return "image/png"
    if ".webp" in lower:
        return "image/webp"
    return "image/jpeg"


class ObjectStorage:
    """
    Thin S3-compatible object store.

    The boto3 client is created lazily on first upload so that constructing
    the service never needs credentials.
    """

    def __init__(self, settings: PipelineSettings, s3_client=None):
        self._settings = settings
        self._s3 = s3_client

    def _client(self):
        if self._s3 is None:
            s = self._settings
            self._s3 = boto3.client(
                "s3",
                endpoint_url=s.storage_endpoint_url or None,
                aws_access_key_id=s.storage_access_key_id or None,
                aws_secret_access_key=s.storage_secret_access_key or None,
                config=BotoConfig(signature_version="s3v4"),
                region_name=s.storage_region,
            )
        return self._s3

    def public_url(self, key: str) -> str:
        base = self._settings.storage_public_url.rstrip("/")
        if not base:
            base = f"https://{self._settings.storage_bucket}.s3.amazonaws.com"
        return f"{base}/{key}"

    # ── Upload ───────────────────────────────────────────────────────────

    def _put_bytes(self, data: bytes, key: str, content_type: str) -> str:
        try:
            self._client().put_object(
                Bucket=self._settings.storage_bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
            if self._settings.storage_make_public:
                self.make_public(key)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Storage upload failed for key={key}: {e}")
            raise UploadFailed(f"Upload failed for {key}: {e}") from e

        url = self.public_url(key)
        logger.info(f"Uploaded {len(data)} bytes: {url}")
        return url

    def _put_file(self, path: Path, key: str, content_type: str) -> str:
        try:
            self._client().upload_file(
                str(path),
                self._settings.storage_bucket,
                key,
                ExtraArgs={"ContentType": content_type},
            )
            if self._settings.storage_make_public:
                self.make_public(key)
        except (BotoCoreError, ClientError, S3UploadFailedError, OSError) as e:
            logger.error(f"Storage upload failed for key={key}: {e}")
            raise UploadFailed(f"Upload failed for {key}: {e}") from e

        url = self.public_url(key)
        logger.info(f"Uploaded {path.name}: {url}")
        return url

    def make_public(self, key: str):
        """Grant public read on an uploaded object."""
        self._client().put_object_acl(
            Bucket=self._settings.storage_bucket,
            Key=key,
            ACL="public-read",
        )

    async def upload(self, data: bytes, key: str, content_type: str) -> str:
        """Upload raw bytes and return the object's public URL."""
        return await asyncio.to_thread(self._put_bytes, data, key, content_type)

    async def upload_file(self, path: Path, key: str, content_type: Optional[str] = None) -> str:
        """Upload a local file and return the object's public URL."""
        return await asyncio.to_thread(
            self._put_file, Path(path), key, content_type or content_type_for(str(path))
        )

    # ── Download ─────────────────────────────────────────────────────────

    async def download(self, url: str) -> bytes:
        """Download an object from a public URL and return raw bytes."""
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.download_timeout, follow_redirects=True
            ) as client:
                resp = await client.get(url)
                resp.raise_for_status()
                return resp.content
        except httpx.HTTPError as e:
            raise StorageError(f"Download failed for {url}: {e}") from e

    async def download_with_type(self, url: str) -> tuple[bytes, str]:
        """Download bytes plus a best-effort MIME type."""
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.download_timeout, follow_redirects=True
            ) as client:
                resp = await client.get(url)
                resp.raise_for_status()
                return resp.content, guess_mime(url, resp.headers.get("content-type"))
        except httpx.HTTPError as e:
            raise StorageError(f"Download failed for {url}: {e}") from e

    async def download_to_file(self, url: str, path: Path) -> Path:
        """Stream an object to a local file (the media tools need seekable input)."""
        path = Path(path)
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.download_timeout, follow_redirects=True
            ) as client:
                async with client.stream("GET", url) as resp:
                    resp.raise_for_status()
                    with open(path, "wb") as f:
                        async for chunk in resp.aiter_bytes():
                            f.write(chunk)
        except httpx.HTTPError as e:
            raise StorageError(f"Download failed for {url}: {e}") from e

        logger.info(f"Downloaded {url} -> {path} ({path.stat().st_size} bytes)")
        return path
