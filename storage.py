"""
S3 gateway for registration attachments.

boto3 is blocking, so every call is pushed to the thread pool and awaited.
Transport errors are wrapped in StorageError; nothing is retried here.
"""
import asyncio
import logging
import os
import re
import time
import uuid
from datetime import datetime, timezone
from typing import Iterable, List, Optional
from urllib.parse import quote, unquote, urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from fastapi.concurrency import run_in_threadpool

import config
from attachments import Attachment
from errors import StorageError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_basename(original_name: str) -> str:
    base = os.path.splitext(os.path.basename(original_name or ""))[0]
    base = _UNSAFE_CHARS.sub("_", base).strip("._")
    return base or "file"


def generate_key(original_name: str, folder: str = "uploads") -> str:
    """`{folder}/{epoch ms}-{8 hex}-{basename}{ext}`; the token guards against collisions."""
    extension = os.path.splitext(original_name or "")[1].lower()
    token = uuid.uuid4().hex[:8]
    name = f"{int(time.time() * 1000)}-{token}-{sanitize_basename(original_name)}{extension}"
    folder = (folder or "").strip("/")
    return f"{folder}/{name}" if folder else name


class ObjectStoreGateway:
    def __init__(self, client, bucket: str, region: str):
        self.client = client
        self.bucket = bucket
        self.region = region

    def public_url(self, key: str) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{quote(key)}"

    def key_from_url(self, url: str) -> Optional[str]:
        """Recover an object key from a URL produced by `public_url`."""
        if not url:
            return None
        path = unquote(urlparse(url).path).lstrip("/")
        return path or None

    def attachment_keys(self, files: Optional[dict]) -> List[str]:
        """Keys referenced by a record's `files` mapping (descriptors or bare URLs)."""
        keys = []
        for value in (files or {}).values():
            if isinstance(value, dict) and value.get("key"):
                keys.append(value["key"])
            elif isinstance(value, str):
                key = self.key_from_url(value)
                if key:
                    keys.append(key)
        return keys

    async def upload(self, attachment: Attachment, folder: str = "uploads") -> dict:
        key = generate_key(attachment.filename, folder)
        uploaded_at = datetime.now(timezone.utc).isoformat()
        try:
            await run_in_threadpool(
                self.client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=attachment.content,
                ContentType=attachment.content_type,
                ContentDisposition="inline",
                # S3 user metadata must be ASCII
                Metadata={"originalName": quote(attachment.filename or ""), "uploadedAt": uploaded_at},
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"S3 upload of {key} failed: {e}")
            raise StorageError("Failed to upload file", detail=str(e))

        return {
            "url": self.public_url(key),
            "key": key,
            "originalName": attachment.filename,
            "size": attachment.size,
            "mimeType": attachment.content_type,
            "uploadedAt": uploaded_at,
        }

    async def upload_many(self, attachments: Iterable[Attachment], folder: str = "uploads") -> List[dict]:
        """Upload in parallel. Any failure raises; already stored objects are left for the caller."""
        try:
            return list(await asyncio.gather(*(self.upload(a, folder) for a in attachments)))
        except StorageError as e:
            raise StorageError("Failed to upload files", detail=e.detail)

    async def delete(self, key: str) -> bool:
        try:
            await run_in_threadpool(self.client.delete_object, Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"S3 delete of {key} failed: {e}")
            raise StorageError("Failed to delete file", detail=str(e))
        return True

    async def delete_many(self, keys: Iterable[str]) -> List[str]:
        """
        Delete every key in parallel.

        Returns:
            Keys that were deleted.

        Raises:
            StorageError listing the keys that failed, after all deletes ran.
        """
        keys = [k for k in keys if k]
        results = await asyncio.gather(*(self.delete(k) for k in keys), return_exceptions=True)

        deleted, failures = [], []
        for key, result in zip(keys, results):
            if isinstance(result, Exception):
                failures.append(f"{key}: {getattr(result, 'detail', result)}")
            else:
                deleted.append(key)

        if failures:
            raise StorageError("Failed to delete files", detail="; ".join(failures))
        return deleted

    async def get_metadata(self, key: str) -> dict:
        try:
            result = await run_in_threadpool(self.client.head_object, Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"S3 metadata lookup for {key} failed: {e}")
            raise StorageError("Failed to get file metadata", detail=str(e))

        last_modified = result.get("LastModified")
        return {
            "contentType": result.get("ContentType"),
            "contentLength": result.get("ContentLength"),
            "lastModified": last_modified.isoformat() if last_modified else None,
            "metadata": result.get("Metadata", {}),
        }

    async def presign(self, key: str, expires_in: int = config.PRESIGN_TTL_SECONDS) -> dict:
        try:
            url = await run_in_threadpool(
                self.client.generate_presigned_url,
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Presigning {key} failed: {e}")
            raise StorageError("Failed to generate file link", detail=str(e))
        return {"url": url, "expiresIn": expires_in}


def build_object_store() -> ObjectStoreGateway:
    client = boto3.client(
        "s3",
        region_name=config.AWS_REGION,
        aws_access_key_id=config.AWS_ACCESS_KEY_ID,
        aws_secret_access_key=config.AWS_SECRET_ACCESS_KEY,
    )
    return ObjectStoreGateway(client, config.AWS_S3_BUCKET, config.AWS_REGION)
