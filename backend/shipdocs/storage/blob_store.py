"""
File-system blob store, bucketed.

Layout: ``{root}/{bucket}/{file_id}.bin`` holds the payload and
``{root}/{bucket}/{file_id}.json`` its descriptor (filename, content type,
length, upload date, metadata). A blob only becomes visible once both files
have been fully written and renamed into place, so readers never observe a
half-written payload.

Writes here are independent of the record database's transactions. Callers
that swap a record's ``file_id`` must upload first, commit the swap, and only
then delete the old blob.
"""

import json
import logging
import uuid
from collections.abc import AsyncIterator
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import aiofiles
import aiofiles.os

from shipdocs.config import Settings
from shipdocs.errors import FileNotFound, StoreUnavailable

logger = logging.getLogger("shipdocs.blob_store")


@dataclass
class BlobFile:
    """Descriptor of a stored blob."""

    file_id: uuid.UUID
    bucket: str
    filename: str
    content_type: str
    length: int
    upload_date: datetime
    metadata: dict = field(default_factory=dict)

    def to_json(self) -> str:
        data = asdict(self)
        data["file_id"] = str(self.file_id)
        data["upload_date"] = self.upload_date.isoformat()
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str) -> "BlobFile":
        data = json.loads(raw)
        return cls(
            file_id=uuid.UUID(data["file_id"]),
            bucket=data["bucket"],
            filename=data["filename"],
            content_type=data.get("content_type") or "application/octet-stream",
            length=int(data.get("length") or 0),
            upload_date=datetime.fromisoformat(data["upload_date"]),
            metadata=data.get("metadata") or {},
        )


class BlobStore:
    def __init__(self, settings: Settings):
        self.root = Path(settings.blob_root)
        self.bucket = settings.blob_bucket
        self.chunk_size = settings.blob_chunk_size
        buckets = [self.bucket]
        for name in settings.blob_fallback_buckets:
            if name not in buckets:
                buckets.append(name)
        self.buckets = buckets

    def _data_path(self, bucket: str, file_id: uuid.UUID) -> Path:
        return self.root / bucket / f"{file_id}.bin"

    def _meta_path(self, bucket: str, file_id: uuid.UUID) -> Path:
        return self.root / bucket / f"{file_id}.json"

    async def put(
        self,
        filename: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        metadata: dict | None = None,
        bucket: str | None = None,
    ) -> uuid.UUID:
        """Store a payload and return its new file id."""
        bucket = bucket or self.bucket
        file_id = uuid.uuid4()
        blob = BlobFile(
            file_id=file_id,
            bucket=bucket,
            filename=filename,
            content_type=content_type,
            length=len(data),
            upload_date=datetime.now(timezone.utc),
            metadata=metadata or {},
        )
        data_path = self._data_path(bucket, file_id)
        meta_path = self._meta_path(bucket, file_id)
        data_tmp = data_path.with_suffix(".bin.part")
        meta_tmp = meta_path.with_suffix(".json.part")

        try:
            await aiofiles.os.makedirs(data_path.parent, exist_ok=True)
            async with aiofiles.open(data_tmp, "wb") as f:
                for offset in range(0, len(data), self.chunk_size):
                    await f.write(data[offset:offset + self.chunk_size])
                await f.flush()
            async with aiofiles.open(meta_tmp, "w") as f:
                await f.write(blob.to_json())
            # Descriptor first: a payload without descriptor is never listed
            await aiofiles.os.replace(meta_tmp, meta_path)
            await aiofiles.os.replace(data_tmp, data_path)
        except OSError as e:
            logger.error("Failed to store blob %s (%s) in bucket %s: %s", file_id, filename, bucket, e)
            for leftover in (data_tmp, meta_tmp, meta_path):
                try:
                    await aiofiles.os.remove(leftover)
                except OSError:
                    pass
            raise StoreUnavailable(
                "Blob store write failed", details={"file_id": str(file_id), "reason": str(e)}
            ) from e

        logger.info("Stored blob %s (%s, %d bytes) in bucket %s", file_id, filename, len(data), bucket)
        return file_id

    async def stat(self, file_id: uuid.UUID, bucket: str | None = None) -> BlobFile | None:
        """Return the descriptor for a blob in one bucket (the canonical one by default)."""
        bucket = bucket or self.bucket
        if not await aiofiles.os.path.exists(self._data_path(bucket, file_id)):
            return None
        try:
            async with aiofiles.open(self._meta_path(bucket, file_id), "r") as f:
                return BlobFile.from_json(await f.read())
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError) as e:
            logger.warning("Unreadable descriptor for blob %s in bucket %s: %s", file_id, bucket, e)
            return None

    async def locate(self, file_id: uuid.UUID) -> BlobFile | None:
        """Search the canonical bucket, then the legacy ones, in configured order."""
        for bucket in self.buckets:
            blob = await self.stat(file_id, bucket=bucket)
            if blob is not None:
                return blob
        return None

    async def exists(self, file_id: uuid.UUID) -> bool:
        return await self.stat(file_id) is not None

    async def _require(self, file_id: uuid.UUID, bucket: str | None = None) -> BlobFile:
        blob = await self.stat(file_id, bucket=bucket)
        if blob is None:
            raise FileNotFound(f"File {file_id} not found in blob store", details={"file_id": str(file_id)})
        return blob

    async def get(self, file_id: uuid.UUID, bucket: str | None = None) -> bytes:
        """Read a blob fully into memory."""
        chunks = [chunk async for chunk in self.iter_chunks(file_id, bucket=bucket)]
        return b"".join(chunks)

    async def iter_chunks(self, file_id: uuid.UUID, bucket: str | None = None) -> AsyncIterator[bytes]:
        blob = await self._require(file_id, bucket=bucket)
        path = self._data_path(blob.bucket, file_id)
        try:
            async with aiofiles.open(path, "rb") as f:
                while True:
                    chunk = await f.read(self.chunk_size)
                    if not chunk:
                        break
                    yield chunk
        except FileNotFoundError as e:
            raise FileNotFound(
                f"File {file_id} disappeared while reading", details={"file_id": str(file_id)}
            ) from e
        except OSError as e:
            raise StoreUnavailable(
                "Blob store read failed", details={"file_id": str(file_id), "reason": str(e)}
            ) from e

    async def list_files(self, bucket: str | None = None) -> list[BlobFile]:
        bucket = bucket or self.bucket
        directory = self.root / bucket
        if not await aiofiles.os.path.isdir(directory):
            return []
        try:
            names = await aiofiles.os.listdir(directory)
        except OSError as e:
            raise StoreUnavailable(
                "Blob store listing failed", details={"bucket": bucket, "reason": str(e)}
            ) from e

        files: list[BlobFile] = []
        for name in sorted(names):
            if not name.endswith(".json"):
                continue
            try:
                file_id = uuid.UUID(name[: -len(".json")])
            except ValueError:
                continue
            blob = await self.stat(file_id, bucket=bucket)
            if blob is not None:
                files.append(blob)
        return files

    async def find_by_name(self, filename: str, bucket: str | None = None) -> list[BlobFile]:
        """Blobs in a bucket with an exact filename, newest first."""
        matches = [b for b in await self.list_files(bucket) if b.filename == filename]
        matches.sort(key=lambda b: b.upload_date, reverse=True)
        return matches

    async def delete(self, file_id: uuid.UUID) -> None:
        blob = await self._require(file_id)
        try:
            # Payload first so the blob stops resolving immediately
            await aiofiles.os.remove(self._data_path(blob.bucket, file_id))
            await aiofiles.os.remove(self._meta_path(blob.bucket, file_id))
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StoreUnavailable(
                "Blob store delete failed", details={"file_id": str(file_id), "reason": str(e)}
            ) from e
        logger.info("Deleted blob %s (%s) from bucket %s", file_id, blob.filename, blob.bucket)

    async def copy_to_bucket(
        self, file_id: uuid.UUID, source_bucket: str, bucket: str | None = None
    ) -> uuid.UUID:
        """Copy a blob into another bucket (the canonical one by default) under a new id."""
        blob = await self._require(file_id, bucket=source_bucket)
        data = await self.get(file_id, bucket=source_bucket)
        metadata = {**blob.metadata, "migrated_from": {"bucket": blob.bucket, "file_id": str(file_id)}}
        return await self.put(
            blob.filename, data, content_type=blob.content_type, metadata=metadata, bucket=bucket
        )
