import asyncio
import io
import logging
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorGridFSBucket
from pymongo.errors import PyMongoError

from .processing import content_type_for

logger = logging.getLogger(__name__)

BUCKET_NAME = "uploads"


class BlobStoreError(Exception):
    """Storing one blob failed. The affected image is skipped."""


class BlobStoreNotInitializedError(RuntimeError):
    """put() was called before connect() succeeded. Fatal for the batch."""


class BlobStore(ABC):
    """Durable storage for original image bytes."""

    def __init__(self) -> None:
        self._ready = False

    @property
    def is_ready(self) -> bool:
        return self._ready

    def require_ready(self) -> None:
        if not self._ready:
            raise BlobStoreNotInitializedError(
                f"{type(self).__name__} is not initialized"
            )

    async def connect(self) -> None:
        """Prepare the backing store. Safe to call more than once."""
        if self._ready:
            return
        await self._connect()
        self._ready = True
        logger.info("%s initialized", type(self).__name__)

    async def put(self, data: bytes, filename: str) -> str:
        """Store the bytes and return an opaque reference id."""
        self.require_ready()
        try:
            return await self._put(data, filename)
        except BlobStoreError:
            raise
        except Exception as e:
            raise BlobStoreError(f"Could not store {filename}: {e}") from e

    async def close(self) -> None:
        self._ready = False

    @abstractmethod
    async def _connect(self) -> None: ...

    @abstractmethod
    async def _put(self, data: bytes, filename: str) -> str: ...


class GridFSBlobStore(BlobStore):
    """Stores originals in a MongoDB GridFS bucket."""

    def __init__(
        self,
        connection_string: str,
        db_name: str,
        bucket_name: str = BUCKET_NAME,
        client: Optional[AsyncIOMotorClient] = None,
    ):
        super().__init__()
        self.connection_string = connection_string
        self.db_name = db_name
        self.bucket_name = bucket_name
        self._client = client
        self._bucket: Optional[AsyncIOMotorGridFSBucket] = None

    async def _connect(self) -> None:
        if self._client is None:
            self._client = AsyncIOMotorClient(self.connection_string)
        try:
            await self._client.admin.command("ping")
        except PyMongoError as e:
            raise BlobStoreNotInitializedError(f"Database connection is not established: {e}") from e
        self._bucket = AsyncIOMotorGridFSBucket(
            self._client[self.db_name], bucket_name=self.bucket_name
        )

    async def _put(self, data: bytes, filename: str) -> str:
        try:
            file_id = await self._bucket.upload_from_stream(
                filename,
                io.BytesIO(data),
                metadata={"contentType": content_type_for(filename)},
            )
        except PyMongoError as e:
            raise BlobStoreError(f"GridFS upload failed for {filename}: {e}") from e
        logger.info("Uploaded image: %s", filename)
        return str(file_id)

    async def close(self) -> None:
        await super().close()
        if self._client is not None:
            self._client.close()
            self._client = None
        self._bucket = None


class LocalBlobStore(BlobStore):
    """Stores originals as files under a local directory; the reference is the stored file name."""

    def __init__(self, directory: Path):
        super().__init__()
        self.directory = Path(directory)

    async def _connect(self) -> None:
        await asyncio.to_thread(self.directory.mkdir, parents=True, exist_ok=True)

    async def _put(self, data: bytes, filename: str) -> str:
        ref = f"{uuid.uuid4().hex}{Path(filename).suffix.lower()}"
        await asyncio.to_thread((self.directory / ref).write_bytes, data)
        logger.info("Stored image %s as %s", filename, ref)
        return ref
