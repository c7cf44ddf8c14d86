"""
Batch pipeline: turns an upload (one image or a zip of images) into vision
API calls and blob store writes, run in bounded waves.

Each image becomes an ImageJob backed by a staged temp file. A job ends either
Completed (described and stored) or Skipped (describe or store failed); a skip
never affects sibling jobs and the temp file is removed either way. Waves of
at most `wave_size` jobs run concurrently, and a wave only starts once every
job of the previous wave has finished.
"""
import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .archive import iter_image_entries
from .processing import media_type_for, read_file, remove_file, write_temp_file
from .storage import BlobStore, BlobStoreError
from .vision import VisionClient

logger = logging.getLogger(__name__)

DEFAULT_WAVE_SIZE = 20


class JobState(str, enum.Enum):
    PENDING = "PENDING"
    DESCRIBING = "DESCRIBING"
    STORING = "STORING"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"


TERMINAL_STATES = (JobState.COMPLETED, JobState.SKIPPED)


@dataclass
class ImageJob:
    filename: str
    path: Path
    api_key: str
    media_type: str
    state: JobState = JobState.PENDING

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    async def discard(self) -> None:
        await remove_file(self.path)


@dataclass
class ImageResult:
    filename: str
    description: Dict[str, Any]
    blob_ref: str

    def to_response(self) -> Dict[str, Any]:
        return {"filename": self.filename, "data": self.description, "imageFileId": self.blob_ref}


@dataclass
class BatchResult:
    results: List[ImageResult] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    waves: int = 0

    def __len__(self) -> int:
        return len(self.results)

    @property
    def submitted(self) -> int:
        return len(self.results) + len(self.skipped)


def partition(jobs: List[ImageJob], size: int) -> List[List[ImageJob]]:
    return [jobs[i:i + size] for i in range(0, len(jobs), size)]


class BatchProcessor:
    def __init__(
        self,
        vision: VisionClient,
        store: BlobStore,
        api_key: str,
        uploads_dir: Path,
        wave_size: int = DEFAULT_WAVE_SIZE,
    ):
        if wave_size < 1:
            raise ValueError("wave_size must be at least 1")
        self.vision = vision
        self.store = store
        self.api_key = api_key
        self.uploads_dir = Path(uploads_dir)
        self.wave_size = wave_size

    async def create_job(self, filename: str, data: bytes) -> ImageJob:
        path = await write_temp_file(self.uploads_dir, filename, data)
        return ImageJob(
            filename=filename,
            path=path,
            api_key=self.api_key,
            media_type=media_type_for(filename, data),
        )

    async def run_job(self, job: ImageJob) -> Optional[ImageResult]:
        """
        Drives one job to a terminal state. Returns None for a skip.

        Only per-image failures are turned into skips; anything else (an
        uninitialized store, cancellation) propagates. The temp file is
        removed on every path.
        """
        try:
            job.state = JobState.DESCRIBING
            data = await read_file(job.path)
            described = await self.vision.describe(data, job.media_type, job.api_key)
            if not described.ok:
                job.state = JobState.SKIPPED
                logger.warning("Skipping %s: %s", job.filename, described.error)
                return None

            job.state = JobState.STORING
            try:
                blob_ref = await self.store.put(data, job.filename)
            except BlobStoreError as e:
                job.state = JobState.SKIPPED
                logger.warning("Skipping %s: %s", job.filename, e)
                return None

            job.state = JobState.COMPLETED
            logger.info("Processed %s (blob %s)", job.filename, blob_ref)
            return ImageResult(filename=job.filename, description=described.description, blob_ref=blob_ref)
        except OSError as e:
            job.state = JobState.SKIPPED
            logger.warning("Skipping %s: could not read staged file: %s", job.filename, e)
            return None
        finally:
            if not job.finished:
                job.state = JobState.SKIPPED
            await job.discard()

    async def _run_wave(self, wave: List[ImageJob], batch: BatchResult) -> None:
        tasks = [asyncio.create_task(self.run_job(job)) for job in wave]
        try:
            for next_done in asyncio.as_completed(tasks):
                result = await next_done
                if result is not None:
                    batch.results.append(result)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        batch.skipped.extend(job.filename for job in wave if job.state is JobState.SKIPPED)

    async def run_batch(self, jobs: Iterable[ImageJob]) -> BatchResult:
        jobs = list(jobs)
        batch = BatchResult()
        try:
            self.store.require_ready()
            for wave in partition(jobs, self.wave_size):
                batch.waves += 1
                start = time.perf_counter()
                await self._run_wave(wave, batch)
                logger.info(
                    "Wave %d finished: %d jobs in %d ms",
                    batch.waves,
                    len(wave),
                    int((time.perf_counter() - start) * 1000),
                )
        finally:
            for job in jobs:
                if not job.finished:
                    await job.discard()

        logger.info("Batch finished: %d completed, %d skipped", len(batch.results), len(batch.skipped))
        return batch

    async def process_upload(self, filename: str, data: bytes) -> Optional[ImageResult]:
        """Single-image path: the same job lifecycle without waves."""
        self.store.require_ready()
        job = await self.create_job(filename, data)
        return await self.run_job(job)

    async def process_archive(self, data: bytes) -> BatchResult:
        jobs: List[ImageJob] = []
        try:
            for entry in iter_image_entries(data):
                jobs.append(await self.create_job(entry.name, entry.data))
        except BaseException:
            for job in jobs:
                await job.discard()
            raise

        logger.info("Archive contains %d images", len(jobs))
        return await self.run_batch(jobs)
