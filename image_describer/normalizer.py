import asyncio
import json
import logging
import uuid
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Set

from .batch import ImageResult
from .processing import remove_file
from .schemas import NormalizedRecord, RecordData, StagedDocument

logger = logging.getLogger(__name__)

STAGED_PREFIX = "imageResponses"


def _as_list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _tag_name(tag: Any) -> Optional[str]:
    if isinstance(tag, Mapping):
        name = tag.get("name")
        return str(name) if name is not None else None
    if isinstance(tag, str):
        return tag
    return None


def normalize(result: ImageResult) -> NormalizedRecord:
    """
    Maps one vision API response onto the persisted record shape.

    Absent fields become None (or an empty list for list fields); nothing in
    the response can make this raise.
    """
    source = result.description if isinstance(result.description, Mapping) else {}
    tags = _as_list(source.get("tags"))
    metadata = source.get("metadata")
    if not isinstance(metadata, Mapping):
        metadata = {}

    caption = source.get("caption_GPTS")
    fmt = metadata.get("format")

    data = RecordData(
        categories=[name for name in map(_tag_name, tags) if name is not None],
        description=str(caption) if caption is not None else None,
        tags=tags,
        colours=_as_list(source.get("colors")),
        width=_as_int(metadata.get("width")),
        height=_as_int(metadata.get("height")),
        format=str(fmt) if fmt is not None else None,
    )
    return NormalizedRecord(filename=result.filename, blob_ref=result.blob_ref, data=data)


def normalize_all(results: Iterable[ImageResult]) -> List[NormalizedRecord]:
    return [normalize(r) for r in results]


def render_document(records: Sequence[NormalizedRecord]) -> str:
    document = StagedDocument(images=list(records))
    return json.dumps(document.model_dump(by_alias=True), indent=2)


def stage_records(records: Sequence[NormalizedRecord], directory: Path) -> Path:
    """Writes {"images": [...]} to a fresh file in `directory` and returns its path."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{STAGED_PREFIX}-{uuid.uuid4().hex}.json"
    path.write_text(render_document(records), encoding="utf-8")
    return path


class PersistenceLauncher:
    """
    Runs the external persistence step for a staged document in the
    background. Its outcome is logged only and never reaches the caller.
    The staged document is deleted once the step has finished.
    """

    def __init__(self, command: Sequence[str]):
        self.command = list(command)
        self._tasks: Set[asyncio.Task] = set()

    def launch(self, document_path: Path) -> asyncio.Task:
        task = asyncio.create_task(self._run(document_path))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, document_path: Path) -> Optional[int]:
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                str(document_path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await process.communicate()
        except Exception:
            logger.exception("Persistence step %s failed for %s", self.command, document_path.name)
            return None
        finally:
            await remove_file(document_path)

        if stdout:
            logger.info("persist stdout: %s", stdout.decode(errors="replace").strip())
        if stderr:
            logger.warning("persist stderr: %s", stderr.decode(errors="replace").strip())
        if process.returncode != 0:
            logger.error("Persistence step exited with code %s for %s", process.returncode, document_path.name)
        else:
            logger.info("Persisted %s", document_path.name)
        return process.returncode

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


async def persist_results(
    results: Iterable[ImageResult],
    directory: Path,
    launcher: PersistenceLauncher,
) -> Path:
    """Normalizes a batch, stages it and hands it to the persistence step."""
    records = normalize_all(results)
    path = await asyncio.to_thread(stage_records, records, directory)
    launcher.launch(path)
    return path
