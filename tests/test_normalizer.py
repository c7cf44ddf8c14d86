import copy
import json
import sys

import pytest

from image_describer.batch import ImageResult
from image_describer.normalizer import (
    PersistenceLauncher,
    normalize,
    persist_results,
    render_document,
    stage_records,
)

from fakes import SAMPLE_DESCRIPTION


def _result(description=None, filename="cat.jpg", blob_ref="blob-1") -> ImageResult:
    if description is None:
        description = copy.deepcopy(SAMPLE_DESCRIPTION)
    return ImageResult(filename=filename, description=description, blob_ref=blob_ref)


def test_normalize_full_response():
    record = normalize(_result())

    assert record.model_dump(by_alias=True) == {
        "filename": "cat.jpg",
        "imageFileId": "blob-1",
        "data": {
            "Categories": ["square", "red"],
            "GPT_S_Description": "A red square on a plain background.",
            "Tags": SAMPLE_DESCRIPTION["tags"],
            "Colours": SAMPLE_DESCRIPTION["colors"],
            "Width": 8,
            "Height": 8,
            "Format": "Jpeg",
        },
    }


def test_normalize_is_pure():
    result = _result()
    before = copy.deepcopy(result.description)

    first = render_document([normalize(result)])
    second = render_document([normalize(result)])

    assert first == second
    assert result.description == before


def test_missing_metadata_becomes_null():
    description = {"caption_GPTS": "x", "tags": [], "colors": []}

    data = normalize(_result(description)).model_dump(by_alias=True)["data"]

    assert data["Width"] is None
    assert data["Height"] is None
    assert data["Format"] is None


def test_missing_everything():
    data = normalize(_result({"status": "success"})).model_dump(by_alias=True)["data"]

    assert data == {
        "Categories": [],
        "GPT_S_Description": None,
        "Tags": [],
        "Colours": [],
        "Width": None,
        "Height": None,
        "Format": None,
    }


def test_partial_metadata_and_odd_values():
    description = {
        "tags": [{"name": "cat"}, {"confidence": 0.3}, "dog", 7],
        "colors": "not-a-list",
        "metadata": {"width": "640", "height": "tall"},
    }

    data = normalize(_result(description)).model_dump(by_alias=True)["data"]

    assert data["Categories"] == ["cat", "dog"]
    assert data["Colours"] == []
    assert data["Width"] == 640
    assert data["Height"] is None
    assert data["Format"] is None


def test_stage_records_writes_unique_documents(tmp_path):
    records = [normalize(_result()), normalize(_result(filename="dog.png", blob_ref="blob-2"))]

    first = stage_records(records, tmp_path / "tmp")
    second = stage_records(records, tmp_path / "tmp")

    assert first != second
    document = json.loads(first.read_text())
    assert [img["filename"] for img in document["images"]] == ["cat.jpg", "dog.png"]
    assert document["images"][1]["imageFileId"] == "blob-2"


@pytest.mark.asyncio
async def test_launcher_runs_command_and_removes_document(tmp_path):
    out = tmp_path / "seen.json"
    # the document path is appended after the configured arguments
    command = [sys.executable, "-c", f"import shutil, sys; shutil.copy(sys.argv[1], {str(out)!r})"]
    launcher = PersistenceLauncher(command)
    document = stage_records([normalize(_result())], tmp_path)

    returncode = await launcher.launch(document)

    assert returncode == 0
    assert not document.exists()
    assert json.loads(out.read_text())["images"][0]["filename"] == "cat.jpg"


@pytest.mark.asyncio
async def test_launcher_failure_is_only_logged(tmp_path, caplog):
    launcher = PersistenceLauncher([sys.executable, "-c", "import sys; sys.exit(3)"])
    document = stage_records([normalize(_result())], tmp_path)

    returncode = await launcher.launch(document)

    assert returncode == 3
    assert not document.exists()
    assert "exited with code 3" in caplog.text


@pytest.mark.asyncio
async def test_launcher_missing_command(tmp_path):
    launcher = PersistenceLauncher([str(tmp_path / "does-not-exist.sh")])
    document = stage_records([normalize(_result())], tmp_path)

    assert await launcher.launch(document) is None
    assert not document.exists()


@pytest.mark.asyncio
async def test_persist_results_stages_and_launches(tmp_path):
    launcher = PersistenceLauncher([sys.executable, "-c", "pass"])

    path = await persist_results([_result()], tmp_path / "tmp", launcher)
    await launcher.drain()

    assert path.parent == tmp_path / "tmp"
    assert not path.exists()


@pytest.mark.asyncio
async def test_launcher_logs_unexpected_spawn_errors(tmp_path, caplog):
    # an embedded NUL makes create_subprocess_exec raise ValueError, not OSError
    launcher = PersistenceLauncher([sys.executable + "\0bad"])
    document = stage_records([normalize(_result())], tmp_path)

    assert await launcher.launch(document) is None
    assert not document.exists()
    assert "Persistence step" in caplog.text
    assert document.name in caplog.text
