"""
Shared pytest fixtures for image_describer tests.
"""
import pytest

from image_describer.batch import BatchProcessor

from fakes import FakeStore, FakeVision


@pytest.fixture
def vision():
    return FakeVision()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def uploads(tmp_path):
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def make_processor(uploads):
    def _make(vision, store, wave_size: int = 20) -> BatchProcessor:
        return BatchProcessor(vision, store, api_key="test-key", uploads_dir=uploads, wave_size=wave_size)

    return _make
