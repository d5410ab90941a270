"""
Pytest configuration and fixtures.
"""

import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from mediafx.config import Settings  # noqa: E402
from mediafx.services.concatenator import ConcatenationError  # noqa: E402
from mediafx.services.execution_plan import normalize_plan  # noqa: E402
from mediafx.services.ffmpeg_runner import FFmpegResult  # noqa: E402
from mediafx.services.job_manager import JobManager  # noqa: E402
from mediafx.services.job_store import InMemoryJobStore  # noqa: E402
from mediafx.services.segment_extractor import ExtractionError  # noqa: E402
from mediafx.services.source_acquirer import AcquisitionError  # noqa: E402
from mediafx.services.workspace_manager import WorkspaceManager  # noqa: E402


class FakeAcquirer:
    """Writes one small file per distinct location and records every fetch."""

    def __init__(self, fail_on=None):
        self.fail_on = fail_on
        self.fetched = []
        self.calls = 0

    async def acquire(self, plan, workspace):
        self.calls += 1
        sources = {}
        for i, location in enumerate(plan.distinct_locations()):
            if location == self.fail_on:
                raise AcquisitionError(location, "HTTP 404")
            self.fetched.append(location)
            path = os.path.join(workspace.sources_dir, f"source_{i:03d}.mp4")
            with open(path, "w") as f:
                f.write(location)
            sources[location] = path
        return sources


class FakeExtractor:
    """Writes a text 'segment' naming its source and range."""

    def __init__(self, fail_index=None):
        self.fail_index = fail_index
        self.calls = []

    async def extract(self, source_path, start_offset, duration, sequence_index, workspace):
        self.calls.append(sequence_index)
        if sequence_index == self.fail_index:
            raise ExtractionError(sequence_index, "Invalid data found when processing input", 1)

        with open(source_path) as f:
            location = f.read()
        path = os.path.join(workspace.segments_dir, f"segment_{sequence_index:04d}.mp4")
        with open(path, "w") as f:
            f.write(f"{location}@{start_offset:g}+{duration:g}\n")
        return path


class FakeConcatenator:
    """Joins the text segments in the order given."""

    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    async def concatenate(self, segment_paths, workspace):
        self.calls.append(list(segment_paths))
        if self.fail:
            raise ConcatenationError("FFmpeg concat failed: boom", 1)

        output_path = workspace.file_path("montage.mp4")
        with open(output_path, "w") as out:
            for path in segment_paths:
                with open(path) as f:
                    out.write(f.read())
        return output_path


@pytest.fixture
def make_settings(tmp_path):
    """Factory for Settings rooted in a temporary workspace."""

    def _make(**overrides):
        values = {"workspace_root": str(tmp_path / "workspaces")}
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def workspace_manager(tmp_path):
    """WorkspaceManager writing under tmp_path."""
    return WorkspaceManager(root=str(tmp_path / "workspaces"))


@pytest.fixture
def make_manager(make_settings, workspace_manager):
    """
    Factory for a JobManager wired to fake pipeline stages.

    Returns (manager, acquirer, extractor, concatenator).
    """

    def _make(acquirer=None, extractor=None, concatenator=None, **settings_overrides):
        acquirer = acquirer or FakeAcquirer()
        extractor = extractor or FakeExtractor()
        concatenator = concatenator or FakeConcatenator()
        manager = JobManager(
            settings=make_settings(**settings_overrides),
            store=InMemoryJobStore(),
            workspace_manager=workspace_manager,
            acquirer=acquirer,
            extractor=extractor,
            concatenator=concatenator,
        )
        return manager, acquirer, extractor, concatenator

    return _make


@pytest.fixture
def sample_plan():
    """Three clips over two sources."""
    return normalize_plan([
        {"location": "https://cdn.example.com/a.mp4", "start_offset": 0, "duration": 2},
        {"location": "https://cdn.example.com/b.mp4", "start_offset": 5, "duration": 1.5},
        {"location": "https://cdn.example.com/a.mp4", "start_offset": 10, "duration": 2},
    ])


@pytest.fixture
def mock_runner(mocker):
    """FFmpegRunner stand-in whose run() succeeds and creates the output file."""
    runner = mocker.MagicMock()

    async def _run(args):
        with open(args[-1], "wb") as f:
            f.write(b"\x00" * 16)
        return FFmpegResult(returncode=0)

    runner.run = mocker.AsyncMock(side_effect=_run)
    runner.has_audio_stream = mocker.AsyncMock(return_value=True)
    return runner
