"""
Tests for segment extraction (ffmpeg mocked).
"""

import asyncio
import os

import pytest

from mediafx.config import ExtractionPolicy
from mediafx.services.ffmpeg_runner import FFmpegResult
from mediafx.services.segment_extractor import ExtractionError, SegmentExtractor


class TestSegmentExtractor:
    """Tests for SegmentExtractor."""

    @pytest.fixture
    def workspace(self, workspace_manager):
        return workspace_manager.create()

    def test_rejects_unknown_policy(self, mock_runner):
        """Only copy and normalize are valid policies."""
        with pytest.raises(ValueError):
            SegmentExtractor(mock_runner, policy="fast")

    def test_normalize_extraction(self, mock_runner, workspace):
        """Normalize re-encodes with an accurate seek and a fixed output profile."""
        extractor = SegmentExtractor(mock_runner, policy=ExtractionPolicy.NORMALIZE)

        path = asyncio.run(extractor.extract("/src/a.mp4", 5.0, 2.0, 3, workspace))

        assert path == os.path.join(workspace.segments_dir, "segment_0003.mp4")
        args = mock_runner.run.call_args.args[0]
        assert args[args.index("-ss") + 1] == "5.000000"
        assert args[args.index("-t") + 1] == "2.000000"
        assert args[args.index("-i") + 1] == "/src/a.mp4"
        assert "libx264" in args
        assert "aac" in args
        assert "anullsrc=channel_layout=stereo:sample_rate=48000" not in args
        assert args[-1] == path

    def test_normalize_adds_silent_audio(self, mock_runner, workspace):
        """Sources without audio get a silent track so every segment matches."""
        mock_runner.has_audio_stream.return_value = False
        extractor = SegmentExtractor(mock_runner, policy=ExtractionPolicy.NORMALIZE)

        asyncio.run(extractor.extract("/src/silent.mp4", 0, 1, 0, workspace))

        args = mock_runner.run.call_args.args[0]
        assert "anullsrc=channel_layout=stereo:sample_rate=48000" in args
        assert "1:a:0" in args

    def test_copy_extraction(self, mock_runner, workspace):
        """Copy policy stream-copies without probing the source."""
        extractor = SegmentExtractor(mock_runner, policy=ExtractionPolicy.COPY)

        asyncio.run(extractor.extract("/src/a.mp4", 1.5, 4, 0, workspace))

        args = mock_runner.run.call_args.args[0]
        assert args[args.index("-c") + 1] == "copy"
        assert args.index("-ss") < args.index("-i")
        mock_runner.has_audio_stream.assert_not_called()

    def test_ffmpeg_failure(self, mock_runner, workspace):
        """A failed ffmpeg run raises ExtractionError with index and exit status."""
        mock_runner.run.side_effect = None
        mock_runner.run.return_value = FFmpegResult(
            returncode=1, stderr="...\n/src/a.mp4: Invalid data found when processing input"
        )
        extractor = SegmentExtractor(mock_runner, policy=ExtractionPolicy.COPY)

        with pytest.raises(ExtractionError) as exc_info:
            asyncio.run(extractor.extract("/src/a.mp4", 0, 1, 1, workspace))

        error = exc_info.value
        assert error.sequence_index == 1
        assert error.exit_status == 1
        assert "Segment 1" in str(error)
        assert "Invalid data" in str(error)

    def test_missing_output(self, mock_runner, workspace):
        """A zero exit status without an output file still fails."""
        mock_runner.run.side_effect = None
        mock_runner.run.return_value = FFmpegResult(returncode=0)
        extractor = SegmentExtractor(mock_runner, policy=ExtractionPolicy.COPY)

        with pytest.raises(ExtractionError, match="no output"):
            asyncio.run(extractor.extract("/src/a.mp4", 0, 1, 0, workspace))


class TestFFmpegResult:
    """Tests for FFmpegResult."""

    def test_error_message_is_stderr_tail(self):
        result = FFmpegResult(returncode=1, stderr="x" * 1000 + "the real error")
        assert not result.ok
        assert result.error_message.endswith("the real error")
        assert len(result.error_message) == 500

    def test_timeout_is_not_ok(self):
        result = FFmpegResult(returncode=None, stderr="ffmpeg timed out after 1s", timed_out=True)
        assert not result.ok
        assert result.error_message == "ffmpeg timed out after 1s"
