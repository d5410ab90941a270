"""
Segment Extractor - Cuts one clip request out of a downloaded source.

Two policies, fixed per deployment (EXTRACTION_POLICY):
- copy: stream copy, no re-encode. Fast, but cut points snap to keyframes.
- normalize: re-encode to one H.264/AAC profile at the configured output
  size. Frame-accurate, and lets the concatenator stream-copy.
"""

import logging
import os
from typing import Optional

from mediafx.config import ExtractionPolicy, get_settings
from mediafx.services.ffmpeg_runner import FFmpegRunner
from mediafx.services.workspace_manager import Workspace

logger = logging.getLogger(__name__)


class SegmentExtractor:
    """
    Materializes one segment file per clip request.

    Callers invoke extract() one clip at a time; this class never runs
    transcodes in parallel on its own.
    """

    def __init__(self, runner: FFmpegRunner, policy: Optional[str] = None):
        self.settings = get_settings()
        self.runner = runner
        self.policy = policy or self.settings.extraction_policy
        if self.policy not in (ExtractionPolicy.COPY, ExtractionPolicy.NORMALIZE):
            raise ValueError(f"Unknown extraction policy: {self.policy}")

    async def extract(
        self,
        source_path: str,
        start_offset: float,
        duration: float,
        sequence_index: int,
        workspace: Workspace,
    ) -> str:
        """
        Extract [start_offset, start_offset + duration) of a source.

        Returns:
            Path to the segment file inside the workspace

        Raises:
            ExtractionError: If ffmpeg fails or produces no output
        """
        os.makedirs(workspace.segments_dir, exist_ok=True)
        output_path = os.path.join(workspace.segments_dir, f"segment_{sequence_index:04d}.mp4")

        if self.policy == ExtractionPolicy.NORMALIZE:
            has_audio = await self.runner.has_audio_stream(source_path)
            args = self._build_normalize_args(source_path, start_offset, duration, output_path, has_audio)
        else:
            args = self._build_copy_args(source_path, start_offset, duration, output_path)

        logger.info(
            f"Extracting segment {sequence_index} ({self.policy}): "
            f"{start_offset:.3f}s +{duration:.3f}s from {os.path.basename(source_path)}"
        )
        result = await self.runner.run(args)

        if not result.ok:
            raise ExtractionError(sequence_index, result.error_message, result.returncode)

        if not os.path.isfile(output_path) or os.path.getsize(output_path) == 0:
            raise ExtractionError(sequence_index, "ffmpeg produced no output", result.returncode)

        return output_path

    def _build_copy_args(
        self,
        source_path: str,
        start_offset: float,
        duration: float,
        output_path: str,
    ) -> list[str]:
        # Input seeking with stream copy lands on the preceding keyframe
        return [
            "-ss", f"{start_offset:.6f}",
            "-i", source_path,
            "-t", f"{duration:.6f}",
            "-map", "0:v:0?",
            "-map", "0:a:0?",
            "-c", "copy",
            "-avoid_negative_ts", "make_zero",
            "-movflags", "+faststart",
            output_path,
        ]

    def _build_normalize_args(
        self,
        source_path: str,
        start_offset: float,
        duration: float,
        output_path: str,
        has_audio: bool = True,
    ) -> list[str]:
        width = self.settings.output_width
        height = self.settings.output_height
        video_filter = ",".join([
            f"scale={width}:{height}:force_original_aspect_ratio=decrease",
            f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2",
            "setsar=1",
            f"fps={self.settings.output_fps}",
        ])

        args = [
            "-accurate_seek",
            "-ss", f"{start_offset:.6f}",
            "-i", source_path,
        ]
        if has_audio:
            audio_map = "0:a:0"
        else:
            # Silent track keeps every segment's stream layout identical
            args.extend([
                "-f", "lavfi",
                "-i", "anullsrc=channel_layout=stereo:sample_rate=48000",
            ])
            audio_map = "1:a:0"

        args.extend([
            "-t", f"{duration:.6f}",
            "-map", "0:v:0",
            "-map", audio_map,
            "-vf", video_filter,
            "-c:v", "libx264",
            "-preset", self.settings.ffmpeg_preset,
            "-crf", str(self.settings.ffmpeg_crf),
            "-profile:v", "high",
            "-pix_fmt", "yuv420p",
            "-c:a", "aac",
            "-ar", "48000",
            "-ac", "2",
            "-b:a", "128k",
            "-avoid_negative_ts", "make_zero",
            "-movflags", "+faststart",
            output_path,
        ])
        return args


class ExtractionError(Exception):
    """Exception raised when a segment cannot be extracted."""

    def __init__(self, sequence_index: int, cause: str, exit_status: Optional[int] = None):
        self.sequence_index = sequence_index
        self.cause = cause
        self.exit_status = exit_status
        super().__init__(
            f"Segment {sequence_index} extraction failed "
            f"(exit status {exit_status}): {cause}"
        )
