"""
Concatenator - Joins extracted segments into the final montage.

Uses FFmpeg's concat demuxer over a manifest file. Segments appear in the
output exactly in manifest order.
"""

import logging
import os
from typing import Optional, Sequence

from mediafx.config import get_settings
from mediafx.services.ffmpeg_runner import FFmpegRunner
from mediafx.services.workspace_manager import Workspace

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "concat.txt"
OUTPUT_FILENAME = "montage.mp4"


def escape_manifest_path(path: str) -> str:
    """Quote a path for a concat manifest `file` directive."""
    return "'" + path.replace("'", "'\\''") + "'"


def build_manifest(segment_paths: Sequence[str]) -> str:
    """One `file '<path>'` line per segment, in the given order."""
    lines = [f"file {escape_manifest_path(os.path.abspath(p))}" for p in segment_paths]
    return "\n".join(lines) + "\n"


class Concatenator:
    """
    Produces the final artifact from ordered segments.

    Args:
        runner: Shared ffmpeg runner
        stream_copy: Join without re-encoding. Only valid when every segment
            shares one codec profile (the normalize extraction policy).
    """

    def __init__(self, runner: FFmpegRunner, stream_copy: Optional[bool] = None):
        self.settings = get_settings()
        self.runner = runner
        self.stream_copy = self.settings.concat_stream_copy if stream_copy is None else stream_copy

    async def concatenate(self, segment_paths: Sequence[str], workspace: Workspace) -> str:
        """
        Concatenate segments (already in sequence_index order).

        Returns:
            Path to the final artifact inside the workspace

        Raises:
            ConcatenationError: If there is nothing to join or ffmpeg fails
        """
        if not segment_paths:
            raise ConcatenationError("No segments to concatenate")

        manifest_path = workspace.file_path(MANIFEST_FILENAME)
        output_path = workspace.file_path(OUTPUT_FILENAME)

        try:
            with open(manifest_path, "w", encoding="utf-8") as f:
                f.write(build_manifest(segment_paths))
        except OSError as e:
            raise ConcatenationError(f"Could not write concat manifest: {e}") from e

        logger.info(
            f"Concatenating {len(segment_paths)} segment(s) "
            f"({'stream copy' if self.stream_copy else 're-encode'})"
        )

        result = await self.runner.run(self._build_args(manifest_path, output_path))
        if not result.ok:
            raise ConcatenationError(f"FFmpeg concat failed: {result.error_message}", result.returncode)

        if not os.path.isfile(output_path) or os.path.getsize(output_path) == 0:
            raise ConcatenationError("FFmpeg concat produced no output", result.returncode)

        size_mb = os.path.getsize(output_path) / 1024 / 1024
        logger.info(f"Montage assembled: {output_path} ({size_mb:.1f} MB)")
        return output_path

    def _build_args(self, manifest_path: str, output_path: str) -> list[str]:
        args = [
            "-f", "concat",
            "-safe", "0",
            "-i", manifest_path,
        ]
        if self.stream_copy:
            args.extend(["-c", "copy"])
        else:
            # Copy-policy segments may differ in codec parameters
            args.extend([
                "-c:v", "libx264",
                "-preset", self.settings.ffmpeg_preset,
                "-crf", str(self.settings.ffmpeg_crf),
                "-pix_fmt", "yuv420p",
                "-c:a", "aac",
                "-b:a", "128k",
            ])
        args.extend([
            "-avoid_negative_ts", "make_zero",
            "-movflags", "+faststart",
            output_path,
        ])
        return args


class ConcatenationError(Exception):
    """Exception raised when the final montage cannot be assembled."""

    def __init__(self, message: str, exit_status: Optional[int] = None):
        self.exit_status = exit_status
        super().__init__(message)
