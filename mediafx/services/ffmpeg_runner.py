"""
FFmpeg runner - the single place ffmpeg subprocesses are launched.

Segment extraction and concatenation both go through one shared runner so a
process-wide transcode limit (MAX_CONCURRENT_TRANSCODES) covers every job.
"""

import asyncio
import json
import logging
import shutil
import subprocess
from dataclasses import dataclass
from typing import Optional

from mediafx.config import get_settings

logger = logging.getLogger(__name__)


@dataclass
class FFmpegResult:
    """Outcome of one ffmpeg invocation."""

    returncode: Optional[int]
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def error_message(self) -> str:
        if self.timed_out:
            return self.stderr or "ffmpeg timed out"
        tail = self.stderr.strip()[-500:]
        return tail or f"ffmpeg exited with status {self.returncode}"


class FFmpegRunner:
    """
    Runs ffmpeg commands off the event loop.

    Args:
        max_concurrent: Process-wide cap on simultaneous ffmpeg processes
            (None = no cap beyond per-job serialization)
        timeout_seconds: Wall-clock limit per invocation
    """

    def __init__(
        self,
        max_concurrent: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.settings = get_settings()
        self.binary = self.settings.ffmpeg_path
        self.timeout_seconds = timeout_seconds or self.settings.transcode_timeout_seconds

        limit = max_concurrent if max_concurrent is not None else self.settings.max_concurrent_transcodes
        self._semaphore: Optional[asyncio.Semaphore] = asyncio.Semaphore(limit) if limit else None
        if limit:
            logger.info(f"Process-wide transcode limit: {limit}")

    def is_available(self) -> bool:
        """Check whether the ffmpeg binary is on PATH."""
        return shutil.which(self.binary) is not None

    async def run(self, args: list[str]) -> FFmpegResult:
        """
        Run ffmpeg with the given arguments (binary, -y and -hide_banner are added).

        Never raises for a failed invocation; callers inspect the result and
        raise their own step error.
        """
        cmd = [self.binary, "-hide_banner", "-y", *args]
        logger.debug(f"Running: {' '.join(cmd[:12])}...")

        if self._semaphore is None:
            return await self._run_in_executor(cmd)
        async with self._semaphore:
            return await self._run_in_executor(cmd)

    async def has_audio_stream(self, media_path: str) -> bool:
        """
        Check whether a media file carries an audio stream.

        Falls back to True when ffprobe fails, so ffmpeg itself reports the
        real problem.
        """
        cmd = [
            self.settings.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_streams",
            media_path,
        ]
        loop = asyncio.get_running_loop()
        returncode, stdout = await loop.run_in_executor(None, self._run_ffprobe_sync, cmd)

        if returncode != 0:
            logger.warning(f"ffprobe failed for {media_path}, assuming audio is present")
            return True

        try:
            info = json.loads(stdout.decode())
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Failed to parse ffprobe output: {e}")
            return True

        return any(s.get("codec_type") == "audio" for s in info.get("streams", []))

    def _run_ffprobe_sync(self, cmd: list[str]) -> tuple[int, bytes]:
        try:
            result = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=60,
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.warning(f"ffprobe could not run: {e}")
            return -1, b""
        return result.returncode, result.stdout

    async def _run_in_executor(self, cmd: list[str]) -> FFmpegResult:
        # run_in_executor keeps Windows working (no ProactorEventLoop needed)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._run_sync, cmd)

    def _run_sync(self, cmd: list[str]) -> FFmpegResult:
        try:
            result = subprocess.run(cmd, capture_output=True, timeout=self.timeout_seconds)
        except subprocess.TimeoutExpired:
            logger.error(f"ffmpeg timed out after {self.timeout_seconds:.0f}s")
            return FFmpegResult(
                returncode=None,
                stderr=f"ffmpeg timed out after {self.timeout_seconds:.0f}s",
                timed_out=True,
            )
        except OSError as e:
            # Binary missing or not executable
            return FFmpegResult(returncode=None, stderr=f"failed to start ffmpeg: {e}")

        stderr = result.stderr.decode(errors="replace") if result.stderr else ""
        return FFmpegResult(returncode=result.returncode, stderr=stderr)
