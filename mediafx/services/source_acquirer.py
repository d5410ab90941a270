"""
Source Acquirer - Downloads the source media referenced by a montage plan.

Every distinct source location in a plan is fetched exactly once into the
job's workspace, no matter how many clips reference it. Transfers are
streamed straight to disk.

Supported locations:
- Direct URLs (http/https) via httpx streaming
- S3 URLs (s3://bucket/key, virtual-hosted or path-style https) via boto3
- Bare S3 keys (uses the configured bucket)
"""

import asyncio
import logging
import os
from typing import Literal, Optional
from urllib.parse import urlparse

import boto3
import httpx
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from mediafx.config import get_settings
from mediafx.services.execution_plan import ExecutionPlan
from mediafx.services.workspace_manager import Workspace

logger = logging.getLogger(__name__)


SourceType = Literal["s3", "direct_url"]


class SourceAcquirer:
    """
    Fetches plan sources with bounded parallelism.

    Args:
        download_workers: Max simultaneous downloads (1 = sequential)
        timeout_seconds: Wall-clock limit for a single source
        retries: Extra attempts per source after a failure (0 = fail fast)
        transport: Optional httpx transport (tests inject httpx.MockTransport)
    """

    def __init__(
        self,
        download_workers: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        retries: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = get_settings()
        self.download_workers = max(1, download_workers or self.settings.download_workers)
        self.timeout_seconds = timeout_seconds or self.settings.download_timeout_seconds
        self.retries = self.settings.download_retries if retries is None else max(0, retries)
        self.chunk_size = self.settings.download_chunk_size
        self._transport = transport
        self._s3_client = None

    @property
    def s3_client(self):
        """Lazy-initialize S3 client."""
        if self._s3_client is None:
            config = {
                "region_name": self.settings.aws_region,
                "config": BotoConfig(
                    connect_timeout=10,
                    read_timeout=60,
                    retries={"max_attempts": 1},
                ),
            }
            if self.settings.aws_access_key_id and self.settings.aws_secret_access_key:
                config["aws_access_key_id"] = self.settings.aws_access_key_id
                config["aws_secret_access_key"] = self.settings.aws_secret_access_key

            self._s3_client = boto3.client("s3", **config)

        return self._s3_client

    async def acquire(self, plan: ExecutionPlan, workspace: Workspace) -> dict[str, str]:
        """
        Download every distinct source location in the plan.

        Returns:
            Mapping of source location -> local file path

        Raises:
            AcquisitionError: On the first failed source; other in-flight
                downloads are cancelled
        """
        locations = plan.distinct_locations()
        if not locations:
            return {}
        os.makedirs(workspace.sources_dir, exist_ok=True)

        logger.info(
            f"Acquiring {len(locations)} distinct source(s) for {len(plan)} clip(s) "
            f"with {self.download_workers} worker(s)"
        )

        semaphore = asyncio.Semaphore(self.download_workers)
        targets = {
            location: os.path.join(workspace.sources_dir, self._local_filename(i, location))
            for i, location in enumerate(locations)
        }

        async with httpx.AsyncClient(
            transport=self._transport,
            timeout=httpx.Timeout(self.timeout_seconds, connect=min(self.timeout_seconds, 30.0)),
            follow_redirects=True,
        ) as client:

            async def fetch_bounded(location: str) -> str:
                async with semaphore:
                    return await self._fetch_with_retries(client, location, targets[location])

            tasks = {
                asyncio.create_task(fetch_bounded(location)): location
                for location in locations
            }
            try:
                done, _pending = await asyncio.wait(
                    tasks.keys(), return_when=asyncio.FIRST_EXCEPTION
                )
            finally:
                for task in tasks:
                    if not task.done():
                        task.cancel()
                await asyncio.gather(*tasks.keys(), return_exceptions=True)

        # Report the earliest failing location in plan order
        for task, location in tasks.items():
            if task in done and not task.cancelled() and task.exception() is not None:
                raise task.exception()

        return {location: task.result() for task, location in tasks.items()}

    async def _fetch_with_retries(
        self,
        client: httpx.AsyncClient,
        location: str,
        output_path: str,
    ) -> str:
        last_error: Optional[AcquisitionError] = None

        for attempt in range(self.retries + 1):
            try:
                await asyncio.wait_for(
                    self._fetch(client, location, output_path),
                    timeout=self.timeout_seconds,
                )
                return output_path
            except asyncio.TimeoutError:
                last_error = AcquisitionError(
                    location, f"timed out after {self.timeout_seconds:.0f}s"
                )
            except AcquisitionError as e:
                last_error = e

            if attempt < self.retries:
                logger.warning(
                    f"Download attempt {attempt + 1}/{self.retries + 1} failed: {last_error}"
                )
                self._discard_partial(output_path)

        raise last_error

    async def _fetch(self, client: httpx.AsyncClient, location: str, output_path: str) -> None:
        """Fetch one source to output_path."""
        source_type = self.detect_source_type(location)
        if source_type == "s3":
            await self._download_from_s3(location, output_path)
        else:
            await self._download_direct_url(client, location, output_path)

        if not os.path.isfile(output_path):
            raise AcquisitionError(location, f"download completed but file not found: {output_path}")

        file_size = os.path.getsize(output_path)
        if file_size == 0:
            raise AcquisitionError(location, "source is empty")
        logger.info(f"Source downloaded: {location[:100]} ({file_size / 1024 / 1024:.1f} MB)")

    def detect_source_type(self, location: str) -> SourceType:
        """
        Detect the source type from URL or key.

        Args:
            location: URL or S3 key

        Returns:
            SourceType
        """
        if location.startswith("s3://"):
            return "s3"

        # S3 key (no protocol)
        if not location.startswith("http"):
            return "s3"

        parsed = urlparse(location)

        # S3 URL formats
        if parsed.hostname and (
            ".s3." in parsed.hostname or
            parsed.hostname.startswith("s3.") or
            parsed.hostname == "s3.amazonaws.com"
        ):
            return "s3"

        return "direct_url"

    async def _download_direct_url(
        self,
        client: httpx.AsyncClient,
        url: str,
        output_path: str,
    ) -> None:
        """Stream a direct URL to disk."""
        logger.info(f"Downloading source from direct URL: {url[:100]}")

        try:
            async with client.stream("GET", url) as response:
                response.raise_for_status()

                with open(output_path, "wb") as f:
                    async for chunk in response.aiter_bytes(self.chunk_size):
                        f.write(chunk)
        except httpx.HTTPStatusError as e:
            raise AcquisitionError(url, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise AcquisitionError(url, f"{type(e).__name__}: {e}") from e
        except OSError as e:
            raise AcquisitionError(url, f"write failed: {e}") from e

    async def _download_from_s3(self, url_or_key: str, output_path: str) -> None:
        """Download an S3 object to disk (boto3 streams to the file)."""
        bucket, key = self._parse_s3_url(url_or_key)

        logger.info(f"Downloading source from S3: s3://{bucket}/{key}")

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None,
                lambda: self.s3_client.download_file(bucket, key, output_path),
            )
        except (ClientError, BotoCoreError) as e:
            raise AcquisitionError(url_or_key, f"S3 download failed: {e}") from e
        except OSError as e:
            raise AcquisitionError(url_or_key, f"write failed: {e}") from e

    def _parse_s3_url(self, url_or_key: str) -> tuple[str, str]:
        """
        Parse S3 URL or key into bucket and key.

        Supports formats:
        - s3://bucket/key
        - https://bucket.s3.region.amazonaws.com/key
        - https://s3.region.amazonaws.com/bucket/key
        - just-a-key (uses configured bucket)
        """
        # Plain key
        if not url_or_key.startswith("http") and not url_or_key.startswith("s3://"):
            if not self.settings.s3_bucket:
                raise AcquisitionError(
                    url_or_key, "not a URL and no S3_BUCKET is configured for bare keys"
                )
            return self.settings.s3_bucket, url_or_key

        # s3:// URL
        if url_or_key.startswith("s3://"):
            parts = url_or_key[5:].split("/", 1)
            if len(parts) != 2 or not parts[0] or not parts[1]:
                raise AcquisitionError(url_or_key, "invalid S3 URL")
            return parts[0], parts[1]

        parsed = urlparse(url_or_key)

        # Virtual-hosted style: bucket.s3.region.amazonaws.com/key
        if parsed.hostname and ".s3." in parsed.hostname:
            bucket = parsed.hostname.split(".s3.")[0]
            key = parsed.path.lstrip("/")
            return bucket, key

        # Path style: s3.region.amazonaws.com/bucket/key
        if parsed.hostname and parsed.hostname.startswith("s3."):
            path_parts = parsed.path.lstrip("/").split("/", 1)
            if len(path_parts) != 2:
                raise AcquisitionError(url_or_key, "invalid S3 URL")
            return path_parts[0], path_parts[1]

        raise AcquisitionError(url_or_key, "unable to parse S3 URL")

    def _local_filename(self, index: int, location: str) -> str:
        ext = os.path.splitext(urlparse(location).path)[1].lower()
        if not ext or len(ext) > 6 or not ext[1:].isalnum():
            ext = ".media"
        return f"source_{index:03d}{ext}"

    def _discard_partial(self, path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove partial download {path}: {e}")


class AcquisitionError(Exception):
    """Exception raised when a source cannot be fetched."""

    def __init__(self, location: str, cause: str):
        self.location = location
        self.cause = cause
        super().__init__(f"Failed to fetch source {location}: {cause}")
