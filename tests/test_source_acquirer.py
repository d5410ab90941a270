"""
Tests for source acquisition (HTTP via httpx.MockTransport, S3 via a mocked client).
"""

import asyncio
import os
from collections import Counter

import httpx
import pytest
from botocore.exceptions import ClientError

from mediafx.services.execution_plan import normalize_plan
from mediafx.services.source_acquirer import AcquisitionError, SourceAcquirer


def _plan(*locations):
    return normalize_plan([{"location": loc, "start_offset": 0, "duration": 1} for loc in locations])


class TestAcquireHttp:
    """Tests for direct URL downloads."""

    def test_each_location_fetched_once(self, workspace_manager):
        """k clips over u distinct locations cause exactly u downloads."""
        requests_seen = Counter()

        def handler(request):
            requests_seen[str(request.url)] += 1
            return httpx.Response(200, content=b"video-bytes-" + request.url.path.encode())

        acquirer = SourceAcquirer(download_workers=2, timeout_seconds=5, retries=0,
                                  transport=httpx.MockTransport(handler))
        workspace = workspace_manager.create()
        plan = _plan(
            "https://cdn.example.com/a.mp4",
            "https://cdn.example.com/b.mov",
            "https://cdn.example.com/a.mp4",
            "https://cdn.example.com/a.mp4",
        )

        sources = asyncio.run(acquirer.acquire(plan, workspace))

        assert dict(requests_seen) == {
            "https://cdn.example.com/a.mp4": 1,
            "https://cdn.example.com/b.mov": 1,
        }
        assert set(sources) == {"https://cdn.example.com/a.mp4", "https://cdn.example.com/b.mov"}
        a_path = sources["https://cdn.example.com/a.mp4"]
        assert a_path == os.path.join(workspace.sources_dir, "source_000.mp4")
        assert sources["https://cdn.example.com/b.mov"].endswith("source_001.mov")
        with open(a_path, "rb") as f:
            assert f.read() == b"video-bytes-/a.mp4"

    def test_http_error_fails_acquisition(self, workspace_manager):
        """A 404 becomes an AcquisitionError naming the location."""

        def handler(request):
            if request.url.path == "/missing.mp4":
                return httpx.Response(404)
            return httpx.Response(200, content=b"ok")

        acquirer = SourceAcquirer(download_workers=1, timeout_seconds=5, retries=0,
                                  transport=httpx.MockTransport(handler))
        workspace = workspace_manager.create()

        with pytest.raises(AcquisitionError) as exc_info:
            asyncio.run(acquirer.acquire(
                _plan("https://cdn.example.com/ok.mp4", "https://cdn.example.com/missing.mp4"),
                workspace,
            ))

        assert exc_info.value.location == "https://cdn.example.com/missing.mp4"
        assert "HTTP 404" in str(exc_info.value)

    def test_empty_body_fails(self, workspace_manager):
        """A zero-byte source is treated as a failed fetch."""
        acquirer = SourceAcquirer(timeout_seconds=5, retries=0,
                                  transport=httpx.MockTransport(lambda r: httpx.Response(200)))

        with pytest.raises(AcquisitionError, match="source is empty"):
            asyncio.run(acquirer.acquire(_plan("https://cdn.example.com/a.mp4"),
                                         workspace_manager.create()))

    def test_timeout(self, workspace_manager):
        """A download exceeding the wall-clock limit fails."""

        async def handler(request):
            await asyncio.sleep(2)
            return httpx.Response(200, content=b"late")

        acquirer = SourceAcquirer(timeout_seconds=0.05, retries=0,
                                  transport=httpx.MockTransport(handler))

        with pytest.raises(AcquisitionError, match="timed out"):
            asyncio.run(acquirer.acquire(_plan("https://cdn.example.com/a.mp4"),
                                         workspace_manager.create()))

    def test_first_failure_cancels_other_downloads(self, workspace_manager):
        """A failure aborts acquisition without waiting for slow transfers."""
        finished = []

        async def handler(request):
            if request.url.path == "/slow.mp4":
                await asyncio.sleep(5)
                finished.append("slow")
                return httpx.Response(200, content=b"slow")
            return httpx.Response(500)

        acquirer = SourceAcquirer(download_workers=2, timeout_seconds=30, retries=0,
                                  transport=httpx.MockTransport(handler))

        with pytest.raises(AcquisitionError) as exc_info:
            asyncio.run(acquirer.acquire(
                _plan("https://cdn.example.com/slow.mp4", "https://cdn.example.com/broken.mp4"),
                workspace_manager.create(),
            ))

        assert exc_info.value.location == "https://cdn.example.com/broken.mp4"
        assert finished == []

    def test_retries(self, workspace_manager):
        """With retries configured, a transient failure is retried."""
        attempts = []

        def handler(request):
            attempts.append(1)
            if len(attempts) == 1:
                return httpx.Response(503)
            return httpx.Response(200, content=b"second time lucky")

        acquirer = SourceAcquirer(timeout_seconds=5, retries=1,
                                  transport=httpx.MockTransport(handler))
        sources = asyncio.run(acquirer.acquire(_plan("https://cdn.example.com/a.mp4"),
                                               workspace_manager.create()))

        assert len(attempts) == 2
        assert len(sources) == 1

    def test_no_retries_by_default(self, workspace_manager):
        """retries=0 fails on the first error."""
        attempts = []

        def handler(request):
            attempts.append(1)
            return httpx.Response(503)

        acquirer = SourceAcquirer(timeout_seconds=5, retries=0,
                                  transport=httpx.MockTransport(handler))
        with pytest.raises(AcquisitionError):
            asyncio.run(acquirer.acquire(_plan("https://cdn.example.com/a.mp4"),
                                         workspace_manager.create()))
        assert len(attempts) == 1


class TestAcquireS3:
    """Tests for S3 sources."""

    @pytest.fixture
    def acquirer(self, mocker, make_settings):
        acquirer = SourceAcquirer(timeout_seconds=5, retries=0)
        acquirer.settings = make_settings(s3_bucket="media-bucket")
        acquirer._s3_client = mocker.MagicMock()
        return acquirer

    def test_detect_source_type(self, acquirer):
        """S3 URLs and bare keys go to S3, everything else over HTTP."""
        assert acquirer.detect_source_type("s3://bucket/key.mp4") == "s3"
        assert acquirer.detect_source_type("videos/key.mp4") == "s3"
        assert acquirer.detect_source_type("https://bucket.s3.us-east-1.amazonaws.com/k.mp4") == "s3"
        assert acquirer.detect_source_type("https://s3.us-east-1.amazonaws.com/bucket/k.mp4") == "s3"
        assert acquirer.detect_source_type("https://cdn.example.com/k.mp4") == "direct_url"

    def test_parse_s3_url(self, acquirer):
        """Bucket and key are extracted from every supported form."""
        assert acquirer._parse_s3_url("s3://bucket/path/key.mp4") == ("bucket", "path/key.mp4")
        assert acquirer._parse_s3_url(
            "https://bucket.s3.us-east-1.amazonaws.com/path/key.mp4"
        ) == ("bucket", "path/key.mp4")
        assert acquirer._parse_s3_url(
            "https://s3.us-east-1.amazonaws.com/bucket/key.mp4"
        ) == ("bucket", "key.mp4")
        assert acquirer._parse_s3_url("path/key.mp4") == ("media-bucket", "path/key.mp4")

    def test_bare_key_without_bucket(self, acquirer, make_settings):
        """A bare key needs a configured bucket."""
        acquirer.settings = make_settings(s3_bucket=None)
        with pytest.raises(AcquisitionError, match="no S3_BUCKET"):
            acquirer._parse_s3_url("path/key.mp4")

    def test_download_from_s3(self, acquirer, workspace_manager):
        """S3 sources are downloaded with boto3 into the workspace."""

        def download_file(bucket, key, path):
            with open(path, "wb") as f:
                f.write(b"s3-bytes")

        acquirer._s3_client.download_file.side_effect = download_file
        workspace = workspace_manager.create()

        sources = asyncio.run(acquirer.acquire(_plan("s3://bucket/clip.mp4"), workspace))

        target = os.path.join(workspace.sources_dir, "source_000.mp4")
        acquirer._s3_client.download_file.assert_called_once_with("bucket", "clip.mp4", target)
        assert sources == {"s3://bucket/clip.mp4": target}

    def test_s3_client_error(self, acquirer, workspace_manager):
        """boto3 errors become AcquisitionError."""
        acquirer._s3_client.download_file.side_effect = ClientError(
            {"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject"
        )

        with pytest.raises(AcquisitionError, match="S3 download failed"):
            asyncio.run(acquirer.acquire(_plan("s3://bucket/missing.mp4"),
                                         workspace_manager.create()))
