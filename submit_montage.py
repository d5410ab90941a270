#!/usr/bin/env python3
"""
Command-line client for the MediaFX montage API.

Submits a clip plan, waits for the job to finish and downloads the montage.

Usage:
    python submit_montage.py --plan plan.json
    python submit_montage.py --clip https://cdn.example.com/a.mp4 0 2 \
                             --clip https://cdn.example.com/a.mp4 5 2 \
                             --output montage.mp4

A plan file holds either a list of clips or {"clips": [...]}, each clip with
"url", "start" and "duration".

The server address comes from MONTAGE_BASE_URL (or a .env file).
"""

import argparse
import json
import os
import sys
import time
from pathlib import Path
from typing import Optional

import requests
from dotenv import load_dotenv

# Load .env file
load_dotenv()

# Configuration
BASE_URL = os.getenv("MONTAGE_BASE_URL", "http://localhost:3000")


def load_plan(plan_file: Optional[str], clip_args: Optional[list]) -> list:
    """Build the clip list from a plan file and/or --clip arguments."""
    clips = []

    if plan_file:
        with open(plan_file, "r", encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, dict):
            data = data.get("clips", [])
        clips.extend(data)

    for url, start, duration in clip_args or []:
        clips.append({"url": url, "start": float(start), "duration": float(duration)})

    return clips


def submit_job(clips: list) -> Optional[str]:
    """Submit a montage plan. Returns the job ID, or None if rejected."""
    print(f"\n🎬 Submitting montage with {len(clips)} clip(s) to {BASE_URL}")
    for i, clip in enumerate(clips):
        print(f"   [{i}] {clip.get('url')} @ {clip.get('start', 0)}s +{clip.get('duration')}s")

    response = requests.post(
        f"{BASE_URL}/montage/jobs",
        json={"clips": clips},
        headers={"Content-Type": "application/json"},
        timeout=30,
    )

    if response.status_code != 202:
        detail = response.json().get("detail") if response.headers.get("content-type", "").startswith("application/json") else response.text
        print(f"❌ Submission rejected ({response.status_code}): {detail}")
        return None

    data = response.json()
    print(f"✅ Job queued: {data['job_id']} ({data['total_clips']} clips, {data['total_duration_seconds']:.1f}s)")
    return data["job_id"]


def poll_job_status(job_id: str, poll_interval: float = 2.0) -> Optional[dict]:
    """Poll job status until it is done or failed."""
    print(f"\n⏳ Waiting for job {job_id} to complete...")

    start_time = time.time()
    last_step = ""

    while True:
        response = requests.get(f"{BASE_URL}/montage/jobs/{job_id}", timeout=30)

        if response.status_code != 200:
            print(f"❌ Failed to get job status: {response.status_code}")
            return None

        status = response.json()
        current_step = status.get("current_step", "")
        job_status = status.get("status", "")

        if current_step != last_step:
            elapsed = time.time() - start_time
            print(
                f"   [{elapsed:6.1f}s] {job_status}: {current_step} "
                f"({status.get('segments_completed', 0)}/{status.get('total_clips', 0)} segments)"
            )
            last_step = current_step

        if job_status == "done":
            print(f"\n✅ Job completed in {time.time() - start_time:.1f}s!")
            return status
        elif job_status == "failed":
            print(f"\n❌ Job failed: {status.get('error')}")
            return None

        time.sleep(poll_interval)


def download_result(job_id: str, output_path: Path) -> bool:
    """Download the finished montage (single use)."""
    with requests.get(f"{BASE_URL}/montage/jobs/{job_id}/result", stream=True, timeout=300) as response:
        if response.status_code != 200:
            print(f"❌ Download failed: {response.status_code} {response.text[:200]}")
            return False

        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "wb") as f:
            for chunk in response.iter_content(chunk_size=256 * 1024):
                f.write(chunk)

    size_mb = output_path.stat().st_size / 1024 / 1024
    print(f"📥 Saved montage to {output_path} ({size_mb:.1f} MB)")
    return True


def main():
    parser = argparse.ArgumentParser(
        description="Submit a clip montage job and download the result",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python submit_montage.py --plan plan.json
  python submit_montage.py --clip https://cdn.example.com/a.mp4 0 2 --clip s3://bucket/b.mp4 10 3
        """,
    )
    parser.add_argument("--plan", type=str, default=None, help="JSON file with the clip plan")
    parser.add_argument(
        "--clip", nargs=3, action="append", metavar=("URL", "START", "DURATION"),
        help="Add one clip (repeatable, appended after --plan clips)",
    )
    parser.add_argument("--output", type=str, default="montage.mp4", help="Where to save the montage")
    parser.add_argument("--poll-interval", type=float, default=2.0, help="Seconds between status polls")
    args = parser.parse_args()

    clips = load_plan(args.plan, args.clip)
    if not clips:
        parser.error("no clips given (use --plan or --clip)")

    job_id = submit_job(clips)
    if not job_id:
        return 1

    if not poll_job_status(job_id, args.poll_interval):
        return 1

    return 0 if download_result(job_id, Path(args.output)) else 1


if __name__ == "__main__":
    sys.exit(main())
