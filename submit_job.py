#!/usr/bin/env python3
"""
Submit a clip job to a running ReelCutter worker and follow it to the end.

Usage:
    python submit_job.py --source-key uploads/user_123/abc.mp4 --duration 312.5
    python submit_job.py --source-key uploads/u/abc.mp4 --duration 50 --style viral --formats vertical
    python submit_job.py --source-key uploads/u/abc.mp4 --duration 600 --download
    python submit_job.py --analyze-only <job_id>

Reads REELCUTTER_URL, REELCUTTER_API_KEY and REELCUTTER_USER_ID from .env when
present. Requests act for REELCUTTER_USER_ID, so only that user's jobs are visible.
"""

import argparse
import os
import time
from pathlib import Path

import requests
from dotenv import load_dotenv

# Load .env file
load_dotenv()

# Configuration
BASE_URL = os.getenv("REELCUTTER_URL", "http://localhost:8000")
API_KEY = os.getenv("REELCUTTER_API_KEY", "")
USER_ID = os.getenv("REELCUTTER_USER_ID", "cli-user")

# Output directory
OUTPUT_DIR = Path("downloaded_clips")
LOGS_DIR = Path(os.getenv("JOB_LOG_DIRECTORY", "logs"))

TERMINAL_STATUSES = {"COMPLETED", "PARTIAL", "FAILED"}


def _headers() -> dict:
    headers = {"Content-Type": "application/json", "X-User-Id": USER_ID}
    if API_KEY:
        headers["X-API-Key"] = API_KEY
    return headers


def submit_job(source_key: str, duration: float, style: str, formats: list) -> str:
    """Submit a clip job; returns the job id or None."""
    payload = {
        "user_id": USER_ID,
        "source_key": source_key,
        "duration_seconds": duration,
        "style_preset": style,
        "target_formats": formats,
    }

    print(f"\n🚀 Submitting job")
    print(f"   Source: {source_key} ({duration:.1f}s)")
    print(f"   Style: {style}")
    print(f"   Formats: {', '.join(formats)}")

    response = requests.post(f"{BASE_URL}/jobs", headers=_headers(), json=payload)

    if response.status_code != 201:
        print(f"❌ Failed to submit job: {response.status_code}")
        print(response.text)
        return None

    job_id = response.json()["id"]
    print(f"✅ Job submitted: {job_id}")
    return job_id


def poll_job_status(job_id: str, poll_interval: int = 5) -> dict:
    """Poll job status until it reaches a terminal state."""
    print(f"\n⏳ Waiting for job {job_id}...")

    start_time = time.time()
    last_seen = None

    while True:
        response = requests.get(f"{BASE_URL}/jobs/{job_id}", headers=_headers())

        if response.status_code != 200:
            print(f"❌ Failed to get job status: {response.status_code}")
            return None

        job = response.json()
        state = (job["status"], job["progress"])

        if state != last_seen:
            elapsed = time.time() - start_time
            print(f"   [{job['progress']:3d}%] [{elapsed:6.1f}s] {job['status']}")
            last_seen = state

        if job["status"] in TERMINAL_STATUSES:
            elapsed = time.time() - start_time
            if job["status"] == "FAILED":
                print(f"\n❌ Job failed after {elapsed:.1f}s: {job.get('error_message')}")
            else:
                print(f"\n✅ Job {job['status'].lower()} in {elapsed:.1f}s")
            return job

        time.sleep(poll_interval)


def analyze_job_log(job_id: str):
    """Print the stage lines of the job's log file written by the worker."""
    log_files = sorted(LOGS_DIR.glob(f"job_{job_id}*.log"))

    if not log_files:
        print(f"\n⚠️  No log file found for job {job_id}")
        return

    log_file = log_files[-1]
    print(f"\n📊 JOB LOG: {log_file.name}")
    print("=" * 80)

    markers = (
        "Selected",
        "Transcription complete",
        "Attempting transcription",
        "Unit ",
        "failed",
        "completed",
    )

    with open(log_file, "r", encoding="utf-8") as f:
        for line in f:
            if any(marker in line for marker in markers):
                print(f"   {line.split(' - ', 3)[-1].strip()}")

    print("=" * 80)


def download_clips(job: dict):
    """Fetch each clip through its presigned download link."""
    clips = job.get("clips") or []
    if not clips:
        print("\n⚠️  No clips to download")
        return

    OUTPUT_DIR.mkdir(exist_ok=True)
    print(f"\n📥 Downloading {len(clips)} clips...")

    for clip in clips:
        response = requests.get(f"{BASE_URL}/clips/{clip['id']}/download", headers=_headers())
        if response.status_code != 200:
            print(f"   ❌ No download link for clip {clip['id']}: {response.status_code}")
            continue

        name = f"clip-{clip['start_time']:g}-{clip['format']}.mp4"
        dest_path = OUTPUT_DIR / name

        with requests.get(response.json()["download_url"], stream=True) as media:
            if media.status_code != 200:
                print(f"   ❌ Failed to download {name}: {media.status_code}")
                continue
            with open(dest_path, "wb") as f:
                for chunk in media.iter_content(chunk_size=1024 * 1024):
                    f.write(chunk)

        print(f"   ✅ {name} ({dest_path.stat().st_size / 1024 / 1024:.1f} MB)")

    print(f"\n✅ Clips saved to: {OUTPUT_DIR.absolute()}")


def print_summary(job: dict):
    clips = job.get("clips") or []

    print("\n" + "=" * 80)
    print("📊 JOB SUMMARY")
    print("=" * 80)
    print(f"   Source: {job['source_key']} ({job['duration_seconds']:.1f}s)")
    print(f"   Style: {job['style_preset']}  Formats: {', '.join(job['target_formats'])}")
    print(f"   Status: {job['status']} ({job['progress']}%)")
    print(f"   Clips: {len(clips)}")

    for clip in clips:
        print(f"\n   {clip['format']} {clip['start_time']:.1f}s - {clip['end_time']:.1f}s")
        print(f"      Size: {clip['size_bytes'] / 1024 / 1024:.1f} MB")
        print(f"      Captions: {clip['subtitles_url']}")
        print(f"      Text: {clip['transcription'][:60]}...")

    for failure in job.get("unit_failures") or []:
        print(f"\n   ⚠️  {failure['format']} @ {failure['window_start']}s failed: {failure['error']}")


def main():
    parser = argparse.ArgumentParser(
        description="Submit a clip job to the ReelCutter worker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python submit_job.py --source-key uploads/u/abc.mp4 --duration 312.5
  python submit_job.py --source-key uploads/u/abc.mp4 --duration 50 --style viral --formats vertical
  python submit_job.py --analyze-only 6f1d...
        """
    )
    parser.add_argument("--source-key", type=str, help="Storage key of the uploaded source video")
    parser.add_argument("--duration", type=float, help="Source duration in seconds")
    parser.add_argument(
        "--style", type=str, default="auto",
        choices=["auto", "viral", "educational", "podcast"],
        help="Windowing style preset",
    )
    parser.add_argument(
        "--formats", type=str, nargs="+", default=["vertical", "feed"],
        choices=["vertical", "feed", "landscape"],
        help="Output formats",
    )
    parser.add_argument("--poll-interval", type=int, default=5, help="Seconds between status polls")
    parser.add_argument("--download", action="store_true", help="Download clips when the job finishes")
    parser.add_argument("--analyze-only", type=str, help="Only analyze the log for a given job ID")

    args = parser.parse_args()

    if args.analyze_only:
        analyze_job_log(args.analyze_only)
        return

    if not args.source_key or args.duration is None:
        parser.error("--source-key and --duration are required")

    job_id = submit_job(args.source_key, args.duration, args.style, args.formats)
    if not job_id:
        return

    job = poll_job_status(job_id, args.poll_interval)

    # Analyze log regardless of success/failure
    analyze_job_log(job_id)

    if not job:
        return

    print_summary(job)

    if args.download and job["status"] != "FAILED":
        download_clips(job)


if __name__ == "__main__":
    main()
