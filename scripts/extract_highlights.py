#!/usr/bin/env python3
"""
Extract emotion-tagged highlight clips from a recorded talk.

Runs the whole pipeline once without the HTTP server:
upload -> remote analysis -> emotion merge -> clip extraction -> archive.

Requires ASSEMBLY_API_KEY (and optionally HUGGINGFACE_API_TOKEN) in the
environment or in .env.

Usage:
    python3 scripts/extract_highlights.py keynote.mp4 --out ./highlights

    # Only print chapters, skip transcoding
    python3 scripts/extract_highlights.py keynote.mp4 --no-clips
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add app to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "backend"))

from app.config import get_settings
from app.logging_config import setup_logging
from app.models.schemas import SessionState
from app.services.ai_clients import AIClientError
from app.services.pipeline import PipelineError, PipelineOrchestrator


async def print_progress(state: SessionState, progress: float, message: str) -> None:
    """Print progress updates on one line."""
    print(f"\r[{state.value:>10}] {progress:5.1f}% {message:<50}", end="", flush=True)


def format_ms(ms: int) -> str:
    """Format milliseconds as M:SS."""
    seconds = ms // 1000
    return f"{seconds // 60}:{seconds % 60:02d}"


async def run(video: Path, out_dir: Path, extract: bool) -> int:
    settings = get_settings()
    setup_logging(settings)

    orchestrator = PipelineOrchestrator(settings, progress_callback=print_progress)

    try:
        await orchestrator.upload(video.name, video.read_bytes())
        result = await orchestrator.analyze()
    except (AIClientError, PipelineError) as e:
        print(f"\nERROR: {e}")
        return 1

    print("\n")
    print("=" * 70)
    print(f"CHAPTERS ({len(result.chapters)})")
    print("=" * 70)
    for index, chapter in enumerate(result.chapters, start=1):
        print(
            f"{index:>3}. {format_ms(chapter.start)}-{format_ms(chapter.end)} "
            f"[{chapter.dominant_emotion}] {chapter.summary}"
        )

    if not extract or not result.chapters:
        return 0

    print()
    clips = await orchestrator.extract_all()
    archive = await orchestrator.download_archive()

    out_dir.mkdir(parents=True, exist_ok=True)
    for clip in clips:
        download = orchestrator.packager.download_one(clip)
        (out_dir / download.filename).write_bytes(download.payload)
    (out_dir / archive.filename).write_bytes(archive.payload)

    fallbacks = sum(1 for clip in clips if clip.is_fallback)
    print(f"\n\nClips: {len(clips) - fallbacks} OK, {fallbacks} placeholders")
    print(f"Archive: {out_dir / archive.filename}")
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Extract emotion-tagged highlight clips")
    parser.add_argument("video", type=Path, help="Video or audio file to analyze")
    parser.add_argument(
        "--out",
        type=Path,
        default=Path("highlights"),
        help="Output directory for clips and event_clips.zip (default: ./highlights)",
    )
    parser.add_argument(
        "--no-clips",
        action="store_true",
        help="Only print chapters, do not transcode clips",
    )
    args = parser.parse_args()

    if not args.video.is_file():
        print(f"ERROR: file not found: {args.video}")
        return 1

    return asyncio.run(run(args.video, args.out, extract=not args.no_clips))


if __name__ == "__main__":
    sys.exit(main())
