"""Command-line interface for the Reel Composer.

WHY: Operators need to run the HTTP service, render a single job from the
terminal without going through HTTP, and preview the caption/slideshow
timelines for a transcript before paying for a render.

HOW: argparse with three subcommands:
  serve     — run the FastAPI app with uvicorn
  render    — run one job locally through the same JobPipeline
  schedule  — read word timestamps from a JSON file and print both
              timelines as JSON (no network, no ffmpeg)

RULES:
- Status messages go to stderr; machine-readable output goes to stdout
- Logging is configured once here, with the same format as the service
- render exits with status 1 and prints the failing stage on failure
- schedule accepts a Deepgram-style ``{"words": [...]}`` object, a
  full Deepgram response, or a bare list of word dicts
- Python 3.9 compatible: no match/case, no X | Y unions
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional

from reel_composer.config import (
    CAPTION_BATCH_SIZE,
    IMAGE_SLOT_SECONDS,
    JOBS_ROOT,
    PORT,
    RENDER_COMMAND,
)
from reel_composer.core.ir import Word
from reel_composer.core.timeline import build_caption_timeline, build_image_schedule


def _status(msg: str) -> None:
    """Print a status message to stderr so stdout stays pipeable."""
    print(msg, file=sys.stderr, flush=True)


def load_words(payload: Any) -> List[Word]:
    """Turn a parsed words JSON document into Word objects.

    Raises:
        ValueError: The document has no recognizable word list.
    """
    if isinstance(payload, dict):
        if "words" in payload:
            payload = payload["words"]
        elif "results" in payload:
            from reel_composer.api.deepgram import response_words
            from reel_composer.errors import TranscriptionError
            try:
                payload = response_words(payload)
            except TranscriptionError as exc:
                raise ValueError(exc.message) from exc
        else:
            raise ValueError("Expected a 'words' list or a Deepgram response")
    if not isinstance(payload, list):
        raise ValueError("Expected a list of word objects")
    try:
        return [Word.from_dict(item) for item in payload]
    except (KeyError, TypeError) as exc:
        raise ValueError("Malformed word entry: {}".format(exc)) from exc


def _cmd_serve(args: argparse.Namespace) -> int:
    from reel_composer.server.app import run_api
    run_api(host=args.host, port=args.port)
    return 0


async def _render(args: argparse.Namespace) -> int:
    from reel_composer.render.command import CommandRenderer
    from reel_composer.server.cleanup import CleanupRegistry
    from reel_composer.server.jobs import JobManager
    from reel_composer.server.pipeline import JobPipeline, RenderInput

    root = Path(args.jobs_root)
    registry = CleanupRegistry(root)
    manager = JobManager(root, registry)
    pipeline = JobPipeline(manager, CommandRenderer(command=args.render_command))

    try:
        result = await pipeline.submit(RenderInput(image_urls=args.image, video_url=args.video))
    finally:
        # The process is about to exit; the periodic sweep removes the
        # output directory later.
        await registry.shutdown()

    if not result.ok:
        failure = result.failure
        _status("Error [{} during {}]: {}".format(
            failure.kind.value, failure.stage.value, failure.message
        ))
        return 1

    _status("Rendered job {}".format(result.job_id))
    print(result.output_path)
    return 0


def _cmd_render(args: argparse.Namespace) -> int:
    from reel_composer.errors import PipelineError
    from reel_composer.server.jobs import TooManyJobsError

    try:
        return asyncio.run(_render(args))
    except PipelineError as exc:
        _status("Error [{}]: {}".format(exc.kind.value, exc.message))
        return 1
    except TooManyJobsError as exc:
        _status("Error: {}".format(exc))
        return 1


def _cmd_schedule(args: argparse.Namespace) -> int:
    path = Path(args.words_json)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        _status("Error: cannot read {}: {}".format(path, exc))
        return 1

    try:
        words = load_words(payload)
        captions = build_caption_timeline(
            words,
            batch_size=args.batch_size,
            total_duration=args.duration,
        )
        images = build_image_schedule(args.images, args.duration, args.slot_length)
    except ValueError as exc:
        _status("Error: {}".format(exc))
        return 1

    _status("{} word(s) -> {} caption batch(es), {} image slot(s)".format(
        len(words), len(captions.batches), len(images.slots)
    ))
    json.dump(
        {"captions": captions.to_dict(), "slideshow": images.to_dict()},
        sys.stdout,
        indent=2,
        ensure_ascii=False,
    )
    sys.stdout.write("\n")
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the CLI.

    Separate from main() so tests can inspect the parser without running
    anything.
    """
    parser = argparse.ArgumentParser(
        prog="reel-composer",
        description="Compose vertical top/bottom videos with synchronized captions.",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API.")
    serve.add_argument("--host", default="0.0.0.0", help="Bind address (default: %(default)s).")
    serve.add_argument("--port", type=int, default=PORT, help="Port (default: %(default)s).")
    serve.set_defaults(func=_cmd_serve)

    render = sub.add_parser("render", help="Render one job locally.")
    render.add_argument(
        "--image",
        action="append",
        required=True,
        help="Image URL for the slideshow. Repeat for several images.",
    )
    render.add_argument("--video", required=True, help="URL of the bottom-half clip.")
    render.add_argument(
        "--jobs-root",
        default=str(JOBS_ROOT),
        help="Directory for job working directories (default: %(default)s).",
    )
    render.add_argument(
        "--render-command",
        default=RENDER_COMMAND,
        help="Render command template with {manifest} and {output} placeholders "
             "(default: RENDER_COMMAND from the environment).",
    )
    render.set_defaults(func=_cmd_render)

    schedule = sub.add_parser("schedule", help="Print caption and slideshow timelines.")
    schedule.add_argument("words_json", help="JSON file with word timestamps.")
    schedule.add_argument(
        "--duration",
        type=float,
        required=True,
        help="Clip duration in seconds.",
    )
    schedule.add_argument(
        "--images",
        type=int,
        required=True,
        help="Number of slideshow images.",
    )
    schedule.add_argument(
        "--batch-size",
        type=int,
        default=CAPTION_BATCH_SIZE,
        help="Words shown simultaneously (default: %(default)s).",
    )
    schedule.add_argument(
        "--slot-length",
        type=float,
        default=IMAGE_SLOT_SECONDS,
        help="Seconds per image (default: %(default)s).",
    )
    schedule.set_defaults(func=_cmd_schedule)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for ``reel-composer`` and ``python -m reel_composer``.

    RULES:
    - argv=None means use sys.argv (normal CLI invocation)
    - Explicit argv is for testing; the exit status is returned
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
