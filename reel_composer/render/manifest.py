"""Render manifest — the JSON document handed to the scene engine.

WHY: The render engine runs out of process and reads its inputs from a
file. The manifest carries the asset paths, canvas layout, and both
timelines in one self-describing document, and validating it against a
schema catches contract drift before an expensive render starts.

HOW: build_render_manifest() serializes a RenderRequest (paths relative
to the job root, so the engine can serve the job directory as its public
root) and validates the result with jsonschema against the packaged
render_manifest.schema.json.

RULES:
- Canvas is 1080x1920: slideshow top half, clip bottom half, captions middle
- Asset paths are POSIX strings relative to the job root, prefixed with "/"
- The manifest is validated before it is returned
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

import jsonschema

from reel_composer.render.base import RenderRequest

_SCHEMA_PATH = Path(__file__).resolve().parent / "render_manifest.schema.json"

_CACHED_SCHEMA: Optional[dict] = None

MANIFEST_VERSION = 1
CANVAS = {"width": 1080, "height": 1920}


def get_schema() -> dict:
    """Load and cache the render manifest JSON schema."""
    global _CACHED_SCHEMA
    if _CACHED_SCHEMA is None:
        with open(_SCHEMA_PATH) as f:
            _CACHED_SCHEMA = json.load(f)
    return _CACHED_SCHEMA


def _public_path(job_root: Path, path: Path) -> str:
    try:
        relative = Path(path).relative_to(job_root)
    except ValueError:
        return Path(path).as_posix()
    return "/" + relative.as_posix()


def build_render_manifest(request: RenderRequest) -> Dict[str, Any]:
    """Build and validate the manifest for one render.

    Raises:
        jsonschema.ValidationError: The manifest does not match the schema.
    """
    manifest: Dict[str, Any] = {
        "version": MANIFEST_VERSION,
        "jobId": request.job_id,
        "canvas": dict(CANVAS),
        "duration": request.duration_s,
        "video": _public_path(request.job_root, request.video_path),
        "images": [_public_path(request.job_root, p) for p in request.image_paths],
        "output": str(request.output_path),
        "captions": request.captions.to_dict(),
        "slideshow": request.images.to_dict(),
    }
    jsonschema.validate(instance=manifest, schema=get_schema())
    return manifest


def write_render_manifest(request: RenderRequest, path: Path) -> Path:
    manifest = build_render_manifest(request)
    path.write_text(json.dumps(manifest, indent=2, ensure_ascii=False), encoding="utf-8")
    return path
