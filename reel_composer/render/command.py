"""Renderer that delegates to an external render command.

WHY: The scene engine (a headless-browser based animation renderer) is a
separate program. The pipeline hands it a manifest file and waits for
the MP4, bounded by a timeout so a hung render cannot hold a job forever.

HOW: Writes ``render-manifest.json`` next to the requested output, then
runs the configured command line with ``{manifest}``, ``{output}`` and
``{job_root}`` placeholders substituted, as an asyncio subprocess under
asyncio.wait_for. The output file must exist afterwards.

RULES:
- The command template is split with shlex (no shell involved)
- A non-zero exit, a timeout, or a missing output raises RenderFailedError
- A timed-out or cancelled engine is killed and reaped before the error
  propagates
"""

from __future__ import annotations

import asyncio
import logging
import shlex
from pathlib import Path
from typing import List, Optional

import jsonschema

from reel_composer.config import RENDER_COMMAND, RENDER_TIMEOUT_S
from reel_composer.errors import RenderFailedError
from reel_composer.media.ffmpeg import kill_process
from reel_composer.render.base import BaseRenderer, RenderRequest
from reel_composer.render.manifest import write_render_manifest

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "render-manifest.json"


class CommandRenderer(BaseRenderer):
    """Render by running an external command on a manifest file."""

    def __init__(
        self,
        command: Optional[str] = RENDER_COMMAND,
        timeout_s: float = RENDER_TIMEOUT_S,
    ) -> None:
        self.command = command
        self.timeout_s = timeout_s

    @property
    def name(self) -> str:
        return "External command"

    def build_args(self, manifest_path: Path, request: RenderRequest) -> List[str]:
        if not self.command:
            raise RenderFailedError(
                "No render command configured. Set RENDER_COMMAND in the .env file."
            )
        return [
            part.format(
                manifest=str(manifest_path),
                output=str(request.output_path),
                job_root=str(request.job_root),
            )
            for part in shlex.split(self.command)
        ]

    async def render(self, request: RenderRequest) -> Path:
        request.output_path.parent.mkdir(parents=True, exist_ok=True)
        manifest_path = request.output_path.parent / MANIFEST_FILENAME
        try:
            write_render_manifest(request, manifest_path)
        except jsonschema.ValidationError as exc:
            raise RenderFailedError(f"Invalid render manifest: {exc.message}") from exc

        args = self.build_args(manifest_path, request)
        logger.info("[%s] Rendering with: %s", request.job_id, " ".join(args))

        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise RenderFailedError(f"Could not start render command: {exc}") from exc

        try:
            _stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self.timeout_s
            )
        except asyncio.TimeoutError:
            await kill_process(proc)
            raise RenderFailedError(
                f"Render timed out after {self.timeout_s:.0f}s"
            ) from None
        except BaseException:
            # Job budget expired or the job was cancelled: the engine must
            # not outlive the job directory.
            logger.warning("[%s] Render interrupted, killing engine", request.job_id)
            await kill_process(proc)
            raise

        if proc.returncode != 0:
            tail = stderr.decode("utf-8", errors="replace").strip()[-500:]
            raise RenderFailedError(
                f"Render command exited with {proc.returncode}: {tail}"
            )

        if not request.output_path.is_file():
            raise RenderFailedError(
                f"Rendered video file not found: {request.output_path}"
            )

        logger.info("[%s] Video rendered successfully", request.job_id)
        return request.output_path
