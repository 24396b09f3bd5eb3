"""Renderer boundary — manifest building and render engine adapters.

WHY: The pipeline needs one lookup for the render engine interface and
its default implementation, without knowing how pixels get painted.

HOW: base.py defines the contract, manifest.py the JSON handed across
it, command.py the default out-of-process adapter.

RULES:
- Every renderer listed here must be importable without side effects
"""

from reel_composer.render.base import BaseRenderer, RenderRequest
from reel_composer.render.command import CommandRenderer
from reel_composer.render.manifest import build_render_manifest

__all__ = ["BaseRenderer", "CommandRenderer", "RenderRequest", "build_render_manifest"]
