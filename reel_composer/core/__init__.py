"""Core timeline types and the pure scheduling functions.

WHY: The core package holds the deterministic heart of the composer —
the dataclasses handed to the renderer and the functions that compute
them from word timestamps. Nothing in here performs I/O, so previews
can recompute timelines freely.

HOW: ir.py defines the data structures, timeline.py builds them.

RULES:
- No imports from api/, server/, render/ or media/
- Same inputs always produce the same outputs
"""
