"""Reel Composer — top/bottom vertical video job pipeline.

WHY: Short-form vertical videos that pair a slideshow with a creator's
clip and word-synchronized captions are assembled from the same steps
every time: fetch assets, probe the clip, transcribe it, schedule the
captions and slides, render. This package turns those steps into a
job pipeline with guaranteed cleanup of every job's working files.

HOW: Four layers — timeline scheduling (pure, core/), asset fetching and
transcription (api/), job lifecycle plus cleanup (server/), and the
renderer boundary (render/). Each layer is independently testable.

RULES:
- The timeline scheduler never performs I/O
- Every job owns exactly one working directory, deleted on failure and
  after a retention window on success
- Collaborators (ffmpeg, Deepgram, the render engine) sit behind small
  interfaces so tests never need them
"""

__version__ = "0.1.0"
