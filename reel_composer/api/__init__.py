"""Network collaborators — asset downloads and speech transcription.

WHY: A job's inputs live on remote hosts and its captions come from a
speech-to-text service. This package encapsulates all outbound HTTP
behind two async client classes.

HOW: Both clients wrap httpx.AsyncClient and are used as async context
managers. AssetFetcher stores files atomically; DeepgramClient returns
typed Word objects.

RULES:
- All outbound HTTP goes through these clients (no direct httpx elsewhere)
- Failures surface as PipelineError subclasses from reel_composer.errors
"""

from reel_composer.api.deepgram import DeepgramClient
from reel_composer.api.fetcher import AssetFetcher, DownloadResult

__all__ = ["AssetFetcher", "DeepgramClient", "DownloadResult"]
