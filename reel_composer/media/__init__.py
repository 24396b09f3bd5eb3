"""Media probing and audio extraction collaborators (ffmpeg/ffprobe)."""

from reel_composer.media.ffmpeg import AudioExtraction, extract_audio, is_playable_media

__all__ = ["AudioExtraction", "extract_audio", "is_playable_media"]
