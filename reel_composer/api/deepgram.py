"""Async HTTP client for Deepgram pre-recorded transcription.

WHY: Captions need word-level timestamps for the clip's speech. The
pipeline only depends on a ``transcribe(audio_path) -> list[Word]``
callable; this module provides the default implementation backed by
Deepgram's pre-recorded /listen endpoint.

HOW: Uses httpx.AsyncClient for non-blocking HTTP. DeepgramClient is an
async context manager — enter it to get an authenticated client, exit to
close the connection pool. transcribe() posts the raw WAV bytes and
parses ``results.channels[0].alternatives[0].words`` into Word objects.

RULES:
- Always use the async context manager (async with DeepgramClient() as c:)
- Default model is nova-2 with smart_format and punctuate enabled
- Raises TranscriptionError on non-2xx responses, malformed bodies, or
  when no words are returned
- Word order from the provider is preserved
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from reel_composer.config import (
    DEEPGRAM_BASE_URL,
    DEEPGRAM_LANGUAGE,
    DEEPGRAM_MODEL,
    load_api_key,
)
from reel_composer.core.ir import Word
from reel_composer.errors import TranscriptionError

logger = logging.getLogger(__name__)


def response_words(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Return the raw word dicts of the first channel's best alternative.

    Raises:
        TranscriptionError: The body has no channel/alternative.
    """
    try:
        alternative = payload["results"]["channels"][0]["alternatives"][0]
    except (KeyError, IndexError, TypeError) as exc:
        raise TranscriptionError(f"Malformed transcription response: {exc!r}") from exc
    return alternative.get("words") or []


def parse_words(payload: Dict[str, Any]) -> List[Word]:
    """Extract Words from a Deepgram pre-recorded response body.

    Raises:
        TranscriptionError: The body has no channel/alternative, or the
            word list is empty.
    """
    raw_words = response_words(payload)
    if not raw_words:
        raise TranscriptionError("Transcription returned no words")

    try:
        return [Word.from_dict(w) for w in raw_words]
    except (KeyError, TypeError, ValueError) as exc:
        raise TranscriptionError(f"Invalid word in transcription: {exc}") from exc


class DeepgramClient:
    """Async client for the Deepgram pre-recorded transcription API.

    RULES:
    - api_key defaults to load_api_key() from .env
    - base_url / model / language default to config values
    - transport can be injected for tests
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        language: Optional[str] = DEEPGRAM_LANGUAGE,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api_key = api_key or load_api_key()
        self._base_url = (base_url or DEEPGRAM_BASE_URL).rstrip("/")
        self._model = model or DEEPGRAM_MODEL
        self._language = language
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> DeepgramClient:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"Authorization": f"Token {self._api_key}"},
            timeout=httpx.Timeout(300.0, connect=30.0),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError(
                "DeepgramClient must be used as an async context manager: "
                "async with DeepgramClient() as client: ..."
            )
        return self._client

    def _params(self) -> Dict[str, str]:
        params = {
            "model": self._model,
            "smart_format": "true",
            "punctuate": "true",
            "diarize": "false",
        }
        if self._language:
            params["language"] = self._language
        return params

    async def transcribe(self, audio_path: Path) -> List[Word]:
        """Transcribe a WAV file and return its words in spoken order.

        Args:
            audio_path: Path to the extracted audio (16 kHz mono WAV).

        Returns:
            Non-empty list of Word objects.

        Raises:
            TranscriptionError: On transport errors, non-2xx responses, or
                an empty word list.
        """
        client = self._ensure_client()
        audio_path = Path(audio_path)
        try:
            content = audio_path.read_bytes()
        except OSError as exc:
            raise TranscriptionError(f"Cannot read audio file {audio_path}: {exc}") from exc

        try:
            resp = await client.post(
                "/listen",
                params=self._params(),
                content=content,
                headers={"Content-Type": "audio/wav"},
            )
        except httpx.HTTPError as exc:
            raise TranscriptionError(f"Transcription request failed: {exc}") from exc

        if resp.status_code not in (200, 201):
            raise TranscriptionError(
                f"Deepgram API error {resp.status_code}: {resp.text}"
            )

        try:
            payload = resp.json()
        except ValueError as exc:
            raise TranscriptionError("Transcription response is not JSON") from exc

        words = parse_words(payload)
        logger.info("Transcribed %s: %d words", audio_path.name, len(words))
        return words


async def transcribe_with_deepgram(audio_path: Path) -> List[Word]:
    """Default transcription collaborator: one client per call."""
    async with DeepgramClient() as client:
        return await client.transcribe(audio_path)
