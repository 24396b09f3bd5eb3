"""Tests for the Deepgram transcription collaborator.

WHY: Captions are only as good as the word timestamps. The client must
send the right request, keep the provider's word order, prefer the
punctuated form for display, and turn every failure into a
transcription-failed error the pipeline can report.

HOW: httpx.MockTransport stands in for the Deepgram API. Requests are
captured and inspected.
"""

from __future__ import annotations

import asyncio

import httpx
import pytest

from reel_composer.api.deepgram import DeepgramClient, parse_words
from reel_composer.errors import ErrorKind, TranscriptionError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _transcribe(audio_path, handler, **kwargs):
    async def scenario():
        transport = httpx.MockTransport(handler)
        async with DeepgramClient(api_key="dg-test", transport=transport, **kwargs) as client:
            return await client.transcribe(audio_path)

    return asyncio.run(scenario())


@pytest.fixture
def wav_file(tmp_path):
    path = tmp_path / "audio.wav"
    path.write_bytes(b"RIFF....WAVEfmt ")
    return path


# ---------------------------------------------------------------------------
# parse_words
# ---------------------------------------------------------------------------


class TestParseWords:

    def test_parses_words_in_order(self, deepgram_response):
        words = parse_words(deepgram_response)
        assert [w.text for w in words][:3] == ["this", "is", "my"]
        assert words[0].start == 0.5
        assert words[-1].end == 4.4

    def test_prefers_punctuated_display_text(self, deepgram_response):
        words = parse_words(deepgram_response)
        assert words[0].display_text == "This"
        assert words[4].display_text == "routine."

    def test_empty_word_list_fails(self, deepgram_response):
        deepgram_response["results"]["channels"][0]["alternatives"][0]["words"] = []
        with pytest.raises(TranscriptionError, match="no words"):
            parse_words(deepgram_response)

    @pytest.mark.parametrize("payload", [{}, {"results": {"channels": []}}, {"results": None}])
    def test_malformed_body_fails(self, payload):
        with pytest.raises(TranscriptionError, match="Malformed"):
            parse_words(payload)

    def test_invalid_timing_fails(self, deepgram_response):
        words = deepgram_response["results"]["channels"][0]["alternatives"][0]["words"]
        words[0]["end"] = 0.1
        with pytest.raises(TranscriptionError, match="Invalid word"):
            parse_words(deepgram_response)


# ---------------------------------------------------------------------------
# DeepgramClient
# ---------------------------------------------------------------------------


class TestDeepgramClient:

    def test_sends_audio_with_model_options(self, wav_file, deepgram_response):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["request"] = request
            return httpx.Response(200, json=deepgram_response)

        words = _transcribe(wav_file, handler, base_url="https://dg.test/v1")

        request = captured["request"]
        assert request.method == "POST"
        assert request.url.path == "/v1/listen"
        assert request.url.params["model"] == "nova-2"
        assert request.url.params["smart_format"] == "true"
        assert request.url.params["punctuate"] == "true"
        assert request.headers["Authorization"] == "Token dg-test"
        assert request.headers["Content-Type"] == "audio/wav"
        assert request.content == wav_file.read_bytes()
        assert len(words) == 7

    def test_language_is_optional(self, wav_file, deepgram_response):
        captured = {}

        def handler(request):
            captured["params"] = dict(request.url.params)
            return httpx.Response(200, json=deepgram_response)

        _transcribe(wav_file, handler, language="sv")
        assert captured["params"]["language"] == "sv"

    def test_api_error_status(self, wav_file):
        with pytest.raises(TranscriptionError, match="401") as excinfo:
            _transcribe(wav_file, lambda request: httpx.Response(401, text="bad key"))
        assert excinfo.value.kind is ErrorKind.TRANSCRIPTION_FAILED

    def test_non_json_body(self, wav_file):
        with pytest.raises(TranscriptionError, match="not JSON"):
            _transcribe(wav_file, lambda request: httpx.Response(200, text="<html>"))

    def test_transport_error(self, wav_file):
        def handler(request):
            raise httpx.ReadTimeout("too slow")

        with pytest.raises(TranscriptionError, match="request failed"):
            _transcribe(wav_file, handler)

    def test_missing_audio_file(self, tmp_path):
        with pytest.raises(TranscriptionError, match="Cannot read audio"):
            _transcribe(tmp_path / "absent.wav", lambda request: httpx.Response(500))

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("DEEPGRAM_API_KEY", raising=False)
        with pytest.raises(ValueError, match="DEEPGRAM_API_KEY"):
            DeepgramClient()
