"""Tests for the reel-composer command line.

WHY: The schedule subcommand is how operators preview timelines before
a render, so its JSON output and its error exits must stay stable.

HOW: main() is called with an explicit argv; stdout/stderr are read with
capsys. Word files are written under tmp_path. The render subcommand is
exercised with a patched JobPipeline so no network or engine is used.
"""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from reel_composer.cli import build_parser, load_words, main
from reel_composer.errors import ErrorKind
from reel_composer.server.jobs import JobFailure, JobStage
from reel_composer.server.pipeline import JobResult


SAMPLE_WORDS = [
    {"word": "this", "start": 0.5, "end": 0.8, "punctuated_word": "This"},
    {"word": "is", "start": 0.9, "end": 1.0},
    {"word": "my", "start": 1.1, "end": 1.3},
    {"word": "morning", "start": 1.4, "end": 1.9},
    {"word": "routine", "start": 2.0, "end": 2.6},
    {"word": "first", "start": 3.5, "end": 3.8},
    {"word": "coffee", "start": 3.9, "end": 4.4},
]


def _write(tmp_path: Path, payload) -> str:
    path = tmp_path / "words.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return str(path)


# ---------------------------------------------------------------------------
# load_words
# ---------------------------------------------------------------------------


class TestLoadWords:

    def test_words_object(self):
        words = load_words({"words": SAMPLE_WORDS})
        assert len(words) == 7
        assert words[0].display_text == "This"

    def test_bare_list(self):
        words = load_words([{"text": "hi", "start": 0.0, "end": 0.2}])
        assert words[0].text == "hi"
        assert words[0].confidence == 1.0

    def test_deepgram_response(self, deepgram_response):
        words = load_words(deepgram_response)
        assert [w.text for w in words][:2] == ["this", "is"]

    def test_deepgram_response_without_words(self):
        assert load_words({"results": {"channels": [{"alternatives": [{"words": []}]}]}}) == []

    def test_malformed_deepgram_response(self):
        with pytest.raises(ValueError, match="Malformed"):
            load_words({"results": {"channels": []}})

    def test_unrecognized_object(self):
        with pytest.raises(ValueError, match="words"):
            load_words({"transcript": "hello"})

    def test_malformed_entry(self):
        with pytest.raises(ValueError, match="Malformed"):
            load_words([{"word": "x"}])


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class TestParser:

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_render_collects_images(self):
        args = build_parser().parse_args(
            ["render", "--image", "a", "--image", "b", "--video", "v"]
        )
        assert args.image == ["a", "b"]
        assert args.video == "v"

    def test_schedule_defaults(self):
        args = build_parser().parse_args(
            ["schedule", "w.json", "--duration", "5", "--images", "2"]
        )
        assert args.batch_size == 4
        assert args.slot_length == 3.0


# ---------------------------------------------------------------------------
# schedule
# ---------------------------------------------------------------------------


class TestSchedule:

    def test_prints_both_timelines(self, tmp_path, capsys):
        path = _write(tmp_path, {"words": SAMPLE_WORDS})

        status = main(["schedule", path, "--duration", "5", "--images", "3"])

        assert status == 0
        out = json.loads(capsys.readouterr().out)
        assert len(out["captions"]["batches"]) == 2
        assert out["captions"]["batches"][-1]["end"] == pytest.approx(5.4)
        assert [s["imageIndex"] for s in out["slideshow"]["slots"]] == [0, 1]

    def test_empty_transcript_gives_placeholder(self, tmp_path, capsys):
        path = _write(tmp_path, [])
        assert main(["schedule", path, "--duration", "2", "--images", "1"]) == 0
        out = json.loads(capsys.readouterr().out)
        assert out["captions"]["placeholder"] is True

    def test_empty_deepgram_transcript_gives_placeholder(self, tmp_path, capsys):
        path = _write(tmp_path, {"results": {"channels": [{"alternatives": [{"words": []}]}]}})

        status = main(["schedule", path, "--duration", "8", "--images", "2"])

        assert status == 0
        out = json.loads(capsys.readouterr().out)
        assert out["captions"]["placeholder"] is True
        assert out["captions"]["batches"][0]["span"] == pytest.approx(5.0)

    def test_unreadable_file(self, tmp_path, capsys):
        status = main([
            "schedule", str(tmp_path / "missing.json"), "--duration", "1", "--images", "1",
        ])
        assert status == 1
        assert "cannot read" in capsys.readouterr().err

    def test_invalid_words(self, tmp_path, capsys):
        path = _write(tmp_path, {"nothing": []})
        assert main(["schedule", path, "--duration", "1", "--images", "1"]) == 1
        captured = capsys.readouterr()
        assert captured.out == ""
        assert "Error" in captured.err


# ---------------------------------------------------------------------------
# render
# ---------------------------------------------------------------------------


class TestRender:

    def _argv(self, tmp_path):
        return [
            "render",
            "--image", "https://cdn.example.com/a.jpg",
            "--video", "https://cdn.example.com/clip.mp4",
            "--jobs-root", str(tmp_path / "jobs"),
            "--render-command", "engine {manifest} {output}",
        ]

    def test_success_prints_output_path(self, tmp_path, capsys):
        result = JobResult(
            job_id="abc", stage=JobStage.COMPLETED, output_path=tmp_path / "abc.mp4"
        )
        with patch("reel_composer.server.pipeline.JobPipeline.submit",
                   new=AsyncMock(return_value=result)):
            status = main(self._argv(tmp_path))

        assert status == 0
        assert capsys.readouterr().out.strip() == str(tmp_path / "abc.mp4")

    def test_failure_exits_1(self, tmp_path, capsys):
        failure = JobFailure(
            job_id="abc",
            stage=JobStage.TRANSCRIBING,
            kind=ErrorKind.TRANSCRIPTION_FAILED,
            message="Deepgram returned 401",
        )
        result = JobResult(job_id="abc", stage=JobStage.FAILED, failure=failure)
        with patch("reel_composer.server.pipeline.JobPipeline.submit",
                   new=AsyncMock(return_value=result)):
            status = main(self._argv(tmp_path))

        assert status == 1
        err = capsys.readouterr().err
        assert "transcription-failed during transcribing" in err
        assert "Deepgram returned 401" in err
