"""Shared test fixtures for the reel_composer test suite.

WHY: Several test modules need the same transcript sample, the same
Deepgram-shaped response, and an isolated jobs root. Centralizing them
here keeps the expected values in one place.

HOW: Plain pytest fixtures. Async code under test is driven with
asyncio.run() inside synchronous tests, so no async plugin is needed.

RULES:
- Word timings are hand-picked so expected timelines are easy to verify
- Every filesystem fixture lives under pytest's tmp_path
"""

from typing import Any, Dict, List

import pytest

from reel_composer.core.ir import Word


# ---------------------------------------------------------------------------
# Sample transcript
# ---------------------------------------------------------------------------

SAMPLE_WORDS: List[Dict[str, Any]] = [
    {"word": "this",    "start": 0.50, "end": 0.80, "confidence": 0.99, "punctuated_word": "This"},
    {"word": "is",      "start": 0.90, "end": 1.00, "confidence": 0.98, "punctuated_word": "is"},
    {"word": "my",      "start": 1.10, "end": 1.30, "confidence": 0.97, "punctuated_word": "my"},
    {"word": "morning", "start": 1.40, "end": 1.90, "confidence": 0.95, "punctuated_word": "morning"},
    {"word": "routine", "start": 2.00, "end": 2.60, "confidence": 0.96, "punctuated_word": "routine."},
    {"word": "first",   "start": 3.50, "end": 3.80, "confidence": 0.94, "punctuated_word": "First,"},
    {"word": "coffee",  "start": 3.90, "end": 4.40, "confidence": 0.93, "punctuated_word": "coffee."},
]


@pytest.fixture
def sample_words() -> List[Word]:
    """Seven ordered words: two full batches of four would need eight."""
    return [Word.from_dict(w) for w in SAMPLE_WORDS]


@pytest.fixture
def deepgram_response() -> Dict[str, Any]:
    """A /v1/listen response body carrying SAMPLE_WORDS."""
    return {
        "metadata": {"request_id": "req-123", "duration": 5.0},
        "results": {
            "channels": [
                {
                    "alternatives": [
                        {
                            "transcript": "This is my morning routine. First, coffee.",
                            "confidence": 0.97,
                            "words": [dict(w) for w in SAMPLE_WORDS],
                        }
                    ]
                }
            ]
        },
    }


@pytest.fixture
def jobs_root(tmp_path):
    """An empty directory used as the root of all job directories."""
    root = tmp_path / "public"
    root.mkdir()
    return root
