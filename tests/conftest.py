"""
Shared fixtures for times_cli tests.
"""
import io
import json
import os
import sys

import pytest

# Add parent directory to path to import times_cli
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from times_cli import Prompter

API_KEY = "abcdefghij0123456789ABCDEFGHIJ01"


class StubFetcher:
    """Fetcher double that replays canned (status, body) pairs or raises canned errors."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def fetch(self, topic, credential):
        self.calls.append((topic, credential))
        if not self.responses:
            raise AssertionError(f"Unexpected fetch for {topic}")
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def api_key():
    return API_KEY


@pytest.fixture
def stub_fetcher():
    """Factory for StubFetcher instances."""
    return StubFetcher


@pytest.fixture
def make_listing():
    """Build a Top Stories style JSON body with one result per title."""
    def _make(titles, **extra):
        results = [
            {
                "title": title,
                "byline": f"By Reporter {index}",
                "short_url": f"https://nyti.ms/{index}",
                "url": f"https://www.nytimes.com/article-{index}.html",
                "abstract": f"Abstract for {title}.",
            }
            for index, title in enumerate(titles, start=1)
        ]
        body = {"status": "OK", "section": "world", "num_results": len(results), "results": results}
        body.update(extra)
        return json.dumps(body)
    return _make


@pytest.fixture
def make_prompter():
    """Build a Prompter reading the given lines and writing to a StringIO."""
    def _make(*lines):
        text = "".join(f"{line}\n" for line in lines)
        return Prompter(io.StringIO(text), io.StringIO())
    return _make
