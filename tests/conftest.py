import os

import pytest

from targets import SOURCES


FIXTURES = os.path.join(os.path.dirname(__file__), "fixtures")

PAGE_FILES = {
    "intune": "intune_weekly.html",
    "entra": "entra_monthly.html",
    "defender": "defender_digest.html",
}


@pytest.fixture
def sources():
    """Configured sources keyed by id."""
    return {s["id"]: s for s in SOURCES}


@pytest.fixture
def pages():
    """Captured HTML for each source, keyed by id."""
    out = {}
    for sid, name in PAGE_FILES.items():
        with open(os.path.join(FIXTURES, name), "r", encoding="utf-8") as f:
            out[sid] = f.read()
    return out


@pytest.fixture
def pages_by_url(sources, pages):
    return {sources[sid]["url"]: html for sid, html in pages.items()}
